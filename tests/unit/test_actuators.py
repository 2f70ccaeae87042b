"""Unit tests for the actuator registry and control law."""

import math
import unittest

from unittest.mock import Mock

from robotsmith.config import create_config
from robotsmith.model.kinematic_tree import ActuatorMode, JointLimit, JointType
from robotsmith.runtime.actuators import (
    ActuatorConfig,
    ActuatorController,
    apply_pose,
    build_actuator_registry,
    compute_actuator_torque,
    map_pose_by_robot,
    normalize_angle,
    resolve_joint_key,
)
from robotsmith.utils.naming import NameMap
from tests.unit.mock_utils import build_arm_scene, create_mock_engine


class TestActuatorRegistry(unittest.TestCase):
    """Tests for build_actuator_registry."""

    def setUp(self):
        """Build the arm scene and default configuration."""
        self.cfg = create_config()
        self.graph, self.nodes = build_arm_scene()
        self.component = self.graph.joints.get(self.nodes["shoulder"])

    def test_entry_for_revolute_joint(self):
        """The revolute joint yields one entry with degree ranges."""
        registry = build_actuator_registry(self.graph, {}, self.cfg)
        (entry,) = registry.registry_by_robot["robot"]
        self.assertEqual(entry.joint_id, "shoulder")
        self.assertEqual(entry.mjcf_joint, "robot_shoulder")
        self.assertEqual(entry.actuator_name, "robot_shoulder_motor")
        self.assertAlmostEqual(entry.range.max, 1.5 * 180.0 / math.pi)
        self.assertEqual((entry.effort_range.min, entry.effort_range.max), (-20.0, 20.0))
        self.assertAlmostEqual(entry.velocity_range.max, 1200.0)
        self.assertEqual((entry.stiffness, entry.damping), (30.0, 1.0))
        self.assertEqual(registry.initial_targets_by_robot["robot"], {"shoulder": 0.0})
        self.assertEqual(registry.configs_by_robot["robot"]["shoulder"].max_force, 20.0)

    def test_name_map_wins(self):
        """Compiled name maps decide the engine joint name."""
        name_map = NameMap()
        name_map.add_joint("shoulder", "scene_shoulder_1")
        registry = build_actuator_registry(self.graph, {"robot": name_map}, self.cfg)
        resolver = registry.resolver()
        self.assertEqual(resolver("robot", "shoulder"), "scene_shoulder_1")
        self.assertIsNone(resolver("robot", "elbow"))

    def test_degree_limits_and_initial_clamp(self):
        """Limits beyond a full turn are read as degrees and initial values clamped."""
        self.component.limit = JointLimit(lower=-90.0, upper=90.0)
        self.component.actuator.initial_position = 3.0
        registry = build_actuator_registry(self.graph, {}, self.cfg)
        (entry,) = registry.registry_by_robot["robot"]
        self.assertAlmostEqual(entry.range.min, -90.0)
        self.assertAlmostEqual(entry.initial_position, 90.0)
        self.assertEqual(entry.effort_range.max, 60.0)

    def test_revolute_velocity_mode_uses_position(self):
        """Revolute joints requesting velocity control are position driven."""
        self.component.actuator.mode = ActuatorMode.VELOCITY
        registry = build_actuator_registry(self.graph, {}, self.cfg)
        self.assertEqual(registry.registry_by_robot["robot"][0].mode, ActuatorMode.POSITION)

    def test_prismatic_ranges_stay_linear(self):
        """Prismatic joints keep native units."""
        self.component.type = JointType.PRISMATIC
        self.component.limit = None
        registry = build_actuator_registry(self.graph, {}, self.cfg)
        (entry,) = registry.registry_by_robot["robot"]
        self.assertFalse(entry.angular)
        self.assertEqual((entry.range.min, entry.range.max), (-1.0, 1.0))
        self.assertEqual(entry.velocity_range.max, 1.0)

    def test_disabled_actuator_skipped(self):
        """Disabled actuators produce no entry."""
        self.component.actuator.enabled = False
        registry = build_actuator_registry(self.graph, {}, self.cfg)
        self.assertEqual(registry.registry_by_robot["robot"], [])


class TestJointKeys(unittest.TestCase):
    """Tests for joint key helpers."""

    def test_resolve_joint_key(self):
        """Names fall back to the sanitized robot and joint names."""
        self.assertEqual(resolve_joint_key("my robot", "elbow joint"), "my_robot_elbow_joint")
        name_map = NameMap()
        name_map.add_joint("elbow joint", "r_elbow")
        self.assertEqual(resolve_joint_key("my robot", "elbow joint", name_map), "r_elbow")

    def test_map_pose_by_robot(self):
        """Unresolved joints are dropped."""
        resolver = lambda robot, joint: {("a", "j1"): "a_j1"}.get((robot, joint))
        merged = map_pose_by_robot({"a": {"j1": 10.0, "j2": 5.0}}, resolver)
        self.assertEqual(merged, {"a_j1": 10.0})

    def test_apply_pose(self):
        """Preview also sets joint positions on every bridge."""
        bridges = [Mock(), Mock()]
        apply_pose(bridges, {"j": 1.0})
        bridges[0].set_actuator_targets.assert_called_once_with({"j": 1.0})
        bridges[0].set_joint_positions.assert_not_called()
        apply_pose(bridges, {"j": 1.0}, preview=True, preview_targets={"j": 2.0})
        bridges[1].set_joint_positions.assert_called_once_with({"j": 2.0})


class TestComputeActuatorTorque(unittest.TestCase):
    """Tests for compute_actuator_torque."""

    def test_position_mode(self):
        """Position mode is a PD law."""
        config = ActuatorConfig(stiffness=10.0, damping=2.0, angular=False)
        self.assertAlmostEqual(compute_actuator_torque(config, 0.5, 1.0, 1.0, None, None, 4.0), 3.0)

    def test_angular_targets_in_degrees(self):
        """Angular position targets are converted to radians."""
        config = ActuatorConfig(stiffness=1.0)
        self.assertAlmostEqual(
            compute_actuator_torque(config, 0.0, 0.0, 90.0, None, None, 4.0), math.pi / 2
        )

    def test_continuous_error_wrapped(self):
        """Continuous joints take the short way round."""
        config = ActuatorConfig(stiffness=1.0, continuous=True)
        torque = compute_actuator_torque(config, 0.0, 0.0, 350.0, None, None, 4.0)
        self.assertAlmostEqual(torque, math.radians(-10.0))

    def test_clamped_to_max_force(self):
        """Torques are clamped to the maximum force."""
        config = ActuatorConfig(stiffness=100.0, max_force=1.0, angular=False)
        self.assertEqual(compute_actuator_torque(config, 0.0, 0.0, 5.0, None, None, 4.0), 1.0)

    def test_velocity_mode_default_gain(self):
        """Velocity mode uses the default gain when none is set."""
        config = ActuatorConfig(mode=ActuatorMode.VELOCITY, angular=False)
        self.assertAlmostEqual(compute_actuator_torque(config, 0.0, 0.5, None, 2.0, None, 4.0), 6.0)

    def test_torque_mode_feed_through(self):
        """Torque mode passes the torque target through."""
        config = ActuatorConfig(mode=ActuatorMode.TORQUE, velocity_gain=0.0, angular=False)
        self.assertAlmostEqual(compute_actuator_torque(config, 0.0, 0.0, None, None, 3.0, 4.0), 3.0)

    def test_no_gains(self):
        """Without gains or torque target there is no control."""
        config = ActuatorConfig(velocity_gain=0.0)
        self.assertIsNone(compute_actuator_torque(config, 0.0, 0.0, 10.0, None, None, 4.0))

    def test_normalize_angle(self):
        """Angles are wrapped into [-pi, pi]."""
        self.assertAlmostEqual(normalize_angle(1.5 * math.pi), -0.5 * math.pi)
        self.assertAlmostEqual(normalize_angle(-1.5 * math.pi), 0.5 * math.pi)


class TestActuatorController(unittest.TestCase):
    """Tests for ActuatorController against an engine double."""

    def setUp(self):
        """Create a controller driving one joint."""
        self.engine = create_mock_engine()
        self.controller = ActuatorController(
            self.engine,
            lambda name: 0 if name == "j" else -1,
            lambda name: 0 if name == "j" else -1,
            create_config().runtime.actuator,
        )
        self.controller.set_configs({"j": ActuatorConfig(stiffness=10.0, angular=False)})
        self.ctrl = self.engine.buffers["ctrl"]

    def test_disarmed_writes_nothing(self):
        """A disarmed controller leaves the control buffer alone."""
        self.controller.set_targets({"j": 1.0})
        self.assertEqual(self.ctrl[0], 0.0)

    def test_arming_holds_pose(self):
        """Arming seeds targets from the current joint position."""
        self.engine.buffers["qpos"][0] = 0.3
        self.controller.set_targets({"j": 1.0})
        self.controller.set_armed(True)
        self.assertAlmostEqual(self.controller.position_targets["j"], 0.3)

    def test_ramp_and_filter(self):
        """Torque is ramped in and low-pass filtered."""
        self.controller.set_armed(True)
        self.controller.set_targets({"j": 1.0})
        self.assertEqual(self.ctrl[0], 0.0)
        self.controller.advance_blend(0.25)
        self.assertEqual(self.controller.blend, 1.0)
        self.controller.apply()
        self.assertAlmostEqual(self.ctrl[0], 10.0 * 0.002 / 0.03)

    def test_disarm_clears_control(self):
        """Disarming zeroes the control buffer."""
        self.controller.set_armed(True)
        self.controller.advance_blend(1.0)
        self.controller.set_targets({"j": 1.0})
        self.assertNotEqual(self.ctrl[0], 0.0)
        self.controller.set_armed(False)
        self.assertEqual(self.ctrl[0], 0.0)

    def test_mode_change_reseeds(self):
        """Switching to torque mode while armed holds the pose and clears velocity."""
        self.controller.set_armed(True)
        self.engine.buffers["qpos"][0] = 0.7
        self.controller.set_configs(
            {"j": ActuatorConfig(mode=ActuatorMode.TORQUE, stiffness=10.0, angular=False)}
        )
        self.assertAlmostEqual(self.controller.position_targets["j"], 0.7)
        self.assertNotIn("j", self.controller.torque_targets)


if __name__ == "__main__":
    unittest.main()
