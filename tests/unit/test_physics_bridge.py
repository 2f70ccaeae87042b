"""Unit tests for the physics bridge driving real MuJoCo models."""

import math
import unittest

from unittest.mock import Mock

import numpy as np

from scipy.spatial.transform import Rotation

from robotsmith.config import create_config
from robotsmith.runtime.actuators import ActuatorConfig
from robotsmith.runtime.context import RuntimeContext
from robotsmith.runtime.engine_adapter import (
    EngineAdapter,
    EngineLoadError,
    MujocoEngineAdapter,
)
from robotsmith.runtime.physics_bridge import BridgeState, PhysicsBridge
from robotsmith.runtime.pointer import PointerMode
from tests.unit.mock_utils import build_arm_scene, build_falling_box_scene


def _quiet_context() -> RuntimeContext:
    return RuntimeContext.create(config=create_config(**{"runtime.noise.rate": 0.0}), seed=0)


def _failing_engine_factory():
    engine = Mock(spec=EngineAdapter)
    engine.load.side_effect = EngineLoadError("rejected")
    return engine


class _ForwardFailingAdapter(MujocoEngineAdapter):
    """Loads documents but fails the first kinematics pass."""

    instances: list["_ForwardFailingAdapter"] = []

    def __init__(self):
        super().__init__()
        self.closed = False
        _ForwardFailingAdapter.instances.append(self)

    def forward(self) -> None:
        raise RuntimeError("forward failed")

    def close(self) -> None:
        self.closed = True
        super().close()


class TestFallingBox(unittest.TestCase):
    """Tests for loading and stepping an authored scene."""

    def setUp(self):
        """Load a box above a ground plane."""
        self.graph, self.box = build_falling_box_scene(mass=2.0, height=1.0)
        self.bridge = PhysicsBridge(_quiet_context())
        self.bridge.load_from_scene(self.graph)

    def tearDown(self):
        """Release the engine."""
        self.bridge.dispose()

    def test_loaded_and_bound(self):
        """The box body drives the box node; the static ground is not bound."""
        self.assertEqual(self.bridge.state, BridgeState.READY)
        self.assertEqual([b.node.node_id for b in self.bridge.bindings], ["box"])
        self.assertGreater(self.bridge.body_id_for_object("box"), 0)
        self.assertIsNone(self.bridge.body_id_for_object("ground"))
        self.assertIn("__pointer_cursor_body", self.bridge.get_last_xml())

    def test_box_comes_to_rest_on_ground(self):
        """Gravity drops the box onto the plane."""
        for _ in range(180):
            self.bridge.step(1.0 / 60.0)
        self.assertEqual(self.bridge.state, BridgeState.IDLE)
        self.assertAlmostEqual(float(self.box.position[1]), 0.5, delta=0.05)

    def test_substeps_capped(self):
        """A long frame takes at most the configured number of sub-steps."""
        self.assertEqual(self.bridge.step(1.0), 8)
        self.assertEqual(self.bridge.step(0.0), 0)
        self.assertEqual(self.bridge.step(float("nan")), 0)

    def test_pointer_grab(self):
        """Grabbing the box reports the spring state."""
        point = self.box.world_pose().position
        mode = self.bridge.begin_pointer_interaction("box", point)
        self.assertEqual(mode, PointerMode.GRAB)
        self.bridge.update_pointer_target(point + np.array([0.0, 1.0, 0.0]))
        self.bridge.step(1.0 / 60.0)
        state = self.bridge.get_pointer_spring_debug_state()
        self.assertIsNotNone(state)
        self.assertEqual(state.stiffness, 200.0)
        self.assertLessEqual(state.force_magnitude, 160.0 + 1e-6)
        self.bridge.end_pointer_interaction()
        self.assertIsNone(self.bridge.get_pointer_spring_debug_state())

    def test_pointer_cursor_on_static_object(self):
        """Unbound objects drive the cursor."""
        self.assertEqual(
            self.bridge.begin_pointer_interaction("ground", (0.0, 0.0, 0.0)), PointerMode.CURSOR
        )

    def test_failed_reload_keeps_model(self):
        """A rejected document leaves the previous model running."""
        engine = self.bridge.engine
        self.bridge.context.engine_factory = _failing_engine_factory
        with self.assertRaises(EngineLoadError):
            self.bridge.load_from_scene(self.graph)
        self.assertIs(self.bridge.engine, engine)
        self.assertEqual(self.bridge.state, BridgeState.READY)
        self.assertEqual(self.bridge.step(1.0 / 60.0), 8)

    def test_failure_after_load_keeps_model(self):
        """Errors while binding a loaded document close it and keep the old model."""
        engine = self.bridge.engine
        _ForwardFailingAdapter.instances.clear()
        self.bridge.context.engine_factory = _ForwardFailingAdapter
        with self.assertRaises(RuntimeError):
            self.bridge.load_from_scene(self.graph)
        self.assertEqual(self.bridge.state, BridgeState.READY)
        self.assertIs(self.bridge.engine, engine)
        self.assertTrue(_ForwardFailingAdapter.instances[0].closed)
        self.assertEqual(self.bridge.step(1.0 / 60.0), 8)

    def test_dispose(self):
        """A disposed bridge drops its model and refuses new loads."""
        for _ in range(180):
            self.bridge.step(1.0 / 60.0)
        self.bridge.dispose()
        self.assertEqual(self.bridge.state, BridgeState.DISPOSED)
        self.assertFalse(self.bridge.loaded)
        self.assertEqual(self.bridge.bindings, [])
        self.assertIsNone(self.bridge.engine)
        self.assertIsNone(self.bridge.body_id_for_object("box"))
        self.assertEqual(self.bridge.step(0.1), 0)
        with self.assertRaises(RuntimeError):
            self.bridge.load_from_scene(self.graph)


class TestFailedFirstLoad(unittest.TestCase):
    """Tests for a bridge whose first load fails."""

    def test_state_unloaded_and_engine_closed(self):
        """The rejected engine is closed and the bridge stays unloaded."""
        engines = []

        def factory():
            engines.append(_failing_engine_factory())
            return engines[-1]

        context = _quiet_context()
        context.engine_factory = factory
        bridge = PhysicsBridge(context)
        graph, _ = build_falling_box_scene()
        with self.assertRaises(EngineLoadError):
            bridge.load_from_scene(graph)
        self.assertEqual(bridge.state, BridgeState.UNLOADED)
        self.assertFalse(bridge.loaded)
        engines[0].close.assert_called_once()


class TestArmActuation(unittest.TestCase):
    """Tests for actuator control of an authored arm."""

    def setUp(self):
        """Load the arm scene with a configured shoulder actuator."""
        self.graph, self.nodes = build_arm_scene()
        self.bridge = PhysicsBridge(_quiet_context())
        self.bridge.load_from_scene(self.graph)
        self.bridge.set_actuator_configs(
            {"robot_shoulder": ActuatorConfig(stiffness=30.0, damping=1.0, max_force=20.0)}
        )

    def tearDown(self):
        """Release the engine."""
        self.bridge.dispose()

    def test_actuator_names(self):
        """The shoulder motor is exposed."""
        self.assertEqual(self.bridge.get_actuator_names(), ["robot_shoulder_motor"])

    def test_arm_ramp(self):
        """Arming blends the control torque in over the ramp time."""
        self.bridge.set_actuators_armed(True)
        self.assertTrue(self.bridge.actuators_armed)
        self.assertEqual(self.bridge.actuator_arm_blend, 0.0)
        for _ in range(10):
            self.bridge.step(0.002)
        self.assertGreater(self.bridge.actuator_arm_blend, 0.0)
        self.assertLess(self.bridge.actuator_arm_blend, 1.0)
        for _ in range(130):
            self.bridge.step(0.002)
        self.assertEqual(self.bridge.actuator_arm_blend, 1.0)

    def test_position_target_tracked(self):
        """The shoulder settles near its position target."""
        self.bridge.set_actuators_armed(True)
        self.bridge.set_actuator_targets({"robot_shoulder": 30.0})
        for _ in range(150):
            self.bridge.step(1.0 / 60.0)
        position = self.bridge.get_joint_positions()["robot_shoulder"]
        self.assertAlmostEqual(position, math.radians(30.0), delta=0.1)

    def test_set_joint_positions_syncs_scene(self):
        """Jumping a joint moves the bound link node."""
        self.bridge.set_joint_positions({"robot_shoulder": 0.5, "unknown": 1.0})
        self.assertAlmostEqual(
            self.bridge.get_joint_positions(["robot_shoulder"])["robot_shoulder"], 0.5
        )
        rotation = self.nodes["arm"].world_matrix()[:3, :3]
        np.testing.assert_allclose(
            rotation, Rotation.from_rotvec([0.0, 0.0, 0.5]).as_matrix(), atol=1e-3
        )

    def test_raw_controls(self):
        """Raw control values are written by name or position."""
        self.bridge.set_actuator_controls({"robot_shoulder": 2.0})
        self.assertEqual(self.bridge.engine.float_view("ctrl")[0], 2.0)
        self.bridge.set_actuator_controls([3.0, 4.0])
        self.assertEqual(self.bridge.engine.float_view("ctrl")[0], 3.0)


if __name__ == "__main__":
    unittest.main()
