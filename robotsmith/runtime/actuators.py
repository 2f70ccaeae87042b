"""Joint actuator configuration, registry and control law.

Actuators are torque motors emitted by the compiler. The control law runs on the
host every physics sub-step: a PD term towards a position target, a proportional
term towards a velocity target and a feed-through torque, clamped, ramped in after
arming and low-pass filtered before it is written to the engine's control buffer.

Angular targets and ranges are exchanged in degrees; the engine works in radians.
"""

import logging
import math

from dataclasses import dataclass, field
from typing import Callable, Iterable

from omegaconf import DictConfig

from robotsmith.model.kinematic_tree import ActuatorMode, JointType
from robotsmith.model.scene_graph import EditorKind, SceneGraph, SceneNode
from robotsmith.utils.naming import NameMap, sanitize_name

console_logger = logging.getLogger(__name__)

RAD2DEG = 180.0 / math.pi
DEG2RAD = math.pi / 180.0

# Angular limits larger than a full turn are assumed to be authored in degrees.
ANGULAR_DEGREE_THRESHOLD = 2.0 * math.pi + 1e-3

DEFAULT_REVOLUTE_RANGE = math.pi


@dataclass
class ActuatorConfig:
    """Runtime control configuration of one joint actuator."""

    mode: ActuatorMode = ActuatorMode.POSITION
    stiffness: float = 0.0
    damping: float = 0.0
    velocity_gain: float | None = None
    """None uses the configured default gain."""
    max_force: float | None = None
    angular: bool = True
    """Targets are in degrees and converted to radians."""
    continuous: bool = False
    """Wrap the position error into [-pi, pi]."""


@dataclass
class ValueRange:
    min: float
    max: float

    @classmethod
    def ordered(cls, a: float, b: float) -> "ValueRange":
        return cls(min=a, max=b) if a <= b else cls(min=b, max=a)

    def clamp(self, value: float) -> float:
        return min(self.max, max(self.min, value))


@dataclass
class ActuatorRegistryEntry:
    """Descriptor of one actuated joint of a robot."""

    robot_id: str
    joint_id: str
    """Scene node id of the joint."""
    joint_name: str
    type: JointType
    mjcf_joint: str
    actuator_name: str
    range: ValueRange
    velocity_range: ValueRange
    effort_range: ValueRange
    initial_position: float
    stiffness: float
    damping: float
    continuous: bool
    mode: ActuatorMode
    angular: bool

    @property
    def max_force(self) -> float:
        return max(abs(self.effort_range.min), abs(self.effort_range.max))

    def to_config(self) -> ActuatorConfig:
        return ActuatorConfig(
            mode=self.mode,
            stiffness=self.stiffness,
            damping=self.damping,
            max_force=self.max_force,
            angular=self.angular,
            continuous=self.continuous,
        )


@dataclass
class ActuatorRegistry:
    """Per-robot actuator descriptors plus their initial targets and configs."""

    registry_by_robot: dict[str, list[ActuatorRegistryEntry]] = field(default_factory=dict)
    initial_targets_by_robot: dict[str, dict[str, float]] = field(default_factory=dict)
    """Initial targets keyed by robot id, then joint node id."""
    configs_by_robot: dict[str, dict[str, ActuatorConfig]] = field(default_factory=dict)

    def resolver(self) -> Callable[[str, str], str | None]:
        """Maps ``(robot_id, joint_id)`` to the engine joint name."""
        keys = {
            (entry.robot_id, entry.joint_id): entry.mjcf_joint
            for entries in self.registry_by_robot.values()
            for entry in entries
        }
        return lambda robot_id, joint_id: keys.get((robot_id, joint_id))


def rpm_to_deg_per_sec(value: float) -> float:
    return value * 360.0 / 60.0


def _finite(value) -> bool:
    return value is not None and math.isfinite(value)


def _angular_limit_to_rad(value: float | None) -> float | None:
    if not _finite(value):
        return None
    if abs(value) > ANGULAR_DEGREE_THRESHOLD:
        return value * DEG2RAD
    return value


def _resolve_range(joint_type: JointType, limit, defaults: DictConfig) -> ValueRange:
    lower = limit.lower if limit is not None else None
    upper = limit.upper if limit is not None else None
    if joint_type == JointType.CONTINUOUS:
        default = float(defaults.continuous_range_deg) * DEG2RAD
        low = _angular_limit_to_rad(lower)
        high = _angular_limit_to_rad(upper)
        return ValueRange.ordered(
            low if low is not None else -default, high if high is not None else default
        )
    if not joint_type.is_angular:
        default = float(defaults.prismatic_range)
        return ValueRange.ordered(
            lower if _finite(lower) else -default, upper if _finite(upper) else default
        )
    low = _angular_limit_to_rad(lower)
    high = _angular_limit_to_rad(upper)
    return ValueRange.ordered(
        low if low is not None else -DEFAULT_REVOLUTE_RANGE,
        high if high is not None else DEFAULT_REVOLUTE_RANGE,
    )


def _resolve_velocity_range(
    joint_type: JointType, limit, angular: bool, defaults: DictConfig
) -> ValueRange:
    if joint_type == JointType.CONTINUOUS:
        value = rpm_to_deg_per_sec(float(defaults.continuous_velocity_rpm))
        return ValueRange(min=-value, max=value)
    if limit is not None and _finite(limit.velocity):
        value = limit.velocity
    elif angular:
        value = rpm_to_deg_per_sec(float(defaults.angular_velocity_rpm)) / RAD2DEG
    else:
        value = float(defaults.linear_velocity)
    if angular:
        value *= RAD2DEG
    return ValueRange(min=-value, max=value)


def resolve_joint_key(robot_id: str, joint_name: str, name_map: NameMap | None = None) -> str:
    """Engine joint name of a robot joint: the name map entry, else ``{robot}_{joint}``."""
    if name_map is not None and joint_name in name_map.joints:
        return name_map.joints[joint_name]
    return f"{sanitize_name(robot_id)}_{sanitize_name(joint_name)}"


def _robot_nodes(graph: SceneGraph) -> list[SceneNode]:
    return [node for node in graph.nodes() if node.kind == EditorKind.ROBOT]


def build_actuator_registry(
    graph: SceneGraph, name_maps_by_robot: dict[str, NameMap], cfg: DictConfig
) -> ActuatorRegistry:
    """Collect one actuator descriptor per enabled, movable joint of every robot.

    Args:
        graph: Scene graph whose robot nodes are scanned for joint components.
        name_maps_by_robot: Compiled name maps keyed by robot node id.
        cfg: Configuration with an ``actuator_defaults`` section.

    Returns:
        Descriptors sorted by joint name per robot, with initial targets and
        runtime configs keyed by joint node id.
    """
    defaults = cfg.actuator_defaults
    result = ActuatorRegistry()
    for robot in _robot_nodes(graph):
        entries = []
        initial_targets = {}
        configs = {}
        name_map = name_maps_by_robot.get(robot.node_id)
        for node in robot.traverse():
            component = graph.joints.get(node) if node.kind == EditorKind.JOINT else None
            if component is None or not component.type.is_actuatable:
                continue
            actuator = component.actuator
            if not actuator.enabled:
                continue

            angular = component.type.is_angular
            range_native = _resolve_range(component.type, component.limit, defaults)
            initial = actuator.initial_position if _finite(actuator.initial_position) else 0.0
            if component.type != JointType.CONTINUOUS:
                initial = range_native.clamp(initial)
            if angular:
                value_range = ValueRange(
                    min=range_native.min * RAD2DEG, max=range_native.max * RAD2DEG
                )
                initial *= RAD2DEG
            else:
                value_range = range_native

            effort = (
                component.limit.effort
                if component.limit is not None and _finite(component.limit.effort)
                else float(defaults.effort)
            )
            mode = actuator.mode
            # Revolute joints are driven by position even when velocity is requested.
            if component.type == JointType.REVOLUTE and mode == ActuatorMode.VELOCITY:
                mode = ActuatorMode.POSITION
            mjcf_joint = resolve_joint_key(robot.node_id, component.name, name_map)

            entry = ActuatorRegistryEntry(
                robot_id=robot.node_id,
                joint_id=node.node_id,
                joint_name=component.name,
                type=component.type,
                mjcf_joint=mjcf_joint,
                actuator_name=f"{mjcf_joint}_motor",
                range=value_range,
                velocity_range=_resolve_velocity_range(
                    component.type, component.limit, angular, defaults
                ),
                effort_range=ValueRange(min=-effort, max=effort),
                initial_position=initial,
                stiffness=(
                    actuator.stiffness
                    if _finite(actuator.stiffness)
                    else float(defaults.stiffness)
                ),
                damping=(
                    actuator.damping if _finite(actuator.damping) else float(defaults.damping)
                ),
                continuous=component.type in (JointType.REVOLUTE, JointType.CONTINUOUS),
                mode=mode,
                angular=angular,
            )
            entries.append(entry)
            initial_targets[node.node_id] = initial
            configs[node.node_id] = entry.to_config()

        entries.sort(key=lambda entry: entry.joint_name)
        result.registry_by_robot[robot.node_id] = entries
        result.initial_targets_by_robot[robot.node_id] = initial_targets
        result.configs_by_robot[robot.node_id] = configs
        console_logger.debug(f"Robot '{robot.node_id}': {len(entries)} actuators")
    return result


def map_pose_by_robot(
    by_robot: dict[str, dict[str, object]], resolver: Callable[[str, str], str | None]
) -> dict[str, object]:
    """Flatten per-robot values keyed by joint id into one dict keyed by engine joint."""
    merged = {}
    for robot_id, entries in by_robot.items():
        for joint_id, value in entries.items():
            key = resolver(robot_id, joint_id)
            if key:
                merged[key] = value
    return merged


def apply_pose(
    bridges: Iterable,
    targets: dict[str, float],
    preview: bool = False,
    preview_targets: dict[str, float] | None = None,
) -> None:
    """Send position targets to every bridge; preview also jumps the joints there."""
    for bridge in bridges:
        bridge.set_actuator_targets(targets)
        if preview:
            bridge.set_joint_positions(preview_targets if preview_targets is not None else targets)


def normalize_angle(value: float) -> float:
    """Wrap an angle into [-pi, pi]."""
    two_pi = 2.0 * math.pi
    wrapped = math.fmod(value, two_pi)
    if wrapped > math.pi:
        wrapped -= two_pi
    if wrapped < -math.pi:
        wrapped += two_pi
    return wrapped


def compute_actuator_torque(
    config: ActuatorConfig,
    position: float,
    velocity: float,
    position_target: float | None,
    velocity_target: float | None,
    torque_target: float | None,
    default_velocity_gain: float,
) -> float | None:
    """Unfiltered, un-ramped actuator torque for one joint.

    Position mode is ``k*e - d*vel``. Velocity mode is ``g*(v_target - vel)``.
    Torque mode sums ``k*e``, ``g*(v_target - vel)`` and the torque target. The
    result is clamped to ``max_force`` when one is set.

    Returns:
        The torque, or None when the actuator has no gains and no torque target.
    """
    stiffness = config.stiffness if _finite(config.stiffness) else 0.0
    damping = config.damping if _finite(config.damping) else 0.0
    if _finite(config.velocity_gain):
        velocity_gain = max(0.0, config.velocity_gain)
    else:
        velocity_gain = max(0.1, default_velocity_gain)
    mode = config.mode
    use_position = mode in (ActuatorMode.POSITION, ActuatorMode.TORQUE)
    use_velocity = mode in (ActuatorMode.VELOCITY, ActuatorMode.TORQUE)

    target = position_target if use_position and _finite(position_target) else None
    target_velocity = velocity_target if use_velocity and _finite(velocity_target) else 0.0
    feed_through = torque_target if mode == ActuatorMode.TORQUE and _finite(torque_target) else 0.0

    if stiffness == 0 and damping == 0 and velocity_gain == 0 and feed_through == 0:
        return None

    if config.angular:
        if target is not None:
            target *= DEG2RAD
        target_velocity *= DEG2RAD

    error = 0.0
    if target is not None:
        error = target - position
        if config.continuous:
            error = normalize_angle(error)

    torque = 0.0
    if use_position:
        torque += stiffness * error
    if mode == ActuatorMode.POSITION:
        torque += damping * -velocity
    elif use_velocity:
        torque += velocity_gain * (target_velocity - velocity)
    torque += feed_through

    max_force = config.max_force
    if _finite(max_force) and max_force > 0:
        torque = max(-max_force, min(max_force, torque))
    return torque


class ActuatorController:
    """Targets, arming state and filtered control output of one loaded model.

    Joint and actuator ids are resolved through the callables supplied by the
    bridge; ids that do not resolve are skipped.
    """

    def __init__(
        self,
        engine,
        resolve_joint_id: Callable[[str], int],
        resolve_actuator_id: Callable[[str], int],
        cfg: DictConfig,
    ):
        self.engine = engine
        self.resolve_joint_id = resolve_joint_id
        self.resolve_actuator_id = resolve_actuator_id
        self.velocity_gain = float(cfg.velocity_gain)
        self.arm_ramp_seconds = float(cfg.arm_ramp_seconds)
        self.filter_seconds = float(cfg.control_filter_seconds)

        self.position_targets: dict[str, float] = {}
        self.velocity_targets: dict[str, float] = {}
        self.torque_targets: dict[str, float] = {}
        self.configs: dict[str, ActuatorConfig] = {}
        self.armed = False
        self.blend = 0.0
        self.filtered: dict[int, float] = {}

    def _joint_position(self, joint_name: str) -> float | None:
        joint_id = self.resolve_joint_id(joint_name)
        if joint_id < 0:
            return None
        qpos = self.engine.float_view("qpos")
        address = int(self.engine.int_view("jnt_qposadr")[joint_id])
        if address >= len(qpos):
            return None
        return float(qpos[address])

    def _seed_position_target(self, joint_name: str, config: ActuatorConfig) -> None:
        current = self._joint_position(joint_name)
        if current is not None:
            self.position_targets[joint_name] = current * RAD2DEG if config.angular else current

    def advance_blend(self, step: float) -> None:
        if self.arm_ramp_seconds > 1e-6:
            self.blend = min(1.0, self.blend + step / self.arm_ramp_seconds)
        else:
            self.blend = 1.0

    def apply(self) -> None:
        """Write filtered control torques for every configured joint."""
        if not self.armed:
            return
        ctrl = self.engine.float_view("ctrl")
        if len(ctrl) == 0:
            return
        qpos = self.engine.float_view("qpos")
        qvel = self.engine.float_view("qvel")
        qpos_address = self.engine.int_view("jnt_qposadr")
        dof_address = self.engine.int_view("jnt_dofadr")
        ctrl[:] = 0.0

        control_step = max(1e-4, self.engine.timestep or 0.01)
        alpha = min(1.0, control_step / self.filter_seconds) if self.filter_seconds > 1e-6 else 1.0

        for joint_name, config in self.configs.items():
            if config is None:
                continue
            joint_id = self.resolve_joint_id(joint_name)
            if joint_id < 0 or joint_id >= len(qpos_address):
                continue
            position_index = int(qpos_address[joint_id])
            velocity_index = int(dof_address[joint_id])
            if position_index >= len(qpos) or velocity_index >= len(qvel):
                continue
            torque = compute_actuator_torque(
                config,
                float(qpos[position_index]),
                float(qvel[velocity_index]),
                self.position_targets.get(joint_name),
                self.velocity_targets.get(joint_name),
                self.torque_targets.get(joint_name),
                self.velocity_gain,
            )
            if torque is None:
                continue
            actuator_id = self.resolve_actuator_id(joint_name)
            if actuator_id < 0 or actuator_id >= len(ctrl):
                continue
            torque *= self.blend
            previous = self.filtered.get(actuator_id, 0.0)
            filtered = previous + (torque - previous) * alpha
            self.filtered[actuator_id] = filtered
            ctrl[actuator_id] = filtered

    def set_targets(self, targets: dict[str, float]) -> None:
        self.position_targets = dict(targets)
        self.apply()

    def set_velocity_targets(self, targets: dict[str, float]) -> None:
        self.velocity_targets = dict(targets)
        self.apply()

    def set_torque_targets(self, targets: dict[str, float]) -> None:
        self.torque_targets = dict(targets)
        self.apply()

    def set_configs(self, configs: dict[str, ActuatorConfig]) -> None:
        """Replace configs; mode changes while armed re-seed targets from the pose."""
        previous = self.configs
        self.configs = dict(configs)
        if not self.armed:
            return
        for joint_name, config in self.configs.items():
            if config is None:
                continue
            previous_config = previous.get(joint_name)
            previous_mode = previous_config.mode if previous_config else ActuatorMode.POSITION
            if previous_mode == config.mode:
                continue
            if config.mode != ActuatorMode.VELOCITY:
                self._seed_position_target(joint_name, config)
            if config.mode != ActuatorMode.TORQUE:
                self.torque_targets[joint_name] = 0.0
            if config.mode == ActuatorMode.POSITION:
                self.velocity_targets[joint_name] = 0.0
        self.filtered.clear()
        self.apply()

    def set_armed(self, armed: bool) -> None:
        self.armed = armed
        self.blend = 0.0
        self.filtered.clear()
        if not armed:
            ctrl = self.engine.float_view("ctrl")
            if len(ctrl):
                ctrl[:] = 0.0
            return
        # Hold the current pose so arming does not yank the joints.
        for joint_name, config in self.configs.items():
            if config is None or config.mode == ActuatorMode.VELOCITY:
                continue
            self._seed_position_target(joint_name, config)
        self.apply()
