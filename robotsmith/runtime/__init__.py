"""Physics runtime module.

This module provides:
- The engine adapter over the MuJoCo Python bindings
- The real-time physics bridge binding engine bodies to scene nodes
- Actuator control, pointer dragging and disturbance noise
- Serialized, debounced model reloads for a scene
"""

from robotsmith.runtime.actuators import (
    ActuatorConfig,
    ActuatorController,
    ActuatorRegistry,
    ActuatorRegistryEntry,
    apply_pose,
    build_actuator_registry,
    compute_actuator_torque,
    map_pose_by_robot,
    resolve_joint_key,
)
from robotsmith.runtime.context import RuntimeContext
from robotsmith.runtime.engine_adapter import (
    EngineAdapter,
    EngineLoadError,
    MujocoEngineAdapter,
    ObjectKind,
)
from robotsmith.runtime.noise import DisturbanceNoise
from robotsmith.runtime.physics_bridge import BodyBinding, BridgeState, PhysicsBridge
from robotsmith.runtime.pointer import (
    PointerController,
    PointerMode,
    PointerSpringConfig,
    PointerSpringDebugState,
)
from robotsmith.runtime.session import PhysicsSession, ReloadScheduler

__all__ = [
    "ActuatorConfig",
    "ActuatorController",
    "ActuatorRegistry",
    "ActuatorRegistryEntry",
    "BodyBinding",
    "BridgeState",
    "DisturbanceNoise",
    "EngineAdapter",
    "EngineLoadError",
    "MujocoEngineAdapter",
    "ObjectKind",
    "PhysicsBridge",
    "PhysicsSession",
    "PointerController",
    "PointerMode",
    "PointerSpringConfig",
    "PointerSpringDebugState",
    "ReloadScheduler",
    "RuntimeContext",
    "apply_pose",
    "build_actuator_registry",
    "compute_actuator_torque",
    "map_pose_by_robot",
    "resolve_joint_key",
]
