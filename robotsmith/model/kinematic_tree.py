"""Kinematic tree description consumed by the MJCF compiler.

Trees are produced either by parsing a URDF document or by walking the authored
scene graph. They only live for the duration of one compile pass.
"""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from scipy.spatial.transform import Rotation

from robotsmith.utils.geometry_utils import Primitive
from robotsmith.utils.inertia_utils import InertiaTensor
from robotsmith.utils.mjcf_utils import (
    IDENTITY_QUATERNION,
    compose_transform,
    quaternion_to_rotation,
    rotation_to_quaternion,
    rpy_to_quaternion,
)


class JointType(Enum):
    """Joint types understood by the compiler."""

    FIXED = "fixed"
    REVOLUTE = "revolute"
    CONTINUOUS = "continuous"
    PRISMATIC = "prismatic"
    PLANAR = "planar"
    """Converted to a single-DOF slide joint."""
    FLOATING = "floating"
    """Emitted as a free joint."""

    @classmethod
    def parse(cls, text: str | None) -> "JointType | None":
        if not text:
            return None
        try:
            return cls(text.strip().lower())
        except ValueError:
            return None

    @property
    def is_angular(self) -> bool:
        return self not in (JointType.PRISMATIC, JointType.PLANAR)

    @property
    def is_actuatable(self) -> bool:
        return self not in (JointType.FIXED, JointType.FLOATING)


class ActuatorMode(Enum):
    """Control law applied by a joint actuator."""

    POSITION = "position"
    VELOCITY = "velocity"
    TORQUE = "torque"

    @classmethod
    def parse(cls, text, default: "ActuatorMode | None" = None) -> "ActuatorMode":
        if isinstance(text, ActuatorMode):
            return text
        try:
            return cls(str(text).strip().lower())
        except ValueError:
            return default or ActuatorMode.POSITION


@dataclass
class Pose:
    """Rigid transform with a ``wxyz`` quaternion."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    quaternion: np.ndarray = field(default_factory=lambda: IDENTITY_QUATERNION.copy())

    @classmethod
    def identity(cls) -> "Pose":
        return cls()

    @classmethod
    def from_xyz_rpy(cls, xyz, rpy) -> "Pose":
        return cls(
            position=np.asarray(xyz, dtype=float), quaternion=rpy_to_quaternion(rpy)
        )

    @property
    def rotation(self) -> Rotation:
        return quaternion_to_rotation(self.quaternion)

    def as_matrix(self) -> np.ndarray:
        return compose_transform(self.position, self.quaternion)

    def compose(self, other: "Pose") -> "Pose":
        """Pose of ``other`` (expressed in this frame) in this pose's parent frame."""
        rotation = self.rotation
        return Pose(
            position=rotation.apply(other.position) + self.position,
            quaternion=rotation_to_quaternion(rotation * other.rotation),
        )


@dataclass
class GeometryElement:
    """A collision or visual shape attached to a body."""

    primitive: Primitive
    origin: Pose = field(default_factory=Pose)
    """Pose of the shape in the body frame."""
    name: str | None = None


@dataclass
class Inertial:
    """Explicitly authored mass properties."""

    mass: float
    origin: Pose = field(default_factory=Pose)
    """Center of mass and orientation of the inertia frame."""
    tensor: InertiaTensor | None = None


@dataclass
class JointLimit:
    lower: float | None = None
    upper: float | None = None
    effort: float | None = None
    velocity: float | None = None


@dataclass
class JointDynamics:
    damping: float | None = None
    friction: float | None = None
    armature: float | None = None


@dataclass
class ActuatorSpec:
    """Per-joint actuator authoring data."""

    enabled: bool = True
    stiffness: float | None = None
    damping: float | None = None
    initial_position: float | None = None
    mode: ActuatorMode = ActuatorMode.POSITION


@dataclass
class KinematicBody:
    """A rigid body of the tree.

    Only bodies without an incoming joint use ``pose``; the pose of every other body
    comes from its joint origin.
    """

    name: str
    pose: Pose = field(default_factory=Pose)
    collisions: list[GeometryElement] = field(default_factory=list)
    visuals: list[GeometryElement] = field(default_factory=list)
    inertial: Inertial | None = None
    mass: float | None = None
    """Authored mass used when no trusted inertial block exists."""
    density: float | None = None
    """Derive mass from geometry volume at this density instead of ``mass``."""
    fixed: bool = False
    """Static body: no free joint and no inertial."""
    collisions_enabled: bool = True
    friction: float | None = None
    source_id: str | None = None
    """Identifier of the scene object the body was generated from."""

    @property
    def geometry(self) -> list[GeometryElement]:
        """Collision geometry, or the visual geometry when there is none."""
        return self.collisions if self.collisions else self.visuals


@dataclass
class KinematicJoint:
    """Connects a parent body to exactly one child body."""

    name: str
    type: JointType
    parent: str
    child: str
    origin: Pose = field(default_factory=Pose)
    """Pose of the child body in the parent body frame."""
    axis: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0]))
    """Joint axis in the joint frame."""
    joint_frame: Pose | None = None
    """Joint anchor in the child body frame; None means the body origin."""
    limit: JointLimit | None = None
    dynamics: JointDynamics | None = None
    actuator: ActuatorSpec = field(default_factory=ActuatorSpec)
    source_id: str | None = None


@dataclass
class KinematicTree:
    name: str
    bodies: dict[str, KinematicBody] = field(default_factory=dict)
    """Bodies keyed by authored name, in authoring order."""
    joints: list[KinematicJoint] = field(default_factory=list)

    def add_body(self, body: KinematicBody) -> KinematicBody:
        self.bodies[body.name] = body
        return body

    def root_names(self) -> list[str]:
        children = {joint.child for joint in self.joints}
        return [name for name in self.bodies if name not in children]
