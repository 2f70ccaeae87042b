"""Compile kinematic trees into MuJoCo MJCF models.

The compiler walks a kinematic tree depth-first and emits one ``<body>`` per link
with its joint, inertial block and geometry. Missing or inconsistent physical
properties are estimated from geometry and every degradation is reported as a
warning on the returned ``CompiledModel`` instead of raising. Structurally unusable
trees (no links, kinematic cycles) compile to an empty model with warnings.

The document is built as an lxml element tree and serialized once.
"""

import logging
import math

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import PurePosixPath
from typing import Callable

import lxml.etree as ET
import numpy as np

from omegaconf import DictConfig
from scipy.spatial.transform import Rotation

from robotsmith.compiler.errors import AssetError, InertiaError
from robotsmith.compiler.mesh_assets import has_xacro
from robotsmith.model.kinematic_tree import (
    GeometryElement,
    Inertial,
    JointType,
    KinematicBody,
    KinematicJoint,
    KinematicTree,
    Pose,
)
from robotsmith.model.scene_graph import SceneGraph, SceneNode, extract_kinematic_tree
from robotsmith.model.urdf_parser import parse_urdf
from robotsmith.utils.geometry_utils import (
    AXIS_INDEX,
    Primitive,
    PrimitiveKind,
    classify_proxy_shape,
    primitive_inertia,
    primitive_volume,
)
from robotsmith.utils.inertia_utils import (
    CompositeInertia,
    InertiaPart,
    InertiaTensor,
    compose_body_inertia,
    is_positive_definite,
    jacobi_eigen_decomposition,
    validate_inertia,
)
from robotsmith.utils.logging import WarningCollector
from robotsmith.utils.mesh_utils import MeshBounds
from robotsmith.utils.mjcf_utils import (
    IDENTITY_QUATERNION,
    format_quaternion,
    format_vector,
    rotation_to_quaternion,
)
from robotsmith.utils.naming import NameMap, NameRegistry, sanitize_name

console_logger = logging.getLogger(__name__)

MIN_MASS = 0.01
MIN_INERTIA = 1e-9

# Default radius of a mesh stand-in when neither bounds nor inertia are known.
DEFAULT_FALLBACK_RADIUS = 0.05

# Thickness of the world plane geom; MuJoCo only uses it for rendering.
PLANE_RENDER_THICKNESS = 0.1

MESH_COLLISION_WARNING = (
    "Mesh collisions enabled. Prefer convex/clean meshes for stable contacts and "
    "performance."
)


class CollisionMode(Enum):
    """Fidelity of collision geometry generated for mesh references."""

    MESH = "mesh"
    """Exact mesh collision."""
    BOX = "box"
    SPHERE = "sphere"
    CYLINDER = "cylinder"
    AUTO = "auto"
    """Cylinder or box, classified from the mesh bounding box."""

    @classmethod
    def parse(cls, value) -> "CollisionMode | None":
        if value is None:
            return None
        if isinstance(value, CollisionMode):
            return value
        text = str(value).strip().lower()
        if text == "fast":
            return cls.AUTO
        try:
            return cls(text)
        except ValueError:
            return None


@dataclass
class CompileOptions:
    """Options controlling one compile pass."""

    name_prefix: str = ""
    """Prefix applied to every body, joint and mesh identifier."""
    model_name: str | None = None
    floating_base: bool = True
    """False keeps the root free joint and welds each root body to the world."""
    first_link_is_world_reference: bool = False
    self_collision: bool = False
    collision_mask: tuple[int, int] | None = None
    """Explicit ``(contype, conaffinity)`` for every collision-enabled geom."""
    collision_mode: CollisionMode = CollisionMode.MESH
    require_meshes: bool = False
    """Raise AssetError instead of using a sphere proxy for unresolved meshes."""
    force_diagonal_inertia: bool = False
    warn_on_xacro: bool = True
    default_joint_damping: float | None = None
    default_joint_friction: float | None = None
    default_joint_armature: float | None = None
    default_geom_friction: float | None = None
    geom_friction_by_body: dict[str, float] = field(default_factory=dict)
    root_transform: Pose | None = None
    mesh_lookup: Callable[[str], str | None] | None = None
    """Maps a mesh reference to its asset bundle key; None uses references as-is."""
    mesh_bounds: dict[str, MeshBounds] = field(default_factory=dict)
    """Unscaled mesh bounds keyed by asset bundle key."""
    default_density: float = 500.0
    angle: str = "radian"
    gravity: tuple[float, float, float] = (0.0, -9.81, 0.0)
    integrator: str = "implicitfast"
    timestep: float = 0.002
    iterations: int = 80
    contact_solref: str = "0.02 1.2"
    contact_solimp: str = "0.9 0.95 0.001"
    weld_solref: str = "0.001 1"
    weld_solimp: str = "0.999 0.9999 0.001 0.5 2"

    @classmethod
    def from_config(cls, cfg: DictConfig, **overrides) -> "CompileOptions":
        """Build options from the ``compiler`` section of a config.

        Keyword arguments override individual fields after the config is applied.
        """
        section = cfg.compiler
        options = cls(
            model_name=section.model_name,
            default_density=float(section.default_density),
            angle=section.angle,
            gravity=tuple(float(v) for v in section.gravity),
            integrator=section.integrator,
            timestep=float(section.timestep),
            iterations=int(section.iterations),
            contact_solref=section.contact_solref or "",
            contact_solimp=section.contact_solimp or "",
            weld_solref=section.weld_solref,
            weld_solimp=section.weld_solimp,
            default_joint_damping=_optional_float(section.default_joint_damping),
            default_joint_friction=_optional_float(section.default_joint_friction),
            default_joint_armature=_optional_float(section.default_joint_armature),
            default_geom_friction=_optional_float(section.default_geom_friction),
        )
        for key, value in overrides.items():
            if not hasattr(options, key):
                raise TypeError(f"Unknown compile option: {key}")
            setattr(options, key, value)
        return options


def _optional_float(value) -> float | None:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


@dataclass
class BodyRecord:
    """An emitted engine body and the object it was generated from."""

    name: str
    source_id: str | None = None


@dataclass
class CompiledModel:
    """An MJCF document plus everything needed to load and bind it."""

    xml: str
    name_map: NameMap = field(default_factory=NameMap)
    warnings: list[str] = field(default_factory=list)
    bodies: list[BodyRecord] = field(default_factory=list)
    assets: dict[str, bytes] = field(default_factory=dict)
    """Mesh file bytes keyed by the path used in the document."""
    mesh_files: list[str] = field(default_factory=list)
    """Asset keys referenced by ``<mesh>`` elements."""
    filename: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.xml

    @classmethod
    def empty(cls, warnings: list[str]) -> "CompiledModel":
        return cls(xml="", warnings=list(warnings))


@dataclass
class _GeomSpec:
    """A geometry element resolved into MJCF attributes."""

    attributes: dict[str, str]
    inertia_part: InertiaPart | None


@dataclass
class _InertialSpec:
    mass: float
    position: np.ndarray
    quaternion: np.ndarray
    diagonal: np.ndarray | None = None
    full: InertiaTensor | None = None


def cylinder_axis_rotation(axis_index: int) -> Rotation | None:
    """Rotation taking MuJoCo's cylinder axis (local +Z) onto ``axis_index``."""
    if axis_index == 0:
        return Rotation.from_rotvec([0.0, math.pi / 2.0, 0.0])
    if axis_index == 1:
        return Rotation.from_rotvec([-math.pi / 2.0, 0.0, 0.0])
    return None


def normalize_joint_axis(axis, joint_name: str, warn) -> np.ndarray:
    """Unit joint axis; degenerate axes become +X with a warning."""
    values = np.array(
        [float(v) if math.isfinite(float(v)) else 0.0 for v in axis], dtype=float
    )
    length = float(np.linalg.norm(values))
    if not math.isfinite(length) or length < 1e-6:
        warn(f"Joint '{joint_name}' has invalid axis; defaulting to 1 0 0.")
        return np.array([1.0, 0.0, 0.0])
    return values / length


def _format_float(value: float) -> str:
    return f"{float(value):.6f}"


class MjcfCompiler:
    """Compiles one kinematic tree. Instances are single-use."""

    def __init__(self, options: CompileOptions, warnings: WarningCollector | None = None):
        self.options = options
        self.warn = warnings if warnings is not None else WarningCollector(console_logger)
        self.prefix = sanitize_name(options.name_prefix) if options.name_prefix else ""
        self.name_map = NameMap()
        self.records: list[BodyRecord] = []
        self._mesh_names: dict[str, str] = {}
        self._mesh_assets: list[tuple[str, str, np.ndarray]] = []
        self._weld_roots: list[str] = []

    def _with_prefix(self, raw: str) -> str:
        return f"{self.prefix}_{raw}" if self.prefix else raw

    def compile(self, tree: KinematicTree) -> CompiledModel:
        options = self.options
        bodies = dict(tree.bodies)
        joints = list(tree.joints)

        if not bodies:
            self.warn(f"Robot '{tree.name}' has no links.")
            return CompiledModel.empty(self.warn.messages)

        if options.collision_mode == CollisionMode.MESH and _has_mesh_geometry(bodies):
            self.warn(MESH_COLLISION_WARNING)

        if options.first_link_is_world_reference:
            joints = self._strip_world_reference(bodies, joints)

        for joint in joints:
            if joint.type == JointType.PLANAR:
                self.warn(
                    f"Joint '{joint.name}' is planar; converting to 1-DOF slide as a "
                    "fallback."
                )

        joint_by_child, children_by_parent, joints = self._link_joints(bodies, joints)
        roots = [name for name in bodies if name not in joint_by_child]

        unreachable = _unreachable_bodies(bodies, roots, children_by_parent)
        if unreachable:
            self.warn(
                "Kinematic cycle detected involving links: "
                f"{', '.join(unreachable)}; no root link reaches them."
            )
            return CompiledModel.empty(self.warn.messages)

        link_names = NameRegistry("link", self.warn, "link")
        joint_names = NameRegistry("joint", self.warn, "joint")
        for name in bodies:
            self.name_map.add_link(name, link_names.claim(self._with_prefix(name)))
        for joint in joints:
            self.name_map.add_joint(joint.name, joint_names.claim(self._with_prefix(joint.name)))

        self._bodies = bodies
        self._joint_by_child = joint_by_child
        self._children_by_parent = children_by_parent

        model_name = options.model_name or sanitize_name(self._with_prefix(tree.name))
        mujoco = ET.Element("mujoco", model=model_name)
        ET.SubElement(mujoco, "compiler", angle=options.angle, inertiafromgeom="false")
        ET.SubElement(
            mujoco,
            "option",
            gravity=" ".join(f"{g:g}" for g in options.gravity),
            integrator=options.integrator,
            timestep=f"{options.timestep:g}",
            iterations=str(options.iterations),
        )

        worldbody = ET.Element("worldbody")
        for root in roots:
            self._emit_body(worldbody, root, is_root=True)

        if self._mesh_assets:
            asset = ET.SubElement(mujoco, "asset")
            for mesh_name, file, scale in self._mesh_assets:
                ET.SubElement(
                    asset, "mesh", name=mesh_name, file=file, scale=format_vector(scale)
                )
        mujoco.append(worldbody)

        if self._weld_roots:
            equality = ET.SubElement(mujoco, "equality")
            for body_name in self._weld_roots:
                ET.SubElement(
                    equality,
                    "weld",
                    body1=body_name,
                    body2="world",
                    solref=options.weld_solref,
                    solimp=options.weld_solimp,
                )

        motors = [
            self.name_map.joints[joint.name]
            for joint in joints
            if joint.type.is_actuatable and joint.actuator.enabled
        ]
        if motors:
            actuator = ET.SubElement(mujoco, "actuator")
            for joint_name in motors:
                ET.SubElement(
                    actuator, "motor", name=f"{joint_name}_motor", joint=joint_name, gear="1"
                )

        xml = ET.tostring(mujoco, pretty_print=True, encoding="unicode")
        console_logger.debug(
            f"Compiled '{model_name}': {len(self.records)} bodies, "
            f"{len(self._mesh_assets)} meshes, {len(motors)} motors"
        )
        return CompiledModel(
            xml=xml,
            name_map=self.name_map,
            warnings=list(self.warn.messages),
            bodies=self.records,
            mesh_files=[file for _, file, _ in self._mesh_assets],
        )

    def _strip_world_reference(
        self, bodies: dict[str, KinematicBody], joints: list[KinematicJoint]
    ) -> list[KinematicJoint]:
        children = {joint.child for joint in joints}
        roots = [name for name in bodies if name not in children]
        if not roots:
            self.warn(
                "First-link world reference flag enabled but no root link was "
                "detected; keeping URDF unchanged."
            )
            return joints
        world_link = roots[0]
        if not any(joint.parent == world_link for joint in joints):
            self.warn(
                f"First-link world reference flag enabled but root link '{world_link}' "
                "has no outgoing joints; keeping URDF unchanged."
            )
            return joints
        self.warn(
            f"Ignoring root link '{world_link}' as world reference frame (and its "
            "outgoing joints)."
        )
        del bodies[world_link]
        return [joint for joint in joints if joint.parent != world_link]

    def _link_joints(self, bodies, joints):
        joint_by_child: dict[str, KinematicJoint] = {}
        children_by_parent: dict[str, list[str]] = {}
        kept = []
        for joint in joints:
            missing = [link for link in (joint.parent, joint.child) if link not in bodies]
            if missing:
                self.warn(
                    f"Joint '{joint.name}' references unknown link '{missing[0]}'; "
                    "ignoring it."
                )
                continue
            if joint.child in joint_by_child:
                self.warn(
                    f"Link '{joint.child}' already has parent joint "
                    f"'{joint_by_child[joint.child].name}'; ignoring joint "
                    f"'{joint.name}'."
                )
                continue
            joint_by_child[joint.child] = joint
            children_by_parent.setdefault(joint.parent, []).append(joint.child)
            kept.append(joint)
        return joint_by_child, children_by_parent, kept

    def _emit_body(self, parent: ET._Element, name: str, is_root: bool) -> None:
        options = self.options
        body = self._bodies[name]
        joint = self._joint_by_child.get(name)
        engine_name = self.name_map.links[name]
        children = self._children_by_parent.get(name, [])

        pose = joint.origin if joint is not None else body.pose
        if is_root and options.root_transform is not None:
            pose = options.root_transform.compose(pose)

        static = body.fixed and (joint is None or joint.type == JointType.FIXED)
        geometry = body.geometry
        if (
            is_root
            and static
            and not children
            and len(geometry) == 1
            and geometry[0].primitive.kind == PrimitiveKind.PLANE
        ):
            self._emit_world_plane(parent, body, engine_name, pose)
            return

        element = ET.SubElement(
            parent,
            "body",
            name=engine_name,
            pos=format_vector(pose.position),
            quat=format_quaternion(pose.quaternion),
        )
        self.records.append(BodyRecord(name=engine_name, source_id=body.source_id or name))

        if is_root and not static:
            ET.SubElement(element, "freejoint")
            if not options.floating_base:
                self._weld_roots.append(engine_name)

        if joint is not None and joint.type != JointType.FIXED:
            if joint.type == JointType.FLOATING:
                ET.SubElement(element, "freejoint")
            else:
                self._emit_joint(element, joint)

        fallback_radius = self._fallback_radius(body)
        geoms = []
        for index, geometry_element in enumerate(geometry):
            spec = self._resolve_geometry(
                body, f"{engine_name}_{index}_geom", geometry_element, fallback_radius
            )
            if spec is not None:
                geoms.append(spec)

        if not static:
            moving = joint is not None and joint.type != JointType.FIXED
            parts = [spec.inertia_part for spec in geoms if spec.inertia_part is not None]
            self._emit_inertial(element, self._resolve_inertial(body, parts, moving))

        for spec in geoms:
            ET.SubElement(element, "geom", spec.attributes)

        for child in children:
            self._emit_body(element, child, is_root=False)

    def _emit_world_plane(self, parent, body: KinematicBody, engine_name: str, pose: Pose):
        geometry = body.geometry[0]
        plane_pose = pose.compose(geometry.origin)
        half = geometry.primitive.half_extents
        attributes = {
            "name": f"{engine_name}_0_geom",
            "type": "plane",
            "size": format_vector([half[0], half[1], PLANE_RENDER_THICKNESS]),
            "pos": format_vector(plane_pose.position),
            "quat": format_quaternion(plane_pose.quaternion),
        }
        attributes.update(self._contact_attributes(body))
        ET.SubElement(parent, "geom", attributes)

    def _emit_joint(self, element: ET._Element, joint: KinematicJoint) -> None:
        options = self.options
        joint_type = "slide" if joint.type in (JointType.PRISMATIC, JointType.PLANAR) else "hinge"
        axis = normalize_joint_axis(joint.axis, joint.name, self.warn)
        attributes = {"name": self.name_map.joints[joint.name], "type": joint_type}
        if joint.joint_frame is not None:
            axis = joint.joint_frame.rotation.apply(axis)
            attributes["pos"] = format_vector(joint.joint_frame.position)
        attributes["axis"] = format_vector(axis)

        limit = joint.limit
        if limit is not None and joint.type != JointType.CONTINUOUS:
            if (
                limit.lower is not None
                and limit.upper is not None
                and math.isfinite(limit.lower)
                and math.isfinite(limit.upper)
            ):
                attributes["limited"] = "true"
                attributes["range"] = f"{limit.lower:.6f} {limit.upper:.6f}"

        dynamics = joint.dynamics
        for attribute, authored, default in (
            ("damping", dynamics.damping if dynamics else None, options.default_joint_damping),
            ("frictionloss", dynamics.friction if dynamics else None, options.default_joint_friction),
            ("armature", dynamics.armature if dynamics else None, options.default_joint_armature),
        ):
            if authored is not None:
                attributes[attribute] = _format_float(authored)
            elif default is not None and default > 0:
                attributes[attribute] = _format_float(default)
        ET.SubElement(element, "joint", attributes)

    def _fallback_radius(self, body: KinematicBody) -> float:
        """Radius of a sphere matching the authored inertia, used for mesh stand-ins."""
        inertial = body.inertial
        if inertial is None or inertial.mass <= 0 or inertial.tensor is None:
            return DEFAULT_FALLBACK_RADIUS
        mean = float(np.mean(np.abs(inertial.tensor.diagonal)))
        radius = math.sqrt(max(1e-9, mean) / (0.4 * max(1e-6, inertial.mass)))
        return max(0.01, radius) if math.isfinite(radius) else DEFAULT_FALLBACK_RADIUS

    def _contact_attributes(self, body: KinematicBody) -> dict[str, str]:
        options = self.options
        attributes = {}
        if not body.collisions_enabled:
            attributes["contype"] = "0"
            attributes["conaffinity"] = "0"
        elif options.collision_mask is not None:
            attributes["contype"] = str(options.collision_mask[0])
            attributes["conaffinity"] = str(options.collision_mask[1])
        elif not options.self_collision:
            attributes["contype"] = "1"
            attributes["conaffinity"] = "2"

        friction = options.geom_friction_by_body.get(body.name)
        if friction is None or not math.isfinite(friction):
            friction = body.friction
        if friction is None:
            friction = options.default_geom_friction
        if friction is not None:
            value = friction if math.isfinite(friction) else 0.5
            attributes["friction"] = f"{max(0.0, value):.6f} 0.005 0.0001"
            if options.contact_solref.strip():
                attributes["solref"] = options.contact_solref.strip()
            if options.contact_solimp.strip():
                attributes["solimp"] = options.contact_solimp.strip()
        return attributes

    def _resolve_geometry(
        self,
        body: KinematicBody,
        geom_name: str,
        element: GeometryElement,
        fallback_radius: float,
    ) -> _GeomSpec | None:
        primitive = element.primitive
        position = np.asarray(element.origin.position, dtype=float)
        rotation = element.origin.rotation
        attributes = {"name": geom_name}

        if primitive.kind == PrimitiveKind.MESH:
            if self.options.collision_mode == CollisionMode.MESH:
                return self._resolve_mesh_geometry(body, geom_name, element, fallback_radius)
            return self._resolve_mesh_proxy(body, geom_name, element, fallback_radius)

        geom_rotation = rotation
        if primitive.kind == PrimitiveKind.SPHERE:
            attributes["type"] = "sphere"
            attributes["size"] = _format_float(primitive.radius)
        elif primitive.kind == PrimitiveKind.CYLINDER:
            attributes["type"] = "cylinder"
            attributes["size"] = format_vector([primitive.radius, primitive.half_length])
            extra = cylinder_axis_rotation(AXIS_INDEX.get(primitive.axis, 2))
            if extra is not None:
                geom_rotation = rotation * extra
        else:
            # Planes attached to bodies are emitted as thin boxes.
            attributes["type"] = "box"
            attributes["size"] = format_vector(primitive.half_extents)

        attributes["pos"] = format_vector(position)
        attributes["quat"] = format_quaternion(rotation_to_quaternion(geom_rotation))
        attributes.update(self._contact_attributes(body))
        return _GeomSpec(
            attributes=attributes,
            inertia_part=InertiaPart(primitive=primitive, position=position, rotation=rotation),
        )

    def _lookup_mesh(self, reference: str) -> str | None:
        if self.options.mesh_lookup is None:
            return reference or None
        return self.options.mesh_lookup(reference)

    def _mesh_asset_name(self, file: str, scale: np.ndarray) -> str:
        base = sanitize_name(PurePosixPath(file).name)
        signature = f"{self.prefix}|{base}|{','.join(f'{s:g}' for s in scale)}"
        if signature not in self._mesh_names:
            index = len(self._mesh_names)
            name = f"{self.prefix}_{base}_{index}" if self.prefix else f"{base}_{index}"
            self._mesh_names[signature] = name
            self._mesh_assets.append((name, file, np.asarray(scale, dtype=float)))
        return self._mesh_names[signature]

    def _scaled_bounds(self, primitive: Primitive) -> MeshBounds | None:
        key = self._lookup_mesh(primitive.mesh_file)
        if key is None:
            return None
        bounds = self.options.mesh_bounds.get(key)
        if bounds is None:
            return None
        return bounds.scaled(primitive.mesh_scale)

    def _resolve_mesh_geometry(self, body, geom_name, element, fallback_radius):
        primitive = element.primitive
        file = self._lookup_mesh(primitive.mesh_file)
        if file is None:
            message = f"Mesh not found for {primitive.mesh_file}"
            if self.options.require_meshes:
                raise AssetError(message, missing=[primitive.mesh_file])
            self.warn(f"{message}; using a sphere proxy.")
            return self._resolve_mesh_proxy(
                body, geom_name, element, fallback_radius, mode=CollisionMode.SPHERE
            )

        attributes = {
            "name": geom_name,
            "type": "mesh",
            "pos": format_vector(element.origin.position),
            "quat": format_quaternion(element.origin.quaternion),
            "mesh": self._mesh_asset_name(file, primitive.mesh_scale),
        }
        attributes.update(self._contact_attributes(body))
        return _GeomSpec(
            attributes=attributes,
            inertia_part=self._mesh_inertia_part(element, fallback_radius),
        )

    def _mesh_inertia_part(self, element: GeometryElement, fallback_radius: float) -> InertiaPart:
        primitive = element.primitive
        rotation = element.origin.rotation
        position = np.asarray(element.origin.position, dtype=float)
        bounds = self._scaled_bounds(primitive)
        if bounds is not None:
            return InertiaPart(
                primitive=Primitive.box(np.maximum(1e-6, bounds.size)),
                position=position + rotation.apply(bounds.center),
                rotation=rotation,
            )
        scale_max = max(1e-6, float(np.max(np.abs(primitive.mesh_scale))))
        return InertiaPart(
            primitive=Primitive.sphere(max(1e-6, fallback_radius * scale_max)),
            position=position,
            rotation=rotation,
        )

    def _resolve_mesh_proxy(self, body, geom_name, element, fallback_radius, mode=None):
        mode = mode or self.options.collision_mode
        rotation = element.origin.rotation
        position = np.asarray(element.origin.position, dtype=float)
        bounds = self._scaled_bounds(element.primitive)
        size = bounds.size if bounds is not None else None
        radius = bounds.radius if bounds is not None else fallback_radius
        if bounds is not None:
            position = position + rotation.apply(bounds.center)

        proxy = mode
        axis_index = 1
        if mode == CollisionMode.AUTO and size is not None:
            kind, axis_index = classify_proxy_shape(size)
            proxy = CollisionMode.CYLINDER if kind == PrimitiveKind.CYLINDER else CollisionMode.BOX

        geom_rotation = rotation
        if proxy == CollisionMode.BOX:
            half = (
                np.maximum(1e-6, np.asarray(size) / 2.0)
                if size is not None
                else np.full(3, radius)
            )
            geom_type = "box"
            geom_size = format_vector(half)
            inertia_primitive = Primitive(kind=PrimitiveKind.BOX, half_extents=half)
        elif proxy == CollisionMode.CYLINDER:
            dims = np.asarray(size) if size is not None else np.full(3, radius * 2.0)
            if mode != CollisionMode.AUTO:
                axis_index = int(np.argmin(dims))
            others = [i for i in range(3) if i != axis_index]
            cylinder_radius = max(1e-6, max(dims[others[0]], dims[others[1]]) / 2.0)
            half_length = max(1e-6, dims[axis_index] / 2.0)
            extra = cylinder_axis_rotation(axis_index)
            if extra is not None:
                geom_rotation = rotation * extra
            geom_type = "cylinder"
            geom_size = format_vector([cylinder_radius, half_length])
            inertia_primitive = Primitive.cylinder(
                cylinder_radius, 2.0 * half_length, axis="xyz"[axis_index]
            )
        else:
            geom_type = "sphere"
            geom_size = _format_float(radius)
            inertia_primitive = Primitive.sphere(max(1e-6, radius))

        attributes = {
            "name": geom_name,
            "type": geom_type,
            "pos": format_vector(position),
            "quat": format_quaternion(rotation_to_quaternion(geom_rotation)),
            "size": geom_size,
        }
        attributes.update(self._contact_attributes(body))
        return _GeomSpec(
            attributes=attributes,
            inertia_part=InertiaPart(
                primitive=inertia_primitive, position=position, rotation=rotation
            ),
        )

    def _resolve_inertial(
        self, body: KinematicBody, parts: list[InertiaPart], moving: bool
    ) -> _InertialSpec:
        inertial = body.inertial
        if inertial is not None and inertial.mass > 0:
            try:
                return self._explicit_inertial(body, inertial)
            except InertiaError as e:
                self.warn(str(e))
                composite = compose_body_inertia(parts, mass=inertial.mass)
                if composite is not None:
                    return _composite_inertial(composite)
                diagonal = (
                    inertial.tensor.diagonal if inertial.tensor is not None else np.zeros(3)
                )
                return _InertialSpec(
                    mass=inertial.mass,
                    position=inertial.origin.position,
                    quaternion=inertial.origin.quaternion,
                    diagonal=np.maximum(MIN_INERTIA, np.abs(diagonal)),
                )

        if body.density is not None:
            composite = compose_body_inertia(parts, density=body.density)
            if composite is not None:
                return _composite_inertial(composite)
        elif body.mass is not None and body.mass > 0:
            composite = compose_body_inertia(parts, mass=body.mass)
            if composite is not None:
                return _composite_inertial(composite)
            value = max(MIN_INERTIA, 0.4 * body.mass * DEFAULT_FALLBACK_RADIUS**2)
            return _InertialSpec(
                mass=body.mass,
                position=np.zeros(3),
                quaternion=IDENTITY_QUATERNION.copy(),
                diagonal=np.full(3, value),
            )

        if moving:
            self.warn(f"Link '{body.name}' missing inertial; using fallback mass/inertia.")
        return self._fallback_inertial(parts)

    def _explicit_inertial(self, body: KinematicBody, inertial: Inertial) -> _InertialSpec:
        tensor = inertial.tensor or InertiaTensor(0.0, 0.0, 0.0)
        spec = _InertialSpec(
            mass=inertial.mass,
            position=np.asarray(inertial.origin.position, dtype=float),
            quaternion=np.asarray(inertial.origin.quaternion, dtype=float),
        )
        positive_definite = is_positive_definite(tensor)
        if tensor.has_off_diagonal:
            if positive_definite and not self.options.force_diagonal_inertia:
                spec.full = tensor
                return spec
            if not positive_definite:
                self.warn(
                    f"Inertia for link '{body.name}' is not positive definite; using "
                    "diagonal only."
                )
            else:
                self.warn(f"Inertia for link '{body.name}' forced to diagonal only.")
        if not validate_inertia(tensor.diagonal):
            raise InertiaError(
                f"Inertia for link '{body.name}' violates the triangle inequality or "
                "is not positive; estimating from geometry."
            )
        spec.diagonal = np.maximum(MIN_INERTIA, np.abs(tensor.diagonal))
        return spec

    def _fallback_inertial(self, parts: list[InertiaPart]) -> _InertialSpec:
        """Mass and inertia of the largest part at the default density."""
        best = None
        best_volume = -1.0
        for part in parts:
            volume = primitive_volume(part.primitive)
            if volume is None or volume <= best_volume:
                continue
            mass = max(MIN_MASS, volume * self.options.default_density)
            diagonal = primitive_inertia(part.primitive, mass)
            if diagonal is None:
                continue
            best_volume = volume
            best = _InertialSpec(
                mass=mass,
                position=np.asarray(part.position, dtype=float),
                quaternion=rotation_to_quaternion(part.rotation),
                diagonal=np.maximum(MIN_INERTIA, diagonal),
            )
        if best is None:
            return _InertialSpec(
                mass=MIN_MASS,
                position=np.zeros(3),
                quaternion=IDENTITY_QUATERNION.copy(),
                diagonal=np.full(3, MIN_INERTIA),
            )
        return best

    def _emit_inertial(self, element: ET._Element, spec: _InertialSpec) -> None:
        attributes = {
            "pos": format_vector(spec.position),
            "quat": format_quaternion(spec.quaternion),
            "mass": _format_float(spec.mass),
        }
        if spec.full is not None:
            t = spec.full
            attributes["fullinertia"] = format_vector([t.ixx, t.iyy, t.izz, t.ixy, t.ixz, t.iyz])
        else:
            attributes["diaginertia"] = format_vector(spec.diagonal)
        ET.SubElement(element, "inertial", attributes)


def _composite_inertial(composite: CompositeInertia) -> _InertialSpec:
    """Inertial block of a composite body, diagonalized along its principal axes."""
    tensor = composite.tensor
    quaternion = IDENTITY_QUATERNION.copy()
    diagonal = tensor.diagonal
    if tensor.has_off_diagonal:
        values, vectors = jacobi_eigen_decomposition(tensor.to_matrix())
        diagonal = values
        quaternion = rotation_to_quaternion(Rotation.from_matrix(vectors))
    return _InertialSpec(
        mass=composite.mass,
        position=composite.com,
        quaternion=quaternion,
        diagonal=np.maximum(MIN_INERTIA, np.abs(diagonal)),
    )


def _has_mesh_geometry(bodies: dict[str, KinematicBody]) -> bool:
    return any(
        element.primitive.kind == PrimitiveKind.MESH
        for body in bodies.values()
        for element in body.geometry
    )


def _unreachable_bodies(
    bodies: dict[str, KinematicBody],
    roots: list[str],
    children_by_parent: dict[str, list[str]],
) -> list[str]:
    visited = set()
    stack = list(roots)
    while stack:
        name = stack.pop()
        if name in visited:
            continue
        visited.add(name)
        stack.extend(children_by_parent.get(name, []))
    return [name for name in bodies if name not in visited]


def compile_tree(
    tree: KinematicTree,
    options: CompileOptions | None = None,
    warnings: WarningCollector | None = None,
) -> CompiledModel:
    """Compile a kinematic tree into an MJCF model.

    Args:
        tree: The tree to compile.
        options: Compile options; defaults to ``CompileOptions()``.
        warnings: Collector to append warnings to; a new one is created if omitted.

    Returns:
        The compiled model. Structurally unusable trees yield an empty model whose
        warnings explain why.

    Raises:
        AssetError: If ``options.require_meshes`` is set and a mesh reference
            cannot be resolved.
    """
    compiler = MjcfCompiler(options or CompileOptions(), warnings)
    return compiler.compile(tree)


def compile_urdf(
    urdf: str,
    options: CompileOptions | None = None,
    warnings: WarningCollector | None = None,
) -> CompiledModel:
    """Parse and compile URDF text. Unparsable input yields an empty model."""
    options = options or CompileOptions()
    collector = warnings if warnings is not None else WarningCollector(console_logger)
    if options.warn_on_xacro and has_xacro(urdf):
        collector(
            "URDF contains xacro tags; ensure the file is fully expanded before "
            "simulation."
        )
    tree, _ = parse_urdf(urdf, warn=collector)
    if tree is None:
        return CompiledModel.empty(collector.messages)
    return compile_tree(tree, options, collector)


def compile_scene(
    graph: SceneGraph,
    roots: list[SceneNode] | None = None,
    options: CompileOptions | None = None,
    collision_mask: tuple[int, int] | None = None,
) -> CompiledModel:
    """Compile authored scene nodes into a standalone scene model.

    Args:
        graph: The authored scene graph.
        roots: Root nodes to include; defaults to all roots.
        options: Base options, typically ``scene_compile_options(cfg)``.
        collision_mask: Explicit collision bits for every collision-enabled geom,
            used when the bodies are merged into imported robot models.

    Returns:
        The compiled model; ``bodies`` ties each engine body to its scene node id.
    """
    options = replace(options or CompileOptions(self_collision=True))
    if collision_mask is not None:
        options.collision_mask = collision_mask
    tree = extract_kinematic_tree(graph, roots)
    if not tree.bodies:
        # An empty scene is valid and simulates nothing.
        return CompiledModel(
            xml=_empty_scene_xml(options), warnings=[], name_map=NameMap()
        )
    options.model_name = options.model_name or "scene"
    return compile_tree(tree, options)


def scene_compile_options(cfg: DictConfig) -> CompileOptions:
    """Compile options for editor-authored scenes."""
    return CompileOptions.from_config(
        cfg,
        model_name="scene",
        self_collision=True,
        floating_base=True,
        default_joint_damping=float(cfg.scene.joint_damping),
        default_joint_armature=float(cfg.scene.joint_armature),
    )


def _empty_scene_xml(options: CompileOptions) -> str:
    mujoco = ET.Element("mujoco", model="scene")
    ET.SubElement(mujoco, "compiler", angle=options.angle, inertiafromgeom="false")
    ET.SubElement(
        mujoco,
        "option",
        gravity=" ".join(f"{g:g}" for g in options.gravity),
        integrator=options.integrator,
        timestep=f"{options.timestep:g}",
        iterations=str(options.iterations),
    )
    ET.SubElement(mujoco, "worldbody")
    return ET.tostring(mujoco, pretty_print=True, encoding="unicode")
