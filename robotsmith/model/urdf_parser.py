"""Lenient URDF parsing into a kinematic tree.

Malformed numeric attributes fall back to defaults instead of failing the parse,
and elements missing required attributes are skipped. Only a document that is not
well-formed XML or has no ``<robot>`` element yields no tree.
"""

import logging

import lxml.etree as ET
import numpy as np

from robotsmith.model.kinematic_tree import (
    ActuatorSpec,
    GeometryElement,
    Inertial,
    JointDynamics,
    JointLimit,
    JointType,
    KinematicBody,
    KinematicJoint,
    KinematicTree,
    Pose,
)
from robotsmith.utils.geometry_utils import Primitive
from robotsmith.utils.inertia_utils import InertiaTensor
from robotsmith.utils.mjcf_utils import parse_float, parse_vector

console_logger = logging.getLogger(__name__)

DEFAULT_ROBOT_NAME = "urdf_robot"


def _read_pose(element) -> Pose:
    if element is None:
        return Pose()
    xyz = parse_vector(element.get("xyz"), [0.0, 0.0, 0.0])
    rpy = parse_vector(element.get("rpy"), [0.0, 0.0, 0.0])
    return Pose.from_xyz_rpy(xyz, rpy)


def _read_inertial(link) -> Inertial | None:
    inertial = link.find("inertial")
    if inertial is None:
        return None
    mass_element = inertial.find("mass")
    mass = parse_float(
        mass_element.get("value") if mass_element is not None else None, 0.0
    )
    inertia = inertial.find("inertia")

    def component(name: str) -> float:
        if inertia is None:
            return 0.0
        return parse_float(inertia.get(name), 0.0)

    tensor = InertiaTensor(
        ixx=component("ixx"),
        iyy=component("iyy"),
        izz=component("izz"),
        ixy=component("ixy"),
        ixz=component("ixz"),
        iyz=component("iyz"),
    )
    return Inertial(mass=mass, origin=_read_pose(inertial.find("origin")), tensor=tensor)


def _read_primitive(geometry) -> Primitive | None:
    if geometry is None:
        return None
    box = geometry.find("box")
    if box is not None:
        return Primitive.box(parse_vector(box.get("size"), [1.0, 1.0, 1.0]))
    sphere = geometry.find("sphere")
    if sphere is not None:
        return Primitive.sphere(parse_float(sphere.get("radius"), 0.5))
    cylinder = geometry.find("cylinder")
    if cylinder is not None:
        return Primitive.cylinder(
            radius=parse_float(cylinder.get("radius"), 0.5),
            length=parse_float(cylinder.get("length"), 1.0),
        )
    mesh = geometry.find("mesh")
    if mesh is not None:
        return Primitive.mesh(
            filename=mesh.get("filename") or "",
            scale=parse_vector(mesh.get("scale"), [1.0, 1.0, 1.0]),
        )
    return None


def _read_geometry(link, tag: str) -> list[GeometryElement]:
    elements = []
    for node in link.findall(tag):
        primitive = _read_primitive(node.find("geometry"))
        if primitive is None:
            continue
        elements.append(
            GeometryElement(
                primitive=primitive,
                origin=_read_pose(node.find("origin")),
                name=node.get("name"),
            )
        )
    return elements


def _has_any(element, names: tuple[str, ...]) -> bool:
    return element is not None and any(element.get(name) for name in names)


def _read_joint(node, warn) -> KinematicJoint | None:
    name = node.get("name")
    type_text = node.get("type")
    parent = node.find("parent")
    child = node.find("child")
    parent_link = parent.get("link") if parent is not None else None
    child_link = child.get("link") if child is not None else None
    if not (name and type_text and parent_link and child_link):
        return None

    joint_type = JointType.parse(type_text)
    if joint_type is None:
        warn(f"Joint '{name}' has unknown type '{type_text}'; treating it as revolute.")
        joint_type = JointType.REVOLUTE

    axis_element = node.find("axis")
    axis = parse_vector(
        axis_element.get("xyz") if axis_element is not None else None, [1.0, 0.0, 0.0]
    )

    limit = None
    limit_element = node.find("limit")
    if _has_any(limit_element, ("lower", "upper", "effort", "velocity")):
        limit = JointLimit(
            lower=parse_float(limit_element.get("lower")),
            upper=parse_float(limit_element.get("upper")),
            effort=parse_float(limit_element.get("effort")),
            velocity=parse_float(limit_element.get("velocity")),
        )

    dynamics = None
    dynamics_element = node.find("dynamics")
    if _has_any(dynamics_element, ("damping", "friction", "armature")):
        dynamics = JointDynamics(
            damping=parse_float(dynamics_element.get("damping")),
            friction=parse_float(dynamics_element.get("friction")),
            armature=parse_float(dynamics_element.get("armature")),
        )

    return KinematicJoint(
        name=name,
        type=joint_type,
        parent=parent_link,
        child=child_link,
        origin=_read_pose(node.find("origin")),
        axis=np.asarray(axis, dtype=float),
        limit=limit,
        dynamics=dynamics,
        actuator=ActuatorSpec(),
    )


def parse_urdf(text: str, warn=None) -> tuple[KinematicTree | None, list[str]]:
    """Parse URDF text into a kinematic tree.

    Args:
        text: URDF document.
        warn: Optional sink that receives each warning as it is produced.

    Returns:
        ``(tree, warnings)``; ``tree`` is None when the document is not well-formed
        or has no ``<robot>`` element.
    """
    warnings: list[str] = []

    def report(message: str) -> None:
        warnings.append(message)
        if warn is not None:
            warn(message)

    parser = ET.XMLParser(remove_comments=True, recover=False)
    try:
        root = ET.fromstring(text.encode("utf-8"), parser=parser)
    except ET.XMLSyntaxError as e:
        console_logger.debug(f"URDF parse error: {e}")
        report("Failed to parse URDF XML.")
        return None, warnings

    robot = root if root.tag == "robot" else root.find(".//robot")
    if robot is None:
        report("No <robot> root found in URDF.")
        return None, warnings

    tree = KinematicTree(name=robot.get("name") or DEFAULT_ROBOT_NAME)
    for link in robot.iter("link"):
        name = link.get("name")
        if not name:
            continue
        tree.add_body(
            KinematicBody(
                name=name,
                inertial=_read_inertial(link),
                collisions=_read_geometry(link, "collision"),
                visuals=_read_geometry(link, "visual"),
            )
        )

    for node in robot.iter("joint"):
        joint = _read_joint(node, report)
        if joint is not None:
            tree.joints.append(joint)

    console_logger.debug(
        f"Parsed URDF '{tree.name}': {len(tree.bodies)} links, {len(tree.joints)} joints"
    )
    return tree, warnings
