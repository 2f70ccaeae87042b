"""Minimal authored scene graph and its reduction to a kinematic tree.

The scene graph is owned by the editor. Physics metadata is attached per node
through component tables keyed by node id rather than stored on the nodes.
"""

import logging

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Iterator, TypeVar

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
from robotsmith.utils.geometry_utils import PrimitiveKind, RenderGeometry, infer_primitive
from robotsmith.utils.inertia_utils import InertiaTensor, validate_inertia
from robotsmith.utils.mjcf_utils import (
    IDENTITY_QUATERNION,
    compose_transform,
    decompose_transform,
    invert_transform,
)
from robotsmith.utils.naming import sanitize_name

console_logger = logging.getLogger(__name__)

# Bodies lighter than this are treated as static.
STATIC_MASS_THRESHOLD = 1e-4

T = TypeVar("T")


class EditorKind(Enum):
    """Role of a node in the authored robot structure."""

    NONE = "none"
    LINK = "link"
    JOINT = "joint"
    VISUAL = "visual"
    COLLISION = "collision"
    ROBOT = "robot"
    """Root node of an authored or imported robot."""


@dataclass(eq=False)
class SceneNode:
    """A transform node of the scene graph.

    Nodes compare by identity so they can be used as dictionary keys.
    """

    node_id: str
    name: str = ""
    kind: EditorKind = EditorKind.NONE
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    quaternion: np.ndarray = field(default_factory=lambda: IDENTITY_QUATERNION.copy())
    """Local rotation, ``wxyz``."""
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))
    geometry: RenderGeometry | None = None
    """Renderable geometry carried by this node, if any."""
    parent: "SceneNode | None" = field(default=None, repr=False)
    children: list["SceneNode"] = field(default_factory=list, repr=False)

    def add_child(self, child: "SceneNode") -> "SceneNode":
        if child.parent is not None:
            child.parent.children.remove(child)
        child.parent = self
        self.children.append(child)
        return child

    def traverse(self) -> Iterator["SceneNode"]:
        """Depth-first pre-order traversal including this node."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def ancestors(self) -> Iterator["SceneNode"]:
        current = self.parent
        while current is not None:
            yield current
            current = current.parent

    def local_matrix(self) -> np.ndarray:
        return compose_transform(self.position, self.quaternion, self.scale)

    def world_matrix(self) -> np.ndarray:
        matrix = self.local_matrix()
        for ancestor in self.ancestors():
            matrix = ancestor.local_matrix() @ matrix
        return matrix

    def world_pose(self) -> Pose:
        """World position and rotation with scale removed."""
        position, quaternion, _ = decompose_transform(self.world_matrix())
        return Pose(position=position, quaternion=quaternion)

    def world_scale(self) -> np.ndarray:
        _, _, scale = decompose_transform(self.world_matrix())
        return np.abs(scale)

    def set_local_matrix(self, matrix: np.ndarray) -> None:
        self.position, self.quaternion, self.scale = decompose_transform(matrix)


@dataclass
class PhysicsComponent:
    """Authored physics metadata of a scene node."""

    mass: float = 1.0
    density: float = 500.0
    use_density: bool = False
    """Derive mass from geometry volume and ``density``."""
    inertia: np.ndarray | None = None
    """Authored diagonal inertia; ignored unless it passes validation."""
    inertia_tensor: InertiaTensor | None = None
    """Authored full tensor including off-diagonal terms."""
    com: np.ndarray | None = None
    friction: float = 0.5
    restitution: float = 0.0
    collisions_enabled: bool = True
    fixed: bool = False


@dataclass
class JointComponent:
    """Authored joint connecting two links by name."""

    name: str
    type: JointType
    parent_link: str
    child_link: str
    axis: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0]))
    limit: JointLimit | None = None
    dynamics: JointDynamics | None = None
    actuator: ActuatorSpec = field(default_factory=ActuatorSpec)


@dataclass
class ImportedRobot:
    """Marks a robot root that was imported from a robot description file."""

    urdf_key: str | None = None
    urdf_source: str | None = None
    floating_base: bool = False
    first_link_is_world_reference: bool = False
    self_collision: bool = False
    collision_mode: str | None = None


class ComponentTable(Generic[T]):
    """Entity-id keyed storage for one component type."""

    def __init__(self):
        self._items: dict[str, T] = {}

    def set(self, node: SceneNode | str, component: T) -> T:
        self._items[_node_key(node)] = component
        return component

    def get(self, node: SceneNode | str) -> T | None:
        return self._items.get(_node_key(node))

    def remove(self, node: SceneNode | str) -> None:
        self._items.pop(_node_key(node), None)

    def __contains__(self, node) -> bool:
        return _node_key(node) in self._items

    def __len__(self) -> int:
        return len(self._items)


def _node_key(node: SceneNode | str) -> str:
    return node.node_id if isinstance(node, SceneNode) else node


class SceneGraph:
    """Root nodes plus the physics/joint component tables."""

    def __init__(self):
        self.roots: list[SceneNode] = []
        self.physics: ComponentTable[PhysicsComponent] = ComponentTable()
        self.joints: ComponentTable[JointComponent] = ComponentTable()
        self.imported: dict[str, ImportedRobot] = {}

    def add_root(self, node: SceneNode) -> SceneNode:
        self.roots.append(node)
        return node

    def nodes(self, roots: list[SceneNode] | None = None) -> Iterator[SceneNode]:
        seen = set()
        for root in self.roots if roots is None else roots:
            for node in root.traverse():
                if id(node) in seen:
                    continue
                seen.add(id(node))
                yield node

    def find(self, node_id: str) -> SceneNode | None:
        for node in self.nodes():
            if node.node_id == node_id:
                return node
        return None

    def is_imported(self, root: SceneNode) -> bool:
        return root.node_id in self.imported

    def imported_roots(self) -> list[SceneNode]:
        return [root for root in self.roots if self.is_imported(root)]

    def authored_roots(self) -> list[SceneNode]:
        return [root for root in self.roots if not self.is_imported(root)]


def relative_pose(body: SceneNode, target: SceneNode) -> Pose:
    """Pose of ``target`` in the rigid (unscaled) frame of ``body``."""
    body_frame = body.world_pose().as_matrix()
    position, quaternion, _ = decompose_transform(
        invert_transform(body_frame) @ target.world_matrix()
    )
    return Pose(position=position, quaternion=quaternion)


def _is_simulation_candidate(graph: SceneGraph, node: SceneNode) -> bool:
    if node.kind in (
        EditorKind.JOINT,
        EditorKind.VISUAL,
        EditorKind.COLLISION,
        EditorKind.ROBOT,
    ):
        return False
    return node in graph.physics


def _has_link_ancestor(node: SceneNode) -> bool:
    return any(ancestor.kind == EditorKind.LINK for ancestor in node.ancestors())


def _link_name(node: SceneNode) -> str:
    return node.name or node.node_id


def _robot_root(node: SceneNode) -> SceneNode | None:
    for ancestor in node.ancestors():
        if ancestor.kind == EditorKind.ROBOT:
            return ancestor
    return None


def _collision_nodes(link: SceneNode) -> list[SceneNode]:
    """Collision nodes owned by ``link``, not descending into child links."""
    found = []
    stack = [link]
    while stack:
        node = stack.pop()
        if node is not link and node.kind == EditorKind.LINK:
            continue
        if node.kind == EditorKind.COLLISION:
            found.append(node)
        stack.extend(reversed(node.children))
    return found


def _visual_renderables(link: SceneNode) -> list[SceneNode]:
    """Renderables inside visual nodes of ``link``."""
    found = []
    stack = [link]
    while stack:
        node = stack.pop()
        if node is not link and node.kind in (EditorKind.LINK, EditorKind.COLLISION):
            continue
        if node.geometry is not None:
            inside_visual = False
            for ancestor in node.ancestors():
                if ancestor is link:
                    break
                if ancestor.kind == EditorKind.VISUAL:
                    inside_visual = True
                    break
            if inside_visual:
                found.append(node)
        stack.extend(reversed(node.children))
    return found


def _geometry_element(body_node: SceneNode, renderable: SceneNode) -> GeometryElement:
    primitive = infer_primitive(renderable.geometry, renderable.world_scale())
    return GeometryElement(
        primitive=primitive,
        origin=relative_pose(body_node, renderable),
        name=renderable.name or None,
    )


def _link_geometry(link: SceneNode) -> list[GeometryElement]:
    elements = []
    for collision in _collision_nodes(link):
        for node in collision.traverse():
            if node.geometry is not None:
                elements.append(_geometry_element(link, node))
    # Collision nodes without renderables fall back to the visual meshes.
    if not elements:
        elements = [_geometry_element(link, node) for node in _visual_renderables(link)]
    return elements


def _apply_physics(body: KinematicBody, physics: PhysicsComponent) -> None:
    mass = physics.mass if np.isfinite(physics.mass) else 0.0
    mass = max(0.0, mass)
    body.fixed = physics.fixed or (not physics.use_density and mass < STATIC_MASS_THRESHOLD)
    body.friction = max(0.0, physics.friction if np.isfinite(physics.friction) else 0.5)
    body.collisions_enabled = physics.collisions_enabled and bool(body.collisions)
    if physics.use_density:
        body.density = physics.density
        return
    body.mass = mass
    if validate_inertia(physics.inertia):
        tensor = physics.inertia_tensor or InertiaTensor.from_diagonal(physics.inertia)
        com = physics.com if physics.com is not None else np.zeros(3)
        body.inertial = Inertial(
            mass=mass, origin=Pose(position=np.asarray(com, dtype=float)), tensor=tensor
        )


def extract_kinematic_tree(
    graph: SceneGraph, roots: list[SceneNode] | None = None, name: str = "scene"
) -> KinematicTree:
    """Reduce authored scene nodes to a kinematic tree.

    Simulation candidates are nodes with a physics component that are not joint,
    visual, collision or robot nodes. Link candidates are connected through joint
    nodes (the first joint claiming a child wins); other candidates without a link
    ancestor become standalone root bodies, which are listed first.

    Args:
        graph: The scene graph.
        roots: Subset of root nodes to walk; defaults to all roots.
        name: Name of the resulting tree.

    Returns:
        The kinematic tree. Body names are node ids, joint names inside a robot are
        ``{robot}_{joint}``.
    """
    tree = KinematicTree(name=name)
    candidates: list[SceneNode] = []
    links: list[SceneNode] = []
    joint_nodes: list[SceneNode] = []
    for node in graph.nodes(roots):
        if _is_simulation_candidate(graph, node):
            candidates.append(node)
            if node.kind == EditorKind.LINK:
                links.append(node)
        if node.kind == EditorKind.JOINT and node in graph.joints:
            joint_nodes.append(node)

    link_set = set(links)
    for node in candidates:
        if node in link_set or _has_link_ancestor(node):
            continue
        if node.geometry is None:
            console_logger.debug(f"Skipping simulated node '{node.node_id}' without geometry")
            continue
        body = KinematicBody(
            name=node.node_id,
            pose=node.world_pose(),
            collisions=[
                GeometryElement(primitive=infer_primitive(node.geometry, node.world_scale()))
            ],
            source_id=node.node_id,
        )
        _apply_physics(body, graph.physics.get(node))
        if body.collisions[0].primitive.kind == PrimitiveKind.PLANE:
            body.fixed = True
        tree.add_body(body)

    link_by_name: dict[str, SceneNode] = {}
    for link in links:
        link_by_name.setdefault(_link_name(link), link)

    parent_of: dict[SceneNode, SceneNode] = {}
    for link in links:
        body = KinematicBody(
            name=link.node_id,
            pose=link.world_pose(),
            collisions=_link_geometry(link),
            source_id=link.node_id,
        )
        _apply_physics(body, graph.physics.get(link))
        tree.add_body(body)

    for joint_node in joint_nodes:
        component = graph.joints.get(joint_node)
        parent = link_by_name.get(component.parent_link)
        child = link_by_name.get(component.child_link)
        if parent is None or child is None or child in parent_of:
            continue
        parent_of[child] = parent

        robot = _robot_root(joint_node)
        if robot is not None:
            joint_name = f"{sanitize_name(robot.node_id)}_{sanitize_name(component.name)}"
            actuator = component.actuator
        else:
            joint_name = sanitize_name(component.name, "joint")
            actuator = ActuatorSpec(
                enabled=False,
                stiffness=component.actuator.stiffness,
                damping=component.actuator.damping,
                initial_position=component.actuator.initial_position,
                mode=component.actuator.mode,
            )

        tree.joints.append(
            KinematicJoint(
                name=joint_name,
                type=component.type,
                parent=parent.node_id,
                child=child.node_id,
                origin=relative_pose(parent, child),
                axis=np.asarray(component.axis, dtype=float),
                joint_frame=relative_pose(child, joint_node),
                limit=component.limit,
                dynamics=component.dynamics,
                actuator=actuator,
                source_id=joint_node.node_id,
            )
        )

    console_logger.debug(
        f"Extracted scene tree: {len(tree.bodies)} bodies, {len(tree.joints)} joints"
    )
    return tree


def find_imported_root_transform(graph: SceneGraph, roots: list[SceneNode]) -> Pose | None:
    """World pose of the first imported robot root among ``roots``."""
    for root in roots:
        if graph.is_imported(root):
            return root.world_pose()
    return None


def link_friction_overrides(graph: SceneGraph, roots: list[SceneNode]) -> dict[str, float]:
    """Per-link friction authored on link nodes, keyed by link name."""
    overrides = {}
    for node in graph.nodes(roots):
        if node.kind != EditorKind.LINK:
            continue
        physics = graph.physics.get(node)
        if physics is not None and np.isfinite(physics.friction):
            overrides[_link_name(node)] = float(physics.friction)
    return overrides
