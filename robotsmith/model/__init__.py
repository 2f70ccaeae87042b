"""Kinematic model module.

This module provides:
- Kinematic tree types shared by the URDF and scene-graph front ends
- A lenient URDF parser
- The authored scene graph with per-node physics/joint component tables
"""

from robotsmith.model.kinematic_tree import (
    ActuatorMode,
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
from robotsmith.model.scene_graph import (
    ComponentTable,
    EditorKind,
    ImportedRobot,
    JointComponent,
    PhysicsComponent,
    SceneGraph,
    SceneNode,
    extract_kinematic_tree,
)
from robotsmith.model.urdf_parser import parse_urdf

__all__ = [
    "ActuatorMode",
    "ActuatorSpec",
    "ComponentTable",
    "EditorKind",
    "GeometryElement",
    "ImportedRobot",
    "Inertial",
    "JointComponent",
    "JointDynamics",
    "JointLimit",
    "JointType",
    "KinematicBody",
    "KinematicJoint",
    "KinematicTree",
    "PhysicsComponent",
    "Pose",
    "SceneGraph",
    "SceneNode",
    "extract_kinematic_tree",
    "parse_urdf",
]
