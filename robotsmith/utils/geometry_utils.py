"""Primitive shape inference plus closed-form volume and inertia formulas.

Renderable geometry coming from the scene editor is reduced to one of a small set
of primitives (box, sphere, cylinder, plane). Robot-description meshes are kept as
mesh primitives and only use their bounding box when one is known.
"""

import logging
import math

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

console_logger = logging.getLogger(__name__)

_EPS = 1e-6
"""Floor for dimensions and inertia entries fed into the formulas below."""

_MIN_INFERRED_DIMENSION = 0.001
"""Clamp for primitives inferred from declared renderable parameters."""

_MIN_BOUNDS_HALF_EXTENT = 0.01
"""Clamp for primitives inferred from an axis-aligned bounding box."""

AXIS_INDEX = {"x": 0, "y": 1, "z": 2}


class PrimitiveKind(Enum):
    """Collision primitive shapes understood by the compiler."""

    BOX = "box"
    SPHERE = "sphere"
    CYLINDER = "cylinder"
    PLANE = "plane"
    MESH = "mesh"


@dataclass
class Primitive:
    """Tagged collision/visual primitive.

    Boxes and planes use ``half_extents``; spheres use ``radius``; cylinders use
    ``radius``, ``half_length`` and the local ``axis`` they extend along. Meshes keep
    their file reference and scale and, when bounds are known, ``half_extents`` of
    the scaled bounding box.
    """

    kind: PrimitiveKind
    half_extents: np.ndarray | None = None
    radius: float | None = None
    half_length: float | None = None
    axis: str = "z"
    mesh_file: str | None = None
    mesh_scale: np.ndarray = field(default_factory=lambda: np.ones(3))

    @property
    def length(self) -> float | None:
        """Full cylinder length."""
        if self.half_length is None:
            return None
        return 2.0 * self.half_length

    @classmethod
    def box(cls, size) -> "Primitive":
        """Box from full edge lengths."""
        return cls(
            kind=PrimitiveKind.BOX, half_extents=np.asarray(size, dtype=float) / 2.0
        )

    @classmethod
    def sphere(cls, radius: float) -> "Primitive":
        return cls(kind=PrimitiveKind.SPHERE, radius=float(radius))

    @classmethod
    def cylinder(cls, radius: float, length: float, axis: str = "z") -> "Primitive":
        return cls(
            kind=PrimitiveKind.CYLINDER,
            radius=float(radius),
            half_length=float(length) / 2.0,
            axis=axis,
        )

    @classmethod
    def mesh(cls, filename: str, scale=(1.0, 1.0, 1.0)) -> "Primitive":
        return cls(
            kind=PrimitiveKind.MESH,
            mesh_file=filename,
            mesh_scale=np.asarray(scale, dtype=float),
        )


@dataclass
class RenderGeometry:
    """Renderable geometry as declared by the scene editor.

    ``kind`` is the declared geometry type ("box", "sphere", "cylinder", "plane" or
    anything else). ``parameters`` carries the declared dimensions using the
    editor's parameter names (``width``, ``height``, ``depth``, ``radius``,
    ``radius_top``, ``radius_bottom``). ``bounds`` is the local axis-aligned bounding
    box ``(min, max)`` used when the kind is not recognized.
    """

    kind: str
    parameters: dict = field(default_factory=dict)
    bounds: tuple[np.ndarray, np.ndarray] | None = None


def _clamp_positive(value: float, minimum: float = _EPS) -> float:
    if value is None or not math.isfinite(value):
        return minimum
    return max(minimum, value)


def infer_primitive(renderable: RenderGeometry, world_scale) -> Primitive:
    """Infer a primitive and its world-scaled dimensions from a renderable.

    Scale is applied per axis. Spheres take the largest scale factor, cylinders
    (which extend along local +Y in the editor) take the largest of the x/z factors
    for their radius and the y factor for their height. Unrecognized kinds fall back
    to the scaled bounding box.

    Args:
        renderable: The declared renderable geometry.
        world_scale: World scale [sx, sy, sz] of the renderable's node.

    Returns:
        The inferred primitive. Degenerate dimensions are clamped to a small
        positive epsilon.
    """
    sx, sy, sz = (abs(float(s)) for s in world_scale)
    params = renderable.parameters or {}
    kind = renderable.kind.lower()

    if kind == "box":
        half = np.array(
            [
                max(_MIN_INFERRED_DIMENSION, params.get("width", 1.0) * sx / 2.0),
                max(_MIN_INFERRED_DIMENSION, params.get("height", 1.0) * sy / 2.0),
                max(_MIN_INFERRED_DIMENSION, params.get("depth", 1.0) * sz / 2.0),
            ]
        )
        return Primitive(kind=PrimitiveKind.BOX, half_extents=half)

    if kind == "sphere":
        radius = params.get("radius", 0.5) * max(sx, sy, sz)
        return Primitive.sphere(max(_MIN_INFERRED_DIMENSION, radius))

    if kind == "cylinder":
        radius_top = params.get("radius_top", params.get("radius", 0.5))
        radius_bottom = params.get("radius_bottom", radius_top)
        radius = max(radius_top, radius_bottom) * max(sx, sz)
        height = params.get("height", 1.0) * sy
        return Primitive(
            kind=PrimitiveKind.CYLINDER,
            radius=max(_MIN_INFERRED_DIMENSION, radius),
            half_length=max(_MIN_INFERRED_DIMENSION, height) / 2.0,
            axis="y",
        )

    if kind == "plane":
        half = np.array(
            [
                max(_MIN_INFERRED_DIMENSION, params.get("width", 6.0) * sx / 2.0),
                max(_MIN_INFERRED_DIMENSION, params.get("height", 6.0) * sy / 2.0),
                _MIN_INFERRED_DIMENSION,
            ]
        )
        return Primitive(kind=PrimitiveKind.PLANE, half_extents=half)

    if renderable.bounds is not None:
        lower, upper = renderable.bounds
        size = (np.asarray(upper, dtype=float) - np.asarray(lower, dtype=float)) * [
            sx,
            sy,
            sz,
        ]
    else:
        console_logger.debug(f"Renderable kind '{renderable.kind}' has no bounds")
        size = np.zeros(3)
    half = np.maximum(_MIN_BOUNDS_HALF_EXTENT, size / 2.0)
    return Primitive(kind=PrimitiveKind.BOX, half_extents=half)


def primitive_volume(primitive: Primitive) -> float | None:
    """Closed-form volume of a primitive.

    Returns:
        The volume, 0 for planes and degenerate shapes, or None when the primitive
        lacks the data to compute one (a mesh without known bounds).
    """
    if primitive.kind == PrimitiveKind.SPHERE:
        r = primitive.radius or 0.0
        if r <= 0:
            return 0.0
        return 4.0 / 3.0 * math.pi * r**3

    if primitive.kind == PrimitiveKind.CYLINDER:
        r = primitive.radius or 0.0
        h = primitive.length or 0.0
        if r <= 0 or h <= 0:
            return 0.0
        return math.pi * r * r * h

    if primitive.kind == PrimitiveKind.PLANE:
        return 0.0

    if primitive.half_extents is None:
        return None
    hx, hy, hz = (float(v) for v in primitive.half_extents)
    if hx <= 0 or hy <= 0 or hz <= 0:
        return 0.0
    return 8.0 * hx * hy * hz


def primitive_inertia(primitive: Primitive, mass: float) -> np.ndarray | None:
    """Diagonal inertia of a solid primitive about its own center.

    Uses the standard formulas: sphere 2/5 m r^2; cylinder 1/12 m (3r^2 + h^2) about
    the transverse axes and 1/2 m r^2 about its own axis; box m/3 times the sum of
    the squared half-extent pairs.

    Args:
        primitive: Shape to evaluate.
        mass: Mass in kg.

    Returns:
        ``[ixx, iyy, izz]`` or None for a non-positive mass or a mesh without bounds.
    """
    if mass is None or not math.isfinite(mass) or mass <= 0:
        return None

    if primitive.kind == PrimitiveKind.SPHERE:
        r = _clamp_positive(primitive.radius)
        value = _clamp_positive(0.4 * mass * r * r)
        return np.array([value, value, value])

    if primitive.kind == PrimitiveKind.CYLINDER:
        r = _clamp_positive(primitive.radius)
        h = _clamp_positive(primitive.length)
        transverse = _clamp_positive(mass * (3.0 * r * r + h * h) / 12.0)
        along = _clamp_positive(0.5 * mass * r * r)
        diagonal = np.array([transverse, transverse, transverse])
        diagonal[AXIS_INDEX.get(primitive.axis, 2)] = along
        return diagonal

    if primitive.half_extents is None:
        return None
    hx, hy, hz = (_clamp_positive(float(v)) for v in primitive.half_extents)
    factor = mass / 3.0
    return np.array(
        [
            _clamp_positive(factor * (hy * hy + hz * hz)),
            _clamp_positive(factor * (hx * hx + hz * hz)),
            _clamp_positive(factor * (hx * hx + hy * hy)),
        ]
    )


def classify_proxy_shape(size) -> tuple[PrimitiveKind, int]:
    """Pick a cheap collision proxy for a bounding box.

    Two near-equal dimensions (within 20%) with the third more than 1.6x away
    become a cylinder: a flat disc along the small axis when the two large
    dimensions match, a rod along the large axis when the two small ones match.
    Everything else is a box.

    Args:
        size: Full bounding box dimensions [x, y, z].

    Returns:
        The proxy kind and the axis index the cylinder extends along (1 for boxes).
    """
    dims = [max(_EPS, abs(float(v))) for v in size]
    small, mid, large = sorted(range(3), key=lambda i: dims[i])

    def similar(a: float, b: float) -> bool:
        return abs(a - b) / max(a, b) < 0.2

    if similar(dims[mid], dims[large]) and dims[mid] / dims[small] > 1.6:
        return PrimitiveKind.CYLINDER, small
    if similar(dims[mid], dims[small]) and dims[large] / dims[mid] > 1.6:
        return PrimitiveKind.CYLINDER, large
    return PrimitiveKind.BOX, 1
