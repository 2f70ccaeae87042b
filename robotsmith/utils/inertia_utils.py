"""Inertia tensor validation, composition and principal-axis decomposition.

Author-supplied inertia is frequently missing or physically inconsistent. This
module provides the checks used to decide whether authored values are trusted,
the composite-body estimate used when they are not, and the principal-axis box
used to visualize a tensor.
"""

import logging
import math

from dataclasses import dataclass, field

import numpy as np

from scipy.spatial.transform import Rotation

from robotsmith.utils.geometry_utils import (
    Primitive,
    primitive_inertia,
    primitive_volume,
)

console_logger = logging.getLogger(__name__)

# Minimum mass/volume for a composite body to be considered non-empty.
_COMPOSITE_EPSILON = 1e-9

# Floor for principal moments and box size terms.
_MOMENT_EPSILON = 1e-9


@dataclass
class InertiaTensor:
    """Symmetric 3x3 inertia tensor stored as its six independent entries.

    Off-diagonal values are matrix entries, i.e. ``ixy`` is ``I[0, 1]``.
    """

    ixx: float
    iyy: float
    izz: float
    ixy: float = 0.0
    ixz: float = 0.0
    iyz: float = 0.0

    @classmethod
    def from_diagonal(cls, diagonal) -> "InertiaTensor":
        return cls(float(diagonal[0]), float(diagonal[1]), float(diagonal[2]))

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> "InertiaTensor":
        return cls(
            ixx=float(matrix[0, 0]),
            iyy=float(matrix[1, 1]),
            izz=float(matrix[2, 2]),
            ixy=float(matrix[0, 1]),
            ixz=float(matrix[0, 2]),
            iyz=float(matrix[1, 2]),
        )

    def to_matrix(self) -> np.ndarray:
        return np.array(
            [
                [self.ixx, self.ixy, self.ixz],
                [self.ixy, self.iyy, self.iyz],
                [self.ixz, self.iyz, self.izz],
            ],
            dtype=float,
        )

    @property
    def diagonal(self) -> np.ndarray:
        return np.array([self.ixx, self.iyy, self.izz], dtype=float)

    @property
    def has_off_diagonal(self) -> bool:
        return abs(self.ixy) > 0 or abs(self.ixz) > 0 or abs(self.iyz) > 0

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.to_matrix())))


@dataclass
class InertiaPart:
    """One primitive of a composite body, posed in the body frame."""

    primitive: Primitive
    """Shape of the part."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    """Part center in the body frame."""

    rotation: Rotation = field(default_factory=Rotation.identity)
    """Part orientation in the body frame."""


@dataclass
class CompositeInertia:
    """Mass properties of a composite body."""

    mass: float
    com: np.ndarray
    """Center of mass in the body frame."""
    tensor: InertiaTensor
    """Inertia about the center of mass, in body-frame axes."""


@dataclass
class InertiaBox:
    """Solid box with the same principal moments as an inertia tensor."""

    size: np.ndarray
    """Full edge lengths along the principal axes."""
    rotation: Rotation
    """Rotation whose columns are the principal axes (descending moment order)."""
    moments: np.ndarray
    """Principal moments sorted in descending order."""

    @property
    def half_extents(self) -> np.ndarray:
        return self.size / 2.0


def validate_inertia(diagonal) -> bool:
    """Check positivity and the triangle inequality of diagonal inertia values.

    Args:
        diagonal: ``[ixx, iyy, izz]``; None is treated as invalid.

    Returns:
        True when every entry is finite and positive and no entry exceeds the sum
        of the other two.
    """
    if diagonal is None:
        return False
    x, y, z = (float(v) for v in diagonal)
    if not all(math.isfinite(v) for v in (x, y, z)):
        return False
    if x <= 0 or y <= 0 or z <= 0:
        return False
    return not (x > y + z or y > x + z or z > x + y)


def is_positive_definite(tensor: InertiaTensor) -> bool:
    """Positive-definiteness via leading principal minors and the determinant."""
    if not tensor.is_finite():
        return False
    ixx, iyy, izz = tensor.ixx, tensor.iyy, tensor.izz
    ixy, ixz, iyz = tensor.ixy, tensor.ixz, tensor.iyz
    if not (ixx > 0 and iyy > 0 and izz > 0):
        return False
    if ixx * iyy - ixy * ixy <= 0:
        return False
    determinant = (
        ixx * (iyy * izz - iyz * iyz)
        - ixy * (ixy * izz - iyz * ixz)
        + ixz * (ixy * iyz - iyy * ixz)
    )
    return determinant > 0


def rotate_inertia(matrix: np.ndarray, rotation: Rotation) -> np.ndarray:
    """Express an inertia matrix in a rotated frame: ``R @ I @ R.T``."""
    r = rotation.as_matrix()
    return r @ matrix @ r.T


def apply_parallel_axis(matrix: np.ndarray, mass: float, offset) -> np.ndarray:
    """Shift an inertia matrix from the part center by ``offset``.

    Implements ``I' = I + m (|d|^2 Id - d d^T)``.
    """
    if mass <= 0:
        return matrix
    d = np.asarray(offset, dtype=float)
    return matrix + mass * (np.dot(d, d) * np.eye(3) - np.outer(d, d))


def compose_body_inertia(
    parts: list[InertiaPart],
    mass: float | None = None,
    density: float | None = None,
) -> CompositeInertia | None:
    """Combine the inertia of a body built from several primitives.

    Each part gets either ``density * volume`` (when ``density`` is given) or a
    share of ``mass`` proportional to its volume. Part tensors are rotated into the
    body frame, shifted to the composite center of mass and summed.

    Args:
        parts: The body's primitives with their body-frame poses.
        mass: Total body mass, used when no density is given.
        density: Material density in kg/m^3.

    Returns:
        The composite mass properties, or None when there is no usable volume or
        mass.
    """
    use_density = density is not None
    if use_density and not math.isfinite(density):
        return None
    if not parts:
        return None

    volumes = [max(0.0, primitive_volume(part.primitive) or 0.0) for part in parts]
    total_volume = sum(volumes)
    if total_volume <= _COMPOSITE_EPSILON and not use_density:
        return None

    total_mass = 0.0 if use_density else max(0.0, mass or 0.0)
    if not use_density and total_mass <= _COMPOSITE_EPSILON:
        return None

    part_masses = []
    weighted_position = np.zeros(3)
    for part, volume in zip(parts, volumes):
        if use_density:
            part_mass = max(0.0, density * volume)
            total_mass += part_mass
        elif total_volume > _COMPOSITE_EPSILON:
            part_mass = total_mass * volume / total_volume
        else:
            part_mass = 0.0
        part_masses.append(part_mass)
        if part_mass > 0:
            weighted_position += part_mass * np.asarray(part.position, dtype=float)

    if total_mass <= _COMPOSITE_EPSILON:
        return None
    com = weighted_position / total_mass

    matrix = np.zeros((3, 3))
    for part, part_mass in zip(parts, part_masses):
        if part_mass <= 0:
            continue
        diagonal = primitive_inertia(part.primitive, part_mass)
        if diagonal is None:
            continue
        part_matrix = rotate_inertia(np.diag(diagonal), part.rotation)
        offset = np.asarray(part.position, dtype=float) - com
        matrix += apply_parallel_axis(part_matrix, part_mass, offset)

    tensor = InertiaTensor.from_matrix(matrix)
    tensor.ixx = max(_COMPOSITE_EPSILON, tensor.ixx)
    tensor.iyy = max(_COMPOSITE_EPSILON, tensor.iyy)
    tensor.izz = max(_COMPOSITE_EPSILON, tensor.izz)
    return CompositeInertia(mass=total_mass, com=com, tensor=tensor)


def jacobi_eigen_decomposition(
    matrix: np.ndarray, max_rotations: int = 32, eps: float = 1e-10
) -> tuple[np.ndarray, np.ndarray]:
    """Eigen-decomposition of a symmetric 3x3 matrix by classical Jacobi rotations.

    Each rotation annihilates the currently largest off-diagonal entry, for at
    most ``max_rotations`` rotations. Eigenvalues are sorted in
    descending order and the eigenvector basis is made right-handed by flipping the
    third axis when ``(v0 x v1) . v2 < 0``.

    Returns:
        ``(values, vectors)`` where ``vectors[:, i]`` is the eigenvector of
        ``values[i]``.
    """
    a = np.array(matrix, dtype=float)
    v = np.eye(3)
    pairs = [(0, 1), (0, 2), (1, 2)]

    for _ in range(max_rotations):
        p, q = max(pairs, key=lambda pq: abs(a[pq[0], pq[1]]))
        if abs(a[p, q]) < eps:
            break
        phi = 0.5 * math.atan2(2.0 * a[p, q], a[q, q] - a[p, p])
        c, s = math.cos(phi), math.sin(phi)
        rotation = np.eye(3)
        rotation[p, p] = c
        rotation[q, q] = c
        rotation[p, q] = s
        rotation[q, p] = -s
        a = rotation.T @ a @ rotation
        a[p, q] = 0.0
        a[q, p] = 0.0
        v = v @ rotation

    values = np.diag(a).copy()
    order = np.argsort(-values, kind="stable")
    values = values[order]
    vectors = v[:, order]
    if np.dot(np.cross(vectors[:, 0], vectors[:, 1]), vectors[:, 2]) < 0:
        vectors[:, 2] = -vectors[:, 2]
    return values, vectors


def principal_axis_box(
    tensor: InertiaTensor,
    mass: float,
    min_size: float = 0.01,
    mass_scale: str = "none",
) -> InertiaBox | None:
    """Solid box whose principal moments match ``tensor``. Visualization only.

    The box edge along principal axis 1 follows from
    ``I1 = m/12 (b^2 + c^2)``, so ``a^2 = 6/m (I2 + I3 - I1)``.

    Args:
        tensor: Inertia tensor about the center of mass.
        mass: Body mass; non-positive or non-finite values are replaced by 1.
        min_size: Minimum edge length.
        mass_scale: Optional extra display scaling, "none", "volume" (cube root of
            the mass) or "linear" (the mass).

    Returns:
        The equivalent box, or None for non-finite or all-zero tensors.
    """
    if not tensor.is_finite():
        return None
    matrix = tensor.to_matrix()
    if np.all(np.abs(matrix) < 1e-12):
        return None
    safe_mass = mass if mass is not None and math.isfinite(mass) and mass > 0 else 1.0

    values, vectors = jacobi_eigen_decomposition(matrix)
    i1, i2, i3 = (max(_MOMENT_EPSILON, abs(v)) for v in values)
    squared = (6.0 / safe_mass) * np.array(
        [
            max(_MOMENT_EPSILON, i2 + i3 - i1),
            max(_MOMENT_EPSILON, i1 + i3 - i2),
            max(_MOMENT_EPSILON, i1 + i2 - i3),
        ]
    )
    size = np.maximum(min_size, np.sqrt(squared))

    if mass_scale == "linear":
        size = size * max(1e-6, safe_mass)
    elif mass_scale == "volume":
        size = size * np.cbrt(max(1e-6, safe_mass))

    return InertiaBox(size=size, rotation=Rotation.from_matrix(vectors), moments=values)


def compute_com_radius(mass: float, base: float = 0.05, minimum: float = 0.01) -> float:
    """Display radius of a center-of-mass marker, growing with the cube root of mass."""
    if mass is None or not math.isfinite(mass) or mass <= 0:
        return minimum
    return max(minimum, base * float(np.cbrt(max(1e-6, mass))))
