"""MJCF formatting and rigid-transform utilities.

Quaternions are handled in MuJoCo's scalar-first ``wxyz`` order throughout the
package. scipy's ``Rotation`` uses scalar-last order, so every conversion goes
through the helpers in this module.
"""

import math

import numpy as np

from scipy.spatial.transform import Rotation

IDENTITY_QUATERNION = np.array([1.0, 0.0, 0.0, 0.0])


def parse_vector(text: str | None, fallback: list[float]) -> list[float]:
    """Parse a whitespace separated vector, falling back per component.

    Missing or non-numeric components take the corresponding fallback value, which
    mirrors how lenient robot-description parsers treat malformed attributes.

    Example:
        >>> parse_vector("1 nan 3", [0.0, 0.0, 0.0])
        [1.0, 0.0, 3.0]
    """
    if not text:
        return list(fallback)
    parts = text.strip().split()
    values = []
    for i, default in enumerate(fallback):
        try:
            value = float(parts[i])
        except (IndexError, ValueError):
            value = default
        values.append(value if math.isfinite(value) else default)
    return values


def parse_float(text: str | None, fallback: float | None = None) -> float | None:
    """Parse a single float attribute, returning ``fallback`` when invalid."""
    if text is None:
        return fallback
    try:
        value = float(text)
    except ValueError:
        return fallback
    return value if math.isfinite(value) else fallback


def format_vector(values, digits: int = 6) -> str:
    """Format a vector as an MJCF attribute string. Non-finite entries become 0."""
    return " ".join(
        f"{(float(v) if math.isfinite(float(v)) else 0.0):.{digits}f}" for v in values
    )


def format_quaternion(quaternion, digits: int = 6) -> str:
    """Format a ``wxyz`` quaternion, replacing non-finite entries with identity."""
    formatted = []
    for i, value in enumerate(quaternion):
        value = float(value)
        if not math.isfinite(value):
            value = float(IDENTITY_QUATERNION[i])
        formatted.append(f"{value:.{digits}f}")
    return " ".join(formatted)


def rotation_to_quaternion(rotation: Rotation) -> np.ndarray:
    """Convert a scipy rotation to a ``wxyz`` quaternion."""
    x, y, z, w = rotation.as_quat()
    return np.array([w, x, y, z])


def quaternion_to_rotation(quaternion) -> Rotation:
    """Convert a ``wxyz`` quaternion to a scipy rotation.

    Degenerate quaternions (zero norm or non-finite) map to the identity.
    """
    q = np.asarray(quaternion, dtype=float)
    norm = np.linalg.norm(q)
    if not np.all(np.isfinite(q)) or norm < 1e-12:
        return Rotation.identity()
    w, x, y, z = q / norm
    return Rotation.from_quat([x, y, z, w])


def rpy_to_quaternion(rpy) -> np.ndarray:
    """Convert URDF roll/pitch/yaw (fixed X-Y-Z axes) to a ``wxyz`` quaternion."""
    return rotation_to_quaternion(Rotation.from_euler("xyz", list(rpy)))


def axis_angle_quaternion(axis, angle: float) -> np.ndarray:
    """Quaternion (``wxyz``) rotating ``angle`` radians about ``axis``."""
    axis = np.asarray(axis, dtype=float)
    axis = axis / np.linalg.norm(axis)
    return rotation_to_quaternion(Rotation.from_rotvec(axis * angle))


def quaternion_multiply(a, b) -> np.ndarray:
    """Hamilton product ``a * b`` of two ``wxyz`` quaternions."""
    return rotation_to_quaternion(quaternion_to_rotation(a) * quaternion_to_rotation(b))


def compose_transform(position, quaternion, scale=None) -> np.ndarray:
    """Build a 4x4 homogeneous transform from position, ``wxyz`` rotation and scale."""
    matrix = np.eye(4)
    rotation = quaternion_to_rotation(quaternion).as_matrix()
    if scale is not None:
        rotation = rotation @ np.diag(np.asarray(scale, dtype=float))
    matrix[:3, :3] = rotation
    matrix[:3, 3] = np.asarray(position, dtype=float)
    return matrix


def decompose_transform(matrix: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split a 4x4 transform into position, ``wxyz`` quaternion and scale.

    A negative determinant is attributed to the x scale, matching the convention
    of common scene-graph libraries.
    """
    position = np.array(matrix[:3, 3], dtype=float)
    basis = np.array(matrix[:3, :3], dtype=float)
    scale = np.linalg.norm(basis, axis=0)
    if np.linalg.det(basis) < 0:
        scale[0] = -scale[0]
    safe_scale = np.where(np.abs(scale) < 1e-12, 1.0, scale)
    rotation = Rotation.from_matrix(basis / safe_scale)
    return position, rotation_to_quaternion(rotation), scale


def invert_transform(matrix: np.ndarray) -> np.ndarray:
    """Invert a 4x4 homogeneous transform."""
    return np.linalg.inv(matrix)
