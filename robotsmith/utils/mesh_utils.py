"""Mesh bounding volumes and format conversion for collision proxies.

Only bounding-volume extraction is performed here. Exact mesh collision is left to
the physics engine, which receives the mesh bytes unchanged (or re-encoded as STL
when it cannot read the source format).
"""

import io
import logging

from dataclasses import dataclass
from pathlib import PurePosixPath

import numpy as np
import trimesh

console_logger = logging.getLogger(__name__)

# Formats the physics engine reads natively.
ENGINE_MESH_FORMATS = {"stl", "obj", "msh"}


@dataclass
class MeshBounds:
    """Axis-aligned bounds of a mesh in its own frame."""

    size: np.ndarray
    """Full extents along x, y and z."""
    radius: float
    """Radius of the bounding sphere around ``center``."""
    center: np.ndarray
    """Center of the axis-aligned bounding box."""

    def scaled(self, scale) -> "MeshBounds":
        """Bounds after an anisotropic scale, with each factor floored at 1e-6."""
        factors = np.maximum(1e-6, np.abs(np.asarray(scale, dtype=float)))
        return MeshBounds(
            size=self.size * factors,
            radius=self.radius * float(np.max(factors)),
            center=self.center * factors,
        )


def mesh_file_type(key: str) -> str:
    return PurePosixPath(key).suffix.lower().lstrip(".")


def load_mesh_from_bytes(data: bytes, file_type: str) -> trimesh.Trimesh | None:
    """Load mesh bytes into a single trimesh, concatenating scene geometry.

    Args:
        data: Raw file content.
        file_type: Extension understood by trimesh ("stl", "obj", "dae", ...).

    Returns:
        The mesh, or None when it could not be loaded or is empty.
    """
    try:
        mesh = trimesh.load(io.BytesIO(data), file_type=file_type, force="mesh")
    except Exception as e:
        console_logger.warning(f"Failed to load {file_type} mesh: {e}")
        return None
    if not isinstance(mesh, trimesh.Trimesh) or len(mesh.vertices) == 0:
        return None
    return mesh


def compute_mesh_bounds(mesh: trimesh.Trimesh) -> MeshBounds | None:
    """Bounding box size/center and bounding sphere radius of a mesh."""
    lower, upper = mesh.bounds
    size = np.asarray(upper - lower, dtype=float)
    center = np.asarray((upper + lower) / 2.0, dtype=float)
    if not (np.all(np.isfinite(size)) and np.all(np.isfinite(center))):
        return None
    radius = float(np.max(np.linalg.norm(mesh.vertices - center, axis=1)))
    if not np.isfinite(radius):
        radius = float(np.max(size)) * 0.5
    return MeshBounds(size=size, radius=radius, center=center)


def bounds_from_bytes(data: bytes, key: str) -> MeshBounds | None:
    mesh = load_mesh_from_bytes(data, mesh_file_type(key))
    if mesh is None:
        return None
    return compute_mesh_bounds(mesh)


def convert_mesh_to_stl(data: bytes, file_type: str) -> bytes:
    """Re-encode a mesh the engine cannot read (e.g. COLLADA) as binary STL.

    Raises:
        ValueError: If the mesh cannot be loaded.
    """
    mesh = load_mesh_from_bytes(data, file_type)
    if mesh is None:
        raise ValueError(f"Could not load {file_type} mesh for conversion")
    return mesh.export(file_type="stl")
