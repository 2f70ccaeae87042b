"""Asset bundle path handling, mesh reference resolution and xacro support.

An asset bundle maps normalized relative paths ("robot/meshes/base.stl") to raw
file bytes. Robot descriptions reference meshes through ``package://``, ``model://``
and plain relative paths that rarely match the bundle layout exactly, so lookups
go through several candidate spellings before giving up.
"""

import base64
import logging
import posixpath
import re

import lxml.etree as ET
import requests

from robotsmith.utils.mesh_utils import (
    ENGINE_MESH_FORMATS,
    MeshBounds,
    bounds_from_bytes,
    convert_mesh_to_stl,
    mesh_file_type,
)

console_logger = logging.getLogger(__name__)

MESH_REFERENCE_ATTRIBUTES = ("filename", "uri", "url")

_SCHEME = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*)://(.*)$")
_ROS_FIND = re.compile(r"\$\(find\s+([^)\s]+)\)")
_PACKAGE_SCHEMES = {"package", "model", "gazebo", "ros"}
_REMOTE_PREFIXES = ("http://", "https://", "data:", "blob:")

_XACRO_NAMESPACE = re.compile(r'\sxmlns:xacro="[^"]*"')
_XACRO_SELF_CLOSING = re.compile(r"<\s*xacro:[^>]*/\s*>")
_XACRO_OPEN = re.compile(r"<\s*xacro:[^>]*>")
_XACRO_CLOSE = re.compile(r"</\s*xacro:[^>]*>")
_XACRO_ANY = re.compile(r"<\s*/?\s*xacro:", re.IGNORECASE)

_FILE_ATTRIBUTE = re.compile(r'(\bfile\s*=\s*")([^"]+)(")')


def norm_path(path: str) -> str:
    """Normalize a bundle path: forward slashes, no leading ``./`` or ``/``.

    Example:
        >>> norm_path("./robot\\\\meshes/../base.stl")
        'robot/base.stl'
    """
    text = (path or "").replace("\\", "/").strip()
    parts = []
    for part in text.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if parts:
                parts.pop()
            continue
        parts.append(part)
    return "/".join(parts)


def dirname(path: str) -> str:
    """Directory of a bundle path with a trailing slash, or "" at the top level."""
    normalized = norm_path(path)
    index = normalized.rfind("/")
    return normalized[: index + 1] if index >= 0 else ""


def basename(path: str) -> str:
    return norm_path(path).rsplit("/", 1)[-1]


def relative_path(from_dir: str, target: str) -> str:
    """Path of ``target`` relative to the directory ``from_dir``."""
    start = norm_path(from_dir) or "."
    return posixpath.relpath(norm_path(target), start)


def _reference_candidates(reference: str) -> list[str]:
    text = _ROS_FIND.sub(lambda match: match.group(1), reference.strip())
    match = _SCHEME.match(text)
    if match is None:
        return [text]
    scheme, rest = match.group(1).lower(), match.group(2)
    if scheme == "file":
        return [rest, rest.lstrip("/")]
    stripped = norm_path(rest)
    if scheme in _PACKAGE_SCHEMES:
        # package://pkg/meshes/x.stl may be bundled with or without the package dir.
        without_package = stripped.split("/", 1)[1] if "/" in stripped else stripped
        return [stripped, without_package]
    return [stripped]


def resolve_asset_key(assets, reference: str, base_key: str | None = None) -> str | None:
    """Find the bundle key a mesh reference points at.

    Candidates are the reference with ``$(find pkg)`` expanded and URI schemes
    stripped, each also tried relative to the directory of ``base_key``. Each
    candidate is matched exactly, then as a path suffix, then by file name.

    Args:
        assets: Bundle keys (a mapping or any iterable of keys).
        reference: Reference as written in the robot description.
        base_key: Key of the referencing document.

    Returns:
        The matching key, or None for remote references and unmatched paths.
    """
    if not reference:
        return None
    lowered = reference.strip().lower()
    if lowered.startswith(_REMOTE_PREFIXES):
        return None

    keys = list(assets)
    candidates = []
    base_dir = dirname(base_key) if base_key else ""
    for candidate in _reference_candidates(reference):
        candidate = norm_path(candidate)
        if not candidate:
            continue
        candidates.append(candidate)
        if base_dir:
            candidates.append(norm_path(base_dir + candidate))

    normalized = {norm_path(key): key for key in keys}
    for candidate in candidates:
        if candidate in normalized:
            return normalized[candidate]
    for candidate in candidates:
        suffix = "/" + candidate
        for key, original in normalized.items():
            if key.endswith(suffix):
                return original
    for candidate in candidates:
        name = basename(candidate)
        for key, original in normalized.items():
            if basename(key) == name:
                return original
    return None


def find_mesh_refs(xml: str, attributes=MESH_REFERENCE_ATTRIBUTES) -> list[str]:
    """Mesh references of ``<mesh>`` elements, in document order and de-duplicated.

    Uses a lenient regular expression so documents that are not yet well-formed
    (e.g. unexpanded xacro) still yield their references.
    """
    pattern = re.compile(
        r"<\s*mesh\b[^>]*?\b(?:%s)\s*=\s*[\"']([^\"']+)[\"']" % "|".join(attributes),
        re.IGNORECASE,
    )
    refs = []
    for match in pattern.finditer(xml or ""):
        reference = match.group(1).strip()
        if reference and reference not in refs:
            refs.append(reference)
    return refs


def has_xacro(text: str) -> bool:
    return bool(_XACRO_ANY.search(text or ""))


def strip_xacro_tags(text: str) -> str:
    """Remove xacro namespace declarations and tags, keeping their content."""
    text = _XACRO_NAMESPACE.sub("", text)
    text = _XACRO_SELF_CLOSING.sub("", text)
    text = _XACRO_OPEN.sub("", text)
    return _XACRO_CLOSE.sub("", text)


def expand_xacro(
    endpoint: str,
    urdf_key: str | None,
    urdf: str,
    assets: dict[str, bytes],
    timeout: float = 30.0,
) -> str:
    """Expand a xacro document through a remote expansion service.

    The service receives the document and every bundled file (base64 encoded) and
    answers ``{"urdf": "<expanded text>"}``.

    Raises:
        RuntimeError: If the service fails or returns no expanded document.
        requests.RequestException: On connection errors.
    """
    payload = {
        "urdfKey": urdf_key,
        "urdf": urdf,
        "files": {
            key: base64.b64encode(data).decode("ascii") for key, data in assets.items()
        },
    }
    console_logger.info(f"Expanding xacro '{urdf_key or 'inline'}' via {endpoint}")
    response = requests.post(endpoint, json=payload, timeout=timeout)
    if response.status_code != 200:
        raise RuntimeError(
            f"Xacro endpoint returned {response.status_code}: {response.text[:200]}"
        )
    expanded = response.json().get("urdf")
    if not isinstance(expanded, str):
        raise RuntimeError("Xacro endpoint did not return expanded URDF.")
    return expanded


def compute_bounds_for_refs(
    assets: dict[str, bytes], refs: list[str], base_key: str | None = None
) -> dict[str, MeshBounds]:
    """Bounds of each resolvable mesh reference, keyed by bundle key."""
    bounds = {}
    for reference in refs:
        key = resolve_asset_key(assets, reference, base_key)
        if key is None or key in bounds:
            continue
        mesh_bounds = bounds_from_bytes(assets[key], key)
        if mesh_bounds is not None:
            bounds[key] = mesh_bounds
    return bounds


def convert_meshes_for_engine(
    assets: dict[str, bytes], refs: list[str], base_key: str | None = None
) -> tuple[dict[str, bytes], dict[str, str], list[str], list[str]]:
    """Collect the mesh files the engine needs for a set of references.

    Formats the engine cannot read are replaced by a sibling ``.stl`` with the same
    stem when the bundle has one, and converted to STL otherwise.

    Returns:
        ``(files, remap, missing, warnings)``: engine files keyed by bundle path,
        the bundle key each reference resolves to, references that could not be
        resolved or converted, and conversion warnings.
    """
    files: dict[str, bytes] = {}
    remap: dict[str, str] = {}
    missing: list[str] = []
    warnings: list[str] = []
    for reference in refs:
        key = resolve_asset_key(assets, reference, base_key)
        if key is None:
            missing.append(reference)
            continue
        file_type = mesh_file_type(key)
        if file_type in ENGINE_MESH_FORMATS:
            files[key] = assets[key]
            remap[reference] = key
            continue

        stl_key = key[: len(key) - len(file_type)] + "stl" if file_type else key + ".stl"
        if stl_key in assets:
            files[stl_key] = assets[stl_key]
            remap[reference] = stl_key
            continue
        try:
            files[stl_key] = convert_mesh_to_stl(assets[key], file_type)
        except ValueError as e:
            message = f"Failed to convert {key}: {e}"
            console_logger.warning(message)
            warnings.append(message)
            missing.append(reference)
            continue
        remap[reference] = stl_key
        message = f"Converted {key} -> {stl_key} for MuJoCo."
        console_logger.info(message)
        warnings.append(message)
    return files, remap, missing, warnings


def rewrite_asset_paths(xml: str, remap: dict[str, str], base_key: str) -> str:
    """Point ``file`` attributes of an MJCF document at engine asset keys.

    Each attribute whose reference appears in ``remap`` is rewritten to the remapped
    key relative to the directory of ``base_key``. Unparsable documents are
    rewritten textually.
    """
    base_dir = dirname(base_key)

    def target(reference: str) -> str | None:
        key = remap.get(reference)
        if key is None:
            return None
        return relative_path(base_dir, key) if base_dir else key

    try:
        root = ET.fromstring(xml.encode("utf-8"))
    except ET.XMLSyntaxError:
        return _FILE_ATTRIBUTE.sub(
            lambda m: m.group(1) + (target(m.group(2)) or m.group(2)) + m.group(3), xml
        )
    for element in root.iter():
        reference = element.get("file")
        if reference is None:
            continue
        rewritten = target(reference)
        if rewritten is not None:
            element.set("file", rewritten)
    return ET.tostring(root, encoding="unicode")
