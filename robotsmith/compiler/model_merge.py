"""Merging compiled model fragments into one engine model.

Each imported robot compiles to its own MJCF document. Before loading, the
documents are concatenated section by section; editor-authored bodies and the
pointer cursor are spliced into the result in the same way.
"""

import logging

import lxml.etree as ET

from omegaconf import DictConfig

from robotsmith.compiler.mjcf_compiler import CompiledModel
from robotsmith.utils.naming import NameMap

console_logger = logging.getLogger(__name__)

MERGED_MODEL_NAME = "scene"
MERGED_FILENAME = "scene.mjcf"

POINTER_CURSOR_BODY = "__pointer_cursor_body"

# Concatenated in this order after the header elements.
_MERGED_SECTIONS = ("asset", "worldbody", "equality", "actuator")


def _parse(xml: str) -> ET._Element:
    parser = ET.XMLParser(remove_blank_text=True)
    return ET.fromstring(xml.encode("utf-8"), parser=parser)


def _default_header(cfg: DictConfig) -> tuple[ET._Element, ET._Element]:
    section = cfg.compiler
    compiler = ET.Element("compiler", angle=section.angle, inertiafromgeom="false")
    option = ET.Element(
        "option",
        gravity=" ".join(f"{float(g):g}" for g in section.gravity),
        integrator=section.integrator,
        timestep=f"{float(section.timestep):g}",
        iterations=str(int(section.iterations)),
    )
    return compiler, option


def merge_model_fragments(fragments: list[CompiledModel], cfg: DictConfig) -> CompiledModel | None:
    """Merge compiled fragments into one document.

    The first fragment's ``<compiler>`` and ``<option>`` win (defaults from ``cfg``
    otherwise). Children of ``asset``, ``worldbody``, ``equality`` and ``actuator``
    are concatenated in fragment order. Files are merged with the last writer
    winning and name maps are unioned.

    Returns:
        The merged model, or None when there are no non-empty fragments.
    """
    fragments = [fragment for fragment in fragments if not fragment.is_empty]
    if not fragments:
        return None

    compiler = None
    option = None
    sections: dict[str, list[ET._Element]] = {name: [] for name in _MERGED_SECTIONS}
    assets: dict[str, bytes] = {}
    name_map = NameMap()
    warnings: list[str] = []
    bodies = []
    mesh_files: list[str] = []

    for fragment in fragments:
        root = _parse(fragment.xml)
        if compiler is None:
            compiler = root.find("compiler")
        if option is None:
            option = root.find("option")
        for name in _MERGED_SECTIONS:
            for element in root.findall(name):
                sections[name].extend(list(element))
        assets.update(fragment.assets)
        name_map.update(fragment.name_map)
        warnings.extend(fragment.warnings)
        bodies.extend(fragment.bodies)
        mesh_files.extend(f for f in fragment.mesh_files if f not in mesh_files)

    default_compiler, default_option = _default_header(cfg)
    merged = ET.Element("mujoco", model=MERGED_MODEL_NAME)
    merged.append(compiler if compiler is not None else default_compiler)
    merged.append(option if option is not None else default_option)
    for name in _MERGED_SECTIONS:
        children = sections[name]
        if not children and name != "worldbody":
            continue
        section = ET.SubElement(merged, name)
        section.extend(children)

    console_logger.debug(
        f"Merged {len(fragments)} model fragments "
        f"({len(sections['worldbody'])} top-level bodies, {len(assets)} files)"
    )
    return CompiledModel(
        xml=ET.tostring(merged, pretty_print=True, encoding="unicode"),
        name_map=name_map,
        warnings=warnings,
        bodies=bodies,
        assets=assets,
        mesh_files=mesh_files,
        filename=MERGED_FILENAME,
    )


def _ensure_section(root: ET._Element, name: str) -> ET._Element:
    section = root.find(name)
    if section is None:
        section = ET.SubElement(root, name)
    return section


def splice_extra_bodies(xml: str, extra: CompiledModel) -> str:
    """Append the bodies, assets and actuators of ``extra`` to an MJCF document."""
    if extra.is_empty:
        return xml
    root = _parse(xml)
    extra_root = _parse(extra.xml)
    for name in ("asset", "worldbody", "equality", "actuator"):
        children = [child for section in extra_root.findall(name) for child in section]
        if children:
            _ensure_section(root, name).extend(children)
    return ET.tostring(root, pretty_print=True, encoding="unicode")


def append_pointer_cursor(xml: str, cfg: DictConfig) -> str:
    """Add the mocap body used as the pointer cursor, parked far below the scene."""
    pointer = cfg.runtime.pointer
    root = _parse(xml)
    worldbody = _ensure_section(root, "worldbody")
    if worldbody.find(f"body[@name='{POINTER_CURSOR_BODY}']") is not None:
        return xml
    body = ET.SubElement(
        worldbody,
        "body",
        name=POINTER_CURSOR_BODY,
        mocap="true",
        pos=f"0 {float(pointer.park_y):.3f} 0",
    )
    ET.SubElement(
        body,
        "geom",
        name=f"{POINTER_CURSOR_BODY}_geom",
        type="sphere",
        size=f"{float(pointer.cursor_radius):.4f}",
        density="1",
        contype="8",
        conaffinity="65535",
        friction="0.001 0.0001 0.0001",
        solref="0.002 1.2",
        solimp="0.95 0.995 0.0001",
        rgba="1 0.3 0.3 0.15",
    )
    return ET.tostring(root, pretty_print=True, encoding="unicode")
