"""Turn an imported robot description into an engine-ready model source.

A request carries the asset bundle of one imported robot plus its import flags.
URDF documents (inline or bundled) are expanded, their meshes resolved, converted
or replaced by proxies, and compiled. A bundled ``.xml``/``.mjcf`` document is used
as-is after its mesh paths are rewritten. Without either, the scene falls back to
the generated model.
"""

import logging

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath

import requests

from omegaconf import DictConfig

from robotsmith.compiler.errors import AssetError, StructuralError
from robotsmith.compiler.mesh_assets import (
    compute_bounds_for_refs,
    convert_meshes_for_engine,
    dirname,
    expand_xacro,
    find_mesh_refs,
    has_xacro,
    norm_path,
    relative_path,
    resolve_asset_key,
    rewrite_asset_paths,
    strip_xacro_tags,
)
from robotsmith.compiler.mjcf_compiler import (
    CollisionMode,
    CompiledModel,
    CompileOptions,
    compile_urdf,
)
from robotsmith.model.kinematic_tree import Pose
from robotsmith.utils.logging import WarningCollector
from robotsmith.utils.naming import NameMap

console_logger = logging.getLogger(__name__)

INLINE_FILENAME = "inline.mjcf"


class SourceKind(Enum):
    """Where the engine model comes from."""

    GENERATED = "generated"
    """Compiled from the authored scene graph."""
    MJCF = "mjcf"
    """Compiled or bundled robot description."""


@dataclass
class ModelSourceRequest:
    """An imported robot and everything needed to build its model."""

    assets: dict[str, bytes] = field(default_factory=dict)
    """Bundled files keyed by relative path."""
    urdf_key: str | None = None
    urdf_source: str | None = None
    """Inline URDF text; wins over ``urdf_key``."""
    name_prefix: str = ""
    floating_base: bool | None = None
    first_link_is_world_reference: bool | None = None
    self_collision: bool | None = None
    collision_mode: str | None = None
    root_transform: Pose | None = None
    geom_friction_by_body: dict[str, float] = field(default_factory=dict)


@dataclass
class ModelSource:
    kind: SourceKind
    filename: str | None = None
    content: str | None = None
    files: dict[str, bytes] = field(default_factory=dict)
    """Engine files keyed by the path the document references them by."""
    name_map: NameMap = field(default_factory=NameMap)

    @classmethod
    def generated(cls) -> "ModelSource":
        return cls(kind=SourceKind.GENERATED)

    def to_compiled_model(self) -> CompiledModel:
        """View an MJCF source as a compiled fragment for merging."""
        return CompiledModel(
            xml=self.content or "",
            name_map=self.name_map,
            assets=dict(self.files),
            filename=self.filename,
        )


@dataclass
class ModelBuildResult:
    source: ModelSource
    warnings: list[str] = field(default_factory=list)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _resolve_collision_mode(
    request: ModelSourceRequest, cfg: DictConfig, has_mesh_refs: bool
) -> tuple[CollisionMode, bool]:
    """Collision mode and whether it was demanded rather than inferred."""
    # The config value already reflects the environment override.
    for value in (request.collision_mode, cfg.model_source.collision_mode):
        mode = CollisionMode.parse(value)
        if mode is not None:
            return mode, True
    return (CollisionMode.MESH if has_mesh_refs else CollisionMode.SPHERE), False


def _flag(value: bool | None, default) -> bool:
    return bool(default) if value is None else bool(value)


def _load_urdf_text(
    request: ModelSourceRequest, cfg: DictConfig, warn: WarningCollector
) -> str:
    if request.urdf_source is not None:
        text = request.urdf_source
    else:
        text = _decode(request.assets[request.urdf_key])
    if not has_xacro(text):
        return text

    endpoint = cfg.model_source.xacro_endpoint
    if endpoint:
        try:
            return expand_xacro(
                endpoint,
                request.urdf_key,
                text,
                request.assets,
                timeout=float(cfg.model_source.xacro_timeout),
            )
        except (RuntimeError, requests.RequestException, ValueError) as e:
            warn(f"Xacro expansion failed ({e}); stripping xacro tags.")
    else:
        warn("Xacro detected but no expansion endpoint is configured; stripping xacro tags.")
    return strip_xacro_tags(text)


def _build_from_urdf(
    request: ModelSourceRequest, cfg: DictConfig, warn: WarningCollector
) -> ModelSource:
    urdf = _load_urdf_text(request, cfg, warn)
    base_key = request.urdf_key
    refs = find_mesh_refs(urdf)
    mode, demanded = _resolve_collision_mode(request, cfg, bool(refs))

    files: dict[str, bytes] = {}
    remap: dict[str, str] = {}
    bounds = {}
    if refs and mode == CollisionMode.MESH:
        files, remap, missing, conversion_warnings = convert_meshes_for_engine(
            request.assets, refs, base_key
        )
        warn.extend(conversion_warnings)
        if missing:
            if demanded:
                raise AssetError(
                    f"Missing mesh files referenced by URDF: {', '.join(missing)}",
                    missing=missing,
                )
            warn("Missing mesh files; falling back to sphere collisions.")
            mode = CollisionMode.SPHERE
            files, remap = {}, {}
    if refs and mode != CollisionMode.MESH:
        bounds = compute_bounds_for_refs(request.assets, refs, base_key)

    def mesh_lookup(reference: str) -> str | None:
        if reference in remap:
            return remap[reference]
        return resolve_asset_key(request.assets, reference, base_key)

    source_cfg = cfg.model_source
    options = CompileOptions.from_config(
        cfg,
        name_prefix=request.name_prefix,
        floating_base=_flag(request.floating_base, source_cfg.floating_base),
        first_link_is_world_reference=_flag(
            request.first_link_is_world_reference,
            source_cfg.first_link_is_world_reference,
        ),
        self_collision=_flag(request.self_collision, source_cfg.self_collision),
        collision_mode=mode,
        require_meshes=mode == CollisionMode.MESH and demanded,
        force_diagonal_inertia=bool(source_cfg.force_diagonal_inertia),
        root_transform=request.root_transform,
        geom_friction_by_body=dict(request.geom_friction_by_body),
        mesh_lookup=mesh_lookup,
        mesh_bounds=bounds,
        # Xacro was handled above.
        warn_on_xacro=False,
    )
    compiled = compile_urdf(urdf, options, warn)
    if compiled.is_empty:
        raise StructuralError(
            f"Could not compile robot description '{base_key or 'inline'}'.",
            warnings=warn.messages,
        )

    if base_key:
        filename = str(PurePosixPath(norm_path(base_key)).with_suffix(".mjcf"))
    else:
        filename = INLINE_FILENAME
    referenced = {key: files[key] for key in compiled.mesh_files if key in files}
    return ModelSource(
        kind=SourceKind.MJCF,
        filename=filename,
        content=compiled.xml,
        files=referenced,
        name_map=compiled.name_map,
    )


def _build_from_mjcf(request: ModelSourceRequest, key: str, warn: WarningCollector) -> ModelSource:
    xml = _decode(request.assets[key])
    refs = find_mesh_refs(xml, ("file",))
    files, remap, missing, conversion_warnings = convert_meshes_for_engine(
        request.assets, refs, key
    )
    warn.extend(conversion_warnings)
    if missing:
        raise AssetError(
            f"Missing mesh files referenced by MJCF: {', '.join(missing)}", missing=missing
        )
    base_dir = dirname(key)
    content = rewrite_asset_paths(xml, remap, key)
    engine_files = {
        (relative_path(base_dir, path) if base_dir else path): data
        for path, data in files.items()
    }
    return ModelSource(
        kind=SourceKind.MJCF, filename=norm_path(key), content=content, files=engine_files
    )


def _find_mjcf_asset(assets: dict[str, bytes]) -> str | None:
    for key in assets:
        if PurePosixPath(key).suffix.lower() in (".xml", ".mjcf"):
            return key
    return None


def build_model_source(request: ModelSourceRequest, cfg: DictConfig) -> ModelBuildResult:
    """Build the engine model source for one imported robot.

    Args:
        request: The robot's asset bundle and import flags.
        cfg: Configuration with ``compiler`` and ``model_source`` sections.

    Returns:
        The source plus the warnings collected while building it.

    Raises:
        AssetError: If meshes are missing and the collision mode demanded them, or
            a bundled MJCF document references missing meshes.
        StructuralError: If the robot description compiles to an empty model.
    """
    warn = WarningCollector(console_logger)
    if request.urdf_source is not None or (
        request.urdf_key is not None and request.urdf_key in request.assets
    ):
        source = _build_from_urdf(request, cfg, warn)
    else:
        mjcf_key = _find_mjcf_asset(request.assets)
        if mjcf_key is None:
            console_logger.debug("No robot description in request; using generated model")
            return ModelBuildResult(source=ModelSource.generated(), warnings=warn.messages)
        source = _build_from_mjcf(request, mjcf_key, warn)

    console_logger.info(
        f"Built model source {source.filename} with {len(source.files)} mesh files"
    )
    return ModelBuildResult(source=source, warnings=list(warn.messages))
