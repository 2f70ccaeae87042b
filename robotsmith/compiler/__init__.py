"""MJCF compiler module.

This module provides:
- Compilation of kinematic trees, URDF text and authored scenes into MJCF
- Mesh reference resolution, conversion and xacro handling for asset bundles
- Merging of per-robot model fragments into one scene model
- Model-source building for imported robots
"""

from robotsmith.compiler.errors import AssetError, InertiaError, StructuralError
from robotsmith.compiler.mjcf_compiler import (
    BodyRecord,
    CollisionMode,
    CompiledModel,
    CompileOptions,
    compile_scene,
    compile_tree,
    compile_urdf,
    scene_compile_options,
)
from robotsmith.compiler.model_merge import (
    append_pointer_cursor,
    merge_model_fragments,
    splice_extra_bodies,
)
from robotsmith.compiler.model_source import (
    ModelBuildResult,
    ModelSource,
    ModelSourceRequest,
    SourceKind,
    build_model_source,
)

__all__ = [
    "AssetError",
    "BodyRecord",
    "CollisionMode",
    "CompileOptions",
    "CompiledModel",
    "InertiaError",
    "ModelBuildResult",
    "ModelSource",
    "ModelSourceRequest",
    "SourceKind",
    "StructuralError",
    "append_pointer_cursor",
    "build_model_source",
    "compile_scene",
    "compile_tree",
    "compile_urdf",
    "merge_model_fragments",
    "scene_compile_options",
    "splice_extra_bodies",
]
