"""Unit tests for building engine model sources from imported robots."""

import unittest

import lxml.etree as ET
import trimesh

from robotsmith.compiler.errors import AssetError, StructuralError
from robotsmith.compiler.model_source import (
    INLINE_FILENAME,
    ModelSourceRequest,
    SourceKind,
    build_model_source,
)
from robotsmith.config import create_config

MESH_URDF = """<robot name="gripper">
  <link name="palm">
    <inertial><mass value="0.5"/><inertia ixx="0.001" iyy="0.001" izz="0.001"/></inertial>
    <collision><geometry><mesh filename="package://gripper/meshes/palm.stl"/></geometry></collision>
  </link>
</robot>
"""

BOX_URDF = """<robot name="block">
  <link name="body">
    <inertial><mass value="1"/><inertia ixx="0.01" iyy="0.01" izz="0.01"/></inertial>
    <collision><geometry><box size="0.1 0.1 0.1"/></geometry></collision>
  </link>
</robot>
"""

MJCF_DOCUMENT = """<mujoco model="bundled">
  <asset><mesh name="palm" file="../meshes/palm.stl"/></asset>
  <worldbody><body name="palm"><geom type="mesh" mesh="palm"/></body></worldbody>
</mujoco>
"""


def _stl() -> bytes:
    return trimesh.creation.box(extents=(0.1, 0.2, 0.3)).export(file_type="stl")


def _geom_types(xml: str) -> list[str]:
    return [geom.get("type") for geom in ET.fromstring(xml).iter("geom")]


class TestBuildModelSource(unittest.TestCase):
    """Tests for build_model_source."""

    def setUp(self):
        """Use a configuration without environment collision overrides."""
        self.cfg = create_config(
            **{"model_source.collision_mode": None, "model_source.xacro_endpoint": None}
        )

    def test_no_description_falls_back_to_generated(self):
        """A bundle without a robot description uses the generated model."""
        result = build_model_source(ModelSourceRequest(assets={"readme.txt": b"hi"}), self.cfg)
        self.assertEqual(result.source.kind, SourceKind.GENERATED)
        self.assertIsNone(result.source.content)

    def test_inline_urdf(self):
        """Inline URDF text compiles into an inline document."""
        result = build_model_source(
            ModelSourceRequest(urdf_source=BOX_URDF, name_prefix="blk"), self.cfg
        )
        self.assertEqual(result.source.kind, SourceKind.MJCF)
        self.assertEqual(result.source.filename, INLINE_FILENAME)
        self.assertEqual(result.source.name_map.links["body"], "blk_body")

    def test_bundled_mesh_urdf(self):
        """Referenced meshes are shipped with the compiled model."""
        assets = {"gripper/urdf/gripper.urdf": MESH_URDF.encode(), "gripper/meshes/palm.stl": _stl()}
        result = build_model_source(
            ModelSourceRequest(assets=assets, urdf_key="gripper/urdf/gripper.urdf"), self.cfg
        )
        self.assertEqual(result.source.filename, "gripper/urdf/gripper.mjcf")
        self.assertIn("gripper/meshes/palm.stl", result.source.files)
        self.assertIn("mesh", _geom_types(result.source.content))

    def test_missing_mesh_demanded(self):
        """Demanding mesh collisions with missing meshes raises AssetError."""
        request = ModelSourceRequest(
            assets={"r.urdf": MESH_URDF.encode()}, urdf_key="r.urdf", collision_mode="mesh"
        )
        with self.assertRaises(AssetError) as context:
            build_model_source(request, self.cfg)
        self.assertEqual(context.exception.missing, ["package://gripper/meshes/palm.stl"])

    def test_missing_mesh_inferred_falls_back_to_spheres(self):
        """Inferred mesh mode degrades to sphere proxies with a warning."""
        request = ModelSourceRequest(assets={"r.urdf": MESH_URDF.encode()}, urdf_key="r.urdf")
        result = build_model_source(request, self.cfg)
        self.assertIn("Missing mesh files; falling back to sphere collisions.", result.warnings)
        self.assertEqual(_geom_types(result.source.content), ["sphere"])
        self.assertEqual(result.source.files, {})

    def test_box_proxy_mode(self):
        """Proxy modes replace meshes with boxes sized from the mesh bounds."""
        assets = {"r.urdf": MESH_URDF.encode(), "gripper/meshes/palm.stl": _stl()}
        request = ModelSourceRequest(assets=assets, urdf_key="r.urdf", collision_mode="box")
        result = build_model_source(request, self.cfg)
        self.assertEqual(_geom_types(result.source.content), ["box"])
        self.assertEqual(result.source.files, {})

    def test_unparsable_urdf(self):
        """A description with no usable tree raises StructuralError."""
        with self.assertRaises(StructuralError):
            build_model_source(ModelSourceRequest(urdf_source="<robot"), self.cfg)

    def test_xacro_without_endpoint_is_stripped(self):
        """Xacro tags are stripped when no expansion service is configured."""
        urdf = BOX_URDF.replace(
            "<link", '<xacro:property name="s" value="1"/><link', 1
        )
        result = build_model_source(ModelSourceRequest(urdf_source=urdf), self.cfg)
        self.assertEqual(result.source.kind, SourceKind.MJCF)
        self.assertTrue(any("stripping xacro tags" in w for w in result.warnings))


class TestBundledMjcf(unittest.TestCase):
    """Tests for bundled MJCF documents."""

    def setUp(self):
        """Load the default configuration."""
        self.cfg = create_config(**{"model_source.collision_mode": None})

    def test_paths_rewritten(self):
        """Mesh files are keyed relative to the document."""
        assets = {"bot/mjcf/bot.xml": MJCF_DOCUMENT.encode(), "bot/meshes/palm.stl": _stl()}
        source = build_model_source(ModelSourceRequest(assets=assets), self.cfg).source
        self.assertEqual(source.kind, SourceKind.MJCF)
        self.assertEqual(source.filename, "bot/mjcf/bot.xml")
        self.assertEqual(list(source.files), ["../meshes/palm.stl"])
        mesh = ET.fromstring(source.content).find("asset/mesh")
        self.assertEqual(mesh.get("file"), "../meshes/palm.stl")

    def test_missing_mesh(self):
        """Bundled documents must ship their meshes."""
        assets = {"bot/mjcf/bot.xml": MJCF_DOCUMENT.encode()}
        with self.assertRaises(AssetError):
            build_model_source(ModelSourceRequest(assets=assets), self.cfg)


if __name__ == "__main__":
    unittest.main()
