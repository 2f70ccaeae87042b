"""Unit tests for merging compiled fragments and splicing extra bodies."""

import unittest

import lxml.etree as ET
import mujoco

from robotsmith.compiler.mjcf_compiler import CompiledModel, CompileOptions, compile_urdf
from robotsmith.compiler.model_merge import (
    MERGED_FILENAME,
    POINTER_CURSOR_BODY,
    append_pointer_cursor,
    merge_model_fragments,
    splice_extra_bodies,
)
from robotsmith.config import load_default_config

ARM_URDF = """<robot name="arm">
  <link name="base">
    <inertial><mass value="1"/><inertia ixx="0.01" iyy="0.01" izz="0.01"/></inertial>
    <collision><geometry><box size="0.2 0.2 0.2"/></geometry></collision>
  </link>
  <link name="tip">
    <inertial><mass value="0.2"/><inertia ixx="0.001" iyy="0.001" izz="0.001"/></inertial>
    <collision><geometry><sphere radius="0.05"/></geometry></collision>
  </link>
  <joint name="hinge" type="revolute">
    <parent link="base"/>
    <child link="tip"/>
    <origin xyz="0 0 0.2"/>
    <axis xyz="0 1 0"/>
    <limit lower="-1" upper="1" effort="5" velocity="1"/>
  </joint>
</robot>
"""


class TestMergeModelFragments(unittest.TestCase):
    """Tests for merge_model_fragments."""

    def setUp(self):
        """Compile the same robot under two prefixes."""
        self.cfg = load_default_config()
        self.left = compile_urdf(ARM_URDF, CompileOptions(name_prefix="left"))
        self.right = compile_urdf(ARM_URDF, CompileOptions(name_prefix="right"))

    def test_no_fragments(self):
        """Nothing to merge yields None."""
        self.assertIsNone(merge_model_fragments([], self.cfg))
        self.assertIsNone(merge_model_fragments([CompiledModel.empty([])], self.cfg))

    def test_sections_concatenated(self):
        """Bodies and actuators of every fragment end up in one document."""
        merged = merge_model_fragments([self.left, CompiledModel.empty([]), self.right], self.cfg)
        self.assertEqual(merged.filename, MERGED_FILENAME)
        root = ET.fromstring(merged.xml)
        self.assertEqual(len(root.findall("compiler")), 1)
        self.assertEqual(len(root.findall("option")), 1)
        names = [body.get("name") for body in root.find("worldbody").findall("body")]
        self.assertEqual(names, ["left_base", "right_base"])
        self.assertEqual(merged.name_map.joints["hinge"], "right_hinge")
        self.assertIn("left_hinge", merged.name_map.joints_by_engine)

    def test_merged_model_loads(self):
        """The merged document is a valid MuJoCo model."""
        merged = merge_model_fragments([self.left, self.right], self.cfg)
        model = mujoco.MjModel.from_xml_string(merged.xml)
        self.assertEqual(model.njnt, 4)
        self.assertGreaterEqual(mujoco.mj_name2id(model, mujoco.mjtObj.mjOBJ_JOINT, "right_hinge"), 0)


class TestSplicing(unittest.TestCase):
    """Tests for splice_extra_bodies and append_pointer_cursor."""

    def setUp(self):
        """Compile a base document."""
        self.cfg = load_default_config()
        self.base = compile_urdf(ARM_URDF, CompileOptions(name_prefix="a"))

    def test_empty_extra_is_noop(self):
        """Splicing nothing returns the document unchanged."""
        self.assertEqual(splice_extra_bodies(self.base.xml, CompiledModel.empty([])), self.base.xml)

    def test_extra_bodies_appended(self):
        """Bodies of the extra document follow the existing ones."""
        extra = compile_urdf(ARM_URDF, CompileOptions(name_prefix="b"))
        spliced = ET.fromstring(splice_extra_bodies(self.base.xml, extra))
        names = [body.get("name") for body in spliced.find("worldbody").findall("body")]
        self.assertEqual(names, ["a_base", "b_base"])

    def test_cursor_added_once(self):
        """The cursor body is parked and not duplicated."""
        once = append_pointer_cursor(self.base.xml, self.cfg)
        twice = append_pointer_cursor(once, self.cfg)
        self.assertEqual(once, twice)
        cursor = ET.fromstring(twice).find(f"worldbody/body[@name='{POINTER_CURSOR_BODY}']")
        self.assertEqual(cursor.get("mocap"), "true")
        self.assertEqual(cursor.get("pos"), "0 -1000.000 0")
        self.assertEqual(cursor.find("geom").get("size"), "0.0600")

    def test_cursor_model_loads(self):
        """The cursor document loads with one mocap body."""
        model = mujoco.MjModel.from_xml_string(append_pointer_cursor(self.base.xml, self.cfg))
        self.assertEqual(model.nmocap, 1)


if __name__ == "__main__":
    unittest.main()
