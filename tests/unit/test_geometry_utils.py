"""Unit tests for primitive inference, volume and inertia formulas."""

import math
import unittest

import numpy as np

from robotsmith.utils.geometry_utils import (
    Primitive,
    PrimitiveKind,
    RenderGeometry,
    classify_proxy_shape,
    infer_primitive,
    primitive_inertia,
    primitive_volume,
)
from robotsmith.utils.inertia_utils import validate_inertia


class TestInferPrimitive(unittest.TestCase):
    """Tests for infer_primitive."""

    def test_box_uses_scaled_half_extents(self):
        """Box dimensions are halved and scaled per axis."""
        renderable = RenderGeometry(kind="box", parameters={"width": 1, "height": 2, "depth": 3})
        primitive = infer_primitive(renderable, [2.0, 1.0, 1.0])
        self.assertEqual(primitive.kind, PrimitiveKind.BOX)
        np.testing.assert_allclose(primitive.half_extents, [1.0, 1.0, 1.5])

    def test_sphere_takes_largest_scale(self):
        """Sphere radius follows the largest scale factor."""
        renderable = RenderGeometry(kind="sphere", parameters={"radius": 0.5})
        primitive = infer_primitive(renderable, [1.0, 3.0, -2.0])
        self.assertEqual(primitive.kind, PrimitiveKind.SPHERE)
        self.assertAlmostEqual(primitive.radius, 1.5)

    def test_cylinder_extends_along_y(self):
        """Editor cylinders extend along local Y."""
        renderable = RenderGeometry(
            kind="cylinder", parameters={"radius_top": 0.2, "radius_bottom": 0.3, "height": 1.0}
        )
        primitive = infer_primitive(renderable, [1.0, 2.0, 1.0])
        self.assertEqual(primitive.kind, PrimitiveKind.CYLINDER)
        self.assertEqual(primitive.axis, "y")
        self.assertAlmostEqual(primitive.radius, 0.3)
        self.assertAlmostEqual(primitive.half_length, 1.0)

    def test_unknown_kind_falls_back_to_bounds(self):
        """Unrecognized kinds use the scaled bounding box."""
        renderable = RenderGeometry(
            kind="torus", bounds=(np.array([-1.0, -0.5, -0.25]), np.array([1.0, 0.5, 0.25]))
        )
        primitive = infer_primitive(renderable, [1.0, 1.0, 1.0])
        self.assertEqual(primitive.kind, PrimitiveKind.BOX)
        np.testing.assert_allclose(primitive.half_extents, [1.0, 0.5, 0.25])

    def test_unknown_kind_without_bounds_is_clamped(self):
        """Missing bounds produce a small clamped box."""
        primitive = infer_primitive(RenderGeometry(kind="text"), [1.0, 1.0, 1.0])
        np.testing.assert_allclose(primitive.half_extents, [0.01, 0.01, 0.01])


class TestPrimitiveVolume(unittest.TestCase):
    """Tests for primitive_volume."""

    def test_closed_form_volumes(self):
        """Box, sphere and cylinder volumes match their formulas."""
        self.assertAlmostEqual(primitive_volume(Primitive.box([1, 2, 3])), 6.0)
        self.assertAlmostEqual(primitive_volume(Primitive.sphere(1.0)), 4.0 / 3.0 * math.pi)
        self.assertAlmostEqual(
            primitive_volume(Primitive.cylinder(0.5, 2.0)), math.pi * 0.25 * 2.0
        )

    def test_plane_and_degenerate_have_zero_volume(self):
        """Planes and zero-size shapes have no volume."""
        plane = Primitive(kind=PrimitiveKind.PLANE, half_extents=np.array([1.0, 1.0, 0.0]))
        self.assertEqual(primitive_volume(plane), 0.0)
        self.assertEqual(primitive_volume(Primitive.sphere(0.0)), 0.0)

    def test_mesh_without_bounds_is_unknown(self):
        """A mesh without bounds has no computable volume."""
        self.assertIsNone(primitive_volume(Primitive.mesh("part.stl")))


class TestPrimitiveInertia(unittest.TestCase):
    """Tests for primitive_inertia."""

    def test_box_inertia(self):
        """Unit cube of mass 2 has m/6 about every axis."""
        inertia = primitive_inertia(Primitive.box([1, 1, 1]), 2.0)
        np.testing.assert_allclose(inertia, [1.0 / 3.0] * 3)

    def test_sphere_inertia(self):
        """Solid sphere is 2/5 m r^2."""
        inertia = primitive_inertia(Primitive.sphere(0.5), 4.0)
        np.testing.assert_allclose(inertia, [0.4] * 3)

    def test_cylinder_axis_gets_axial_moment(self):
        """The cylinder axis carries 1/2 m r^2."""
        inertia = primitive_inertia(Primitive.cylinder(1.0, 2.0, axis="x"), 2.0)
        self.assertAlmostEqual(inertia[0], 1.0)
        self.assertAlmostEqual(inertia[1], 2.0 * (3.0 + 4.0) / 12.0)
        self.assertAlmostEqual(inertia[2], inertia[1])

    def test_inertia_is_physically_valid(self):
        """Every primitive yields positive moments satisfying the triangle inequality."""
        primitives = [
            Primitive.box([1, 1, 1]),
            Primitive.box([0.1, 2, 0.5]),
            Primitive.box([0.01, 0.01, 3]),
            Primitive.box([1, 1, 1e-3]),
            Primitive.sphere(0.02),
            Primitive.sphere(1.5),
        ]
        for axis in ("x", "y", "z"):
            primitives.append(Primitive.cylinder(0.005, 3.0, axis=axis))
            primitives.append(Primitive.cylinder(1.0, 0.001, axis=axis))
            primitives.append(Primitive.cylinder(0.3, 0.8, axis=axis))
        for primitive in primitives:
            for mass in (0.001, 1.0, 250.0):
                with self.subTest(primitive=primitive, mass=mass):
                    inertia = primitive_inertia(primitive, mass)
                    self.assertTrue(validate_inertia(inertia))

    def test_non_positive_mass_returns_none(self):
        """Non-positive or non-finite mass yields no inertia."""
        self.assertIsNone(primitive_inertia(Primitive.sphere(1.0), 0.0))
        self.assertIsNone(primitive_inertia(Primitive.sphere(1.0), float("nan")))


class TestClassifyProxyShape(unittest.TestCase):
    """Tests for classify_proxy_shape."""

    def test_flat_disc_is_cylinder_along_small_axis(self):
        """Two matching large dimensions give a disc along the small axis."""
        kind, axis = classify_proxy_shape([1.0, 0.1, 1.05])
        self.assertEqual(kind, PrimitiveKind.CYLINDER)
        self.assertEqual(axis, 1)

    def test_rod_is_cylinder_along_large_axis(self):
        """Two matching small dimensions give a rod along the large axis."""
        kind, axis = classify_proxy_shape([0.1, 0.1, 2.0])
        self.assertEqual(kind, PrimitiveKind.CYLINDER)
        self.assertEqual(axis, 2)

    def test_irregular_box_stays_box(self):
        """Dissimilar dimensions stay a box."""
        kind, _ = classify_proxy_shape([1.0, 2.0, 3.0])
        self.assertEqual(kind, PrimitiveKind.BOX)


if __name__ == "__main__":
    unittest.main()
