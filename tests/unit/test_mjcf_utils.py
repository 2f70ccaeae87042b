"""Unit tests for MJCF formatting and transform helpers."""

import unittest

import numpy as np

from scipy.spatial.transform import Rotation

from robotsmith.utils.mjcf_utils import (
    axis_angle_quaternion,
    compose_transform,
    decompose_transform,
    format_quaternion,
    format_vector,
    invert_transform,
    parse_float,
    parse_vector,
    quaternion_to_rotation,
    rotation_to_quaternion,
    rpy_to_quaternion,
)


class TestParsing(unittest.TestCase):
    """Tests for lenient attribute parsing."""

    def test_parse_vector_falls_back_per_component(self):
        """Invalid components take the fallback value."""
        self.assertEqual(parse_vector("1 nan 3", [0.0, 0.0, 0.0]), [1.0, 0.0, 3.0])
        self.assertEqual(parse_vector("1", [0.0, 5.0, 6.0]), [1.0, 5.0, 6.0])
        self.assertEqual(parse_vector(None, [1.0, 1.0, 1.0]), [1.0, 1.0, 1.0])

    def test_parse_float(self):
        """Non-numeric and non-finite values return the fallback."""
        self.assertEqual(parse_float("2.5"), 2.5)
        self.assertEqual(parse_float("abc", 1.0), 1.0)
        self.assertEqual(parse_float("inf", 0.0), 0.0)


class TestFormatting(unittest.TestCase):
    """Tests for attribute formatting."""

    def test_format_vector_replaces_non_finite(self):
        """Non-finite entries are written as zero."""
        self.assertEqual(format_vector([1, float("nan"), -2], digits=2), "1.00 0.00 -2.00")

    def test_format_quaternion_replaces_non_finite(self):
        """Non-finite quaternion entries fall back to identity."""
        self.assertEqual(
            format_quaternion([float("nan"), 0, 0, 0], digits=1), "1.0 0.0 0.0 0.0"
        )


class TestQuaternions(unittest.TestCase):
    """Tests for wxyz quaternion conversions."""

    def test_round_trip_order(self):
        """Rotations convert to scalar-first quaternions."""
        quaternion = rotation_to_quaternion(Rotation.from_euler("z", 90, degrees=True))
        np.testing.assert_allclose(quaternion, [np.sqrt(0.5), 0, 0, np.sqrt(0.5)], atol=1e-12)

    def test_degenerate_quaternion_is_identity(self):
        """A zero quaternion maps to the identity rotation."""
        rotation = quaternion_to_rotation([0, 0, 0, 0])
        np.testing.assert_allclose(rotation.as_matrix(), np.eye(3))

    def test_rpy_matches_axis_angle(self):
        """A pure yaw equals a rotation about z."""
        np.testing.assert_allclose(
            rpy_to_quaternion([0, 0, 0.3]), axis_angle_quaternion([0, 0, 1], 0.3), atol=1e-12
        )


class TestTransforms(unittest.TestCase):
    """Tests for compose/decompose/invert."""

    def test_compose_decompose(self):
        """Position, rotation and scale survive a compose/decompose pass."""
        quaternion = axis_angle_quaternion([1, 0, 0], 0.5)
        matrix = compose_transform([1, 2, 3], quaternion, [2, 2, 2])
        position, decoded, scale = decompose_transform(matrix)
        np.testing.assert_allclose(position, [1, 2, 3])
        np.testing.assert_allclose(decoded, quaternion, atol=1e-9)
        np.testing.assert_allclose(scale, [2, 2, 2])

    def test_invert(self):
        """A transform times its inverse is the identity."""
        matrix = compose_transform([1, -1, 0.5], axis_angle_quaternion([0, 1, 0], 1.0))
        np.testing.assert_allclose(matrix @ invert_transform(matrix), np.eye(4), atol=1e-12)


if __name__ == "__main__":
    unittest.main()
