"""Tests for imaging module.

This module tests the quadrilateral homography and the rectification of
image regions into face textures.
"""

import sys
import unittest
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photomatch import imaging
from photomatch.linalg import Vector2
from photomatch.solver import SingularSystemError


def make_image(width=320, height=240):
    """Create a synthetic RGB image without black pixels."""
    xs, ys = np.meshgrid(np.arange(width), np.arange(height))
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :, 0] = 50 + xs % 200
    image[:, :, 1] = 50 + ys % 200
    image[:, :, 2] = 200
    return image


def rectangle(x0, y0, x1, y1):
    return Vector2(x0, y0), Vector2(x1, y0), Vector2(x0, y1), Vector2(x1, y1)


class TestHomography(unittest.TestCase):
    """Test projective transformation matrices."""

    def test_maps_corners(self):
        source = (Vector2(10, 20), Vector2(200, 30), Vector2(15, 180), Vector2(220, 210))
        target = rectangle(0, 0, 99, 79)
        matrix = imaging.projective_transformation_matrix(*source, *target)

        for s, t in zip(source, target):
            mapped = imaging.apply_homography(matrix, s)
            self.assertAlmostEqual(mapped.x, t.x, places=6)
            self.assertAlmostEqual(mapped.y, t.y, places=6)

    def test_same_quadrilateral_is_identity(self):
        quad = (Vector2(10, 20), Vector2(200, 30), Vector2(15, 180), Vector2(220, 210))
        matrix = imaging.projective_transformation_matrix(*quad, *quad)

        for point in (Vector2(50, 60), Vector2(123.5, 17.25), Vector2(-40, 300)):
            mapped = imaging.apply_homography(matrix, point)
            self.assertAlmostEqual(mapped.x, point.x, places=6)
            self.assertAlmostEqual(mapped.y, point.y, places=6)

    def test_calculate_map_columns_sum_to_last_corner(self):
        corners = (Vector2(10, 20), Vector2(200, 30), Vector2(15, 180), Vector2(220, 210))
        basis = imaging.calculate_map(*corners).values
        total = basis.sum(axis=1)

        np.testing.assert_allclose(total, [220, 210, 1], atol=1e-9)

    def test_degenerate_quadrilateral(self):
        collinear = (Vector2(0, 0), Vector2(1, 1), Vector2(2, 2), Vector2(5, 1))
        with pytest.raises(SingularSystemError):
            imaging.calculate_map(*collinear)


class TestRectify(unittest.TestCase):
    """Test inverse-mapped resampling."""

    def setUp(self):
        self.image = make_image()

    def test_translation_copies_region(self):
        matrix = imaging.projective_transformation_matrix(
            *rectangle(50, 40, 149, 119), *rectangle(0, 0, 99, 79)
        )
        result = imaging.rectify(self.image, matrix, (100, 80))

        self.assertEqual(result.shape, (80, 100, 3))
        self.assertEqual(result.dtype, np.uint8)
        np.testing.assert_allclose(
            result.astype(int), self.image[40:120, 50:150].astype(int), atol=1
        )

    def test_scaling_interpolates(self):
        # Twice the resolution of the source region
        matrix = imaging.projective_transformation_matrix(
            *rectangle(10, 10, 59, 59), *rectangle(0, 0, 98, 98)
        )
        result = imaging.rectify(self.image, matrix, (99, 99))

        # Odd texels fall halfway between two source pixels
        expected = (self.image[10, 10, 0].astype(float) + self.image[10, 11, 0]) / 2
        self.assertAlmostEqual(float(result[0, 1, 0]), expected, delta=1)

    def test_outside_pixels_stay_black(self):
        matrix = imaging.projective_transformation_matrix(
            *rectangle(-10, 0, 89, 79), *rectangle(0, 0, 99, 79)
        )
        result = imaging.rectify(self.image, matrix, (100, 80))

        self.assertTrue(np.all(result[:, :9] == 0))
        self.assertTrue(np.all(result[:, 12:] > 0))

    def test_grayscale_image(self):
        gray = self.image[:, :, 0].copy()
        matrix = imaging.projective_transformation_matrix(
            *rectangle(50, 40, 149, 119), *rectangle(0, 0, 99, 79)
        )
        result = imaging.rectify(gray, matrix, (100, 80))

        self.assertEqual(result.shape, (80, 100))
        np.testing.assert_allclose(result.astype(int), gray[40:120, 50:150].astype(int), atol=1)


if __name__ == "__main__":
    unittest.main()
