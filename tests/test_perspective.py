"""Tests for perspective and events modules.

This module tests image loading, calibration bookkeeping and change
notifications of a photograph's perspective data.
"""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photomatch.camera import CalibrationAxes, InvertedAxes
from photomatch.events import Event
from photomatch.geometry import Line2D
from photomatch.linalg import Vector2, Vector3
from photomatch.perspective import PerspectiveData, decode_image


def make_image(width=640, height=480):
    """Create a synthetic RGB test image."""
    xs, ys = np.meshgrid(np.arange(width), np.arange(height))
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :, 0] = 50 + xs % 200
    image[:, :, 1] = 50 + ys % 200
    image[:, :, 2] = 128
    return image


class TestEvent(unittest.TestCase):
    """Test the signal object."""

    def test_emit_in_connection_order(self):
        event = Event("test")
        calls = []
        event.connect(lambda x: calls.append(("a", x)))
        event.connect(lambda x: calls.append(("b", x)))

        event.emit(1)
        self.assertEqual(calls, [("a", 1), ("b", 1)])
        self.assertEqual(len(event), 2)

    def test_disconnect(self):
        event = Event("test")
        calls = []
        callback = calls.append
        event.connect(callback)
        event.disconnect(callback)
        event.emit(1)

        self.assertEqual(calls, [])
        with pytest.raises(ValueError):
            event.disconnect(callback)

    def test_callback_may_disconnect_itself(self):
        event = Event("test")
        calls = []

        def once():
            calls.append(1)
            event.disconnect(once)

        event.connect(once)
        event.emit()
        event.emit()
        self.assertEqual(calls, [1])


class TestPerspective(unittest.TestCase):
    """Test perspective data."""

    @classmethod
    def setUpClass(cls):
        cls.test_output_dir = tempfile.mkdtemp()

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.test_output_dir)

    def setUp(self):
        """Set up a perspective with vanishing points (-400, 200) and (1000, 260)."""
        self.image = make_image()
        self.perspective = PerspectiveData(self.image)

        self.vp_a = Vector2(-400, 200)
        self.vp_b = Vector2(1000, 260)
        self.origin = Vector2(300, 350)
        self.perspective.set_calibration(
            self.origin,
            Line2D(Vector2(100, 300), self.vp_a),
            Line2D(Vector2(100, 400), self.vp_a),
            Line2D(Vector2(500, 300), self.vp_b),
            Line2D(Vector2(500, 400), self.vp_b),
            1.0,
            CalibrationAxes.XY,
            InvertedAxes(),
        )

    def test_default_calibration(self):
        perspective = PerspectiveData(self.image)

        self.assertTrue(perspective.valid)
        self.assertEqual(perspective.origin, Vector2(320, 240))
        self.assertEqual(perspective.principal_point, Vector2(320, 240))
        self.assertAlmostEqual(perspective.line_a1.start.x, 0.52 * 640)
        self.assertAlmostEqual(perspective.line_a1.start.y, 0.19 * 480)
        self.assertEqual(perspective.calibration_axes, CalibrationAxes.XY)
        self.assertEqual(perspective.scale, 1.0)

    def test_vanishing_points(self):
        vp_a = self.perspective.vanishing_point_a
        vp_b = self.perspective.vanishing_point_b
        self.assertAlmostEqual(vp_a.x, -400, places=6)
        self.assertAlmostEqual(vp_a.y, 200, places=6)
        self.assertAlmostEqual(vp_b.x, 1000, places=6)
        self.assertAlmostEqual(vp_b.y, 260, places=6)

    def test_origin_projection(self):
        screen = self.perspective.world_to_screen(Vector3(0, 0, 0))
        self.assertAlmostEqual(screen.x, self.origin.x, places=6)
        self.assertAlmostEqual(screen.y, self.origin.y, places=6)

    def test_parallel_lines_invalidate(self):
        line = self.perspective.line_a1
        shifted = Line2D(line.start + Vector2(0, 50), line.end + Vector2(0, 50))

        with self.assertLogs("photomatch.perspective", level="WARNING"):
            self.perspective.line_a2 = shifted

        self.assertIsNone(self.perspective.vanishing_point_a)
        self.assertFalse(self.perspective.valid)

        self.perspective.line_a2 = Line2D(Vector2(100, 400), self.vp_a)
        self.assertTrue(self.perspective.valid)

    def test_change_notifications(self):
        calls = []
        self.perspective.perspective_changed.connect(lambda: calls.append(1))

        self.perspective.origin = Vector2(310, 340)
        self.assertEqual(len(calls), 1)

        self.perspective.scale = 2.0
        self.assertEqual(len(calls), 2)
        self.assertEqual(self.perspective.camera.scale, 2.0)

        # Same axes, nothing to recompute
        self.perspective.calibration_axes = CalibrationAxes.XY
        self.assertEqual(len(calls), 2)

        self.perspective.calibration_axes = CalibrationAxes.XZ
        self.assertEqual(len(calls), 3)

        self.perspective.inverted_axes = InvertedAxes(x=True)
        self.assertEqual(len(calls), 4)

    def test_origin_change_moves_projection(self):
        self.perspective.origin = Vector2(200, 100)
        screen = self.perspective.world_to_screen(Vector3(0, 0, 0))
        self.assertAlmostEqual(screen.x, 200, places=6)
        self.assertAlmostEqual(screen.y, 100, places=6)

    def test_axis_directions(self):
        x_dir = self.perspective.get_x_dir_at(self.origin)
        y_dir = self.perspective.get_y_dir_at(self.origin)
        z_dir = self.perspective.get_z_dir_at(self.origin)

        expected_x = (self.vp_a - self.origin).normalized()
        expected_y = (self.vp_b - self.origin).normalized()
        self.assertAlmostEqual(x_dir.x, expected_x.x, places=6)
        self.assertAlmostEqual(x_dir.y, expected_x.y, places=6)
        self.assertAlmostEqual(y_dir.x, expected_y.x, places=6)
        self.assertAlmostEqual(y_dir.y, expected_y.y, places=6)
        self.assertAlmostEqual(z_dir.magnitude, 1.0)

    def test_inverted_axis_direction(self):
        self.perspective.inverted_axes = InvertedAxes(x=True)
        x_dir = self.perspective.get_x_dir_at(self.origin)
        expected = (self.origin - self.vp_a).normalized()

        self.assertAlmostEqual(x_dir.x, expected.x, places=6)
        self.assertAlmostEqual(x_dir.y, expected.y, places=6)

    def test_from_bytes(self):
        ok, encoded = cv2.imencode(".png", cv2.cvtColor(self.image, cv2.COLOR_RGB2BGR))
        self.assertTrue(ok)

        perspective = PerspectiveData.from_bytes(encoded.tobytes(), "synthetic.png")
        np.testing.assert_array_equal(perspective.image, self.image)
        self.assertEqual(perspective.image_path, "synthetic.png")
        self.assertEqual(perspective.width, 640)
        self.assertEqual(perspective.height, 480)

    def test_from_file(self):
        path = os.path.join(self.test_output_dir, "photo.png")
        cv2.imwrite(path, cv2.cvtColor(self.image, cv2.COLOR_RGB2BGR))

        perspective = PerspectiveData.from_file(path)
        np.testing.assert_array_equal(perspective.image, self.image)
        self.assertEqual(perspective.image_data, Path(path).read_bytes())

    def test_decode_invalid_image(self):
        with pytest.raises(ValueError):
            decode_image(b"not an image")


if __name__ == "__main__":
    unittest.main()
