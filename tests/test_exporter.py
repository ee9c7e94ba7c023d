"""Tests for exporter module.

This module tests perspective selection, texture generation and the OBJ/MTL
output of the textured model export, using a synthetic photograph with a
known calibration.
"""

import errno
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import cv2
import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photomatch import exporter, imaging
from photomatch.camera import CalibrationAxes, InvertedAxes
from photomatch.evaluate import ExportMetrics
from photomatch.geometry import Line2D
from photomatch.linalg import Vector2, Vector3
from photomatch.model import Model
from photomatch.perspective import PerspectiveData


def make_image(width=640, height=480):
    """Create a synthetic RGB photograph without black pixels."""
    xs, ys = np.meshgrid(np.arange(width), np.arange(height))
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :, 0] = 50 + xs % 200
    image[:, :, 1] = 50 + ys % 200
    image[:, :, 2] = 180
    return image


def make_perspective(image=None):
    """Perspective looking at the unit square of the XY plane."""
    if image is None:
        image = make_image()
    perspective = PerspectiveData(image, image_path="synthetic.png")

    vp_a = Vector2(-300, -200)
    vp_b = Vector2(900, -250)
    perspective.set_calibration(
        Vector2(320, 300),
        Line2D(Vector2(100, 300), vp_a),
        Line2D(Vector2(150, 450), vp_a),
        Line2D(Vector2(500, 300), vp_b),
        Line2D(Vector2(450, 450), vp_b),
        0.5,
        CalibrationAxes.XY,
        InvertedAxes(),
    )
    return perspective


def add_square(model, z=0.0, size=1.0, offset=0.0):
    vertices = [
        model.add_vertex(Vector3(offset, offset, z)),
        model.add_vertex(Vector3(offset + size, offset, z)),
        model.add_vertex(Vector3(offset + size, offset + size, z)),
        model.add_vertex(Vector3(offset, offset + size, z)),
    ]
    return model.add_face(vertices)


def add_camera_plane_face(model, perspective, offset=3.0):
    """Rectangle beside the camera reaching from behind it to in front of it."""
    position = perspective.camera.position
    forward = perspective.screen_to_world_ray(perspective.principal_point).direction
    side = forward.cross(Vector3(0, 0, 1)).normalized()
    up = side.cross(forward).normalized()

    center = position + side * offset
    corners = [
        center - forward * 2 - up,
        center + forward * 2 - up,
        center + forward * 2 + up,
        center - forward * 2 + up,
    ]
    return model.add_face([model.add_vertex(c) for c in corners])


class TestVisibility(unittest.TestCase):
    """Test sample visibility and perspective selection."""

    def setUp(self):
        self.perspective = make_perspective()
        self.model = Model()
        self.face = add_square(self.model)

    def test_calibration_is_valid(self):
        self.assertTrue(self.perspective.valid)

    def test_unoccluded_face_fully_visible(self):
        count = exporter.count_visible_samples(self.face, self.perspective, self.model)
        self.assertEqual(count, len(exporter.POINT_SCALING))

    def test_occluded_face(self):
        # The camera sits below the plane z = 0, a large square in between hides the face
        occluder = add_square(self.model, z=-0.5, size=10.0, offset=-5.0)
        self.assertIsNotNone(occluder)

        self.assertEqual(exporter.count_visible_samples(self.face, self.perspective, self.model), 0)
        self.assertIsNone(exporter.select_perspective(self.face, [self.perspective], self.model))

    def test_sample_missing_own_face_counts_as_visible(self):
        add_square(self.model, z=-0.5, size=10.0, offset=-5.0)
        intersect = exporter._ray_face_intersection

        def miss_own_face(ray, face):
            return None if face is self.face else intersect(ray, face)

        with mock.patch.object(exporter, "_ray_face_intersection", side_effect=miss_own_face):
            count = exporter.count_visible_samples(self.face, self.perspective, self.model)

        self.assertEqual(count, len(exporter.POINT_SCALING))

    def test_face_behind_does_not_occlude(self):
        add_square(self.model, z=1.0, size=10.0, offset=-5.0)
        count = exporter.count_visible_samples(self.face, self.perspective, self.model)
        self.assertEqual(count, len(exporter.POINT_SCALING))

    def test_invalid_perspective_skipped(self):
        invalid = make_perspective()
        line = invalid.line_a1
        invalid.line_a2 = Line2D(line.start + Vector2(0, 40), line.end + Vector2(0, 40))
        self.assertFalse(invalid.valid)

        selected = exporter.select_perspective(self.face, [invalid, self.perspective], self.model)
        self.assertIs(selected, self.perspective)

    def test_tie_keeps_first_perspective(self):
        other = make_perspective()
        selected = exporter.select_perspective(self.face, [self.perspective, other], self.model)
        self.assertIs(selected, self.perspective)


class TestTexture(unittest.TestCase):
    """Test face projection and texture coordinates."""

    def setUp(self):
        self.perspective = make_perspective()
        self.model = Model()
        self.face = add_square(self.model)

    def test_face_projection_maps_corners(self):
        project, width, height = exporter.face_projection(self.face, self.perspective)

        self.assertGreater(width, 100)
        self.assertGreater(height, 100)

        origin = self.perspective.world_to_screen(Vector3(0, 0, 0))
        texel = imaging.apply_homography(project, origin)
        self.assertAlmostEqual(texel.x, 0.0, places=6)
        self.assertAlmostEqual(texel.y, 0.0, places=6)

        far = self.perspective.world_to_screen(Vector3(1, 1, 0))
        texel = imaging.apply_homography(project, far)
        self.assertAlmostEqual(texel.x, width - 1, places=6)
        self.assertAlmostEqual(texel.y, height - 1, places=6)

    def test_minimum_texture_size(self):
        _, width, height = exporter.face_projection(self.face, self.perspective, resolution_multiplier=0.0)
        self.assertEqual(width, exporter.MIN_TEXTURE_SIZE)
        self.assertEqual(height, exporter.MIN_TEXTURE_SIZE)

    def test_face_crossing_camera_plane(self):
        face = add_camera_plane_face(self.model, self.perspective)
        self.assertIsNotNone(face)
        depths = [self.perspective.depth(p) for p in face.positions]
        self.assertLess(min(depths), 0.0)
        self.assertGreater(max(depths), 0.0)

        with pytest.raises(exporter.DegenerateProjectionError):
            exporter.face_projection(face, self.perspective)

    def test_maximum_texture_size(self):
        with pytest.raises(exporter.DegenerateProjectionError):
            exporter.face_projection(self.face, self.perspective, max_size=50)

    def test_uv_coordinates(self):
        texture = exporter.build_face_texture(self.face, [self.perspective], self.model)
        self.assertIsNotNone(texture)

        expected = [(0, 1), (1, 1), (1, 0), (0, 0)]
        self.assertEqual(len(texture.uv_coordinates), 4)
        for uv, (u, v) in zip(texture.uv_coordinates, expected):
            self.assertAlmostEqual(uv.x, u, places=6)
            self.assertAlmostEqual(uv.y, v, places=6)

    def test_format_number(self):
        self.assertEqual(exporter.format_number(2.0), "2")
        self.assertEqual(exporter.format_number(0.1), "0.1")
        self.assertEqual(exporter.format_number(-1.5), "-1.5")
        self.assertEqual(exporter.format_number(1e-7), "0.0000001")

    def test_error_messages(self):
        self.assertEqual(exporter._export_error_message(PermissionError()), "Unauthorized access to file.")
        self.assertEqual(exporter._export_error_message(NotADirectoryError()), "Path is invalid.")
        self.assertEqual(exporter._export_error_message(exporter.ExportPathError()), "Path is invalid.")
        self.assertIsNone(exporter._export_error_message(ValueError()))
        self.assertEqual(
            exporter._export_error_message(OSError(errno.ENAMETOOLONG, "File name too long")),
            "Path is too long.",
        )
        self.assertEqual(exporter._export_error_message(OSError()), "Save operation was not successful.")


class TestExport(unittest.TestCase):
    """Test the full export bundle."""

    @classmethod
    def setUpClass(cls):
        cls.test_output_dir = tempfile.mkdtemp()

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.test_output_dir)

    def setUp(self):
        self.perspective = make_perspective()
        self.model = Model()
        self.face = add_square(self.model)

    def read_lines(self, path):
        with open(path, "r") as f:
            return f.read().splitlines()

    def test_textured_export(self):
        output = os.path.join(self.test_output_dir, "textured", "model.obj")
        metrics = ExportMetrics()

        self.assertTrue(exporter.export_model(self.model, output, [self.perspective], metrics=metrics))

        bundle = Path(self.test_output_dir) / "textured" / "model"
        self.assertTrue((bundle / "model.obj").exists())
        self.assertTrue((bundle / "model.mtl").exists())
        self.assertTrue((bundle / "face0.png").exists())

        with open(bundle / "model.mtl", "r") as f:
            self.assertEqual(f.read(), "newmtl face0\n\tmap_Kd face0.png\n\n")

        lines = self.read_lines(bundle / "model.obj")
        self.assertEqual(lines[0], "mtllib ./model.mtl")
        self.assertEqual(len([l for l in lines if l.startswith("v ")]), 4)
        self.assertEqual(len([l for l in lines if l.startswith("vt ")]), 4)
        self.assertIn("usemtl face0", lines)
        # World y is written as -z
        self.assertIn("v 1 0 -1", lines)

        faces = [l for l in lines if l.startswith("f ")]
        self.assertEqual(len(faces), 2)
        for line in faces:
            for token in line.split()[1:]:
                vertex_index, uv_index = token.split("/")
                self.assertEqual(vertex_index, uv_index)

        texture = cv2.imread(str(bundle / "face0.png"))
        self.assertIsNotNone(texture)
        self.assertGreater(texture.shape[0], 100)
        self.assertGreater(texture.shape[1], 100)
        self.assertEqual(np.count_nonzero(texture.sum(axis=2) == 0), 0)

        result = metrics.to_dict()
        self.assertTrue(result["success"])
        self.assertEqual(result["n_faces"], 1)
        self.assertEqual(result["n_triangles"], 2)
        self.assertEqual(result["textured_faces"], 1)
        self.assertEqual(result["face_perspectives"], {0: 0})
        self.assertEqual(result["texture_pixels"], texture.shape[0] * texture.shape[1])

    def test_untextured_export(self):
        output = os.path.join(self.test_output_dir, "untextured", "plain.obj")
        metrics = ExportMetrics()

        self.assertTrue(exporter.export_model(self.model, output, [], metrics=metrics))

        bundle = Path(self.test_output_dir) / "untextured" / "plain"
        self.assertFalse((bundle / "face0.png").exists())
        with open(bundle / "plain.mtl", "r") as f:
            self.assertEqual(f.read(), "")

        lines = self.read_lines(bundle / "plain.obj")
        self.assertEqual(lines[0], "mtllib ./plain.mtl")
        self.assertFalse(any(l.startswith("vt ") or l.startswith("usemtl") for l in lines))
        faces = [l for l in lines if l.startswith("f ")]
        self.assertEqual(len(faces), 2)
        self.assertTrue(all("/" not in l for l in faces))
        self.assertEqual(metrics.to_dict()["untextured_faces"], [0])

    def test_reversed_face_winding(self):
        bottom = self.face
        top = add_square(self.model, z=1.0)
        self.assertTrue(bottom.reversed)

        path = Path(self.test_output_dir) / "reversed.obj"
        exporter.write_obj(path, "reversed", self.model, [None, None])
        faces = [l for l in self.read_lines(path) if l.startswith("f ")]

        index = {v.id: i + 1 for i, v in enumerate(self.model.vertex_list())}
        first = bottom.triangulated[0]
        self.assertEqual(faces[0], f"f {index[first.b]} {index[first.a]} {index[first.c]}")
        first = top.triangulated[0]
        self.assertEqual(faces[2], f"f {index[first.a]} {index[first.b]} {index[first.c]}")

    def test_face_crossing_camera_plane_exported_untextured(self):
        add_camera_plane_face(self.model, self.perspective)
        output = os.path.join(self.test_output_dir, "camera_plane", "model.obj")
        metrics = ExportMetrics()

        with self.assertLogs("photomatch.exporter", level="WARNING") as logs:
            success = exporter.export_model(self.model, output, [self.perspective], metrics=metrics)

        self.assertTrue(success)
        self.assertFalse(any("Export failed" in message for message in logs.output))

        bundle = Path(self.test_output_dir) / "camera_plane" / "model"
        self.assertTrue((bundle / "face0.png").exists())
        self.assertFalse((bundle / "face1.png").exists())

        result = metrics.to_dict()
        self.assertTrue(result["success"])
        self.assertEqual(result["textured_faces"], 1)
        self.assertEqual(result["untextured_faces"], [1])

    def test_empty_file_name(self):
        with self.assertLogs("photomatch.exporter", level="ERROR") as logs:
            success = exporter.export_model(self.model, "", [self.perspective])

        self.assertFalse(success)
        self.assertTrue(any("Path is invalid." in message for message in logs.output))

    def test_invalid_path(self):
        blocker = os.path.join(self.test_output_dir, "blocker.txt")
        with open(blocker, "w") as f:
            f.write("not a directory")

        with self.assertLogs("photomatch.exporter", level="ERROR") as logs:
            success = exporter.export_model(self.model, os.path.join(blocker, "model.obj"), [self.perspective])

        self.assertFalse(success)
        self.assertTrue(any("Path is invalid." in message for message in logs.output))


if __name__ == "__main__":
    unittest.main()
