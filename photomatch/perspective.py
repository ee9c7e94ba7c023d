"""Photograph together with its vanishing-point calibration.

A :class:`PerspectiveData` owns the image, the calibration inputs (two pairs
of lines, origin, axes, inversion, scale) and the :class:`Camera` computed
from them. Any change of a calibration input recomputes the camera and emits
``perspective_changed``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from photomatch.camera import CalibrationAxes, CalibrationError, Camera, InvertedAxes
from photomatch.events import Event
from photomatch.geometry import Line2D, Ray3D, line_line_intersection
from photomatch.linalg import Vector2, Vector3

logger = logging.getLogger(__name__)

# Default calibration lines, relative to the image size
DEFAULT_LINE_A1 = Line2D(Vector2(0.52, 0.19), Vector2(0.76, 0.28))
DEFAULT_LINE_A2 = Line2D(Vector2(0.35, 0.67), Vector2(0.46, 0.82))
DEFAULT_LINE_B1 = Line2D(Vector2(0.27, 0.31), Vector2(0.48, 0.21))
DEFAULT_LINE_B2 = Line2D(Vector2(0.55, 0.78), Vector2(0.71, 0.68))


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into an RGB pixel buffer.

    Args:
        data: Encoded image (PNG, JPEG, ...)

    Returns:
        HxWx3 uint8 array in RGB order

    Raises:
        ValueError: If the bytes are not a decodable image
    """
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Image data could not be decoded")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


class PerspectiveData:
    """All data about one photograph and its calibration."""

    def __init__(self, image: np.ndarray, image_data: bytes = b"", image_path: str = ""):
        """Create a perspective with default calibration for an image.

        Args:
            image: HxWx3 RGB pixel buffer
            image_data: Encoded image bytes (kept for project files)
            image_path: Original path of the image
        """
        self.image = image
        self.image_data = image_data
        self.image_path = image_path
        self.perspective_changed = Event("perspective_changed")
        self.camera = Camera()
        self.valid = False

        height, width = image.shape[:2]
        self._line_a1 = DEFAULT_LINE_A1.scaled(width, height)
        self._line_a2 = DEFAULT_LINE_A2.scaled(width, height)
        self._line_b1 = DEFAULT_LINE_B1.scaled(width, height)
        self._line_b2 = DEFAULT_LINE_B2.scaled(width, height)
        self._origin = Vector2(width // 2, height // 2)
        self._calibration_axes = CalibrationAxes.XY
        self._inverted_axes = InvertedAxes()
        self._scale = 1.0

        self.recalculate_projection()

    @classmethod
    def from_bytes(cls, data: bytes, image_path: str = "") -> "PerspectiveData":
        return cls(decode_image(data), data, image_path)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PerspectiveData":
        """Load a perspective from an image file.

        Args:
            path: Path to the image

        Returns:
            New perspective with default calibration
        """
        path = Path(path)
        logger.info(f"Loading image {path}")
        data = path.read_bytes()
        return cls.from_bytes(data, str(path))

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    @property
    def principal_point(self) -> Vector2:
        return Vector2(self.width // 2, self.height // 2)

    # Calibration inputs

    def _changed(self) -> None:
        self.recalculate_projection()
        self.perspective_changed.emit()

    @property
    def origin(self) -> Vector2:
        return self._origin

    @origin.setter
    def origin(self, value: Vector2) -> None:
        self._origin = value
        self._changed()

    @property
    def line_a1(self) -> Line2D:
        return self._line_a1

    @line_a1.setter
    def line_a1(self, value: Line2D) -> None:
        self._line_a1 = value
        self._changed()

    @property
    def line_a2(self) -> Line2D:
        return self._line_a2

    @line_a2.setter
    def line_a2(self, value: Line2D) -> None:
        self._line_a2 = value
        self._changed()

    @property
    def line_b1(self) -> Line2D:
        return self._line_b1

    @line_b1.setter
    def line_b1(self, value: Line2D) -> None:
        self._line_b1 = value
        self._changed()

    @property
    def line_b2(self) -> Line2D:
        return self._line_b2

    @line_b2.setter
    def line_b2(self, value: Line2D) -> None:
        self._line_b2 = value
        self._changed()

    @property
    def calibration_axes(self) -> CalibrationAxes:
        return self._calibration_axes

    @calibration_axes.setter
    def calibration_axes(self, value: CalibrationAxes) -> None:
        if value != self._calibration_axes:
            self._calibration_axes = CalibrationAxes(value)
            self._changed()

    @property
    def inverted_axes(self) -> InvertedAxes:
        return self._inverted_axes

    @inverted_axes.setter
    def inverted_axes(self, value: InvertedAxes) -> None:
        self._inverted_axes = value
        self._changed()

    @property
    def scale(self) -> float:
        return self._scale

    @scale.setter
    def scale(self, value: float) -> None:
        self._scale = value
        self.camera.update_scale(value)
        self.perspective_changed.emit()

    def set_calibration(
        self,
        origin: Vector2,
        line_a1: Line2D,
        line_a2: Line2D,
        line_b1: Line2D,
        line_b2: Line2D,
        scale: float,
        calibration_axes: CalibrationAxes,
        inverted_axes: InvertedAxes,
    ) -> None:
        """Replace every calibration input at once (recomputes the camera once)."""
        self._origin = origin
        self._line_a1 = line_a1
        self._line_a2 = line_a2
        self._line_b1 = line_b1
        self._line_b2 = line_b2
        self._scale = scale
        self._calibration_axes = CalibrationAxes(calibration_axes)
        self._inverted_axes = inverted_axes
        self._changed()

    # Camera

    @property
    def vanishing_point_a(self) -> Optional[Vector2]:
        hit = line_line_intersection(self._line_a1, self._line_a2)
        return hit.intersection if hit is not None else None

    @property
    def vanishing_point_b(self) -> Optional[Vector2]:
        hit = line_line_intersection(self._line_b1, self._line_b2)
        return hit.intersection if hit is not None else None

    def recalculate_projection(self) -> None:
        """Recompute the camera from the calibration inputs.

        Degenerate calibrations keep the previous camera and mark the
        perspective as invalid.
        """
        try:
            self.camera.update_view(
                1.0,
                self.principal_point,
                self.vanishing_point_a,
                self.vanishing_point_b,
                self._origin,
                self._calibration_axes,
                self._inverted_axes,
            )
        except CalibrationError as e:
            logger.warning(f"Calibration of {self.image_path or 'image'} is degenerate: {e}")
            self.valid = False
        else:
            self.valid = True
        self.camera.update_scale(self._scale)

    def world_to_screen(self, point: Vector3) -> Vector2:
        return self.camera.world_to_screen(point)

    def screen_to_world(self, point: Vector2) -> Vector3:
        return self.camera.screen_to_world(point)

    def depth(self, point: Vector3) -> float:
        return self.camera.depth(point)

    def screen_to_world_ray(self, point: Vector2) -> Ray3D:
        return self.camera.screen_to_world_ray(point)

    def match_screen_world_point(self, screen_point: Vector2, world_point: Vector3) -> Vector2:
        return self.camera.match_screen_world_point(screen_point, world_point)

    def match_screen_world_points(
        self,
        screen_point_pos: Vector2,
        world_point_pos: Vector3,
        screen_point_scale: Vector2,
        world_point_scale: Vector3,
    ) -> Vector3:
        return self.camera.match_screen_world_points(
            screen_point_pos, world_point_pos, screen_point_scale, world_point_scale
        )

    def _axis_direction_at(self, screen_point: Vector2, axis: Vector3) -> Vector2:
        moved = self.camera.world_to_screen(self.camera.screen_to_world(screen_point) + axis)
        return (moved - screen_point).normalized()

    def get_x_dir_at(self, screen_point: Vector2) -> Vector2:
        """Screen direction of the world x axis at a pixel."""
        return self._axis_direction_at(screen_point, Vector3(1, 0, 0))

    def get_y_dir_at(self, screen_point: Vector2) -> Vector2:
        """Screen direction of the world y axis at a pixel."""
        return self._axis_direction_at(screen_point, Vector3(0, 1, 0))

    def get_z_dir_at(self, screen_point: Vector2) -> Vector2:
        """Screen direction of the world z axis at a pixel."""
        return self._axis_direction_at(screen_point, Vector3(0, 0, 1))
