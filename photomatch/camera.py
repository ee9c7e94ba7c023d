"""Vanishing-point camera model.

This module implements the projective camera recovered from two vanishing
points: intrinsic matrix estimation, rotation from back-projected vanishing
directions, translation from the screen position of the world origin, and
the screen/world conversions built on top of them.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Optional

from photomatch.geometry import Line2D, Ray3D, project_vector_to_ray_2d
from photomatch.linalg import Matrix3x3, Vector2, Vector3

logger = logging.getLogger(__name__)


class CalibrationError(ValueError):
    """Raised when calibration inputs do not define a valid camera."""


class CalibrationAxes(enum.IntEnum):
    """Which world axes the first (A) and second (B) calibration line pairs represent."""

    XY = 0
    YX = 1
    XZ = 2
    ZX = 3
    YZ = 4
    ZY = 5


@dataclass(frozen=True)
class InvertedAxes:
    """Axis inversion flags. Default positive direction points to the axis vanishing point."""

    x: bool = False
    y: bool = False
    z: bool = False


def intrinsic_scale(
    principal_point: Vector2,
    view_ratio: float,
    vanishing_point_a: Optional[Vector2],
    vanishing_point_b: Optional[Vector2],
) -> float:
    """Focal length (in pixels) from the principal point and two orthogonal vanishing points.

    Args:
        principal_point: Principal point in pixels
        view_ratio: Pixel aspect ratio
        vanishing_point_a: Vanishing point of the first axis
        vanishing_point_b: Vanishing point of the second axis

    Returns:
        Focal length

    Raises:
        CalibrationError: If a vanishing point is missing or the configuration
            has no real focal length
    """
    if vanishing_point_a is None or vanishing_point_b is None:
        raise CalibrationError("Calibration lines are parallel, vanishing point is at infinity")

    p, a, b = principal_point, vanishing_point_a, vanishing_point_b
    squared = (
        -(p.x * p.x) + a.x * p.x + b.x * p.x - a.x * b.x
        + (-(p.y * p.y) + a.y * p.y + b.y * p.y - a.y * b.y) / (view_ratio * view_ratio)
    )

    if not squared > 0:
        raise CalibrationError(
            f"Vanishing points {a!r} and {b!r} do not define a real focal length "
            f"(squared scale {squared:.3f})"
        )

    return math.sqrt(squared)


def intrinsic_matrix(principal_point: Vector2, scale: float, view_ratio: float) -> Matrix3x3:
    return Matrix3x3([
        [scale, 0, principal_point.x],
        [0, scale * view_ratio, principal_point.y],
        [0, 0, 1],
    ])


def inverted_intrinsic_matrix(principal_point: Vector2, scale: float, view_ratio: float) -> Matrix3x3:
    scale_inv = 1 / scale
    ratio_inv = 1 / view_ratio
    return Matrix3x3([
        [scale_inv, 0, -principal_point.x * scale_inv],
        [0, scale_inv * ratio_inv, -principal_point.y * scale_inv * ratio_inv],
        [0, 0, 1],
    ])


def rotation_matrix(
    inverted_intrinsic: Matrix3x3,
    vanishing_point_a: Vector2,
    vanishing_point_b: Vector2,
    axes: CalibrationAxes,
    inverted: InvertedAxes,
) -> Matrix3x3:
    """Rotation whose columns are the camera-space directions of the world axes.

    The two calibrated axes come from the back-projected vanishing points, the
    remaining one from their cross product (keeping the basis right-handed).
    """
    col_a = (inverted_intrinsic @ Vector3.from_vector2(vanishing_point_a)).normalized()
    col_b = (inverted_intrinsic @ Vector3.from_vector2(vanishing_point_b)).normalized()

    def signed(column: Vector3, flip: bool) -> Vector3:
        return -column if flip else column

    if axes == CalibrationAxes.XY:
        first = signed(col_a, inverted.x)
        second = signed(col_b, inverted.y)
        third = first.cross(second)
    elif axes == CalibrationAxes.YX:
        first = signed(col_b, inverted.x)
        second = signed(col_a, inverted.y)
        third = first.cross(second)
    elif axes == CalibrationAxes.XZ:
        first = signed(col_a, inverted.x)
        third = signed(col_b, inverted.z)
        second = third.cross(first)
    elif axes == CalibrationAxes.ZX:
        first = signed(col_b, inverted.x)
        third = signed(col_a, inverted.z)
        second = third.cross(first)
    elif axes == CalibrationAxes.YZ:
        second = signed(col_a, inverted.y)
        third = signed(col_b, inverted.z)
        first = second.cross(third)
    elif axes == CalibrationAxes.ZY:
        second = signed(col_b, inverted.y)
        third = signed(col_a, inverted.z)
        first = second.cross(third)
    else:
        raise ValueError(f"Unknown calibration axes: {axes}")

    return Matrix3x3.from_columns(first, second, third)


class Camera:
    """Projective transform between world space and image pixels.

    ``world_to_screen(w) = K (R w S + T)`` after perspective division, where
    K is the intrinsic matrix, R the rotation, T the translation placing the
    world origin on its screen position and S the model scale.
    """

    def __init__(self):
        self.intrinsic = Matrix3x3.identity()
        self.intrinsic_inverse = Matrix3x3.identity()
        self.rotation = Matrix3x3.identity()
        self.rotation_inverse = Matrix3x3.identity()
        self.translate = Vector3(0, 0, 1)
        self.scale = 1.0
        self.focal_length: Optional[float] = None

    def update_view(
        self,
        view_ratio: float,
        principal_point: Vector2,
        vanishing_point_a: Optional[Vector2],
        vanishing_point_b: Optional[Vector2],
        origin: Vector2,
        axes: CalibrationAxes,
        inverted: InvertedAxes,
    ) -> None:
        """Recompute all camera matrices from calibration inputs.

        Nothing is modified when the inputs are invalid.

        Raises:
            CalibrationError: If no valid camera matches the inputs
        """
        scale = intrinsic_scale(principal_point, view_ratio, vanishing_point_a, vanishing_point_b)
        intrinsic = intrinsic_matrix(principal_point, scale, view_ratio)
        intrinsic_inverse = inverted_intrinsic_matrix(principal_point, scale, view_ratio)
        rotation = rotation_matrix(intrinsic_inverse, vanishing_point_a, vanishing_point_b, axes, inverted)

        self.focal_length = scale
        self.intrinsic = intrinsic
        self.intrinsic_inverse = intrinsic_inverse
        self.rotation = rotation
        self.rotation_inverse = rotation.transposed()
        self.translate = intrinsic_inverse @ Vector3.from_vector2(origin)

        logger.debug(f"Camera updated: focal length {scale:.2f}px, axes {axes.name}")

    def update_scale(self, scale: float) -> None:
        self.scale = scale

    @property
    def position(self) -> Vector3:
        """World position of the projection centre (camera-space depth 0)."""
        return (self.rotation_inverse @ -self.translate) / self.scale

    def depth(self, world_point: Vector3) -> float:
        """Camera-space depth of a world point; positive in front of the camera."""
        return ((self.rotation @ world_point) * self.scale + self.translate).z

    def world_to_screen(self, world_point: Vector3) -> Vector2:
        point = (self.rotation @ world_point) * self.scale + self.translate
        point = point / point.z
        point = self.intrinsic @ point
        return Vector2(point.x, point.y)

    def screen_to_world(self, screen_point: Vector2) -> Vector3:
        """Back-project a pixel at camera-space depth 1."""
        camera_point = self.intrinsic_inverse @ Vector3.from_vector2(screen_point)
        return (self.rotation_inverse @ (camera_point - self.translate)) / self.scale

    def screen_to_world_ray(self, screen_point: Vector2) -> Ray3D:
        """World ray through a pixel, starting at depth 1 and pointing away from the camera."""
        camera_point = self.intrinsic_inverse @ Vector3.from_vector2(screen_point)
        start = (self.rotation_inverse @ (camera_point - self.translate)) / self.scale
        behind = (self.rotation_inverse @ (camera_point * 2 - self.translate)) / self.scale
        return Ray3D(start, behind - start)

    def match_screen_world_point(self, screen_point: Vector2, world_point: Vector3) -> Vector2:
        """Origin screen position for which world_point projects onto screen_point."""
        rhs = self.intrinsic @ (self.rotation @ (world_point * self.scale)) + Vector3(0, 0, 1)
        return Vector2(
            screen_point.x * rhs.z - rhs.x,
            screen_point.y * rhs.z - rhs.y,
        )

    def match_screen_world_points(
        self,
        screen_point_pos: Vector2,
        world_point_pos: Vector3,
        screen_point_scale: Vector2,
        world_point_scale: Vector3,
    ) -> Vector3:
        """Origin screen position and scale matching two screen/world point pairs.

        world_point_pos lands exactly on screen_point_pos; world_point_scale
        lands as close as possible to screen_point_scale along the line from
        the first screen point.

        Returns:
            Vector3 of (origin x, origin y, scale)
        """
        projection_matrix = self.intrinsic @ self.rotation
        a = projection_matrix @ world_point_pos
        a2 = projection_matrix @ world_point_scale
        s = screen_point_pos

        direction_line = Line2D(screen_point_pos, self.world_to_screen(world_point_scale))
        ps = project_vector_to_ray_2d(screen_point_scale, direction_line.as_ray()).projection

        scale = (s.x - ps.x) / (a.x - s.x * a.z - a2.x + ps.x * a2.z)
        x = s.x + (s.x * a.z - a.x) * scale
        y = s.y + (s.y * a.z - a.y) * scale
        return Vector3(x, y, scale)
