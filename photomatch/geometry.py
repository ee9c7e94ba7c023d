"""Computational geometry in 2D and 3D.

This module implements the primitives (lines, rays, planes) and the
intersection and projection routines used by the camera model, the mesh
model and the exporter. Routines that may have no result (parallel lines,
rays parallel to a plane, ...) return ``None`` instead of a sentinel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from photomatch.linalg import Matrix3x3, Vector2, Vector3
from photomatch.solver import SingularSystemError, solve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Line2D:
    """2D line segment."""

    start: Vector2
    end: Vector2

    @property
    def length(self) -> float:
        return (self.end - self.start).magnitude

    def as_ray(self) -> "Ray2D":
        return Ray2D(self.start, self.end - self.start)

    def scaled(self, x_stretch: float, y_stretch: float) -> "Line2D":
        """Segment with x coordinates multiplied by x_stretch and y by y_stretch."""
        return Line2D(
            Vector2(self.start.x * x_stretch, self.start.y * y_stretch),
            Vector2(self.end.x * x_stretch, self.end.y * y_stretch),
        )


class Ray2D:
    """2D half-line with a unit direction."""

    def __init__(self, start: Vector2, direction: Vector2):
        self.start = start
        self.direction = direction.normalized()

    def as_line(self) -> Line2D:
        return Line2D(self.start, self.start + self.direction)

    def __repr__(self) -> str:
        return f"Ray2D({self.start!r}, {self.direction!r})"


@dataclass(frozen=True)
class Line3D:
    """3D line segment."""

    start: Vector3
    end: Vector3

    @property
    def length(self) -> float:
        return (self.end - self.start).magnitude

    def as_ray(self) -> "Ray3D":
        return Ray3D(self.start, self.end - self.start)


class Ray3D:
    """3D half-line with a unit direction."""

    def __init__(self, start: Vector3, direction: Vector3):
        self.start = start
        self.direction = direction.normalized()

    def point_at(self, distance: float) -> Vector3:
        return self.start + self.direction * distance

    def __repr__(self) -> str:
        return f"Ray3D({self.start!r}, {self.direction!r})"


class Plane3D:
    """Plane given by a point and a unit normal."""

    def __init__(self, point: Vector3, normal: Vector3):
        self.point = point
        self.normal = normal.normalized()

    def __repr__(self) -> str:
        return f"Plane3D({self.point!r}, {self.normal!r})"


@dataclass(frozen=True)
class IntersectionPoint2D:
    """Intersection of two 2D lines.

    The relative values are the parameters along each line: 0 at its start,
    1 at its end.
    """

    intersection: Vector2
    line_a_relative: float
    line_b_relative: float


@dataclass(frozen=True)
class Vector2Proj:
    projection: Vector2
    distance: float
    ray_relative: float


@dataclass(frozen=True)
class Vector3RayProj:
    projection: Vector3
    distance: float
    ray_relative: float


@dataclass(frozen=True)
class Vector3PlaneProj:
    projection: Vector3
    distance: float


@dataclass(frozen=True)
class ClosestPoint3D:
    """Closest points of two 3D rays and their distance."""

    ray_a_closest: Vector3
    ray_b_closest: Vector3
    ray_a_relative: float
    ray_b_relative: float
    distance: float


@dataclass(frozen=True)
class RayPlaneIntersectionPoint:
    intersection: Vector3
    ray_relative: float


@dataclass(frozen=True)
class RayPolygonIntersectionPoint:
    intersection: Vector3
    ray_relative: float


# ---------------------------------------------------------------------------
# 2D
# ---------------------------------------------------------------------------

def line_line_intersection(a: Line2D, b: Line2D) -> Optional[IntersectionPoint2D]:
    """Intersect the infinite lines through two segments.

    Args:
        a: First line
        b: Second line

    Returns:
        Intersection point with the parameters along both lines, or None if
        the lines are parallel
    """
    x1, y1 = a.start.x, a.start.y
    x2, y2 = a.end.x, a.end.y
    x3, y3 = b.start.x, b.start.y
    x4, y4 = b.end.x, b.end.y

    denominator = (x1 - x2) * (y3 - y4) - (y1 - y2) * (x3 - x4)
    if denominator == 0:
        return None

    t = ((x1 - x3) * (y3 - y4) - (y1 - y3) * (x3 - x4)) / denominator
    u = ((y1 - y2) * (x1 - x3) - (x1 - x2) * (y1 - y3)) / denominator

    intersection = Vector2(x1 + t * (x2 - x1), y1 + t * (y2 - y1))
    return IntersectionPoint2D(intersection, t, u)


def ray_inside_box_intersection(ray: Ray2D, corner1: Vector2, corner2: Vector2) -> Optional[Vector2]:
    """Find where a ray starting inside an axis-aligned box leaves it.

    Sides are tested in the order top, bottom, left, right; the first side hit
    in front of the ray is returned.

    Args:
        ray: Ray starting inside the box
        corner1: Top left corner (smaller coordinates)
        corner2: Bottom right corner (larger coordinates)

    Returns:
        Exit point, or None if no side is hit

    Raises:
        ValueError: If corner1 is not the smaller corner
    """
    if corner1.x > corner2.x or corner1.y > corner2.y:
        raise ValueError(f"Box corners are in wrong order: {corner1!r}, {corner2!r}")

    ray_line = ray.as_line()
    top_left = corner1
    bottom_right = corner2
    top_right = Vector2(corner2.x, corner1.y)
    bottom_left = Vector2(corner1.x, corner2.y)

    sides = []
    if ray.start.y > corner1.y:
        sides.append(Line2D(top_left, top_right))
    if ray.start.y < corner2.y:
        sides.append(Line2D(bottom_left, bottom_right))
    if ray.start.x > corner1.x:
        sides.append(Line2D(top_left, bottom_left))
    if ray.start.x < corner2.x:
        sides.append(Line2D(top_right, bottom_right))

    for side in sides:
        hit = line_line_intersection(ray_line, side)
        if hit is None:
            continue
        if hit.line_a_relative >= 0 and 0 <= hit.line_b_relative <= 1:
            return hit.intersection

    return None


def project_vector_to_ray_2d(point: Vector2, ray: Ray2D) -> Vector2Proj:
    """Orthogonally project a point onto the line of a 2D ray."""
    relative = (point - ray.start).dot(ray.direction)
    projection = ray.start + ray.direction * relative
    return Vector2Proj(projection, (point - projection).magnitude, relative)


def is_point_inside_polygon(point: Vector2, polygon: Sequence[Vector2]) -> bool:
    """Crossing-number test with a ray from the point towards +x.

    Known limitation: when the test ray passes exactly through a polygon
    vertex the crossing may be counted twice.

    Args:
        point: Tested point
        polygon: Polygon vertices in order

    Returns:
        True if the point is inside the polygon
    """
    test_line = Line2D(point, point + Vector2(1, 0))
    crossings = 0
    for i in range(len(polygon)):
        edge = Line2D(polygon[i - 1], polygon[i])
        hit = line_line_intersection(test_line, edge)
        if hit is None:
            continue
        if 0 <= hit.line_b_relative <= 1 and hit.line_a_relative >= 0:
            crossings += 1

    return crossings % 2 == 1


def _is_right(start: Vector2, end: Vector2, point: Vector2) -> bool:
    return (end - start).cross(point - start) <= 0


def is_point_inside_triangle(point: Vector2, a: Vector2, b: Vector2, c: Vector2) -> bool:
    """Half-plane test that works for both triangle windings (boundary counts as inside)."""
    if _is_right(a, b, c):
        return _is_right(a, b, point) and _is_right(b, c, point) and _is_right(c, a, point)
    return _is_right(a, c, point) and _is_right(c, b, point) and _is_right(b, a, point)


def is_clockwise(polygon: Sequence[Vector2]) -> bool:
    """Orientation of a simple polygon in a y-up coordinate system."""
    total = 0.0
    for i in range(len(polygon)):
        start = polygon[i - 1]
        end = polygon[i]
        total += (end.x - start.x) * (end.y + start.y)
    return total > 0


# ---------------------------------------------------------------------------
# 3D
# ---------------------------------------------------------------------------

def project_vector_to_ray(point: Vector3, ray: Ray3D) -> Vector3RayProj:
    """Orthogonally project a point onto the line of a 3D ray."""
    relative = (point - ray.start).dot(ray.direction)
    projection = ray.point_at(relative)
    return Vector3RayProj(projection, (point - projection).magnitude, relative)


def project_vector_to_plane(point: Vector3, plane: Plane3D) -> Vector3PlaneProj:
    """Orthogonally project a point onto a plane."""
    signed_distance = (point - plane.point).dot(plane.normal)
    projection = point - plane.normal * signed_distance
    return Vector3PlaneProj(projection, abs(signed_distance))


def ray_ray_closest(a: Ray3D, b: Ray3D) -> Optional[ClosestPoint3D]:
    """Closest points between the lines of two 3D rays.

    Solves ``start_a + t1 * dir_a + t3 * n = start_b + t2 * dir_b`` where ``n``
    is the common normal of both directions.

    Returns:
        Closest points and their distance, or None for parallel rays
    """
    tangent = b.direction.cross(a.direction).normalized()
    if not tangent.valid:
        return None

    matrix = Matrix3x3.from_columns(a.direction, -b.direction, tangent)
    try:
        params = solve(matrix, b.start - a.start)
    except SingularSystemError:
        return None

    t1, t2, t3 = params.x, params.y, params.z
    return ClosestPoint3D(
        ray_a_closest=a.point_at(t1),
        ray_b_closest=b.point_at(t2),
        ray_a_relative=t1,
        ray_b_relative=t2,
        distance=abs(t3),
    )


def ray_plane_intersection(ray: Ray3D, plane: Plane3D) -> Optional[RayPlaneIntersectionPoint]:
    """Intersect a ray's line with a plane (None if parallel)."""
    denominator = ray.direction.dot(plane.normal)
    if denominator == 0:
        return None

    distance = (plane.point - ray.start).dot(plane.normal) / denominator
    return RayPlaneIntersectionPoint(ray.point_at(distance), distance)


def rotate_align(v1: Vector3, v2: Vector3) -> Matrix3x3:
    """Rotation matrix that maps unit vector v1 onto unit vector v2.

    Antiparallel vectors are handled by rotating through an intermediate
    vector.

    Args:
        v1: Unit source direction
        v2: Unit target direction

    Returns:
        Rotation matrix R with R @ v1 == v2
    """
    axis = v1.cross(v2)
    cos_a = v1.dot(v2)

    if cos_a == -1:
        if abs(v1.x) >= 0.5:
            middle = (v1 + Vector3(0, 0.5, 0)).normalized()
        else:
            middle = (v1 + Vector3(0.5, 0, 0)).normalized()
        return rotate_align(middle, v2) @ rotate_align(v1, middle)

    k = 1.0 / (1.0 + cos_a)
    ax, ay, az = axis.x, axis.y, axis.z
    return Matrix3x3([
        [ax * ax * k + cos_a, ay * ax * k - az, az * ax * k + ay],
        [ax * ay * k + az, ay * ay * k + cos_a, az * ay * k - ax],
        [ax * az * k - ay, ay * az * k + ax, az * az * k + cos_a],
    ])


def ray_polygon_intersection(
    ray: Ray3D,
    vertices: Sequence[Vector3],
    normal: Vector3,
) -> Optional[RayPolygonIntersectionPoint]:
    """Intersect a ray with a planar polygon.

    The hit point on the polygon's plane is rotated together with the
    polygon so that the normal points along +Z, where the 2D point-in-polygon
    test is applied.

    Args:
        ray: Tested ray
        vertices: Polygon vertices (coplanar)
        normal: Unit polygon normal

    Returns:
        Intersection point, or None if the ray misses the polygon
    """
    hit = ray_plane_intersection(ray, Plane3D(vertices[0], normal))
    if hit is None:
        return None

    rotation = rotate_align(normal, Vector3(0, 0, 1))
    polygon: List[Vector2] = [(rotation @ v).xy for v in vertices]
    point = (rotation @ hit.intersection).xy

    if not is_point_inside_polygon(point, polygon):
        return None

    return RayPolygonIntersectionPoint(hit.intersection, hit.ray_relative)
