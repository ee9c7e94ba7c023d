"""Ear-clipping triangulation of planar faces.

Faces are rotated so that their normal points along +Z and triangulated in
2D. Ears are clipped smallest angle first; every new triangle whose minimal
angle is too small is offered an edge swap with an already emitted
neighbour, keeping whichever configuration has the larger minimal angle.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Sequence, Tuple

from photomatch.geometry import is_point_inside_triangle, rotate_align
from photomatch.linalg import Vector2, Vector3

logger = logging.getLogger(__name__)

MIN_EDGE_ANGLE = math.pi / 6

TriangleIndices = Tuple[int, int, int]


class DegenerateFaceError(ValueError):
    """Raised when a face has no valid normal or cannot be triangulated."""


def vertex_angle(prev: Vector2, act: Vector2, next_: Vector2) -> float:
    """Signed angle at ``act``; non-negative for convex vertices of a counter-clockwise polygon."""
    ab = prev - act
    cb = next_ - act
    return math.atan2(cb.x * ab.y - cb.y * ab.x, ab.dot(cb))


def _triangle_angles(triangle: TriangleIndices, points: Sequence[Vector2]) -> Tuple[float, float, float]:
    a, b, c = triangle
    return (
        vertex_angle(points[c], points[a], points[b]),
        vertex_angle(points[a], points[b], points[c]),
        vertex_angle(points[b], points[c], points[a]),
    )


def _is_ear(prev: Vector2, act: Vector2, next_: Vector2, points: Sequence[Vector2]) -> bool:
    for point in points:
        if point == prev or point == act or point == next_:
            continue
        if is_point_inside_triangle(point, prev, act, next_):
            return False
    return True


def _third_vertex(triangle: TriangleIndices, a: int, b: int) -> int:
    for vertex in triangle:
        if vertex != a and vertex != b:
            return vertex
    return -1


def _switch_quadrilateral(
    triangle: TriangleIndices,
    existing: TriangleIndices,
    triangles: List[TriangleIndices],
    points: Sequence[Vector2],
    start: int,
    end: int,
) -> None:
    last = _third_vertex(triangle, start, end)
    existing_last = _third_vertex(existing, start, end)

    new_a = (last, start, existing_last)
    new_b = (existing_last, end, last)

    new_min = min(min(_triangle_angles(new_a, points)), min(_triangle_angles(new_b, points)))
    old_min = min(min(_triangle_angles(triangle, points)), min(_triangle_angles(existing, points)))

    if old_min < new_min:
        triangles.remove(existing)
        triangles.append(new_a)
        triangles.append(new_b)
    else:
        triangles.append(triangle)


def _edge_swap_add(triangle: TriangleIndices, triangles: List[TriangleIndices], points: Sequence[Vector2]) -> None:
    angle_a, angle_b, angle_c = _triangle_angles(triangle, points)

    if min(angle_a, angle_b, angle_c) < MIN_EDGE_ANGLE:
        a, b, c = triangle
        # Swap across the edge opposite to the largest angle
        if angle_a >= angle_b and angle_a >= angle_c:
            start, end = b, c
        elif angle_b >= angle_a and angle_b >= angle_c:
            start, end = c, a
        else:
            start, end = a, b

        for existing in triangles:
            if start in existing and end in existing:
                _switch_quadrilateral(triangle, existing, triangles, points, start, end)
                return

    triangles.append(triangle)


def triangulate(points: Sequence[Vector2], vertex_map: Sequence[int]) -> List[TriangleIndices]:
    """Triangulate a simple counter-clockwise polygon.

    Args:
        points: Distinct 2D vertex positions
        vertex_map: Polygon boundary as indices into points (a point may
            appear more than once, e.g. for faces with holes joined by a
            bridge edge)

    Returns:
        ``len(vertex_map) - 2`` triangles as index triples into points

    Raises:
        DegenerateFaceError: If no ear can be found
    """
    n = len(vertex_map)
    if n < 3:
        raise DegenerateFaceError(f"Polygon with {n} vertices cannot be triangulated")

    next_vertex = [(i + 1) % n for i in range(n)]
    prev_vertex = [(i - 1) % n for i in range(n)]
    angles = [0.0] * n
    # Insertion-ordered set of ear ids
    ears: Dict[int, None] = {}

    def update(vertex_id: int) -> None:
        prev = points[vertex_map[prev_vertex[vertex_id]]]
        act = points[vertex_map[vertex_id]]
        next_ = points[vertex_map[next_vertex[vertex_id]]]
        angles[vertex_id] = vertex_angle(prev, act, next_)
        if angles[vertex_id] >= 0 and _is_ear(prev, act, next_, points):
            ears[vertex_id] = None

    for i in range(n):
        update((i + 1) % n)

    triangles: List[TriangleIndices] = []
    for _ in range(n - 2):
        if not ears:
            raise DegenerateFaceError("No ear found, polygon is not simple")

        smallest = -1
        for ear in ears:
            if smallest == -1 or angles[ear] < angles[smallest]:
                smallest = ear

        prev_id = prev_vertex[smallest]
        next_id = next_vertex[smallest]

        _edge_swap_add(
            (vertex_map[prev_id], vertex_map[smallest], vertex_map[next_id]),
            triangles,
            points,
        )

        for vertex_id in (smallest, prev_id, next_id):
            ears.pop(vertex_id, None)

        next_vertex[prev_id] = next_id
        prev_vertex[next_id] = prev_id

        update(prev_id)
        update(next_id)

    return triangles


def triangulate_face(
    positions: Sequence[Vector3],
    vertex_map: Sequence[int],
    normal: Vector3,
) -> List[TriangleIndices]:
    """Triangulate a planar 3D polygon.

    Args:
        positions: Distinct vertex positions of the face
        vertex_map: Face boundary as indices into positions
        normal: Unit face normal; the boundary must be counter-clockwise
            when viewed against it

    Returns:
        Triangles as index triples into positions
    """
    rotation = rotate_align(normal, Vector3(0, 0, 1))
    points = [(rotation @ p).xy for p in positions]
    triangles = triangulate(points, vertex_map)
    logger.debug(f"Triangulated face with {len(vertex_map)} vertices into {len(triangles)} triangles")
    return triangles
