"""Topological mesh of vertices, edges and planar faces.

The :class:`Model` owns every entity in insertion-ordered dictionaries keyed
by stable integer ids. Entities keep a reference to their model and delegate
mutations (moving or removing) to it, so all bookkeeping happens in one
place:

- removing a vertex removes its edges and every face using it,
- removing an edge removes endpoints left without edges and merges
  endpoints left between two collinear edges,
- moving a vertex recomputes the faces using it,
- every face change recomputes which faces lie in front of which.
"""

from __future__ import annotations

import itertools
import logging
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence, Set

from photomatch.events import Event
from photomatch.geometry import Ray3D, is_clockwise, ray_polygon_intersection, rotate_align
from photomatch.linalg import Vector3
from photomatch.triangulation import DegenerateFaceError, triangulate_face

logger = logging.getLogger(__name__)

COLLINEAR_TOLERANCE = 1e-6

# Barycentric weights of the face point inside the first triangle
FACE_POINT_WEIGHTS = (0.5, 0.16, 0.34)

__all__ = [
    "COLLINEAR_TOLERANCE",
    "DegenerateFaceError",
    "Edge",
    "Face",
    "Model",
    "Triangle",
    "Vertex",
]


class Triangle(NamedTuple):
    """Triangle of a face triangulation, as vertex ids."""

    a: int
    b: int
    c: int


class Vertex:
    """Mesh vertex."""

    def __init__(self, model: "Model", vertex_id: int, position: Vector3):
        self.model = model
        self.id = vertex_id
        self._position = position
        self.edge_ids: List[int] = []

    @property
    def position(self) -> Vector3:
        return self._position

    @position.setter
    def position(self, value: Vector3) -> None:
        self.model.move_vertex(self, value)

    @property
    def connected_edges(self) -> List["Edge"]:
        return [self.model.edges[i] for i in self.edge_ids if i in self.model.edges]

    def remove(self) -> None:
        self.model.remove_vertex(self)

    def __repr__(self) -> str:
        return f"Vertex(id={self.id}, position={self._position!r})"


class Edge:
    """Mesh edge between two vertices."""

    def __init__(self, model: "Model", edge_id: int, start_id: int, end_id: int):
        self.model = model
        self.id = edge_id
        self.start_id = start_id
        self.end_id = end_id
        self.remove_vertices_on_remove = True

    @property
    def start(self) -> Vertex:
        return self.model.vertex(self.start_id)

    @property
    def end(self) -> Vertex:
        return self.model.vertex(self.end_id)

    def other(self, vertex_id: int) -> int:
        """Id of the endpoint opposite to vertex_id."""
        return self.end_id if self.start_id == vertex_id else self.start_id

    def remove(self) -> None:
        self.model.remove_edge(self)

    def __repr__(self) -> str:
        return f"Edge(id={self.id}, {self.start_id} -> {self.end_id})"


class Face:
    """Planar polygon defined by an ordered list of vertices.

    The derived geometry (normal, face point, triangulation) is computed on
    construction and whenever one of the vertices moves.

    Raises:
        DegenerateFaceError: On construction, if the vertices do not span a
            valid polygon
    """

    def __init__(self, model: "Model", face_id: int, vertex_ids: Sequence[int]):
        self.model = model
        self.id = face_id
        self.vertex_ids: List[int] = list(vertex_ids)
        self.unique_vertex_ids: List[int] = list(dict.fromkeys(self.vertex_ids))

        self.normal = Vector3.invalid()
        self.face_point = Vector3.invalid()
        self.triangulated: List[Triangle] = []
        self.faces_front: Set[int] = set()
        self.user_reversed: Optional[bool] = None

        self.recalculate()

    def __len__(self) -> int:
        return len(self.vertex_ids)

    def __getitem__(self, i: int) -> Vertex:
        return self.model.vertex(self.vertex_ids[i])

    @property
    def vertices(self) -> List[Vertex]:
        return [self.model.vertex(i) for i in self.vertex_ids]

    @property
    def unique_vertices(self) -> List[Vertex]:
        return [self.model.vertex(i) for i in self.unique_vertex_ids]

    @property
    def positions(self) -> List[Vector3]:
        return [self.model.vertex(i).position for i in self.vertex_ids]

    @property
    def reversed(self) -> bool:
        """Whether the face's outside is opposite to its normal."""
        if self.user_reversed is not None:
            return self.user_reversed
        return len(self.faces_front) % 2 == 1

    def recalculate(self) -> None:
        """Recompute normal, triangulation and face point.

        The previous values are kept if the new geometry is degenerate.

        Raises:
            DegenerateFaceError: If the current vertex positions do not form a
                valid polygon
        """
        if len(self.unique_vertex_ids) < 3:
            raise DegenerateFaceError(
                f"Face needs at least 3 distinct vertices, got {len(self.unique_vertex_ids)}"
            )

        positions = self.positions
        normal = (positions[1] - positions[0]).cross(positions[2] - positions[0]).normalized()
        if not normal.valid:
            raise DegenerateFaceError("First three face vertices are collinear")

        rotation = rotate_align(normal, Vector3(0, 0, 1))
        if is_clockwise([(rotation @ p).xy for p in positions]):
            normal = -normal

        unique_positions = [self.model.vertex(i).position for i in self.unique_vertex_ids]
        index_of = {vertex_id: i for i, vertex_id in enumerate(self.unique_vertex_ids)}
        vertex_map = [index_of[vertex_id] for vertex_id in self.vertex_ids]

        triangles = triangulate_face(unique_positions, vertex_map, normal)
        if not triangles:
            raise DegenerateFaceError("Face triangulation is empty")

        self.normal = normal
        self.triangulated = [
            Triangle(
                self.unique_vertex_ids[a],
                self.unique_vertex_ids[b],
                self.unique_vertex_ids[c],
            )
            for a, b, c in triangles
        ]
        first = self.triangulated[0]
        wa, wb, wc = FACE_POINT_WEIGHTS
        self.face_point = (
            self.model.vertex(first.a).position * wa
            + self.model.vertex(first.b).position * wb
            + self.model.vertex(first.c).position * wc
        )

    def triangle_positions(self, triangle: Triangle) -> List[Vector3]:
        return [self.model.vertex(i).position for i in triangle]

    def is_in_front_of(self, other: "Face") -> bool:
        """Whether the ray from this face's face point along its normal hits other."""
        if other is self:
            return False
        ray = Ray3D(self.face_point, self.normal)
        hit = ray_polygon_intersection(ray, other.positions, other.normal)
        return hit is not None and hit.ray_relative >= 0

    def user_reverse(self) -> None:
        """Flip the face orientation and pin it against automatic updates."""
        self.model.set_user_reversed(self, not self.reversed)

    def remove(self) -> None:
        self.model.remove_face(self)

    def __repr__(self) -> str:
        return f"Face(id={self.id}, vertices={self.vertex_ids})"


class Model:
    """Mesh composed of vertices, edges and faces.

    The first vertex ever added is protected: removing it removes its edges
    and faces but keeps the vertex itself.
    """

    def __init__(self, collinear_tolerance: float = COLLINEAR_TOLERANCE):
        self.collinear_tolerance = collinear_tolerance

        self.vertices: Dict[int, Vertex] = {}
        self.edges: Dict[int, Edge] = {}
        self.faces: Dict[int, Face] = {}

        self._vertex_ids = itertools.count()
        self._edge_ids = itertools.count()
        self._face_ids = itertools.count()
        self._protected_vertex_id: Optional[int] = None
        self._removing: Set[int] = set()

        self.model_changed = Event("model_changed")
        self.vertex_added = Event("vertex_added")
        self.edge_added = Event("edge_added")
        self.face_added = Event("face_added")
        self.vertex_removed = Event("vertex_removed")
        self.edge_removed = Event("edge_removed")
        self.face_removed = Event("face_removed")
        self.vertex_position_changed = Event("vertex_position_changed")
        self.face_changed = Event("face_changed")
        self.face_reverse_set = Event("face_reverse_set")

    def vertex(self, vertex_id: int) -> Vertex:
        return self.vertices[vertex_id]

    def vertex_list(self) -> List[Vertex]:
        return list(self.vertices.values())

    def edge_list(self) -> List[Edge]:
        return list(self.edges.values())

    def face_list(self) -> List[Face]:
        return list(self.faces.values())

    def __iter__(self) -> Iterator[Face]:
        return iter(self.face_list())

    # Adding

    def add_vertex(self, position: Vector3) -> Vertex:
        vertex = Vertex(self, next(self._vertex_ids), position)
        if self._protected_vertex_id is None:
            self._protected_vertex_id = vertex.id

        self.vertices[vertex.id] = vertex
        self.vertex_added.emit(vertex)
        self.model_changed.emit()
        return vertex

    def add_edge(self, start: Vertex, end: Vertex) -> Optional[Edge]:
        """Connect two vertices.

        Returns:
            The new edge, or None if the vertices are identical or already
            connected
        """
        if start.id == end.id:
            return None
        for edge in start.connected_edges:
            if edge.other(start.id) == end.id:
                return None

        edge = Edge(self, next(self._edge_ids), start.id, end.id)
        start.edge_ids.append(edge.id)
        end.edge_ids.append(edge.id)

        self.edges[edge.id] = edge
        self.edge_added.emit(edge)
        self.model_changed.emit()
        return edge

    def add_vertex_to_edge(self, position: Vector3, edge: Edge) -> Vertex:
        """Split an edge with a new vertex, without the usual removal cleanup."""
        vertex = self.add_vertex(position)
        start, end = edge.start, edge.end
        edge.remove_vertices_on_remove = False
        self.remove_edge(edge)
        self.add_edge(start, vertex)
        self.add_edge(vertex, end)
        return vertex

    def add_face(self, vertices: Sequence[Vertex]) -> Optional[Face]:
        """Create a face from an ordered vertex loop.

        Returns:
            The new face, or None if the vertices do not form a valid polygon
        """
        try:
            face = Face(self, next(self._face_ids), [v.id for v in vertices])
        except DegenerateFaceError as e:
            logger.debug(f"Face rejected: {e}")
            return None

        self.faces[face.id] = face
        self.update_faces_front()
        self.face_added.emit(face)
        self.model_changed.emit()
        return face

    # Removing

    def remove_vertex(self, vertex: Vertex) -> None:
        if vertex.id in self._removing or vertex.id not in self.vertices:
            return

        self._removing.add(vertex.id)
        try:
            # Merging collinear edges during cleanup can connect new edges to this vertex
            while vertex.edge_ids:
                self.remove_edge(self.edges[vertex.edge_ids[0]])

            for face in self.face_list():
                if face.id in self.faces and vertex.id in face.vertex_ids:
                    self.remove_face(face)

            if vertex.id != self._protected_vertex_id:
                del self.vertices[vertex.id]
                self.vertex_removed.emit(vertex)
        finally:
            self._removing.discard(vertex.id)

        self.model_changed.emit()

    def remove_edge(self, edge: Edge) -> None:
        if edge.id not in self.edges:
            return

        del self.edges[edge.id]
        for vertex_id in (edge.start_id, edge.end_id):
            vertex = self.vertices.get(vertex_id)
            if vertex is not None and edge.id in vertex.edge_ids:
                vertex.edge_ids.remove(edge.id)
        self.edge_removed.emit(edge)

        if edge.remove_vertices_on_remove:
            self._check_no_connections(edge.start_id)
            self._check_no_connections(edge.end_id)
            self._check_two_connections(edge.start_id)
            self._check_two_connections(edge.end_id)

        self.model_changed.emit()

    def remove_face(self, face: Face) -> None:
        if face.id not in self.faces:
            return

        del self.faces[face.id]
        self.update_faces_front()
        self.face_removed.emit(face)
        self.model_changed.emit()

    def _live_vertex(self, vertex_id: int) -> Optional[Vertex]:
        if vertex_id in self._removing:
            return None
        return self.vertices.get(vertex_id)

    def _check_no_connections(self, vertex_id: int) -> None:
        vertex = self._live_vertex(vertex_id)
        if vertex is not None and not vertex.edge_ids:
            self.remove_vertex(vertex)

    def _check_two_connections(self, vertex_id: int) -> None:
        """Merge the two edges of a vertex if they are collinear."""
        vertex = self._live_vertex(vertex_id)
        if vertex is None or len(vertex.edge_ids) != 2:
            return

        first_edge, second_edge = (self.edges[i] for i in vertex.edge_ids)
        start = self.vertex(first_edge.other(vertex.id))
        end = self.vertex(second_edge.other(vertex.id))

        direction_a = (start.position - vertex.position).normalized()
        direction_b = (vertex.position - end.position).normalized()
        if (direction_a - direction_b).magnitude < self.collinear_tolerance:
            logger.debug(f"Merging collinear edges at vertex {vertex.id}")
            self.add_edge(start, end)
            self.remove_vertex(vertex)

    # Geometry changes

    def move_vertex(self, vertex: Vertex, position: Vector3) -> None:
        """Move a vertex and update every face using it."""
        vertex._position = position

        changed: List[Face] = []
        for face in self.face_list():
            if vertex.id not in face.vertex_ids:
                continue
            try:
                face.recalculate()
            except DegenerateFaceError as e:
                logger.warning(f"Face {face.id} became degenerate, keeping previous geometry: {e}")
            changed.append(face)

        if changed:
            self.update_faces_front()

        self.vertex_position_changed.emit(vertex)
        for face in changed:
            self.face_changed.emit(face)
        self.model_changed.emit()

    def set_user_reversed(self, face: Face, reversed_: Optional[bool]) -> None:
        face.user_reversed = reversed_
        self.face_reverse_set.emit(face)
        self.model_changed.emit()

    def update_faces_front(self) -> None:
        """Recompute, for every face, the set of faces its normal ray hits."""
        faces = self.face_list()
        for face in faces:
            face.faces_front = {other.id for other in faces if face.is_in_front_of(other)}
