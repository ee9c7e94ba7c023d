"""Binary project files.

A project stores the model, an opaque design-tool value and every
perspective (image bytes plus calibration). The layout is little endian::

    uint64  magic
    model   int32 vertex count, 3 x float64 per vertex
            int32 edge count, 2 x int32 vertex indices per edge
            int32 face count, per face: int32 vertex count, int32 indices,
                  bool has user orientation, [bool user orientation]
    int32   design tool
    int32   perspective count, per perspective:
            int32 image length, image bytes, image path (7-bit length
            prefixed UTF-8), origin (2 x float64), lines A1, A2, B1, B2
            (4 x float64 each), float64 scale, int32 axes, 3 x bool inversion
"""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, List, Union

from photomatch.camera import CalibrationAxes, InvertedAxes
from photomatch.geometry import Line2D
from photomatch.linalg import Vector2, Vector3
from photomatch.model import COLLINEAR_TOLERANCE, Model
from photomatch.perspective import PerspectiveData

logger = logging.getLogger(__name__)

PROJECT_MAGIC = 0x5407024723439442


class ProjectFileError(ValueError):
    """Raised when a file is not a valid project file."""


@dataclass
class Project:
    model: Model
    perspectives: List[PerspectiveData] = field(default_factory=list)
    design_tool: int = 0


class _Writer:
    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def pack(self, fmt: str, *values) -> None:
        self.stream.write(struct.pack("<" + fmt, *values))

    def int32(self, value: int) -> None:
        self.pack("i", value)

    def double(self, value: float) -> None:
        self.pack("d", value)

    def boolean(self, value: bool) -> None:
        self.pack("?", value)

    def vector2(self, value: Vector2) -> None:
        self.pack("2d", value.x, value.y)

    def vector3(self, value: Vector3) -> None:
        self.pack("3d", value.x, value.y, value.z)

    def line2d(self, value: Line2D) -> None:
        self.vector2(value.start)
        self.vector2(value.end)

    def string(self, value: str) -> None:
        data = value.encode("utf-8")
        length = len(data)
        # 7 bits per byte, high bit marks continuation
        while length >= 0x80:
            self.stream.write(bytes([(length & 0x7F) | 0x80]))
            length >>= 7
        self.stream.write(bytes([length]))
        self.stream.write(data)


class _Reader:
    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def read(self, size: int) -> bytes:
        data = self.stream.read(size)
        if len(data) != size:
            raise ProjectFileError("Unexpected end of project file")
        return data

    def unpack(self, fmt: str):
        fmt = "<" + fmt
        return struct.unpack(fmt, self.read(struct.calcsize(fmt)))

    def int32(self) -> int:
        return self.unpack("i")[0]

    def double(self) -> float:
        return self.unpack("d")[0]

    def boolean(self) -> bool:
        return self.unpack("?")[0]

    def vector2(self) -> Vector2:
        return Vector2(*self.unpack("2d"))

    def vector3(self) -> Vector3:
        return Vector3(*self.unpack("3d"))

    def line2d(self) -> Line2D:
        return Line2D(self.vector2(), self.vector2())

    def string(self) -> str:
        length = 0
        shift = 0
        while True:
            byte = self.read(1)[0]
            length |= (byte & 0x7F) << shift
            if byte & 0x80 == 0:
                break
            shift += 7
            if shift > 28:
                raise ProjectFileError("Invalid string length in project file")
        return self.read(length).decode("utf-8")


def write_model(writer: _Writer, model: Model) -> None:
    vertices = model.vertex_list()
    index = {v.id: i for i, v in enumerate(vertices)}

    writer.int32(len(vertices))
    for vertex in vertices:
        writer.vector3(vertex.position)

    edges = model.edge_list()
    writer.int32(len(edges))
    for edge in edges:
        writer.int32(index[edge.start_id])
        writer.int32(index[edge.end_id])

    faces = model.face_list()
    writer.int32(len(faces))
    for face in faces:
        writer.int32(len(face.vertex_ids))
        for vertex_id in face.vertex_ids:
            writer.int32(index[vertex_id])
        writer.boolean(face.user_reversed is not None)
        if face.user_reversed is not None:
            writer.boolean(face.user_reversed)


def read_model(reader: _Reader, collinear_tolerance: float = COLLINEAR_TOLERANCE) -> Model:
    model = Model(collinear_tolerance)

    vertices = [model.add_vertex(reader.vector3()) for _ in range(reader.int32())]

    def vertex_at(i: int):
        if not 0 <= i < len(vertices):
            raise ProjectFileError(f"Vertex index {i} out of range")
        return vertices[i]

    for _ in range(reader.int32()):
        start = vertex_at(reader.int32())
        end = vertex_at(reader.int32())
        model.add_edge(start, end)

    for i in range(reader.int32()):
        count = reader.int32()
        face_vertices = [vertex_at(reader.int32()) for _ in range(count)]
        face = model.add_face(face_vertices)

        # Orientation flags are present even for faces that fail to load
        user_reversed = reader.boolean() if reader.boolean() else None
        if face is None:
            logger.warning(f"Face {i} in project file is degenerate and was skipped")
            continue
        face.user_reversed = user_reversed

    return model


def write_perspective(writer: _Writer, perspective: PerspectiveData) -> None:
    writer.int32(len(perspective.image_data))
    writer.stream.write(perspective.image_data)
    writer.string(perspective.image_path)

    writer.vector2(perspective.origin)
    writer.line2d(perspective.line_a1)
    writer.line2d(perspective.line_a2)
    writer.line2d(perspective.line_b1)
    writer.line2d(perspective.line_b2)
    writer.double(perspective.scale)
    writer.int32(int(perspective.calibration_axes))
    writer.boolean(perspective.inverted_axes.x)
    writer.boolean(perspective.inverted_axes.y)
    writer.boolean(perspective.inverted_axes.z)


def read_perspective(reader: _Reader) -> PerspectiveData:
    image_data = reader.read(reader.int32())
    image_path = reader.string()
    perspective = PerspectiveData.from_bytes(image_data, image_path)

    origin = reader.vector2()
    line_a1 = reader.line2d()
    line_a2 = reader.line2d()
    line_b1 = reader.line2d()
    line_b2 = reader.line2d()
    scale = reader.double()
    axes = CalibrationAxes(reader.int32())
    inverted = InvertedAxes(reader.boolean(), reader.boolean(), reader.boolean())

    perspective.set_calibration(origin, line_a1, line_a2, line_b1, line_b2, scale, axes, inverted)
    return perspective


def save_project(
    path: Union[str, Path],
    model: Model,
    perspectives: List[PerspectiveData],
    design_tool: int = 0,
) -> None:
    """Write a project file.

    Args:
        path: Output path
        model: Model to store
        perspectives: Perspectives to store (with their image bytes)
        design_tool: Opaque value stored for the host application
    """
    buffer = io.BytesIO()
    writer = _Writer(buffer)
    writer.pack("Q", PROJECT_MAGIC)
    write_model(writer, model)
    writer.int32(design_tool)
    writer.int32(len(perspectives))
    for i, perspective in enumerate(perspectives):
        logger.debug(f"Saving perspective {i + 1}/{len(perspectives)}")
        write_perspective(writer, perspective)

    Path(path).write_bytes(buffer.getvalue())
    logger.info(f"Project saved to {path}")


def load_project(path: Union[str, Path], collinear_tolerance: float = COLLINEAR_TOLERANCE) -> Project:
    """Read a project file.

    Args:
        path: Project file path

    Returns:
        Loaded project

    Raises:
        ProjectFileError: If the file is not a valid project file
    """
    with open(path, "rb") as f:
        reader = _Reader(f)
        (magic,) = reader.unpack("Q")
        if magic != PROJECT_MAGIC:
            raise ProjectFileError(f"{path} is not a project file")

        model = read_model(reader, collinear_tolerance)
        design_tool = reader.int32()
        perspectives = []
        count = reader.int32()
        for i in range(count):
            logger.debug(f"Loading perspective {i + 1}/{count}")
            perspectives.append(read_perspective(reader))

    logger.info(
        f"Loaded project {path}: {len(model.vertices)} vertices, {len(model.faces)} faces, "
        f"{len(perspectives)} perspectives"
    )
    return Project(model, perspectives, design_tool)
