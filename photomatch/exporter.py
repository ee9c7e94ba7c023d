"""Textured OBJ export.

For every face the exporter picks the photograph that sees most of it,
rectifies the face's region of that photograph into its own texture and
writes the mesh as OBJ + MTL + one PNG per textured face:

    <dir>/<name>/<name>.obj
    <dir>/<name>/<name>.mtl
    <dir>/<name>/face{i}.png

World coordinates are written with the up axis swapped (``x z -y``).
"""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from tqdm import tqdm

from photomatch import imaging
from photomatch.evaluate import ExportMetrics, Timer
from photomatch.geometry import Ray3D, ray_polygon_intersection, rotate_align
from photomatch.linalg import Matrix3x3, Vector2, Vector3
from photomatch.model import Face, Model
from photomatch.perspective import PerspectiveData
from photomatch.solver import SingularSystemError

logger = logging.getLogger(__name__)

# Barycentric sample points used to test face visibility
POINT_SCALING = (
    (0.853, 0.063, 0.084),
    (0.873, 0.023, 0.104),
    (0.177, 0.165, 0.658),
    (0.27, 0.571, 0.159),
    (0.566, 0.2, 0.234),
    (0.281, 0.495, 0.224),
    (0.155, 0.731, 0.114),
    (0.868, 0.049, 0.083),
    (0.625, 0.2, 0.175),
    (0.235, 0.484, 0.281),
)

TEXTURE_RESOLUTION_MULTIPLIER = 1.5
MIN_TEXTURE_SIZE = 2
MAX_TEXTURE_SIZE = 8192


class DegenerateProjectionError(ValueError):
    """A face cannot be rectified from a perspective."""


class ExportPathError(ValueError):
    """The export target is not a usable file path."""


@dataclass
class FaceTexture:
    """Rectification of one face from one perspective."""

    perspective: PerspectiveData
    project: Matrix3x3
    width: int
    height: int
    uv_coordinates: List[Vector2]


def _ray_face_intersection(ray: Ray3D, face: Face):
    return ray_polygon_intersection(ray, face.positions, face.normal)


def count_visible_samples(face: Face, perspective: PerspectiveData, model: Model) -> int:
    """Count face sample points not hidden behind another face from a perspective.

    ``max(10, number of triangles)`` samples are taken, cycling through the
    barycentric weights and the triangles together.
    """
    viable = 0
    n_samples = max(len(POINT_SCALING), len(face.triangulated))
    others = [f for f in model.face_list() if f is not face]

    for i in range(n_samples):
        wa, wb, wc = POINT_SCALING[i % len(POINT_SCALING)]
        a, b, c = face.triangle_positions(face.triangulated[i % len(face.triangulated)])
        sample = a * wa + b * wb + c * wc

        ray = perspective.screen_to_world_ray(perspective.world_to_screen(sample))
        own = _ray_face_intersection(ray, face)

        # Without an own hit there is no distance to compare against, so the sample counts as visible
        hidden = False
        if own is not None:
            for other in others:
                hit = _ray_face_intersection(ray, other)
                if hit is not None and hit.ray_relative < own.ray_relative:
                    hidden = True
                    break

        if not hidden:
            viable += 1

    return viable


def select_perspective(
    face: Face,
    perspectives: Sequence[PerspectiveData],
    model: Model,
) -> Optional[PerspectiveData]:
    """Perspective with the most visible samples of a face.

    Ties keep the earlier perspective; perspectives without a valid
    calibration or without any visible sample are never selected.

    Returns:
        Selected perspective, or None if the face is not visible anywhere
    """
    best = None
    best_count = 0
    for perspective in perspectives:
        if not perspective.valid:
            continue
        count = count_visible_samples(face, perspective, model)
        if count > best_count:
            best = perspective
            best_count = count
    return best


def face_projection(
    face: Face,
    perspective: PerspectiveData,
    resolution_multiplier: float = TEXTURE_RESOLUTION_MULTIPLIER,
    min_size: int = MIN_TEXTURE_SIZE,
    max_size: int = MAX_TEXTURE_SIZE,
) -> Tuple[Matrix3x3, int, int]:
    """Homography from the photograph to the face's rectified texture.

    The face's bounding rectangle in its own plane is projected onto the
    photograph; the texture size follows the longer of each pair of opposite
    projected sides.

    Args:
        face: Exported face
        perspective: Perspective the texture is taken from
        resolution_multiplier: Texture pixels per projected photograph pixel
        min_size: Minimal texture width and height
        max_size: Maximal texture width and height

    Returns:
        Tuple of (projection matrix, width, height)

    Raises:
        DegenerateProjectionError: If the rectangle is not entirely in front
            of the camera or its texture would exceed max_size
        SingularSystemError: If the projected corners are degenerate
    """
    rotate = rotate_align(face.normal, Vector3(0, 0, 1))
    inverse_rotate = rotate.transposed()

    rotated = np.array([list(rotate @ p) for p in face.positions])
    min_x, min_y = rotated[:, 0].min(), rotated[:, 1].min()
    max_x, max_y = rotated[:, 0].max(), rotated[:, 1].max()
    z = rotated[-1, 2]

    corners = [
        inverse_rotate @ Vector3(min_x, min_y, z),
        inverse_rotate @ Vector3(max_x, min_y, z),
        inverse_rotate @ Vector3(min_x, max_y, z),
        inverse_rotate @ Vector3(max_x, max_y, z),
    ]
    # NaN depths fail the comparison as well
    if not all(perspective.depth(c) > 0 for c in corners):
        raise DegenerateProjectionError(f"Face {face.id} is not entirely in front of the camera")

    top_left, top_right, bottom_left, bottom_right = (perspective.world_to_screen(c) for c in corners)

    width = resolution_multiplier * max((top_right - top_left).magnitude, (bottom_right - bottom_left).magnitude)
    height = resolution_multiplier * max((bottom_left - top_left).magnitude, (bottom_right - top_right).magnitude)
    if not (np.isfinite(width) and np.isfinite(height)) or width > max_size or height > max_size:
        raise DegenerateProjectionError(f"Face {face.id} needs a {width:.0f}x{height:.0f} texture")

    width = max(int(width), min_size)
    height = max(int(height), min_size)

    project = imaging.projective_transformation_matrix(
        top_left, top_right, bottom_left, bottom_right,
        Vector2(0, 0), Vector2(width - 1, 0),
        Vector2(0, height - 1), Vector2(width - 1, height - 1),
    )
    return project, width, height


def face_uv_coordinates(
    face: Face,
    perspective: PerspectiveData,
    project: Matrix3x3,
    width: int,
    height: int,
) -> List[Vector2]:
    """Texture coordinates of the face's unique vertices (v axis pointing up)."""
    uvs = []
    for vertex in face.unique_vertices:
        texel = imaging.apply_homography(project, perspective.world_to_screen(vertex.position))
        uvs.append(Vector2(texel.x / (width - 1), 1 - texel.y / (height - 1)))
    return uvs


def build_face_texture(
    face: Face,
    perspectives: Sequence[PerspectiveData],
    model: Model,
    resolution_multiplier: float = TEXTURE_RESOLUTION_MULTIPLIER,
    min_size: int = MIN_TEXTURE_SIZE,
    max_size: int = MAX_TEXTURE_SIZE,
) -> Optional[FaceTexture]:
    perspective = select_perspective(face, perspectives, model)
    if perspective is None:
        return None

    source = perspective.image_path or "image"
    try:
        project, width, height = face_projection(face, perspective, resolution_multiplier, min_size, max_size)
    except SingularSystemError:
        logger.warning(f"Face {face.id} projects onto a degenerate region of {source}")
        return None
    except DegenerateProjectionError as e:
        logger.warning(f"Face {face.id} cannot be rectified from {source}: {e}")
        return None

    uvs = face_uv_coordinates(face, perspective, project, width, height)
    return FaceTexture(perspective, project, width, height, uvs)


def write_texture(texture: FaceTexture, path: Path) -> None:
    """Render a face texture and save it as an image.

    Raises:
        OSError: If the image could not be written
    """
    canvas = imaging.rectify(texture.perspective.image, texture.project, (texture.width, texture.height))
    if canvas.ndim == 3:
        canvas = cv2.cvtColor(canvas, cv2.COLOR_RGB2BGR)
    if not cv2.imwrite(str(path), canvas):
        raise OSError(f"Could not write texture {path}")


def format_number(value: float) -> str:
    """Shortest round-trip decimal representation without exponent."""
    return np.format_float_positional(value, trim="-")


def write_mtl(path: Path, textured: Sequence[int]) -> None:
    with open(path, "w", encoding="ascii") as f:
        for i in textured:
            f.write(f"newmtl face{i}\n")
            f.write(f"\tmap_Kd face{i}.png\n")
            f.write("\n")


def write_obj(
    path: Path,
    material_name: str,
    model: Model,
    textures: Sequence[Optional[FaceTexture]],
) -> None:
    """Write the mesh with per-face materials.

    Args:
        path: Output .obj path
        material_name: Name of the .mtl file without extension
        model: Exported model
        textures: Texture of each face in model order (None if untextured)
    """
    vertex_index: Dict[int, int] = {v.id: i + 1 for i, v in enumerate(model.vertex_list())}

    with open(path, "w", encoding="ascii") as f:
        f.write(f"mtllib ./{material_name}.mtl\n")
        f.write("\n")

        for vertex in model.vertex_list():
            p = vertex.position
            f.write(f"v {format_number(p.x)} {format_number(p.z)} {format_number(-p.y)}\n")
        f.write("\n")

        for texture in textures:
            if texture is None:
                continue
            for uv in texture.uv_coordinates:
                f.write(f"vt {format_number(uv.x)} {format_number(uv.y)}\n")
        f.write("\n")

        uv_id = 1
        for i, (face, texture) in enumerate(zip(model.face_list(), textures)):
            if texture is not None:
                f.write(f"usemtl face{i}\n")

            unique_index = {vertex_id: j for j, vertex_id in enumerate(face.unique_vertex_ids)}
            for triangle in face.triangulated:
                a_id, b_id, c_id = (vertex_index[v] for v in triangle)
                a_uv, b_uv, c_uv = (uv_id + unique_index[v] for v in triangle)

                if face.reversed:
                    a_id, b_id = b_id, a_id
                    a_uv, b_uv = b_uv, a_uv

                if texture is None:
                    f.write(f"f {a_id} {b_id} {c_id}\n")
                else:
                    f.write(f"f {a_id}/{a_uv} {b_id}/{b_uv} {c_id}/{c_uv}\n")

            if texture is not None:
                uv_id += len(face.unique_vertex_ids)


def _export_error_message(error: Exception) -> Optional[str]:
    if isinstance(error, PermissionError):
        return "Unauthorized access to file."
    if isinstance(error, (FileNotFoundError, NotADirectoryError, ExportPathError)):
        return "Path is invalid."
    if isinstance(error, OSError) and error.errno == errno.ENAMETOOLONG:
        return "Path is too long."
    if isinstance(error, OSError):
        return "Save operation was not successful."
    return None


def _check_export_path(file_path: Path) -> None:
    if not file_path.name:
        raise ExportPathError(f"Export path {file_path} has no file name")
    if "\0" in str(file_path):
        raise ExportPathError(f"Export path {file_path!r} contains a null byte")


def export_model(
    model: Model,
    file_path: Union[str, Path],
    perspectives: Sequence[PerspectiveData],
    config: Optional[Dict] = None,
    metrics: Optional[ExportMetrics] = None,
) -> bool:
    """Export a model as a textured OBJ bundle.

    File system errors are logged and reported through the return value;
    files written before the error are left in place. Faces that cannot be
    rectified from any perspective are exported without a texture.

    Args:
        model: Model to export
        file_path: Target .obj path; the bundle is written into a directory
            named after its stem, next to it
        perspectives: Calibrated photographs to take textures from
        config: Optional export parameters
        metrics: Optional metrics container to fill

    Returns:
        True if successful, False otherwise
    """
    if config is None:
        config = {}

    resolution_multiplier = config.get("texture_resolution_multiplier", TEXTURE_RESOLUTION_MULTIPLIER)
    min_size = config.get("min_texture_size", MIN_TEXTURE_SIZE)
    max_size = config.get("max_texture_size", MAX_TEXTURE_SIZE)

    file_path = Path(file_path)
    faces = model.face_list()
    timer = Timer("Export", metrics)
    timer.start()

    if metrics is not None:
        metrics.update("n_vertices", len(model.vertices))
        metrics.update("n_faces", len(faces))
        metrics.update("n_triangles", sum(len(f.triangulated) for f in faces))
        metrics.update("n_perspectives", len(perspectives))

    try:
        _check_export_path(file_path)
        output_dir = file_path.parent / file_path.stem
        output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Exporting {len(faces)} faces to {output_dir}")

        textures: List[Optional[FaceTexture]] = []
        for i, face in enumerate(tqdm(faces, desc="Exporting textures")):
            logger.debug(f"Exporting texture {i + 1}/{len(faces)}")
            texture = build_face_texture(face, perspectives, model, resolution_multiplier, min_size, max_size)
            textures.append(texture)

            if texture is None:
                logger.warning(f"Face {i} has no usable perspective, exporting untextured")
                if metrics is not None:
                    metrics.record_untextured(i)
                continue

            write_texture(texture, output_dir / f"face{i}.png")
            if metrics is not None:
                perspective_index = next(j for j, p in enumerate(perspectives) if p is texture.perspective)
                metrics.record_texture(i, perspective_index, texture.width, texture.height)

        timer.stage("textures")

        logger.info("Generating .mtl file")
        write_mtl(output_dir / f"{file_path.stem}.mtl", [i for i, t in enumerate(textures) if t is not None])

        logger.info("Generating .obj file")
        write_obj(output_dir / file_path.name, file_path.stem, model, textures)

        timer.stage("files")
    except (OSError, ExportPathError) as e:
        message = _export_error_message(e)
        logger.error(f"Export failed: {message} ({e})")
        timer.stop()
        return False

    timer.stop()
    if metrics is not None:
        metrics.update("success", True)

    logger.info(f"Successfully exported model to {output_dir / file_path.name}")
    return True
