"""Interactive 3D preview of a model with Open3D."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np
import open3d as o3d

from photomatch.model import Model

logger = logging.getLogger(__name__)


def to_open3d_mesh(model: Model) -> o3d.geometry.TriangleMesh:
    """Convert a model's triangulated faces to an Open3D triangle mesh.

    Triangles of reversed faces are flipped so that every triangle faces
    outwards, as in the exported OBJ.

    Args:
        model: Model to convert

    Returns:
        Triangle mesh with vertex normals
    """
    vertices = model.vertex_list()
    index = {v.id: i for i, v in enumerate(vertices)}

    triangles = []
    for face in model.face_list():
        for a, b, c in face.triangulated:
            if face.reversed:
                a, b = b, a
            triangles.append([index[a], index[b], index[c]])

    mesh = o3d.geometry.TriangleMesh()
    mesh.vertices = o3d.utility.Vector3dVector(
        np.array([list(v.position) for v in vertices], dtype=np.float64).reshape(-1, 3)
    )
    mesh.triangles = o3d.utility.Vector3iVector(np.array(triangles, dtype=np.int32).reshape(-1, 3))
    mesh.compute_vertex_normals()

    logger.debug(f"Converted model to mesh with {len(vertices)} vertices and {len(triangles)} triangles")
    return mesh


def edges_to_line_set(model: Model, color: Tuple[float, float, float] = (0.9, 0.9, 0.2)) -> o3d.geometry.LineSet:
    vertices = model.vertex_list()
    index = {v.id: i for i, v in enumerate(vertices)}
    lines = [[index[e.start_id], index[e.end_id]] for e in model.edge_list()]

    line_set = o3d.geometry.LineSet()
    line_set.points = o3d.utility.Vector3dVector(
        np.array([list(v.position) for v in vertices], dtype=np.float64).reshape(-1, 3)
    )
    line_set.lines = o3d.utility.Vector2iVector(np.array(lines, dtype=np.int32).reshape(-1, 2))
    line_set.colors = o3d.utility.Vector3dVector(np.tile(color, (len(lines), 1)))
    return line_set


def show(
    model: Model,
    save_path: Optional[str] = None,
    window_size: Tuple[int, int] = (1280, 720),
) -> None:
    """Open an interactive window with the model, its edges and the world axes.

    Args:
        model: Model to show
        save_path: Path to save a screenshot (optional)
        window_size: Visualization window size
    """
    vis = o3d.visualization.Visualizer()
    vis.create_window(width=window_size[0], height=window_size[1])

    vis.add_geometry(o3d.geometry.TriangleMesh.create_coordinate_frame(size=1.0))
    vis.add_geometry(to_open3d_mesh(model))
    vis.add_geometry(edges_to_line_set(model))

    opt = vis.get_render_option()
    opt.background_color = np.array([0.1, 0.1, 0.1])
    opt.mesh_show_back_face = True

    vis.poll_events()
    vis.update_renderer()

    if save_path is not None:
        vis.capture_screen_image(save_path)
        logger.info(f"Screenshot saved to {save_path}")

    vis.run()
    vis.destroy_window()
