"""Visualization of calibrations and models over their photographs.

This module draws calibration lines, vanishing points, world axes and the
projected model edges on top of a perspective's image with matplotlib.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np

from photomatch.geometry import Line2D
from photomatch.model import Model
from photomatch.perspective import PerspectiveData

logger = logging.getLogger(__name__)

AXIS_COLORS = {"x": "tab:red", "y": "tab:green", "z": "tab:blue"}


def _plot_line(ax, line: Line2D, color, style: str = "-", linewidth: float = 1.5) -> None:
    ax.plot([line.start.x, line.end.x], [line.start.y, line.end.y], style, color=color, linewidth=linewidth)


def draw_calibration(perspective: PerspectiveData, ax, axis_length: float = 80.0) -> None:
    """Draw calibration line pairs, their vanishing points and the world axes.

    Args:
        perspective: Calibrated perspective
        ax: Matplotlib axes showing the image
        axis_length: Length of the drawn axis arrows in pixels
    """
    pairs = [
        ((perspective.line_a1, perspective.line_a2), perspective.vanishing_point_a, "tab:orange"),
        ((perspective.line_b1, perspective.line_b2), perspective.vanishing_point_b, "tab:purple"),
    ]

    for lines, vanishing_point, color in pairs:
        for line in lines:
            _plot_line(ax, line, color, linewidth=2.0)
            # Dashed extension towards the vanishing point
            if vanishing_point is not None:
                _plot_line(ax, Line2D(line.end, vanishing_point), color, style="--", linewidth=0.8)

    if not perspective.valid:
        logger.warning("Perspective calibration is invalid, skipping axes")
        return

    origin = perspective.origin
    directions = {
        "x": perspective.get_x_dir_at(origin),
        "y": perspective.get_y_dir_at(origin),
        "z": perspective.get_z_dir_at(origin),
    }
    for name, direction in directions.items():
        if not direction.valid:
            continue
        tip = origin + direction * axis_length
        ax.annotate(
            name,
            xy=(tip.x, tip.y),
            xytext=(origin.x, origin.y),
            color=AXIS_COLORS[name],
            arrowprops=dict(arrowstyle="<-", color=AXIS_COLORS[name], linewidth=2),
        )

    ax.plot(origin.x, origin.y, "o", color="white", markersize=5)


def draw_model(perspective: PerspectiveData, model: Model, ax, color: str = "yellow") -> None:
    """Draw model edges and face outlines projected into a perspective.

    Args:
        perspective: Calibrated perspective
        model: Model to project
        ax: Matplotlib axes showing the image
        color: Edge color
    """
    for edge in model.edge_list():
        start = perspective.world_to_screen(edge.start.position)
        end = perspective.world_to_screen(edge.end.position)
        if start.valid and end.valid:
            _plot_line(ax, Line2D(start, end), color, linewidth=1.0)

    for face in model.face_list():
        points = [perspective.world_to_screen(p) for p in face.positions]
        if not all(p.valid for p in points):
            continue
        xs = [p.x for p in points]
        ys = [p.y for p in points]
        fill = "tab:red" if face.reversed else "tab:cyan"
        ax.fill(xs, ys, color=fill, alpha=0.25)

    vertices = [perspective.world_to_screen(v.position) for v in model.vertex_list()]
    vertices = [v for v in vertices if v.valid]
    if vertices:
        ax.plot([v.x for v in vertices], [v.y for v in vertices], "o", color=color, markersize=3)


def save_overlay(
    perspective: PerspectiveData,
    output_path: str,
    model: Optional[Model] = None,
    figsize: Tuple[int, int] = (12, 9),
) -> None:
    """Save the image of a perspective with its calibration and model drawn on top.

    Args:
        perspective: Perspective to draw
        output_path: Path to save the visualization
        model: Optional model to project
        figsize: Figure size in inches
    """
    fig, ax = plt.subplots(1, 1, figsize=figsize)
    ax.imshow(perspective.image)

    draw_calibration(perspective, ax)
    if model is not None:
        draw_model(perspective, model, ax)

    # Keep the view on the image even if lines extend beyond it
    ax.set_xlim(0, perspective.width)
    ax.set_ylim(perspective.height, 0)
    ax.set_title(perspective.image_path or "Perspective")
    ax.axis("off")

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)

    logger.info(f"Overlay saved to {output_path}")


def save_textures_summary(texture_paths: Sequence[str], output_path: str, columns: int = 4) -> None:
    """Save a grid of exported face textures.

    Args:
        texture_paths: Paths to texture images
        output_path: Path to save the summary image
        columns: Number of grid columns
    """
    if not texture_paths:
        logger.warning("No textures to summarize")
        return

    rows = int(np.ceil(len(texture_paths) / columns))
    fig, axs = plt.subplots(rows, columns, figsize=(3 * columns, 3 * rows), squeeze=False)

    for ax in axs.ravel():
        ax.axis("off")

    for ax, path in zip(axs.ravel(), texture_paths):
        ax.imshow(plt.imread(path))
        ax.set_title(str(path).replace("\\", "/").split("/")[-1], fontsize=8)

    plt.tight_layout()
    plt.savefig(output_path, dpi=100, bbox_inches="tight")
    plt.close(fig)

    logger.info(f"Texture summary saved to {output_path}")
