"""Image rectification utilities.

This module implements the homography between two quadrilaterals and the
inverse-mapped bilinear resampling used to produce rectified face textures.
"""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
from scipy import ndimage

from photomatch.linalg import Matrix3x3, Vector2, Vector3
from photomatch.solver import solve

logger = logging.getLogger(__name__)


def calculate_map(top_left: Vector2, top_right: Vector2, bottom_left: Vector2, bottom_right: Vector2) -> Matrix3x3:
    """Map from the canonical projective basis onto a quadrilateral.

    The columns of the returned matrix are the homogeneous top-left,
    top-right and bottom-left corners, scaled so that their sum is the
    bottom-right corner.

    Args:
        top_left: Top left corner
        top_right: Top right corner
        bottom_left: Bottom left corner
        bottom_right: Bottom right corner

    Returns:
        3x3 basis matrix
    """
    lhs = Matrix3x3([
        [top_left.x, top_right.x, bottom_left.x],
        [top_left.y, top_right.y, bottom_left.y],
        [1, 1, 1],
    ])
    weights = solve(lhs, Vector3(bottom_right.x, bottom_right.y, 1))
    return Matrix3x3(lhs.values * weights.as_array()[np.newaxis, :])


def projective_transformation_matrix(
    top_left: Vector2,
    top_right: Vector2,
    bottom_left: Vector2,
    bottom_right: Vector2,
    new_top_left: Vector2,
    new_top_right: Vector2,
    new_bottom_left: Vector2,
    new_bottom_right: Vector2,
) -> Matrix3x3:
    """Homography mapping one quadrilateral onto another.

    The source basis is inverted with the adjugate, which is enough since the
    result is only used in homogeneous coordinates.

    Returns:
        Matrix H with H @ (p, 1) ~ (p', 1) for corresponding corners
    """
    source = calculate_map(top_left, top_right, bottom_left, bottom_right)
    target = calculate_map(new_top_left, new_top_right, new_bottom_left, new_bottom_right)
    return target @ source.adjugate()


def apply_homography(matrix: Matrix3x3, point: Vector2) -> Vector2:
    p = matrix @ Vector3(point.x, point.y, 1)
    return Vector2(p.x / p.z, p.y / p.z)


def rectify(image: np.ndarray, project: Matrix3x3, size: Tuple[int, int]) -> np.ndarray:
    """Resample an image into a new raster through a homography.

    Every output pixel is mapped back into the source with the adjugate of
    ``project`` and sampled bilinearly. Pixels whose 2x2 source
    neighbourhood is not fully inside the image stay black.

    Args:
        image: HxWxC source image
        project: Homography from source pixels to output pixels
        size: Output (width, height)

    Returns:
        height x width x C uint8 image
    """
    width, height = size
    inverse = project.adjugate().values

    xs, ys = np.meshgrid(np.arange(width, dtype=float), np.arange(height, dtype=float))
    homogeneous = np.stack([xs.ravel(), ys.ravel(), np.ones(xs.size)])
    mapped = inverse @ homogeneous
    with np.errstate(divide="ignore", invalid="ignore"):
        u = mapped[0] / mapped[2]
        v = mapped[1] / mapped[2]

    src_height, src_width = image.shape[:2]
    valid = (
        np.isfinite(u) & np.isfinite(v)
        & (np.floor(u) >= 0) & (np.floor(v) >= 0)
        & (np.ceil(u) < src_width) & (np.ceil(v) < src_height)
    )

    channels = image.shape[2] if image.ndim == 3 else 1
    source = image.reshape(src_height, src_width, channels).astype(np.float64)
    result = np.zeros((xs.size, channels), dtype=np.float64)

    if np.any(valid):
        coords = np.stack([v[valid], u[valid]])
        for c in range(channels):
            result[valid, c] = ndimage.map_coordinates(source[:, :, c], coords, order=1, mode="nearest")

    logger.debug(f"Rectified {int(valid.sum())}/{xs.size} pixels into {width}x{height} texture")

    result = result.reshape(height, width, channels).astype(np.uint8)
    if image.ndim == 2:
        return result[:, :, 0]
    return result
