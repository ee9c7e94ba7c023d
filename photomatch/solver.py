"""Direct solver for 3x3 linear systems.

Gauss-Jordan elimination with the fixed row-swap pivoting used by the
camera and the intersection routines.
"""

from __future__ import annotations

import logging
from typing import List

from photomatch.linalg import Matrix3x3, Vector3

logger = logging.getLogger(__name__)

PIVOT_EPSILON = 1e-12


class SingularSystemError(ValueError):
    """Raised when a system has no unique solution."""


def _check_pivot(value: float, column: int) -> None:
    if abs(value) < PIVOT_EPSILON:
        logger.debug(f"Pivot in column {column} is {value:.3e}, system is singular")
        raise SingularSystemError(f"Singular system (pivot {column} is {value:.3e})")


def solve(matrix: Matrix3x3, rhs: Vector3) -> Vector3:
    """Solve ``matrix @ x = rhs``.

    Pivoting: if the first diagonal element is zero, row 0 is swapped with
    row 1 (or row 2 if row 1 also starts with zero); afterwards, if the second
    diagonal element is zero, rows 1 and 2 are swapped.

    Args:
        matrix: System matrix (not modified)
        rhs: Right-hand side

    Returns:
        Solution vector

    Raises:
        SingularSystemError: If a pivot is (numerically) zero
    """
    a = matrix.values.astype(float)
    b: List[float] = list(rhs)

    if a[0, 0] == 0:
        swap = 1 if a[1, 0] != 0 else 2
        a[[0, swap], :] = a[[swap, 0], :]
        b[0], b[swap] = b[swap], b[0]

    if a[1, 1] == 0:
        a[[1, 2], :] = a[[2, 1], :]
        b[1], b[2] = b[2], b[1]

    # Eliminate each column from the other two rows
    for col in range(3):
        _check_pivot(a[col, col], col)
        for row in range(3):
            if row == col:
                continue
            factor = a[row, col] / a[col, col]
            a[row, :] -= factor * a[col, :]
            b[row] -= factor * b[col]

    return Vector3(b[0] / a[0, 0], b[1] / a[1, 1], b[2] / a[2, 2])
