"""Small fixed-size linear algebra types.

This module implements the 2D/3D vectors and the 3x3 matrix used throughout
the camera model, the geometry routines and the exporter. Vectors are
immutable value types; the matrix is a thin wrapper around a 3x3 numpy array.
"""

from __future__ import annotations

import math
from typing import Iterable, Tuple, Union

import numpy as np


class Vector2:
    """Immutable 2D vector (also used for screen-space points)."""

    __slots__ = ("x", "y")

    def __init__(self, x: float = 0.0, y: float = 0.0):
        object.__setattr__(self, "x", float(x))
        object.__setattr__(self, "y", float(y))

    def __setattr__(self, name, value):
        raise AttributeError("Vector2 is immutable")

    @staticmethod
    def invalid() -> "Vector2":
        """Vector with NaN coordinates, the result of degenerate arithmetic."""
        return Vector2(math.nan, math.nan)

    @property
    def valid(self) -> bool:
        return not (math.isnan(self.x) or math.isnan(self.y))

    @property
    def magnitude_squared(self) -> float:
        return self.x * self.x + self.y * self.y

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.magnitude_squared)

    def normalized(self) -> "Vector2":
        """Unit vector in the same direction, invalid for the zero vector."""
        length = self.magnitude
        if length == 0:
            return Vector2.invalid()
        return Vector2(self.x / length, self.y / length)

    def dot(self, other: "Vector2") -> float:
        return self.x * other.x + self.y * other.y

    def cross(self, other: "Vector2") -> float:
        """Z component of the 3D cross product of the two vectors."""
        return self.x * other.y - self.y * other.x

    def with_x(self, x: float) -> "Vector2":
        return Vector2(x, self.y)

    def with_y(self, y: float) -> "Vector2":
        return Vector2(self.x, y)

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y])

    def __add__(self, other: "Vector2") -> "Vector2":
        return Vector2(self.x + other.x, self.y + other.y)

    def __sub__(self, other: "Vector2") -> "Vector2":
        return Vector2(self.x - other.x, self.y - other.y)

    def __neg__(self) -> "Vector2":
        return Vector2(-self.x, -self.y)

    def __mul__(self, scalar: float) -> "Vector2":
        return Vector2(self.x * scalar, self.y * scalar)

    __rmul__ = __mul__

    def __truediv__(self, scalar: float) -> "Vector2":
        if scalar == 0:
            return Vector2.invalid()
        return Vector2(self.x / scalar, self.y / scalar)

    def __iter__(self):
        yield self.x
        yield self.y

    def __eq__(self, other) -> bool:
        if not isinstance(other, Vector2):
            return NotImplemented
        return self.x == other.x and self.y == other.y

    def __hash__(self) -> int:
        return hash((self.x, self.y))

    def __repr__(self) -> str:
        return f"Vector2({self.x:g}, {self.y:g})"


class Vector3:
    """Immutable 3D vector."""

    __slots__ = ("x", "y", "z")

    def __init__(self, x: float = 0.0, y: float = 0.0, z: float = 0.0):
        object.__setattr__(self, "x", float(x))
        object.__setattr__(self, "y", float(y))
        object.__setattr__(self, "z", float(z))

    def __setattr__(self, name, value):
        raise AttributeError("Vector3 is immutable")

    @staticmethod
    def invalid() -> "Vector3":
        """Vector with NaN coordinates, the result of degenerate arithmetic."""
        return Vector3(math.nan, math.nan, math.nan)

    @staticmethod
    def from_array(values: Iterable[float]) -> "Vector3":
        x, y, z = values
        return Vector3(x, y, z)

    @staticmethod
    def from_vector2(vector: Vector2, z: float = 1.0) -> "Vector3":
        return Vector3(vector.x, vector.y, z)

    @property
    def valid(self) -> bool:
        return not (math.isnan(self.x) or math.isnan(self.y) or math.isnan(self.z))

    @property
    def magnitude_squared(self) -> float:
        return self.x * self.x + self.y * self.y + self.z * self.z

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.magnitude_squared)

    def normalized(self) -> "Vector3":
        """Unit vector in the same direction, invalid for the zero vector."""
        length = self.magnitude
        if length == 0:
            return Vector3.invalid()
        return Vector3(self.x / length, self.y / length, self.z / length)

    def dot(self, other: "Vector3") -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: "Vector3") -> "Vector3":
        return Vector3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def with_x(self, x: float) -> "Vector3":
        return Vector3(x, self.y, self.z)

    def with_y(self, y: float) -> "Vector3":
        return Vector3(self.x, y, self.z)

    def with_z(self, z: float) -> "Vector3":
        return Vector3(self.x, self.y, z)

    @property
    def xy(self) -> Vector2:
        return Vector2(self.x, self.y)

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])

    def __add__(self, other: "Vector3") -> "Vector3":
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Vector3") -> "Vector3":
        return Vector3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __neg__(self) -> "Vector3":
        return Vector3(-self.x, -self.y, -self.z)

    def __mul__(self, scalar: float) -> "Vector3":
        return Vector3(self.x * scalar, self.y * scalar, self.z * scalar)

    __rmul__ = __mul__

    def __truediv__(self, scalar: float) -> "Vector3":
        if scalar == 0:
            return Vector3.invalid()
        return Vector3(self.x / scalar, self.y / scalar, self.z / scalar)

    def __iter__(self):
        yield self.x
        yield self.y
        yield self.z

    def __eq__(self, other) -> bool:
        if not isinstance(other, Vector3):
            return NotImplemented
        return self.x == other.x and self.y == other.y and self.z == other.z

    def __hash__(self) -> int:
        return hash((self.x, self.y, self.z))

    def __repr__(self) -> str:
        return f"Vector3({self.x:g}, {self.y:g}, {self.z:g})"


class Matrix3x3:
    """3x3 matrix backed by a numpy array.

    Supports matrix-vector and matrix-matrix products through ``@`` (and
    ``*``), transposition and the adjugate, which is used as an unnormalized
    inverse for homogeneous transforms.
    """

    def __init__(self, values: Union[np.ndarray, Iterable[Iterable[float]], None] = None):
        if values is None:
            self.values = np.zeros((3, 3))
        else:
            self.values = np.array(values, dtype=float).reshape(3, 3)

    @staticmethod
    def identity() -> "Matrix3x3":
        return Matrix3x3(np.eye(3))

    @staticmethod
    def from_rows(a: Vector3, b: Vector3, c: Vector3) -> "Matrix3x3":
        return Matrix3x3([list(a), list(b), list(c)])

    @staticmethod
    def from_columns(a: Vector3, b: Vector3, c: Vector3) -> "Matrix3x3":
        return Matrix3x3(np.column_stack([a.as_array(), b.as_array(), c.as_array()]))

    def __getitem__(self, index: Tuple[int, int]) -> float:
        return float(self.values[index])

    def __setitem__(self, index: Tuple[int, int], value: float) -> None:
        self.values[index] = value

    def row(self, i: int) -> Vector3:
        return Vector3.from_array(self.values[i, :])

    def column(self, j: int) -> Vector3:
        return Vector3.from_array(self.values[:, j])

    def set_row(self, i: int, vector: Vector3) -> None:
        self.values[i, :] = vector.as_array()

    def set_column(self, j: int, vector: Vector3) -> None:
        self.values[:, j] = vector.as_array()

    def swap_rows(self, i: int, j: int) -> None:
        self.values[[i, j], :] = self.values[[j, i], :]

    def add_to_row(self, i: int, vector: Vector3) -> None:
        self.values[i, :] += vector.as_array()

    def copy(self) -> "Matrix3x3":
        return Matrix3x3(self.values.copy())

    def transposed(self) -> "Matrix3x3":
        return Matrix3x3(self.values.T.copy())

    def determinant(self) -> float:
        return float(np.linalg.det(self.values))

    def adjugate(self) -> "Matrix3x3":
        """Adjugate (transposed cofactor) matrix.

        Satisfies ``M @ M.adjugate() == det(M) * I``, so for homogeneous
        transforms it acts as an inverse up to scale.
        """
        a = self.values
        return Matrix3x3([
            [
                a[1, 1] * a[2, 2] - a[1, 2] * a[2, 1],
                a[2, 1] * a[0, 2] - a[0, 1] * a[2, 2],
                a[0, 1] * a[1, 2] - a[0, 2] * a[1, 1],
            ],
            [
                a[2, 0] * a[1, 2] - a[1, 0] * a[2, 2],
                a[0, 0] * a[2, 2] - a[2, 0] * a[0, 2],
                a[1, 0] * a[0, 2] - a[0, 0] * a[1, 2],
            ],
            [
                a[1, 0] * a[2, 1] - a[2, 0] * a[1, 1],
                a[2, 0] * a[0, 1] - a[0, 0] * a[2, 1],
                a[0, 0] * a[1, 1] - a[1, 0] * a[0, 1],
            ],
        ])

    def __matmul__(self, other):
        if isinstance(other, Matrix3x3):
            return Matrix3x3(self.values @ other.values)
        if isinstance(other, Vector3):
            return Vector3.from_array(self.values @ other.as_array())
        return NotImplemented

    def __mul__(self, other):
        if isinstance(other, (Matrix3x3, Vector3)):
            return self.__matmul__(other)
        return Matrix3x3(self.values * other)

    __rmul__ = __mul__

    def __eq__(self, other) -> bool:
        if not isinstance(other, Matrix3x3):
            return NotImplemented
        return bool(np.array_equal(self.values, other.values))

    __hash__ = None

    def __repr__(self) -> str:
        rows = ", ".join(str(list(np.round(r, 6))) for r in self.values)
        return f"Matrix3x3([{rows}])"
