# matrix.py

"""Small dense matrices for analysing 2x2 deformation gradients."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import numpy as np

from core.exceptions import DimensionError


class Matrix:
    """A two-dimensional array of numbers.

    Arithmetic works for any shape; determinants and the eigen-decomposition
    are only defined for 2x2, which is all the mesh ever analyses.
    """

    __slots__ = ("values",)

    def __init__(self, values: Sequence[Sequence[float]] | np.ndarray):
        arr = np.array(values, dtype=float)
        if arr.ndim != 2:
            raise DimensionError(
                f"Matrix values must be two-dimensional; got {arr.ndim} dimensions."
            )
        self.values = arr

    @classmethod
    def zeros(cls, n: int, m: int) -> "Matrix":
        return cls(np.zeros((n, m)))

    @classmethod
    def identity(cls, n: int) -> "Matrix":
        return cls(np.eye(n))

    @classmethod
    def diagonal(cls, *diags: float) -> "Matrix":
        return cls(np.diag(np.asarray(diags, dtype=float)))

    @classmethod
    def from_values(cls, n: int, m: int, *values: float) -> "Matrix":
        """Instantiate an nxm matrix from values listed left to right, top to bottom."""
        if len(values) != n * m:
            raise DimensionError(
                f"{len(values)} values do not fit in a {n}x{m} matrix.", shape=(n, m)
            )
        return cls(np.asarray(values, dtype=float).reshape(n, m))

    @classmethod
    def column(cls, *values: float) -> "Matrix":
        return cls.from_values(len(values), 1, *values)

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape

    @property
    def n(self) -> int:
        return self.values.shape[0]

    @property
    def m(self) -> int:
        return self.values.shape[1]

    def get(self, i: int, j: int) -> float:
        return float(self.values[i, j])

    def __getitem__(self, index):
        return self.values[index]

    def _require_same_shape(self, other: "Matrix", verb: str) -> None:
        if self.shape != other.shape:
            raise DimensionError(
                f"Cannot {verb} these matrices. Dimensions {self.shape} and "
                f"{other.shape} do not match.",
                shape=self.shape,
            )

    def _require_2x2(self, what: str) -> None:
        if self.shape != (2, 2):
            raise DimensionError(
                f"Cannot compute {what} of a {self.n}x{self.m} matrix; only 2x2 is supported.",
                shape=self.shape,
            )

    def plus(self, other: "Matrix") -> "Matrix":
        self._require_same_shape(other, "add")
        return Matrix(self.values + other.values)

    def minus(self, other: "Matrix") -> "Matrix":
        self._require_same_shape(other, "subtract")
        return Matrix(self.values - other.values)

    def times(self, other: "Matrix | float") -> "Matrix":
        """Matrix product when ``other`` is a Matrix, scaling otherwise."""
        if isinstance(other, Matrix):
            if self.m != other.n:
                raise DimensionError(
                    f"Cannot multiply these matrices. Dimensions {self.shape} and "
                    f"{other.shape} do not agree.",
                    shape=self.shape,
                )
            return Matrix(self.values @ other.values)
        return Matrix(self.values * float(other))

    def over(self, divisor: float) -> "Matrix":
        return self.times(1.0 / divisor)

    @property
    def T(self) -> "Matrix":
        return Matrix(self.values.T)

    def tr(self) -> float:
        return float(np.trace(self.values))

    def det(self) -> float:
        self._require_2x2("the determinant")
        a = self.values
        return float(a[0, 0] * a[1, 1] - a[0, 1] * a[1, 0])

    def dot(self, other: "Matrix") -> float:
        """Inner product of two column vectors."""
        if self.m != 1 or other.m != 1:
            raise DimensionError(
                f"Cannot compute this dot product. Matrices {self.shape} and "
                f"{other.shape} are not both column vectors."
            )
        if self.n != other.n:
            raise DimensionError(
                f"Cannot compute this dot product. Vector lengths {self.n} and "
                f"{other.n} do not match."
            )
        return float(self.values[:, 0] @ other.values[:, 0])

    def inner_prod(self, other: "Matrix") -> float:
        """Frobenius inner product."""
        self._require_same_shape(other, "multiply")
        return float(np.sum(self.values * other.values))

    def sqr(self) -> float:
        return self.inner_prod(self)

    def mag(self) -> float:
        return math.sqrt(self.sqr())

    def norm(self) -> "Matrix":
        """Scale every column to unit length.

        A zero column becomes the first basis vector instead of staying zero.
        """
        hat = np.zeros_like(self.values)
        col_norms = np.sqrt(np.sum(self.values**2, axis=0))
        for j, length in enumerate(col_norms):
            if length != 0:
                hat[:, j] = self.values[:, j] / length
            else:
                hat[0, j] = 1.0
        return Matrix(hat)

    def eigenvalues(self) -> tuple[float, float]:
        """Both eigenvalues of a 2x2 matrix, larger first."""
        self._require_2x2("eigenvalues")
        half_trace = self.tr() / 2
        disc = max(half_trace * half_trace - self.det(), 0.0)
        root = math.sqrt(disc)
        return half_trace + root, half_trace - root

    def eigenvectors(
        self, vals: Iterable[float] | None = None
    ) -> tuple["Matrix", "Matrix"]:
        """Unit eigenvectors (2x1) matching :meth:`eigenvalues` order."""
        self._require_2x2("eigenvectors")
        v0, v1 = self.eigenvalues() if vals is None else tuple(vals)
        a = self.values
        if a[1, 0] != 0:
            vecs = (
                Matrix.column(v0 - a[1, 1], a[1, 0]),
                Matrix.column(v1 - a[1, 1], a[1, 0]),
            )
        elif a[0, 1] != 0:
            vecs = (
                Matrix.column(a[0, 1], v0 - a[0, 0]),
                Matrix.column(a[0, 1], v1 - a[0, 0]),
            )
        elif (a[0, 0] > a[1, 1]) == (v0 > v1):
            vecs = (Matrix.column(1.0, 0.0), Matrix.column(0.0, 1.0))
        else:
            vecs = (Matrix.column(0.0, 1.0), Matrix.column(1.0, 0.0))
        return vecs[0].norm(), vecs[1].norm()

    def is_nan(self) -> bool:
        return bool(np.isnan(self.values).any())

    def to_list(self) -> list[list[float]]:
        return self.values.tolist()

    __add__ = plus
    __sub__ = minus

    def __mul__(self, other: float) -> "Matrix":
        if isinstance(other, Matrix):
            return NotImplemented
        return self.times(other)

    __rmul__ = __mul__

    def __matmul__(self, other: "Matrix") -> "Matrix":
        return self.times(other)

    def __truediv__(self, divisor: float) -> "Matrix":
        return self.over(divisor)

    def __neg__(self) -> "Matrix":
        return self.times(-1.0)

    def __eq__(self, other):
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and bool(np.all(self.values == other.values))

    __hash__ = None

    def __repr__(self):
        rows = ", ".join(
            "[" + ", ".join(f"{v:.4g}" for v in row) + "]" for row in self.values
        )
        return f"Matrix({self.n}x{self.m}: {rows})"
