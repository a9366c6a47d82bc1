"""Structured matrices: dense storage with a pattern the tangent must respect.

NumPy has no diagonal, triangular or symmetric matrix types, so these thin
wrappers provide them. They are natural tangents of themselves: adding two
of the same structure keeps the structure, scaling by a number keeps it,
and anything else falls back to the dense array.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from numbers import Number
from typing import Any

import numpy as np


class StructuredMatrix(ABC):
    """Base class for square matrices with a fixed sparsity or symmetry pattern."""

    __slots__ = ()

    @abstractmethod
    def to_array(self) -> np.ndarray:
        """Dense ``ndarray`` with the same entries."""
        pass

    @abstractmethod
    def _from_full(self, full: np.ndarray) -> 'StructuredMatrix':
        """Same structure as ``self``, read from the admissible entries of ``full``."""
        pass

    def __array__(self, dtype=None, copy=None):
        arr = self.to_array()
        return arr if dtype is None else arr.astype(dtype)

    @property
    def shape(self):
        return self.to_array().shape

    @property
    def ndim(self) -> int:
        return 2

    @property
    def size(self) -> int:
        n, m = self.shape
        return n * m

    @property
    def dtype(self):
        return self.to_array().dtype

    def __len__(self) -> int:
        return self.shape[0]

    def __getitem__(self, key):
        return self.to_array()[key]

    def __eq__(self, other):
        if isinstance(other, StructuredMatrix) and type(other) is not type(self):
            return False
        other_arr = other.to_array() if isinstance(other, StructuredMatrix) else np.asarray(other)
        return self.shape == other_arr.shape and bool(np.array_equal(self.to_array(), other_arr))

    __hash__ = None

    def _same_structure(self, other: Any) -> bool:
        return type(other) is type(self)

    def __add__(self, other):
        if self._same_structure(other):
            return self._from_full(self.to_array() + other.to_array())
        if isinstance(other, (np.ndarray, StructuredMatrix, Number, np.generic)):
            return self.to_array() + np.asarray(other)
        return NotImplemented

    def __radd__(self, other):
        if isinstance(other, (np.ndarray, Number, np.generic)):
            return np.asarray(other) + self.to_array()
        return NotImplemented

    def __sub__(self, other):
        if self._same_structure(other):
            return self._from_full(self.to_array() - other.to_array())
        if isinstance(other, (np.ndarray, StructuredMatrix, Number, np.generic)):
            return self.to_array() - np.asarray(other)
        return NotImplemented

    def __rsub__(self, other):
        if isinstance(other, (np.ndarray, Number, np.generic)):
            return np.asarray(other) - self.to_array()
        return NotImplemented

    def __neg__(self):
        return self._from_full(-self.to_array())

    def __mul__(self, other):
        if isinstance(other, (Number, np.generic)):
            return self._from_full(self.to_array() * other)
        if isinstance(other, np.ndarray):
            return self.to_array() * other
        return NotImplemented

    __rmul__ = __mul__

    def __truediv__(self, other):
        if isinstance(other, (Number, np.generic)):
            return self._from_full(self.to_array() / other)
        return NotImplemented

    def __matmul__(self, other):
        return self.to_array() @ np.asarray(other)

    def __rmatmul__(self, other):
        return np.asarray(other) @ self.to_array()

    def conj(self) -> 'StructuredMatrix':
        return self._from_full(np.conj(self.to_array()))

    def transpose(self):
        return self.to_array().T

    @property
    def T(self):
        return self.transpose()

    def adjoint(self):
        return self.conj().transpose()

    @property
    def real(self):
        return self._from_full(self.to_array().real)

    @property
    def imag(self):
        return self._from_full(self.to_array().imag)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._repr_payload()!r})"

    def _repr_payload(self):
        return self.to_array()


class Diagonal(StructuredMatrix):
    """A square matrix whose only stored entries are on the diagonal.

    Example:
        >>> Diagonal([1.0, 2.0]).to_array()
        array([[1., 0.],
               [0., 2.]])
    """

    __slots__ = ("diag",)

    def __init__(self, diag):
        diag = np.asarray(diag)
        if diag.ndim != 1:
            raise ValueError(f"Diagonal expects a vector, got shape {diag.shape}")
        self.diag = diag

    def to_array(self) -> np.ndarray:
        return np.diag(self.diag)

    def _from_full(self, full: np.ndarray) -> 'Diagonal':
        return Diagonal(np.diagonal(full).copy())

    @property
    def shape(self):
        n = self.diag.shape[0]
        return (n, n)

    @property
    def dtype(self):
        return self.diag.dtype

    def __add__(self, other):
        if isinstance(other, Diagonal):
            return Diagonal(self.diag + other.diag)
        return super().__add__(other)

    def __mul__(self, other):
        if isinstance(other, (Number, np.generic)):
            return Diagonal(self.diag * other)
        return super().__mul__(other)

    __rmul__ = __mul__

    def __neg__(self):
        return Diagonal(-self.diag)

    def conj(self) -> 'Diagonal':
        return Diagonal(np.conj(self.diag)) if np.iscomplexobj(self.diag) else self

    def transpose(self) -> 'Diagonal':
        return self

    def adjoint(self) -> 'Diagonal':
        return self.conj()

    def _repr_payload(self):
        return self.diag


class _Triangular(StructuredMatrix):
    __slots__ = ("data",)
    upper = True

    def __init__(self, data):
        data = np.asarray(data)
        if data.ndim != 2 or data.shape[0] != data.shape[1]:
            raise ValueError(f"{type(self).__name__} expects a square matrix, got shape {data.shape}")
        self.data = data

    def to_array(self) -> np.ndarray:
        return np.triu(self.data) if self.upper else np.tril(self.data)

    def _from_full(self, full: np.ndarray):
        return type(self)(full)

    @property
    def shape(self):
        return self.data.shape

    @property
    def dtype(self):
        return self.data.dtype


class UpperTriangular(_Triangular):
    """View of the upper triangle (diagonal included) of a square matrix."""

    __slots__ = ()
    upper = True

    def transpose(self) -> 'LowerTriangular':
        return LowerTriangular(self.data.T)


class LowerTriangular(_Triangular):
    """View of the lower triangle (diagonal included) of a square matrix."""

    __slots__ = ()
    upper = False

    def transpose(self) -> UpperTriangular:
        return UpperTriangular(self.data.T)


class Symmetric(StructuredMatrix):
    """Symmetric matrix stored as one triangle of ``data``.

    Args:
        data: Square matrix; only the triangle selected by ``uplo`` is read.
        uplo: ``"U"`` to read the upper triangle, ``"L"`` for the lower one.
    """

    __slots__ = ("data", "uplo")

    def __init__(self, data, uplo: str = "U"):
        data = np.asarray(data)
        if data.ndim != 2 or data.shape[0] != data.shape[1]:
            raise ValueError(f"{type(self).__name__} expects a square matrix, got shape {data.shape}")
        if uplo not in ("U", "L"):
            raise ValueError(f"uplo must be 'U' or 'L', got {uplo!r}")
        self.data = data
        self.uplo = uplo

    def _triangle(self) -> np.ndarray:
        # strictly off-diagonal part of the stored triangle, in upper form
        return np.triu(self.data, 1) if self.uplo == "U" else np.tril(self.data, -1).T

    def _mirror(self, upper: np.ndarray) -> np.ndarray:
        return upper.T

    def _diagonal(self) -> np.ndarray:
        return np.diag(np.diagonal(self.data))

    def to_array(self) -> np.ndarray:
        upper = self._triangle()
        return upper + self._mirror(upper) + self._diagonal()

    def _from_full(self, full: np.ndarray):
        return type(self)(full, self.uplo)

    @property
    def shape(self):
        return self.data.shape

    @property
    def dtype(self):
        return self.data.dtype

    def transpose(self):
        return self


class Hermitian(Symmetric):
    """Hermitian matrix stored as one triangle of ``data``; the diagonal is taken as real."""

    __slots__ = ()

    def _mirror(self, upper: np.ndarray) -> np.ndarray:
        return np.conj(upper).T

    def _diagonal(self) -> np.ndarray:
        return np.diag(np.real(np.diagonal(self.data)))

    def transpose(self):
        return self.conj()

    def adjoint(self) -> 'Hermitian':
        return self
