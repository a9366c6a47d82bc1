"""Projection of cotangents onto the tangent space of a primal.

``project_to(x)`` builds a projector from a primal instance, recording its
element type, shape and any structure (diagonal, triangular, symmetric,
sparse pattern, fields). Calling the projector on a cotangent ``dx``
returns the closest tangent of the kind ``x`` admits:

- zero-likes and missing derivatives pass through untouched;
- thunks are projected lazily, inside a new thunk;
- a ``dx`` that already has the right type, pattern and dtype is returned
  as is, without copying;
- otherwise only the admissible entries of ``dx`` are read (the diagonal
  of a dense matrix for a ``Diagonal`` primal, the stored positions for a
  sparse one) and converted to the primal's element type. Entries outside
  the pattern are discarded, never preserved.

Example:
    >>> project = project_to(Diagonal([1.0, 2.0, 3.0]))
    >>> project(np.arange(9.0).reshape(3, 3))
    Diagonal(array([0., 4., 8.]))
"""

from __future__ import annotations
import dataclasses
import logging
from abc import ABC, abstractmethod
from numbers import Number
from typing import Any, Callable, Dict, Sequence, Tuple

import numpy as np
import scipy.sparse
import torch

from .errors import DimensionMismatchError, StructuralTypeMismatchError, TangentUsageError
from .linalg import Diagonal, Hermitian, LowerTriangular, StructuredMatrix, Symmetric, UpperTriangular
from .tangents.notimplemented import NotImplementedTangent
from .tangents.structural import BackingKind, Tangent, backing, canonicalize
from .tangents.thunks import AbstractThunk, InplaceableThunk, Thunk
from .tangents.zero import AbstractZero, NoTangent

logger = logging.getLogger(__name__)


class ProjectTo(ABC):
    """Base class of projectors.

    Subclasses implement ``project(dx)``; ``__call__`` handles the cases
    shared by every projector (zero-likes, missing derivatives, thunks).
    """

    def __call__(self, dx: Any) -> Any:
        if isinstance(dx, (AbstractZero, NotImplementedTangent)):
            return dx
        if isinstance(dx, InplaceableThunk):
            # the in-place function cannot be projected
            dx = dx.val
        if isinstance(dx, AbstractThunk):
            return Thunk(lambda: self(dx.unthunk()))
        return self.project(dx)

    @abstractmethod
    def project(self, dx: Any) -> Any:
        """Project a cotangent that is neither a zero-like nor a thunk."""
        pass

    def __repr__(self) -> str:
        attrs = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({attrs})"


class IdentityProjector(ProjectTo):
    """Projector for primals without a known tangent space; returns ``dx`` unchanged."""

    def project(self, dx):
        return dx


class NoTangentProjector(ProjectTo):
    """Projector for non-differentiable primals: everything maps to ``NoTangent()``."""

    def __call__(self, dx):
        return NoTangent()

    def project(self, dx):
        return NoTangent()


def _is_complex_dtype(dtype) -> bool:
    if isinstance(dtype, torch.dtype):
        return dtype.is_complex
    if dtype is complex:
        return True
    if dtype is float:
        return False
    return np.issubdtype(np.dtype(dtype), np.complexfloating)


def _drop_imaginary(dx, dtype):
    if not _is_complex_dtype(dtype) and np.iscomplexobj(dx):
        logger.debug("projection: dropping the imaginary part of a %s cotangent", type(dx).__name__)
        return dx.real
    return dx


def _as_dense(dx: Any) -> np.ndarray:
    if isinstance(dx, torch.Tensor):
        return dx.detach().resolve_conj().cpu().numpy()
    if scipy.sparse.issparse(dx):
        return dx.toarray()
    if isinstance(dx, StructuredMatrix):
        return dx.to_array()
    return np.asarray(dx)


def _fit_shape(dx: np.ndarray, shape: Tuple[int, ...]) -> np.ndarray:
    if dx.shape == shape:
        return dx
    if dx.size != int(np.prod(shape, dtype=np.int64)):
        raise DimensionMismatchError(shape, dx.shape)
    return dx.reshape(shape)


def _reject_structural(dx: Any, target: str) -> None:
    if isinstance(dx, Tangent):
        raise TangentUsageError(f"Cannot project a structural tangent onto {target}")


class NumberProjector(ProjectTo):
    """Projector for scalars, keeping the primal's precision.

    Args:
        dtype: ``float`` or ``complex`` for Python numbers, a NumPy dtype otherwise.
    """

    def __init__(self, dtype):
        self.dtype = dtype

    def project(self, dx):
        _reject_structural(dx, "a number")
        if isinstance(dx, (np.ndarray, torch.Tensor)):
            size = dx.size if isinstance(dx, np.ndarray) else dx.numel()
            if size != 1:
                raise DimensionMismatchError((), tuple(dx.shape))
            dx = dx.reshape(()).item() if isinstance(dx, torch.Tensor) else dx.reshape(())[()]
        dx = _drop_imaginary(dx, self.dtype)
        if self.dtype is float or self.dtype is complex:
            if type(dx) is self.dtype:
                return dx
            return self.dtype(dx)
        if isinstance(dx, np.generic) and dx.dtype == self.dtype:
            return dx
        return np.dtype(self.dtype).type(dx)


class ArrayProjector(ProjectTo):
    """Projector for dense NumPy arrays of a differentiable dtype."""

    def __init__(self, dtype, shape: Tuple[int, ...]):
        self.dtype = np.dtype(dtype)
        self.shape = tuple(shape)

    def project(self, dx):
        if isinstance(dx, np.ndarray) and dx.shape == self.shape and dx.dtype == self.dtype:
            return dx
        _reject_structural(dx, "an array")
        if isinstance(dx, (Number, np.generic)):
            if int(np.prod(self.shape, dtype=np.int64)) != 1:
                raise DimensionMismatchError(self.shape, ())
            dx = np.full(self.shape, dx)
        dx = _fit_shape(_as_dense(dx), self.shape)
        if dx.dtype == self.dtype:
            return dx
        return _drop_imaginary(dx, self.dtype).astype(self.dtype)


class ObjectArrayProjector(ProjectTo):
    """Projector for object arrays (e.g. arrays of arrays), one projector per element."""

    def __init__(self, elements: Sequence[ProjectTo], shape: Tuple[int, ...]):
        self.elements = list(elements)
        self.shape = tuple(shape)

    def project(self, dx):
        _reject_structural(dx, "an object array")
        if isinstance(dx, np.ndarray):
            if dx.size != len(self.elements):
                raise DimensionMismatchError(self.shape, dx.shape)
            items = list(dx.reshape(-1))
        else:
            items = list(dx)
            if len(items) != len(self.elements):
                raise DimensionMismatchError(self.shape, (len(items),))
        out = np.empty(len(items), dtype=object)
        for i, (project, item) in enumerate(zip(self.elements, items)):
            out[i] = project(item)
        return out.reshape(self.shape)


class TorchProjector(ProjectTo):
    """Projector for torch tensors: dtype, shape and device of the primal."""

    def __init__(self, dtype: torch.dtype, shape: Tuple[int, ...], device: torch.device):
        self.dtype = dtype
        self.shape = tuple(shape)
        self.device = device

    def project(self, dx):
        if isinstance(dx, torch.Tensor) and tuple(dx.shape) == self.shape and dx.dtype == self.dtype \
                and dx.device == self.device:
            return dx
        _reject_structural(dx, "a tensor")
        if isinstance(dx, (Number, np.generic)):
            if int(np.prod(self.shape, dtype=np.int64)) != 1:
                raise DimensionMismatchError(self.shape, ())
            dx = torch.full(self.shape, dx)
        elif not isinstance(dx, torch.Tensor):
            dx = torch.as_tensor(_as_dense(dx))
        if tuple(dx.shape) != self.shape:
            if dx.numel() != int(np.prod(self.shape, dtype=np.int64)):
                raise DimensionMismatchError(self.shape, tuple(dx.shape))
            dx = dx.reshape(self.shape)
        if dx.is_complex() and not self.dtype.is_complex:
            logger.debug("projection: dropping the imaginary part of a complex tensor cotangent")
            dx = dx.real
        return dx.to(dtype=self.dtype, device=self.device)


class DiagonalProjector(ProjectTo):
    """Projector for ``Diagonal`` primals: keeps only the diagonal of ``dx``."""

    def __init__(self, diag: ArrayProjector):
        self.diag = diag

    def project(self, dx):
        if isinstance(dx, Diagonal):
            projected = self.diag(dx.diag)
            return dx if projected is dx.diag else Diagonal(projected)
        _reject_structural(dx, "a Diagonal")
        arr = _as_dense(dx)
        n = self.diag.shape[0]
        if arr.shape != (n, n):
            raise DimensionMismatchError((n, n), arr.shape)
        logger.debug("projection: discarding off-diagonal entries of a %s cotangent", type(dx).__name__)
        return Diagonal(self.diag(np.diagonal(arr).copy()))


class TriangularProjector(ProjectTo):
    """Projector for ``UpperTriangular``/``LowerTriangular`` primals."""

    def __init__(self, kind: type, data: ArrayProjector):
        self.kind = kind
        self.data = data

    def project(self, dx):
        if type(dx) is self.kind:
            projected = self.data(dx.data)
            return dx if projected is dx.data else self.kind(projected)
        _reject_structural(dx, self.kind.__name__)
        arr = _fit_shape(_as_dense(dx), self.data.shape)
        part = np.triu(arr) if self.kind is UpperTriangular else np.tril(arr)
        return self.kind(self.data(part))


class SymmetricProjector(ProjectTo):
    """Projector for ``Symmetric``/``Hermitian`` primals.

    A dense cotangent is symmetrised as ``(dx + dx')/2``. A ``Diagonal``
    cotangent is already symmetric and stays a ``Diagonal``.
    """

    def __init__(self, kind: type, uplo: str, data: ArrayProjector):
        self.kind = kind
        self.uplo = uplo
        self.data = data

    def project(self, dx):
        if type(dx) is self.kind and dx.uplo == self.uplo:
            projected = self.data(dx.data)
            return dx if projected is dx.data else self.kind(projected, self.uplo)
        _reject_structural(dx, self.kind.__name__)
        if isinstance(dx, Diagonal):
            diag = ArrayProjector(self.data.dtype, (self.data.shape[0],))(dx.diag)
            if self.kind is Hermitian:
                diag = diag.real.astype(diag.dtype)
            return Diagonal(diag)
        arr = _fit_shape(_as_dense(dx), self.data.shape)
        mirrored = arr.conj().T if self.kind is Hermitian else arr.T
        return self.kind(self.data((arr + mirrored) / 2), self.uplo)


def _sorted_pattern(rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    order = np.lexsort((cols, rows))
    return rows[order], cols[order]


def _pattern_of(x) -> Tuple[np.ndarray, np.ndarray]:
    coo = x.tocoo(copy=True)
    coo.sum_duplicates()
    return _sorted_pattern(np.asarray(coo.row), np.asarray(coo.col))


class SparseProjector(ProjectTo):
    """Projector for SciPy sparse matrices and arrays.

    The tangent of a sparse primal is sparse with the same stored
    positions. Only those positions are read from ``dx``; a ``dx`` in the
    same format, dtype and pattern is returned as is.
    """

    def __init__(self, dtype, shape: Tuple[int, int], rows: np.ndarray, cols: np.ndarray,
                 fmt: str, is_array: bool):
        self.dtype = np.dtype(dtype)
        self.shape = tuple(shape)
        self.rows, self.cols = _sorted_pattern(np.asarray(rows), np.asarray(cols))
        self.format = fmt
        self.is_array = is_array

    def _same_pattern(self, dx) -> bool:
        rows, cols = _pattern_of(dx)
        return np.array_equal(rows, self.rows) and np.array_equal(cols, self.cols)

    def _gather(self, dx) -> np.ndarray:
        """Values of the sparse ``dx`` at the stored positions; absent ones are zero."""
        coo = dx.tocoo(copy=True)
        coo.sum_duplicates()
        ncols = np.int64(self.shape[1])
        keys = np.asarray(coo.row, dtype=np.int64) * ncols + np.asarray(coo.col, dtype=np.int64)
        order = np.argsort(keys)
        keys, data = keys[order], np.asarray(coo.data)[order]
        wanted = self.rows.astype(np.int64) * ncols + self.cols.astype(np.int64)
        pos = np.searchsorted(keys, wanted)
        clipped = np.minimum(pos, max(len(keys) - 1, 0))
        found = (pos < len(keys)) & (keys[clipped] == wanted) if len(keys) else np.zeros(len(wanted), bool)
        values = np.zeros(len(wanted), dtype=coo.dtype)
        values[found] = data[clipped[found]]
        return values

    def project(self, dx):
        if scipy.sparse.issparse(dx):
            if dx.shape != self.shape:
                raise DimensionMismatchError(self.shape, dx.shape)
            same_kind = isinstance(dx, scipy.sparse.sparray) == self.is_array
            if same_kind and dx.format == self.format and dx.dtype == self.dtype and self._same_pattern(dx):
                return dx
            values = self._gather(dx)
        else:
            _reject_structural(dx, "a sparse matrix")
            values = _fit_shape(_as_dense(dx), self.shape)[self.rows, self.cols]
        logger.debug("projection: reading %d stored positions of a %s cotangent", len(values), type(dx).__name__)
        values = _drop_imaginary(values, self.dtype).astype(self.dtype)
        build = scipy.sparse.coo_array if self.is_array else scipy.sparse.coo_matrix
        return build((values, (self.rows, self.cols)), shape=self.shape).asformat(self.format)


class TupleProjector(ProjectTo):
    """Projector for tuples: one projector per element, giving a tuple-backed ``Tangent``."""

    def __init__(self, primal_type: type, elements: Sequence[ProjectTo]):
        self.primal_type = primal_type
        self.elements = tuple(elements)

    def project(self, dx):
        if isinstance(dx, Tangent):
            if dx.kind is not BackingKind.TUPLE:
                raise StructuralTypeMismatchError(self.primal_type, dx.primal_type, operation="project")
            items = tuple(dx.values())
        elif isinstance(dx, (tuple, list)):
            items = tuple(dx)
        else:
            raise TangentUsageError(f"Cannot project a {type(dx).__name__} onto a tuple")
        if len(items) != len(self.elements):
            raise DimensionMismatchError((len(self.elements),), (len(items),))
        return Tangent(self.primal_type, *(p(v) for p, v in zip(self.elements, items)))


class StructProjector(ProjectTo):
    """Projector for dataclasses and namedtuples, one projector per field.

    Accepts a structural tangent of the same primal type or a cotangent
    that is itself an instance of the primal type, and returns a
    structural tangent holding the projected fields.
    """

    def __init__(self, primal_type: type, fields: Dict[str, ProjectTo]):
        self.primal_type = primal_type
        self.fields = dict(fields)

    def project(self, dx):
        if isinstance(dx, Tangent):
            if dx.primal_type is not self.primal_type:
                raise StructuralTypeMismatchError(self.primal_type, dx.primal_type, operation="project")
            canonicalize(dx)
            items = dx.items()
        elif isinstance(dx, self.primal_type):
            items = backing(dx).items()
        else:
            raise TangentUsageError(
                f"Cannot project a {type(dx).__name__} onto {self.primal_type.__name__}"
            )
        return Tangent.from_backing(self.primal_type, {k: self.fields[k](v) for k, v in items})


_projectors: Dict[type, Callable[[Any], ProjectTo]] = {}


def register_projector(cls: type):
    """Register a factory building the projector for primals of ``cls``.

    Lookup follows the MRO of the primal's type, so a factory registered
    for a base class covers its subclasses.

    Example:
        >>> @register_projector(MyMatrix)
        ... def _(x):
        ...     return ArrayProjector(x.dtype, x.shape)
    """
    def decorator(factory: Callable[[Any], ProjectTo]) -> Callable[[Any], ProjectTo]:
        _projectors[cls] = factory
        return factory
    return decorator


def project_to(x: Any) -> ProjectTo:
    """Build the projector onto the tangent space of the primal ``x``."""
    for klass in type(x).__mro__:
        factory = _projectors.get(klass)
        if factory is not None:
            return factory(x)
    if dataclasses.is_dataclass(x) or (isinstance(x, tuple) and hasattr(x, "_fields")):
        return _struct_projector(x)
    return IdentityProjector()


def _all_non_differentiable(projectors) -> bool:
    projectors = list(projectors)
    return bool(projectors) and all(isinstance(p, NoTangentProjector) for p in projectors)


def _struct_projector(x) -> ProjectTo:
    fields = {name: project_to(value) for name, value in backing(x).items()}
    if _all_non_differentiable(fields.values()):
        return NoTangentProjector()
    return StructProjector(type(x), fields)


def _differentiable_dtype(dtype) -> np.dtype:
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.inexact):
        return dtype
    return np.dtype(np.float64)


@register_projector(bool)
@register_projector(np.bool_)
@register_projector(str)
@register_projector(type(None))
@register_projector(AbstractZero)
def _non_differentiable(x):
    return NoTangentProjector()


@register_projector(int)
@register_projector(float)
def _real_number(x):
    return NumberProjector(float)


@register_projector(complex)
def _complex_number(x):
    return NumberProjector(complex)


@register_projector(np.number)
def _numpy_scalar(x):
    return NumberProjector(_differentiable_dtype(x.dtype))


@register_projector(np.ndarray)
def _array(x):
    if x.dtype == np.bool_:
        return NoTangentProjector()
    if x.dtype == object:
        elements = [project_to(e) for e in x.reshape(-1)]
        if _all_non_differentiable(elements):
            return NoTangentProjector()
        return ObjectArrayProjector(elements, x.shape)
    return ArrayProjector(_differentiable_dtype(x.dtype), x.shape)


@register_projector(torch.Tensor)
def _tensor(x):
    if x.dtype == torch.bool:
        return NoTangentProjector()
    dtype = x.dtype if (x.is_floating_point() or x.is_complex()) else torch.get_default_dtype()
    return TorchProjector(dtype, tuple(x.shape), x.device)


@register_projector(Diagonal)
def _diagonal(x):
    if x.diag.dtype == np.bool_:
        return NoTangentProjector()
    return DiagonalProjector(ArrayProjector(_differentiable_dtype(x.diag.dtype), x.diag.shape))


@register_projector(UpperTriangular)
@register_projector(LowerTriangular)
def _triangular(x):
    if x.data.dtype == np.bool_:
        return NoTangentProjector()
    return TriangularProjector(type(x), ArrayProjector(_differentiable_dtype(x.data.dtype), x.data.shape))


@register_projector(Symmetric)
def _symmetric(x):
    if x.data.dtype == np.bool_:
        return NoTangentProjector()
    return SymmetricProjector(type(x), x.uplo, ArrayProjector(_differentiable_dtype(x.data.dtype), x.data.shape))


@register_projector(tuple)
def _tuple(x):
    if hasattr(x, "_fields"):
        return _struct_projector(x)
    elements = [project_to(e) for e in x]
    if _all_non_differentiable(elements):
        return NoTangentProjector()
    return TupleProjector(type(x), elements)


def _sparse(x):
    if x.dtype == np.bool_:
        return NoTangentProjector()
    coo = x.tocoo(copy=True)
    coo.sum_duplicates()
    return SparseProjector(
        _differentiable_dtype(x.dtype), x.shape, np.asarray(coo.row), np.asarray(coo.col),
        x.format, isinstance(x, scipy.sparse.sparray),
    )


register_projector(scipy.sparse.spmatrix)(_sparse)
register_projector(scipy.sparse.sparray)(_sparse)
