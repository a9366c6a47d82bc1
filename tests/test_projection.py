"""Tests for projection onto a primal's tangent space."""

import numpy as np
import pytest
import scipy.sparse
import torch

from tangentcore import (
    Diagonal,
    DimensionMismatchError,
    Hermitian,
    InplaceableThunk,
    LowerTriangular,
    NoTangent,
    Symmetric,
    Tangent,
    TangentUsageError,
    Thunk,
    UpperTriangular,
    ZeroTangent,
    not_implemented,
    project_to,
    register_projector,
)
from tangentcore.projection import (
    ArrayProjector,
    IdentityProjector,
    NoTangentProjector,
    ProjectTo,
)
from conftest import Foo, Point


class TestSharedBehaviour:
    """Cases every projector handles the same way."""

    @pytest.mark.parametrize("primal", [1.0, np.ones(3), Diagonal([1.0, 2.0])])
    def test_zeros_pass_through(self, primal):
        project = project_to(primal)
        assert project(ZeroTangent()) is ZeroTangent()
        assert project(NoTangent()) is NoTangent()

    def test_not_implemented_passes_through(self):
        ni = not_implemented()
        assert project_to(np.ones(2))(ni) is ni

    def test_thunk_projected_lazily(self):
        """Test a thunk is wrapped in a new thunk rather than forced"""
        calls = []
        t = Thunk(lambda: calls.append(1) or np.ones((2, 2)))
        out = project_to(Diagonal([1.0, 2.0]))(t)
        assert isinstance(out, Thunk)
        assert calls == []
        assert out.unthunk() == Diagonal([1.0, 1.0])

    def test_inplaceable_thunk_projects_value(self):
        it = InplaceableThunk(lambda dx: dx, Thunk(lambda: np.ones(2, dtype=np.float64)))
        out = project_to(np.ones(2, dtype=np.float32))(it)
        assert isinstance(out, Thunk)
        assert out.unthunk().dtype == np.float32


class TestNumbers:
    """Scalar primals."""

    def test_float_keeps_python_float(self):
        assert project_to(1.0)(2) == 2.0
        assert type(project_to(1.0)(2)) is float

    def test_int_promotes_to_float(self):
        assert type(project_to(3)(np.float64(2.0))) is float

    def test_complex_dropped_for_real(self):
        assert project_to(1.0)(2.0 + 3j) == 2.0

    def test_complex_kept_for_complex(self):
        assert project_to(1j)(2.0) == 2.0 + 0j
        assert type(project_to(1j)(2.0)) is complex

    def test_numpy_precision(self):
        out = project_to(np.float32(1.0))(2.0)
        assert isinstance(out, np.float32)

    def test_size_one_array(self):
        assert project_to(1.0)(np.array([[2.5]])) == 2.5

    def test_bigger_array_raises(self):
        with pytest.raises(DimensionMismatchError):
            project_to(1.0)(np.ones(2))

    def test_bool_non_differentiable(self):
        assert isinstance(project_to(True), NoTangentProjector)
        assert project_to(True)(1.0) is NoTangent()
        assert project_to(np.bool_(True))(1.0) is NoTangent()

    def test_structural_rejected(self):
        with pytest.raises(TangentUsageError):
            project_to(1.0)(Tangent(Foo, x=1.0))


class TestArrays:
    """Dense NumPy primals."""

    def test_fast_path_identity(self):
        """Test a matching dx is returned without copying"""
        dx = np.random.randn(3)
        assert project_to(np.zeros(3))(dx) is dx

    def test_dtype_cast(self):
        out = project_to(np.zeros(3, dtype=np.float32))(np.ones(3))
        assert out.dtype == np.float32

    def test_integer_primal_gives_float(self):
        out = project_to(np.arange(3))(np.ones(3, dtype=np.float32))
        assert out.dtype == np.float64

    def test_reshape_when_counts_match(self):
        out = project_to(np.zeros((2, 3)))(np.arange(6.0))
        assert out.shape == (2, 3)

    def test_dimension_mismatch(self):
        """Test the error carries expected and actual shapes"""
        with pytest.raises(DimensionMismatchError) as excinfo:
            project_to(np.zeros((2, 3)))(np.ones(5))
        assert excinfo.value.expected == (2, 3)
        assert excinfo.value.actual == (5,)

    def test_number_into_size_one(self):
        out = project_to(np.zeros(1))(2.0)
        np.testing.assert_array_equal(out, np.array([2.0]))

    def test_complex_dropped(self):
        out = project_to(np.zeros(2))(np.array([1 + 1j, 2 - 1j]))
        np.testing.assert_array_equal(out, np.array([1.0, 2.0]))

    def test_bool_array(self):
        assert project_to(np.array([True, False]))(np.ones(2)) is NoTangent()

    def test_zero_length(self):
        project = project_to(np.zeros(0))
        assert project(np.zeros(0)).shape == (0,)
        assert project(np.zeros((0, 3))).shape == (0,)
        with pytest.raises(DimensionMismatchError):
            project(np.ones(1))

    def test_from_tensor(self):
        out = project_to(np.zeros(2))(torch.ones(2))
        assert isinstance(out, np.ndarray)

    def test_object_array(self):
        primal = np.empty(2, dtype=object)
        primal[0], primal[1] = np.zeros(2), np.zeros(3, dtype=np.float32)
        dx = np.empty(2, dtype=object)
        dx[0], dx[1] = np.ones(2), np.ones(3)
        out = project_to(primal)(dx)
        assert out[1].dtype == np.float32

    @pytest.mark.parametrize("primal", [np.zeros((2, 2)), np.zeros(3, dtype=np.complex64)])
    def test_idempotent(self, primal, random_seed):
        project = project_to(primal)
        y = np.random.randn(*primal.shape) + 1j * np.random.randn(*primal.shape)
        once = project(y)
        np.testing.assert_array_equal(project(once), once)


class TestTensors:
    """torch primals."""

    def test_fast_path(self):
        dx = torch.randn(3)
        assert project_to(torch.zeros(3))(dx) is dx

    def test_dtype_and_shape(self):
        out = project_to(torch.zeros(2, 2, dtype=torch.float64))(np.ones(4, dtype=np.float32))
        assert out.dtype == torch.float64
        assert out.shape == (2, 2)

    def test_int_tensor_gets_default_float(self):
        out = project_to(torch.arange(3))(torch.ones(3, dtype=torch.float64))
        assert out.dtype == torch.get_default_dtype()

    def test_bool_tensor(self):
        assert project_to(torch.tensor([True]))(torch.ones(1)) is NoTangent()

    def test_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            project_to(torch.zeros(3))(torch.ones(4))


class TestStructuredMatrices:
    """Diagonal, triangular and symmetric primals."""

    def test_diagonal_discards_off_diagonal(self):
        """Test a dense cotangent keeps only its diagonal"""
        dense = np.arange(9.0).reshape(3, 3)
        out = project_to(Diagonal(np.ones(3)))(dense)
        assert isinstance(out, Diagonal)
        np.testing.assert_array_equal(out.diag, np.array([0.0, 4.0, 8.0]))

    def test_diagonal_fast_path(self):
        dx = Diagonal(np.ones(3))
        assert project_to(Diagonal(np.zeros(3)))(dx) is dx

    def test_diagonal_shape_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            project_to(Diagonal(np.ones(3)))(np.ones((2, 2)))

    def test_diagonal_idempotent(self, random_seed):
        project = project_to(Diagonal(np.ones(3)))
        once = project(np.random.randn(3, 3))
        assert project(once) == once

    def test_upper_triangular(self):
        dense = np.arange(4.0).reshape(2, 2)
        out = project_to(UpperTriangular(np.ones((2, 2))))(dense)
        assert isinstance(out, UpperTriangular)
        np.testing.assert_array_equal(out.to_array(), np.array([[0.0, 1.0], [0.0, 3.0]]))

    def test_lower_triangular(self):
        dense = np.arange(4.0).reshape(2, 2)
        out = project_to(LowerTriangular(np.ones((2, 2))))(dense)
        np.testing.assert_array_equal(out.to_array(), np.array([[0.0, 0.0], [2.0, 3.0]]))

    def test_symmetric_symmetrises(self):
        dense = np.array([[1.0, 2.0], [4.0, 3.0]])
        out = project_to(Symmetric(np.eye(2)))(dense)
        assert isinstance(out, Symmetric)
        np.testing.assert_array_equal(out.to_array(), np.array([[1.0, 3.0], [3.0, 3.0]]))

    def test_symmetric_keeps_diagonal(self):
        out = project_to(Symmetric(np.eye(2)))(Diagonal([1.0, 2.0]))
        assert isinstance(out, Diagonal)

    def test_hermitian(self):
        dense = np.array([[1.0 + 1j, 2.0], [0.0, 3.0]])
        out = project_to(Hermitian(np.eye(2, dtype=complex)))(dense)
        full = out.to_array()
        np.testing.assert_allclose(full, full.conj().T)
        assert full[0, 0] == 1.0


class TestSparse:
    """SciPy sparse primals."""

    def primal(self, cls=scipy.sparse.csr_matrix):
        return cls(np.array([[1.0, 0.0], [0.0, 2.0]]))

    def test_reads_only_pattern(self):
        """Test entries outside the stored pattern are discarded"""
        out = project_to(self.primal())(np.array([[5.0, 6.0], [7.0, 8.0]]))
        assert scipy.sparse.issparse(out)
        assert out.format == "csr"
        np.testing.assert_array_equal(out.toarray(), np.array([[5.0, 0.0], [0.0, 8.0]]))

    def test_same_pattern_fast_path(self):
        dx = self.primal()
        assert project_to(self.primal())(dx) is dx

    def test_sparse_with_other_pattern(self):
        dx = scipy.sparse.csr_matrix(np.array([[0.0, 1.0], [0.0, 4.0]]))
        out = project_to(self.primal())(dx)
        np.testing.assert_array_equal(out.toarray(), np.array([[0.0, 0.0], [0.0, 4.0]]))

    def test_sparse_array_kept(self):
        out = project_to(self.primal(scipy.sparse.csc_array))(np.ones((2, 2)))
        assert isinstance(out, scipy.sparse.sparray)
        assert out.format == "csc"

    def test_shape_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            project_to(self.primal())(scipy.sparse.csr_matrix(np.ones((3, 3))))

    def test_idempotent(self):
        project = project_to(self.primal())
        once = project(np.ones((2, 2)))
        assert (project(once) != once).nnz == 0


class TestStructures:
    """Tuples, dataclasses and namedtuples."""

    def test_tuple(self):
        out = project_to((1.0, np.zeros(2, dtype=np.float32)))((2, np.ones(2)))
        assert isinstance(out, Tangent)
        assert out[0] == 2.0
        assert out[1].dtype == np.float32

    def test_tuple_of_bools(self):
        assert project_to((True, False))((1.0, 1.0)) is NoTangent()

    def test_tuple_length_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            project_to((1.0, 2.0))((1.0,))

    def test_dataclass_from_tangent(self):
        out = project_to(Foo(1.0, 2.0))(Tangent(Foo, x=1 + 1j))
        assert out == Tangent(Foo, x=1.0)

    def test_dataclass_from_primal(self):
        out = project_to(Foo(1.0, 2.0))(Foo(3, 4))
        assert out == Tangent(Foo, x=3.0, y=4.0)

    def test_namedtuple(self):
        out = project_to(Point(1.0, True))(Point(2.0, 3.0))
        assert out == Tangent(Point, a=2.0, b=NoTangent())

    def test_struct_rejects_extra_fields(self):
        from tangentcore import FieldMismatchError
        with pytest.raises(FieldMismatchError):
            project_to(Foo(1.0, 2.0))(Tangent(Foo, z=1.0))

    def test_unknown_type_is_identity(self):
        assert isinstance(project_to(object()), IdentityProjector)


class TestRegistration:
    """Third-party projectors."""

    def test_register(self):
        class Grid:
            def __init__(self, values):
                self.values = np.asarray(values)

        class GridProjector(ProjectTo):
            def __init__(self, inner):
                self.inner = inner

            def project(self, dx):
                return Grid(self.inner(dx.values if isinstance(dx, Grid) else dx))

        @register_projector(Grid)
        def _(x):
            return GridProjector(ArrayProjector(x.values.dtype, x.values.shape))

        out = project_to(Grid(np.zeros(2, dtype=np.float32)))(np.ones(2))
        assert isinstance(out, Grid)
        assert out.values.dtype == np.float32

    def test_projector_must_implement_project(self):
        with pytest.raises(TypeError):
            ProjectTo()

        class Incomplete(ProjectTo):
            pass

        with pytest.raises(TypeError):
            Incomplete()
