"""Tests for the central tangent arithmetic."""

import numpy as np
import pytest
import scipy.sparse
import torch

from tangentcore import (
    AmbiguousDispatchError,
    Diagonal,
    InplaceableThunk,
    NoTangent,
    StructuralTypeMismatchError,
    Tangent,
    TangentKind,
    TangentUsageError,
    Thunk,
    ZeroTangent,
    add,
    adjoint,
    conj,
    divide,
    dot,
    find_ambiguities,
    find_missing,
    kind_of,
    multiply,
    muladd,
    not_implemented,
    transpose,
)
from tangentcore.arithmetic import KindDispatcher
from conftest import Foo


def structural_samples():
    return [
        Tangent(Foo, x=1.0),
        Tangent(Foo, y=2.0),
        Tangent(Foo, x=0.5, y=-1.0),
    ]


class TestDispatchTables:
    """Every kind pair has exactly one handler."""

    @pytest.mark.parametrize("op", ["+", "*", "dot"])
    def test_no_ambiguities(self, op):
        assert find_ambiguities(op) == []

    @pytest.mark.parametrize("op", [add, multiply, dot])
    def test_total(self, op):
        assert find_missing(op) == []

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            find_ambiguities("-")

    def test_overlap_rejected(self):
        """Test declaring two handlers for one pair raises"""
        d = KindDispatcher("test")
        d.register({TangentKind.ZERO}, {TangentKind.NATURAL, TangentKind.THUNK})(lambda a, b: a)
        with pytest.raises(AmbiguousDispatchError):
            d.register({TangentKind.ZERO}, {TangentKind.THUNK})(lambda a, b: b)

    def test_overlap_reported_when_not_strict(self):
        d = KindDispatcher("test", strict=False)
        d.register({TangentKind.ZERO}, {TangentKind.NATURAL})(lambda a, b: a)
        d.register({TangentKind.ZERO}, {TangentKind.NATURAL})(lambda a, b: b)
        found = find_ambiguities(d)
        assert [(a, b) for a, b, _ in found] == [(TangentKind.ZERO, TangentKind.NATURAL)]
        assert len(find_missing(d)) == 35

    def test_kind_of(self):
        assert kind_of(not_implemented()) is TangentKind.NOT_IMPLEMENTED
        assert kind_of(NoTangent()) is TangentKind.NO_TANGENT
        assert kind_of(ZeroTangent()) is TangentKind.ZERO
        assert kind_of(Thunk(lambda: 1.0)) is TangentKind.THUNK
        assert kind_of(InplaceableThunk(lambda x: x, lambda: 1.0)) is TangentKind.THUNK
        assert kind_of(Tangent(Foo, x=1.0)) is TangentKind.STRUCTURAL
        assert kind_of(np.ones(2)) is TangentKind.NATURAL


class TestVectorSpaceLaws:
    """Addition is commutative and associative; 0 and 1 behave."""

    @pytest.mark.parametrize("a", structural_samples())
    @pytest.mark.parametrize("b", structural_samples())
    def test_commutative(self, a, b):
        assert a + b == b + a

    def test_associative(self):
        a, b, c = structural_samples()
        assert (a + b) + c == a + (b + c)

    def test_associative_arrays(self, random_seed):
        a, b, c = (np.random.randn(4) for _ in range(3))
        np.testing.assert_allclose(add(add(a, b), c), add(a, add(b, c)))

    @pytest.mark.parametrize("a", structural_samples() + [2.5, Thunk(lambda: 2.5)])
    def test_identities(self, a):
        """Test a + 0 == a, a * 1 == a and a * 0 is zero"""
        assert a + ZeroTangent() == a
        assert a * 1 == a
        assert a * ZeroTangent() is ZeroTangent()

    def test_mixed_thunk_structural(self):
        a, b, _ = structural_samples()
        assert Thunk(lambda: a) + b == a + b
        assert a + Thunk(lambda: b) == a + b


class TestDot:
    """Inner products."""

    def test_scalars(self):
        assert dot(2.0, 3.0) == 6.0

    def test_complex_conjugates_left(self):
        assert dot(1j, 1j) == 1

    def test_arrays(self):
        a = np.array([1 + 1j, 2.0])
        b = np.array([1.0, 1j])
        assert dot(a, b) == np.vdot(a, b)

    def test_tensors(self):
        a = torch.tensor([1.0, 2.0])
        b = torch.tensor([3.0, 4.0])
        assert dot(a, b).item() == 11.0

    def test_sparse(self):
        a = scipy.sparse.csr_matrix(np.eye(2))
        assert dot(a, np.array([[2.0, 5.0], [5.0, 3.0]])) == 5.0

    def test_structured_matrix(self):
        assert dot(Diagonal([1.0, 2.0]), np.ones((2, 2))) == 3.0

    def test_structural_shared_fields(self):
        """Test only fields stored on both sides contribute"""
        a = Tangent(Foo, x=2.0, y=3.0)
        b = Tangent(Foo, y=4.0)
        assert dot(a, b) == 12.0

    def test_structural_disjoint_fields_is_zero(self):
        assert dot(Tangent(Foo, x=1.0), Tangent(Foo, y=1.0)) is ZeroTangent()

    def test_structural_tuple(self):
        assert dot(Tangent(tuple, 1.0, 2.0), Tangent(tuple, 3.0, 4.0)) == 11.0

    def test_structural_mismatch(self):
        from conftest import Bar
        with pytest.raises(StructuralTypeMismatchError):
            dot(Tangent(Foo, x=1.0), Tangent(Bar, x=1.0))

    def test_structural_with_natural_raises(self):
        with pytest.raises(TangentUsageError):
            dot(Tangent(Foo, x=1.0), 1.0)

    def test_thunks_and_zeros(self):
        assert dot(Thunk(lambda: 2.0), 3.0) == 6.0
        assert dot(ZeroTangent(), 3.0) is ZeroTangent()
        assert dot(NoTangent(), NoTangent()) is NoTangent()


class TestOtherOperations:
    """muladd, divide, conj, transpose, adjoint."""

    def test_muladd(self):
        assert muladd(2.0, 3.0, 1.0) == 7.0
        assert muladd(ZeroTangent(), 3.0, 1.0) == 1.0

    def test_muladd_does_not_force(self):
        calls = []
        t = Thunk(lambda: calls.append(1) or 1.0)
        assert muladd(t, ZeroTangent(), 1.0) == 1.0
        assert calls == []

    def test_divide_by_zero_tangent(self):
        with pytest.raises(TangentUsageError):
            divide(1.0, ZeroTangent())

    def test_divide_by_structural(self):
        with pytest.raises(TangentUsageError):
            divide(1.0, Tangent(Foo, x=1.0))

    def test_conj(self):
        assert conj(1 + 2j) == 1 - 2j
        assert conj(2.0) == 2.0
        a = np.array([1.0, 2.0])
        assert conj(a) is a
        np.testing.assert_array_equal(conj(np.array([1j])), np.array([-1j]))
        assert torch.equal(conj(torch.tensor([1j])).resolve_conj(), torch.tensor([-1j]))

    def test_transpose_and_adjoint(self):
        m = np.array([[1.0, 1j], [2.0, 3.0]])
        np.testing.assert_array_equal(transpose(m), m.T)
        np.testing.assert_array_equal(adjoint(m), m.conj().T)
        v = np.array([1.0, 2.0])
        assert transpose(v) is v
        t = torch.randn(2, 3)
        assert adjoint(t).shape == (3, 2)
        assert transpose(ZeroTangent()) is ZeroTangent()
