"""Tests for extern, iszero and zero_tangent."""

import numpy as np
import pytest
import scipy.sparse
import torch

from tangentcore import (
    Diagonal,
    ExternalizationError,
    NoTangent,
    Tangent,
    Thunk,
    ZeroTangent,
    accumulate,
    extern,
    is_inplaceable_destination,
    iszero,
    zero_tangent,
)
from conftest import Foo, Point

class TestExtern:
    """Externalization of natural and nested values."""

    def test_natural_identity(self):
        a = np.ones(2)
        assert extern(a) is a
        assert extern(2.5) == 2.5
        t = torch.ones(2)
        assert extern(t) is t
        s = scipy.sparse.csr_matrix(np.eye(2))
        assert extern(s) is s

    def test_nested_thunks(self):
        t = Thunk(lambda: Thunk(lambda: Tangent(Foo, x=Thunk(lambda: 1.0))))
        assert extern(t) == {"x": 1.0}

    def test_containers(self):
        assert extern([Thunk(lambda: 1.0), (ZeroTangent(),)]) == [1.0, (False,)]

    def test_unknown_type_raises(self):
        with pytest.raises(ExternalizationError):
            extern(object())


class TestIsZero:
    """Zero detection."""

    def test_values(self):
        assert iszero(0.0)
        assert not iszero(1.0)
        assert iszero(np.zeros(3))
        assert iszero(torch.zeros(2))
        assert iszero(scipy.sparse.csr_matrix((2, 2)))
        assert iszero(Diagonal([0.0]))

    def test_structural(self):
        assert iszero(Tangent(Foo, x=ZeroTangent()))
        assert not iszero(Tangent(Foo, x=1.0))

    def test_thunk_not_forced(self):
        calls = []
        assert not iszero(Thunk(lambda: calls.append(1) or 0.0))
        assert calls == []


class TestZeroTangent:
    """Structural zeros built from primals."""

    def test_arrays(self):
        z = zero_tangent(np.ones(3, dtype=np.float32))
        assert z.dtype == np.float32 and not z.any()
        assert zero_tangent(np.array([True])) is NoTangent()
        assert zero_tangent(np.arange(2)).dtype == np.float64

    def test_scalars(self):
        assert zero_tangent(2.0) == 0.0
        assert zero_tangent(3) == 0.0
        assert zero_tangent(True) is NoTangent()

    def test_struct(self):
        z = zero_tangent(Foo(1.0, 2.0))
        assert z == Tangent(Foo, x=0.0, y=0.0)
        assert len(z) == 2

    def test_namedtuple_and_tuple(self):
        assert zero_tangent(Point(1.0, "label")) == Tangent(Point, a=0.0, b=NoTangent())
        assert zero_tangent((1.0, 2.0)) == Tangent(tuple, 0.0, 0.0)

    def test_dict(self):
        assert zero_tangent({"a": 1.0}) == Tangent(dict, {"a": 0.0})

    def test_tensor(self):
        assert torch.equal(zero_tangent(torch.ones(2)), torch.zeros(2))

    def test_struct_zero_is_not_mutated_by_accumulation(self, release_config):
        """Test accumulating into a structural zero returns a new tangent"""
        z = zero_tangent(Foo(1.0, 2.0))
        assert not is_inplaceable_destination(z)
        out = accumulate(z, Tangent(Foo, x=1.0), config=release_config)
        assert out == Tangent(Foo, x=1.0, y=0.0)
        assert z == Tangent(Foo, x=0.0, y=0.0)

    def test_array_zero_accumulates_in_place(self, release_config):
        z = zero_tangent(np.ones(3))
        assert accumulate(z, np.ones(3), config=release_config) is z
        np.testing.assert_array_equal(z, np.ones(3))
