"""Pytest configuration and fixtures."""

from collections import namedtuple
from dataclasses import dataclass

import numpy as np
import pytest
import torch

from tangentcore import TangentConfig, set_config


@dataclass
class Foo:
    """Simple two-field primal used across the tests."""
    x: float
    y: float


@dataclass
class Bar:
    x: float
    y: float


Point = namedtuple("Point", ["a", "b"])


class Slotted:
    __slots__ = ("u", "v")

    def __init__(self, u, v):
        self.u = u
        self.v = v

    def __eq__(self, other):
        return isinstance(other, Slotted) and (self.u, self.v) == (other.u, other.v)


@pytest.fixture
def foo():
    """Fixture for a Foo primal."""
    return Foo(3.5, 1.5)


@pytest.fixture
def debug_config():
    """Explicit config with debug checks on."""
    return TangentConfig(debug_mode=True)


@pytest.fixture
def release_config():
    """Explicit config with debug checks off."""
    return TangentConfig(debug_mode=False)


@pytest.fixture
def debug_mode_on():
    """Turn process-wide debug mode on for one test."""
    previous = set_config(TangentConfig(debug_mode=True))
    yield
    set_config(previous)


@pytest.fixture(autouse=True)
def restore_config():
    """Undo any process-wide config change a test makes."""
    previous = set_config(TangentConfig(debug_mode=False))
    yield
    set_config(previous)


@pytest.fixture
def random_seed():
    """Set random seed for reproducibility."""
    np.random.seed(42)
    torch.manual_seed(42)
    return 42
