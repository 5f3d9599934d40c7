"""
Weight Initialization Policies

An initializer fills a freshly created parameter array. Layers never draw
random numbers themselves; they ask their initializer, passing in the
network-wide NumPy Generator so a single seed reproduces every weight.

Any object with a ``generate(shape, rng)`` method can be used, so callers can
plug in their own scheme.

Classes:
    ZeroInitializer: All zeros
    ConstantInitializer: A single repeated value
    UniformInitializer: U(-scale, scale), scale defaults to 1/sqrt(fan_in)
    NormalInitializer: N(mean, stddev), stddev defaults to Xavier/Glorot

Note:
    Zero weights in hidden layers make every unit in a layer identical and
    give zero input gradients to all layers but the first. Use them only for
    biases or for tests.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Type, Union

import numpy as np

from neuralnet.errors import InvalidConfiguration


def _fans(shape: Sequence[int]):
    """Return (fan_in, fan_out) for a weight (in, out) or a bias (out,)."""
    if len(shape) >= 2:
        return shape[0], shape[1]
    return shape[0], shape[0]


class Initializer:
    """Base class for initialization policies."""

    name = "base"

    def generate(self, shape: Sequence[int], rng: np.random.Generator) -> np.ndarray:
        raise NotImplementedError


@dataclass(frozen=True)
class ZeroInitializer(Initializer):
    name = "zero"

    def generate(self, shape, rng):
        return np.zeros(tuple(shape), dtype=np.float64)


@dataclass(frozen=True)
class ConstantInitializer(Initializer):
    value: float = 0.0

    name = "constant"

    def generate(self, shape, rng):
        return np.full(tuple(shape), float(self.value), dtype=np.float64)


@dataclass(frozen=True)
class UniformInitializer(Initializer):
    """
    Uniform values in [-scale, scale).

    With no explicit scale the bound is 1/sqrt(fan_in), which keeps the
    pre-activation variance roughly independent of the layer width.
    """

    scale: Optional[float] = None

    name = "uniform"

    def __post_init__(self):
        if self.scale is not None and self.scale < 0:
            raise InvalidConfiguration(f"Uniform scale must be >= 0, got {self.scale}")

    def generate(self, shape, rng):
        fan_in, _ = _fans(shape)
        bound = self.scale if self.scale is not None else 1.0 / math.sqrt(fan_in)
        return rng.uniform(-bound, bound, size=tuple(shape)).astype(np.float64)


@dataclass(frozen=True)
class NormalInitializer(Initializer):
    """
    Normally distributed values.

    Weight Initialization:
        With no explicit stddev, Xavier/Glorot initialization is used:
        W ~ N(mean, sqrt(2 / (fan_in + fan_out)))
    """

    mean: float = 0.0
    stddev: Optional[float] = None

    name = "normal"

    def __post_init__(self):
        if self.stddev is not None and self.stddev < 0:
            raise InvalidConfiguration(f"Normal stddev must be >= 0, got {self.stddev}")

    def generate(self, shape, rng):
        fan_in, fan_out = _fans(shape)
        stddev = (
            self.stddev
            if self.stddev is not None
            else math.sqrt(2.0 / (fan_in + fan_out))
        )
        return rng.normal(self.mean, stddev, size=tuple(shape)).astype(np.float64)


INITIALIZERS: Dict[str, Type[Initializer]] = {
    "zero": ZeroInitializer,
    "zeros": ZeroInitializer,
    "constant": ConstantInitializer,
    "uniform": UniformInitializer,
    "normal": NormalInitializer,
}


def get_initializer(kind: Union[str, Initializer]) -> Initializer:
    """
    Resolve an initialization policy.

    Args:
        kind: A registry name (built with default parameters) or an object
              with a ``generate`` method, returned unchanged

    Raises:
        InvalidConfiguration: If the name is not registered
    """
    if hasattr(kind, "generate"):
        return kind
    if isinstance(kind, str) and kind.lower() in INITIALIZERS:
        return INITIALIZERS[kind.lower()]()
    available = ", ".join(sorted(INITIALIZERS))
    raise InvalidConfiguration(
        f"Unknown initializer {kind!r}. Available initializers: {available}"
    )
