"""
Dense Tensor Type

This module implements the Tensor, the numeric value every other part of the
engine is built on. A Tensor is a dense float64 array plus its shape. It wraps
a NumPy array whose buffer is marked read-only, so Tensors behave as values:
every operation returns a new Tensor and nothing can change one in place.

All binary operations check their operand shapes up front and raise
ShapeMismatch instead of relying on NumPy broadcasting. The only broadcast
the engine allows is bias addition, where an (n)-shaped vector is added to
every row of an (m, n) matrix.

Classes:
    Tensor: Immutable dense float64 array with shape-checked operations

Operations:
    Elementwise: add, subtract, multiply, scale, apply
    Linear algebra: matmul, transpose, affine, add_bias
    Reductions: sum, mean, column_sum
"""

import numbers
from typing import Callable, Iterable, Optional, Sequence, Tuple

import numpy as np

from neuralnet.errors import NonFiniteValue, ShapeMismatch

Shape = Tuple[int, ...]

DTYPE = np.float64


def _format_shape(shape: Sequence[int]) -> str:
    return "(" + ", ".join(str(dim) for dim in shape) + ")"


class Tensor:
    """
    Immutable dense float64 array with a fixed shape.

    Invariant: the element count equals the product of the shape's
    dimensions, and every dimension is positive.

    Example usage:
        x = Tensor([[1.0, 2.0], [3.0, 4.0]])
        w = Tensor([0.5, -0.5], shape=(2, 1))
        y = x @ w                 # shape (2, 1)
        z = y.add_bias(Tensor([1.0]))

    Attributes:
        shape: Tuple of dimension sizes
        size: Total number of elements
        ndim: Number of dimensions
    """

    __slots__ = ("_data",)

    def __init__(self, values, shape: Optional[Sequence[int]] = None):
        """
        Create a Tensor by copying values.

        Args:
            values: Nested sequence of numbers, a NumPy array or another Tensor
            shape: Optional shape to reshape the values into. The element
                   count must equal the product of its dimensions.

        Raises:
            ShapeMismatch: If the values are ragged, the shape does not match
                           the element count, or any dimension is not positive
        """
        if isinstance(values, Tensor):
            values = values._data

        try:
            data = np.array(values, dtype=DTYPE)
        except ValueError as exc:
            raise ShapeMismatch(f"Cannot build a tensor from ragged values: {exc}") from exc

        if shape is not None:
            target = tuple(int(dim) for dim in shape)
            if data.size != int(np.prod(target)):
                raise ShapeMismatch(
                    f"Cannot place {data.size} values into shape {_format_shape(target)}",
                    expected=target,
                    actual=data.shape,
                )
            data = data.reshape(target)

        _validate_shape(data.shape)
        data.flags.writeable = False
        self._data = data

    @classmethod
    def _wrap(cls, array: np.ndarray) -> "Tensor":
        """Adopt a freshly computed array without copying it."""
        tensor = cls.__new__(cls)
        array = np.asarray(array, dtype=DTYPE)
        _validate_shape(array.shape)
        array.flags.writeable = False
        tensor._data = array
        return tensor

    # ------------------------------------------------------------------
    # Constructors

    @classmethod
    def zeros(cls, shape: Sequence[int]) -> "Tensor":
        """Create a Tensor of the given shape filled with zeros."""
        return cls.full(shape, 0.0)

    @classmethod
    def full(cls, shape: Sequence[int], value: float) -> "Tensor":
        """Create a Tensor of the given shape filled with one value."""
        target = tuple(int(dim) for dim in shape)
        _validate_shape(target)
        return cls._wrap(np.full(target, value, dtype=DTYPE))

    @classmethod
    def from_numpy(cls, array: np.ndarray) -> "Tensor":
        """Create a Tensor from a NumPy array (the array is copied)."""
        return cls(np.asarray(array))

    @classmethod
    def stack(cls, tensors: Iterable["Tensor"]) -> "Tensor":
        """
        Stack equal-shaped tensors along a new leading axis.

        Args:
            tensors: Tensors that all share one shape

        Returns:
            Tensor of shape (len(tensors), *shape)

        Raises:
            ShapeMismatch: If the shapes differ or no tensors are given
        """
        tensors = list(tensors)
        if not tensors:
            raise ShapeMismatch("Cannot stack an empty sequence of tensors")

        first_shape = tensors[0].shape
        for tensor in tensors[1:]:
            if tensor.shape != first_shape:
                raise ShapeMismatch(
                    f"Cannot stack tensors of shape {_format_shape(tensor.shape)} "
                    f"with tensors of shape {_format_shape(first_shape)}",
                    expected=first_shape,
                    actual=tensor.shape,
                )

        return cls._wrap(np.stack([tensor._data for tensor in tensors]))

    # ------------------------------------------------------------------
    # Metadata and conversion

    @property
    def shape(self) -> Shape:
        return self._data.shape

    @property
    def size(self) -> int:
        return int(self._data.size)

    @property
    def ndim(self) -> int:
        return self._data.ndim

    @property
    def T(self) -> "Tensor":
        return self.transpose()

    def to_numpy(self) -> np.ndarray:
        """Return a writable copy of the underlying values."""
        return self._data.copy()

    def tolist(self) -> list:
        return self._data.tolist()

    def __array__(self, dtype=None, copy=None):
        array = self._data if dtype is None else self._data.astype(dtype)
        return array.copy() if copy else array

    def __len__(self) -> int:
        return self._data.shape[0]

    def __repr__(self) -> str:
        return f"Tensor({self._data.tolist()!r}, shape={self.shape})"

    # ------------------------------------------------------------------
    # Elementwise operations

    def _require_same_shape(self, other: "Tensor", operation: str) -> None:
        if not isinstance(other, Tensor):
            raise TypeError(f"{operation} expects a Tensor, got {type(other).__name__}")
        if self.shape != other.shape:
            raise ShapeMismatch(
                f"{operation}: shapes {_format_shape(self.shape)} and "
                f"{_format_shape(other.shape)} differ",
                expected=self.shape,
                actual=other.shape,
            )

    def add(self, other: "Tensor") -> "Tensor":
        """Elementwise sum of two equal-shaped tensors."""
        self._require_same_shape(other, "add")
        return Tensor._wrap(self._data + other._data)

    def subtract(self, other: "Tensor") -> "Tensor":
        """Elementwise difference of two equal-shaped tensors."""
        self._require_same_shape(other, "subtract")
        return Tensor._wrap(self._data - other._data)

    def multiply(self, other: "Tensor") -> "Tensor":
        """Elementwise (Hadamard) product of two equal-shaped tensors."""
        self._require_same_shape(other, "multiply")
        return Tensor._wrap(self._data * other._data)

    def scale(self, factor: float) -> "Tensor":
        """Multiply every element by a scalar."""
        return Tensor._wrap(self._data * float(factor))

    def apply(self, function: Callable[[np.ndarray], np.ndarray]) -> "Tensor":
        """
        Apply a vectorised elementwise function.

        Args:
            function: Maps a float64 array to an array of the same shape

        Returns:
            New Tensor holding the function's output

        Raises:
            ShapeMismatch: If the function changed the shape
        """
        result = np.asarray(function(self._data), dtype=DTYPE)
        if result.shape != self.shape:
            raise ShapeMismatch(
                "Elementwise function changed the tensor shape",
                expected=self.shape,
                actual=result.shape,
            )
        return Tensor._wrap(result.copy() if result is self._data else result)

    def __add__(self, other):
        if isinstance(other, Tensor):
            return self.add(other)
        return NotImplemented

    def __sub__(self, other):
        if isinstance(other, Tensor):
            return self.subtract(other)
        return NotImplemented

    def __mul__(self, other):
        if isinstance(other, Tensor):
            return self.multiply(other)
        if isinstance(other, numbers.Real):
            return self.scale(other)
        return NotImplemented

    def __rmul__(self, other):
        if isinstance(other, numbers.Real):
            return self.scale(other)
        return NotImplemented

    def __neg__(self) -> "Tensor":
        return Tensor._wrap(-self._data)

    # ------------------------------------------------------------------
    # Linear algebra

    def matmul(self, other: "Tensor") -> "Tensor":
        """
        Matrix product.

        Shapes:
            (m, k) @ (k, n) -> (m, n)
            (k,)   @ (k, n) -> (n,)    1-D left operand acts as a row vector

        Raises:
            ShapeMismatch: If the inner dimensions differ or an operand has
                           an unsupported number of dimensions
        """
        if not isinstance(other, Tensor):
            raise TypeError(f"matmul expects a Tensor, got {type(other).__name__}")
        if self.ndim not in (1, 2) or other.ndim != 2:
            raise ShapeMismatch(
                f"matmul supports (m, k) or (k,) times (k, n), got "
                f"{_format_shape(self.shape)} and {_format_shape(other.shape)}",
                expected=None,
                actual=other.shape,
            )

        inner = self.shape[-1]
        if inner != other.shape[0]:
            raise ShapeMismatch(
                f"matmul: inner dimensions differ ({_format_shape(self.shape)} "
                f"@ {_format_shape(other.shape)})",
                expected=(inner, other.shape[1]),
                actual=other.shape,
            )

        return Tensor._wrap(self._data @ other._data)

    def __matmul__(self, other):
        if isinstance(other, Tensor):
            return self.matmul(other)
        return NotImplemented

    def transpose(self) -> "Tensor":
        """Swap the axes of a 2-D tensor. 1-D tensors are returned as-is."""
        if self.ndim == 1:
            return self
        if self.ndim != 2:
            raise ShapeMismatch(
                f"transpose supports 1-D and 2-D tensors, got {_format_shape(self.shape)}",
                actual=self.shape,
            )
        return Tensor._wrap(np.ascontiguousarray(self._data.T))

    def add_bias(self, bias: "Tensor") -> "Tensor":
        """
        Add an (n)-shaped bias to every row of an (m, n) tensor.

        A 1-D (n) tensor is treated as a single row.

        Raises:
            ShapeMismatch: If the bias is not 1-D or its length differs from
                           the last dimension
        """
        if not isinstance(bias, Tensor):
            raise TypeError(f"add_bias expects a Tensor, got {type(bias).__name__}")
        width = self.shape[-1]
        if bias.ndim != 1 or bias.shape[0] != width or self.ndim > 2:
            raise ShapeMismatch(
                f"Cannot add bias of shape {_format_shape(bias.shape)} to rows of "
                f"shape {_format_shape(self.shape)}",
                expected=(width,),
                actual=bias.shape,
            )
        return Tensor._wrap(self._data + bias._data)

    def affine(self, weight: "Tensor", bias: "Tensor") -> "Tensor":
        """
        Compute self @ weight + bias.

        This is the general matrix-vector product (mat * x + y) applied to a
        batch of row vectors.
        """
        return self.matmul(weight).add_bias(bias)

    # ------------------------------------------------------------------
    # Reductions and reshaping

    def sum(self) -> float:
        """Sum of all elements."""
        return float(np.sum(self._data))

    def mean(self) -> float:
        """Mean of all elements."""
        return float(np.mean(self._data))

    def column_sum(self) -> "Tensor":
        """
        Sum over rows, (m, n) -> (n).

        A 1-D tensor is a single row, so its column sum is itself.
        """
        if self.ndim == 1:
            return self
        if self.ndim != 2:
            raise ShapeMismatch(
                f"column_sum supports 1-D and 2-D tensors, got {_format_shape(self.shape)}",
                actual=self.shape,
            )
        return Tensor._wrap(np.sum(self._data, axis=0))

    def reshape(self, shape: Sequence[int]) -> "Tensor":
        """Return the same values laid out in a new shape."""
        return Tensor(self._data, shape=shape)

    def rows(self, indices: Sequence[int]) -> "Tensor":
        """
        Gather rows of a 2-D tensor.

        Args:
            indices: Row indices, in the order the rows should appear

        Returns:
            Tensor of shape (len(indices), n)
        """
        if self.ndim != 2:
            raise ShapeMismatch(
                f"rows() needs a 2-D tensor, got {_format_shape(self.shape)}",
                actual=self.shape,
            )
        index_array = np.asarray(list(indices), dtype=np.intp)
        return Tensor._wrap(self._data[index_array])

    # ------------------------------------------------------------------
    # Checks and comparison

    def is_finite(self) -> bool:
        """True if no element is NaN or infinite."""
        return bool(np.all(np.isfinite(self._data)))

    def check_finite(self, where: str = "tensor") -> "Tensor":
        """
        Return self, or raise if any element is NaN or infinite.

        Args:
            where: Label used in the error message

        Raises:
            NonFiniteValue: If a non-finite element is present
        """
        if not self.is_finite():
            raise NonFiniteValue(f"{where} contains NaN or Infinity", where=where)
        return self

    def allclose(self, other: "Tensor", rtol: float = 1e-5, atol: float = 1e-8) -> bool:
        """Shape-equal and numerically close within tolerances."""
        return self.shape == other.shape and bool(
            np.allclose(self._data, other._data, rtol=rtol, atol=atol)
        )

    def __eq__(self, other) -> bool:
        # Exact comparison: same shape and same bits
        if not isinstance(other, Tensor):
            return NotImplemented
        return self.shape == other.shape and self._data.tobytes() == other._data.tobytes()

    __hash__ = None


def _validate_shape(shape: Sequence[int]) -> None:
    if len(shape) == 0:
        raise ShapeMismatch("A tensor needs at least one dimension", actual=tuple(shape))
    if any(dim <= 0 for dim in shape):
        raise ShapeMismatch(
            f"Tensor dimensions must be positive, got {_format_shape(shape)}",
            actual=tuple(shape),
        )


def as_tensor(values) -> Tensor:
    """Return values unchanged if already a Tensor, else wrap them."""
    if isinstance(values, Tensor):
        return values
    return Tensor(values)
