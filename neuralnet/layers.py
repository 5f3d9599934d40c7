"""
Dense Layers

This module implements the fully connected layer a feed-forward network is
built from, with forward and backward passes for gradient computation.

A layer keeps no per-pass state. forward() returns the values backward()
needs as a LayerCache, and the caller hands that cache back exactly once.
The layer itself is a pure parameter container. Only set_parameters()
changes it, and the optimizer is the only caller.

Classes:
    LayerSpec: Validated construction record (sizes, activation, initializers)
    LayerCache: Values retained from one forward pass for the backward pass
    LayerGradient: Result of one backward pass through a layer
    Dense: Affine transform followed by an activation, y = f(x @ W + b)
"""

from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple, Union

import numpy as np

from neuralnet.activations import Activation, get_activation
from neuralnet.errors import InvalidConfiguration, ShapeMismatch
from neuralnet.initializers import Initializer, get_initializer
from neuralnet.tensor import Tensor, as_tensor

ActivationKind = Union[str, Activation]
InitializerKind = Union[str, Initializer]


def _check_size(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value <= 0:
        raise InvalidConfiguration(f"{name} must be a positive integer, got {value!r}")
    return int(value)


@dataclass(frozen=True)
class LayerSpec:
    """
    Everything needed to construct a Dense layer.

    Attributes:
        input_size: Number of input features (fan_in)
        output_size: Number of output units (fan_out)
        activation: Activation name or instance
        weight_init: Initializer name or instance for the weight matrix
        bias_init: Initializer name or instance for the bias vector
    """

    input_size: int
    output_size: int
    activation: ActivationKind = "sigmoid"
    weight_init: InitializerKind = "uniform"
    bias_init: InitializerKind = "zero"

    def __post_init__(self):
        _check_size("input_size", self.input_size)
        _check_size("output_size", self.output_size)
        # Resolve eagerly so unknown kinds fail at construction time
        get_activation(self.activation)
        get_initializer(self.weight_init)
        get_initializer(self.bias_init)


@dataclass(frozen=True)
class LayerCache:
    """
    Values from one forward pass that the backward pass needs.

    Attributes:
        inputs: x, the layer input
        pre_activation: z = x @ W + b
        output: f(z)
    """

    inputs: Tensor
    pre_activation: Tensor
    output: Tensor


class LayerGradient(NamedTuple):
    """Gradients produced by Dense.backward. Unpacks as a 3-tuple."""

    input_gradient: Tensor
    weight_gradient: Tensor
    bias_gradient: Tensor


class Dense:
    """
    Fully Connected Layer.

    Computes: y = activation(x @ W + b)

    Attributes:
        input_size: Size of the input dimension
        output_size: Size of the output dimension
        activation: Shared, stateless Activation
        weight: Weight matrix of shape (input_size, output_size)
        bias: Bias vector of shape (output_size,)
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        activation: ActivationKind = "sigmoid",
        weight_init: InitializerKind = "uniform",
        bias_init: InitializerKind = "zero",
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize a Dense layer.

        Args:
            input_size: Size of input dimension (fan_in)
            output_size: Size of output dimension (fan_out)
            activation: Activation name or instance
            weight_init: Initialization policy for the weights
            bias_init: Initialization policy for the bias
            rng: Random generator shared with the rest of the network.
                 A fresh unseeded generator is used if None.

        Raises:
            InvalidConfiguration: For non-positive sizes or unknown kinds
            ShapeMismatch: If an initializer returns the wrong shape
        """
        self.input_size = _check_size("input_size", input_size)
        self.output_size = _check_size("output_size", output_size)
        self.activation = get_activation(activation)
        self.weight_init = get_initializer(weight_init)
        self.bias_init = get_initializer(bias_init)

        if rng is None:
            rng = np.random.default_rng()

        weight = self._initial_parameter(self.weight_init, (input_size, output_size), rng)
        bias = self._initial_parameter(self.bias_init, (output_size,), rng)
        self._weight = weight
        self._bias = bias

    @classmethod
    def from_spec(
        cls, spec: LayerSpec, rng: Optional[np.random.Generator] = None
    ) -> "Dense":
        """Build a layer from a LayerSpec."""
        return cls(
            spec.input_size,
            spec.output_size,
            activation=spec.activation,
            weight_init=spec.weight_init,
            bias_init=spec.bias_init,
            rng=rng,
        )

    @staticmethod
    def _initial_parameter(initializer, shape: Tuple[int, ...], rng) -> Tensor:
        values = Tensor(initializer.generate(shape, rng))
        if values.shape != shape:
            raise ShapeMismatch(
                f"Initializer {initializer!r} returned shape {values.shape}, expected {shape}",
                expected=shape,
                actual=values.shape,
            )
        return values

    # ------------------------------------------------------------------
    # Parameters

    @property
    def weight(self) -> Tensor:
        return self._weight

    @property
    def bias(self) -> Tensor:
        return self._bias

    def set_parameters(self, weight: Tensor, bias: Tensor) -> None:
        """
        Replace the layer's weight and bias.

        Raises:
            ShapeMismatch: If either shape differs from the declared sizes
        """
        weight = as_tensor(weight)
        bias = as_tensor(bias)
        if weight.shape != self._weight.shape:
            raise ShapeMismatch(
                f"Weight must have shape {self._weight.shape}, got {weight.shape}",
                expected=self._weight.shape,
                actual=weight.shape,
            )
        if bias.shape != self._bias.shape:
            raise ShapeMismatch(
                f"Bias must have shape {self._bias.shape}, got {bias.shape}",
                expected=self._bias.shape,
                actual=bias.shape,
            )
        self._weight = weight
        self._bias = bias

    def parameter_count(self) -> int:
        return self._weight.size + self._bias.size

    def spec(self) -> LayerSpec:
        """Describe this layer as a LayerSpec."""
        return LayerSpec(
            self.input_size,
            self.output_size,
            activation=self.activation,
            weight_init=self.weight_init,
            bias_init=self.bias_init,
        )

    # ------------------------------------------------------------------
    # Forward and backward

    def forward(self, inputs) -> Tuple[Tensor, LayerCache]:
        """
        Forward pass: y = f(x @ W + b)

        Args:
            inputs: Tensor of shape (batch, input_size), or (input_size,)
                    for a single sample

        Returns:
            (output, cache): output has shape (batch, output_size) or
            (output_size,). The cache must be passed to backward() once.

        Raises:
            ShapeMismatch: If the trailing dimension is not input_size
        """
        inputs = as_tensor(inputs)
        if inputs.ndim > 2 or inputs.shape[-1] != self.input_size:
            raise ShapeMismatch(
                f"Layer expects inputs of width {self.input_size}, got shape {inputs.shape}",
                expected=(self.input_size,),
                actual=inputs.shape,
            )

        # Affine transform: (batch, in) @ (in, out) + (out,) -> (batch, out)
        pre_activation = inputs.affine(self._weight, self._bias)
        output = self.activation.forward(pre_activation)

        return output, LayerCache(inputs, pre_activation, output)

    def backward(self, output_gradient, cache: LayerCache) -> LayerGradient:
        """
        Backward pass: compute gradients for weights, bias, and input.

        Args:
            output_gradient: d_loss/d_y, same shape as the cached output
            cache: The LayerCache returned by the matching forward() call

        Returns:
            LayerGradient(input_gradient, weight_gradient, bias_gradient)

        Raises:
            ShapeMismatch: If output_gradient does not match the output shape

        Mathematical Derivation:
            Forward: z = x @ W + b,  y = f(z)

            delta     = d_loss/d_y * f'(z)
            d_loss/dW = x^T @ delta      (summed over batch)
            d_loss/db = sum(delta)       (summed over batch)
            d_loss/dx = delta @ W^T
        """
        output_gradient = as_tensor(output_gradient)
        if output_gradient.shape != cache.output.shape:
            raise ShapeMismatch(
                f"Output gradient shape {output_gradient.shape} does not match "
                f"layer output shape {cache.output.shape}",
                expected=cache.output.shape,
                actual=output_gradient.shape,
            )

        delta = self.activation.backward(
            output_gradient, cache.pre_activation, cache.output
        )
        return self.backward_delta(delta, cache)

    def backward_delta(self, delta, cache: LayerCache) -> LayerGradient:
        """
        Backward pass from d_loss/dz, skipping the activation derivative.

        Used for the output layer when the loss supplies the combined
        derivative through the activation (see Loss.output_delta).

        Raises:
            ShapeMismatch: If delta does not match the pre-activation shape
        """
        delta = as_tensor(delta)
        if delta.shape != cache.pre_activation.shape:
            raise ShapeMismatch(
                f"Delta shape {delta.shape} does not match pre-activation shape "
                f"{cache.pre_activation.shape}",
                expected=cache.pre_activation.shape,
                actual=delta.shape,
            )

        if delta.ndim == 1:
            # Single sample: treat x and delta as one-row matrices
            inputs_2d = cache.inputs.reshape((1, self.input_size))
            delta_2d = delta.reshape((1, self.output_size))
        else:
            inputs_2d = cache.inputs
            delta_2d = delta

        # (in, batch) @ (batch, out) -> (in, out)
        weight_gradient = inputs_2d.T @ delta_2d
        bias_gradient = delta_2d.column_sum()
        # (batch, out) @ (out, in) -> (batch, in)
        input_gradient = delta @ self._weight.T

        return LayerGradient(input_gradient, weight_gradient, bias_gradient)

    def __repr__(self) -> str:
        return (
            f"Dense(input_size={self.input_size}, output_size={self.output_size}, "
            f"activation={self.activation.name!r})"
        )
