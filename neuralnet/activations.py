"""
Activation Functions for Feed-Forward Networks

This module implements the activation functions a Dense layer can apply after
its affine transform, each paired with its derivative so the layer can run
the chain rule during the backward pass.

Activations are stateless. Every built-in exists exactly once in the
ACTIVATIONS registry and is shared by reference across all layers that use it.

Built-ins:
    identity: f(x) = x,                  f'(x) = 1
    sigmoid:  f(x) = 1 / (1 + e^-x),     f'(x) = f(x) * (1 - f(x))
    tanh:     f(x) = tanh(x),            f'(x) = 1 - f(x)^2
    relu:     f(x) = max(0, x),          f'(x) = 1 if x > 0 else 0
    softmax:  row-wise normalisation to a probability distribution

Functions:
    get_activation: Resolve an activation by name
"""

from dataclasses import dataclass
from typing import Callable, Dict, Union

import numpy as np

from neuralnet.errors import InvalidConfiguration
from neuralnet.tensor import Tensor

ArrayFunction = Callable[[np.ndarray], np.ndarray]
DerivativeFunction = Callable[[np.ndarray, np.ndarray], np.ndarray]


@dataclass(frozen=True)
class Activation:
    """
    A pointwise nonlinearity and its derivative.

    Attributes:
        name: Registry name, also written by the persistence format
        function: Vectorised f(x)
        derivative: Vectorised f'(x). It receives both x and the already
                    computed f(x), so sigmoid and tanh can reuse the output.
    """

    name: str
    function: ArrayFunction
    derivative: DerivativeFunction

    def forward(self, pre_activation: Tensor) -> Tensor:
        """Apply f elementwise."""
        return pre_activation.apply(self.function)

    def backward(
        self, output_gradient: Tensor, pre_activation: Tensor, output: Tensor
    ) -> Tensor:
        """
        Gradient with respect to the pre-activation.

        Chain rule for an elementwise activation:
            d_loss/d_z = d_loss/d_f * f'(z)

        Args:
            output_gradient: d_loss/d_f, same shape as output
            pre_activation: z, the value f was applied to
            output: f(z) from the forward pass

        Returns:
            d_loss/d_z, same shape as pre_activation
        """
        local_gradient = Tensor._wrap(
            self.derivative(np.asarray(pre_activation), np.asarray(output))
        )
        return output_gradient.multiply(local_gradient)

    def __repr__(self) -> str:
        return f"Activation({self.name!r})"


def identity(x: np.ndarray) -> np.ndarray:
    return x.copy()


def identity_derivative(x: np.ndarray, fx: np.ndarray) -> np.ndarray:
    return np.ones_like(x)


def sigmoid(x: np.ndarray) -> np.ndarray:
    """
    Logistic sigmoid, 1 / (1 + e^-x).

    Numerical Stability:
        The direct formula overflows e^-x for large negative x. The identity
        sigmoid(x) = 0.5 * (1 + tanh(x / 2)) gives the same values and never
        overflows.
    """
    return 0.5 * (1.0 + np.tanh(0.5 * x))


def sigmoid_derivative(x: np.ndarray, fx: np.ndarray) -> np.ndarray:
    return fx * (1.0 - fx)


def tanh(x: np.ndarray) -> np.ndarray:
    return np.tanh(x)


def tanh_derivative(x: np.ndarray, fx: np.ndarray) -> np.ndarray:
    return 1.0 - np.square(fx)


def relu(x: np.ndarray) -> np.ndarray:
    """
    Compute ReLU (Rectified Linear Unit) activation.

    Example:
        >>> relu(np.array([-2.0, 0.0, 2.0]))
        array([0., 0., 2.])
    """
    return np.maximum(0.0, x)


def relu_derivative(x: np.ndarray, fx: np.ndarray) -> np.ndarray:
    # 0 is used as the subgradient at x == 0
    return (x > 0).astype(np.float64)


def softmax(logits: np.ndarray) -> np.ndarray:
    """
    Row-wise softmax.

    Numerical Stability:
        We subtract the row maximum before exponentiation so exp() never
        overflows. This does not change the result because
        exp(x_i - max) / sum(exp(x_j - max)) = exp(x_i) / sum(exp(x_j))
    """
    stable_logits = logits - np.max(logits, axis=-1, keepdims=True)
    exponentials = np.exp(stable_logits)
    return exponentials / np.sum(exponentials, axis=-1, keepdims=True)


def softmax_derivative(x: np.ndarray, fx: np.ndarray) -> np.ndarray:
    # Diagonal of the Jacobian only; backward() uses the full product
    return fx * (1.0 - fx)


class SoftmaxActivation(Activation):
    """
    Softmax over the last axis.

    Softmax is not elementwise: every output depends on every input in the
    row, so the backward pass needs the Jacobian-vector product instead of
    an elementwise derivative.

    Mathematical Derivation:
        Let s = softmax(z) and g = d_loss/d_s.
        d_loss/d_z_i = sum_j (g_j * s_j * (delta_ij - s_i))
                     = s_i * (g_i - sum_j(g_j * s_j))
    """

    def backward(
        self, output_gradient: Tensor, pre_activation: Tensor, output: Tensor
    ) -> Tensor:
        upstream = np.asarray(output_gradient)
        probabilities = np.asarray(output)
        weighted_sum = np.sum(upstream * probabilities, axis=-1, keepdims=True)
        return Tensor._wrap(probabilities * (upstream - weighted_sum))


IDENTITY = Activation("identity", identity, identity_derivative)
SIGMOID = Activation("sigmoid", sigmoid, sigmoid_derivative)
TANH = Activation("tanh", tanh, tanh_derivative)
RELU = Activation("relu", relu, relu_derivative)
SOFTMAX = SoftmaxActivation("softmax", softmax, softmax_derivative)

ACTIVATIONS: Dict[str, Activation] = {
    activation.name: activation
    for activation in (IDENTITY, SIGMOID, TANH, RELU, SOFTMAX)
}


def get_activation(kind: Union[str, Activation]) -> Activation:
    """
    Resolve an activation by name.

    Args:
        kind: Registry name (case-insensitive) or an Activation instance,
              which is returned unchanged

    Returns:
        The shared Activation instance

    Raises:
        InvalidConfiguration: If the name is not registered
    """
    if isinstance(kind, Activation):
        return kind
    if isinstance(kind, str) and kind.lower() in ACTIVATIONS:
        return ACTIVATIONS[kind.lower()]
    available = ", ".join(sorted(ACTIVATIONS))
    raise InvalidConfiguration(
        f"Unknown activation {kind!r}. Available activations: {available}"
    )
