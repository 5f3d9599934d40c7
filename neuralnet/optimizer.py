"""
Optimizers for Training Feed-Forward Networks

This module implements stochastic gradient descent with optional momentum,
plus gradient-norm clipping.

The optimizer is the only component that changes a layer's parameters. It
owns the momentum state (one velocity per layer parameter, keyed by layer
position), and layers stay plain parameter containers.

Classes:
    SGD: Gradient descent with optional momentum

Functions:
    clip_gradient_norm: Clip a gradient bundle to a maximum global norm
"""

import weakref
from typing import Dict, Optional, Tuple

from neuralnet.errors import InvalidConfiguration, ShapeMismatch
from neuralnet.network import GradientBundle, Network, ParameterGradient
from neuralnet.tensor import Tensor


class SGD:
    """
    Stochastic Gradient Descent with optional momentum.

    Algorithm (plain, momentum == 0):
        W = W - lr * dW
        b = b - lr * db

    Algorithm (momentum > 0):
        v_W = momentum * v_W + lr * dW
        W   = W - v_W
        (and the same for b)

    Velocities start at zero. They belong to the network the optimizer was
    last applied to and are reset when it is applied to a different network
    or the layer count changes.

    Attributes:
        learning_rate: Step size for updates
        momentum: Velocity decay coefficient in [0, 1)
        velocity: Per-layer (weight, bias) velocities, keyed by layer position
        step_count: Number of updates applied since the last reset
    """

    def __init__(self, learning_rate: float = 0.1, momentum: float = 0.0):
        """
        Initialize the optimizer.

        Args:
            learning_rate: Must be positive
            momentum: Must be in [0, 1). 0 disables momentum.

        Raises:
            InvalidConfiguration: If either value is out of range
        """
        if not learning_rate > 0:
            raise InvalidConfiguration(
                f"learning_rate must be positive, got {learning_rate}"
            )
        if not 0.0 <= momentum < 1.0:
            raise InvalidConfiguration(f"momentum must be in [0, 1), got {momentum}")

        self.learning_rate = float(learning_rate)
        self.momentum = float(momentum)

        self.velocity: Dict[int, Tuple[Tensor, Tensor]] = {}
        self.step_count: int = 0

        # Network the velocities belong to
        self._network_ref: Optional[weakref.ref] = None
        self._layer_count: Optional[int] = None

    def reset(self) -> None:
        """Drop all momentum state."""
        self.velocity = {}
        self.step_count = 0
        self._network_ref = None
        self._layer_count = None

    def _attach(self, network: Network) -> None:
        if self._network_ref is None:
            # First use, or state restored by load_state()
            if not self._velocity_fits(network):
                self.reset()
        elif self._network_ref() is not network or self._layer_count != len(network):
            self.reset()
        self._network_ref = weakref.ref(network)
        self._layer_count = len(network)

    def _velocity_fits(self, network: Network) -> bool:
        """Restored velocities must match the positions and shapes of the layers."""
        for position, (weight_velocity, bias_velocity) in self.velocity.items():
            if not 0 <= position < len(network):
                return False
            layer = network[position]
            if (
                weight_velocity.shape != layer.weight.shape
                or bias_velocity.shape != layer.bias.shape
            ):
                return False
        return True

    def apply(self, network: Network, gradients: GradientBundle) -> None:
        """
        Perform a single optimization step.

        Updates every layer of the network through Dense.set_parameters.

        Args:
            network: Network whose parameters are updated
            gradients: Bundle from network.backward(), one entry per layer

        Raises:
            ShapeMismatch: If the bundle does not cover every layer, or a
                           gradient has the wrong shape
        """
        if len(gradients) != len(network):
            raise ShapeMismatch(
                f"Gradient bundle covers {len(gradients)} layers, network has {len(network)}",
                expected=(len(network),),
                actual=(len(gradients),),
            )
        # Check every shape before touching any layer
        for position, (layer, gradient) in enumerate(zip(network, gradients)):
            if (
                gradient.weight.shape != layer.weight.shape
                or gradient.bias.shape != layer.bias.shape
            ):
                raise ShapeMismatch(
                    f"Gradient for layer {position} has shapes "
                    f"{gradient.weight.shape}/{gradient.bias.shape}, parameters are "
                    f"{layer.weight.shape}/{layer.bias.shape}",
                    expected=layer.weight.shape,
                    actual=gradient.weight.shape,
                )

        self._attach(network)

        # Every step is computed before any layer or velocity changes
        updated = []
        velocity = {}
        for position, (layer, gradient) in enumerate(zip(network, gradients)):
            if self.momentum > 0.0:
                weight_step, bias_step = self._momentum_step(position, layer, gradient)
                velocity[position] = (weight_step, bias_step)
            else:
                weight_step = gradient.weight.scale(self.learning_rate)
                bias_step = gradient.bias.scale(self.learning_rate)
            updated.append((layer.weight - weight_step, layer.bias - bias_step))

        network.set_parameters(updated)
        self.velocity.update(velocity)
        self.step_count += 1

    def _momentum_step(self, position: int, layer, gradient: ParameterGradient):
        weight_velocity, bias_velocity = self.velocity.get(
            position,
            (Tensor.zeros(layer.weight.shape), Tensor.zeros(layer.bias.shape)),
        )

        # v = momentum * v + lr * g
        weight_velocity = weight_velocity.scale(self.momentum) + gradient.weight.scale(
            self.learning_rate
        )
        bias_velocity = bias_velocity.scale(self.momentum) + gradient.bias.scale(
            self.learning_rate
        )

        return weight_velocity, bias_velocity

    def get_state(self) -> dict:
        """Get optimizer state for checkpointing."""
        return {
            "velocity": {
                position: (weight.to_numpy(), bias.to_numpy())
                for position, (weight, bias) in self.velocity.items()
            },
            "step_count": self.step_count,
        }

    def load_state(self, state: dict) -> None:
        """Load optimizer state from a checkpoint."""
        self.velocity = {
            int(position): (Tensor(weight), Tensor(bias))
            for position, (weight, bias) in state["velocity"].items()
        }
        self.step_count = state["step_count"]

    def __repr__(self) -> str:
        return f"SGD(learning_rate={self.learning_rate}, momentum={self.momentum})"


def clip_gradient_norm(gradients: GradientBundle, max_norm: float) -> GradientBundle:
    """
    Clip gradients by global norm.

    If the total norm of all gradients exceeds max_norm, scale them down
    proportionally so the total norm equals max_norm.

    Algorithm:
        total_norm = sqrt(sum(norm(g)^2 for g in gradients))
        if total_norm > max_norm:
            gradients = gradients * (max_norm / total_norm)

    Args:
        gradients: Bundle to clip
        max_norm: Maximum allowed global norm, must be positive

    Returns:
        Clipped bundle (the original is unchanged)
    """
    if not max_norm > 0:
        raise InvalidConfiguration(f"max_norm must be positive, got {max_norm}")

    total_norm = gradients.global_norm()
    if total_norm <= max_norm:
        return gradients

    clipped = gradients.scale(max_norm / total_norm)
    clipped.input_gradient = gradients.input_gradient
    return clipped
