"""
Feed-Forward Network

This module assembles Dense layers into a network that can be trained with
backpropagation.

Architecture Overview:
    Input (batch, input_size)
           |
    [Dense 0]  x @ W0 + b0 -> f0
           |
    [Dense 1]  ...
           |
    [Dense N-1] -> Output (batch, output_size)

The forward pass threads the input through the layers left to right. The
backward pass walks them right to left, feeding each layer's input gradient
to the layer before it, and collects the parameter gradients into a
GradientBundle indexed by layer position.

Adjacent layers must chain (layer[i].output_size == layer[i+1].input_size).
This is checked when the network is assembled, never lazily during training.

Classes:
    ParameterGradient: Weight and bias gradients of one layer
    GradientBundle: Per-layer gradients produced by one backward pass
    Network: Ordered sequence of Dense layers

Functions:
    build_network: Construct a network from layer specifications
"""

import weakref
from typing import Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from neuralnet.errors import InvalidConfiguration, ShapeMismatch
from neuralnet.layers import Dense, LayerCache, LayerSpec
from neuralnet.losses import get_loss
from neuralnet.tensor import Tensor, as_tensor

# Dense layer -> weak reference to the network that owns it
_LAYER_OWNERS = weakref.WeakKeyDictionary()


class ParameterGradient(NamedTuple):
    """Gradients of the loss with respect to one layer's parameters."""

    weight: Tensor
    bias: Tensor


class GradientBundle:
    """
    Per-layer parameter gradients from one backward pass.

    The bundle is transient. It is produced by Network.backward, consumed by
    the optimizer and then dropped.

    Attributes:
        input_gradient: Gradient with respect to the network input, or None
                        for bundles built by summing or scaling
    """

    def __init__(
        self,
        gradients: Sequence[ParameterGradient],
        input_gradient: Optional[Tensor] = None,
    ):
        self._gradients: Tuple[ParameterGradient, ...] = tuple(gradients)
        self.input_gradient = input_gradient

    def __len__(self) -> int:
        return len(self._gradients)

    def __getitem__(self, index: int) -> ParameterGradient:
        return self._gradients[index]

    def __iter__(self) -> Iterator[ParameterGradient]:
        return iter(self._gradients)

    def scale(self, factor: float) -> "GradientBundle":
        """Multiply every gradient by a scalar."""
        return GradientBundle(
            [
                ParameterGradient(gradient.weight.scale(factor), gradient.bias.scale(factor))
                for gradient in self._gradients
            ]
        )

    def is_finite(self) -> bool:
        return all(
            gradient.weight.is_finite() and gradient.bias.is_finite()
            for gradient in self._gradients
        )

    def global_norm(self) -> float:
        """L2 norm over every weight and bias gradient."""
        total_norm_squared = 0.0
        for gradient in self._gradients:
            total_norm_squared += gradient.weight.multiply(gradient.weight).sum()
            total_norm_squared += gradient.bias.multiply(gradient.bias).sum()
        return float(np.sqrt(total_norm_squared))

    @staticmethod
    def sum(bundles: Iterable["GradientBundle"]) -> "GradientBundle":
        """
        Elementwise sum of bundles, added in the order given.

        The order is fixed by the caller, so the floating-point result is
        reproducible for the same sequence of bundles.

        Raises:
            ShapeMismatch: If the bundles cover different numbers of layers
        """
        bundles = list(bundles)
        if not bundles:
            raise ShapeMismatch("Cannot sum an empty sequence of gradient bundles")

        layer_count = len(bundles[0])
        weights = [gradient.weight for gradient in bundles[0]]
        biases = [gradient.bias for gradient in bundles[0]]

        for bundle in bundles[1:]:
            if len(bundle) != layer_count:
                raise ShapeMismatch(
                    f"Cannot sum bundles for {layer_count} and {len(bundle)} layers",
                    expected=(layer_count,),
                    actual=(len(bundle),),
                )
            for position, gradient in enumerate(bundle):
                weights[position] = weights[position] + gradient.weight
                biases[position] = biases[position] + gradient.bias

        return GradientBundle(
            [ParameterGradient(weight, bias) for weight, bias in zip(weights, biases)]
        )

    def __repr__(self) -> str:
        return f"GradientBundle(layers={len(self)})"


class Network:
    """
    Ordered sequence of Dense layers.

    The network owns its layers exclusively. Layer shapes never change after
    construction, so the chaining invariant checked here holds for the
    network's whole lifetime.

    Example usage:
        network = build_network([
            LayerSpec(2, 4, activation="tanh"),
            LayerSpec(4, 1, activation="sigmoid"),
        ], seed=0)

        output = network.forward(inputs)                 # inference
        output, caches = network.forward_train(inputs)   # training
        gradients = network.backward_loss("mse", output, targets, caches)
    """

    def __init__(self, layers: Sequence[Dense]):
        """
        Assemble a network.

        Args:
            layers: Dense layers in forward order

        Raises:
            InvalidConfiguration: If no layers are given, a layer appears
                                  twice, or a layer already belongs to
                                  another live network
            ShapeMismatch: If adjacent layer sizes do not chain
        """
        layers = list(layers)
        if not layers:
            raise InvalidConfiguration("A network needs at least one layer")
        _check_chain(layers)
        _check_ownership(layers)

        self._layers: Tuple[Dense, ...] = tuple(layers)
        for layer in self._layers:
            _LAYER_OWNERS[layer] = weakref.ref(self)
        logger.debug(
            "Built network {} with {} parameters",
            " -> ".join(str(size) for size in self.layer_sizes()),
            self.parameter_count(),
        )

    @classmethod
    def from_specs(
        cls, specs: Iterable[LayerSpec], seed: Optional[int] = None
    ) -> "Network":
        """
        Build a network from layer specifications.

        All layers draw their initial values from one generator, in order,
        so the same seed always produces the same parameters.
        """
        specs = list(specs)
        if not specs:
            raise InvalidConfiguration("A network needs at least one layer")
        _check_chain(specs)
        rng = np.random.default_rng(seed)
        return cls([Dense.from_spec(spec, rng) for spec in specs])

    # ------------------------------------------------------------------
    # Introspection

    @property
    def layers(self) -> Tuple[Dense, ...]:
        return self._layers

    @property
    def input_size(self) -> int:
        return self._layers[0].input_size

    @property
    def output_size(self) -> int:
        return self._layers[-1].output_size

    def layer_sizes(self) -> List[int]:
        return [self.input_size] + [layer.output_size for layer in self._layers]

    def parameter_count(self) -> int:
        return sum(layer.parameter_count() for layer in self._layers)

    def specs(self) -> List[LayerSpec]:
        return [layer.spec() for layer in self._layers]

    def __len__(self) -> int:
        return len(self._layers)

    def __iter__(self) -> Iterator[Dense]:
        return iter(self._layers)

    def __getitem__(self, index: int) -> Dense:
        return self._layers[index]

    def __repr__(self) -> str:
        return f"Network({list(self._layers)!r})"

    # ------------------------------------------------------------------
    # Forward and backward

    def forward(self, inputs) -> Tensor:
        """
        Inference forward pass. Per-layer caches are discarded.

        Args:
            inputs: (batch, input_size) or (input_size,)

        Returns:
            Output of shape (batch, output_size) or (output_size,)
        """
        output = as_tensor(inputs)
        for layer in self._layers:
            output, _ = layer.forward(output)
        return output

    predict = forward

    def forward_train(self, inputs) -> Tuple[Tensor, List[LayerCache]]:
        """
        Training forward pass that keeps every layer's cache.

        Returns:
            (output, caches) where caches[i] belongs to layer i. The caches
            are meant for exactly one backward() call.
        """
        output = as_tensor(inputs)
        caches: List[LayerCache] = []
        for layer in self._layers:
            output, cache = layer.forward(output)
            caches.append(cache)
        return output, caches

    def backward(self, output_gradient, caches: Sequence[LayerCache]) -> GradientBundle:
        """
        Backpropagate a loss gradient through every layer.

        Args:
            output_gradient: d_loss/d_output, same shape as the network output
            caches: The caches returned by the matching forward_train() call

        Returns:
            GradientBundle indexed by layer position

        Raises:
            ShapeMismatch: If the number of caches differs from the number of
                           layers, or the gradient has the wrong shape
        """
        return self._backward(output_gradient, caches, output_delta=None)

    def backward_loss(
        self, loss, output, expected, caches: Sequence[LayerCache]
    ) -> GradientBundle:
        """
        Backpropagate a loss evaluated on the network output.

        When the loss has a combined derivative for the output activation
        (sigmoid or softmax with cross-entropy), the output layer starts from
        that delta. Otherwise loss.gradient() is chained through the
        activation as in backward().

        Args:
            loss: Loss instance or registered name
            output: Output of the matching forward_train() call
            expected: Target values, same shape as output
            caches: Caches from the same forward_train() call
        """
        loss = get_loss(loss)
        output_delta = loss.output_delta(output, expected, self._layers[-1].activation)
        if output_delta is None:
            return self._backward(loss.gradient(output, expected), caches, output_delta=None)
        return self._backward(None, caches, output_delta=output_delta)

    def _backward(self, output_gradient, caches, output_delta) -> GradientBundle:
        if len(caches) != len(self._layers):
            raise ShapeMismatch(
                f"Expected {len(self._layers)} layer caches, got {len(caches)}",
                expected=(len(self._layers),),
                actual=(len(caches),),
            )

        last = len(self._layers) - 1
        parameter_gradients: List[ParameterGradient] = [None] * len(self._layers)

        if output_delta is None:
            layer_gradient = self._layers[last].backward(output_gradient, caches[last])
        else:
            layer_gradient = self._layers[last].backward_delta(output_delta, caches[last])
        parameter_gradients[last] = ParameterGradient(
            layer_gradient.weight_gradient, layer_gradient.bias_gradient
        )
        gradient = layer_gradient.input_gradient

        for position in reversed(range(last)):
            layer_gradient = self._layers[position].backward(gradient, caches[position])
            parameter_gradients[position] = ParameterGradient(
                layer_gradient.weight_gradient, layer_gradient.bias_gradient
            )
            gradient = layer_gradient.input_gradient

        return GradientBundle(parameter_gradients, input_gradient=gradient)

    # ------------------------------------------------------------------
    # Parameter access

    def get_parameters(self) -> List[Tuple[Tensor, Tensor]]:
        """Return (weight, bias) for every layer, in order."""
        return [(layer.weight, layer.bias) for layer in self._layers]

    def set_parameters(self, parameters: Sequence[Tuple[Tensor, Tensor]]) -> None:
        """
        Replace every layer's parameters.

        Raises:
            ShapeMismatch: If the count or any shape does not match
        """
        if len(parameters) != len(self._layers):
            raise ShapeMismatch(
                f"Expected parameters for {len(self._layers)} layers, got {len(parameters)}",
                expected=(len(self._layers),),
                actual=(len(parameters),),
            )
        for layer, (weight, bias) in zip(self._layers, parameters):
            layer.set_parameters(weight, bias)


def _check_chain(layers: Sequence) -> None:
    """Adjacent entries (Dense or LayerSpec) must chain output -> input."""
    for position, (current, following) in enumerate(zip(layers[:-1], layers[1:])):
        if current.output_size != following.input_size:
            raise ShapeMismatch(
                f"Layer {position} outputs {current.output_size} values but "
                f"layer {position + 1} expects {following.input_size}",
                expected=(current.output_size,),
                actual=(following.input_size,),
            )


def _check_ownership(layers: Sequence[Dense]) -> None:
    """Each layer may appear once, in at most one live network."""
    seen = set()
    for position, layer in enumerate(layers):
        if id(layer) in seen:
            raise InvalidConfiguration(
                f"Layer {position} appears more than once in the network"
            )
        seen.add(id(layer))

        owner_ref = _LAYER_OWNERS.get(layer)
        if owner_ref is not None and owner_ref() is not None:
            raise InvalidConfiguration(
                f"Layer {position} already belongs to another network"
            )


def build_network(specs: Iterable[LayerSpec], seed: Optional[int] = None) -> Network:
    """
    Construct a network from an ordered list of layer specifications.

    Args:
        specs: LayerSpec for each layer, in forward order
        seed: Seed for the initializers' random generator

    Raises:
        InvalidConfiguration: If specs is empty or invalid
        ShapeMismatch: If adjacent sizes do not chain
    """
    return Network.from_specs(specs, seed=seed)
