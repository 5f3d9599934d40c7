"""
Fluent network topology builder.

Describes a network by its input width and a list of layer widths, then
derives the LayerSpec chain so each layer's input size is the previous
layer's output size:

    network = (
        TopologyBuilder()
        .input_size(2)
        .add_layer(4, "tanh")
        .add_layer(1, "sigmoid")
        .build_network(seed=0)
    )
"""

from typing import List, Optional, Tuple

from neuralnet.errors import InvalidConfiguration
from neuralnet.layers import ActivationKind, InitializerKind, LayerSpec
from neuralnet.network import Network


class TopologyBuilder:
    def __init__(self):
        self._input_size: Optional[int] = None
        self._layers: List[Tuple[int, ActivationKind, InitializerKind, InitializerKind]] = []

    def input_size(self, size: int) -> "TopologyBuilder":
        self._input_size = size
        return self

    def add_layer(
        self,
        size: int,
        activation: ActivationKind = "sigmoid",
        weight_init: InitializerKind = "uniform",
        bias_init: InitializerKind = "zero",
    ) -> "TopologyBuilder":
        self._layers.append((size, activation, weight_init, bias_init))
        return self

    def build(self) -> List[LayerSpec]:
        """
        Return the chained layer specifications.

        Raises:
            InvalidConfiguration: If no input size was set, no layer was
                                  added, or a size is invalid
        """
        if self._input_size is None:
            raise InvalidConfiguration("Topology needs an input size")
        if not self._layers:
            raise InvalidConfiguration("Topology needs at least one layer")

        specs = []
        fan_in = self._input_size
        for size, activation, weight_init, bias_init in self._layers:
            specs.append(LayerSpec(fan_in, size, activation, weight_init, bias_init))
            fan_in = size
        return specs

    def build_network(self, seed: Optional[int] = None) -> Network:
        return Network.from_specs(self.build(), seed=seed)
