"""
Network Persistence

A network is stored as an ordered list of layers. Each layer records its
input and output sizes, its activation name, and the raw weight and bias
values. Weights are flattened in row-major order.

Two containers are supported:
    .npz   NumPy archive of float64 arrays, no pickling (default)
    .json  Plain JSON of the same mapping. Python's float repr round-trips
           exactly, so values survive unchanged.

Loading a saved network reproduces every parameter bit for bit, so the
reloaded network's forward pass matches the original exactly.

Functions:
    network_to_dict / network_from_dict: In-memory mapping form
    save_network / load_network: File form
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np
from loguru import logger

from neuralnet.activations import ACTIVATIONS
from neuralnet.errors import InvalidConfiguration
from neuralnet.layers import Dense
from neuralnet.network import Network
from neuralnet.tensor import Tensor

FORMAT_VERSION = 1

PathLike = Union[str, Path]


def _activation_name(layer: Dense) -> str:
    name = layer.activation.name
    if ACTIVATIONS.get(name) is not layer.activation:
        raise InvalidConfiguration(
            f"Activation {name!r} is not registered and cannot be serialized"
        )
    return name


def _build_layer(
    input_size: int,
    output_size: int,
    activation: str,
    weight_values,
    bias_values,
) -> Dense:
    layer = Dense(int(input_size), int(output_size), activation=activation, weight_init="zero")
    weight = Tensor(weight_values, shape=(layer.input_size, layer.output_size))
    bias = Tensor(bias_values, shape=(layer.output_size,))
    layer.set_parameters(weight, bias)
    return layer


def _check_version(version) -> None:
    if int(version) != FORMAT_VERSION:
        raise InvalidConfiguration(
            f"Unsupported network format version {version}, expected {FORMAT_VERSION}"
        )


def network_to_dict(network: Network) -> Dict[str, Any]:
    """
    Describe a network as plain Python values.

    Returns:
        {"format_version": 1, "layers": [{"input_size", "output_size",
        "activation", "weight", "bias"}, ...]} with weight flattened
        row-major
    """
    layers: List[Dict[str, Any]] = []
    for layer in network:
        layers.append(
            {
                "input_size": layer.input_size,
                "output_size": layer.output_size,
                "activation": _activation_name(layer),
                "weight": layer.weight.to_numpy().ravel(order="C").tolist(),
                "bias": layer.bias.to_numpy().tolist(),
            }
        )
    return {"format_version": FORMAT_VERSION, "layers": layers}


def network_from_dict(data: Dict[str, Any]) -> Network:
    """
    Rebuild a network from network_to_dict() output.

    Raises:
        InvalidConfiguration: For missing keys, unknown activations or an
                              unsupported format version
        ShapeMismatch: If value counts do not match the declared sizes or
                       adjacent layers do not chain
    """
    try:
        _check_version(data["format_version"])
        layers = [
            _build_layer(
                entry["input_size"],
                entry["output_size"],
                entry["activation"],
                entry["weight"],
                entry["bias"],
            )
            for entry in data["layers"]
        ]
    except KeyError as exc:
        raise InvalidConfiguration(f"Serialized network is missing key {exc}") from exc
    return Network(layers)


def save_network(network: Network, path: PathLike) -> Path:
    """
    Save a network to disk.

    The container is chosen by suffix: ".json" writes JSON, anything else
    writes an .npz archive to exactly the given path.

    Args:
        network: Network to save
        path: Destination file

    Returns:
        The path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".json":
        with path.open("w", encoding="utf-8") as handle:
            json.dump(network_to_dict(network), handle)
    else:
        arrays: Dict[str, np.ndarray] = {
            "format_version": np.array(FORMAT_VERSION, dtype=np.int64),
            "layer_count": np.array(len(network), dtype=np.int64),
        }
        for position, layer in enumerate(network):
            arrays[f"layer{position}_sizes"] = np.array(
                [layer.input_size, layer.output_size], dtype=np.int64
            )
            arrays[f"layer{position}_activation"] = np.array(_activation_name(layer))
            arrays[f"layer{position}_weight"] = layer.weight.to_numpy().ravel(order="C")
            arrays[f"layer{position}_bias"] = layer.bias.to_numpy()

        with path.open("wb") as handle:
            np.savez(handle, **arrays)

    logger.info("Saved network ({} layers) to {}", len(network), path)
    return path


def load_network(path: PathLike) -> Network:
    """
    Load a network saved by save_network().

    Raises:
        InvalidConfiguration: For missing entries, unknown activations or an
                              unsupported format version
        ShapeMismatch: If stored value counts do not match the sizes
    """
    path = Path(path)

    if path.suffix.lower() == ".json":
        with path.open("r", encoding="utf-8") as handle:
            network = network_from_dict(json.load(handle))
    else:
        with np.load(path, allow_pickle=False) as archive:
            try:
                _check_version(archive["format_version"])
                layers = []
                for position in range(int(archive["layer_count"])):
                    sizes = np.ravel(archive[f"layer{position}_sizes"]).tolist()
                    if len(sizes) != 2:
                        raise InvalidConfiguration(
                            f"Layer {position} sizes must hold 2 values, got {len(sizes)}"
                        )
                    input_size, output_size = sizes
                    layers.append(
                        _build_layer(
                            input_size,
                            output_size,
                            str(archive[f"layer{position}_activation"]),
                            archive[f"layer{position}_weight"],
                            archive[f"layer{position}_bias"],
                        )
                    )
            except KeyError as exc:
                raise InvalidConfiguration(
                    f"Network archive {path} is missing entry {exc}"
                ) from exc
        network = Network(layers)

    logger.info("Loaded network ({} layers) from {}", len(network), path)
    return network

