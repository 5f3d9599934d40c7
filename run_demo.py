#!/usr/bin/env python3
"""
Feed-Forward Network Demo Script

This script trains small networks end to end with the public API:
1. A linearly separable two-class problem (sigmoid output, cross-entropy)
2. XOR, which needs a hidden layer (tanh hidden, sigmoid output)
3. A three-class problem with a softmax output
4. Saving the trained network and reloading it

Usage:
    python run_demo.py [mode]

    Modes:
        all        - Run every demo
        separable  - Two-class linearly separable toy problem
        xor        - XOR with one hidden layer
        softmax    - Three-class problem with a softmax output
        save       - Train XOR, save it, reload it and compare outputs

Example:
    python run_demo.py xor
"""

import argparse
import os
import sys
import tempfile
from typing import Tuple

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from neuralnet.data import Dataset
from neuralnet.layers import LayerSpec
from neuralnet.network import Network, build_network
from neuralnet.optimizer import SGD
from neuralnet.serialization import load_network, save_network
from neuralnet.topology import TopologyBuilder
from neuralnet.trainer import Trainer, TrainerConfig


def print_header(text: str):
    """Print a formatted header."""
    print()
    print("=" * 60)
    print(text)
    print("=" * 60)
    print()


def print_section(text: str):
    """Print a section divider."""
    print()
    print("-" * 40)
    print(text)
    print("-" * 40)


def print_predictions(network: Network, dataset: Dataset):
    for sample in dataset:
        prediction = network.forward(sample.inputs)
        print(
            f"  input={sample.inputs.tolist()}  expected={sample.expected.tolist()}  "
            f"predicted={np.round(prediction.to_numpy(), 3).tolist()}"
        )


def run_separable_demo():
    print_section("Linearly separable two-class problem")

    dataset = Dataset.from_arrays(
        [[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]],
        [[0.0], [0.0], [1.0], [1.0]],
    )
    network = build_network([LayerSpec(2, 1, activation="sigmoid")], seed=0)
    trainer = Trainer(TrainerConfig(epochs=100, batch_size=4, seed=0, log_every=25))

    result = trainer.train(network, dataset, "cross_entropy", SGD(learning_rate=2.0))
    print(f"Final loss after {result.epochs_run} epochs: {result.final_loss:.4f}")
    print_predictions(network, dataset)


def train_xor() -> Tuple[Network, Dataset]:
    dataset = Dataset.from_arrays(
        [[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]],
        [[0.0], [1.0], [1.0], [0.0]],
    )
    network = (
        TopologyBuilder()
        .input_size(2)
        .add_layer(8, "tanh", weight_init="normal")
        .add_layer(1, "sigmoid", weight_init="normal")
        .build_network(seed=1)
    )
    trainer = Trainer(
        TrainerConfig(
            epochs=5000,
            batch_size=4,
            seed=1,
            convergence="threshold",
            loss_threshold=0.05,
            log_every=500,
        )
    )
    result = trainer.train(
        network, dataset, "cross_entropy", SGD(learning_rate=0.5, momentum=0.5)
    )
    print(f"{result.state.value} after {result.epochs_run} epochs, loss {result.final_loss:.4f}")
    return network, dataset


def run_xor_demo():
    print_section("XOR with one hidden layer")
    network, dataset = train_xor()
    print_predictions(network, dataset)


def run_softmax_demo():
    print_section("Three-class problem with a softmax output")

    rng = np.random.default_rng(7)
    centers = np.array([[0.0, 2.0], [2.0, -1.0], [-2.0, -1.0]])
    labels = rng.integers(0, 3, size=90)
    inputs = centers[labels] + rng.normal(0.0, 0.4, size=(90, 2))
    targets = np.eye(3)[labels]

    dataset = Dataset.from_arrays(inputs, targets)
    network = build_network(
        [
            LayerSpec(2, 8, activation="relu", weight_init="normal"),
            LayerSpec(8, 3, activation="softmax", weight_init="normal"),
        ],
        seed=3,
    )
    trainer = Trainer(TrainerConfig(epochs=60, batch_size=10, seed=3, log_every=20))
    result = trainer.train(network, dataset, "cross_entropy", SGD(learning_rate=0.2))

    predictions = network.forward(dataset.batch(range(len(dataset))).inputs).to_numpy()
    accuracy = float(np.mean(predictions.argmax(axis=1) == labels))
    print(f"Final loss {result.final_loss:.4f}, training accuracy {accuracy:.2%}")


def run_save_demo():
    print_section("Saving and reloading a network")
    network, dataset = train_xor()

    with tempfile.TemporaryDirectory() as directory:
        path = save_network(network, os.path.join(directory, "xor.npz"))
        restored = load_network(path)

    inputs = dataset.batch(range(len(dataset))).inputs
    identical = network.forward(inputs) == restored.forward(inputs)
    print(f"Reloaded network reproduces outputs bit for bit: {identical}")


def main():
    parser = argparse.ArgumentParser(description="Feed-forward network demo")
    parser.add_argument(
        "mode",
        nargs="?",
        default="all",
        choices=["all", "separable", "xor", "softmax", "save"],
        help="Demo mode to run",
    )
    args = parser.parse_args()

    print_header("Feed-Forward Networks - Training Demo")
    print(f"Mode: {args.mode}")

    if args.mode in ("all", "separable"):
        run_separable_demo()
    if args.mode in ("all", "xor"):
        run_xor_demo()
    if args.mode in ("all", "softmax"):
        run_softmax_demo()
    if args.mode in ("all", "save"):
        run_save_demo()

    print("\nDone!")


if __name__ == "__main__":
    main()
