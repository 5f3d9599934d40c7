"""
Tests for the Trainer.

Tests the training loop including:
- Configuration validation
- Convergence on small toy problems
- Batch partitioning per epoch
- Convergence policies and trainer states
- Failure handling with epoch/batch context
- Multi-threaded gradient computation
"""

import math

import numpy as np
import pytest
from loguru import logger

from neuralnet.data import Dataset
from neuralnet.errors import (
    InvalidConfiguration,
    NonFiniteValue,
    ShapeMismatch,
    TrainingFailed,
)
from neuralnet.layers import LayerSpec
from neuralnet.losses import MeanSquaredError
from neuralnet.network import build_network
from neuralnet.optimizer import SGD
from neuralnet.trainer import Trainer, TrainerConfig, TrainerState


@pytest.fixture
def separable_dataset():
    """Four points in 2D, labelled by their first coordinate."""
    return Dataset.from_arrays(
        [[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]],
        [[0.0], [0.0], [1.0], [1.0]],
    )


@pytest.fixture
def regression_dataset():
    rng = np.random.default_rng(0)
    inputs = rng.normal(size=(10, 3))
    targets = np.tanh(inputs @ np.array([[0.5], [-1.0], [0.25]]))
    return Dataset.from_arrays(inputs, targets)


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during a test."""
    messages = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{level} {message}")
    yield messages
    logger.remove(handler_id)


class RecordingLoss(MeanSquaredError):
    """MSE that records the batch size of every compute() call."""

    def __init__(self):
        self.batch_sizes = []

    def compute(self, predicted, expected):
        self.batch_sizes.append(predicted.shape[0])
        return super().compute(predicted, expected)


class TestTrainerConfig:
    """Test configuration validation."""

    def test_defaults(self):
        config = TrainerConfig()

        assert config.epochs > 0
        assert config.batch_size > 0
        assert config.convergence == "fixed"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"epochs": 0},
            {"batch_size": 0},
            {"batch_size": -1},
            {"workers": 0},
            {"convergence": "early"},
            {"convergence": "threshold"},
            {"convergence": "threshold", "loss_threshold": 0.0},
            {"max_grad_norm": 0.0},
            {"log_every": -1},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(InvalidConfiguration):
            TrainerConfig(**overrides)


class TestConvergence:
    """Test training on small toy problems."""

    def test_separable_problem(self, separable_dataset):
        """
        Sigmoid output with cross-entropy on a linearly separable set.

        The loss should fall on average across 100 epochs and end below 0.1.
        """
        network = build_network([LayerSpec(2, 1, activation="sigmoid")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=100, batch_size=4, shuffle=False))

        result = trainer.train(
            network, separable_dataset, "cross_entropy", SGD(learning_rate=2.0)
        )

        history = result.loss_history
        assert result.state is TrainerState.STOPPED_BY_LIMIT
        assert result.epochs_run == 100
        assert np.mean(history[:10]) > np.mean(history[45:55]) > np.mean(history[-10:])
        assert result.final_loss < 0.1
        assert trainer.evaluate(network, separable_dataset, "cross_entropy") < 0.1

    def test_xor_with_hidden_layer(self):
        dataset = Dataset.from_arrays(
            [[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]],
            [[0.0], [1.0], [1.0], [0.0]],
        )
        network = build_network(
            [
                LayerSpec(2, 8, activation="tanh", weight_init="normal"),
                LayerSpec(8, 1, activation="sigmoid", weight_init="normal"),
            ],
            seed=1,
        )
        trainer = Trainer(
            TrainerConfig(
                epochs=5000, batch_size=4, convergence="threshold", loss_threshold=0.05
            )
        )

        result = trainer.train(
            network, dataset, "cross_entropy", SGD(learning_rate=0.5, momentum=0.5)
        )

        assert result.converged
        predictions = network.forward(dataset.batch(range(4)).inputs).to_numpy()
        assert np.array_equal(predictions.round(), [[0.0], [1.0], [1.0], [0.0]])

    def test_training_is_reproducible(self, regression_dataset):
        def run():
            network = build_network([LayerSpec(3, 4, "tanh"), LayerSpec(4, 1, "identity")], seed=3)
            Trainer(TrainerConfig(epochs=5, batch_size=3, seed=9)).train(
                network, regression_dataset, "mse", SGD(learning_rate=0.1)
            )
            return network

        first, second = run(), run()
        for (w1, b1), (w2, b2) in zip(first.get_parameters(), second.get_parameters()):
            assert w1 == w2
            assert b1 == b2


class TestBatching:
    """Test how the trainer partitions every epoch."""

    @pytest.mark.parametrize("batch_size", [1, 3, 4, 10, 32])
    def test_batches_per_epoch(self, regression_dataset, batch_size):
        """ceil(N / B) batches, the last one holding N mod B (or B) samples."""
        loss = RecordingLoss()
        network = build_network([LayerSpec(3, 1, "identity")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=2, batch_size=batch_size))

        result = trainer.train(network, regression_dataset, loss, SGD(learning_rate=0.01))

        size = len(regression_dataset)
        per_epoch = math.ceil(size / batch_size)
        last = size % batch_size or batch_size
        expected_sizes = [min(batch_size, size)] * (per_epoch - 1) + [last]

        assert result.batches_per_epoch == per_epoch
        assert loss.batch_sizes == expected_sizes * 2

    def test_overrides_take_precedence(self, regression_dataset):
        network = build_network([LayerSpec(3, 1, "identity")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=50, batch_size=1))

        result = trainer.train(
            network, regression_dataset, "mse", SGD(), epochs=2, batch_size=5
        )

        assert result.epochs_run == 2
        assert result.batches_per_epoch == 2
        assert trainer.config.epochs == 50

    def test_invalid_override(self, regression_dataset):
        network = build_network([LayerSpec(3, 1, "identity")], seed=0)

        with pytest.raises(InvalidConfiguration):
            Trainer().train(network, regression_dataset, "mse", SGD(), batch_size=0)

    def test_epoch_loss_is_sample_weighted(self):
        """
        With a zero-initialized identity layer the prediction is always 0, so
        the epoch loss is mean(y^2) however the batches are split.
        """
        dataset = Dataset.from_arrays([[1.0], [1.0], [1.0]], [[1.0], [2.0], [4.0]])
        network = build_network([LayerSpec(1, 1, "identity", weight_init="zero")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=1, batch_size=2, shuffle=False))

        # Tiny learning rate so the second batch sees (almost) unchanged weights
        result = trainer.train(network, dataset, "mse", SGD(learning_rate=1e-12))

        assert result.final_loss == pytest.approx((1.0 + 4.0 + 16.0) / 3)


class TestTrainerStates:
    """Test convergence policies and state transitions."""

    def test_threshold_stops_early(self, separable_dataset):
        network = build_network([LayerSpec(2, 1, activation="sigmoid")], seed=0)
        trainer = Trainer(
            TrainerConfig(
                epochs=500, batch_size=4, convergence="threshold", loss_threshold=0.2
            )
        )

        result = trainer.train(network, separable_dataset, "cross_entropy", SGD(learning_rate=2.0))

        assert result.state is TrainerState.CONVERGED
        assert trainer.state is TrainerState.IDLE
        assert result.epochs_run < 500
        assert result.final_loss < 0.2
        assert all(loss >= 0.2 for loss in result.loss_history[:-1])

    def test_fixed_policy_runs_every_epoch(self, regression_dataset):
        network = build_network([LayerSpec(3, 1, "identity")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=7, batch_size=4))

        assert trainer.state is TrainerState.IDLE
        result = trainer.train(network, regression_dataset, "mse", SGD())

        assert result.state is TrainerState.STOPPED_BY_LIMIT
        assert not result.converged
        assert trainer.state is TrainerState.IDLE
        assert len(trainer.history) == 7
        assert trainer.history == result.loss_history

    def test_trainer_can_train_again_after_finishing(self, regression_dataset):
        network = build_network([LayerSpec(3, 1, "identity")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=2))

        trainer.train(network, regression_dataset, "mse", SGD())
        result = trainer.train(network, regression_dataset, "mse", SGD())

        assert result.epochs_run == 2

    def test_reset_clears_history(self, regression_dataset):
        network = build_network([LayerSpec(3, 1, "identity")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=2))
        trainer.train(network, regression_dataset, "mse", SGD())

        trainer.reset()

        assert trainer.state is TrainerState.IDLE
        assert trainer.history == ()


class TestTrainingFailures:
    """Test failure handling."""

    @pytest.fixture
    def poisoned_dataset(self):
        """The third sample's input is NaN."""
        return Dataset.from_arrays(
            [[0.0, 1.0], [1.0, 0.0], [np.nan, 1.0], [1.0, 1.0]],
            [[0.0], [1.0], [1.0], [0.0]],
        )

    def test_non_finite_loss_fails_with_context(self, poisoned_dataset):
        network = build_network([LayerSpec(2, 1, activation="sigmoid")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=3, batch_size=1, shuffle=False))

        with pytest.raises(TrainingFailed) as error:
            trainer.train(network, poisoned_dataset, "mse", SGD())

        assert error.value.epoch == 0
        assert error.value.batch == 2
        assert isinstance(error.value.cause, NonFiniteValue)
        assert error.value.__cause__ is error.value.cause
        assert "epoch 0, batch 2" in str(error.value)
        assert trainer.state is TrainerState.FAILED

    def test_failed_step_does_not_update(self, poisoned_dataset):
        """The failing batch never reaches the optimizer."""
        network = build_network([LayerSpec(2, 1, activation="sigmoid")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=1, batch_size=1, shuffle=False))

        with pytest.raises(TrainingFailed):
            trainer.train(network, poisoned_dataset, "mse", SGD())

        assert network[0].weight.is_finite()
        assert network[0].bias.is_finite()

    def test_shape_mismatch_fails_with_context(self, regression_dataset):
        network = build_network([LayerSpec(2, 1)], seed=0)
        trainer = Trainer(TrainerConfig(epochs=1, batch_size=4))

        with pytest.raises(TrainingFailed) as error:
            trainer.train(network, regression_dataset, "mse", SGD())

        assert (error.value.epoch, error.value.batch) == (0, 0)
        assert isinstance(error.value.cause, ShapeMismatch)

    def test_failed_trainer_requires_reset(self, poisoned_dataset, separable_dataset):
        network = build_network([LayerSpec(2, 1, activation="sigmoid")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=1, batch_size=1, shuffle=False))

        with pytest.raises(TrainingFailed):
            trainer.train(network, poisoned_dataset, "mse", SGD())
        with pytest.raises(InvalidConfiguration):
            trainer.train(network, separable_dataset, "mse", SGD())

        trainer.reset()
        result = trainer.train(network, separable_dataset, "mse", SGD())
        assert result.state is TrainerState.STOPPED_BY_LIMIT

    def test_unknown_loss_is_configuration_error(self, separable_dataset):
        network = build_network([LayerSpec(2, 1)], seed=0)

        with pytest.raises(InvalidConfiguration):
            Trainer().train(network, separable_dataset, "hinge", SGD())

    def test_failure_is_logged(self, poisoned_dataset, log_messages):
        network = build_network([LayerSpec(2, 1, activation="sigmoid")], seed=0)
        trainer = Trainer(TrainerConfig(epochs=1, batch_size=1, shuffle=False))

        with pytest.raises(TrainingFailed):
            trainer.train(network, poisoned_dataset, "mse", SGD())

        errors = [message for message in log_messages if message.startswith("ERROR")]
        assert len(errors) == 1
        assert "epoch 0, batch 2" in errors[0]


class TestGradientClippingInTraining:
    """Test max_grad_norm."""

    def test_clipped_step_size(self):
        """With lr=1 and max_grad_norm=c, one step moves parameters by norm <= c."""
        dataset = Dataset.from_arrays([[10.0, -10.0]], [[100.0]])
        network = build_network([LayerSpec(2, 1, "identity")], seed=0)
        weight, bias = network[0].weight.to_numpy(), network[0].bias.to_numpy()

        Trainer(TrainerConfig(epochs=1, max_grad_norm=0.5)).train(
            network, dataset, "mse", SGD(learning_rate=1.0)
        )

        step = np.sqrt(
            np.sum((network[0].weight.to_numpy() - weight) ** 2)
            + np.sum((network[0].bias.to_numpy() - bias) ** 2)
        )
        assert step == pytest.approx(0.5)


class TestParallelGradients:
    """Test worker threads for per-sample gradients."""

    @pytest.mark.parametrize("loss", ["mse", "cross_entropy"])
    def test_workers_match_serial(self, loss):
        rng = np.random.default_rng(2)
        inputs = rng.normal(size=(12, 3))
        labels = rng.integers(0, 2, size=12)
        dataset = Dataset.from_arrays(inputs, np.eye(2)[labels])
        specs = [
            LayerSpec(3, 5, "tanh", weight_init="normal"),
            LayerSpec(5, 2, "softmax", weight_init="normal"),
        ]

        results = []
        for workers in (1, 3):
            network = build_network(specs, seed=5)
            trainer = Trainer(TrainerConfig(epochs=3, batch_size=4, seed=1, workers=workers))
            result = trainer.train(network, dataset, loss, SGD(learning_rate=0.2, momentum=0.5))
            results.append((network, result))

        (serial, serial_result), (parallel, parallel_result) = results
        np.testing.assert_allclose(
            serial_result.loss_history, parallel_result.loss_history, rtol=1e-10
        )
        for (w1, b1), (w2, b2) in zip(serial.get_parameters(), parallel.get_parameters()):
            np.testing.assert_allclose(np.asarray(w1), np.asarray(w2), rtol=1e-10, atol=1e-12)
            np.testing.assert_allclose(np.asarray(b1), np.asarray(b2), rtol=1e-10, atol=1e-12)

    def test_parallel_run_is_deterministic(self, regression_dataset):
        def run():
            network = build_network([LayerSpec(3, 4, "tanh"), LayerSpec(4, 1, "identity")], seed=3)
            Trainer(TrainerConfig(epochs=3, batch_size=5, seed=2, workers=4)).train(
                network, regression_dataset, "mse", SGD(learning_rate=0.1)
            )
            return network

        first, second = run(), run()
        for (w1, b1), (w2, b2) in zip(first.get_parameters(), second.get_parameters()):
            assert w1 == w2
            assert b1 == b2


class TestLogging:
    """Test trainer log output."""

    def test_run_is_logged(self, regression_dataset, log_messages):
        network = build_network([LayerSpec(3, 1, "identity")], seed=0)
        Trainer(TrainerConfig(epochs=4, batch_size=5, log_every=2)).train(
            network, regression_dataset, "mse", SGD()
        )

        info = [message for message in log_messages if message.startswith("INFO")]
        assert any("Training for up to 4 epochs" in message for message in info)
        assert sum("Epoch " in message for message in info) == 2
        assert any("epoch limit" in message for message in info)
