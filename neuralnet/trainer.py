"""
Training Loop

This module drives mini-batch gradient descent over a Dataset.

Each step:
1. forward_train the batch through the network
2. compute the loss and its gradient
3. backpropagate to get a GradientBundle
4. let the optimizer update the parameters

Trainer states:
    IDLE -> RUNNING -> CONVERGED | STOPPED_BY_LIMIT | FAILED -> IDLE

CONVERGED and STOPPED_BY_LIMIT are reported in the TrainingResult and the
trainer returns to IDLE as soon as train() returns.

A failed step is never retried. The trainer records FAILED and raises
TrainingFailed carrying the epoch and batch index. The caller decides what
to do next and must reset() the trainer before training again.

Classes:
    TrainerConfig: Training hyperparameters
    TrainerState: Lifecycle states
    TrainingResult: Summary of one train() call
    Trainer: Runs the epoch loop
"""

import dataclasses
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

import numpy as np
from loguru import logger

from neuralnet.data import Batch, BatchIterator, Dataset
from neuralnet.errors import (
    InvalidConfiguration,
    NeuralNetError,
    NonFiniteValue,
    TrainingFailed,
)
from neuralnet.losses import Loss, get_loss
from neuralnet.network import GradientBundle, Network
from neuralnet.optimizer import SGD, clip_gradient_norm

CONVERGENCE_POLICIES = ("fixed", "threshold")


def _positive_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidConfiguration(f"{name} must be a positive integer, got {value!r}")


@dataclass
class TrainerConfig:
    """
    Configuration for the Trainer.

    Attributes:
        epochs: Maximum number of passes over the dataset
        batch_size: Samples per optimizer step. The last batch may be smaller.
        shuffle: Reshuffle the sample order at the start of every epoch
        seed: Seed for the shuffling generator
        convergence: "fixed" runs every epoch, "threshold" stops as soon as
                     the epoch loss drops below loss_threshold
        loss_threshold: Target loss for the "threshold" policy
        check_finite: Check gradients and updated parameters for NaN/Infinity
                      after every step (the loss is always checked)
        max_grad_norm: Clip gradients to this global norm, if set
        workers: Threads used for per-sample gradients within a batch
        log_every: Log the epoch loss every N epochs (0 logs only the last)
    """

    epochs: int = 100
    batch_size: int = 1
    shuffle: bool = True
    seed: Optional[int] = None
    convergence: str = "fixed"
    loss_threshold: Optional[float] = None
    check_finite: bool = True
    max_grad_norm: Optional[float] = None
    workers: int = 1
    log_every: int = 10

    def __post_init__(self):
        _positive_int("epochs", self.epochs)
        _positive_int("batch_size", self.batch_size)
        _positive_int("workers", self.workers)
        if self.convergence not in CONVERGENCE_POLICIES:
            raise InvalidConfiguration(
                f"convergence must be one of {CONVERGENCE_POLICIES}, got {self.convergence!r}"
            )
        if self.convergence == "threshold" and (
            self.loss_threshold is None or not self.loss_threshold > 0
        ):
            raise InvalidConfiguration(
                "The threshold policy needs a positive loss_threshold, "
                f"got {self.loss_threshold!r}"
            )
        if self.max_grad_norm is not None and not self.max_grad_norm > 0:
            raise InvalidConfiguration(
                f"max_grad_norm must be positive, got {self.max_grad_norm}"
            )
        if self.log_every < 0:
            raise InvalidConfiguration(f"log_every must be >= 0, got {self.log_every}")


class TrainerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    CONVERGED = "converged"
    STOPPED_BY_LIMIT = "stopped_by_limit"
    FAILED = "failed"


@dataclass(frozen=True)
class TrainingResult:
    """
    Outcome of a completed train() call.

    Attributes:
        state: CONVERGED or STOPPED_BY_LIMIT
        epochs_run: Number of epochs completed
        loss_history: Mean loss of every completed epoch
        batches_per_epoch: ceil(len(dataset) / batch_size)
        final_loss: Loss of the last completed epoch
    """

    state: TrainerState
    epochs_run: int
    loss_history: Tuple[float, ...]
    batches_per_epoch: int
    final_loss: float

    @property
    def converged(self) -> bool:
        return self.state is TrainerState.CONVERGED


class Trainer:
    """
    Runs training epochs over a dataset.

    Example usage:
        trainer = Trainer(TrainerConfig(epochs=200, batch_size=4, seed=0))
        result = trainer.train(network, dataset, "mse", SGD(learning_rate=0.5))
        print(result.final_loss)

    Attributes:
        config: TrainerConfig used when train() gets no overrides
        state: Current TrainerState
        history: Epoch losses of the current or most recent run
    """

    def __init__(self, config: Optional[TrainerConfig] = None):
        self.config = config if config is not None else TrainerConfig()
        self._state = TrainerState.IDLE
        self._history: List[float] = []

    @property
    def state(self) -> TrainerState:
        return self._state

    @property
    def history(self) -> Tuple[float, ...]:
        return tuple(self._history)

    def reset(self) -> None:
        """Return to IDLE and clear the history."""
        if self._state is TrainerState.RUNNING:
            raise InvalidConfiguration("Cannot reset a running trainer")
        self._state = TrainerState.IDLE
        self._history = []

    # ------------------------------------------------------------------
    # Training

    def train(
        self,
        network: Network,
        dataset: Dataset,
        loss: Union[str, Loss],
        optimizer: SGD,
        epochs: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> TrainingResult:
        """
        Train a network.

        Args:
            network: Network to train, updated in place
            dataset: Labeled samples
            loss: Loss name or instance
            optimizer: Optimizer that applies the updates
            epochs: Overrides config.epochs for this run
            batch_size: Overrides config.batch_size for this run

        Returns:
            TrainingResult describing the run

        Raises:
            InvalidConfiguration: For bad overrides or an unknown loss, or if
                                  the trainer is RUNNING or FAILED
            TrainingFailed: If a step raised ShapeMismatch, NonFiniteValue or
                            another engine error
        """
        if self._state is TrainerState.RUNNING:
            raise InvalidConfiguration("Trainer is already running")
        if self._state is TrainerState.FAILED:
            raise InvalidConfiguration("Trainer failed; call reset() before training again")

        config = self.config
        overrides = {}
        if epochs is not None:
            overrides["epochs"] = epochs
        if batch_size is not None:
            overrides["batch_size"] = batch_size
        if overrides:
            config = dataclasses.replace(config, **overrides)
        loss = get_loss(loss)

        batches = BatchIterator(
            dataset,
            config.batch_size,
            shuffle=config.shuffle,
            rng=np.random.default_rng(config.seed),
        )

        self._state = TrainerState.RUNNING
        self._history = []
        logger.info(
            "Training for up to {} epochs: {} samples, batch size {}, {} batches per epoch, "
            "loss {}",
            config.epochs,
            len(dataset),
            config.batch_size,
            len(batches),
            loss.name,
        )

        executor = ThreadPoolExecutor(max_workers=config.workers) if config.workers > 1 else None
        try:
            final_state = TrainerState.STOPPED_BY_LIMIT
            for epoch in range(config.epochs):
                epoch_loss = self._run_epoch(
                    epoch, network, batches, loss, optimizer, config, executor
                )
                self._history.append(epoch_loss)

                is_last = epoch == config.epochs - 1
                if is_last or (config.log_every and (epoch + 1) % config.log_every == 0):
                    logger.info("Epoch {}/{} - loss {:.6f}", epoch + 1, config.epochs, epoch_loss)

                if config.convergence == "threshold" and epoch_loss < config.loss_threshold:
                    final_state = TrainerState.CONVERGED
                    logger.info(
                        "Converged after {} epochs (loss {:.6f} < {})",
                        epoch + 1,
                        epoch_loss,
                        config.loss_threshold,
                    )
                    break
            else:
                logger.info("Stopped after the epoch limit of {}", config.epochs)
        except BaseException:
            self._state = TrainerState.FAILED
            raise
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        # The terminal state is carried by the result
        self._state = TrainerState.IDLE
        return TrainingResult(
            state=final_state,
            epochs_run=len(self._history),
            loss_history=tuple(self._history),
            batches_per_epoch=len(batches),
            final_loss=self._history[-1],
        )

    def _run_epoch(
        self,
        epoch: int,
        network: Network,
        batches: BatchIterator,
        loss: Loss,
        optimizer: SGD,
        config: TrainerConfig,
        executor: Optional[ThreadPoolExecutor],
    ) -> float:
        """Run one epoch and return its sample-weighted mean loss."""
        weighted_loss = 0.0
        sample_count = 0

        for batch_index, batch in enumerate(batches):
            try:
                batch_loss = self._train_step(network, batch, loss, optimizer, config, executor)
            except NeuralNetError as exc:
                logger.error(
                    "Training failed at epoch {}, batch {}: {}: {}",
                    epoch,
                    batch_index,
                    type(exc).__name__,
                    exc,
                )
                raise TrainingFailed(epoch, batch_index, exc) from exc

            weighted_loss += batch_loss * len(batch)
            sample_count += len(batch)

        return weighted_loss / sample_count

    def _train_step(
        self,
        network: Network,
        batch: Batch,
        loss: Loss,
        optimizer: SGD,
        config: TrainerConfig,
        executor: Optional[ThreadPoolExecutor],
    ) -> float:
        if executor is not None and len(batch) > 1:
            batch_loss, gradients = self._parallel_gradients(network, batch, loss, executor)
        else:
            batch_loss, gradients = _loss_and_gradients(
                network, loss, batch.inputs, batch.expected
            )

        if not math.isfinite(batch_loss):
            raise NonFiniteValue(f"Loss is {batch_loss}", where="loss")
        if config.check_finite and not gradients.is_finite():
            raise NonFiniteValue("Gradients contain NaN or Infinity", where="gradients")

        if config.max_grad_norm is not None:
            gradients = clip_gradient_norm(gradients, config.max_grad_norm)

        optimizer.apply(network, gradients)

        if config.check_finite:
            for position, layer in enumerate(network):
                layer.weight.check_finite(f"layer {position} weight")
                layer.bias.check_finite(f"layer {position} bias")

        return batch_loss

    @staticmethod
    def _parallel_gradients(
        network: Network, batch: Batch, loss: Loss, executor: ThreadPoolExecutor
    ) -> Tuple[float, GradientBundle]:
        """
        Per-sample gradients computed on worker threads.

        The losses are means over the batch, so the batch gradient is the
        mean of the per-sample gradients. Results are reduced in row order,
        never in completion order, so the sum is reproducible.
        """
        rows = range(len(batch))
        results = list(
            executor.map(
                lambda row: _loss_and_gradients(
                    network, loss, batch.inputs.rows([row]), batch.expected.rows([row])
                ),
                rows,
            )
        )
        scale = 1.0 / len(batch)
        batch_loss = sum(sample_loss for sample_loss, _ in results) * scale
        gradients = GradientBundle.sum(bundle for _, bundle in results).scale(scale)
        return batch_loss, gradients

    # ------------------------------------------------------------------
    # Evaluation

    def evaluate(self, network: Network, dataset: Dataset, loss: Union[str, Loss]) -> float:
        """Mean loss over the whole dataset, without updating the network."""
        loss = get_loss(loss)
        everything = dataset.batch(range(len(dataset)))
        return loss.compute(network.forward(everything.inputs), everything.expected)


def _loss_and_gradients(
    network: Network, loss: Loss, inputs, expected
) -> Tuple[float, GradientBundle]:
    output, caches = network.forward_train(inputs)
    loss_value = loss.compute(output, expected)
    gradients = network.backward_loss(loss, output, expected, caches)
    return loss_value, gradients
