"""
Datasets and Batching

This module holds labeled training data and splits it into mini-batches.
Reading data from files is left to the caller, who builds a Dataset from
Tensors or arrays it has already loaded.

Classes:
    TrainingSample: One (input, expected output) pair
    Dataset: Ordered, shape-checked sequence of samples
    Batch: Stacked inputs and expected outputs for one optimizer step
    BatchIterator: Batched iteration over a Dataset with optional shuffling
"""

import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from neuralnet.errors import InvalidConfiguration, ShapeMismatch
from neuralnet.tensor import Tensor, as_tensor


@dataclass(frozen=True)
class TrainingSample:
    """
    One labeled example.

    Attributes:
        inputs: Input tensor, usually shape (input_size,)
        expected: Expected output tensor, usually shape (output_size,)
    """

    inputs: Tensor
    expected: Tensor

    def __post_init__(self):
        object.__setattr__(self, "inputs", as_tensor(self.inputs))
        object.__setattr__(self, "expected", as_tensor(self.expected))


class Dataset:
    """
    Ordered sequence of TrainingSamples.

    All inputs share one shape and all expected outputs share one shape.
    Order only matters when batches are drawn without shuffling.

    Usage:
        dataset = Dataset.from_arrays(
            [[0, 0], [0, 1], [1, 0], [1, 1]],
            [[0], [1], [1], [0]],
        )
        len(dataset)        # 4
        dataset[0].inputs   # Tensor([0.0, 0.0])
    """

    def __init__(self, samples: Sequence[TrainingSample]):
        """
        Initialize dataset from samples.

        Raises:
            InvalidConfiguration: If there are no samples
            ShapeMismatch: If sample shapes disagree
        """
        samples = [
            sample if isinstance(sample, TrainingSample) else TrainingSample(*sample)
            for sample in samples
        ]
        if not samples:
            raise InvalidConfiguration("A dataset needs at least one sample")

        input_shape = samples[0].inputs.shape
        expected_shape = samples[0].expected.shape
        for index, sample in enumerate(samples):
            if sample.inputs.shape != input_shape:
                raise ShapeMismatch(
                    f"Sample {index} input has shape {sample.inputs.shape}, "
                    f"expected {input_shape}",
                    expected=input_shape,
                    actual=sample.inputs.shape,
                )
            if sample.expected.shape != expected_shape:
                raise ShapeMismatch(
                    f"Sample {index} expected output has shape {sample.expected.shape}, "
                    f"expected {expected_shape}",
                    expected=expected_shape,
                    actual=sample.expected.shape,
                )

        self._samples: Tuple[TrainingSample, ...] = tuple(samples)

    @classmethod
    def from_arrays(cls, inputs, targets) -> "Dataset":
        """
        Build a dataset from row-aligned arrays.

        Args:
            inputs: Array-like of shape (num_samples, input_size)
            targets: Array-like of shape (num_samples, output_size)

        Raises:
            ShapeMismatch: If the row counts differ
        """
        inputs = np.asarray(inputs, dtype=np.float64)
        targets = np.asarray(targets, dtype=np.float64)
        if inputs.shape[0] != targets.shape[0]:
            raise ShapeMismatch(
                f"Got {inputs.shape[0]} inputs but {targets.shape[0]} targets",
                expected=(inputs.shape[0],),
                actual=(targets.shape[0],),
            )
        return cls(
            [TrainingSample(Tensor(x), Tensor(y)) for x, y in zip(inputs, targets)]
        )

    def __len__(self) -> int:
        return len(self._samples)

    def __getitem__(self, index: int) -> TrainingSample:
        return self._samples[index]

    def __iter__(self) -> Iterator[TrainingSample]:
        return iter(self._samples)

    @property
    def input_size(self) -> int:
        return self._samples[0].inputs.shape[-1]

    @property
    def output_size(self) -> int:
        return self._samples[0].expected.shape[-1]

    def batch(self, indices: Sequence[int]) -> "Batch":
        """Stack the samples at the given indices into one Batch."""
        return Batch(
            inputs=Tensor.stack(self._samples[i].inputs for i in indices),
            expected=Tensor.stack(self._samples[i].expected for i in indices),
            indices=tuple(int(i) for i in indices),
        )


@dataclass(frozen=True)
class Batch:
    """
    Stacked samples for one optimizer step.

    Attributes:
        inputs: Shape (batch, input_size)
        expected: Shape (batch, output_size)
        indices: Dataset positions of the rows, in row order
    """

    inputs: Tensor
    expected: Tensor
    indices: Tuple[int, ...]

    def __len__(self) -> int:
        return len(self.indices)


class BatchIterator:
    """
    Batched iteration over a Dataset.

    Each pass yields ceil(N / batch_size) batches. Every batch is full except
    possibly the last, which holds the remaining N mod batch_size samples.

    Usage:
        batches = BatchIterator(dataset, batch_size=32, shuffle=True, rng=rng)

        for epoch in range(num_epochs):
            for batch in batches:
                # Training step
                pass
    """

    def __init__(
        self,
        dataset: Dataset,
        batch_size: int,
        shuffle: bool = False,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize BatchIterator.

        Args:
            dataset: Dataset to draw from
            batch_size: Number of samples per batch, must be positive
            shuffle: Whether to permute the sample order on every pass
            rng: Generator used for shuffling. A fresh unseeded generator is
                 used if None.

        Raises:
            InvalidConfiguration: If batch_size is not a positive integer
        """
        if (
            isinstance(batch_size, bool)
            or not isinstance(batch_size, (int, np.integer))
            or batch_size <= 0
        ):
            raise InvalidConfiguration(
                f"batch_size must be a positive integer, got {batch_size!r}"
            )
        self.dataset = dataset
        self.batch_size = int(batch_size)
        self.shuffle = shuffle
        self.rng = rng if rng is not None else np.random.default_rng()

    def order(self) -> np.ndarray:
        """Sample order for one pass, shuffled if requested."""
        indices = np.arange(len(self.dataset))
        if self.shuffle:
            self.rng.shuffle(indices)
        return indices

    def partition(self, indices: Sequence[int]) -> List[Sequence[int]]:
        """Split an index order into consecutive batch-sized chunks."""
        return [
            indices[start : start + self.batch_size]
            for start in range(0, len(indices), self.batch_size)
        ]

    def __iter__(self) -> Iterator[Batch]:
        for batch_indices in self.partition(self.order()):
            yield self.dataset.batch(batch_indices)

    def __len__(self) -> int:
        return math.ceil(len(self.dataset) / self.batch_size)
