"""
Loss Functions

A loss turns a batch of predictions and expected outputs into one scalar, and
gives the gradient of that scalar with respect to each prediction. Cross-entropy
losses also give the combined derivative through a sigmoid or softmax output
(output_delta), which Network.backward_loss uses in place of the chained form
so that saturated outputs keep their gradient.

Losses are stateless and shared through the LOSSES registry.

Classes:
    Loss: Base class (compute, gradient, output_delta)
    MeanSquaredError: mean((p - y)^2)
    BinaryCrossEntropy: Bernoulli cross-entropy per element
    CrossEntropy: Categorical cross-entropy per row

Functions:
    get_loss: Resolve a loss by name
"""

from typing import Dict, Optional, Union

import numpy as np

from neuralnet.errors import InvalidConfiguration, ShapeMismatch
from neuralnet.tensor import Tensor, as_tensor

# Probabilities are clipped into [EPSILON, 1 - EPSILON] before log() and division
EPSILON = 1e-12


class Loss:
    """Base class for losses."""

    name = "loss"

    def compute(self, predicted, expected) -> float:
        raise NotImplementedError

    def gradient(self, predicted, expected) -> Tensor:
        raise NotImplementedError

    def output_delta(self, predicted, expected, activation) -> Optional[Tensor]:
        """
        Gradient with respect to the output layer's pre-activation.

        Losses that pair with a particular output activation override this
        with the combined derivative, which stays accurate when that
        activation saturates. None means there is no combined form and the
        caller should chain gradient() through the activation instead.

        Args:
            predicted: Output of the final layer (after its activation)
            expected: Target values, same shape as predicted
            activation: The final layer's Activation
        """
        return None

    def __call__(self, predicted, expected) -> float:
        return self.compute(predicted, expected)

    @staticmethod
    def _pair(predicted, expected):
        predicted = as_tensor(predicted)
        expected = as_tensor(expected)
        if predicted.shape != expected.shape:
            raise ShapeMismatch(
                f"Predicted shape {predicted.shape} does not match expected shape "
                f"{expected.shape}",
                expected=expected.shape,
                actual=predicted.shape,
            )
        return predicted, expected

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MeanSquaredError(Loss):
    """
    Mean squared error.

    Formula:
        loss = mean((p - y)^2)
        d_loss/d_p = 2 * (p - y) / element_count
    """

    name = "mse"

    def compute(self, predicted, expected) -> float:
        predicted, expected = self._pair(predicted, expected)
        difference = predicted - expected
        return difference.multiply(difference).mean()

    def gradient(self, predicted, expected) -> Tensor:
        predicted, expected = self._pair(predicted, expected)
        return (predicted - expected).scale(2.0 / predicted.size)


class BinaryCrossEntropy(Loss):
    """
    Bernoulli cross-entropy averaged over all elements.

    Each prediction is read as the probability that the matching target is 1,
    which suits sigmoid outputs.

    Formula:
        loss = -mean(y * log(p) + (1 - y) * log(1 - p))
        d_loss/d_p = (p - y) / (p * (1 - p)) / element_count

    Numerical Stability:
        p is clipped to [EPSILON, 1 - EPSILON] in both formulas, so a
        saturated sigmoid gives a large but finite loss and gradient.
        Training through a sigmoid output uses output_delta() instead,
        which never divides by p.
    """

    name = "binary_cross_entropy"

    def compute(self, predicted, expected) -> float:
        predicted, expected = self._pair(predicted, expected)
        p = np.clip(np.asarray(predicted), EPSILON, 1.0 - EPSILON)
        y = np.asarray(expected)
        log_likelihood = y * np.log(p) + (1.0 - y) * np.log(1.0 - p)
        return float(-np.mean(log_likelihood))

    def gradient(self, predicted, expected) -> Tensor:
        predicted, expected = self._pair(predicted, expected)
        p = np.clip(np.asarray(predicted), EPSILON, 1.0 - EPSILON)
        y = np.asarray(expected)
        return Tensor._wrap((p - y) / (p * (1.0 - p)) / p.size)

    def output_delta(self, predicted, expected, activation) -> Optional[Tensor]:
        """
        Combined sigmoid and cross-entropy derivative.

        Mathematical Derivation:
            p = sigmoid(z),  dp/dz = p * (1 - p)
            d_loss/dz = (p - y) / (p * (1 - p)) * p * (1 - p) / n
                      = (p - y) / n
        """
        if activation.name != "sigmoid":
            return None
        predicted, expected = self._pair(predicted, expected)
        return (predicted - expected).scale(1.0 / predicted.size)


class CrossEntropy(Loss):
    """
    Categorical cross-entropy for normalised outputs.

    Rows of the prediction are probability distributions (softmax output) and
    rows of the target are one-hot or soft labels.

    Formula:
        loss = -sum(y * log(p)) / rows
        d_loss/d_p = -y / p / rows

    A single-column prediction is one sigmoid unit, where the categorical
    form would ignore the negative class. In that case the Bernoulli form
    of BinaryCrossEntropy is used instead.
    """

    name = "cross_entropy"

    _binary = BinaryCrossEntropy()

    def compute(self, predicted, expected) -> float:
        predicted, expected = self._pair(predicted, expected)
        if predicted.shape[-1] == 1:
            return self._binary.compute(predicted, expected)

        p = np.clip(np.asarray(predicted), EPSILON, 1.0)
        y = np.asarray(expected)
        rows = _row_count(predicted)
        return float(-np.sum(y * np.log(p)) / rows)

    def gradient(self, predicted, expected) -> Tensor:
        predicted, expected = self._pair(predicted, expected)
        if predicted.shape[-1] == 1:
            return self._binary.gradient(predicted, expected)

        p = np.clip(np.asarray(predicted), EPSILON, 1.0)
        y = np.asarray(expected)
        rows = _row_count(predicted)
        return Tensor._wrap(-y / p / rows)

    def output_delta(self, predicted, expected, activation) -> Optional[Tensor]:
        """
        Combined derivative for softmax (or sigmoid) outputs.

        Mathematical Derivation:
            Softmax, s = softmax(z):
                d_loss/dz_i = sum_j(-y_j / s_j * s_j * (delta_ij - s_i)) / rows
                            = (s_i * sum_j(y_j) - y_i) / rows
            which is (s - y) / rows for one-hot or normalised labels.

            Sigmoid per column, dp/dz = p * (1 - p):
                d_loss/dz = -y * (1 - p) / rows
        """
        predicted, expected = self._pair(predicted, expected)
        if predicted.shape[-1] == 1:
            return self._binary.output_delta(predicted, expected, activation)

        p = np.asarray(predicted)
        y = np.asarray(expected)
        rows = _row_count(predicted)
        if activation.name == "softmax":
            label_mass = np.sum(y, axis=-1, keepdims=True)
            return Tensor._wrap((p * label_mass - y) / rows)
        if activation.name == "sigmoid":
            return Tensor._wrap(-y * (1.0 - p) / rows)
        return None


def _row_count(tensor: Tensor) -> int:
    return tensor.shape[0] if tensor.ndim > 1 else 1


MSE = MeanSquaredError()
BINARY_CROSS_ENTROPY = BinaryCrossEntropy()
CROSS_ENTROPY = CrossEntropy()

LOSSES: Dict[str, Loss] = {
    "mse": MSE,
    "mean_squared_error": MSE,
    "binary_cross_entropy": BINARY_CROSS_ENTROPY,
    "bce": BINARY_CROSS_ENTROPY,
    "cross_entropy": CROSS_ENTROPY,
    "ce": CROSS_ENTROPY,
}


def get_loss(kind: Union[str, Loss]) -> Loss:
    """
    Resolve a loss by name.

    Raises:
        InvalidConfiguration: If the name is not registered
    """
    if isinstance(kind, Loss):
        return kind
    if isinstance(kind, str) and kind.lower() in LOSSES:
        return LOSSES[kind.lower()]
    available = ", ".join(sorted(LOSSES))
    raise InvalidConfiguration(f"Unknown loss {kind!r}. Available losses: {available}")
