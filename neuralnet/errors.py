"""
Error Types for the Neural Network Engine

Every failure the engine can detect is raised as a subclass of
NeuralNetError, so callers can catch the whole family at once or pick out
the specific kind they care about.

Classes:
    NeuralNetError: Base class for all engine errors
    ShapeMismatch: Operand or layer dimensions are incompatible
    NonFiniteValue: NaN or Infinity found in a loss, gradient or parameter
    InvalidConfiguration: A configuration value is out of range or unknown
    TrainingFailed: A training step failed, with epoch/batch context
"""

from typing import Optional, Sequence


class NeuralNetError(Exception):
    """Base class for all errors raised by the engine."""


class ShapeMismatch(NeuralNetError, ValueError):
    """
    Raised when operand or layer shapes are incompatible.

    Attributes:
        expected: The shape the operation required, if known
        actual: The shape it received, if known
    """

    def __init__(
        self,
        message: str,
        expected: Optional[Sequence[int]] = None,
        actual: Optional[Sequence[int]] = None,
    ):
        super().__init__(message)
        self.expected = tuple(expected) if expected is not None else None
        self.actual = tuple(actual) if actual is not None else None


class NonFiniteValue(NeuralNetError, ArithmeticError):
    """
    Raised when a loss, gradient or parameter contains NaN or Infinity.

    Attributes:
        where: Short label describing which value diverged
    """

    def __init__(self, message: str, where: str = ""):
        super().__init__(message)
        self.where = where


class InvalidConfiguration(NeuralNetError, ValueError):
    """Raised for bad configuration values or unknown named kinds."""


class TrainingFailed(NeuralNetError):
    """
    Raised by the Trainer when a step fails.

    The lower-level error is kept both as ``cause`` and as ``__cause__``.

    Attributes:
        epoch: Zero-based epoch index where the failure happened
        batch: Zero-based batch index within that epoch
        cause: The original error
    """

    def __init__(self, epoch: int, batch: int, cause: NeuralNetError):
        super().__init__(
            f"Training failed at epoch {epoch}, batch {batch}: "
            f"{type(cause).__name__}: {cause}"
        )
        self.epoch = epoch
        self.batch = batch
        self.cause = cause
