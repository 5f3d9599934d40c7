"""
Feed-Forward Neural Networks from First Principles

This package builds and trains fully connected networks on top of a small,
shape-checked tensor type backed by NumPy. Forward propagation, reverse-mode
gradients and the optimizer update rule are all implemented here.

Modules:
    tensor: Immutable float64 Tensor with shape-checked operations
    activations: identity, sigmoid, tanh, relu and softmax with derivatives
    initializers: Weight initialization policies (zero, uniform, normal)
    layers: Dense layer with forward and backward passes
    network: Network of chained Dense layers and the GradientBundle
    topology: Fluent builder for layer specifications
    losses: Mean squared error and cross-entropy losses
    optimizer: SGD with optional momentum, gradient clipping
    data: Datasets and mini-batch iteration
    trainer: Epoch loop with convergence policies
    serialization: Saving and loading networks
    gradcheck: Numerical gradient checking
    errors: ShapeMismatch, NonFiniteValue, InvalidConfiguration, TrainingFailed
"""

__version__ = "1.0.0"
__author__ = "neuralnet contributors"
