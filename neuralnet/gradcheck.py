"""
Numerical gradient checking.

Compares the analytic gradients from Network.backward with central
differences:

    d_loss/d_theta ~= (loss(theta + eps) - loss(theta - eps)) / (2 * eps)

This costs two forward passes per parameter, so it is meant for small
networks in tests and debugging.
"""

from typing import List

import numpy as np

from neuralnet.losses import get_loss
from neuralnet.network import GradientBundle, Network, ParameterGradient
from neuralnet.tensor import Tensor, as_tensor


def _central_difference(parameter: np.ndarray, evaluate, epsilon: float) -> np.ndarray:
    """Estimate d_loss/d_parameter. evaluate(values) returns the loss."""
    gradient = np.zeros_like(parameter)
    for index in np.ndindex(parameter.shape):
        original = parameter[index]

        parameter[index] = original + epsilon
        loss_plus = evaluate(parameter)
        parameter[index] = original - epsilon
        loss_minus = evaluate(parameter)
        parameter[index] = original

        gradient[index] = (loss_plus - loss_minus) / (2.0 * epsilon)
    return gradient


def numerical_gradients(
    network: Network, loss, inputs, expected, epsilon: float = 1e-5
) -> GradientBundle:
    """
    Central-difference estimate of every weight and bias gradient.

    The network's parameters are restored before returning, even on error.

    Args:
        network: Network to check
        loss: Loss name or instance
        inputs: Batch of inputs
        expected: Matching expected outputs
        epsilon: Perturbation size

    Returns:
        GradientBundle in the same layout as Network.backward's
    """
    loss = get_loss(loss)
    inputs = as_tensor(inputs)
    expected = as_tensor(expected)
    saved = network.get_parameters()
    gradients: List[ParameterGradient] = []

    try:
        for layer, (weight, bias) in zip(network, saved):
            weight_values = weight.to_numpy()
            bias_values = bias.to_numpy()

            def with_weight(values, layer=layer, bias=bias):
                layer.set_parameters(Tensor(values), bias)
                return loss.compute(network.forward(inputs), expected)

            weight_gradient = _central_difference(weight_values, with_weight, epsilon)
            layer.set_parameters(weight, bias)

            def with_bias(values, layer=layer, weight=weight):
                layer.set_parameters(weight, Tensor(values))
                return loss.compute(network.forward(inputs), expected)

            bias_gradient = _central_difference(bias_values, with_bias, epsilon)
            layer.set_parameters(weight, bias)

            gradients.append(ParameterGradient(Tensor(weight_gradient), Tensor(bias_gradient)))
    finally:
        network.set_parameters(saved)

    return GradientBundle(gradients)


def check_gradients(
    network: Network,
    loss,
    inputs,
    expected,
    epsilon: float = 1e-5,
    floor: float = 1e-4,
) -> float:
    """
    Largest relative error between analytic and numerical gradients.

    The error for each parameter is |a - n| / max(|a| + |n|, floor). The
    floor keeps near-zero gradients from turning rounding noise into a
    large relative error.

    Returns:
        Maximum error over every weight and bias of every layer
    """
    loss = get_loss(loss)
    inputs = as_tensor(inputs)
    expected = as_tensor(expected)

    output, caches = network.forward_train(inputs)
    analytic = network.backward_loss(loss, output, expected, caches)
    numerical = numerical_gradients(network, loss, inputs, expected, epsilon=epsilon)

    worst = 0.0
    for analytic_gradient, numerical_gradient in zip(analytic, numerical):
        for a, n in (
            (analytic_gradient.weight, numerical_gradient.weight),
            (analytic_gradient.bias, numerical_gradient.bias),
        ):
            a = np.asarray(a)
            n = np.asarray(n)
            error = np.abs(a - n) / np.maximum(np.abs(a) + np.abs(n), floor)
            worst = max(worst, float(np.max(error)))
    return worst
