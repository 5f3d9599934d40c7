"""
Tests for activation functions.

Tests cover:
- Forward values of identity, sigmoid, tanh, relu and softmax
- Derivatives checked against numerical gradients
- Softmax Jacobian-vector product
- Registry lookup

Each activation is checked on both small and extreme inputs so the
stable formulations are exercised.
"""

import numpy as np
import pytest

from neuralnet.tensor import Tensor


def numerical_derivative(function, x, epsilon=1e-6):
    return (function(x + epsilon) - function(x - epsilon)) / (2 * epsilon)


class TestSigmoid:
    """
    Test suite for the logistic sigmoid.

    sigmoid(x) = 1 / (1 + e^-x), with derivative sigmoid(x) * (1 - sigmoid(x))
    """

    def test_sigmoid_known_values(self):
        """Sigmoid of 0 is 0.5 and it is symmetric around it."""
        from neuralnet.activations import sigmoid

        x = np.array([-2.0, 0.0, 2.0])
        output = sigmoid(x)

        assert output[1] == 0.5
        assert np.isclose(output[0] + output[2], 1.0)
        assert np.allclose(output, 1.0 / (1.0 + np.exp(-x)))

    def test_sigmoid_extreme_inputs(self):
        """Large magnitudes must saturate without overflow warnings."""
        from neuralnet.activations import sigmoid

        with np.errstate(over="raise"):
            output = sigmoid(np.array([-1000.0, 1000.0]))

        assert np.all(np.isfinite(output))
        assert output[0] == pytest.approx(0.0)
        assert output[1] == pytest.approx(1.0)

    def test_sigmoid_derivative_numerical(self):
        from neuralnet.activations import sigmoid, sigmoid_derivative

        x = np.linspace(-4.0, 4.0, 9)
        analytical = sigmoid_derivative(x, sigmoid(x))
        numerical = numerical_derivative(sigmoid, x)

        assert np.allclose(analytical, numerical, atol=1e-8), (
            "Sigmoid derivative should match numerical gradient"
        )


class TestTanh:
    """Test suite for tanh."""

    def test_tanh_derivative_numerical(self):
        from neuralnet.activations import tanh, tanh_derivative

        x = np.linspace(-3.0, 3.0, 13)
        analytical = tanh_derivative(x, tanh(x))
        numerical = numerical_derivative(tanh, x)

        assert np.allclose(analytical, numerical, atol=1e-8)

    def test_tanh_range(self):
        from neuralnet.activations import tanh

        output = tanh(np.array([-50.0, 0.0, 50.0]))
        assert np.all(output >= -1.0) and np.all(output <= 1.0)
        assert output[1] == 0.0


class TestReLU:
    """
    Test suite for ReLU activation.

    ReLU(x) = max(0, x)
    """

    def test_relu_positive_unchanged(self):
        from neuralnet.activations import relu

        x = np.array([1.0, 2.0, 3.0])
        assert np.array_equal(relu(x), x)

    def test_relu_negative_zero(self):
        from neuralnet.activations import relu

        assert np.array_equal(relu(np.array([-1.0, -2.0])), np.zeros(2))

    def test_relu_derivative_is_step(self):
        """Derivative is 1 for x > 0 and 0 otherwise, including x == 0."""
        from neuralnet.activations import relu, relu_derivative

        x = np.array([-1.0, 0.0, 2.0])
        assert relu_derivative(x, relu(x)).tolist() == [0.0, 0.0, 1.0]


class TestSoftmax:
    """
    Test suite for the row-wise softmax.

    softmax(x_i) = exp(x_i) / sum(exp(x_j))
    """

    def test_softmax_rows_sum_to_one(self):
        from neuralnet.activations import softmax

        logits = np.array([[1.0, 2.0, 3.0], [-1.0, 0.0, 5.0]])
        probabilities = softmax(logits)

        assert np.allclose(probabilities.sum(axis=1), 1.0)
        assert np.all(probabilities > 0)

    def test_softmax_numerical_stability(self):
        """Huge logits should not overflow."""
        from neuralnet.activations import softmax

        probabilities = softmax(np.array([[1000.0, 1001.0, 1002.0]]))

        assert np.all(np.isfinite(probabilities))
        assert np.allclose(probabilities, softmax(np.array([[0.0, 1.0, 2.0]])))

    def test_softmax_backward_numerical_gradient(self):
        """
        Verify the Jacobian-vector product against finite differences.

        The scalar loss is sum(g * softmax(z)) for a fixed upstream g.
        """
        from neuralnet.activations import SOFTMAX, softmax

        logits = np.array([[0.3, -1.2, 2.0]])
        upstream = np.array([[0.5, -1.0, 2.0]])
        probabilities = softmax(logits)

        epsilon = 1e-6
        numerical = np.zeros_like(logits)
        for i in range(logits.shape[1]):
            plus = logits.copy()
            plus[0, i] += epsilon
            minus = logits.copy()
            minus[0, i] -= epsilon
            numerical[0, i] = (
                np.sum(upstream * softmax(plus)) - np.sum(upstream * softmax(minus))
            ) / (2 * epsilon)

        analytical = SOFTMAX.backward(
            Tensor(upstream), Tensor(logits), Tensor(probabilities)
        )

        assert np.allclose(np.asarray(analytical), numerical, atol=1e-7), (
            "Softmax backward should match numerical gradient"
        )


class TestActivationObjects:
    """Test suite for the Activation wrapper and registry."""

    def test_forward_applies_function(self):
        from neuralnet.activations import RELU

        output = RELU.forward(Tensor([[-1.0, 2.0]]))
        assert output.tolist() == [[0.0, 2.0]]

    def test_identity_backward_passes_gradient(self):
        from neuralnet.activations import IDENTITY

        gradient = Tensor([1.0, -2.0])
        z = Tensor([3.0, 4.0])
        assert IDENTITY.backward(gradient, z, z) == gradient

    def test_backward_is_chain_rule(self):
        """backward() multiplies the upstream gradient by f'(z)."""
        from neuralnet.activations import TANH

        z = Tensor([0.5, -0.25])
        output = TANH.forward(z)
        upstream = Tensor([2.0, 3.0])

        expected = np.asarray(upstream) * (1.0 - np.tanh(np.asarray(z)) ** 2)
        result = TANH.backward(upstream, z, output)

        assert np.allclose(np.asarray(result), expected)

    def test_registry_returns_shared_instances(self):
        from neuralnet.activations import SIGMOID, get_activation

        assert get_activation("sigmoid") is SIGMOID
        assert get_activation("Sigmoid") is SIGMOID
        assert get_activation(SIGMOID) is SIGMOID

    def test_unknown_activation(self):
        from neuralnet.activations import get_activation
        from neuralnet.errors import InvalidConfiguration

        with pytest.raises(InvalidConfiguration, match="Available activations"):
            get_activation("swish")
