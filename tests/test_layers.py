"""
Tests for Dense layers.

Tests cover:
- LayerSpec validation
- Dense: initialization, forward pass, backward pass
- Parameter replacement and shape checks
"""

import numpy as np
import pytest

from neuralnet.errors import InvalidConfiguration, ShapeMismatch
from neuralnet.tensor import Tensor


class TestLayerSpec:
    """Test suite for LayerSpec validation."""

    def test_valid_spec(self):
        from neuralnet.layers import LayerSpec

        spec = LayerSpec(3, 2, activation="tanh")
        assert spec.input_size == 3
        assert spec.output_size == 2

    @pytest.mark.parametrize("size", [0, -1, 2.5, True])
    def test_invalid_sizes(self, size):
        from neuralnet.layers import LayerSpec

        with pytest.raises(InvalidConfiguration):
            LayerSpec(size, 2)
        with pytest.raises(InvalidConfiguration):
            LayerSpec(2, size)

    def test_unknown_kinds_fail_at_construction(self):
        from neuralnet.layers import LayerSpec

        with pytest.raises(InvalidConfiguration):
            LayerSpec(2, 2, activation="softplus")
        with pytest.raises(InvalidConfiguration):
            LayerSpec(2, 2, weight_init="orthogonal")


class TestDense:
    """
    Test suite for the Dense (fully connected) layer.

    Dense computes: y = f(x @ W + b)
    where W has shape (input_size, output_size)
    """

    def test_parameter_shapes(self):
        """Weight is (in, out) and bias is (out,)."""
        from neuralnet.layers import Dense

        layer = Dense(4, 3, rng=np.random.default_rng(0))

        assert layer.weight.shape == (4, 3)
        assert layer.bias.shape == (3,)
        assert layer.parameter_count() == 15

    def test_default_bias_is_zero(self):
        from neuralnet.layers import Dense

        layer = Dense(4, 3, rng=np.random.default_rng(0))
        assert layer.bias == Tensor.zeros((3,))

    def test_same_seed_same_weights(self):
        from neuralnet.layers import Dense

        first = Dense(5, 4, rng=np.random.default_rng(42))
        second = Dense(5, 4, rng=np.random.default_rng(42))

        assert first.weight == second.weight

    def test_output_shape(self):
        from neuralnet.layers import Dense

        layer = Dense(8, 16, activation="relu", rng=np.random.default_rng(0))
        output, cache = layer.forward(Tensor(np.random.randn(4, 8)))

        assert output.shape == (4, 16)
        assert cache.pre_activation.shape == (4, 16)
        assert cache.output is output

    def test_single_sample_forward(self):
        """A 1-D input is a single sample and gives a 1-D output."""
        from neuralnet.layers import Dense

        layer = Dense(3, 2, rng=np.random.default_rng(0))
        output, _ = layer.forward(Tensor([1.0, 2.0, 3.0]))

        assert output.shape == (2,)

    def test_identity_layer_is_exact_matrix_product(self):
        """With identity activation and zero bias, forward(x) == x @ W exactly."""
        from neuralnet.layers import Dense

        layer = Dense(
            3, 2, activation="identity", weight_init="normal", rng=np.random.default_rng(1)
        )
        x = Tensor(np.random.default_rng(2).normal(size=(5, 3)))

        output, _ = layer.forward(x)

        assert output == x @ layer.weight

    def test_forward_matches_manual_computation(self):
        from neuralnet.layers import Dense

        layer = Dense(2, 2, activation="sigmoid")
        layer.set_parameters(Tensor([[1.0, -1.0], [0.5, 2.0]]), Tensor([0.1, -0.2]))
        x = np.array([[1.0, 2.0], [-1.0, 0.5]])

        output, _ = layer.forward(Tensor(x))

        z = x @ np.array([[1.0, -1.0], [0.5, 2.0]]) + np.array([0.1, -0.2])
        assert np.allclose(np.asarray(output), 1.0 / (1.0 + np.exp(-z)))

    def test_wrong_input_width(self):
        from neuralnet.layers import Dense

        layer = Dense(3, 2)
        with pytest.raises(ShapeMismatch) as error:
            layer.forward(Tensor.zeros((4, 5)))

        assert error.value.expected == (3,)

    def test_backward_shapes(self):
        from neuralnet.layers import Dense

        layer = Dense(4, 3, activation="tanh", rng=np.random.default_rng(0))
        output, cache = layer.forward(Tensor(np.random.randn(6, 4)))

        gradient = layer.backward(Tensor.full(output.shape, 1.0), cache)

        assert gradient.input_gradient.shape == (6, 4)
        assert gradient.weight_gradient.shape == (4, 3)
        assert gradient.bias_gradient.shape == (3,)

    def test_backward_single_sample(self):
        """A 1-D pass gives full-shape parameter gradients and a 1-D input gradient."""
        from neuralnet.layers import Dense

        layer = Dense(3, 2, activation="sigmoid", rng=np.random.default_rng(0))
        output, cache = layer.forward(Tensor([0.5, -1.0, 2.0]))

        input_gradient, weight_gradient, bias_gradient = layer.backward(
            Tensor.full(output.shape, 1.0), cache
        )

        assert input_gradient.shape == (3,)
        assert weight_gradient.shape == (3, 2)
        assert bias_gradient.shape == (2,)

    def test_backward_identity_formulas(self):
        """
        For identity activation:
            dW = x^T @ g,  db = sum(g),  dx = g @ W^T
        """
        from neuralnet.layers import Dense

        rng = np.random.default_rng(3)
        layer = Dense(3, 2, activation="identity", rng=rng)
        x = rng.normal(size=(4, 3))
        g = rng.normal(size=(4, 2))

        _, cache = layer.forward(Tensor(x))
        gradient = layer.backward(Tensor(g), cache)

        weight = np.asarray(layer.weight)
        np.testing.assert_allclose(np.asarray(gradient.weight_gradient), x.T @ g)
        np.testing.assert_allclose(np.asarray(gradient.bias_gradient), g.sum(axis=0))
        np.testing.assert_allclose(np.asarray(gradient.input_gradient), g @ weight.T)

    def test_backward_rejects_wrong_gradient_shape(self):
        from neuralnet.layers import Dense

        layer = Dense(3, 2)
        _, cache = layer.forward(Tensor.zeros((4, 3)))

        with pytest.raises(ShapeMismatch):
            layer.backward(Tensor.zeros((4, 3)), cache)

    def test_set_parameters_checks_shapes(self):
        from neuralnet.layers import Dense

        layer = Dense(3, 2)
        with pytest.raises(ShapeMismatch):
            layer.set_parameters(Tensor.zeros((2, 3)), Tensor.zeros((2,)))
        with pytest.raises(ShapeMismatch):
            layer.set_parameters(Tensor.zeros((3, 2)), Tensor.zeros((3,)))

    def test_spec_round_trip(self):
        from neuralnet.layers import Dense, LayerSpec

        spec = LayerSpec(3, 2, activation="relu", weight_init="normal")
        layer = Dense.from_spec(spec, rng=np.random.default_rng(0))
        rebuilt = layer.spec()

        assert rebuilt.input_size == 3
        assert rebuilt.output_size == 2
        assert rebuilt.activation.name == "relu"
