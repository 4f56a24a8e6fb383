"""Tests for AutogradModelEvaluator."""

import pytest
import torch

from pseudotransient.model_evaluator import (
    AutogradModelEvaluator,
    ModelEvaluator,
    check_parameters,
)


def _residual(x, x_dot, p, t):
    # f = x_dot + k * x^3 + x - s
    k, s = p[0], p[1]
    return x_dot + k * x**3 + x - s


def _model():
    return AutogradModelEvaluator(
        _residual,
        parameters=[
            torch.tensor(2.0, dtype=torch.float64),
            torch.tensor([1.0, 3.0], dtype=torch.float64),
        ],
        responses=[
            lambda x, p: (x**2).sum(),
            lambda x, p: torch.stack([x[0] * p[0][0], x[1]]),
        ],
    )


class TestAutogradModelEvaluator:
    def test_scalar_parameters_are_promoted(self):
        model = _model()
        p = model.nominal_parameters()
        assert p[0].shape == (1,)
        assert model.num_parameters == 2
        assert model.num_responses == 2

    def test_jacobian_matches_analytic(self):
        model = _model()
        p = model.nominal_parameters()
        x = torch.tensor([0.5, -1.0], dtype=torch.float64)
        x_dot = torch.zeros(2, dtype=torch.float64)

        W = model.jacobian(x, x_dot, p, 0.0, 4.0, 1.0)

        expected = torch.diag(4.0 + 3.0 * 2.0 * x**2 + 1.0)
        assert torch.allclose(W, expected)

    def test_jacobian_mass_only(self):
        model = _model()
        x = torch.tensor([0.5, -1.0], dtype=torch.float64)

        W = model.jacobian(
            x, torch.zeros_like(x), model.nominal_parameters(), 0.0, 1.0, 0.0
        )

        assert torch.allclose(W, torch.eye(2, dtype=torch.float64))

    def test_scalar_response_is_promoted(self):
        model = _model()
        x = torch.tensor([1.0, 2.0], dtype=torch.float64)

        g = model.response(x, model.nominal_parameters())

        assert g.shape == (1,)
        assert torch.allclose(g, torch.tensor([5.0], dtype=torch.float64))

    def test_response_derivatives(self):
        model = _model()
        p = model.nominal_parameters()
        x = torch.tensor([1.0, 2.0], dtype=torch.float64)

        dg_dx, dg_dp = model.response_derivatives(
            x, p, response_index=1, parameter_index=0
        )

        assert dg_dx.shape == (2, 2)
        assert dg_dp.shape == (2, 1)
        assert torch.allclose(
            dg_dx, torch.tensor([[2.0, 0.0], [0.0, 1.0]], dtype=torch.float64)
        )
        assert torch.allclose(
            dg_dp, torch.tensor([[1.0], [0.0]], dtype=torch.float64)
        )

    def test_parameter_jacobian(self):
        model = _model()
        p = model.nominal_parameters()
        x = torch.tensor([1.0, 2.0], dtype=torch.float64)

        df_dk = model.parameter_jacobian(x, p, parameter_index=0)
        df_ds = model.parameter_jacobian(x, p, parameter_index=1)

        assert torch.allclose(
            df_dk, torch.tensor([[1.0], [8.0]], dtype=torch.float64)
        )
        assert torch.allclose(df_ds, -torch.eye(2, dtype=torch.float64))


class TestModelEvaluatorDefaults:
    def test_sensitivity_methods_not_implemented(self):
        class ResidualOnly(ModelEvaluator):
            def residual(self, x, x_dot, p, t):
                return x_dot + x

            def jacobian(self, x, x_dot, p, t, alpha, beta):
                return (alpha + beta) * torch.eye(x.numel(), dtype=x.dtype)

        model = ResidualOnly()
        x = torch.zeros(2, dtype=torch.float64)

        assert model.num_parameters == 0
        assert model.nominal_parameters() == []
        with pytest.raises(NotImplementedError):
            model.response(x, [])
        with pytest.raises(NotImplementedError):
            model.response_derivatives(x, [])
        with pytest.raises(NotImplementedError):
            model.parameter_jacobian(x, [])


class TestCheckParameters:
    def test_wrong_count_raises(self):
        with pytest.raises(ValueError, match="Expected 2"):
            check_parameters(_model(), [torch.ones(1)])

    def test_non_tensor_raises(self):
        with pytest.raises(TypeError, match="Parameter vector 1"):
            check_parameters(_model(), [torch.ones(1), [1.0, 3.0]])

    def test_returns_list(self):
        p = check_parameters(_model(), (torch.ones(1), torch.ones(2)))
        assert isinstance(p, list)
