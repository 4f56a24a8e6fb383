"""Tests for the pseudo-transient continuation driver."""

import logging
import math

import pytest
import torch

from pseudotransient.integration import (
    ConvergenceError,
    DivergenceError,
    JacobianCache,
    MaxStepsExceeded,
    ODESolverError,
    PseudoTransientSolution,
    StepSizeError,
    TimeStepControl,
    pseudo_transient,
)
from pseudotransient.model_evaluator import (
    AutogradModelEvaluator,
    LinearModelEvaluator,
    ModelEvaluator,
)


def _stable_linear_model():
    A = torch.tensor(
        [[3.0, 1.0, 0.0], [-1.0, 2.0, 0.5], [0.0, 0.0, 1.0]],
        dtype=torch.float64,
    )
    b = torch.tensor([1.0, -2.0, 0.5], dtype=torch.float64)
    return LinearModelEvaluator(A, b=b)


class _NaNModel(ModelEvaluator):
    """Model whose implicit steps can never be solved."""

    def residual(self, x, x_dot, p, t):
        return x_dot + x * math.nan

    def jacobian(self, x, x_dot, p, t, alpha, beta):
        return (alpha + beta) * torch.eye(x.numel(), dtype=x.dtype)


class TestPseudoTransient:
    def test_linear_steady_state(self):
        """Converges to A^{-1} b from an arbitrary start."""
        model = _stable_linear_model()
        x0 = torch.tensor([10.0, -4.0, 7.0], dtype=torch.float64)

        sol = pseudo_transient(model, x0)

        assert isinstance(sol, PseudoTransientSolution)
        assert sol.success
        assert torch.allclose(sol.x, model.steady_state(), atol=1e-9)
        assert torch.linalg.norm(sol.x_dot) <= 1e-10

    def test_history_records_accepted_steps(self):
        model = _stable_linear_model()
        x0 = torch.zeros(3, dtype=torch.float64)

        sol = pseudo_transient(model, x0, t0=5.0)

        history = sol.history
        assert history.num_samples == sol.n_steps + 1
        assert history.t[0].item() == 5.0
        assert torch.all(history.t[1:] > history.t[:-1])
        assert torch.equal(history.x[0], x0)
        assert torch.equal(history.x[-1], sol.x)
        assert history.t_final == pytest.approx(sol.t)

    def test_step_size_grows(self):
        model = _stable_linear_model()
        control = TimeStepControl(dt0=0.01, dt_growth=3.0)

        sol = pseudo_transient(
            model, torch.ones(3, dtype=torch.float64), control=control
        )

        dt = sol.history.dt[1:]
        assert dt[0].item() == pytest.approx(0.01)
        assert torch.all(dt[1:] > dt[:-1])

    def test_constant_jacobian_factorized_once_for_fixed_step(self):
        model = _stable_linear_model()
        control = TimeStepControl(dt0=1.0, dt_growth=1.0)
        cache = JacobianCache()

        sol = pseudo_transient(
            model,
            torch.ones(3, dtype=torch.float64),
            control=control,
            jacobian_cache=cache,
        )

        assert sol.success
        assert sol.n_steps > 1
        assert sol.n_factorizations == 1
        assert cache.key == (1.0, 1.0)

    def test_nonlinear_model(self):
        """x_dot + x^3 + x - 2 = 0 has the steady state x = 1."""
        model = AutogradModelEvaluator(
            lambda x, x_dot, p, t: x_dot + x**3 + x - 2.0
        )

        sol = pseudo_transient(model, torch.tensor([3.0], dtype=torch.float64))

        assert sol.success
        assert torch.allclose(
            sol.x, torch.tensor([1.0], dtype=torch.float64), atol=1e-9
        )

    def test_multi_column_state(self):
        model = _stable_linear_model()
        x0 = torch.randn(3, 4, dtype=torch.float64)

        sol = pseudo_transient(model, x0)

        expected = model.steady_state().unsqueeze(-1).expand(3, 4)
        assert sol.x.shape == (3, 4)
        assert torch.allclose(sol.x, expected, atol=1e-9)
        assert sol.history.x.shape[1:] == (3, 4)

    def test_stats(self):
        sol = pseudo_transient(
            _stable_linear_model(), torch.ones(3, dtype=torch.float64)
        )
        assert sol.stats["n_steps"] == sol.n_steps
        assert sol.stats["n_rejected"] == 0
        assert sol.n_newton_iterations >= sol.n_steps


class TestPseudoTransientFailures:
    def test_max_steps_exceeded(self):
        control = TimeStepControl(max_steps=3)

        with pytest.raises(MaxStepsExceeded, match="3 steps"):
            pseudo_transient(
                _stable_linear_model(),
                torch.ones(3, dtype=torch.float64),
                control=control,
            )

    def test_t_max_exhausted(self):
        control = TimeStepControl(t_max=0.5)

        with pytest.raises(MaxStepsExceeded, match="t_max"):
            pseudo_transient(
                _stable_linear_model(),
                torch.ones(3, dtype=torch.float64),
                control=control,
            )

    def test_divergence(self):
        """x_dot = x grows without bound when dt stays small."""
        model = LinearModelEvaluator(-torch.eye(1, dtype=torch.float64))
        control = TimeStepControl(
            dt0=0.1, dt_max=0.1, divergence_threshold=1e6, max_steps=500
        )

        with pytest.raises(DivergenceError) as exc_info:
            pseudo_transient(
                model, torch.ones(1, dtype=torch.float64), control=control
            )

        assert exc_info.value.norm > 1e6
        assert "unstable" in str(exc_info.value)

    def test_step_size_error(self):
        control = TimeStepControl(dt0=0.1, dt_min=1e-3)

        with pytest.raises(StepSizeError) as exc_info:
            pseudo_transient(
                _NaNModel(), torch.ones(2, dtype=torch.float64), control=control
            )

        assert isinstance(exc_info.value.__cause__, ConvergenceError)

    def test_no_throw_reports_failure(self):
        control = TimeStepControl(max_steps=2)

        sol = pseudo_transient(
            _stable_linear_model(),
            torch.ones(3, dtype=torch.float64),
            control=control,
            throw=False,
        )

        assert not sol.success
        assert isinstance(sol.error, MaxStepsExceeded)
        assert isinstance(sol.error, ODESolverError)
        assert sol.message == str(sol.error)
        assert sol.n_steps == 2

    def test_rejected_steps_are_counted(self):
        control = TimeStepControl(dt0=0.1, dt_min=1e-2)

        sol = pseudo_transient(
            _NaNModel(),
            torch.ones(2, dtype=torch.float64),
            control=control,
            throw=False,
        )

        assert isinstance(sol.error, StepSizeError)
        assert sol.n_rejected == 4
        assert sol.n_steps == 0

    def test_integer_state_raises(self):
        with pytest.raises(TypeError, match="floating"):
            pseudo_transient(_stable_linear_model(), torch.ones(3, dtype=torch.long))

    def test_invalid_control_raises(self):
        with pytest.raises(ValueError, match="dt_growth"):
            pseudo_transient(
                _stable_linear_model(),
                torch.ones(3, dtype=torch.float64),
                control=TimeStepControl(dt_growth=0.5),
            )


class TestPseudoTransientLogging:
    def test_steps_logged_at_debug(self, caplog):
        caplog.set_level(
            logging.DEBUG, logger="pseudotransient.integration._pseudo_transient"
        )

        pseudo_transient(
            _stable_linear_model(), torch.ones(3, dtype=torch.float64)
        )

        assert any("Step 1:" in r.getMessage() for r in caplog.records)
