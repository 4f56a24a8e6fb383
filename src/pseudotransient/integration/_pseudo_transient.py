"""Pseudo-transient continuation: backward Euler in pseudo-time to a steady state."""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import torch
from torch import Tensor

from pseudotransient.integration._exceptions import (
    ConvergenceError,
    DivergenceError,
    MaxStepsExceeded,
    ODESolverError,
    StepSizeError,
)
from pseudotransient.integration._newton import (
    JacobianCache,
    newton_solve_cached,
)
from pseudotransient.integration._solution_history import (
    SolutionHistory,
    stack_history,
)
from pseudotransient.integration._time_step_control import TimeStepControl
from pseudotransient.model_evaluator import ModelEvaluator, check_parameters

logger = logging.getLogger(__name__)


@dataclass
class PseudoTransientSolution:
    """
    Result of :func:`pseudo_transient`.

    Attributes
    ----------
    x : Tensor
        Last accepted state (the steady state when ``success`` is True).
    x_dot : Tensor
        Time derivative at the last accepted step.
    x_dot_dot : Tensor
        Second time derivative at the last accepted step.
    t : float
        Pseudo-time of the last accepted step.
    history : SolutionHistory
        All accepted samples, initial state included.
    n_steps : int
        Number of accepted steps.
    n_rejected : int
        Number of steps rejected because Newton's method failed.
    n_newton_iterations : int
        Total Newton updates over all attempted steps.
    n_factorizations : int
        Number of Jacobian LU factorizations.
    success : bool
        Whether a steady state was reached.
    message : str
        Status message describing the outcome.
    error : ODESolverError, optional
        The failure when ``success`` is False.
    """

    x: Tensor
    x_dot: Tensor
    x_dot_dot: Tensor
    t: float
    history: SolutionHistory
    n_steps: int = 0
    n_rejected: int = 0
    n_newton_iterations: int = 0
    n_factorizations: int = 0
    success: bool = True
    message: str = "Steady state reached."
    error: Optional[ODESolverError] = None

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "n_steps": self.n_steps,
            "n_rejected": self.n_rejected,
            "n_newton_iterations": self.n_newton_iterations,
            "n_factorizations": self.n_factorizations,
        }


def pseudo_transient(
    model: ModelEvaluator,
    x0: Tensor,
    p: Optional[Sequence[Tensor]] = None,
    *,
    control: Optional[TimeStepControl] = None,
    t0: float = 0.0,
    x_dot0: Optional[Tensor] = None,
    jacobian_cache: Optional[JacobianCache] = None,
    throw: bool = True,
) -> PseudoTransientSolution:
    """
    Integrate f(x_dot, x, p, t) = 0 in pseudo-time until x_dot vanishes.

    Each step is a backward Euler step

        f((x_{k+1} - x_k) / dt, x_{k+1}, p, t_k + dt) = 0

    solved for x_{k+1} by Newton's method with the model Jacobian
    ``W = (1 / dt) * df/dx_dot + df/dx``. The step size grows geometrically
    after every accepted step and shrinks after a failed Newton solve.

    Parameters
    ----------
    model : ModelEvaluator
        The implicit model. Only ``residual`` and ``jacobian`` are used.
    x0 : Tensor
        Initial state, shape (n,) or multi-column (n, m).
    p : sequence of Tensor, optional
        Parameter vectors. Defaults to ``model.nominal_parameters()``.
    control : TimeStepControl, optional
        Step-size control and stopping criteria. Defaults to
        ``TimeStepControl.for_dtype(x0.dtype)``.
    t0 : float
        Initial pseudo-time.
    x_dot0 : Tensor, optional
        Initial time derivative (used for the first second-derivative
        estimate only). Zero if omitted.
    jacobian_cache : JacobianCache, optional
        LU factorization cache. For models with ``constant_jacobian = True``
        one factorization is reused for every step with the same dt.
    throw : bool
        If True (default), raise on failure. If False, return a solution
        with ``success=False``, the failure in ``error`` and the last
        accepted state.

    Returns
    -------
    PseudoTransientSolution
        Final state, its derivatives and the solution history.

    Raises
    ------
    MaxStepsExceeded
        If ``max_steps`` accepted steps or the ``t_max`` budget are used up
        before ||x_dot|| <= tol.
    StepSizeError
        If repeated Newton failures push dt below ``dt_min``.
    DivergenceError
        If the state becomes non-finite or exceeds ``divergence_threshold``.

    Notes
    -----
    For backward Euler, M x_dot_{k+1} = -F(x_{k+1}) where F is the steady
    residual, so ||x_dot|| <= tol is a residual-based stopping test even
    for very large steps.
    """
    if not x0.dtype.is_floating_point:
        raise TypeError(f"x0 must be a floating tensor, got {x0.dtype}")

    if p is None:
        p = model.nominal_parameters()
    p = check_parameters(model, p)

    if control is None:
        control = TimeStepControl.for_dtype(x0.dtype)
    control.validate()

    if jacobian_cache is None:
        jacobian_cache = JacobianCache()
    reuse_jacobian = bool(getattr(model, "constant_jacobian", False))

    x = x0.clone()
    x_dot = torch.zeros_like(x) if x_dot0 is None else x_dot0.clone()
    x_dot_dot = torch.zeros_like(x)
    t = float(t0)
    t_end = t + control.t_max
    dt = control.dt0

    t_samples = [t]
    x_samples = [x.clone()]
    x_dot_samples = [x_dot.clone()]
    x_dot_dot_samples = [x_dot_dot.clone()]
    dt_samples = [0.0]

    n_steps = 0
    n_rejected = 0
    n_newton = 0
    n_factorizations_start = jacobian_cache.n_factorizations
    x_dot_norm = math.inf
    failure: Optional[ODESolverError] = None

    while True:
        if n_steps >= control.max_steps:
            failure = MaxStepsExceeded(
                f"No steady state after {n_steps} steps "
                f"(t={t:.4g}, ||x_dot||={x_dot_norm:.2e}, tol={control.tol:.1e})"
            )
            break
        if t >= t_end:
            failure = MaxStepsExceeded(
                f"Reached t_max={control.t_max:.4g} without a steady state "
                f"(||x_dot||={x_dot_norm:.2e}, tol={control.tol:.1e})"
            )
            break

        h = min(dt, t_end - t)
        t_next = t + h

        # Capture current values in closure
        x_curr = x
        h_curr = h
        t_curr_next = t_next

        def residual(x_next):
            return model.residual(
                x_next, (x_next - x_curr) / h_curr, p, t_curr_next
            )

        def jacobian(x_next):
            return model.jacobian(
                x_next,
                (x_next - x_curr) / h_curr,
                p,
                t_curr_next,
                1.0 / h_curr,
                1.0,
            )

        x_next, converged, info = newton_solve_cached(
            residual,
            x,
            tol=control.newton_tol,
            max_iter=control.max_newton_iter,
            jacobian=jacobian,
            cache=jacobian_cache,
            cache_key=(1.0 / h, 1.0) if reuse_jacobian else None,
        )
        n_newton += info["n_iterations"]

        if not converged:
            n_rejected += 1
            dt = h * control.dt_reduction
            logger.debug(
                "Rejected step at t=%.4g (dt=%.3g, residual=%.2e); retrying with dt=%.3g",
                t_next,
                h,
                info["final_residual_norm"],
                dt,
            )
            if dt < control.dt_min:
                failure = StepSizeError(
                    f"Step size {dt:.3g} fell below dt_min={control.dt_min:.3g} "
                    f"at t={t:.4g}: Newton iteration failed to converge "
                    f"(residual={info['final_residual_norm']:.2e})"
                )
                failure.__cause__ = ConvergenceError(
                    f"Newton iteration failed to converge at t={t_next:.4g} "
                    f"after {control.max_newton_iter} iterations"
                )
                break
            continue

        x_norm = torch.linalg.norm(x_next).item()
        if not math.isfinite(x_norm) or x_norm > control.divergence_threshold:
            failure = DivergenceError(t_next, x_norm)
            break

        x_dot_next = (x_next - x) / h
        x_dot_dot = (x_dot_next - x_dot) / h
        x = x_next
        x_dot = x_dot_next
        t = t_next
        n_steps += 1

        t_samples.append(t)
        x_samples.append(x.clone())
        x_dot_samples.append(x_dot.clone())
        x_dot_dot_samples.append(x_dot_dot.clone())
        dt_samples.append(h)

        x_dot_norm = torch.linalg.norm(x_dot).item()
        logger.debug(
            "Step %d: t=%.4g, dt=%.3g, ||x_dot||=%.3e",
            n_steps,
            t,
            h,
            x_dot_norm,
        )

        if x_dot_norm <= control.tol:
            break

        dt = min(h * control.dt_growth, control.dt_max)

    history = stack_history(
        t_samples, x_samples, x_dot_samples, x_dot_dot_samples, dt_samples
    )

    if failure is not None:
        logger.debug("Pseudo-transient run failed: %s", failure)
        if throw:
            raise failure

    return PseudoTransientSolution(
        x=x,
        x_dot=x_dot,
        x_dot_dot=x_dot_dot,
        t=t,
        history=history,
        n_steps=n_steps,
        n_rejected=n_rejected,
        n_newton_iterations=n_newton,
        n_factorizations=jacobian_cache.n_factorizations
        - n_factorizations_start,
        success=failure is None,
        message="Steady state reached." if failure is None else str(failure),
        error=failure,
    )
