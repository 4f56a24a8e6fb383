"""Pseudo-transient adjoint sensitivity analysis.

For problems where time integration is only a means to reach a steady state
(pseudo-transient continuation), sensitivities need not be propagated
through the forward trajectory. Instead:

1. integrate f(x_dot, x, p) = 0 until x_dot vanishes, giving x*;
2. freeze df/dx_dot, df/dx and dg/dx at x* and integrate the adjoint
   equations

       (df/dx_dot)^T y_dot + (df/dx)^T y - (dg/dx)^T = 0

   from y = 0 in an independent pseudo-time until y_dot vanishes, giving
   y* = (df/dx)^{-T} (dg/dx)^T;
3. assemble dg/dp = (dg/dp)^T - (df/dp)^T y*.

Because df/dx is evaluated at a stable steady state, its transpose has the
same eigenvalues and the adjoint equations are stable as well.
"""

import enum
import logging
import time
import warnings
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import torch
from tensordict import TensorDict
from torch import Tensor

from pseudotransient.integration import (
    JacobianCache,
    ODESolverError,
    PseudoTransientSolution,
    SolutionHistory,
    TimeStepControl,
    check_steady_state_stability,
    flatten_state,
    pseudo_transient,
)
from pseudotransient.model_evaluator import ModelEvaluator, check_parameters
from pseudotransient.sensitivity._adjoint_model import (
    AdjointSensitivityModel,
    build_adjoint_model,
)
from pseudotransient.sensitivity._assemble import assemble_sensitivity
from pseudotransient.sensitivity._exceptions import (
    AdjointResidualWarning,
    ConfigurationError,
    ConvergenceFailure,
    NotReadyError,
)
from pseudotransient.sensitivity._integrator import Integrator, Status
from pseudotransient.sensitivity._options import SensitivityOptions

logger = logging.getLogger(__name__)

# Steady adjoint residual, relative to the adjoint tolerance, above which a
# converged adjoint phase is reported as suspicious.
_ADJOINT_RESIDUAL_FACTOR = 100.0


def _flatten(name, state):
    try:
        return flatten_state(state)
    except ValueError as err:
        raise ConfigurationError(f"Invalid {name}: {err}") from err


def _leaf_keys(state: TensorDict):
    return set(state.flatten_keys(separator=".").keys())


class SensitivityState(enum.Enum):
    """Lifecycle of a :class:`PseudoTransientAdjointSensitivity` run."""

    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    FORWARD_RUNNING = "forward_running"
    FORWARD_CONVERGED = "forward_converged"
    ADJOINT_RUNNING = "adjoint_running"
    CONVERGED = "converged"
    FAILED = "failed"


class PseudoTransientAdjointSensitivity(Integrator):
    """
    Steady-state solve followed by a pseudo-transient adjoint solve.

    Parameters
    ----------
    model : ModelEvaluator
        Forward model. It is only read, never modified, and stays owned by
        the caller.
    adjoint_model : ModelEvaluator, optional
        Evaluator returning the adjoint operator alpha * M^T + beta * K^T
        from its ``jacobian`` method. When given, it replaces the transpose
        of the forward Jacobian (see :func:`build_adjoint_model`).
    options : SensitivityOptions or mapping, optional
        Default options for :meth:`initialize`.

    Examples
    --------
    >>> A = torch.tensor([[2.0, 1.0], [0.0, 3.0]], dtype=torch.float64)
    >>> B = torch.eye(2, dtype=torch.float64)
    >>> C = torch.tensor([[1.0, 1.0]], dtype=torch.float64)
    >>> model = LinearModelEvaluator(A, B=[B], C=[C])
    >>> integrator = PseudoTransientAdjointSensitivity(model)
    >>> integrator.initialize(None, torch.ones(2, dtype=torch.float64))
    >>> integrator.advance()
    >>> integrator.get_dgdp().shape
    torch.Size([2, 1])

    Notes
    -----
    The forward and adjoint solution histories live in unrelated pseudo-time
    coordinates and are exposed separately through
    :meth:`get_forward_history` and :meth:`get_adjoint_history`.
    """

    def __init__(
        self,
        model: ModelEvaluator,
        adjoint_model: Optional[ModelEvaluator] = None,
        options: Optional[Union[SensitivityOptions, Mapping[str, Any]]] = None,
    ):
        self._model = model
        self._adjoint_model = adjoint_model
        self._default_options = options

        self._state = SensitivityState.UNINITIALIZED
        self._options: Optional[SensitivityOptions] = None
        self._x0: Optional[Tensor] = None
        self._x_dot0: Optional[Tensor] = None
        self._unflatten = None
        self._p = []
        self._t0 = 0.0
        self._reset_results()

    def _reset_results(self) -> None:
        self._forward: Optional[PseudoTransientSolution] = None
        self._adjoint: Optional[PseudoTransientSolution] = None
        self._sensitivity_model: Optional[AdjointSensitivityModel] = None
        self._dgdp: Optional[Tensor] = None
        self._failed_phase: Optional[str] = None
        self._timings: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def initialize(
        self,
        options: Optional[Union[SensitivityOptions, Mapping[str, Any]]],
        x0: Union[Tensor, TensorDict],
        *,
        p: Optional[Sequence[Tensor]] = None,
        t0: float = 0.0,
        x_dot0: Optional[Union[Tensor, TensorDict]] = None,
    ) -> None:
        """
        Set options and the initial forward state.

        Parameters
        ----------
        options : SensitivityOptions or mapping or None
            Options for this and later runs. None selects the options given
            to the constructor, or the defaults.
        x0 : Tensor or TensorDict
            Initial forward state. TensorDict states are flattened for the
            model and restored by :meth:`get_x`.
        p : sequence of Tensor, optional
            Parameter vectors. Defaults to ``model.nominal_parameters()``.
        t0 : float
            Initial forward pseudo-time.
        x_dot0 : Tensor or TensorDict, optional
            Initial forward time derivative.

        Raises
        ------
        ConfigurationError
            If the options or the parameter vectors do not fit the model, or
            x0 and x_dot0 are batched, non-floating or mismatched.
        """
        if options is None:
            options = self._default_options
        if options is None:
            options = SensitivityOptions()
        elif not isinstance(options, SensitivityOptions):
            options = SensitivityOptions.from_dict(options)
        options.validate(self._model)

        if p is None:
            p = self._model.nominal_parameters()
        try:
            p = check_parameters(self._model, p)
        except (TypeError, ValueError) as err:
            raise ConfigurationError(str(err)) from err

        x0_flat, unflatten = _flatten("x0", x0)
        if not x0_flat.dtype.is_floating_point:
            raise ConfigurationError(
                f"x0 must have a floating dtype, got {x0_flat.dtype}"
            )
        if x_dot0 is not None:
            if isinstance(x0, TensorDict) != isinstance(x_dot0, TensorDict):
                raise ConfigurationError(
                    "x_dot0 must have the same structure as x0"
                )
            if isinstance(x0, TensorDict) and _leaf_keys(x0) != _leaf_keys(
                x_dot0
            ):
                raise ConfigurationError(
                    f"x_dot0 keys {sorted(_leaf_keys(x_dot0))} do not match "
                    f"x0 keys {sorted(_leaf_keys(x0))}"
                )
            x_dot0, _ = _flatten("x_dot0", x_dot0)
            if x_dot0.shape != x0_flat.shape:
                raise ConfigurationError(
                    f"x_dot0 has {x_dot0.numel()} entries, x0 has "
                    f"{x0_flat.numel()}"
                )
            x_dot0 = x_dot0.to(x0_flat.dtype)

        self._options = options
        self._x0 = x0_flat.clone()
        self._x_dot0 = None if x_dot0 is None else x_dot0.clone()
        self._unflatten = unflatten
        self._p = p
        self._t0 = float(t0)
        self._reset_results()
        self._state = SensitivityState.CONFIGURED

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def advance(self, time_final: Optional[float] = None) -> None:
        """
        Run the forward phase, then the adjoint phase, then assemble dg/dp.

        Calling this again after completion or failure restarts from the
        initial state set by :meth:`initialize`.

        Parameters
        ----------
        time_final : float, optional
            Latest forward pseudo-time; overrides the ``t_max`` of the
            forward control for this call.

        Raises
        ------
        NotReadyError
            If :meth:`initialize` has not been called.
        ConfigurationError
            If ``time_final`` does not lie after the initial time.
        ConvergenceFailure
            If either phase fails to reach a steady state, or the forward
            steady state is unstable. The integration error is chained as
            ``__cause__``.
        """
        if self._state is SensitivityState.UNINITIALIZED:
            raise NotReadyError("initialize() must be called before advance()")

        forward_control = self._options.forward_control(self._x0.dtype)
        if time_final is not None:
            if not time_final > self._t0:
                raise ConfigurationError(
                    f"time_final={time_final} must be greater than t0={self._t0}"
                )
            forward_control = forward_control.replace(
                t_max=time_final - self._t0
            )

        self._reset_results()
        self._run_forward(forward_control)
        self._run_adjoint()

    def _run_forward(self, control: TimeStepControl) -> None:
        self._state = SensitivityState.FORWARD_RUNNING
        logger.info(
            "Forward phase: %d unknowns, tol=%.1e, max_steps=%d",
            self._x0.numel(),
            control.tol,
            control.max_steps,
        )

        start = time.perf_counter()
        try:
            forward = pseudo_transient(
                self._model,
                self._x0,
                self._p,
                control=control,
                t0=self._t0,
                x_dot0=self._x_dot0,
            )
            if self._options.check_stability:
                check_steady_state_stability(
                    self._model,
                    forward.x,
                    self._p,
                    forward.t,
                    shift=1.0 / forward.history.dt[-1].item(),
                    mass_matrix_is_identity=self._options.mass_matrix_is_identity,
                )
        except ODESolverError as err:
            self._fail("forward")
            raise ConvergenceFailure("forward", str(err)) from err
        except Exception:
            self._fail("forward")
            raise
        finally:
            self._timings["forward"] = time.perf_counter() - start

        self._forward = forward
        self._state = SensitivityState.FORWARD_CONVERGED
        logger.info(
            "Forward phase converged: %d steps, t=%.4g, ||x_dot||=%.2e",
            forward.n_steps,
            forward.t,
            torch.linalg.norm(forward.x_dot).item(),
        )

    def _run_adjoint(self) -> None:
        options = self._options
        control = options.adjoint_control(self._x0.dtype)
        x = self._forward.x

        self._state = SensitivityState.ADJOINT_RUNNING
        start = time.perf_counter()
        try:
            sensitivity_model = build_adjoint_model(
                self._model,
                x,
                self._p,
                options,
                t=self._forward.t,
                adjoint_model=self._adjoint_model,
            )
            self._sensitivity_model = sensitivity_model

            logger.info(
                "Adjoint phase: %d x %d adjoint unknowns (%s), tol=%.1e",
                sensitivity_model.dg_dx.shape[1],
                sensitivity_model.dg_dx.shape[0],
                sensitivity_model.jacobian_source.value,
                control.tol,
            )

            adjoint = pseudo_transient(
                sensitivity_model,
                sensitivity_model.initial_state(),
                control=control,
                t0=0.0,
                jacobian_cache=JacobianCache(),
            )

            df_dp = self._model.parameter_jacobian(
                x, self._p, parameter_index=options.parameter_index
            )
            dgdp = assemble_sensitivity(
                adjoint.x, sensitivity_model.dg_dp, df_dp
            )
        except ODESolverError as err:
            self._fail("adjoint")
            raise ConvergenceFailure("adjoint", str(err)) from err
        except Exception:
            self._fail("adjoint")
            raise
        finally:
            self._timings["adjoint"] = time.perf_counter() - start

        residual_norm = torch.linalg.norm(
            sensitivity_model.steady_residual(adjoint.x)
        ).item()
        if residual_norm > _ADJOINT_RESIDUAL_FACTOR * control.tol:
            warnings.warn(
                f"Adjoint phase converged with ||y_dot|| <= {control.tol:.1e} "
                f"but the steady adjoint residual is {residual_norm:.2e}. "
                f"The mass matrix may be badly scaled; consider a smaller "
                f"adjoint tol.",
                AdjointResidualWarning,
            )

        self._adjoint = adjoint
        self._dgdp = dgdp
        self._state = SensitivityState.CONVERGED
        logger.info(
            "Adjoint phase converged: %d steps, tau=%.4g",
            adjoint.n_steps,
            adjoint.t,
        )

    def _fail(self, phase: str) -> None:
        self._failed_phase = phase
        self._state = SensitivityState.FAILED
        logger.info("%s phase failed", phase.capitalize())

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _require_forward(self, what: str) -> PseudoTransientSolution:
        if self._forward is None:
            raise NotReadyError(
                f"{what} is not available before the forward phase has "
                f"converged (state: {self._state.value})"
            )
        return self._forward

    def _require_converged(self, what: str) -> None:
        if self._state is not SensitivityState.CONVERGED:
            raise NotReadyError(
                f"{what} is not available before both phases have converged "
                f"(state: {self._state.value})"
            )

    def get_x(self) -> Union[Tensor, TensorDict]:
        """Converged forward state x*."""
        forward = self._require_forward("x")
        return self._unflatten(forward.x.clone())

    def get_x_dot(self) -> Union[Tensor, TensorDict]:
        """Time derivative at x* (numerically zero)."""
        forward = self._require_forward("x_dot")
        return self._unflatten(forward.x_dot.clone())

    def get_x_dot_dot(self) -> Union[Tensor, TensorDict]:
        """Second time derivative at x* (numerically zero)."""
        forward = self._require_forward("x_dot_dot")
        return self._unflatten(forward.x_dot_dot.clone())

    def get_response(self) -> Tensor:
        """Selected response g(x*, p)."""
        forward = self._require_forward("The response")
        return self._model.response(
            forward.x, self._p, response_index=self._options.response_index
        )

    def get_dgdp(self) -> Tensor:
        """Sensitivity dg/dp, shape (n_p, m)."""
        self._require_converged("dg/dp")
        return self._dgdp.clone()

    def get_y(self) -> Tensor:
        """Steady adjoint state y*, shape (n, m)."""
        self._require_converged("The adjoint state")
        return self._adjoint.x.clone()

    def get_forward_history(self) -> SolutionHistory:
        """Accepted forward samples in pseudo-time t, from x0 to x*."""
        return self._require_forward("The forward history").history

    def get_adjoint_history(self) -> SolutionHistory:
        """Accepted adjoint samples in pseudo-time tau, from y = 0 to y*."""
        self._require_converged("The adjoint history")
        return self._adjoint.history

    def get_solution_history(self, phase: str = "forward") -> SolutionHistory:
        """History of one phase; ``phase`` is ``"forward"`` or ``"adjoint"``."""
        if phase == "forward":
            return self.get_forward_history()
        elif phase == "adjoint":
            return self.get_adjoint_history()
        raise ValueError(
            f"Unknown phase: {phase!r}. Use 'forward' or 'adjoint'."
        )

    # ------------------------------------------------------------------
    # Integrator accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> SensitivityState:
        return self._state

    @property
    def failed_phase(self) -> Optional[str]:
        """``"forward"`` or ``"adjoint"`` after a failure, else None."""
        return self._failed_phase

    @property
    def timings(self) -> Dict[str, float]:
        """Wall-clock seconds spent in each phase of the last run."""
        return dict(self._timings)

    def get_time(self) -> float:
        """Forward pseudo-time reached (the initial time before a run)."""
        if self._forward is not None:
            return self._forward.t
        return self._t0

    def get_index(self) -> int:
        """Number of accepted forward steps."""
        if self._forward is not None:
            return self._forward.n_steps
        return 0

    def get_status(self) -> Status:
        """PASSED once dg/dp is available, FAILED after a failure."""
        if self._state is SensitivityState.CONVERGED:
            return Status.PASSED
        if self._state is SensitivityState.FAILED:
            return Status.FAILED
        return Status.WORKING

    def get_time_step_control(self) -> TimeStepControl:
        """Forward step-size control, resolved for the state dtype."""
        return self.get_options().forward_control(self._x0.dtype)

    def get_options(self) -> SensitivityOptions:
        """Options set by the last :meth:`initialize`."""
        if self._options is None:
            raise NotReadyError("initialize() has not been called")
        return self._options

    def get_valid_parameters(self) -> Dict[str, Any]:
        return SensitivityOptions.valid_parameters()

    def describe(self) -> str:
        """Multi-line summary of the configuration and the last run."""
        lines = [
            f"{type(self).__name__}",
            f"  model: {type(self._model).__name__}",
            f"  adjoint operator: "
            f"{'explicit' if self._adjoint_model is not None else 'transpose'}",
            f"  state: {self._state.value}",
        ]
        if self._options is not None:
            lines.append(
                f"  parameter_index={self._options.parameter_index}, "
                f"response_index={self._options.response_index}, "
                f"mass_matrix_is_identity={self._options.mass_matrix_is_identity}"
            )
        for phase, solution in (
            ("forward", self._forward),
            ("adjoint", self._adjoint),
        ):
            if solution is not None:
                lines.append(
                    f"  {phase}: {solution.n_steps} steps to t={solution.t:.4g} "
                    f"({solution.n_rejected} rejected, "
                    f"{solution.n_factorizations} factorizations, "
                    f"{self._timings.get(phase, 0.0):.3g} s)"
                )
        if self._failed_phase is not None:
            lines.append(f"  failed phase: {self._failed_phase}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(model={type(self._model).__name__}, "
            f"state={self._state.value})"
        )
