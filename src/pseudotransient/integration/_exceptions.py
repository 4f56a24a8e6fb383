"""Exceptions for pseudo-transient integration."""


class IntegrationError(Exception):
    """Base exception for all integration errors."""

    pass


class ODESolverError(IntegrationError):
    """Base exception for pseudo-time stepping failures."""

    pass


class MaxStepsExceeded(ODESolverError):
    """Raised when the step budget or the final pseudo-time is exhausted
    before a steady state is reached."""

    pass


class StepSizeError(ODESolverError):
    """Raised when the step size falls below dt_min."""

    pass


class ConvergenceError(ODESolverError):
    """Raised when the Newton iteration of a single step fails to converge."""

    pass


class DivergenceError(ODESolverError):
    """Raised when the state becomes non-finite or grows without bound."""

    def __init__(self, t: float, norm: float):
        super().__init__(
            f"Solution diverged at t={t:.4g} (norm={norm:.2e}). "
            f"The steady state may be unstable."
        )
        self.t = t
        self.norm = norm


class UnstableSteadyStateError(ODESolverError):
    """Raised when a converged steady state has a growing mode.

    Backward Euler with large steps damps unstable modes too, so a run can
    settle on an unstable fixed point. Such a state is not a valid steady
    state.

    Attributes
    ----------
    rate : complex
        Decay rate mu of the most unstable mode; x ~ exp(-mu t), so
        ``rate.real < 0`` means growth.
    """

    def __init__(self, rate: complex):
        super().__init__(
            f"Steady state is unstable: mode with decay rate "
            f"{rate.real:.4g}{rate.imag:+.4g}j grows in time."
        )
        self.rate = rate
