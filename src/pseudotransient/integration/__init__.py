"""
Pseudo-transient integration to steady state.

pseudo_transient
    Backward Euler in pseudo-time with growing steps until ||x_dot|| <= tol.
PseudoTransientSolution
    Final state, derivatives, statistics and solution history of a run.
TimeStepControl
    Step-size control and stopping criteria.
SolutionHistory
    Tensorclass of accepted samples with Hermite interpolation.
newton_solve_cached, JacobianCache
    Newton's method with LU factorization reuse.
flatten_state
    TensorDict state flattening.
check_steady_state_stability, decay_rates
    Linear stability of a converged steady state.

Exceptions
----------
IntegrationError, ODESolverError, MaxStepsExceeded, StepSizeError,
ConvergenceError, DivergenceError, UnstableSteadyStateError
"""

from pseudotransient.integration._exceptions import (
    ConvergenceError,
    DivergenceError,
    IntegrationError,
    MaxStepsExceeded,
    ODESolverError,
    StepSizeError,
    UnstableSteadyStateError,
)
from pseudotransient.integration._interpolation import hermite_interpolate
from pseudotransient.integration._newton import (
    JacobianCache,
    newton_solve_cached,
)
from pseudotransient.integration._pseudo_transient import (
    PseudoTransientSolution,
    pseudo_transient,
)
from pseudotransient.integration._solution_history import (
    SolutionHistory,
    stack_history,
)
from pseudotransient.integration._stability import (
    check_steady_state_stability,
    decay_rates,
)
from pseudotransient.integration._tensordict_utils import flatten_state
from pseudotransient.integration._time_step_control import (
    TimeStepControl,
    default_tolerances,
)

__all__ = [
    "ConvergenceError",
    "DivergenceError",
    "IntegrationError",
    "JacobianCache",
    "MaxStepsExceeded",
    "ODESolverError",
    "PseudoTransientSolution",
    "SolutionHistory",
    "StepSizeError",
    "TimeStepControl",
    "UnstableSteadyStateError",
    "check_steady_state_stability",
    "decay_rates",
    "default_tolerances",
    "flatten_state",
    "hermite_interpolate",
    "newton_solve_cached",
    "pseudo_transient",
    "stack_history",
]
