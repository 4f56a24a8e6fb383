"""Step-size control and stopping criteria for pseudo-transient runs."""

import dataclasses
import math
from dataclasses import dataclass
from typing import Any, Dict

import torch


def default_tolerances(dtype: torch.dtype) -> Dict[str, float]:
    """Return dtype-appropriate steady-state and Newton tolerances.

    Parameters
    ----------
    dtype : torch.dtype
        The state dtype.

    Returns
    -------
    dict[str, float]
        Dictionary with keys 'tol' (on ||x_dot||) and 'newton_tol' (on the
        residual norm of each implicit step).
    """
    if dtype in (torch.float16, torch.bfloat16):
        return {"tol": 1e-2, "newton_tol": 1e-2}
    elif dtype == torch.float32:
        return {"tol": 1e-5, "newton_tol": 1e-5}
    else:  # float64 and others
        return {"tol": 1e-10, "newton_tol": 1e-11}


@dataclass(frozen=True)
class TimeStepControl:
    """Controls for one pseudo-transient integration.

    Attributes
    ----------
    tol : float
        Steady state is declared once ||x_dot||_2 <= tol after a step.
    max_steps : int
        Maximum number of accepted steps.
    dt0 : float
        Initial pseudo-time step.
    dt_min : float
        Smallest step allowed after reductions; below it the run fails.
    dt_max : float
        Largest step the growth factor may reach.
    dt_growth : float
        Factor applied to dt after every accepted step (>= 1).
    dt_reduction : float
        Factor applied to dt after a failed Newton solve (in (0, 1)).
    t_max : float
        Pseudo-time budget measured from the initial time.
    newton_tol : float
        Residual tolerance of each implicit step's Newton solve.
    max_newton_iter : int
        Newton iterations per step before the step is rejected.
    divergence_threshold : float
        The run fails once ||x|| exceeds this value.
    """

    tol: float = 1e-10
    max_steps: int = 1000
    dt0: float = 0.1
    dt_min: float = 1e-12
    dt_max: float = 1e12
    dt_growth: float = 2.0
    dt_reduction: float = 0.5
    t_max: float = math.inf
    newton_tol: float = 1e-11
    max_newton_iter: int = 10
    divergence_threshold: float = 1e30

    @classmethod
    def for_dtype(cls, dtype: torch.dtype, **kwargs: Any) -> "TimeStepControl":
        """Control with tolerances suited to ``dtype``; kwargs override."""
        return cls(**{**default_tolerances(dtype), **kwargs})

    def replace(self, **changes: Any) -> "TimeStepControl":
        """Return a copy with some fields changed."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    def validate(self) -> None:
        """Validate the control.

        Raises
        ------
        ValueError
            If any field violates its bound.
        """
        if not self.tol > 0.0:
            raise ValueError(f"tol must be positive, got {self.tol}")
        if self.max_steps < 1:
            raise ValueError(
                f"max_steps must be at least 1, got {self.max_steps}"
            )
        if not 0.0 < self.dt_min <= self.dt0 <= self.dt_max:
            raise ValueError(
                "step sizes must satisfy 0 < dt_min <= dt0 <= dt_max, got "
                f"dt_min={self.dt_min}, dt0={self.dt0}, dt_max={self.dt_max}"
            )
        if self.dt_growth < 1.0:
            raise ValueError(
                f"dt_growth must be at least 1, got {self.dt_growth}"
            )
        if not 0.0 < self.dt_reduction < 1.0:
            raise ValueError(
                f"dt_reduction must lie in (0, 1), got {self.dt_reduction}"
            )
        if not self.t_max > 0.0:
            raise ValueError(f"t_max must be positive, got {self.t_max}")
        if not self.newton_tol > 0.0:
            raise ValueError(
                f"newton_tol must be positive, got {self.newton_tol}"
            )
        if self.max_newton_iter < 1:
            raise ValueError(
                f"max_newton_iter must be at least 1, got {self.max_newton_iter}"
            )
        if not self.divergence_threshold > 0.0:
            raise ValueError(
                "divergence_threshold must be positive, got "
                f"{self.divergence_threshold}"
            )
