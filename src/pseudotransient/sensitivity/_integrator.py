"""Accessor contract shared by integrators."""

import enum
from abc import ABC, abstractmethod

from pseudotransient.integration import SolutionHistory, TimeStepControl


class Status(enum.Enum):
    """Coarse integrator status."""

    WORKING = "working"
    PASSED = "passed"
    FAILED = "failed"


class Integrator(ABC):
    """Time, status and history accessors of a pseudo-time integrator."""

    @abstractmethod
    def get_time(self) -> float:
        """Current pseudo-time."""
        ...

    @abstractmethod
    def get_index(self) -> int:
        """Number of accepted steps."""
        ...

    @abstractmethod
    def get_status(self) -> Status:
        ...

    @abstractmethod
    def get_solution_history(self) -> SolutionHistory:
        ...

    @abstractmethod
    def get_time_step_control(self) -> TimeStepControl:
        ...
