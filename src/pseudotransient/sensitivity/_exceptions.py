"""Exceptions and warnings for pseudo-transient adjoint sensitivities."""


class SensitivityError(Exception):
    """Base exception for sensitivity analysis errors."""

    pass


class ConfigurationError(SensitivityError):
    """Raised when sensitivity options are invalid for the model.

    Covers out-of-range parameter/response indices, a mass matrix declared
    non-constant, and invalid time-step controls.
    """

    pass


class NotReadyError(SensitivityError):
    """Raised when a result is requested before the phase producing it has
    converged."""

    pass


class ConvergenceFailure(SensitivityError):
    """Raised when the forward or adjoint pseudo-transient phase fails.

    The underlying integration error is available as ``__cause__``.

    Attributes
    ----------
    phase : str
        ``"forward"`` or ``"adjoint"``.
    reason : str
        Message of the underlying integration error.
    """

    def __init__(self, phase: str, reason: str):
        super().__init__(f"{phase.capitalize()} phase failed: {reason}")
        self.phase = phase
        self.reason = reason


class InternalInvariantError(SensitivityError):
    """Raised on dimension mismatches between frozen operators.

    Indicates a defect in a model evaluator or in the adjoint model, never a
    user error; it is not recoverable.
    """

    pass


class AdjointResidualWarning(UserWarning):
    """Warning when the converged adjoint state leaves a large steady
    adjoint residual."""

    pass
