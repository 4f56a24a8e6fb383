"""
Pseudo-transient adjoint sensitivity analysis.

PseudoTransientAdjointSensitivity
    Forward steady-state solve, adjoint steady-state solve, dg/dp assembly.
SensitivityOptions
    Parameter and response selection, mass-matrix flags, step controls.
build_adjoint_model, AdjointSensitivityModel, JacobianSource
    Adjoint operators frozen at a steady state.
assemble_sensitivity
    dg/dp = (dg/dp)^T - (df/dp)^T y.
Integrator, Status
    Accessor contract of pseudo-time integrators.

Exceptions
----------
SensitivityError, ConfigurationError, NotReadyError, ConvergenceFailure,
InternalInvariantError

Warnings
--------
AdjointResidualWarning
"""

from pseudotransient.sensitivity._adjoint_model import (
    AdjointSensitivityModel,
    JacobianSource,
    build_adjoint_model,
)
from pseudotransient.sensitivity._assemble import assemble_sensitivity
from pseudotransient.sensitivity._exceptions import (
    AdjointResidualWarning,
    ConfigurationError,
    ConvergenceFailure,
    InternalInvariantError,
    NotReadyError,
    SensitivityError,
)
from pseudotransient.sensitivity._integrator import Integrator, Status
from pseudotransient.sensitivity._options import SensitivityOptions
from pseudotransient.sensitivity._pseudo_transient_adjoint import (
    PseudoTransientAdjointSensitivity,
    SensitivityState,
)

__all__ = [
    "AdjointResidualWarning",
    "AdjointSensitivityModel",
    "ConfigurationError",
    "ConvergenceFailure",
    "Integrator",
    "InternalInvariantError",
    "JacobianSource",
    "NotReadyError",
    "PseudoTransientAdjointSensitivity",
    "SensitivityError",
    "SensitivityOptions",
    "SensitivityState",
    "Status",
    "assemble_sensitivity",
    "build_adjoint_model",
]
