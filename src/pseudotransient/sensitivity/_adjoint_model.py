"""Adjoint sensitivity model with operators frozen at a steady state.

At a steady state x* of f(x_dot, x, p) = 0 the adjoint equations

    M^T y_dot + K^T y - (dg/dx)^T = 0,    M = df/dx_dot,  K = df/dx

have constant coefficients, so they form a linear ODE that can be driven to
its own steady state y* = K^{-T} (dg/dx)^T by the same pseudo-transient
integrator used for the forward problem.
"""

import enum
from typing import Optional, Sequence

import torch
from torch import Tensor

from pseudotransient.model_evaluator import ModelEvaluator
from pseudotransient.sensitivity._exceptions import (
    ConfigurationError,
    InternalInvariantError,
)
from pseudotransient.sensitivity._options import SensitivityOptions


class JacobianSource(enum.Enum):
    """Where the adjoint operators come from."""

    # Transpose of the forward model's Jacobian
    ALGEBRAIC_TRANSPOSE = "algebraic_transpose"
    # A caller-supplied evaluator whose Jacobian is already the adjoint
    EXPLICIT_ADJOINT_OPERATOR = "explicit_adjoint_operator"


class AdjointSensitivityModel(ModelEvaluator):
    """
    Linear adjoint model r(y_dot, y) = M^T y_dot + K^T y - (dg/dx)^T.

    Instances are created by :func:`build_adjoint_model`; all operators are
    evaluated once, at construction, and reused for every residual and
    Jacobian evaluation. The state y is a multi-vector of shape (n, m), one
    column per response component.

    Parameters
    ----------
    x : Tensor
        Converged forward state x*, shape (n,). Held by reference.
    stiffness_adjoint : Tensor
        K^T, shape (n, n).
    mass_adjoint : Tensor or None
        M^T, shape (n, n). None when the mass matrix is the identity.
    dg_dx : Tensor
        Response derivative at x*, shape (m, n).
    dg_dp : Tensor
        Response parameter derivative at x*, shape (m, n_p).
    jacobian_source : JacobianSource
        How ``stiffness_adjoint`` and ``mass_adjoint`` were obtained.
    """

    constant_jacobian = True

    def __init__(
        self,
        x: Tensor,
        stiffness_adjoint: Tensor,
        mass_adjoint: Optional[Tensor],
        dg_dx: Tensor,
        dg_dp: Tensor,
        jacobian_source: JacobianSource,
    ):
        n = x.numel()
        if stiffness_adjoint.shape != (n, n):
            raise InternalInvariantError(
                f"Adjoint Jacobian has shape {tuple(stiffness_adjoint.shape)}, "
                f"expected ({n}, {n})"
            )
        if mass_adjoint is not None and mass_adjoint.shape != (n, n):
            raise InternalInvariantError(
                f"Adjoint mass matrix has shape {tuple(mass_adjoint.shape)}, "
                f"expected ({n}, {n})"
            )
        if dg_dx.dim() != 2 or dg_dx.shape[1] != n:
            raise InternalInvariantError(
                f"dg/dx has shape {tuple(dg_dx.shape)}, expected (m, {n})"
            )
        if dg_dp.dim() != 2 or dg_dp.shape[0] != dg_dx.shape[0]:
            raise InternalInvariantError(
                f"dg/dp has shape {tuple(dg_dp.shape)}, expected "
                f"({dg_dx.shape[0]}, n_p)"
            )

        self.x = x
        self.stiffness_adjoint = stiffness_adjoint
        self.mass_adjoint = mass_adjoint
        self.dg_dx = dg_dx
        self.dg_dp = dg_dp
        self.jacobian_source = jacobian_source
        self._forcing = dg_dx.transpose(0, 1)
        self._identity = torch.eye(
            n, dtype=stiffness_adjoint.dtype, device=stiffness_adjoint.device
        )

    @property
    def mass_matrix_is_identity(self) -> bool:
        return self.mass_adjoint is None

    def initial_state(self) -> Tensor:
        """Zero adjoint multi-vector, shape (n, m)."""
        return torch.zeros_like(self._forcing)

    def steady_state(self) -> Tensor:
        """Direct solution y* = K^{-T} (dg/dx)^T, for diagnostics."""
        return torch.linalg.solve(self.stiffness_adjoint, self._forcing)

    def steady_residual(self, y: Tensor) -> Tensor:
        """Steady adjoint residual K^T y - (dg/dx)^T."""
        return self.stiffness_adjoint @ y - self._forcing

    def residual(self, x, x_dot, p, t):
        # Here x and x_dot are the adjoint state y and its pseudo-time derivative
        if self.mass_adjoint is None:
            return x_dot + self.steady_residual(x)
        return self.mass_adjoint @ x_dot + self.steady_residual(x)

    def jacobian(self, x, x_dot, p, t, alpha, beta):
        if self.mass_adjoint is None:
            return alpha * self._identity + beta * self.stiffness_adjoint
        return alpha * self.mass_adjoint + beta * self.stiffness_adjoint


def build_adjoint_model(
    model: ModelEvaluator,
    x: Tensor,
    p: Sequence[Tensor],
    options: SensitivityOptions,
    *,
    t: float = 0.0,
    adjoint_model: Optional[ModelEvaluator] = None,
) -> AdjointSensitivityModel:
    """
    Freeze the adjoint operators of ``model`` at the steady state ``x``.

    Parameters
    ----------
    model : ModelEvaluator
        Forward model.
    x : Tensor
        Converged forward steady state x*, shape (n,).
    p : sequence of Tensor
        Parameter vectors the forward phase ran with.
    options : SensitivityOptions
        Selects the parameter and response and carries the mass-matrix flags.
    t : float
        Pseudo-time at which the forward phase converged.
    adjoint_model : ModelEvaluator, optional
        Evaluator whose ``jacobian(x, x_dot, p, t, alpha, beta)`` returns the
        adjoint operator ``alpha * M^T + beta * K^T`` directly, e.g. for
        matrix-free operators whose transpose should not be formed. Its
        result is used as is, without transposition. Only ``jacobian`` is
        called.

    Returns
    -------
    AdjointSensitivityModel

    Raises
    ------
    ConfigurationError
        If ``options.mass_matrix_is_constant`` is not True.
    InternalInvariantError
        If the evaluated operators have inconsistent shapes.

    Notes
    -----
    The response derivatives are evaluated afresh at x*; nothing is carried
    over from the forward phase. Under ``mass_matrix_is_identity`` the mass
    matrix is never evaluated.
    """
    if options.mass_matrix_is_constant is not True:
        raise ConfigurationError(
            "mass_matrix_is_constant must be True: pseudo-transient adjoint "
            "sensitivities require a constant mass matrix"
        )

    if adjoint_model is None:
        source = JacobianSource.ALGEBRAIC_TRANSPOSE
    else:
        source = JacobianSource.EXPLICIT_ADJOINT_OPERATOR

    p = list(p)
    x_dot = torch.zeros_like(x)

    if source is JacobianSource.ALGEBRAIC_TRANSPOSE:

        def adjoint_operator(alpha, beta):
            W = model.jacobian(x, x_dot, p, t, alpha, beta)
            return W.transpose(-2, -1)

    else:

        def adjoint_operator(alpha, beta):
            return adjoint_model.jacobian(x, x_dot, p, t, alpha, beta)

    stiffness_adjoint = adjoint_operator(0.0, 1.0)
    if options.mass_matrix_is_identity:
        mass_adjoint = None
    else:
        mass_adjoint = adjoint_operator(1.0, 0.0)

    dg_dx, dg_dp = model.response_derivatives(
        x,
        p,
        response_index=options.response_index,
        parameter_index=options.parameter_index,
    )

    return AdjointSensitivityModel(
        x=x,
        stiffness_adjoint=stiffness_adjoint,
        mass_adjoint=mass_adjoint,
        dg_dx=dg_dx,
        dg_dp=dg_dp,
        jacobian_source=source,
    )
