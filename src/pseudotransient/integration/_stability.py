"""Linear stability of a converged steady state."""

import math
from typing import Optional, Sequence

import torch
from torch import Tensor

from pseudotransient.integration._exceptions import UnstableSteadyStateError
from pseudotransient.model_evaluator import ModelEvaluator


def decay_rates(
    stiffness: Tensor, mass: Optional[Tensor] = None, shift: float = 1.0
) -> Tensor:
    """
    Finite eigenvalues mu of the pencil K v = mu M v.

    Solutions of the linearized system M x_dot + K x = 0 behave like
    exp(-mu t), so the steady state is stable when every Re(mu) > 0.

    Parameters
    ----------
    stiffness : Tensor
        K = df/dx, shape (n, n).
    mass : Tensor, optional
        M = df/dx_dot, shape (n, n). Identity if omitted. May be singular
        (differential-algebraic systems); algebraic modes have infinite mu and
        are dropped.
    shift : float
        Shift sigma with K + sigma M nonsingular.

    Returns
    -------
    Tensor
        Complex decay rates, shape (k,) with k <= n.

    Notes
    -----
    The eigenvalues nu of (K + sigma M)^{-1} M satisfy mu = 1 / nu - sigma;
    nu = 0 corresponds to an infinite mu.
    """
    if mass is None:
        return torch.linalg.eigvals(stiffness)

    S = torch.linalg.solve(stiffness + shift * mass, mass)
    nu = torch.linalg.eigvals(S)
    magnitude = nu.abs()
    largest = magnitude.max().item() if nu.numel() > 0 else 0.0
    cutoff = nu.numel() * torch.finfo(stiffness.dtype).eps * largest
    finite = nu[magnitude > cutoff]
    return 1.0 / finite - shift


def check_steady_state_stability(
    model: ModelEvaluator,
    x: Tensor,
    p: Sequence[Tensor],
    t: float = 0.0,
    *,
    shift: float = 1.0,
    mass_matrix_is_identity: bool = False,
) -> Tensor:
    """
    Raise if the steady state ``x`` of ``model`` is linearly unstable.

    Parameters
    ----------
    model : ModelEvaluator
        The implicit model.
    x : Tensor
        Steady state, shape (n,).
    p : sequence of Tensor
        Parameter vectors.
    t : float
        Pseudo-time at which the Jacobians are evaluated.
    shift : float
        Pencil shift, see :func:`decay_rates`. The inverse of the last
        accepted step size is a good choice: the driver already factorized
        (1 / dt) M + K.
    mass_matrix_is_identity : bool
        Skip the evaluation of df/dx_dot.

    Returns
    -------
    Tensor
        The decay rates of the finite modes.

    Raises
    ------
    UnstableSteadyStateError
        If any mode has Re(mu) < -sqrt(eps) * max(1, |mu|).
    """
    p = list(p)
    x_dot = torch.zeros_like(x)
    stiffness = model.jacobian(x, x_dot, p, t, 0.0, 1.0)
    if mass_matrix_is_identity:
        mass = None
    else:
        mass = model.jacobian(x, x_dot, p, t, 1.0, 0.0)

    rates = decay_rates(stiffness, mass, shift)
    if rates.numel() == 0:
        return rates

    tol = math.sqrt(torch.finfo(stiffness.dtype).eps)
    margin = -tol * rates.abs().clamp(min=1.0)
    unstable = rates.real < margin
    if bool(unstable.any()):
        worst = rates[torch.argmin(rates.real)]
        raise UnstableSteadyStateError(complex(worst.item()))
    return rates
