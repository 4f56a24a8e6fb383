"""Abstract model evaluator for implicit ODEs f(x_dot, x, p, t) = 0."""

from abc import ABC, abstractmethod
from typing import List, NamedTuple, Sequence, Union

import torch
from torch import Tensor


class ResponseDerivatives(NamedTuple):
    """Derivatives of a response g(x, p).

    Attributes
    ----------
    dg_dx : Tensor
        Shape (m, n), where m is the response size and n the state size.
    dg_dp : Tensor
        Shape (m, n_p), where n_p is the size of the selected parameter vector.
    """

    dg_dx: Tensor
    dg_dp: Tensor


class ModelEvaluator(ABC):
    """
    Evaluator for an implicit ODE/DAE residual and its derivatives.

    Subclasses must implement :meth:`residual` and :meth:`jacobian`, which is
    all a time integrator needs. Sensitivity analysis additionally requires
    :meth:`response`, :meth:`response_derivatives` and
    :meth:`parameter_jacobian`.

    Parameters are passed as a sequence of vectors ``p[0], ..., p[Np - 1]``.
    States are vectors of shape ``(n,)``; a model may also accept
    multi-column states of shape ``(n, m)`` when its Jacobian acts on each
    column independently.

    Attributes
    ----------
    constant_jacobian : bool
        True if ``jacobian`` does not depend on ``x``, ``x_dot``, ``p`` or
        ``t``. Integrators may then reuse factorizations across steps.
    """

    constant_jacobian: bool = False

    @property
    def num_parameters(self) -> int:
        """Number of parameter vectors."""
        return 0

    @property
    def num_responses(self) -> int:
        """Number of response functions."""
        return 0

    def nominal_parameters(self) -> List[Tensor]:
        """Default parameter vectors used when the caller supplies none."""
        return []

    @abstractmethod
    def residual(
        self,
        x: Tensor,
        x_dot: Tensor,
        p: Sequence[Tensor],
        t: Union[float, Tensor],
    ) -> Tensor:
        """Evaluate f(x_dot, x, p, t), same shape as ``x``."""
        ...

    @abstractmethod
    def jacobian(
        self,
        x: Tensor,
        x_dot: Tensor,
        p: Sequence[Tensor],
        t: Union[float, Tensor],
        alpha: float,
        beta: float,
    ) -> Tensor:
        """Evaluate W = alpha * df/dx_dot + beta * df/dx, shape (n, n)."""
        ...

    def response(
        self, x: Tensor, p: Sequence[Tensor], response_index: int = 0
    ) -> Tensor:
        """Evaluate response ``g_k(x, p)``, shape (m,)."""
        raise NotImplementedError(
            f"{type(self).__name__} does not provide responses"
        )

    def response_derivatives(
        self,
        x: Tensor,
        p: Sequence[Tensor],
        response_index: int = 0,
        parameter_index: int = 0,
    ) -> ResponseDerivatives:
        """Evaluate dg_k/dx and dg_k/dp_j."""
        raise NotImplementedError(
            f"{type(self).__name__} does not provide response derivatives"
        )

    def parameter_jacobian(
        self, x: Tensor, p: Sequence[Tensor], parameter_index: int = 0
    ) -> Tensor:
        """Evaluate df/dp_j at x_dot = 0, shape (n, n_p)."""
        raise NotImplementedError(
            f"{type(self).__name__} does not provide parameter derivatives"
        )


def as_response(g: Tensor) -> Tensor:
    """Promote a scalar response to shape (1,)."""
    return g.reshape(-1)


def check_parameters(
    model: ModelEvaluator, p: Sequence[Tensor]
) -> List[Tensor]:
    """Return ``p`` as a list, validating its length against the model."""
    p = list(p)
    if len(p) != model.num_parameters:
        raise ValueError(
            f"Expected {model.num_parameters} parameter vectors, got {len(p)}"
        )
    for j, p_j in enumerate(p):
        if not isinstance(p_j, torch.Tensor):
            raise TypeError(
                f"Parameter vector {j} must be a Tensor, got {type(p_j).__name__}"
            )
    return p
