"""Model evaluator with derivatives computed by torch.func."""

from typing import Callable, List, Sequence, Union

import torch
from torch import Tensor

from pseudotransient.model_evaluator._model_evaluator import (
    ModelEvaluator,
    ResponseDerivatives,
    as_response,
)


def _replace(p: Sequence[Tensor], index: int, value: Tensor) -> List[Tensor]:
    q = list(p)
    q[index] = value
    return q


class AutogradModelEvaluator(ModelEvaluator):
    """
    Model evaluator built from plain callables.

    All Jacobians are computed with reverse-mode automatic differentiation
    (``torch.func.jacrev``), so the callables must be written with
    differentiable torch operations.

    Parameters
    ----------
    residual_fn : callable
        ``residual_fn(x, x_dot, p, t) -> f`` with ``f`` of the same shape as
        ``x`` (n,). ``p`` is a list of parameter vectors.
    parameters : sequence of Tensor
        Nominal parameter vectors. 0-d tensors are promoted to shape (1,).
    responses : sequence of callable, optional
        Response functions ``g_k(x, p)``; scalar outputs are promoted to
        shape (1,).

    Notes
    -----
    ``parameter_jacobian`` evaluates df/dp at ``x_dot = 0`` and ``t = 0``,
    i.e. the model is assumed autonomous at steady state.

    Examples
    --------
    >>> def f(x, x_dot, p, t):
    ...     return x_dot + p[0] * x - 1.0
    >>> model = AutogradModelEvaluator(
    ...     f,
    ...     parameters=[torch.tensor([2.0], dtype=torch.float64)],
    ...     responses=[lambda x, p: x.sum()],
    ... )
    >>> model.num_parameters, model.num_responses
    (1, 1)
    """

    def __init__(
        self,
        residual_fn: Callable[
            [Tensor, Tensor, List[Tensor], Union[float, Tensor]], Tensor
        ],
        parameters: Sequence[Tensor] = (),
        responses: Sequence[Callable[[Tensor, List[Tensor]], Tensor]] = (),
    ):
        self._residual_fn = residual_fn
        self._parameters = [torch.atleast_1d(p_j) for p_j in parameters]
        self._responses = list(responses)

    @property
    def num_parameters(self) -> int:
        return len(self._parameters)

    @property
    def num_responses(self) -> int:
        return len(self._responses)

    def nominal_parameters(self) -> List[Tensor]:
        return list(self._parameters)

    def residual(self, x, x_dot, p, t):
        return self._residual_fn(x, x_dot, list(p), t)

    def jacobian(self, x, x_dot, p, t, alpha, beta):
        p = list(p)
        n = x.numel()
        W = torch.zeros(n, n, dtype=x.dtype, device=x.device)

        if alpha != 0.0:
            df_dxdot = torch.func.jacrev(
                lambda xd: self._residual_fn(x, xd, p, t)
            )(x_dot)
            W = W + alpha * df_dxdot.reshape(n, n)

        if beta != 0.0:
            df_dx = torch.func.jacrev(
                lambda x_: self._residual_fn(x_, x_dot, p, t)
            )(x)
            W = W + beta * df_dx.reshape(n, n)

        return W

    def response(self, x, p, response_index=0):
        g = self._responses[response_index]
        return as_response(g(x, list(p)))

    def response_derivatives(
        self, x, p, response_index=0, parameter_index=0
    ):
        g = self._responses[response_index]
        p = list(p)
        m = self.response(x, p, response_index).numel()

        dg_dx = torch.func.jacrev(lambda x_: as_response(g(x_, p)))(x)

        def g_of_p(p_j):
            return as_response(g(x, _replace(p, parameter_index, p_j)))

        dg_dp = torch.func.jacrev(g_of_p)(p[parameter_index])

        return ResponseDerivatives(
            dg_dx=dg_dx.reshape(m, x.numel()),
            dg_dp=dg_dp.reshape(m, p[parameter_index].numel()),
        )

    def parameter_jacobian(self, x, p, parameter_index=0):
        p = list(p)
        x_dot = torch.zeros_like(x)

        def f_of_p(p_j):
            return self._residual_fn(
                x, x_dot, _replace(p, parameter_index, p_j), 0.0
            )

        df_dp = torch.func.jacrev(f_of_p)(p[parameter_index])
        return df_dp.reshape(x.numel(), p[parameter_index].numel())
