"""Linear implicit ODE model with closed-form derivatives."""

from typing import List, Optional, Sequence

import torch
from torch import Tensor

from pseudotransient.model_evaluator._model_evaluator import (
    ModelEvaluator,
    ResponseDerivatives,
)


class LinearModelEvaluator(ModelEvaluator):
    """
    Linear model f(x_dot, x, p) = M x_dot + A x + sum_j B_j p_j - b.

    Responses are linear as well: g_k(x, p) = C_k x + sum_j D_kj p_j.

    Parameters
    ----------
    A : Tensor
        State matrix, shape (n, n). For a stable steady state its eigenvalues
        must lie in the right half-plane (f = x_dot + A x is stable when
        x_dot = -A x decays).
    B : sequence of Tensor, optional
        Parameter matrices B_j, shape (n, n_p_j).
    C : sequence of Tensor, optional
        Response matrices C_k, shape (m_k, n).
    D : sequence of sequence of Tensor, optional
        Direct parameter dependence D_kj, shape (m_k, n_p_j). Zero if omitted.
    b : Tensor, optional
        Constant forcing, shape (n,). Zero if omitted.
    mass_matrix : Tensor, optional
        M, shape (n, n). Identity if omitted.
    parameters : sequence of Tensor, optional
        Nominal parameter vectors. Zero vectors if omitted.

    Notes
    -----
    The steady state is x^s = A^{-1} (b - sum_j B_j p_j), independent of M.
    The Jacobian does not depend on the state, so ``constant_jacobian`` is
    True.
    """

    constant_jacobian = True

    def __init__(
        self,
        A: Tensor,
        B: Sequence[Tensor] = (),
        C: Sequence[Tensor] = (),
        D: Optional[Sequence[Sequence[Optional[Tensor]]]] = None,
        b: Optional[Tensor] = None,
        mass_matrix: Optional[Tensor] = None,
        parameters: Optional[Sequence[Tensor]] = None,
    ):
        n = A.shape[0]
        if A.shape != (n, n):
            raise ValueError(f"A must be square, got shape {tuple(A.shape)}")

        self.A = A
        self.B = list(B)
        self.C = list(C)
        self.b = (
            b
            if b is not None
            else torch.zeros(n, dtype=A.dtype, device=A.device)
        )
        self.mass_matrix = (
            mass_matrix
            if mass_matrix is not None
            else torch.eye(n, dtype=A.dtype, device=A.device)
        )
        self.D = D

        for j, B_j in enumerate(self.B):
            if B_j.dim() != 2 or B_j.shape[0] != n:
                raise ValueError(
                    f"B[{j}] must have shape ({n}, n_p), got {tuple(B_j.shape)}"
                )
        for k, C_k in enumerate(self.C):
            if C_k.dim() != 2 or C_k.shape[1] != n:
                raise ValueError(
                    f"C[{k}] must have shape (m, {n}), got {tuple(C_k.shape)}"
                )

        if parameters is None:
            parameters = [
                torch.zeros(B_j.shape[1], dtype=A.dtype, device=A.device)
                for B_j in self.B
            ]
        self._parameters = list(parameters)

    @property
    def num_parameters(self) -> int:
        return len(self.B)

    @property
    def num_responses(self) -> int:
        return len(self.C)

    def nominal_parameters(self) -> List[Tensor]:
        return list(self._parameters)

    def steady_state(self, p: Optional[Sequence[Tensor]] = None) -> Tensor:
        """Closed-form steady state A^{-1} (b - sum_j B_j p_j)."""
        if p is None:
            p = self._parameters
        return torch.linalg.solve(self.A, self._forcing(p))

    def _forcing(self, p: Sequence[Tensor]) -> Tensor:
        rhs = self.b.clone()
        for B_j, p_j in zip(self.B, p):
            rhs = rhs - B_j @ p_j
        return rhs

    def _d(self, k: int, j: int) -> Optional[Tensor]:
        if self.D is None:
            return None
        return self.D[k][j]

    def residual(self, x, x_dot, p, t):
        rhs = self._forcing(p)
        if x.dim() == 2:
            rhs = rhs.unsqueeze(-1)
        return self.mass_matrix @ x_dot + self.A @ x - rhs

    def jacobian(self, x, x_dot, p, t, alpha, beta):
        return alpha * self.mass_matrix + beta * self.A

    def response(self, x, p, response_index=0):
        g = self.C[response_index] @ x
        for j, p_j in enumerate(p):
            D_kj = self._d(response_index, j)
            if D_kj is not None:
                g = g + D_kj @ p_j
        return g

    def response_derivatives(
        self, x, p, response_index=0, parameter_index=0
    ):
        C_k = self.C[response_index]
        D_kj = self._d(response_index, parameter_index)
        if D_kj is None:
            D_kj = torch.zeros(
                C_k.shape[0],
                self.B[parameter_index].shape[1],
                dtype=C_k.dtype,
                device=C_k.device,
            )
        return ResponseDerivatives(dg_dx=C_k.clone(), dg_dp=D_kj.clone())

    def parameter_jacobian(self, x, p, parameter_index=0):
        return self.B[parameter_index].clone()
