"""Assembly of dg/dp from the steady adjoint state."""

import torch
from torch import Tensor

from pseudotransient.sensitivity._exceptions import InternalInvariantError


def assemble_sensitivity(y: Tensor, dg_dp: Tensor, df_dp: Tensor) -> Tensor:
    """
    Compute dg/dp = (dg/dp)^T - (df/dp)^T y in gradient layout.

    Parameters
    ----------
    y : Tensor
        Steady adjoint multi-vector y*, shape (n, m).
    dg_dp : Tensor
        Partial derivative of the response with respect to the parameters at
        x*, shape (m, n_p).
    df_dp : Tensor
        Partial derivative of the residual with respect to the parameters at
        x*, shape (n, n_p).

    Returns
    -------
    Tensor
        Total sensitivity, shape (n_p, m): one row per parameter component,
        one column per response component.

    Raises
    ------
    InternalInvariantError
        If the operand shapes are inconsistent.

    Examples
    --------
    >>> y = torch.tensor([[0.5], [0.25]], dtype=torch.float64)
    >>> dg_dp = torch.zeros(1, 1, dtype=torch.float64)
    >>> df_dp = torch.tensor([[1.0], [2.0]], dtype=torch.float64)
    >>> assemble_sensitivity(y, dg_dp, df_dp)
    tensor([[-1.]], dtype=torch.float64)
    """
    if y.dim() == 1:
        y = y.unsqueeze(-1)

    if y.dim() != 2 or dg_dp.dim() != 2 or df_dp.dim() != 2:
        raise InternalInvariantError(
            "Sensitivity operands must be matrices, got shapes "
            f"y={tuple(y.shape)}, dg_dp={tuple(dg_dp.shape)}, "
            f"df_dp={tuple(df_dp.shape)}"
        )

    n, m = y.shape
    if df_dp.shape[0] != n or dg_dp.shape != (m, df_dp.shape[1]):
        raise InternalInvariantError(
            "Inconsistent sensitivity operand shapes: "
            f"y={tuple(y.shape)}, dg_dp={tuple(dg_dp.shape)}, "
            f"df_dp={tuple(df_dp.shape)}; expected y=(n, m), "
            "dg_dp=(m, n_p), df_dp=(n, n_p)"
        )

    try:
        return dg_dp.transpose(0, 1) - df_dp.transpose(0, 1) @ y
    except RuntimeError as err:
        raise InternalInvariantError(
            f"Sensitivity assembly failed: {err}"
        ) from err
