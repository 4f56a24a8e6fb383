"""Cubic Hermite interpolation of pseudo-time trajectories."""

from typing import Union

import torch
from torch import Tensor


def hermite_interpolate(
    t_points: Tensor,
    y_points: Tensor,
    dy_points: Tensor,
    t: Union[float, Tensor],
) -> Tensor:
    """
    Evaluate the cubic Hermite interpolant of a trajectory at time(s) t.

    The interpolant matches both the stored states and their time
    derivatives at every sample.

    Parameters
    ----------
    t_points : Tensor
        Sample times, shape (K,), strictly increasing.
    y_points : Tensor
        States at the sample times, shape (K, *state_shape).
    dy_points : Tensor
        Time derivatives at the sample times, shape (K, *state_shape).
    t : float or Tensor
        Query time(s). Scalar or 1D tensor.

    Returns
    -------
    Tensor
        Shape (*state_shape) for a scalar query, (T, *state_shape) for a 1D
        query of length T.

    Raises
    ------
    ValueError
        If a query lies outside [t_points[0], t_points[-1]].

    Notes
    -----
    The Hermite basis functions are:
        H00(s) = 2s^3 - 3s^2 + 1     (value at left endpoint)
        H10(s) = s^3 - 2s^2 + s      (derivative at left, scaled by h)
        H01(s) = -2s^3 + 3s^2        (value at right endpoint)
        H11(s) = s^3 - s^2           (derivative at right, scaled by h)

    where s = (t - t0) / h is the normalized coordinate in [0, 1].
    """
    t = torch.as_tensor(t, dtype=t_points.dtype, device=t_points.device)

    scalar_query = t.dim() == 0
    if scalar_query:
        t = t.unsqueeze(0)

    t_min = t_points[0].item()
    t_max = t_points[-1].item()
    tol = 100 * torch.finfo(t_points.dtype).eps * max(1.0, abs(t_max))
    if t.min().item() < t_min - tol or t.max().item() > t_max + tol:
        raise ValueError(
            f"Query time(s) outside history range [{t_min}, {t_max}]"
        )

    # A single sample has no interval to interpolate over
    if t_points.shape[0] == 1:
        y = y_points[0].expand(t.shape[0], *y_points.shape[1:])
        return y[0] if scalar_query else y

    indices = torch.searchsorted(t_points, t.contiguous())
    indices = indices.clamp(1, t_points.shape[0] - 1)

    t0 = t_points[indices - 1]
    t1 = t_points[indices]
    y0 = y_points[indices - 1]
    y1 = y_points[indices]
    dy0 = dy_points[indices - 1]
    dy1 = dy_points[indices]

    h = t1 - t0
    s = (t - t0) / h

    for _ in range(y0.dim() - 1):
        s = s.unsqueeze(-1)
        h = h.unsqueeze(-1)

    s2 = s * s
    s3 = s2 * s

    H00 = 2.0 * s3 - 3.0 * s2 + 1.0
    H10 = s3 - 2.0 * s2 + s
    H01 = -2.0 * s3 + 3.0 * s2
    H11 = s3 - s2

    y = H00 * y0 + H10 * h * dy0 + H01 * y1 + H11 * h * dy1

    if scalar_query:
        y = y.squeeze(0)

    return y
