"""Solution history of a pseudo-transient run."""

from typing import List, Union

import torch
from tensordict import tensorclass
from torch import Tensor

from pseudotransient.integration._interpolation import hermite_interpolate


@tensorclass
class SolutionHistory:
    """Accepted samples of one pseudo-time integration.

    As a tensorclass, SolutionHistory supports device movement, dtype
    conversion and ``torch.save`` / ``torch.load``.

    Attributes
    ----------
    t : Tensor
        Pseudo-times of the samples, shape (K,), strictly increasing.
    x : Tensor
        States, shape (K, *state_shape).
    x_dot : Tensor
        First time derivatives, shape (K, *state_shape).
    x_dot_dot : Tensor
        Second time derivatives, shape (K, *state_shape).
    dt : Tensor
        Step size that produced each sample, shape (K,). Zero for the
        initial sample.

    Notes
    -----
    The forward and adjoint phases of a sensitivity run produce two
    separate histories; their time coordinates are unrelated and must not be
    concatenated.
    """

    t: Tensor
    x: Tensor
    x_dot: Tensor
    x_dot_dot: Tensor
    dt: Tensor

    @property
    def num_samples(self) -> int:
        """Number of stored samples (initial state included)."""
        return self.t.shape[0]

    @property
    def t_final(self) -> float:
        """Pseudo-time of the last sample."""
        return self.t[-1].item()

    def __call__(self, t_query: Union[float, Tensor]) -> Tensor:
        """Evaluate the state at time(s) ``t_query`` by Hermite interpolation."""
        return hermite_interpolate(self.t, self.x, self.x_dot, t_query)


def stack_history(
    t: List[float],
    x: List[Tensor],
    x_dot: List[Tensor],
    x_dot_dot: List[Tensor],
    dt: List[float],
) -> SolutionHistory:
    """Build a :class:`SolutionHistory` from per-sample lists."""
    # Use float64 for time points for precision
    t_dtype = torch.float64 if x[0].dtype.is_floating_point else x[0].dtype
    device = x[0].device
    return SolutionHistory(
        t=torch.tensor(t, dtype=t_dtype, device=device),
        x=torch.stack(x),
        x_dot=torch.stack(x_dot),
        x_dot_dot=torch.stack(x_dot_dot),
        dt=torch.tensor(dt, dtype=t_dtype, device=device),
        batch_size=[],
    )
