"""Flattening of structured (TensorDict) states to state vectors."""

from typing import Callable, List, Tuple, Union

import torch
from tensordict import TensorDict


def flatten_state(
    x: Union[torch.Tensor, TensorDict],
) -> Tuple[
    torch.Tensor, Callable[[torch.Tensor], Union[torch.Tensor, TensorDict]]
]:
    """
    Flatten a Tensor or TensorDict state to a vector of shape (n,).

    Parameters
    ----------
    x : Tensor or TensorDict
        The state. A TensorDict must have an empty batch size; its leaves
        may have any shape and may be nested.

    Returns
    -------
    flat : Tensor
        State vector. Leaves are concatenated in sorted flattened-key order.
    unflatten : callable
        Restores the original structure from a vector of shape (n,). For a
        plain Tensor both functions are the identity apart from reshaping.

    Raises
    ------
    ValueError
        If a TensorDict state has a non-empty batch size.
    """
    if isinstance(x, torch.Tensor):
        shape = x.shape

        def unflatten_tensor(flat: torch.Tensor) -> torch.Tensor:
            return flat.reshape(shape)

        return x.reshape(-1), unflatten_tensor

    if len(x.batch_size) != 0:
        raise ValueError(
            f"TensorDict states must have batch_size=[], got {list(x.batch_size)}"
        )

    x_flat_keys = x.flatten_keys(separator=".")
    flat_keys = sorted(x_flat_keys.keys())

    shapes: List[Tuple[str, Tuple[int, ...]]] = []
    flat_parts = []
    for key in flat_keys:
        leaf = x_flat_keys[key]
        shapes.append((key, tuple(leaf.shape)))
        flat_parts.append(leaf.reshape(-1))

    flat = torch.cat(flat_parts)

    def unflatten_tensordict(flat_tensor: torch.Tensor) -> TensorDict:
        flat_td = TensorDict({}, batch_size=[])
        offset = 0
        for key, leaf_shape in shapes:
            numel = 1
            for s in leaf_shape:
                numel *= s
            flat_td[key] = flat_tensor[offset : offset + numel].reshape(
                leaf_shape
            )
            offset += numel
        return flat_td.unflatten_keys(separator=".")

    return flat, unflatten_tensordict
