"""Tests for TensorDict state flattening."""

import pytest
import torch
from tensordict import TensorDict

from pseudotransient.integration import flatten_state


class TestFlattenState:
    def test_tensor(self):
        x = torch.arange(6, dtype=torch.float64).reshape(2, 3)

        flat, unflatten = flatten_state(x)

        assert flat.shape == (6,)
        assert torch.equal(unflatten(flat), x)

    def test_nested_tensordict(self):
        x = TensorDict(
            {
                "velocity": torch.tensor([1.0, 2.0], dtype=torch.float64),
                "body": {
                    "angle": torch.tensor([3.0], dtype=torch.float64),
                },
            },
            batch_size=[],
        )

        flat, unflatten = flatten_state(x)

        # Sorted keys: "body.angle" before "velocity"
        assert torch.equal(
            flat, torch.tensor([3.0, 1.0, 2.0], dtype=torch.float64)
        )
        restored = unflatten(flat * 2)
        assert isinstance(restored, TensorDict)
        assert torch.equal(
            restored["body", "angle"], torch.tensor([6.0], dtype=torch.float64)
        )
        assert torch.equal(
            restored["velocity"], torch.tensor([2.0, 4.0], dtype=torch.float64)
        )

    def test_batched_tensordict_raises(self):
        x = TensorDict({"a": torch.zeros(3, 2)}, batch_size=[3])

        with pytest.raises(ValueError, match="batch_size"):
            flatten_state(x)
