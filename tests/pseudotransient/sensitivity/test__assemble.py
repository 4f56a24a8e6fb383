"""Tests for assemble_sensitivity."""

import pytest
import torch

from pseudotransient.sensitivity import (
    InternalInvariantError,
    assemble_sensitivity,
)


class TestAssembleSensitivity:
    def test_formula(self):
        y = torch.tensor([[1.0, 0.0], [2.0, -1.0], [0.5, 3.0]], dtype=torch.float64)
        dg_dp = torch.tensor([[1.0, 2.0], [3.0, 4.0]], dtype=torch.float64)
        df_dp = torch.arange(6, dtype=torch.float64).reshape(3, 2)

        result = assemble_sensitivity(y, dg_dp, df_dp)

        assert result.shape == (2, 2)
        assert torch.allclose(result, dg_dp.T - df_dp.T @ y)

    def test_vector_adjoint(self):
        y = torch.tensor([1.0, 1.0], dtype=torch.float64)
        dg_dp = torch.zeros(1, 3, dtype=torch.float64)
        df_dp = torch.ones(2, 3, dtype=torch.float64)

        result = assemble_sensitivity(y, dg_dp, df_dp)

        assert result.shape == (3, 1)
        assert torch.allclose(result, torch.full((3, 1), -2.0, dtype=torch.float64))

    def test_does_not_modify_inputs(self):
        y = torch.ones(2, 1, dtype=torch.float64)
        dg_dp = torch.ones(1, 1, dtype=torch.float64)
        df_dp = torch.ones(2, 1, dtype=torch.float64)

        assemble_sensitivity(y, dg_dp, df_dp)

        assert torch.equal(y, torch.ones(2, 1, dtype=torch.float64))
        assert torch.equal(dg_dp, torch.ones(1, 1, dtype=torch.float64))

    @pytest.mark.parametrize(
        "y_shape,dg_dp_shape,df_dp_shape",
        [
            ((3, 2), (2, 4), (2, 4)),  # df_dp rows != n
            ((3, 2), (1, 4), (3, 4)),  # dg_dp rows != m
            ((3, 2), (2, 3), (3, 4)),  # n_p disagrees
            ((3, 2, 1), (2, 4), (3, 4)),  # y not a matrix
            ((3, 2), (4,), (3, 4)),  # dg_dp not a matrix
        ],
    )
    def test_shape_mismatch(self, y_shape, dg_dp_shape, df_dp_shape):
        with pytest.raises(InternalInvariantError):
            assemble_sensitivity(
                torch.zeros(y_shape, dtype=torch.float64),
                torch.zeros(dg_dp_shape, dtype=torch.float64),
                torch.zeros(df_dp_shape, dtype=torch.float64),
            )
