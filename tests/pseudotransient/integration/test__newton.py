"""Tests for Newton's method with Jacobian caching."""

import torch

from pseudotransient.integration import JacobianCache, newton_solve_cached


class TestJacobianCache:
    def test_cache_stores_lu_factorization(self):
        """Cache should store LU factorization for reuse."""

        def f(x):
            return x**2 - 2

        x0 = torch.tensor([1.0], dtype=torch.float64)
        cache = JacobianCache()

        _, converged, _ = newton_solve_cached(f, x0, cache=cache)

        assert converged
        assert cache.lu_pivots is not None
        assert cache.n_factorizations >= 1

    def test_clear_keeps_counter(self):
        cache = JacobianCache(n_factorizations=3, key=(1.0, 1.0))
        cache.clear()
        assert cache.key is None
        assert cache.lu_factors is None
        assert cache.n_factorizations == 3


class TestNewtonSolveCached:
    def test_simple_scalar(self):
        """Solve x^2 - 2 = 0."""

        def f(x):
            return x**2 - 2

        x0 = torch.tensor([1.5], dtype=torch.float64)
        x, converged, _ = newton_solve_cached(f, x0)

        assert converged
        expected = torch.sqrt(torch.tensor([2.0], dtype=torch.float64))
        assert torch.allclose(x, expected, atol=1e-10)

    def test_multi_column_state(self):
        """A (n, m) guess is solved column-wise with one (n, n) Jacobian."""
        K = torch.tensor([[3.0, 1.0], [1.0, 2.0]], dtype=torch.float64)
        c = torch.eye(2, dtype=torch.float64)

        def f(y):
            return K @ y - c

        y0 = torch.zeros(2, 2, dtype=torch.float64)
        y, converged, info = newton_solve_cached(
            f, y0, jacobian=lambda y_: K
        )

        assert converged
        assert y.shape == (2, 2)
        assert torch.allclose(y, torch.linalg.inv(K), atol=1e-12)
        assert info["n_iterations"] == 1

    def test_cache_key_reuses_factorization_across_calls(self):
        """Same key: no refactorization. New key: one refactorization."""
        A = torch.tensor([[4.0, 1.0], [1.0, 3.0]], dtype=torch.float64)
        cache = JacobianCache()

        for rhs in (1.0, 2.0, 3.0):
            b = torch.full((2,), rhs, dtype=torch.float64)
            _, converged, _ = newton_solve_cached(
                lambda x: A @ x - b,
                torch.zeros(2, dtype=torch.float64),
                jacobian=lambda x: A,
                cache=cache,
                cache_key=(1.0, 1.0),
            )
            assert converged

        assert cache.n_factorizations == 1

        b = torch.ones(2, dtype=torch.float64)
        newton_solve_cached(
            lambda x: 2 * A @ x - b,
            torch.zeros(2, dtype=torch.float64),
            jacobian=lambda x: 2 * A,
            cache=cache,
            cache_key=(2.0, 1.0),
        )
        assert cache.n_factorizations == 2
        assert cache.key == (2.0, 1.0)

    def test_without_key_refactorizes_every_iteration(self):
        def f(x):
            return x**2 - 2

        cache = JacobianCache()
        _, converged, info = newton_solve_cached(
            f, torch.tensor([1.5], dtype=torch.float64), cache=cache
        )

        assert converged
        assert info["n_iterations"] > 1
        assert cache.n_factorizations == info["n_iterations"]

    def test_already_converged_guess(self):
        def f(x):
            return x - 1.0

        x0 = torch.ones(3, dtype=torch.float64)
        x, converged, info = newton_solve_cached(f, x0)

        assert converged
        assert info["n_iterations"] == 0
        assert torch.equal(x, x0)

    def test_non_finite_residual_fails(self):
        def f(x):
            return torch.log(x)

        x0 = torch.tensor([-1.0], dtype=torch.float64)
        _, converged, info = newton_solve_cached(f, x0)

        assert not converged

    def test_max_iterations(self):
        """Newton cannot converge on x^2 + 1 = 0."""

        def f(x):
            return x**2 + 1

        x0 = torch.tensor([0.5], dtype=torch.float64)
        _, converged, info = newton_solve_cached(f, x0, max_iter=5)

        assert not converged
        assert info["n_iterations"] == 5
