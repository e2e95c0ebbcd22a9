"""Tests for the incremental least-squares solver."""

import numpy as np
import pytest

from jaxlars.delta import BasisDelta
from jaxlars.design import DesignProxy
from jaxlars.exceptions import InvalidArgumentError, NumericalInstabilityError
from jaxlars.solver import IncrementalQRSolver


@pytest.fixture
def problem():
    rng = np.random.default_rng(0)
    Phi = rng.normal(size=(50, 6))
    y = Phi @ np.array([1.5, -2.0, 0.0, 0.5, 3.0, 0.0]) + 0.1 * rng.normal(size=50)
    return Phi, y


def lstsq(Phi, y):
    return np.linalg.lstsq(Phi, y, rcond=None)[0]


class TestAddColumn:
    """Tests for column additions."""

    def test_matches_full_fit_after_each_addition(self, problem):
        """Coefficients equal a from-scratch fit at every size."""
        Phi, y = problem
        solver = IncrementalQRSolver(n_samples=50)
        for k in range(Phi.shape[1]):
            solver.add_column(Phi[:, k])
            np.testing.assert_allclose(
                solver.solve(y), lstsq(Phi[:, : k + 1], y), rtol=1e-8, atol=1e-10
            )

    def test_factorization_is_orthogonal_triangular(self, problem):
        """Q has orthonormal columns, R is upper triangular, QR reproduces the columns."""
        Phi, _ = problem
        solver = IncrementalQRSolver(n_samples=50)
        for k in [3, 0, 5]:
            solver.add_column(Phi[:, k])

        Q, R = solver.q, solver.r
        np.testing.assert_allclose(Q.T @ Q, np.eye(3), atol=1e-12)
        np.testing.assert_allclose(np.tril(R, -1), 0.0)
        np.testing.assert_allclose(Q @ R, Phi[:, [3, 0, 5]], atol=1e-12)

    def test_duplicate_column_rejected(self, problem):
        """A linearly dependent column raises and leaves the state untouched."""
        Phi, y = problem
        solver = IncrementalQRSolver(n_samples=50)
        solver.add_column(Phi[:, 0])
        solver.add_column(Phi[:, 1])
        R_before = np.array(solver.r)

        with pytest.raises(NumericalInstabilityError):
            solver.add_column(2.0 * Phi[:, 0] - Phi[:, 1])

        assert solver.n_active == 2
        np.testing.assert_array_equal(solver.r, R_before)
        np.testing.assert_allclose(solver.solve(y), lstsq(Phi[:, :2], y), rtol=1e-8)

    def test_zero_column_rejected(self):
        """A zero column can never be added."""
        solver = IncrementalQRSolver(n_samples=10)
        with pytest.raises(NumericalInstabilityError, match="zero"):
            solver.add_column(np.zeros(10))

    def test_non_finite_column_rejected(self):
        """Columns with NaN are rejected."""
        solver = IncrementalQRSolver(n_samples=3)
        with pytest.raises(NumericalInstabilityError):
            solver.add_column([1.0, np.nan, 2.0])

    def test_more_columns_than_samples(self):
        """Once the columns span the sample space no column can be added."""
        rng = np.random.default_rng(1)
        solver = IncrementalQRSolver(n_samples=3)
        for _ in range(3):
            solver.add_column(rng.normal(size=3))
        with pytest.raises(NumericalInstabilityError):
            solver.add_column(rng.normal(size=3))

    def test_wrong_length(self):
        """Columns must have n_samples entries."""
        solver = IncrementalQRSolver(n_samples=5)
        with pytest.raises(InvalidArgumentError):
            solver.add_column(np.ones(4))


class TestRemoveColumn:
    """Tests for column removals."""

    @pytest.mark.parametrize("position", [0, 2, 4])
    def test_matches_full_fit_after_removal(self, problem, position):
        """Removing any position gives the fit of the remaining columns."""
        Phi, y = problem
        solver = IncrementalQRSolver(n_samples=50)
        for k in range(5):
            solver.add_column(Phi[:, k], label=k)

        solver.remove_column(position)

        remaining = [k for k in range(5) if k != position]
        assert solver.labels == tuple(remaining)
        np.testing.assert_allclose(
            solver.solve(y), lstsq(Phi[:, remaining], y), rtol=1e-8, atol=1e-10
        )
        np.testing.assert_allclose(solver.q @ solver.r, Phi[:, remaining], atol=1e-12)
        np.testing.assert_allclose(np.tril(solver.r, -1), 0.0, atol=1e-14)

    def test_add_remove_is_identity(self, problem):
        """Removing a just-added column restores the previous fit."""
        Phi, y = problem
        solver = IncrementalQRSolver(n_samples=50)
        for k in range(3):
            solver.add_column(Phi[:, k])
        before = solver.solve(y)
        fitted_before = solver.fitted(y)

        solver.add_column(Phi[:, 4])
        solver.remove_column(3)

        np.testing.assert_allclose(solver.solve(y), before, rtol=1e-10, atol=1e-12)
        np.testing.assert_allclose(solver.fitted(y), fitted_before, atol=1e-10)

    def test_out_of_range(self, problem):
        """Positions outside the active set raise InvalidArgumentError."""
        Phi, _ = problem
        solver = IncrementalQRSolver(n_samples=50)
        solver.add_column(Phi[:, 0])
        with pytest.raises(InvalidArgumentError):
            solver.remove_column(1)
        with pytest.raises(InvalidArgumentError):
            solver.remove_column(-1)
        assert solver.n_active == 1

    def test_remove_last_column(self, problem):
        """Removing the only column leaves an empty factorization."""
        Phi, y = problem
        solver = IncrementalQRSolver(n_samples=50)
        solver.add_column(Phi[:, 0])
        solver.remove_column(0)
        assert solver.n_active == 0
        assert solver.solve(y).shape == (0,)


class TestSolve:
    """Tests for solves and derived quantities."""

    def test_empty_solver(self):
        """With no columns the coefficient vector is empty and the residual is y."""
        solver = IncrementalQRSolver(n_samples=4)
        y = np.array([1.0, 2.0, 3.0, 4.0])
        assert solver.solve(y).shape == (0,)
        np.testing.assert_array_equal(solver.residual(y), y)

    def test_deterministic(self, problem):
        """Two identical sequences of updates give identical coefficients."""
        Phi, y = problem
        results = []
        for _ in range(2):
            solver = IncrementalQRSolver(n_samples=50)
            for k in [4, 1, 3]:
                solver.add_column(Phi[:, k])
            solver.remove_column(1)
            results.append(solver.solve(y))
        np.testing.assert_array_equal(results[0], results[1])

    def test_hat_diagonal_and_gram_trace(self, problem):
        """Leverages sum to k and the Gram trace matches a dense inverse."""
        Phi, _ = problem
        solver = IncrementalQRSolver(n_samples=50)
        for k in range(4):
            solver.add_column(Phi[:, k])

        assert solver.hat_diagonal().sum() == pytest.approx(4.0)
        A = Phi[:, :4]
        assert solver.inverse_gram_trace() == pytest.approx(np.trace(np.linalg.inv(A.T @ A)))

    def test_invalid_tolerance(self):
        """Tolerance must be positive."""
        with pytest.raises(InvalidArgumentError):
            IncrementalQRSolver(n_samples=3, tolerance=0.0)


class TestUpdate:
    """Tests for delta-driven updates."""

    def test_update_matches_full_fit(self, problem):
        """Applying deltas reproduces the fit of the delta's current set."""
        Phi, y = problem
        design = DesignProxy.from_matrix(Phi)
        solver = IncrementalQRSolver(n_samples=50)

        delta = BasisDelta.from_changes((), added_indices=[2, 0, 5])
        solver.update(delta, design)
        delta = BasisDelta.from_changes(delta.current, added_indices=[1], removed_positions=[0])
        solver.update(delta, design)

        assert delta.current == (0, 5, 1)
        assert solver.labels == (0, 5, 1)
        np.testing.assert_allclose(
            solver.solve(y), lstsq(Phi[:, [0, 5, 1]], y), rtol=1e-8, atol=1e-10
        )

    def test_failed_update_is_atomic(self, problem):
        """A dependent column in a multi-column delta rolls back the whole update."""
        Phi = np.column_stack([problem[0], problem[0][:, 0]])
        design = DesignProxy.from_matrix(Phi)
        solver = IncrementalQRSolver(n_samples=50)
        solver.update(BasisDelta.from_changes((), added_indices=[0, 1]), design)

        delta = BasisDelta.from_changes((0, 1), added_indices=[2, 6], removed_positions=[1])
        with pytest.raises(NumericalInstabilityError):
            solver.update(delta, design)

        assert solver.labels == (0, 1)
        np.testing.assert_allclose(solver.q @ solver.r, Phi[:, [0, 1]], atol=1e-12)

    def test_rejects_reordering(self, problem):
        """Deltas that reorder conserved columns are rejected."""
        design = DesignProxy.from_matrix(problem[0])
        solver = IncrementalQRSolver(n_samples=50)
        solver.update(BasisDelta.from_changes((), added_indices=[0, 1]), design)

        with pytest.raises(InvalidArgumentError, match="reorders"):
            solver.update(BasisDelta.between((0, 1), (1, 0)), design)

    def test_rejects_mismatched_start(self, problem):
        """The delta must start from the solver's active set."""
        design = DesignProxy.from_matrix(problem[0])
        solver = IncrementalQRSolver(n_samples=50)
        solver.update(BasisDelta.from_changes((), added_indices=[0]), design)

        with pytest.raises(InvalidArgumentError):
            solver.update(BasisDelta.from_changes((), added_indices=[1]), design)
        with pytest.raises(InvalidArgumentError):
            solver.update(BasisDelta.from_changes((3,), added_indices=[1]), design)
