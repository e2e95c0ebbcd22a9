"""Tests for metrics and step selection."""

import numpy as np
import pytest

from jaxlars.design import DesignProxy
from jaxlars.exceptions import InvalidArgumentError
from jaxlars.factory import BasisSequenceFactory
from jaxlars.metrics import (
    compute_aic,
    compute_aicc,
    compute_bic,
    compute_corrected_loo,
    compute_information_criterion,
    compute_loo_mse,
    compute_mse,
    compute_r2,
)
from jaxlars.model_selection import score_steps, select_best_step
from jaxlars.sequence import BasisSequence


@pytest.fixture
def small_problem():
    rng = np.random.default_rng(11)
    Phi = np.column_stack([np.ones(15), rng.normal(size=(15, 2))])
    y = Phi @ np.array([1.0, -2.0, 0.5]) + 0.2 * rng.normal(size=15)
    return Phi, y


class TestInformationCriteria:
    """Tests for AIC, AICc and BIC."""

    def test_aic_value(self):
        """AIC matches the Gaussian log-likelihood formula."""
        n, k, mse = 100, 3, 0.5
        log_likelihood = -n / 2 * np.log(2 * np.pi * mse) - n / 2
        assert compute_aic(n, k, mse) == pytest.approx(-2 * log_likelihood + 2 * k)

    def test_bic_penalizes_more(self):
        """For n > e^2, BIC penalizes parameters more than AIC."""
        assert compute_bic(100, 5, 0.1) > compute_aic(100, 5, 0.1)

    def test_aicc(self):
        """AICc adds a small-sample correction and is infinite when n <= k + 1."""
        assert compute_aicc(20, 3, 0.1) > compute_aic(20, 3, 0.1)
        assert compute_aicc(4, 3, 0.1) == float("inf")

    def test_zero_mse(self):
        """A perfect fit gives a finite criterion."""
        assert np.isfinite(compute_bic(10, 2, 0.0))

    def test_dispatch(self):
        """compute_information_criterion selects by name."""
        assert compute_information_criterion(50, 2, 0.3, "aic") == compute_aic(50, 2, 0.3)
        with pytest.raises(InvalidArgumentError, match="Unknown criterion"):
            compute_information_criterion(50, 2, 0.3, "hqic")


class TestRegressionMetrics:
    """Tests for MSE and R^2."""

    def test_mse(self):
        assert compute_mse([1.0, 2.0, 3.0], [1.0, 2.0, 5.0]) == pytest.approx(4.0 / 3.0)

    def test_r2(self):
        y = np.array([1.0, 2.0, 3.0, 4.0])
        assert compute_r2(y, y) == 1.0
        assert compute_r2(y, np.full(4, y.mean())) == pytest.approx(0.0)
        assert compute_r2(np.ones(3), np.ones(3)) == 1.0


class TestLeaveOneOut:
    """Tests for leave-one-out estimates."""

    def test_matches_refitting(self, small_problem):
        """The closed form equals explicit leave-one-out refits."""
        Phi, y = small_problem
        errors = []
        for i in range(len(y)):
            keep = np.arange(len(y)) != i
            beta = np.linalg.lstsq(Phi[keep], y[keep], rcond=None)[0]
            errors.append((y[i] - Phi[i] @ beta) ** 2)
        assert compute_loo_mse(Phi, y) == pytest.approx(np.mean(errors))

    def test_corrected(self, small_problem):
        """The correction factor uses n/(n-k) and the inverse Gram trace."""
        Phi, y = small_problem
        n, k = Phi.shape
        factor = n / (n - k) * (1 + np.trace(np.linalg.inv(Phi.T @ Phi)))
        assert compute_corrected_loo(Phi, y) == pytest.approx(compute_loo_mse(Phi, y) * factor)
        assert compute_corrected_loo(Phi, y) > compute_loo_mse(Phi, y)

    def test_saturated_model(self, small_problem):
        """With as many terms as samples the corrected error is infinite."""
        _, y = small_problem
        assert compute_corrected_loo(np.eye(15), y) == float("inf")

    def test_unit_leverage(self):
        """A point fitted exactly by its own column has infinite LOO error."""
        Phi = np.column_stack([np.eye(6)[:, 0], np.linspace(0, 1, 6)])
        assert compute_loo_mse(Phi, np.arange(6.0)) == float("inf")

    def test_empty_model(self):
        """Without terms the LOO error is the mean square of y."""
        y = np.array([1.0, -2.0, 3.0])
        assert compute_loo_mse(np.zeros((3, 0)), y) == pytest.approx(14.0 / 3.0)
        assert compute_corrected_loo(np.zeros((3, 0)), y) == pytest.approx(14.0 / 3.0)

    def test_shape_mismatch(self, small_problem):
        Phi, y = small_problem
        with pytest.raises(InvalidArgumentError):
            compute_loo_mse(Phi, y[:-1])


class TestStepSelection:
    """Tests for scoring and selecting sequence steps."""

    @pytest.fixture
    def built(self):
        rng = np.random.default_rng(5)
        Phi = rng.normal(size=(80, 8))
        y = 3.0 * Phi[:, 0] - 2.0 * Phi[:, 1] + 0.1 * rng.normal(size=80)
        design = DesignProxy.from_matrix(Phi)
        factory = BasisSequenceFactory(policy="greedy_correlation", maximum_relative_convergence=0.0)
        return factory.build_from_design(design, y), design, y

    @pytest.mark.parametrize("criterion", ["corrected_loo", "loo", "bic", "aicc"])
    def test_selects_true_support(self, built, criterion):
        """The selected step contains both true terms."""
        sequence, design, y = built
        best, scores = select_best_step(sequence, design, y, criterion=criterion)

        assert len(scores) == len(sequence)
        assert best >= 1
        assert {0, 1} <= set(sequence.indices(best))
        assert scores[best] == min(scores)

    def test_mse_scores(self, built):
        """The mse criterion is the residual sum of squares over n."""
        sequence, design, y = built
        scores = score_steps(sequence, design, y, criterion="mse")
        expected = [step.residual_sum_of_squares / 80 for step in sequence]
        np.testing.assert_allclose(scores, expected)

    def test_unknown_criterion(self, built):
        sequence, design, y = built
        with pytest.raises(InvalidArgumentError, match="Unknown criterion"):
            score_steps(sequence, design, y, criterion="cv")

    def test_length_mismatch(self, built):
        sequence, design, y = built
        with pytest.raises(InvalidArgumentError, match="samples"):
            score_steps(sequence, design, y[:-1])

    def test_empty_sequence(self, built):
        """Selecting from an empty sequence is an error."""
        _, design, y = built
        empty = BasisSequence(n_basis=8).finalize("degenerate")
        with pytest.raises(InvalidArgumentError, match="empty"):
            select_best_step(empty, design, y)
