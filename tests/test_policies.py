"""Tests for selection policies."""

import numpy as np
import pytest

from jaxlars.design import DesignProxy
from jaxlars.exceptions import InvalidArgumentError
from jaxlars.factory import BasisSequenceFactory
from jaxlars.policies import (
    CustomScoringPolicy,
    GreedyCorrelationPolicy,
    LeastAnglePolicy,
    get_policy,
    normalized_correlation,
)


def orthonormal_design(n_samples=40, n_basis=5, seed=0):
    """Centered orthonormal columns, so correlations with y are its coefficients."""
    rng = np.random.default_rng(seed)
    A = rng.normal(size=(n_samples, n_basis))
    A -= A.mean(axis=0)
    Q, _ = np.linalg.qr(A)
    return Q


class TestNormalizedCorrelation:
    """Tests for the correlation score."""

    def test_scale_invariant(self):
        """Rescaling a column does not change its score."""
        columns = np.array([[1.0, 2.0], [0.0, 0.0], [1.0, 2.0]])
        residual = np.array([1.0, 5.0, -3.0])
        scores = normalized_correlation(columns, residual)
        assert scores[0] == pytest.approx(scores[1])
        assert scores[0] == pytest.approx(2.0 / np.sqrt(2.0))

    def test_zero_column(self):
        """Zero columns score zero."""
        columns = np.zeros((3, 1))
        assert normalized_correlation(columns, np.ones(3))[0] == 0.0


class TestGetPolicy:
    """Tests for the policy registry."""

    @pytest.mark.parametrize(
        "name,cls",
        [
            ("greedy_correlation", GreedyCorrelationPolicy),
            ("least_angle", LeastAnglePolicy),
            ("lasso", LeastAnglePolicy),
        ],
    )
    def test_registered_names(self, name, cls):
        """Registered names build fresh policies with matching names."""
        policy = get_policy(name)
        assert isinstance(policy, cls)
        assert policy.name == name

    def test_lasso_allows_removal(self):
        """Only the lasso variant drops columns."""
        assert get_policy("lasso").allows_removal
        assert not get_policy("least_angle").allows_removal
        assert not get_policy("greedy_correlation").allows_removal

    def test_unknown_name(self):
        """Unknown names raise InvalidArgumentError."""
        with pytest.raises(InvalidArgumentError, match="Unknown policy"):
            get_policy("forward_stagewise")

    def test_custom_needs_function(self):
        """The 'custom' name alone is not enough."""
        with pytest.raises(InvalidArgumentError, match="scoring function"):
            get_policy("custom")

    def test_callable_is_wrapped(self):
        """A bare function becomes a custom scoring policy."""
        policy = get_policy(normalized_correlation)
        assert isinstance(policy, CustomScoringPolicy)
        assert policy.name == "custom"

    def test_instance_is_copied(self):
        """Policy instances are copied so builds do not share state."""
        original = LeastAnglePolicy(lasso=True)
        policy = get_policy(original)
        assert policy is not original
        assert policy.lasso

    def test_invalid_type(self):
        """Non-callable, non-string policies are rejected."""
        with pytest.raises(InvalidArgumentError):
            get_policy(3)


class TestCustomScoringPolicy:
    """Tests for user scoring functions."""

    def test_scores_passed_through(self):
        """Scores come from the user function."""
        policy = CustomScoringPolicy(lambda columns, r: columns.sum(axis=0), name="sum")
        scores = policy.relevance(np.array([[1.0, 2.0], [3.0, 4.0]]), np.zeros(2))
        np.testing.assert_array_equal(scores, [4.0, 6.0])
        assert policy.name == "sum"

    def test_wrong_number_of_scores(self):
        """One score per candidate is required."""
        policy = CustomScoringPolicy(lambda columns, r: np.ones(1))
        with pytest.raises(InvalidArgumentError, match="scores"):
            policy.relevance(np.ones((3, 2)), np.zeros(3))

    def test_not_callable(self):
        """Scoring functions must be callable."""
        with pytest.raises(InvalidArgumentError):
            CustomScoringPolicy("not a function")


class TestEntryOrder:
    """Entry order on designs where it is known in closed form."""

    @pytest.mark.parametrize("policy", ["greedy_correlation", "least_angle", "lasso"])
    def test_orthonormal_design(self, policy):
        """With orthonormal columns, terms enter by decreasing |coefficient|."""
        Q = orthonormal_design()
        coefficients = np.array([2.0, -5.0, 1.0, 4.0, -3.0])
        y = Q @ coefficients + 10.0

        factory = BasisSequenceFactory(policy=policy, maximum_relative_convergence=0.0)
        sequence = factory.build_from_design(DesignProxy.from_matrix(Q), y)

        entered = [step.delta.added_indices[0] for step in sequence]
        assert entered == [1, 3, 4, 0, 2]
        assert all(not step.delta.removed for step in sequence)
        assert sequence.stop_reason == "exhausted"

    def test_least_angle_records_least_squares_coefficients(self):
        """Steps hold the least-squares refit of the active set, not the shrunk path."""
        Q = orthonormal_design()
        y = Q @ np.array([2.0, -5.0, 1.0, 4.0, -3.0])
        design = DesignProxy.from_matrix(Q)

        factory = BasisSequenceFactory(
            policy=LeastAnglePolicy(), maximum_relative_convergence=0.0, max_terms=2
        )
        sequence = factory.build_from_design(design, y)

        assert sequence.last.indices == (1, 3)
        np.testing.assert_allclose(sequence.last.coefficients, [-5.0, 4.0], atol=1e-10)
        assert sequence.stop_reason == "max_terms"
