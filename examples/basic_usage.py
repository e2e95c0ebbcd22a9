"""
Basic Usage Example for JAXLARS.

Builds basis sequences over polynomial dictionaries and picks the best
sparse model of each sequence.
"""

import logging

import numpy as np

from jaxlars import (
    BasisLibrary,
    BasisSequenceFactory,
    DesignProxy,
    select_best_step,
)


def example_polynomial_chaos():
    """Sparse Legendre expansion of a two-input function."""
    print("=" * 60)
    print("Example 1: Sparse Polynomial Chaos (Legendre, lasso)")
    print("=" * 60)

    # Ishigami-like function on [-1, 1]^2
    np.random.seed(42)
    n_samples = 150
    X = np.random.uniform(-1, 1, size=(n_samples, 2))
    y = np.sin(np.pi * X[:, 0]) + 0.7 * np.sin(np.pi * X[:, 1]) ** 2
    y += np.random.randn(n_samples) * 0.01

    library = BasisLibrary(n_features=2, feature_names=["u", "v"]).add_orthogonal_polynomials(
        "legendre", max_degree=7
    )
    print(f"\nDictionary: {len(library)} Legendre terms, {n_samples} samples")

    design = DesignProxy(X, library)
    factory = BasisSequenceFactory(policy="lasso", maximum_relative_convergence=1e-8)
    sequence = factory.build_from_design(design, y)

    print(f"\n{sequence.summary()}")

    best, scores = select_best_step(sequence, design, y, criterion="corrected_loo")
    print(f"\nBest step: {best} ({sequence[best].n_terms} terms)")
    print(f"  corrected LOO error: {scores[best]:.3e}")
    print(f"  {sequence.expression(best)}")


def example_policies():
    """Compare the entry order of the selection policies."""
    print("\n" + "=" * 60)
    print("Example 2: Comparing Selection Policies")
    print("=" * 60)

    # y = 2.5*x0 + 1.2*x0*x1 - 0.8*x1^2 + noise
    np.random.seed(0)
    X = np.random.randn(200, 2)
    y = 2.5 * X[:, 0] + 1.2 * X[:, 0] * X[:, 1] - 0.8 * X[:, 1] ** 2
    y += np.random.randn(200) * 0.1

    library = (
        BasisLibrary(n_features=2)
        .add_constant()
        .add_linear()
        .add_polynomials(max_degree=3)
        .add_interactions(max_order=2)
    )

    for policy in ["greedy_correlation", "least_angle", "lasso"]:
        sequence = BasisSequenceFactory(policy=policy, max_terms=4).build(X, y, library)
        entered = [library.names[j] for step in sequence for j in step.delta.added_indices]
        print(f"\n{policy}:")
        print(f"  entry order: {entered}")
        print(f"  {sequence.expression()}")


def example_custom_policy():
    """Rank candidates with a user scoring function."""
    print("\n" + "=" * 60)
    print("Example 3: Custom Scoring Function")
    print("=" * 60)

    np.random.seed(1)
    X = np.random.uniform(0, 2, size=(100, 1))
    y = 1.0 + 0.5 * X[:, 0] ** 3 + np.random.randn(100) * 0.05

    library = BasisLibrary(n_features=1, feature_names=["x"]).add_constant().add_linear()
    library.add_polynomials(max_degree=5)

    def squared_correlation(columns, residual):
        norms = np.linalg.norm(columns, axis=0)
        return (columns.T @ residual) ** 2 / norms**2

    sequence = BasisSequenceFactory(policy=squared_correlation, max_terms=2).build(X, y, library)
    print(f"\n{sequence.expression()}")
    print(f"Stop reason: {sequence.stop_reason}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    example_polynomial_chaos()
    example_policies()
    example_custom_policy()
