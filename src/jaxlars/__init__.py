"""
JAXLARS: sparse basis sequences with incremental least squares

Builds nested sequences of sparse linear models over a dictionary of
candidate basis functions (e.g. orthogonal polynomials) by least angle
regression, lasso or greedy forward selection. Every step refits the active
model through an incrementally updated QR factorization.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .basis import BasisFunction, BasisLibrary, orthogonal_polynomial
from .delta import BasisDelta
from .design import DesignProxy
from .exceptions import InvalidArgumentError, NumericalInstabilityError
from .factory import BasisSequenceFactory, build_basis_sequence

# Metrics
from .metrics import (
    compute_aic,
    compute_aicc,
    compute_bic,
    compute_corrected_loo,
    compute_information_criterion,
    compute_loo_mse,
    compute_mse,
    compute_r2,
)
from .model_selection import score_steps, select_best_step

# Selection policies
from .policies import (
    CustomScoringPolicy,
    GreedyCorrelationPolicy,
    LeastAnglePolicy,
    PolicyContext,
    SelectionPolicy,
    get_policy,
)
from .sequence import BasisSequence, BasisStep
from .solver import IncrementalQRSolver

__all__ = [
    # Version
    "__version__",
    # Dictionary and design
    "BasisFunction",
    "BasisLibrary",
    "orthogonal_polynomial",
    "DesignProxy",
    # Core
    "BasisSequenceFactory",
    "build_basis_sequence",
    "IncrementalQRSolver",
    "BasisDelta",
    "BasisSequence",
    "BasisStep",
    # Errors
    "InvalidArgumentError",
    "NumericalInstabilityError",
    # Policies
    "SelectionPolicy",
    "GreedyCorrelationPolicy",
    "LeastAnglePolicy",
    "CustomScoringPolicy",
    "PolicyContext",
    "get_policy",
    # Metrics and model selection
    "compute_aic",
    "compute_aicc",
    "compute_bic",
    "compute_information_criterion",
    "compute_mse",
    "compute_r2",
    "compute_loo_mse",
    "compute_corrected_loo",
    "score_steps",
    "select_best_step",
]
