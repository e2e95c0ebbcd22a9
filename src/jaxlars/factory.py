"""
Basis sequence factory for JAXLARS.

Drives the selection policy and the incremental least-squares solver to
produce a :class:`~jaxlars.sequence.BasisSequence`.
"""

from __future__ import annotations

import inspect
import logging
import warnings
from typing import Any, Callable, List, Optional, Sequence, Set, Union

import numpy as np

from .basis import BasisLibrary
from .delta import BasisDelta
from .design import DesignProxy
from .exceptions import InvalidArgumentError, NumericalInstabilityError
from .policies import PolicyContext, SelectionPolicy, get_policy
from .sequence import BasisSequence
from .solver import IncrementalQRSolver
from .utils import check_consistent_length, validate_array, validate_indices

logger = logging.getLogger(__name__)


def relative_l1_change(previous_norm: float, current_norm: float) -> float:
    """
    Relative change ``|1 - previous / current|`` between two L1 norms.

    Returns 0 when both norms vanish and ``inf`` when only the current one does.
    """
    if current_norm == 0.0:
        return 0.0 if previous_norm == 0.0 else float("inf")
    return abs(1.0 - previous_norm / current_norm)


class BasisSequenceFactory:
    """
    Builder of nested sparse models over a basis dictionary.

    Parameters
    ----------
    policy : str, SelectionPolicy or callable
        Selection policy: "least_angle", "lasso", "greedy_correlation", a
        policy instance, or a scoring function ``f(columns, residual)``.
    verbose : bool
        If True, log every step at INFO level (otherwise DEBUG).
    maximum_relative_convergence : float
        Stop when the relative change of the coefficients' L1 norm between
        two consecutive steps falls below this value.
    max_terms : int, optional
        Maximum size of the active set.
    max_iterations : int, optional
        Maximum number of accepted steps. Defaults to
        ``8 * min(n_samples, n_candidates)``.
    tolerance : float
        Relative rank tolerance of the least-squares solver.
    score_tolerance : float
        Scores not larger than ``score_tolerance * ||y||`` are treated as zero.
    n_jobs : int, optional
        Worker threads used to evaluate design columns (``build`` only).

    Examples
    --------
    >>> library = BasisLibrary(n_features=1).add_orthogonal_polynomials("legendre", 6)
    >>> factory = BasisSequenceFactory(policy="least_angle")
    >>> sequence = factory.build(X, y, library)
    >>> print(sequence.expression())
    """

    def __init__(
        self,
        policy: Union[str, SelectionPolicy, Callable] = "least_angle",
        verbose: bool = False,
        maximum_relative_convergence: float = 1e-6,
        max_terms: Optional[int] = None,
        max_iterations: Optional[int] = None,
        tolerance: float = 1e-10,
        score_tolerance: float = 1e-12,
        n_jobs: Optional[int] = None,
    ):
        self.policy = policy
        self.verbose = verbose
        self.maximum_relative_convergence = maximum_relative_convergence
        self.max_terms = max_terms
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.score_tolerance = score_tolerance
        self.n_jobs = n_jobs

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_params(self, deep: bool = True) -> dict:
        """Constructor parameters mapped to their current values."""
        sig = inspect.signature(self.__init__)
        return {name: getattr(self, name) for name in sig.parameters if name != "self"}

    def set_params(self, **params) -> BasisSequenceFactory:
        """
        Set constructor parameters.

        Raises
        ------
        InvalidArgumentError
            If a parameter name is not valid for this factory.
        """
        valid = self.get_params()
        for key, value in params.items():
            if key not in valid:
                raise InvalidArgumentError(
                    f"Invalid parameter {key!r} for {type(self).__name__}. "
                    f"Valid parameters: {sorted(valid)}."
                )
            setattr(self, key, value)
        return self

    def set_verbose(self, verbose: bool) -> None:
        self.verbose = verbose

    def get_verbose(self) -> bool:
        return self.verbose

    def set_maximum_relative_convergence(self, value: float) -> None:
        self.maximum_relative_convergence = value

    def get_maximum_relative_convergence(self) -> float:
        return self.maximum_relative_convergence

    def _validate_config(self) -> None:
        if self.maximum_relative_convergence < 0:
            raise InvalidArgumentError(
                "maximum_relative_convergence must be non-negative, "
                f"got {self.maximum_relative_convergence}"
            )
        if self.max_terms is not None and self.max_terms < 1:
            raise InvalidArgumentError(f"max_terms must be positive, got {self.max_terms}")
        if self.max_iterations is not None and self.max_iterations < 1:
            raise InvalidArgumentError(
                f"max_iterations must be positive, got {self.max_iterations}"
            )
        if self.tolerance <= 0:
            raise InvalidArgumentError(f"tolerance must be positive, got {self.tolerance}")
        if self.score_tolerance < 0:
            raise InvalidArgumentError(
                f"score_tolerance must be non-negative, got {self.score_tolerance}"
            )

    def __repr__(self) -> str:
        sig = inspect.signature(self.__init__)
        parts = []
        for name, p in sig.parameters.items():
            if name == "self":
                continue
            value = getattr(self, name)
            if value is not p.default:
                parts.append(f"{name}={value!r}")
        return f"{type(self).__name__}({', '.join(parts)})"

    def _log(self, message: str, *args) -> None:
        logger.log(logging.INFO if self.verbose else logging.DEBUG, message, *args)

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def build(
        self,
        X,
        y,
        library: BasisLibrary,
        indices: Optional[Sequence[int]] = None,
    ) -> BasisSequence:
        """
        Build a basis sequence from a sample and a dictionary.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Input sample; ``n_features`` must match ``library.n_features``.
        y : array-like of shape (n_samples,) or (n_samples, 1)
            Scalar response.
        library : BasisLibrary
            Candidate dictionary.
        indices : sequence of int, optional
            Restrict the candidates to these dictionary indices.

        Returns
        -------
        sequence : BasisSequence
            Finalized sequence, one step per accepted iteration.

        Raises
        ------
        InvalidArgumentError
            On inconsistent dimensions, non-finite data or an invalid
            restriction. Raised before any iteration runs.
        """
        X = validate_array(X, name="X")
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.ndim != 2:
            raise InvalidArgumentError(f"X must be 2D, got {X.ndim}D")
        if X.shape[1] != library.n_features:
            raise InvalidArgumentError(
                f"X has {X.shape[1]} features but the library expects {library.n_features}"
            )
        y = self._validate_response(y)
        check_consistent_length(X, y)
        if len(library) == 0:
            raise InvalidArgumentError("The basis library is empty")
        validate_indices(indices, len(library))

        design = DesignProxy(X, library, n_jobs=self.n_jobs)
        return self.build_from_design(design, y, indices)

    def build_marginals(
        self,
        X,
        Y,
        library: BasisLibrary,
        indices: Optional[Sequence[int]] = None,
    ) -> List[BasisSequence]:
        """
        Build one basis sequence per output column of ``Y``.

        The design columns are evaluated once and shared between outputs.
        """
        Y = validate_array(Y, name="Y")
        if Y.ndim == 1:
            Y = Y.reshape(-1, 1)
        if Y.ndim != 2:
            raise InvalidArgumentError(f"Y must be 1D or 2D, got {Y.ndim}D")

        X = validate_array(X, name="X")
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.ndim != 2 or X.shape[1] != library.n_features:
            raise InvalidArgumentError(
                f"X must have shape (n_samples, {library.n_features}), got {X.shape}"
            )
        check_consistent_length(X, Y)
        if len(library) == 0:
            raise InvalidArgumentError("The basis library is empty")
        validate_indices(indices, len(library))

        design = DesignProxy(X, library, n_jobs=self.n_jobs)
        return [self.build_from_design(design, Y[:, j], indices) for j in range(Y.shape[1])]

    @staticmethod
    def _validate_response(y) -> np.ndarray:
        y = validate_array(y, name="y")
        if y.ndim == 2 and y.shape[1] == 1:
            y = y[:, 0]
        if y.ndim != 1:
            raise InvalidArgumentError(
                f"y must be a scalar response of shape (n_samples,), got {y.shape}; "
                "use build_marginals for several outputs"
            )
        return y

    def build_from_design(
        self,
        design: DesignProxy,
        y,
        indices: Optional[Sequence[int]] = None,
    ) -> BasisSequence:
        """
        Build a basis sequence from an already constructed design provider.

        Parameters
        ----------
        design : DesignProxy
            Lazy design matrix (shared cache).
        y : array-like of shape (n_samples,)
            Scalar response.
        indices : sequence of int, optional
            Restrict the candidates to these dictionary indices.
        """
        self._validate_config()
        y = self._validate_response(y)
        if y.shape[0] != design.n_samples:
            raise InvalidArgumentError(
                f"y has {y.shape[0]} samples but the design has {design.n_samples}"
            )
        pool = validate_indices(indices, design.n_basis)

        policy = get_policy(self.policy)
        solver = IncrementalQRSolver(design.n_samples, tolerance=self.tolerance)
        sequence = BasisSequence(design.n_basis, names=design.names, policy=policy.name)

        max_size = min(len(pool), design.n_samples)
        if self.max_terms is not None:
            max_size = min(max_size, self.max_terms)
        max_iterations = self.max_iterations or 8 * min(design.n_samples, len(pool))
        score_floor = self.score_tolerance * max(float(np.linalg.norm(y)), np.finfo(float).tiny)

        active: List[int] = []
        excluded: Set[int] = set()
        residual = policy.initialize(design, y, pool)
        previous_norm = 0.0
        stop_reason = None

        self._log(
            "Building basis sequence: policy=%s, %d candidates, %d samples",
            policy.name, len(pool), design.n_samples,
        )

        while stop_reason is None:
            removals = policy.pending_removals()
            if removals:
                delta = BasisDelta.from_changes(active, removed_positions=removals)
                solver.update(delta, design)
            else:
                delta = self._grow(design, solver, policy, pool, active, excluded,
                                   residual, score_floor)
                if delta is None:
                    stop_reason = "degenerate"
                    break
            active = list(delta.current)

            try:
                coefficients = solver.solve(y)
            except NumericalInstabilityError as exc:
                warnings.warn(
                    f"Stopping after {len(sequence)} steps: {exc}", stacklevel=2
                )
                stop_reason = "numerical_instability"
                break

            rss = float(np.sum(solver.residual(y) ** 2))
            active_set = set(active)
            candidates = [j for j in pool if j not in excluded and j not in active_set]
            residual = policy.advance(
                PolicyContext(
                    design=design,
                    solver=solver,
                    response=y,
                    delta=delta,
                    coefficients=coefficients,
                    candidates=candidates,
                )
            )

            current_norm = float(np.sum(np.abs(coefficients)))
            convergence = relative_l1_change(previous_norm, current_norm)
            previous_norm = current_norm
            sequence.append(active, coefficients, delta, convergence, rss)
            self._log(
                "Step %d: added %s, removed %s, size %d, rss %.6g, convergence %.3g",
                len(sequence), list(delta.added_indices), list(delta.removed_indices),
                len(active), rss, convergence,
            )

            stop_reason = self._stop_reason(
                convergence, len(active), len(sequence), max_size,
                len(pool) - len(excluded), max_iterations,
            )

        self._log("Stopped after %d steps: %s", len(sequence), stop_reason)
        return sequence.finalize(stop_reason)

    def _grow(
        self,
        design: DesignProxy,
        solver: IncrementalQRSolver,
        policy: SelectionPolicy,
        pool: List[int],
        active: List[int],
        excluded: Set[int],
        residual: np.ndarray,
        score_floor: float,
    ) -> Optional[BasisDelta]:
        """Add the best scoring candidate the solver accepts; None if there is none."""
        active_set = set(active)
        candidates = [j for j in pool if j not in active_set and j not in excluded]
        if not candidates:
            return None

        scores = policy.relevance(design.evaluate_columns(candidates), residual)
        scores = np.where(np.isfinite(scores), scores, -np.inf)
        # decreasing score, then increasing dictionary index
        order = np.lexsort((np.asarray(candidates), -scores))

        for position in order:
            if not scores[position] > score_floor:
                break
            index = candidates[position]
            delta = BasisDelta.from_changes(active, added_indices=[index])
            try:
                solver.update(delta, design)
            except NumericalInstabilityError as exc:
                excluded.add(index)
                self._log("Excluding candidate %d: %s", index, exc)
                continue
            return delta
        return None

    def _stop_reason(
        self,
        convergence: float,
        size: int,
        n_steps: int,
        max_size: int,
        n_eligible: int,
        max_iterations: int,
    ) -> Optional[str]:
        if convergence < self.maximum_relative_convergence:
            return "converged"
        if size >= min(max_size, n_eligible):
            if self.max_terms is not None and size >= self.max_terms:
                return "max_terms"
            return "exhausted"
        if n_steps >= max_iterations:
            return "max_iterations"
        return None


def build_basis_sequence(
    X,
    y,
    library: BasisLibrary,
    indices: Optional[Sequence[int]] = None,
    **config: Any,
) -> BasisSequence:
    """
    Convenience function to build a basis sequence.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Input sample.
    y : array-like of shape (n_samples,)
        Scalar response.
    library : BasisLibrary
        Candidate dictionary.
    indices : sequence of int, optional
        Restriction of the dictionary.
    **config
        Parameters of :class:`BasisSequenceFactory`.

    Returns
    -------
    sequence : BasisSequence

    Examples
    --------
    >>> sequence = build_basis_sequence(X, y, library, policy="lasso")
    >>> sequence.last.indices
    """
    return BasisSequenceFactory(**config).build(X, y, library, indices)
