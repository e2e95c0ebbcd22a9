"""
Selection policies for basis sequence construction.

A policy decides which candidate enters the active set next (and, for
pruning policies, which active column leaves). The builder is written once
against :class:`SelectionPolicy`; variants are chosen by name:

- ``"greedy_correlation"``: orthogonal matching pursuit on the least-squares
  residual
- ``"least_angle"``: least angle regression (LARS)
- ``"lasso"``: LARS with the lasso modification (drops on sign change)
- ``"custom"``: user supplied scoring function
"""

from __future__ import annotations

import abc
import copy
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Tuple, Union

import numpy as np

from .delta import BasisDelta
from .exceptions import InvalidArgumentError


@dataclass
class PolicyContext:
    """
    Everything a policy may read after the solver has been updated.

    Parameters
    ----------
    design : DesignProxy
        Column provider.
    solver : IncrementalQRSolver
        Solver holding the new active set.
    response : np.ndarray
        Response vector.
    delta : BasisDelta
        Change applied at this step.
    coefficients : np.ndarray
        Least-squares coefficients over ``delta.current``.
    candidates : list of int
        Dictionary indices still eligible for addition.
    """

    design: object
    solver: object
    response: np.ndarray
    delta: BasisDelta
    coefficients: np.ndarray
    candidates: List[int]

    @property
    def active(self) -> Tuple[int, ...]:
        return self.delta.current


def normalized_correlation(columns: np.ndarray, residual: np.ndarray) -> np.ndarray:
    """
    Absolute inner products with ``residual`` divided by the column norms.

    Zero columns get a zero score.
    """
    norms = np.linalg.norm(columns, axis=0)
    products = np.abs(columns.T @ residual)
    return np.divide(products, norms, out=np.zeros_like(products), where=norms > 0)


class SelectionPolicy(abc.ABC):
    """
    Base class of selection policies.

    A fresh copy of the policy is used for every build, so subclasses may keep
    per-build state on ``self`` (set up in :meth:`initialize`).
    """

    name: str = "base"
    allows_removal: bool = False

    def initialize(self, design, response: np.ndarray, pool: Sequence[int]) -> np.ndarray:
        """Reset per-build state; return the residual used for the first scoring."""
        return response - np.mean(response)

    @abc.abstractmethod
    def relevance(self, columns: np.ndarray, residual: np.ndarray) -> np.ndarray:
        """Score the candidate ``columns`` (one score per column) against ``residual``."""

    def pending_removals(self) -> List[int]:
        """Positions of active columns to drop before the next addition."""
        return []

    def advance(self, context: PolicyContext) -> np.ndarray:
        """Update state after an accepted step; return the residual for the next scoring."""
        return context.solver.residual(context.response)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class GreedyCorrelationPolicy(SelectionPolicy):
    """
    Forward selection by correlation with the least-squares residual.

    The candidate with the largest ``|x_j . r| / ||x_j||`` enters; the
    residual is the exact least-squares residual of the current active set.
    """

    name = "greedy_correlation"

    def relevance(self, columns: np.ndarray, residual: np.ndarray) -> np.ndarray:
        return normalized_correlation(columns, residual)


class LeastAnglePolicy(SelectionPolicy):
    """
    Least angle regression.

    The path estimate ``mu`` moves along the equiangular direction of the
    active columns until an inactive column is as correlated with ``y - mu``
    as the active ones; that column enters next. The direction is the
    least-squares fit of the path residual on the active columns, so the
    step only needs solves from the incremental solver.

    Parameters
    ----------
    lasso : bool
        If True, apply the lasso modification: when a path coefficient
        reaches zero before the next column enters, the step stops there
        and the column is dropped at the next iteration.
    """

    name = "least_angle"

    def __init__(self, lasso: bool = False):
        self.lasso = lasso
        self.name = "lasso" if lasso else "least_angle"
        self._mu = None
        self._beta = np.zeros(0)
        self._pending: List[int] = []

    @property
    def allows_removal(self) -> bool:
        return self.lasso

    def initialize(self, design, response: np.ndarray, pool: Sequence[int]) -> np.ndarray:
        self._mu = np.full_like(response, np.mean(response))
        self._beta = np.zeros(0)
        self._pending = []
        return response - self._mu

    def relevance(self, columns: np.ndarray, residual: np.ndarray) -> np.ndarray:
        return normalized_correlation(columns, residual)

    def pending_removals(self) -> List[int]:
        pending, self._pending = self._pending, []
        return pending

    def advance(self, context: PolicyContext) -> np.ndarray:
        delta = context.delta
        beta = np.zeros(len(delta.current))
        for p, q in delta.conserved:
            beta[p] = self._beta[q]

        residual = context.response - self._mu
        direction_coef = context.solver.solve(residual)
        direction = context.solver.fitted(residual)

        active_columns = context.design.evaluate_columns(list(delta.current))
        C = float(np.max(normalized_correlation(active_columns, residual)))

        gamma = 1.0
        if context.candidates and C > 0:
            columns = context.design.evaluate_columns(context.candidates)
            norms = np.linalg.norm(columns, axis=0)
            safe = np.where(norms > 0, norms, 1.0)
            c = (columns.T @ residual) / safe
            a = (columns.T @ direction) / safe
            with np.errstate(divide="ignore", invalid="ignore"):
                steps = np.concatenate([(C - c) / (C - a), (C + c) / (C + a)])
            steps = steps[np.isfinite(steps) & (steps > 1e-12)]
            if steps.size:
                gamma = min(1.0, float(np.min(steps)))

        drop = None
        if self.lasso and beta.size > 1:
            with np.errstate(divide="ignore", invalid="ignore"):
                crossings = -beta / direction_coef
            crossings[~np.isfinite(crossings) | (crossings <= 1e-12) | (beta == 0)] = np.inf
            position = int(np.argmin(crossings))
            if crossings[position] < gamma:
                gamma = float(crossings[position])
                drop = position

        self._beta = beta + gamma * direction_coef
        self._mu = self._mu + gamma * direction
        if drop is not None:
            self._beta[drop] = 0.0
            self._pending = [drop]

        return context.response - self._mu

    def __repr__(self) -> str:
        return f"LeastAnglePolicy(lasso={self.lasso})"


class CustomScoringPolicy(SelectionPolicy):
    """
    Forward selection driven by a user scoring function.

    Parameters
    ----------
    score_fn : callable
        ``score_fn(columns, residual) -> scores`` with ``columns`` of shape
        (n_samples, n_candidates); larger scores are preferred and scores
        that are not positive are never selected.
    name : str
        Name reported in sequences and logs.
    """

    def __init__(
        self,
        score_fn: Callable[[np.ndarray, np.ndarray], np.ndarray],
        name: str = "custom",
    ):
        if not callable(score_fn):
            raise InvalidArgumentError("score_fn must be callable")
        self.score_fn = score_fn
        self.name = name

    def relevance(self, columns: np.ndarray, residual: np.ndarray) -> np.ndarray:
        scores = np.asarray(self.score_fn(columns, residual), dtype=float).ravel()
        if scores.shape[0] != columns.shape[1]:
            raise InvalidArgumentError(
                f"score_fn returned {scores.shape[0]} scores for {columns.shape[1]} candidates"
            )
        return scores

    def __repr__(self) -> str:
        return f"CustomScoringPolicy(name={self.name!r})"


_POLICIES: Dict[str, Callable[[], SelectionPolicy]] = {
    "greedy_correlation": GreedyCorrelationPolicy,
    "least_angle": LeastAnglePolicy,
    "lasso": lambda: LeastAnglePolicy(lasso=True),
}


def get_policy(policy: Union[str, SelectionPolicy, Callable]) -> SelectionPolicy:
    """
    Return a fresh policy for one build.

    Parameters
    ----------
    policy : str, SelectionPolicy or callable
        A registered name, a policy instance (copied), or a scoring function
        (wrapped in :class:`CustomScoringPolicy`).
    """
    if isinstance(policy, SelectionPolicy):
        return copy.deepcopy(policy)

    if isinstance(policy, str):
        if policy == "custom":
            raise InvalidArgumentError(
                "The 'custom' policy needs a scoring function; pass "
                "CustomScoringPolicy(score_fn) or the function itself"
            )
        if policy not in _POLICIES:
            raise InvalidArgumentError(
                f"Unknown policy: {policy}. Available: {list(_POLICIES) + ['custom']}"
            )
        return _POLICIES[policy]()

    if callable(policy):
        return CustomScoringPolicy(policy)

    raise InvalidArgumentError(f"Invalid policy: {policy!r}")
