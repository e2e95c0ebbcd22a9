"""
Choosing a step of a basis sequence.
"""

from __future__ import annotations

from typing import List, Tuple

import numpy as np

from .design import DesignProxy
from .exceptions import InvalidArgumentError
from .metrics import (
    compute_corrected_loo,
    compute_information_criterion,
    compute_loo_mse,
)
from .sequence import BasisSequence

_CRITERIA = ("corrected_loo", "loo", "aic", "aicc", "bic", "mse")


def score_steps(
    sequence: BasisSequence,
    design: DesignProxy,
    y,
    criterion: str = "corrected_loo",
) -> List[float]:
    """
    Score every step of ``sequence`` (lower is better).

    Parameters
    ----------
    sequence : BasisSequence
        Sequence built on ``design``.
    design : DesignProxy
        Design the sequence indices refer to.
    y : array-like of shape (n_samples,)
        Response used to build the sequence.
    criterion : str
        One of "corrected_loo", "loo", "aic", "aicc", "bic", "mse".

    Returns
    -------
    scores : list of float
        One score per step.
    """
    if criterion not in _CRITERIA:
        raise InvalidArgumentError(f"Unknown criterion: {criterion}. Available: {list(_CRITERIA)}")
    y = np.asarray(y, dtype=float).ravel()
    if y.shape[0] != design.n_samples:
        raise InvalidArgumentError(
            f"y has {y.shape[0]} samples but the design has {design.n_samples}"
        )

    n = design.n_samples
    scores = []
    for step in sequence:
        Phi = design.evaluate_columns(list(step.indices))
        if criterion == "corrected_loo":
            scores.append(compute_corrected_loo(Phi, y))
        elif criterion == "loo":
            scores.append(compute_loo_mse(Phi, y))
        else:
            mse = step.residual_sum_of_squares / n
            if criterion == "mse":
                scores.append(mse)
            else:
                scores.append(compute_information_criterion(n, step.n_terms, mse, criterion))
    return scores


def select_best_step(
    sequence: BasisSequence,
    design: DesignProxy,
    y,
    criterion: str = "corrected_loo",
) -> Tuple[int, List[float]]:
    """
    Pick the step of ``sequence`` minimizing ``criterion``.

    Ties go to the earliest (sparsest) step.

    Returns
    -------
    best_index : int
        Index of the selected step.
    scores : list of float
        Score of every step.

    Raises
    ------
    InvalidArgumentError
        If the sequence is empty or the criterion is unknown.
    """
    if len(sequence) == 0:
        raise InvalidArgumentError("Cannot select a step from an empty sequence")
    scores = score_steps(sequence, design, y, criterion)
    best_index = int(np.argmin(scores))
    return best_index, scores
