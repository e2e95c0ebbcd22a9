"""
Numerical Utilities for JAXLARS.

Provides input validation, plane rotations used by the incremental solver,
and helpers to format fitted models.
"""

from __future__ import annotations

import math
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from .exceptions import InvalidArgumentError

# =============================================================================
# Validation Utilities
# =============================================================================


def validate_array(
    X: Any,
    name: str = "X",
    ndim: Optional[int] = None,
) -> np.ndarray:
    """
    Validate and convert input to a float64 array.

    Parameters
    ----------
    X : array-like
        Input data.
    name : str
        Name for error messages.
    ndim : int, optional
        Expected number of dimensions.

    Returns
    -------
    X : np.ndarray
        Validated array.

    Raises
    ------
    InvalidArgumentError
        If validation fails.
    """
    try:
        X = np.asarray(X, dtype=float)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"{name} cannot be converted to a float array") from exc

    if ndim is not None and X.ndim != ndim:
        raise InvalidArgumentError(f"{name} must be {ndim}D, got {X.ndim}D")

    if not np.all(np.isfinite(X)):
        n_invalid = int(np.sum(~np.isfinite(X)))
        raise InvalidArgumentError(f"{name} contains {n_invalid} non-finite values")

    return X


def check_consistent_length(*arrays) -> int:
    """
    Check that all arrays have consistent first dimension.

    Returns
    -------
    length : int
        Common length.

    Raises
    ------
    InvalidArgumentError
        If lengths don't match.
    """
    lengths = [len(a) for a in arrays if a is not None]
    unique_lengths = set(lengths)

    if len(unique_lengths) > 1:
        raise InvalidArgumentError(f"Inconsistent array lengths: {lengths}")

    return lengths[0] if lengths else 0


def validate_indices(
    indices: Optional[Sequence[int]],
    n_basis: int,
    name: str = "indices",
) -> List[int]:
    """
    Validate a restriction of the dictionary.

    ``None`` means the whole dictionary. An explicit restriction must be
    non-empty, in range and free of duplicates; its order is preserved.
    """
    if indices is None:
        return list(range(n_basis))

    if isinstance(indices, (set, frozenset, dict)):
        raise InvalidArgumentError(
            f"{name} must be an ordered sequence, got {type(indices).__name__}"
        )

    array = np.asarray(indices)
    if array.ndim != 1:
        raise InvalidArgumentError(f"{name} must be a 1D sequence of integers")
    if array.size == 0:
        raise InvalidArgumentError(f"{name} must not be empty")
    if not np.issubdtype(array.dtype, np.integer):
        raise InvalidArgumentError(f"{name} must contain integers, got dtype {array.dtype}")

    values = [int(i) for i in array.tolist()]

    out_of_range = [i for i in values if i < 0 or i >= n_basis]
    if out_of_range:
        raise InvalidArgumentError(
            f"{name} contains entries outside [0, {n_basis}): {out_of_range}"
        )

    if len(set(values)) != len(values):
        raise InvalidArgumentError(f"{name} contains duplicate entries")

    return values


# =============================================================================
# Plane Rotations
# =============================================================================


def givens(a: float, b: float) -> Tuple[float, float, float]:
    """
    Compute a Givens rotation zeroing ``b``.

    Returns ``(c, s, r)`` with ``[[c, s], [-s, c]] @ [a, b] = [r, 0]``.
    """
    if b == 0.0:
        return 1.0, 0.0, a
    r = math.hypot(a, b)
    return a / r, b / r, r


# =============================================================================
# Formatting Utilities
# =============================================================================


def format_coefficient(value: float, precision: int = 4) -> str:
    """Format a coefficient value for display."""
    if value == 0:
        return "0"

    if abs(value) > 1e4 or abs(value) < 1e-4:
        return f"{value:.{precision}e}"

    return f"{value:.{precision}g}"


def build_expression_string(
    coefficients: Sequence[float],
    names: List[str],
    precision: int = 4,
) -> str:
    """
    Build a human-readable expression string.

    Parameters
    ----------
    coefficients : array-like
        Coefficient values.
    names : list of str
        Basis function names, aligned with ``coefficients``.
    precision : int
        Coefficient precision.

    Returns
    -------
    expression : str
        Expression like "y = 2.5*x + 1.2*x^2 - 0.8"
    """
    terms = []

    for coef, name in zip(coefficients, names):
        coef = float(coef)
        if abs(coef) < 1e-10:
            continue

        coef_str = format_coefficient(abs(coef), precision)

        if name == "1":
            term = coef_str
        elif coef_str == "1":
            term = name
        else:
            term = f"{coef_str}*{name}"

        if coef < 0:
            terms.append(f"- {term}")
        elif terms:
            terms.append(f"+ {term}")
        else:
            terms.append(term)

    if not terms:
        return "y = 0"

    return "y = " + " ".join(terms)
