"""
Exception types for JAXLARS.
"""

from __future__ import annotations

import numpy as np


class InvalidArgumentError(ValueError):
    """Malformed or inconsistent input (shapes, indices, configuration)."""


class NumericalInstabilityError(np.linalg.LinAlgError):
    """
    Rank deficiency detected while maintaining the least-squares factorization.

    Raised when a column is linearly dependent on the active columns, or when
    the active submatrix is too ill-conditioned to be solved.
    """
