"""
Incremental least squares for JAXLARS.

Maintains a thin QR factorization ``A = Q R`` of the active columns of the
design matrix. Adding or removing one column costs O(n_samples * n_active)
instead of the O(n_samples * n_active^2) of a refactorization, which is what
makes long basis sequences affordable.
"""

from __future__ import annotations

from typing import Hashable, List, Optional, Tuple

import numpy as np
from scipy.linalg import solve_triangular

from .delta import BasisDelta
from .exceptions import InvalidArgumentError, NumericalInstabilityError
from .utils import givens


class IncrementalQRSolver:
    """
    Least-squares solver updated one column at a time.

    Parameters
    ----------
    n_samples : int
        Number of rows of the design matrix.
    tolerance : float
        Relative rank tolerance. A column whose component orthogonal to the
        active columns is smaller than ``tolerance`` times its norm is
        considered linearly dependent.

    Examples
    --------
    >>> solver = IncrementalQRSolver(n_samples=len(y))
    >>> solver.add_column(Phi[:, 0])
    >>> solver.add_column(Phi[:, 3])
    >>> coeffs = solver.solve(y)
    >>> solver.remove_column(0)
    """

    def __init__(self, n_samples: int, tolerance: float = 1e-10):
        if tolerance <= 0:
            raise InvalidArgumentError(f"tolerance must be positive, got {tolerance}")
        self.tolerance = tolerance
        self.reset(n_samples)

    def reset(self, n_samples: Optional[int] = None) -> None:
        """Drop every column (optionally changing the number of samples)."""
        if n_samples is None:
            n_samples = self._n_samples
        if n_samples < 1:
            raise InvalidArgumentError(f"n_samples must be positive, got {n_samples}")
        self._n_samples = int(n_samples)
        self._Q = np.zeros((self._n_samples, 0))
        self._R = np.zeros((0, 0))
        self._labels: List[Optional[Hashable]] = []

    @property
    def n_samples(self) -> int:
        return self._n_samples

    @property
    def n_active(self) -> int:
        return self._R.shape[0]

    @property
    def q(self) -> np.ndarray:
        """Orthonormal factor of shape (n_samples, n_active) (read-only view)."""
        view = self._Q.view()
        view.setflags(write=False)
        return view

    @property
    def r(self) -> np.ndarray:
        """Upper triangular factor of shape (n_active, n_active) (read-only view)."""
        view = self._R.view()
        view.setflags(write=False)
        return view

    @property
    def labels(self) -> Tuple[Optional[Hashable], ...]:
        """Labels given to the active columns, in factorization order."""
        return tuple(self._labels)

    def _as_vector(self, values, name: str) -> np.ndarray:
        v = np.asarray(values, dtype=float).ravel()
        if v.shape[0] != self._n_samples:
            raise InvalidArgumentError(
                f"{name} has {v.shape[0]} entries, expected {self._n_samples}"
            )
        return v

    # ------------------------------------------------------------------
    # Single-column updates
    # ------------------------------------------------------------------

    def add_column(self, values, label: Optional[Hashable] = None) -> None:
        """
        Append a column to the factorization.

        Parameters
        ----------
        values : array-like of shape (n_samples,)
            Column to append.
        label : hashable, optional
            Identifier stored alongside the column (e.g. its dictionary index).

        Raises
        ------
        NumericalInstabilityError
            If the column is zero, non-finite, or linearly dependent on the
            active columns. The factorization is left unchanged.
        """
        v = self._as_vector(values, "column")
        k = self.n_active

        if not np.all(np.isfinite(v)):
            raise NumericalInstabilityError("Column contains non-finite values")
        norm_v = float(np.linalg.norm(v))
        if norm_v == 0.0:
            raise NumericalInstabilityError("Column is identically zero")
        if k >= self._n_samples:
            raise NumericalInstabilityError(
                f"Cannot add a column: {k} active columns already span R^{self._n_samples}"
            )

        # Gram-Schmidt, reorthogonalized once
        Q = self._Q
        w = Q.T @ v
        u = v - Q @ w
        correction = Q.T @ u
        u = u - Q @ correction
        w = w + correction
        rho = float(np.linalg.norm(u))

        if rho <= self.tolerance * norm_v:
            raise NumericalInstabilityError(
                f"Column is linearly dependent on the {k} active columns "
                f"(relative residual {rho / norm_v:.3e})"
            )

        R = np.zeros((k + 1, k + 1))
        R[:k, :k] = self._R
        R[:k, k] = w
        R[k, k] = rho

        self._Q = np.column_stack([Q, u / rho])
        self._R = R
        self._labels.append(label)

    def remove_column(self, position: int) -> None:
        """
        Remove the column at ``position`` in the current ordering.

        The columns after ``position`` shift left by one. Removal is a Givens
        downdate and cannot fail numerically.

        Raises
        ------
        InvalidArgumentError
            If ``position`` is out of range.
        """
        k = self.n_active
        if isinstance(position, bool) or int(position) != position:
            raise InvalidArgumentError(f"position must be an integer, got {position!r}")
        position = int(position)
        if position < 0 or position >= k:
            raise InvalidArgumentError(f"position {position} out of range [0, {k})")

        # Deleting column `position` leaves R upper Hessenberg from that row on.
        R = np.delete(self._R, position, axis=1)
        Q = self._Q.copy()
        for i in range(position, k - 1):
            c, s, rr = givens(R[i, i], R[i + 1, i])
            row_i = R[i, i:].copy()
            row_next = R[i + 1, i:].copy()
            R[i, i:] = c * row_i + s * row_next
            R[i + 1, i:] = -s * row_i + c * row_next
            R[i, i] = rr
            R[i + 1, i] = 0.0

            q_i = Q[:, i].copy()
            q_next = Q[:, i + 1]
            Q[:, i] = c * q_i + s * q_next
            Q[:, i + 1] = -s * q_i + c * q_next

        self._R = np.ascontiguousarray(R[: k - 1, :])
        self._Q = np.ascontiguousarray(Q[:, : k - 1])
        del self._labels[position]

    def update(self, delta: BasisDelta, design) -> None:
        """
        Apply an active-set delta.

        Removals are applied from the highest position down, then the added
        columns are fetched from ``design`` and appended in order. The update
        is atomic: if an addition fails, the factorization is restored to its
        state before the call and the error is re-raised.

        Parameters
        ----------
        delta : BasisDelta
            Change to apply; ``delta.previous`` must have ``n_active`` entries
            and the delta must be canonical (survivors first, order kept).
        design : DesignProxy
            Provider of the added columns (anything with ``evaluate_columns``).
        """
        if len(delta.previous) != self.n_active:
            raise InvalidArgumentError(
                f"Delta starts from {len(delta.previous)} columns, "
                f"solver has {self.n_active}"
            )
        if any(label is not None for label in self._labels) and tuple(self._labels) != delta.previous:
            raise InvalidArgumentError(
                f"Delta starts from {delta.previous}, solver holds {tuple(self._labels)}"
            )
        if not delta.is_canonical:
            raise InvalidArgumentError(
                "Delta reorders conserved columns; only removals and appended "
                "additions can be applied incrementally"
            )

        saved = (self._Q, self._R, list(self._labels))
        try:
            for q in sorted(delta.removed, reverse=True):
                self.remove_column(q)
            added = delta.added_indices
            if added:
                columns = design.evaluate_columns(list(added))
                for j, index in enumerate(added):
                    self.add_column(columns[:, j], label=index)
        except NumericalInstabilityError:
            self._Q, self._R, self._labels = saved
            raise

    # ------------------------------------------------------------------
    # Solves
    # ------------------------------------------------------------------

    def _check_conditioning(self) -> None:
        diag = np.abs(np.diag(self._R))
        col_norms = np.linalg.norm(self._R, axis=0)
        bad = np.flatnonzero(~np.isfinite(diag) | (diag <= self.tolerance * col_norms))
        if bad.size:
            raise NumericalInstabilityError(
                f"Active submatrix is numerically singular at positions {bad.tolist()}"
            )

    def solve(self, response) -> np.ndarray:
        """
        Least-squares coefficients of ``response`` on the active columns.

        Returns
        -------
        coefficients : np.ndarray of shape (n_active,)
            Aligned with the active column order.

        Raises
        ------
        NumericalInstabilityError
            If the active submatrix is numerically singular.
        """
        y = self._as_vector(response, "response")
        if self.n_active == 0:
            return np.zeros(0)
        self._check_conditioning()
        return solve_triangular(self._R, self._Q.T @ y, lower=False)

    def fitted(self, response) -> np.ndarray:
        """Orthogonal projection of ``response`` onto the active columns."""
        y = self._as_vector(response, "response")
        return self._Q @ (self._Q.T @ y)

    def residual(self, response) -> np.ndarray:
        """Least-squares residual ``response - fitted(response)``."""
        y = self._as_vector(response, "response")
        return y - self._Q @ (self._Q.T @ y)

    def hat_diagonal(self) -> np.ndarray:
        """Leverages ``h_ii`` of the active design."""
        return np.sum(self._Q**2, axis=1)

    def inverse_gram_trace(self) -> float:
        """Trace of ``(A^T A)^{-1}`` for the active design ``A``."""
        if self.n_active == 0:
            return 0.0
        self._check_conditioning()
        R_inv = solve_triangular(self._R, np.eye(self.n_active), lower=False)
        return float(np.sum(R_inv**2))

    def __repr__(self) -> str:
        return (
            f"IncrementalQRSolver(n_samples={self._n_samples}, "
            f"n_active={self.n_active}, tolerance={self.tolerance})"
        )
