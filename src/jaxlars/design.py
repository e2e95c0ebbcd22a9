"""
Lazy design matrix for JAXLARS.

The sequence builders only ever look at a handful of columns of the full
design matrix at a time. :class:`DesignProxy` evaluates basis functions on
the sample on first request and caches the resulting columns so that later
requests (from any thread) reuse them.
"""

from __future__ import annotations

import threading
import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

import jax.numpy as jnp
import numpy as np

from .basis import BasisLibrary
from .exceptions import InvalidArgumentError
from .utils import validate_array


class DesignProxy:
    """
    Cached, thread-safe evaluation of dictionary columns on a fixed sample.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Input sample.
    library : BasisLibrary
        Candidate dictionary.
    n_jobs : int, optional
        Number of worker threads used to evaluate missing columns of a
        single request. ``None`` or 1 evaluates them in the calling thread.

    Notes
    -----
    Concurrent readers share the cache. A column that is missing is computed
    by exactly one thread; other threads asking for it wait for that result
    instead of evaluating the basis function again.
    """

    def __init__(
        self,
        X,
        library: BasisLibrary,
        n_jobs: Optional[int] = None,
    ):
        X = validate_array(X, name="X")
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.ndim != 2:
            raise InvalidArgumentError(f"X must be 2D, got {X.ndim}D")
        if X.shape[1] != library.n_features:
            raise InvalidArgumentError(
                f"X has {X.shape[1]} features but the library expects {library.n_features}"
            )
        if len(library) == 0:
            raise InvalidArgumentError("The basis library is empty")

        self._X = jnp.asarray(X)
        self._library = library
        self._n_samples = X.shape[0]
        self._n_basis = len(library)
        self._names = library.names
        self.n_jobs = n_jobs

        self._columns: Dict[int, np.ndarray] = {}
        self._pending: Dict[int, threading.Event] = {}
        self._lock = threading.Lock()
        self._n_evaluations = 0

    @classmethod
    def from_matrix(
        cls,
        Phi,
        names: Optional[List[str]] = None,
    ) -> DesignProxy:
        """
        Wrap an already evaluated design matrix.

        Parameters
        ----------
        Phi : array-like of shape (n_samples, n_basis)
            Design matrix.
        names : list of str, optional
            Column names. Defaults to ["phi0", "phi1", ...].
        """
        Phi = validate_array(Phi, name="Phi", ndim=2)
        names = list(names) if names is not None else [f"phi{i}" for i in range(Phi.shape[1])]
        if len(names) != Phi.shape[1]:
            raise InvalidArgumentError(
                f"Number of names ({len(names)}) must match number of columns ({Phi.shape[1]})"
            )

        proxy = cls.__new__(cls)
        proxy._X = None
        proxy._library = None
        proxy._n_samples, proxy._n_basis = Phi.shape
        proxy._names = names
        proxy.n_jobs = None
        proxy._columns = {j: np.ascontiguousarray(Phi[:, j]) for j in range(Phi.shape[1])}
        proxy._pending = {}
        proxy._lock = threading.Lock()
        proxy._n_evaluations = 0
        return proxy

    @property
    def n_samples(self) -> int:
        return self._n_samples

    @property
    def n_basis(self) -> int:
        return self._n_basis

    @property
    def names(self) -> List[str]:
        return list(self._names)

    @property
    def n_evaluations(self) -> int:
        """Number of basis functions evaluated so far."""
        return self._n_evaluations

    @property
    def cached_indices(self) -> List[int]:
        with self._lock:
            return sorted(self._columns)

    def _check_index(self, index: int) -> int:
        index = int(index)
        if index < 0 or index >= self._n_basis:
            raise InvalidArgumentError(
                f"Column index {index} out of range [0, {self._n_basis})"
            )
        return index

    def _compute(self, index: int) -> np.ndarray:
        column = np.asarray(self._library.basis_functions[index].func(self._X), dtype=float)
        column = np.broadcast_to(column.ravel(), (self._n_samples,)).copy()
        if not np.all(np.isfinite(column)):
            warnings.warn(
                f"Basis function '{self._names[index]}' has non-finite values on the "
                "sample; its column is replaced by zeros",
                stacklevel=3,
            )
            column = np.zeros(self._n_samples)
        column.setflags(write=False)
        return column

    def _claim(self, indices: Sequence[int]):
        """Split indices into (owned by this caller, computed elsewhere)."""
        owned = []
        waiting = []
        with self._lock:
            for index in indices:
                if index in self._columns:
                    continue
                event = self._pending.get(index)
                if event is None:
                    self._pending[index] = threading.Event()
                    owned.append(index)
                else:
                    waiting.append((index, event))
        return owned, waiting

    def _publish(self, index: int, column: Optional[np.ndarray]) -> None:
        with self._lock:
            if column is not None:
                self._columns[index] = column
                self._n_evaluations += 1
            event = self._pending.pop(index)
        event.set()

    def _evaluate_owned(self, owned: List[int]) -> None:
        def work(index: int) -> None:
            column = None
            try:
                column = self._compute(index)
            finally:
                self._publish(index, column)

        if self.n_jobs is not None and self.n_jobs > 1 and len(owned) > 1:
            with ThreadPoolExecutor(max_workers=self.n_jobs) as pool:
                # list() re-raises the first worker exception
                list(pool.map(work, owned))
        else:
            for position, index in enumerate(owned):
                try:
                    work(index)
                except BaseException:
                    # release the remaining claims so waiting readers retry them
                    for rest in owned[position + 1 :]:
                        self._publish(rest, None)
                    raise

    def evaluate_columns(self, indices: Sequence[int]) -> np.ndarray:
        """
        Evaluate the requested columns of the design matrix.

        Parameters
        ----------
        indices : sequence of int
            Dictionary indices, in the requested column order.

        Returns
        -------
        Phi : np.ndarray of shape (n_samples, len(indices))
            Requested columns (cached columns are reused).
        """
        indices = [self._check_index(i) for i in indices]
        if not indices:
            return np.zeros((self._n_samples, 0))

        unique = list(dict.fromkeys(indices))
        owned, waiting = self._claim(unique)
        if owned:
            self._evaluate_owned(owned)
        for index, event in waiting:
            event.wait()

        with self._lock:
            missing = [i for i in unique if i not in self._columns]
            if not missing:
                return np.column_stack([self._columns[i] for i in indices])

        # Another thread failed to compute these; retry in this thread so the
        # original exception surfaces here.
        return self.evaluate_columns(indices)

    def column(self, index: int) -> np.ndarray:
        """Return a single (read-only) column."""
        index = self._check_index(index)
        with self._lock:
            cached = self._columns.get(index)
        if cached is not None:
            return cached
        self.evaluate_columns([index])
        with self._lock:
            return self._columns[index]

    def column_norms(self, indices: Sequence[int]) -> np.ndarray:
        """Euclidean norms of the requested columns."""
        return np.linalg.norm(self.evaluate_columns(indices), axis=0)

    def __repr__(self) -> str:
        return (
            f"DesignProxy(n_samples={self._n_samples}, n_basis={self._n_basis}, "
            f"cached={len(self._columns)})"
        )
