"""
Basis sequences: the ordered output of the sequence builders.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .delta import BasisDelta
from .utils import build_expression_string


@dataclass(frozen=True)
class BasisStep:
    """
    One accepted step of a basis sequence.

    Parameters
    ----------
    indices : tuple of int
        Active dictionary indices, in factorization order.
    coefficients : np.ndarray
        Least-squares coefficients aligned with ``indices``.
    delta : BasisDelta
        Change from the previous step.
    relative_convergence : float
        Relative change of the coefficients' L1 norm from the previous step.
    residual_sum_of_squares : float
        Sum of squared least-squares residuals.
    """

    indices: Tuple[int, ...]
    coefficients: np.ndarray
    delta: BasisDelta
    relative_convergence: float
    residual_sum_of_squares: float

    @property
    def n_terms(self) -> int:
        return len(self.indices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indices": list(self.indices),
            "coefficients": np.asarray(self.coefficients).tolist(),
            "delta": self.delta.to_dict(),
            "relative_convergence": _float_to_json(self.relative_convergence),
            "residual_sum_of_squares": _float_to_json(self.residual_sum_of_squares),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BasisStep:
        return cls(
            indices=tuple(data["indices"]),
            coefficients=_readonly(data["coefficients"]),
            delta=BasisDelta.from_dict(data["delta"]),
            relative_convergence=float(data["relative_convergence"]),
            residual_sum_of_squares=float(data["residual_sum_of_squares"]),
        )


def _readonly(values) -> np.ndarray:
    array = np.array(values, dtype=float)
    array.setflags(write=False)
    return array


def _float_to_json(value: float):
    # JSON has no infinity
    return "inf" if np.isinf(value) else float(value)


class BasisSequence:
    """
    Append-only sequence of (active set, coefficients) snapshots.

    The builders append one :class:`BasisStep` per accepted iteration and
    finalize the sequence when they return; a finalized sequence cannot grow.

    Parameters
    ----------
    n_basis : int
        Size of the dictionary the indices refer to.
    names : list of str, optional
        Names of the dictionary entries (used by :meth:`expression`).
    policy : str
        Name of the policy that produced the sequence.
    """

    def __init__(
        self,
        n_basis: int,
        names: Optional[List[str]] = None,
        policy: str = "",
    ):
        self.n_basis = n_basis
        self.names = list(names) if names is not None else None
        self.policy = policy
        self.stop_reason: Optional[str] = None
        self._steps: List[BasisStep] = []
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def append(
        self,
        indices: Sequence[int],
        coefficients,
        delta: BasisDelta,
        relative_convergence: float,
        residual_sum_of_squares: float,
    ) -> BasisStep:
        """Record a step. Raises ``RuntimeError`` once finalized."""
        if self._finalized:
            raise RuntimeError("Cannot append to a finalized BasisSequence")
        indices = tuple(int(i) for i in indices)
        if tuple(delta.current) != indices:
            raise ValueError(f"Delta ends at {delta.current}, step holds {indices}")
        step = BasisStep(
            indices=indices,
            coefficients=_readonly(coefficients),
            delta=delta,
            relative_convergence=float(relative_convergence),
            residual_sum_of_squares=float(residual_sum_of_squares),
        )
        self._steps.append(step)
        return step

    def finalize(self, stop_reason: Optional[str] = None) -> BasisSequence:
        self.stop_reason = stop_reason
        self._finalized = True
        return self

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, i):
        return self._steps[i]

    def __iter__(self) -> Iterator[BasisStep]:
        return iter(self._steps)

    def indices(self, i: int) -> Tuple[int, ...]:
        """Active indices at step ``i``."""
        return self._steps[i].indices

    def coefficients(self, i: int) -> np.ndarray:
        """Coefficients at step ``i``."""
        return self._steps[i].coefficients

    @property
    def deltas(self) -> List[BasisDelta]:
        return [step.delta for step in self._steps]

    @property
    def maximum_size(self) -> int:
        """Largest active set over the sequence."""
        return max((step.n_terms for step in self._steps), default=0)

    @property
    def last(self) -> BasisStep:
        if not self._steps:
            raise IndexError("BasisSequence is empty")
        return self._steps[-1]

    def expression(self, i: int = -1, precision: int = 4) -> str:
        """Human-readable model at step ``i``."""
        step = self._steps[i]
        if self.names is not None:
            names = [self.names[j] for j in step.indices]
        else:
            names = [f"phi{j}" for j in step.indices]
        return build_expression_string(step.coefficients, names, precision)

    def summary(self) -> str:
        lines = [
            f"BasisSequence ({self.policy or 'unknown policy'}): {len(self)} steps, "
            f"stop reason: {self.stop_reason}",
        ]
        for i, step in enumerate(self._steps):
            entering = ", ".join(self._label(j) for j in step.delta.added_indices)
            leaving = ", ".join(self._label(j) for j in step.delta.removed_indices)
            change = f"+[{entering}]" if entering else ""
            if leaving:
                change += f" -[{leaving}]"
            lines.append(
                f"  [{i:3d}] size={step.n_terms:3d} {change:30s} "
                f"rss={step.residual_sum_of_squares:.4g} "
                f"conv={step.relative_convergence:.3g}"
            )
        return "\n".join(lines)

    def _label(self, index: int) -> str:
        return self.names[index] if self.names is not None else str(index)

    def __repr__(self) -> str:
        return (
            f"BasisSequence(n_steps={len(self)}, n_basis={self.n_basis}, "
            f"maximum_size={self.maximum_size}, stop_reason={self.stop_reason!r})"
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_basis": self.n_basis,
            "names": self.names,
            "policy": self.policy,
            "stop_reason": self.stop_reason,
            "finalized": self._finalized,
            "steps": [step.to_dict() for step in self._steps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BasisSequence:
        sequence = cls(
            n_basis=data["n_basis"],
            names=data.get("names"),
            policy=data.get("policy", ""),
        )
        sequence._steps = [BasisStep.from_dict(s) for s in data["steps"]]
        if data.get("finalized", True):
            sequence.finalize(data.get("stop_reason"))
        return sequence

    def save(self, filepath: str) -> None:
        """Save the sequence to a JSON file."""
        with open(filepath, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> BasisSequence:
        """Load a sequence from a JSON file."""
        with open(filepath) as f:
            data = json.load(f)
        return cls.from_dict(data)
