"""
Active-set changes between two consecutive steps of a basis sequence.

All positions ("ranks") refer to places in the ordered active sets, not to
dictionary indices. The solver consumes these positions to update its
factorization column by column.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple

from .exceptions import InvalidArgumentError


@dataclass(frozen=True)
class BasisDelta:
    """
    Difference between the previous and the current active set.

    Parameters
    ----------
    previous : tuple of int
        Active dictionary indices before the step, in factorization order.
    current : tuple of int
        Active dictionary indices after the step, in factorization order.
    added : tuple of int
        Positions in ``current`` of indices absent from ``previous``.
    conserved : tuple of (int, int)
        ``(position in current, position in previous)`` for every index kept.
    removed : tuple of int
        Positions in ``previous`` of indices absent from ``current``.
    """

    previous: Tuple[int, ...]
    current: Tuple[int, ...]
    added: Tuple[int, ...]
    conserved: Tuple[Tuple[int, int], ...]
    removed: Tuple[int, ...]

    def __post_init__(self):
        if len(set(self.previous)) != len(self.previous):
            raise InvalidArgumentError(f"Duplicate indices in previous set {self.previous}")
        if len(set(self.current)) != len(self.current):
            raise InvalidArgumentError(f"Duplicate indices in current set {self.current}")

        new_positions = sorted([p for p, _ in self.conserved] + list(self.added))
        old_positions = sorted([q for _, q in self.conserved] + list(self.removed))
        if new_positions != list(range(len(self.current))):
            raise InvalidArgumentError("Added and conserved ranks must cover the current set")
        if old_positions != list(range(len(self.previous))):
            raise InvalidArgumentError("Removed and conserved ranks must cover the previous set")
        for p, q in self.conserved:
            if self.current[p] != self.previous[q]:
                raise InvalidArgumentError(
                    f"Conserved rank ({p}, {q}) maps {self.current[p]} to {self.previous[q]}"
                )

    @classmethod
    def between(cls, previous: Sequence[int], current: Sequence[int]) -> BasisDelta:
        """Compute the delta turning ``previous`` into ``current``."""
        previous = tuple(int(i) for i in previous)
        current = tuple(int(i) for i in current)
        old_rank = {index: rank for rank, index in enumerate(previous)}
        new_set = set(current)

        added = tuple(p for p, index in enumerate(current) if index not in old_rank)
        conserved = tuple(
            (p, old_rank[index]) for p, index in enumerate(current) if index in old_rank
        )
        removed = tuple(q for q, index in enumerate(previous) if index not in new_set)
        return cls(previous, current, added, conserved, removed)

    @classmethod
    def from_changes(
        cls,
        previous: Sequence[int],
        added_indices: Sequence[int] = (),
        removed_positions: Sequence[int] = (),
    ) -> BasisDelta:
        """
        Build the delta that drops ``removed_positions`` and appends ``added_indices``.

        Survivors keep their relative order and come first, which is the
        order an incremental factorization produces.
        """
        previous = tuple(int(i) for i in previous)
        removed = set()
        for q in removed_positions:
            q = int(q)
            if q < 0 or q >= len(previous):
                raise InvalidArgumentError(
                    f"Removed position {q} out of range [0, {len(previous)})"
                )
            removed.add(q)

        survivors = [index for q, index in enumerate(previous) if q not in removed]
        clash = set(survivors) & {int(i) for i in added_indices}
        if clash:
            raise InvalidArgumentError(f"Indices {sorted(clash)} are already active")
        return cls.between(previous, survivors + [int(i) for i in added_indices])

    @property
    def added_indices(self) -> Tuple[int, ...]:
        """Dictionary indices entering the active set."""
        return tuple(self.current[p] for p in self.added)

    @property
    def removed_indices(self) -> Tuple[int, ...]:
        """Dictionary indices leaving the active set."""
        return tuple(self.previous[q] for q in self.removed)

    @property
    def size_change(self) -> int:
        return len(self.added) - len(self.removed)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed and self.is_canonical

    @property
    def is_canonical(self) -> bool:
        """
        True when survivors come first, in their previous relative order.

        Only canonical deltas can be applied column by column to a
        factorization without reordering it.
        """
        n_kept = len(self.conserved)
        new_positions = [p for p, _ in self.conserved]
        old_positions = [q for _, q in self.conserved]
        return new_positions == list(range(n_kept)) and old_positions == sorted(old_positions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous": list(self.previous),
            "current": list(self.current),
            "added": list(self.added),
            "conserved": [list(pair) for pair in self.conserved],
            "removed": list(self.removed),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BasisDelta:
        return cls(
            previous=tuple(data["previous"]),
            current=tuple(data["current"]),
            added=tuple(data["added"]),
            conserved=tuple(tuple(pair) for pair in data["conserved"]),
            removed=tuple(data["removed"]),
        )
