"""
Integer id allocation for a single lattice graph.

Handles for sites and transitions, pairing ids for periodic transition pairs
and canonical ids used during replication are all drawn from one allocator
owned by the graph, so separate graphs never share counters.
"""

from __future__ import annotations

ID_KINDS = ("site", "transition", "pair", "canonical")


class IdAllocator:
    """
    Monotonic counters keyed by id kind.

    Every kind starts at zero and the first allocated id is 1, so 0 stays free
    to mean "no id" (e.g. an unpaired transition has ``pair_id == 0``).
    """

    def __init__(self) -> None:
        """Initialize all counters at zero."""
        self._last: dict[str, int] = dict.fromkeys(ID_KINDS, 0)

    def allocate(self, kind: str) -> int:
        """
        Return the next free id of the given kind.

        Args:
            kind: One of ``site``, ``transition``, ``pair`` or ``canonical``.

        Returns:
            A positive integer never returned before for this kind.
        """
        self._check_kind(kind)
        self._last[kind] += 1
        return self._last[kind]

    def observe(self, kind: str, value: int) -> None:
        """Make sure ids allocated later for ``kind`` are greater than ``value``."""
        self._check_kind(kind)
        if value > self._last[kind]:
            self._last[kind] = value

    def reset(self, kind: str | None = None) -> None:
        """Reset one counter, or all of them when ``kind`` is None."""
        if kind is None:
            self._last = dict.fromkeys(ID_KINDS, 0)
            return
        self._check_kind(kind)
        self._last[kind] = 0

    def last(self, kind: str) -> int:
        """Most recently allocated or observed id of ``kind``."""
        self._check_kind(kind)
        return self._last[kind]

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in ID_KINDS:
            raise ValueError(f"Unknown id kind {kind!r}. Must be one of {ID_KINDS}")

    def __repr__(self) -> str:
        """String representation."""
        return f"IdAllocator({self._last})"
