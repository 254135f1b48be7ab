"""
rwsep/aliases.py
════════════════

Per-function tracking of local names bound to protected fields.

Records live in an arena (a plain list) owned by one tracker; a record
points at the record it was copied from through an integer handle, so

    p := &r.d.Value1     # record 0: p → r.d.Value1
    q := p               # record 1: q, previous = 0
    s := q               # record 2: s, previous = 1

resolves ``s`` to ``r.d.Value1`` by walking 2 → 1 → 0.  Rebinding a
name only moves that name's head; older records stay reachable from the
records that copied them.  ``a = a`` keeps ``a``'s binding as it is.

A walk that meets the same name twice gives up, so chains that loop
back through a rebound name resolve to nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from rwsep.syntax import SelectorExpr

__all__ = ["AliasRecord", "AliasTracker"]


@dataclass(frozen=True, slots=True)
class AliasRecord:
    name: str
    target: Optional[SelectorExpr] = None
    previous: Optional[int] = None


class AliasTracker:
    """Alias chains of a single function body."""

    def __init__(self) -> None:
        self._arena: List[AliasRecord] = []
        self._heads: Dict[str, int] = {}

    def record(self, name: str, field_ref: SelectorExpr) -> None:
        """Bind *name* directly to *field_ref* (``name := &field_ref``)."""
        self._arena.append(AliasRecord(name, target=field_ref))
        self._heads[name] = len(self._arena) - 1

    def record_copy(self, name: str, source: str) -> bool:
        """Bind *name* to whatever *source* aliases (``name := source``).

        Returns False, and forgets *name*, when *source* has no chain.
        """
        head = self._heads.get(source)
        if head is None:
            self.forget(name)
            return False
        if source == name:
            return True
        self._arena.append(AliasRecord(name, previous=head))
        self._heads[name] = len(self._arena) - 1
        return True

    def forget(self, name: str) -> None:
        """Drop the binding of *name* (it was assigned something else)."""
        self._heads.pop(name, None)

    def resolve(self, name: str) -> Optional[SelectorExpr]:
        """Follow *name*'s chain to the field it aliases, if any.

        The walk gives up, returning ``None``, as soon as it meets a name
        it has already passed through.
        """
        handle = self._heads.get(name)
        seen: Set[str] = set()
        while handle is not None:
            rec = self._arena[handle]
            if rec.name in seen:
                return None
            seen.add(rec.name)
            if rec.target is not None:
                return rec.target
            handle = rec.previous
        return None

    def reset(self) -> None:
        self._arena.clear()
        self._heads.clear()

    def __len__(self) -> int:
        return len(self._heads)

    def __contains__(self, name: str) -> bool:
        return name in self._heads
