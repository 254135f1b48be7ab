"""
rwsep/classifier.py
═══════════════════

Decides whether a resolved type is, or structurally contains, the
protected type.

Rules (first match wins)
────────────────────────
  1. POINTER to T      → is_protected(T)
  2. NAMED             → declaring unit == data unit (by path or by
                         package name) and name == protected type name
  3. anonymous STRUCT  → any field type is protected
  4. anything else     → False

Slices, maps, arrays and channels of the protected type are *not*
protected: only the three forms above are recognised.  Unresolved types
(``None``) are never protected.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Set

from rwsep.syntax import Expr, SelectorExpr, unparen
from rwsep.types import GoType, TypeKind

_log = logging.getLogger(__name__)

__all__ = ["TypeClassifier"]


class TypeClassifier:
    """Protected-type predicate for one (data unit, type name) pair.

    Parameters
    ----------
    data_unit:
        Package path or package name of the declaring unit.
    type_name:
        Name of the protected type.
    """

    def __init__(self, data_unit: str, type_name: str) -> None:
        self.data_unit = data_unit
        self.type_name = type_name
        self._cache: Dict[int, bool] = {}

    def is_protected(self, typ: Optional[GoType]) -> bool:
        if typ is None:
            return False
        cached = self._cache.get(id(typ))
        if cached is not None:
            return cached
        result = self._classify(typ, set())
        self._cache[id(typ)] = result
        return result

    def _classify(self, typ: Optional[GoType], visited: Set[int]) -> bool:
        if typ is None or id(typ) in visited:
            return False
        kind = typ.kind
        if kind is TypeKind.POINTER:
            visited.add(id(typ))
            return self._classify(typ.elem, visited)
        if kind is TypeKind.NAMED:
            return self._matches_named(typ)
        if kind is TypeKind.STRUCT:
            visited.add(id(typ))
            return any(self._classify(f.typ, visited) for f in typ.fields)
        return False

    def _matches_named(self, typ: GoType) -> bool:
        if typ.name != self.type_name:
            return False
        return self.data_unit in (typ.pkg_path, typ.pkg_name)

    def is_field_ref(self, expr: Optional[Expr]) -> bool:
        """True for ``base.field`` where ``base`` has a protected type."""
        if expr is None:
            return False
        expr = unparen(expr)
        return isinstance(expr, SelectorExpr) and self.is_protected(expr.x.typ)

    def __repr__(self) -> str:
        return f"TypeClassifier({self.data_unit}.{self.type_name})"
