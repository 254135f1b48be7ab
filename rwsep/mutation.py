"""
rwsep/mutation.py
═════════════════

Recognises every syntactic form through which a protected value is
written, and maintains the alias tracker while doing so.

Write targets
─────────────
After stripping parentheses, an assignment or inc/dec target falls into
one of three kinds:

  FIELD     r.d.Value1            base of the selector is protected
            r.d.Inner.X           (value-typed path rooted at a field)
  POINTER   *p                    p resolves to a protected field
            p.X                   (selector on an alias)
  INDEX     r.d.Items[i]          indexed container is a protected field,
            p[i]  (*p)[i]         an alias, or a dereferenced alias

Each kind maps onto a rule (see :class:`~rwsep.diagnostics.Rule`).
Assignment issues sit at the target expression; inc/dec issues sit at
the statement.

Other forms
───────────
  copy(r.d.Items, src)  delete(p, k)  clear(r.d.Tags)   builtinWrite
  for r.d.I = range xs                                  write target
  for _, v := range r.d.Items                           loopBinding
  r.d.Reset()  (strict mode only)                       methodCall
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional

from rwsep import syntax as S
from rwsep.aliases import AliasTracker
from rwsep.classifier import TypeClassifier
from rwsep.diagnostics import Rule
from rwsep.types import TypeKind

_log = logging.getLogger(__name__)

__all__ = ["TargetKind", "WriteTarget", "MutationDetector"]

Reporter = Callable[[S.Position, str, Rule], None]

BUILTIN_MUTATORS = frozenset({"copy", "delete", "clear"})


class TargetKind(Enum):
    FIELD = auto()
    POINTER = auto()
    INDEX = auto()


@dataclass(frozen=True, slots=True)
class WriteTarget:
    """A classified write: what is written, which field it hits, and via whom."""
    kind: TargetKind
    expr: S.Expr
    field: S.SelectorExpr
    via: str = ""


class MutationDetector:
    """
    Mutation rules for one function walk.

    Parameters
    ----------
    classifier:
        The run's :class:`TypeClassifier`.
    aliases:
        The alias tracker of the function being walked.
    report:
        Called as ``report(position, message, rule)`` for every finding.
    protected_name:
        Display name of the protected type.
    strict:
        Enables the method-call rule.
    """

    def __init__(self, classifier: TypeClassifier, aliases: AliasTracker,
                 report: Reporter, protected_name: str, strict: bool = False) -> None:
        self.classifier = classifier
        self.aliases = aliases
        self.report = report
        self.protected_name = protected_name
        self.strict = strict

    # ── Field paths ──────────────────────────────────────────────────

    def field_root(self, expr: Optional[S.Expr]) -> Optional[S.SelectorExpr]:
        """The protected field a value-typed selector/index path starts at.

        ``r.d.Inner.X`` → ``r.d.Inner``; ``r.d.Grid[i][j]`` → ``r.d.Grid``.
        The walk stops at pointer-typed or untyped intermediates, since
        writing through them does not touch the protected value.
        """
        current = S.unparen(expr) if expr is not None else None
        while current is not None:
            if self.classifier.is_field_ref(current):
                return current
            if not isinstance(current, (S.SelectorExpr, S.IndexExpr)):
                return None
            inner = S.unparen(current.x)
            if isinstance(current, S.IndexExpr):
                # slice and map elements: only a direct field container counts
                if self.classifier.is_field_ref(inner):
                    return inner
                if inner.typ is None or inner.typ.kind is not TypeKind.ARRAY:
                    return None
            elif inner.typ is None or inner.typ.kind is TypeKind.POINTER:
                return None
            current = inner
        return None

    def _alias_of(self, expr: S.Expr):
        """``(name, field)`` when *expr* is an identifier bound to a field."""
        expr = S.unparen(expr)
        if isinstance(expr, S.Ident):
            target = self.aliases.resolve(expr.name)
            if target is not None:
                return expr.name, target
        return None

    def _alias_root(self, expr: S.Expr):
        """Like :meth:`_alias_of`, also looking through ``*p`` and ``p.X``."""
        expr = S.unparen(expr)
        while isinstance(expr, (S.StarExpr, S.SelectorExpr)):
            expr = S.unparen(expr.x)
        return self._alias_of(expr)

    # ── Target classification ────────────────────────────────────────

    def classify_target(self, expr: S.Expr) -> Optional[WriteTarget]:
        target = S.unparen(expr)

        if isinstance(target, S.IndexExpr):
            container = S.unparen(target.x)
            root = self.field_root(container)
            if root is not None:
                return WriteTarget(TargetKind.INDEX, target, root)
            alias = self._alias_root(container)
            if alias is not None:
                return WriteTarget(TargetKind.INDEX, target, alias[1], alias[0])
            return None

        if isinstance(target, S.StarExpr):
            pointer = S.unparen(target.x)
            if isinstance(pointer, S.UnaryExpr) and pointer.op == "&":
                root = self.field_root(pointer.x)
                if root is not None:
                    return WriteTarget(TargetKind.POINTER, target, root, S.render(pointer))
            alias = self._alias_of(pointer)
            if alias is not None:
                return WriteTarget(TargetKind.POINTER, target, alias[1], alias[0])
            return None

        if isinstance(target, S.SelectorExpr):
            root = self.field_root(target)
            if root is not None:
                return WriteTarget(TargetKind.FIELD, target, root)
            alias = self._alias_root(target.x)
            if alias is not None:
                return WriteTarget(TargetKind.POINTER, target, alias[1], alias[0])
        return None

    # ── Rules ────────────────────────────────────────────────────────

    def check_assign(self, stmt: S.AssignStmt) -> None:
        """Assignment and compound assignment to protected storage."""
        for lhs in stmt.lhs:
            found = self.classify_target(lhs)
            if found is None:
                continue
            if found.kind is TargetKind.FIELD:
                self.report(lhs.pos,
                            f"direct assignment to field {S.render(found.expr)} "
                            f"of protected type {self.protected_name}",
                            Rule.FIELD_ASSIGN)
            elif found.kind is TargetKind.POINTER:
                self.report(lhs.pos,
                            f"pointer-mediated assignment to protected field "
                            f"{S.render(found.field)} through {found.via}",
                            Rule.POINTER_ASSIGN)
            else:
                self.report(lhs.pos, self._indexed_message(found), Rule.INDEXED_WRITE)

    def check_incdec(self, stmt: S.IncDecStmt) -> None:
        found = self.classify_target(stmt.x)
        if found is None:
            return
        if found.kind is TargetKind.FIELD:
            self.report(stmt.pos,
                        f"increment/decrement of field {S.render(found.expr)} "
                        f"of protected type {self.protected_name}",
                        Rule.FIELD_INC_DEC)
        elif found.kind is TargetKind.POINTER:
            self.report(stmt.pos,
                        f"pointer-mediated increment/decrement of protected field "
                        f"{S.render(found.field)} through {found.via}",
                        Rule.POINTER_INC_DEC)
        else:
            self.report(stmt.pos, self._indexed_message(found), Rule.INDEXED_WRITE)

    def _indexed_message(self, found: WriteTarget) -> str:
        message = f"indexed write {S.render(found.expr)} into protected field {S.render(found.field)}"
        if found.via:
            message += f" through {found.via}"
        return message

    def check_range(self, stmt: S.RangeStmt) -> None:
        """Range statements: protected loop variables, or ``=`` into fields."""
        for var in (stmt.key, stmt.value):
            if var is None:
                continue
            if stmt.tok == "=":
                self.check_assign(S.AssignStmt(lhs=(var,), tok="=", rhs=(stmt.x,),
                                               pos=var.pos))
            elif self.classifier.is_protected(var.typ):
                self.report(var.pos,
                            f"range loop variable {S.render(var)} binds protected "
                            f"type {self.protected_name}",
                            Rule.LOOP_BINDING)

    def check_builtin_call(self, call: S.CallExpr) -> None:
        """``copy``, ``delete`` and ``clear`` writing into protected storage."""
        fun = S.unparen(call.fun)
        if not (isinstance(fun, S.Ident) and fun.name in BUILTIN_MUTATORS
                and fun.obj in (None, S.ObjKind.BUILTIN) and call.args):
            return
        container = S.unparen(call.args[0])
        root = self.field_root(container)
        via = ""
        if root is None:
            alias = self._alias_root(container)
            if alias is None:
                return
            via, root = alias
        message = f"builtin {fun.name} writes into protected field {S.render(root)}"
        if via:
            message += f" through {via}"
        self.report(call.pos, message, Rule.BUILTIN_WRITE)

    def check_method_call(self, call: S.CallExpr) -> None:
        """Strict mode: any method call on a protected receiver."""
        if not self.strict:
            return
        fun = S.unparen(call.fun)
        if not isinstance(fun, S.SelectorExpr):
            return
        if self.classifier.is_protected(fun.x.typ):
            self.report(call.pos,
                        f"calling method {fun.sel} on protected type {self.protected_name}",
                        Rule.METHOD_CALL)

    # ── Alias maintenance ────────────────────────────────────────────

    def track_bindings(self, names, values) -> None:
        """Update aliases for ``names = values`` / ``names := values``."""
        pairs = zip(names, values) if len(names) == len(values) else ((n, None) for n in names)
        for name_expr, value in pairs:
            name_expr = S.unparen(name_expr)
            if not isinstance(name_expr, S.Ident) or name_expr.name == "_":
                continue
            self._bind(name_expr.name, value)

    def _bind(self, name: str, value: Optional[S.Expr]) -> None:
        value = S.unparen(value) if value is not None else None
        if isinstance(value, S.UnaryExpr) and value.op == "&":
            root = self.field_root(value.x)
            if root is not None:
                self.aliases.record(name, root)
                _log.debug("alias %s -> %s", name, S.render(root))
                return
        if isinstance(value, S.Ident) and value.name in self.aliases:
            self.aliases.record_copy(name, value.name)
            return
        self.aliases.forget(name)

    def track_assign(self, stmt: S.AssignStmt) -> None:
        if stmt.is_plain:
            self.track_bindings(stmt.lhs, stmt.rhs)

    def track_decl(self, stmt: S.DeclStmt) -> None:
        self.track_bindings(stmt.names, stmt.values)
