"""
rwsep/analyzer.py
═════════════════

The analysis driver: walks every function of the reader unit, then runs
the parameter-taint pass and the contamination closure.

Pipeline (one run, one unit)
────────────────────────────
  1. skip the unit unless it is the configured reader unit
  2. register every FuncDecl in the call graph
  3. traverse each function body with a fresh alias tracker:
       mutation rules, alias bookkeeping, call recording, escapes
  4. parameter-taint pass: re-walk every function that received a
     pointer to a protected field, with that parameter pre-bound as an
     alias of the field, until no new taint appears
  5. closure pass: propagate ``modifies`` from callees to callers and
     report the first call site of every contaminated callee
  6. hand back the issue set, in discovery order

Every run owns a fresh :class:`AnalysisContext`; analyzer instances keep
no state between runs, so re-running on the same unit gives the same
issues.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from rwsep import syntax as S
from rwsep.aliases import AliasTracker
from rwsep.callgraph import CallGraph, FunctionInfo, callgraph_summary
from rwsep.classifier import TypeClassifier
from rwsep.config import ProtectedTypeConfig
from rwsep.diagnostics import Issue, IssueSet, Rule, filter_suppressed
from rwsep.dump import load_unit
from rwsep.errors import InputError, InternalError, UnsupportedNodeError
from rwsep.mutation import MutationDetector

_log = logging.getLogger(__name__)

__all__ = [
    "AnalysisContext",
    "AnalysisResult",
    "BatchResult",
    "FunctionWalker",
    "RWSepAnalyzer",
]


# ═════════════════════════════════════════════════════════════════════════
#  RESULTS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class AnalysisResult:
    """Outcome of analysing one unit."""
    unit: str
    issues: List[Issue] = field(default_factory=list)
    graph: Optional[CallGraph] = None
    skipped: bool = False
    stats: Dict[str, Any] = field(default_factory=dict)

    def reported(self, suppressed: Iterable[str] = ()) -> List[Issue]:
        return filter_suppressed(self.issues, suppressed)


@dataclass
class BatchResult:
    """Outcome of analysing several units; failed units are listed, not raised."""
    results: List[AnalysisResult] = field(default_factory=list)
    errors: List[Tuple[str, InputError]] = field(default_factory=list)

    @property
    def issues(self) -> List[Issue]:
        return [issue for result in self.results for issue in result.issues]

    @property
    def ok(self) -> bool:
        return not self.errors


# ═════════════════════════════════════════════════════════════════════════
#  CONTEXT
# ═════════════════════════════════════════════════════════════════════════

class AnalysisContext:
    """Everything one run shares: config, classifier, graph, issues, queue."""

    def __init__(self, config: ProtectedTypeConfig, unit: S.Unit) -> None:
        self.config = config
        self.unit = unit
        self.classifier = TypeClassifier(config.data_unit, config.type_name)
        self.graph = CallGraph(unit.name, unit.path)
        self.issues = IssueSet()
        self.escape_sites: Set[Tuple[S.Position, str]] = set()
        self.aliases = AliasTracker()
        self.pending: Deque[str] = deque()
        self._queued: Set[str] = set()

    def enqueue(self, key: str) -> None:
        if key not in self._queued:
            self._queued.add(key)
            self.pending.append(key)

    def dequeue(self) -> Optional[FunctionInfo]:
        while self.pending:
            key = self.pending.popleft()
            self._queued.discard(key)
            info = self.graph.get(key)
            if info is not None:
                return info
        return None


# ═════════════════════════════════════════════════════════════════════════
#  FUNCTION WALKER
# ═════════════════════════════════════════════════════════════════════════

_STMT_WALK: Dict[type, Callable[..., None]] = {}
_EXPR_WALK: Dict[type, Callable[..., None]] = {}


def _register(table: dict, *node_types: type):
    """Decorator: register a walker method for *node_types* in *table*."""
    def deco(fn):
        for node_type in node_types:
            table[node_type] = fn
        return fn
    return deco


class FunctionWalker:
    """
    Walks one function body.

    Parameters
    ----------
    ctx:
        The run's context.
    info:
        The function being walked; mutation findings set its ``modifies``.
    aliases:
        Alias tracker for this walk (pre-seeded by the taint pass).
    record_calls:
        Append callee keys to ``info.calls``.  Only the first traversal
        does this, so re-walks do not duplicate edges.
    """

    def __init__(self, ctx: AnalysisContext, info: FunctionInfo, aliases: AliasTracker,
                 record_calls: bool = True) -> None:
        self.ctx = ctx
        self.info = info
        self.aliases = aliases
        self.record_calls = record_calls
        self.detector = MutationDetector(ctx.classifier, aliases, self._report,
                                         ctx.config.protected_name, ctx.config.strict)

    def _report(self, pos: S.Position, message: str, rule: Rule) -> None:
        self.ctx.issues.report(pos, message, rule)
        if rule.sets_modifies and not self.info.modifies:
            _log.debug("%s modifies protected data (%s at %s)", self.info.key,
                       rule.rule_id, pos)
            self.info.modifies = True

    def walk_body(self) -> None:
        if self.info.decl.body is not None:
            self.stmt(self.info.decl.body)

    # ── Dispatch ─────────────────────────────────────────────────────

    def stmt(self, node: Optional[S.Stmt]) -> None:
        if node is None:
            return
        fn = _STMT_WALK.get(type(node))
        if fn is None:
            raise UnsupportedNodeError(node)
        fn(self, node)

    def expr(self, node: Optional[S.Expr]) -> None:
        if node is None:
            return
        fn = _EXPR_WALK.get(type(node))
        if fn is None:
            raise UnsupportedNodeError(node)
        fn(self, node)

    def exprs(self, nodes: Iterable[S.Expr]) -> None:
        for node in nodes:
            self.expr(node)

    # ── Statements ───────────────────────────────────────────────────

    @_register(_STMT_WALK, S.ExprStmt)
    def _walk_expr_stmt(self, node: S.ExprStmt) -> None:
        self.expr(node.x)

    @_register(_STMT_WALK, S.AssignStmt)
    def _walk_assign(self, node: S.AssignStmt) -> None:
        self.exprs(node.rhs)
        self.exprs(node.lhs)
        self.detector.check_assign(node)
        self.detector.track_assign(node)

    @_register(_STMT_WALK, S.IncDecStmt)
    def _walk_incdec(self, node: S.IncDecStmt) -> None:
        self.expr(node.x)
        self.detector.check_incdec(node)

    @_register(_STMT_WALK, S.DeclStmt)
    def _walk_decl(self, node: S.DeclStmt) -> None:
        self.exprs(node.values)
        self.detector.track_decl(node)

    @_register(_STMT_WALK, S.ReturnStmt)
    def _walk_return(self, node: S.ReturnStmt) -> None:
        self.exprs(node.results)

    @_register(_STMT_WALK, S.BlockStmt)
    def _walk_block(self, node: S.BlockStmt) -> None:
        for stmt in node.stmts:
            self.stmt(stmt)

    @_register(_STMT_WALK, S.IfStmt)
    def _walk_if(self, node: S.IfStmt) -> None:
        self.stmt(node.init)
        self.expr(node.cond)
        self.stmt(node.body)
        self.stmt(node.else_)

    @_register(_STMT_WALK, S.ForStmt)
    def _walk_for(self, node: S.ForStmt) -> None:
        self.stmt(node.init)
        self.expr(node.cond)
        self.stmt(node.post)
        self.stmt(node.body)

    @_register(_STMT_WALK, S.RangeStmt)
    def _walk_range(self, node: S.RangeStmt) -> None:
        self.expr(node.x)
        self.detector.check_range(node)
        self.detector.track_bindings(
            tuple(v for v in (node.key, node.value) if v is not None), ())
        self.stmt(node.body)

    @_register(_STMT_WALK, S.SwitchStmt)
    def _walk_switch(self, node: S.SwitchStmt) -> None:
        self.stmt(node.init)
        self.expr(node.tag)
        for clause in node.clauses:
            self.stmt(clause)

    @_register(_STMT_WALK, S.CaseClause)
    def _walk_case(self, node: S.CaseClause) -> None:
        self.exprs(node.exprs)
        for stmt in node.body:
            self.stmt(stmt)

    @_register(_STMT_WALK, S.DeferStmt, S.GoStmt)
    def _walk_deferred_call(self, node) -> None:
        self.expr(node.call)

    @_register(_STMT_WALK, S.BranchStmt)
    def _walk_branch(self, node: S.BranchStmt) -> None:
        pass

    # ── Expressions ──────────────────────────────────────────────────

    @_register(_EXPR_WALK, S.Ident, S.BasicLit)
    def _walk_leaf(self, node) -> None:
        pass

    @_register(_EXPR_WALK, S.CompositeLit)
    def _walk_composite(self, node: S.CompositeLit) -> None:
        self.exprs(node.elts)

    @_register(_EXPR_WALK, S.KeyValueExpr)
    def _walk_kv(self, node: S.KeyValueExpr) -> None:
        self.expr(node.key)
        self.expr(node.value)

    @_register(_EXPR_WALK, S.FuncLit)
    def _walk_funclit(self, node: S.FuncLit) -> None:
        self.stmt(node.body)

    @_register(_EXPR_WALK, S.ParenExpr, S.SelectorExpr, S.StarExpr, S.UnaryExpr)
    def _walk_unary(self, node) -> None:
        self.expr(node.x)

    @_register(_EXPR_WALK, S.IndexExpr)
    def _walk_index(self, node: S.IndexExpr) -> None:
        self.expr(node.x)
        self.expr(node.index)

    @_register(_EXPR_WALK, S.BinaryExpr)
    def _walk_binary(self, node: S.BinaryExpr) -> None:
        self.expr(node.x)
        self.expr(node.y)

    @_register(_EXPR_WALK, S.CallExpr)
    def _walk_call(self, node: S.CallExpr) -> None:
        self.expr(node.fun)
        self.exprs(node.args)
        self._call(node)

    # ── Calls ────────────────────────────────────────────────────────

    def escaping_field(self, arg: S.Expr) -> Optional[S.SelectorExpr]:
        """The protected field *arg* hands out a pointer to, if any."""
        arg = S.unparen(arg)
        if isinstance(arg, S.UnaryExpr) and arg.op == "&":
            return self.detector.field_root(arg.x)
        if isinstance(arg, S.Ident):
            return self.aliases.resolve(arg.name)
        return None

    def _call(self, call: S.CallExpr) -> None:
        graph = self.ctx.graph
        key = graph.callee_key(call)
        if self.record_calls:
            graph.record_call(self.info, key)
        self.detector.check_method_call(call)
        self.detector.check_builtin_call(call)

        callee = graph.get(key)
        for index, arg in enumerate(call.args):
            source = self.escaping_field(arg)
            if source is None:
                continue
            self.ctx.escape_sites.add((call.pos, key))
            self.ctx.issues.report(
                call.pos,
                f"passing pointer to protected field {S.render(source)} "
                f"into function {key}",
                Rule.POINTER_ESCAPE)
            if callee is not None and graph.taint(callee, index, source):
                self.ctx.enqueue(callee.key)


def _check_dispatch_tables() -> None:
    missing = [t.__name__ for t in S.STATEMENT_TYPES if t not in _STMT_WALK]
    missing += [t.__name__ for t in S.EXPRESSION_TYPES if t not in _EXPR_WALK]
    if missing:
        raise InternalError(f"function walker has no handler for {', '.join(missing)}")


_check_dispatch_tables()


# ═════════════════════════════════════════════════════════════════════════
#  ANALYZER
# ═════════════════════════════════════════════════════════════════════════

class RWSepAnalyzer:
    """
    Read/write separation analyzer.

    Usage
    -----
    >>> analyzer = RWSepAnalyzer(ProtectedTypeConfig(reader_unit="reader"))
    >>> for issue in analyzer.run(load_unit("reader.sexp")):
    ...     print(issue)
    """

    def __init__(self, config: Optional[ProtectedTypeConfig] = None) -> None:
        self.config = config or ProtectedTypeConfig()

    def run(self, unit: S.Unit) -> List[Issue]:
        """Analyse *unit* and return its issues in discovery order."""
        return self.analyze(unit).issues

    def analyze(self, unit: S.Unit) -> AnalysisResult:
        """Analyse *unit*; the result also carries the call graph."""
        if not self.config.matches_reader(unit.name, unit.path):
            _log.info("skipping unit %s: not the reader unit %s",
                      unit.name, self.config.reader_unit)
            return AnalysisResult(unit=unit.name, skipped=True)

        ctx = AnalysisContext(self.config, unit)
        graph = ctx.graph
        for decl in unit.functions():
            if graph.function_key(decl) in graph.functions:
                _log.warning("duplicate function %s in unit %s; keeping the first",
                             graph.function_key(decl), unit.name)
                continue
            graph.register(decl)
        _log.info("analysing unit %s: %d function(s)", unit.name, len(graph))

        for info in list(graph.functions.values()):
            ctx.aliases.reset()
            FunctionWalker(ctx, info, ctx.aliases).walk_body()

        rewalks = self._taint_pass(ctx)
        passes = graph.propagate(lambda caller, callee, site:
                                 self._report_contaminated(ctx, callee, site))

        issues = ctx.issues.drain()
        stats = dict(graph.statistics(), taint_rewalks=rewalks, closure_passes=passes,
                     issues=len(issues))
        _log.info("unit %s: %d issue(s), %d taint re-walk(s), %d closure pass(es)",
                  unit.name, len(issues), rewalks, passes)
        _log.debug("call graph statistics for %s: %s", unit.name, stats)
        if _log.isEnabledFor(logging.DEBUG):
            _log.debug("%s", callgraph_summary(graph))
        return AnalysisResult(unit=unit.name, issues=issues, graph=graph, stats=stats)

    @staticmethod
    def _taint_pass(ctx: AnalysisContext) -> int:
        rewalks = 0
        while True:
            info = ctx.dequeue()
            if info is None:
                return rewalks
            aliases = ctx.aliases
            aliases.reset()
            for name, source in info.parameter_bindings():
                aliases.record(name, source)
            FunctionWalker(ctx, info, aliases, record_calls=False).walk_body()
            rewalks += 1

    @staticmethod
    def _report_contaminated(ctx: AnalysisContext, callee: FunctionInfo,
                             site: Optional[S.CallExpr]) -> None:
        if site is None or (site.pos, callee.key) in ctx.escape_sites:
            return
        ctx.issues.report(
            site.pos,
            f"calling function {callee.key} that modifies protected type "
            f"{ctx.config.protected_name} through a pointer parameter",
            Rule.CONTAMINATED_CALL)

    # ── Batches ──────────────────────────────────────────────────────

    def analyze_units(self, units: Iterable[S.Unit]) -> BatchResult:
        """Analyse independent units; an input error only drops its own unit."""
        batch = BatchResult()
        for unit in units:
            try:
                batch.results.append(self.analyze(unit))
            except InputError as e:
                _log.error("unit %s: %s", unit.name, e)
                batch.errors.append((unit.name, e))
        return batch

    def analyze_paths(self, paths: Iterable[str]) -> BatchResult:
        """Load and analyse each unit dump in *paths*."""
        batch = BatchResult()
        for path in paths:
            try:
                unit = load_unit(path)
                batch.results.append(self.analyze(unit))
            except InputError as e:
                _log.error("%s: %s", path, e)
                batch.errors.append((str(path), e))
        return batch
