"""
rwsep/syntax.py
═══════════════

The typed syntax tree the engine consumes.

The front end parses and type-checks Go source; what reaches rwsep is
this closed set of frozen node variants, each expression carrying its
resolved :class:`~rwsep.types.GoType` (or ``None`` when the front end
could not resolve it).

Node variants
─────────────
  Expressions   Ident  BasicLit  CompositeLit  KeyValueExpr  FuncLit
                ParenExpr  SelectorExpr  IndexExpr  StarExpr
                UnaryExpr  BinaryExpr  CallExpr
  Statements    ExprStmt  AssignStmt  IncDecStmt  DeclStmt  ReturnStmt
                BlockStmt  IfStmt  ForStmt  RangeStmt  SwitchStmt
                CaseClause  DeferStmt  GoStmt  BranchStmt
  Declarations  Param  FuncDecl  File  Unit

Traversal
─────────
``children(node)`` yields the direct sub-nodes of a node in source
order; ``walk(node)`` is the preorder closure of ``children``.  Both
reject anything outside the closed set with
:class:`~rwsep.errors.UnsupportedNodeError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, Optional, Tuple, Union

from rwsep.errors import UnsupportedNodeError
from rwsep.types import GoType


# ═════════════════════════════════════════════════════════════════════════
#  POSITIONS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Position:
    """Source position of a node.  ``offset`` is -1 when unknown."""
    file: str = "<unknown>"
    line: int = 0
    column: int = 0
    offset: int = -1

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"

    @property
    def sort_key(self) -> Tuple[str, int, int]:
        return (self.file, self.line, self.column)


NO_POS = Position()


class ObjKind(Enum):
    """What kind of object an identifier resolves to."""
    VAR = "var"
    CONST = "const"
    FUNC = "func"
    TYPE = "type"
    PKG = "pkg"
    BUILTIN = "builtin"
    NIL = "nil"


# ═════════════════════════════════════════════════════════════════════════
#  EXPRESSIONS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Ident:
    """A name.  ``pkg`` is the declaring unit of package-level objects."""
    name: str
    typ: Optional[GoType] = None
    obj: Optional[ObjKind] = None
    pkg: str = ""
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class BasicLit:
    kind: str
    value: str
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class CompositeLit:
    elts: Tuple[Expr, ...] = ()
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class KeyValueExpr:
    key: Expr
    value: Expr
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class FuncLit:
    params: Tuple[Param, ...]
    body: BlockStmt
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class ParenExpr:
    x: Expr
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class SelectorExpr:
    """``x.sel``: a field access, method value or package-qualified name."""
    x: Expr
    sel: str
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class IndexExpr:
    x: Expr
    index: Expr
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class StarExpr:
    """Pointer dereference ``*x``."""
    x: Expr
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class UnaryExpr:
    op: str
    x: Expr
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class BinaryExpr:
    op: str
    x: Expr
    y: Expr
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class CallExpr:
    fun: Expr
    args: Tuple[Expr, ...] = ()
    typ: Optional[GoType] = None
    pos: Position = NO_POS


Expr = Union[
    Ident, BasicLit, CompositeLit, KeyValueExpr, FuncLit, ParenExpr,
    SelectorExpr, IndexExpr, StarExpr, UnaryExpr, BinaryExpr, CallExpr,
]

EXPRESSION_TYPES = (
    Ident, BasicLit, CompositeLit, KeyValueExpr, FuncLit, ParenExpr,
    SelectorExpr, IndexExpr, StarExpr, UnaryExpr, BinaryExpr, CallExpr,
)


# ═════════════════════════════════════════════════════════════════════════
#  STATEMENTS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class ExprStmt:
    x: Expr
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class AssignStmt:
    """``lhs tok rhs`` where ``tok`` is ``=``, ``:=`` or a compound operator."""
    lhs: Tuple[Expr, ...]
    tok: str
    rhs: Tuple[Expr, ...]
    pos: Position = NO_POS

    @property
    def is_define(self) -> bool:
        return self.tok == ":="

    @property
    def is_plain(self) -> bool:
        return self.tok in ("=", ":=")


@dataclass(frozen=True, slots=True)
class IncDecStmt:
    x: Expr
    tok: str
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class DeclStmt:
    """``var names [type] [= values]``."""
    names: Tuple[Ident, ...]
    values: Tuple[Expr, ...] = ()
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class ReturnStmt:
    results: Tuple[Expr, ...] = ()
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class BlockStmt:
    stmts: Tuple[Stmt, ...] = ()
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class IfStmt:
    cond: Expr
    body: BlockStmt
    else_: Optional[Stmt] = None
    init: Optional[Stmt] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class ForStmt:
    body: BlockStmt
    init: Optional[Stmt] = None
    cond: Optional[Expr] = None
    post: Optional[Stmt] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class RangeStmt:
    x: Expr
    body: BlockStmt
    key: Optional[Expr] = None
    value: Optional[Expr] = None
    tok: str = ":="
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class CaseClause:
    """One ``case`` of a switch; an empty ``exprs`` is ``default``."""
    exprs: Tuple[Expr, ...] = ()
    body: Tuple[Stmt, ...] = ()
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class SwitchStmt:
    clauses: Tuple[CaseClause, ...] = ()
    tag: Optional[Expr] = None
    init: Optional[Stmt] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class DeferStmt:
    call: Expr
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class GoStmt:
    call: Expr
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class BranchStmt:
    tok: str
    label: str = ""
    pos: Position = NO_POS


Stmt = Union[
    ExprStmt, AssignStmt, IncDecStmt, DeclStmt, ReturnStmt, BlockStmt,
    IfStmt, ForStmt, RangeStmt, SwitchStmt, CaseClause, DeferStmt,
    GoStmt, BranchStmt,
]

STATEMENT_TYPES = (
    ExprStmt, AssignStmt, IncDecStmt, DeclStmt, ReturnStmt, BlockStmt,
    IfStmt, ForStmt, RangeStmt, SwitchStmt, CaseClause, DeferStmt,
    GoStmt, BranchStmt,
)


# ═════════════════════════════════════════════════════════════════════════
#  DECLARATIONS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Param:
    """A parameter or receiver.  ``name`` is empty for unnamed parameters."""
    name: str
    typ: Optional[GoType] = None
    pos: Position = NO_POS


@dataclass(frozen=True, slots=True)
class FuncDecl:
    name: str
    params: Tuple[Param, ...] = ()
    body: Optional[BlockStmt] = None
    recv: Optional[Param] = None
    pos: Position = NO_POS

    @property
    def is_method(self) -> bool:
        return self.recv is not None


@dataclass(frozen=True, slots=True)
class File:
    name: str
    package: str = ""
    decls: Tuple[FuncDecl, ...] = ()


@dataclass(frozen=True, slots=True)
class Unit:
    """One compilation unit (a Go package): its name, import path and files."""
    name: str
    path: str = ""
    files: Tuple[File, ...] = ()

    def functions(self) -> Iterator[FuncDecl]:
        for f in self.files:
            yield from f.decls


Node = Union[Expr, Stmt, Param, FuncDecl, File, Unit]


# ═════════════════════════════════════════════════════════════════════════
#  TRAVERSAL
# ═════════════════════════════════════════════════════════════════════════

def _opt(*nodes) -> Tuple:
    return tuple(n for n in nodes if n is not None)


_CHILDREN: Dict[type, Callable[..., Tuple]] = {
    Ident:        lambda n: (),
    BasicLit:     lambda n: (),
    CompositeLit: lambda n: n.elts,
    KeyValueExpr: lambda n: (n.key, n.value),
    FuncLit:      lambda n: n.params + (n.body,),
    ParenExpr:    lambda n: (n.x,),
    SelectorExpr: lambda n: (n.x,),
    IndexExpr:    lambda n: (n.x, n.index),
    StarExpr:     lambda n: (n.x,),
    UnaryExpr:    lambda n: (n.x,),
    BinaryExpr:   lambda n: (n.x, n.y),
    CallExpr:     lambda n: (n.fun,) + n.args,
    ExprStmt:     lambda n: (n.x,),
    AssignStmt:   lambda n: n.lhs + n.rhs,
    IncDecStmt:   lambda n: (n.x,),
    DeclStmt:     lambda n: n.names + n.values,
    ReturnStmt:   lambda n: n.results,
    BlockStmt:    lambda n: n.stmts,
    IfStmt:       lambda n: _opt(n.init, n.cond, n.body, n.else_),
    ForStmt:      lambda n: _opt(n.init, n.cond, n.post, n.body),
    RangeStmt:    lambda n: _opt(n.key, n.value, n.x, n.body),
    CaseClause:   lambda n: n.exprs + n.body,
    SwitchStmt:   lambda n: _opt(n.init, n.tag) + n.clauses,
    DeferStmt:    lambda n: (n.call,),
    GoStmt:       lambda n: (n.call,),
    BranchStmt:   lambda n: (),
    Param:        lambda n: (),
    FuncDecl:     lambda n: _opt(n.recv) + n.params + _opt(n.body),
    File:         lambda n: n.decls,
    Unit:         lambda n: n.files,
}


def children(node: Node) -> Tuple:
    """Direct sub-nodes of *node* in source order."""
    fn = _CHILDREN.get(type(node))
    if fn is None:
        raise UnsupportedNodeError(node)
    return fn(node)


def walk(node: Node) -> Iterator[Node]:
    """Preorder traversal of *node* and everything below it."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(children(current)))


def iter_calls(node: Node) -> Iterator[CallExpr]:
    """Every call expression below *node*, in preorder."""
    for n in walk(node):
        if isinstance(n, CallExpr):
            yield n


def unparen(expr: Expr) -> Expr:
    """Strip any number of enclosing parentheses."""
    while isinstance(expr, ParenExpr):
        expr = expr.x
    return expr


def position_of(node: Node) -> Position:
    return getattr(node, "pos", NO_POS)


# ─────────────────────────────────────────────────────────────────────────
#  Pretty-printing (used in issue messages)
# ─────────────────────────────────────────────────────────────────────────

def render(expr: Optional[Expr]) -> str:
    """Render an expression back to Go-like source text."""
    if expr is None:
        return ""
    if isinstance(expr, Ident):
        return expr.name
    if isinstance(expr, BasicLit):
        return expr.value
    if isinstance(expr, SelectorExpr):
        return f"{render(expr.x)}.{expr.sel}"
    if isinstance(expr, IndexExpr):
        return f"{render(expr.x)}[{render(expr.index)}]"
    if isinstance(expr, StarExpr):
        return f"*{render(expr.x)}"
    if isinstance(expr, ParenExpr):
        return f"({render(expr.x)})"
    if isinstance(expr, UnaryExpr):
        return f"{expr.op}{render(expr.x)}"
    if isinstance(expr, BinaryExpr):
        return f"{render(expr.x)} {expr.op} {render(expr.y)}"
    if isinstance(expr, CallExpr):
        return f"{render(expr.fun)}({', '.join(render(a) for a in expr.args)})"
    if isinstance(expr, KeyValueExpr):
        return f"{render(expr.key)}: {render(expr.value)}"
    if isinstance(expr, CompositeLit):
        prefix = str(expr.typ) if expr.typ is not None else ""
        return f"{prefix}{{{', '.join(render(e) for e in expr.elts)}}}"
    if isinstance(expr, FuncLit):
        return "func literal"
    raise UnsupportedNodeError(expr)
