"""rwsep/dump.py – S-expression unit dump → typed syntax tree.

The front end renders one type-checked Go package as an S-expression
file; this module reads it with ``sexpdata`` and builds the frozen nodes
of :mod:`rwsep.syntax`.

Design principles
-----------------
* **Head-symbol dispatch** – every list ``(tag ...)`` is dispatched on
  its head symbol to a ``_load_<tag>`` method registered in an
  expression or statement table.
* **Keyword arguments** – ``:type``, ``:obj``, ``:pkg``, ``:at`` and the
  per-form keywords may appear anywhere after the head; everything else
  is positional.
* **Positions default to the first child** – a node without ``:at``
  inherits the position of its first sub-node, so front ends only need
  to annotate leaves.
* **Fail-fast with location** – malformed input raises
  :class:`~rwsep.errors.DumpError` carrying the best known position.

Surface syntax
--------------
::

    (unit <name> :path "<import path>"
      (file "<file name>" :package <name>
        (func <name> [:recv (<name> "<type>")] [:at (<line> <col>)]
          (params (<name> "<type>") ...)
          (block <stmt> ...))))

    ;; expressions
    (ident <name> [:type T] [:obj var|const|func|type|pkg|builtin|nil] [:pkg P])
    (lit <kind> "<value>")          (composite <expr> ...)
    (kv <expr> <expr>)              (funclit (params ...) (block ...))
    (paren <expr>)                  (sel <expr> <name>)
    (index <expr> <expr>)           (star <expr>)
    (unary "<op>" <expr>)           (binary "<op>" <expr> <expr>)
    (call <fun> <arg> ...)

    ;; statements
    (expr <expr>)                   (assign <lhs> ... "<tok>" <rhs> ...)
    (incdec <expr> "++"|"--")       (var <name> ... [:type T] <value> ...)
    (return <expr> ...)             (block <stmt> ...)
    (if <cond> (block ...) [<else>] [:init <stmt>])
    (for (block ...) [:init <stmt>] [:cond <expr>] [:post <stmt>])
    (range <expr> (block ...) [:key <expr>] [:value <expr>] [:tok "<tok>"])
    (switch [:tag <expr>] [:init <stmt>] (case <expr> ... <stmt> ...) ...)
    (defer <call>)  (go <call>)  (branch <tok> [<label>])

Types are Go type strings (see :mod:`rwsep.types`); quote them whenever
they contain brackets, braces or spaces.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

import sexpdata
from sexpdata import Symbol

from rwsep import syntax as S
from rwsep.errors import DumpError, RwsepError, TypeSyntaxError, UnknownFormError
from rwsep.types import GoType, TypeCache

_log = logging.getLogger(__name__)

__all__ = ["DumpLoader", "load_unit", "loads_unit"]

# Raw sexpdata output
Sexp = Any


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

def _is_keyword(s: Sexp) -> bool:
    """``:name`` symbols introduce keyword arguments (``:=`` does not)."""
    if not isinstance(s, Symbol):
        return False
    text = s.value()
    return len(text) > 1 and text[0] == ":" and text[1].isalpha()


def _is_string(s: Sexp) -> bool:
    return isinstance(s, str) and not isinstance(s, Symbol)


def _sym_name(s: Sexp) -> str:
    if isinstance(s, Symbol):
        return s.value()
    raise DumpError(f"expected symbol, got {type(s).__name__}: {s!r}")


def _as_str(s: Sexp) -> str:
    """Coerce *s* to ``str`` – accepts a symbol, string or number."""
    if isinstance(s, Symbol):
        return s.value()
    if isinstance(s, str):
        return s
    if isinstance(s, (int, float)) and not isinstance(s, bool):
        return str(s)
    raise DumpError(f"expected string or symbol, got {type(s).__name__}: {s!r}")


def _as_int(s: Sexp) -> int:
    if isinstance(s, int) and not isinstance(s, bool):
        return s
    raise DumpError(f"expected integer, got {type(s).__name__}: {s!r}")


def _head(s: Sexp) -> Optional[str]:
    """Head symbol of a ``(tag ...)`` form, or ``None`` for anything else."""
    if isinstance(s, list) and s and isinstance(s[0], Symbol):
        return s[0].value()
    return None


def _split_args(s: list) -> Tuple[List[Sexp], Dict[str, Sexp]]:
    """Split the tail of a form into positional and keyword arguments."""
    positional: List[Sexp] = []
    keywords: Dict[str, Sexp] = {}
    items = s[1:]
    i = 0
    while i < len(items):
        item = items[i]
        if _is_keyword(item):
            if i + 1 >= len(items):
                raise DumpError(f"keyword {item.value()} in ({_head(s)} ...) has no value")
            keywords[item.value()[1:]] = items[i + 1]
            i += 2
            continue
        positional.append(item)
        i += 1
    return positional, keywords


# ═══════════════════════════════════════════════════════════════════════
#  Dispatch registry
# ═══════════════════════════════════════════════════════════════════════

_EXPR_DISPATCH: Dict[str, Callable[..., Any]] = {}
_STMT_DISPATCH: Dict[str, Callable[..., Any]] = {}


def _register(table: dict, tag: str):
    """Decorator: register a loader method under *tag* in *table*."""
    def deco(fn):
        table[tag] = fn
        return fn
    return deco


_OBJ_KINDS = {k.value: k for k in S.ObjKind}


class DumpLoader:
    """Builds one :class:`~rwsep.syntax.Unit` from its S-expression form.

    A loader owns the current file name (for positions) and a
    :class:`~rwsep.types.TypeCache`, so every named type of one dump is
    a single shared object.
    """

    def __init__(self, filename: str = "<string>") -> None:
        self.filename = filename
        self.current_file = filename
        self.types = TypeCache()

    # ── Entry point ──────────────────────────────────────────────────

    def load(self, text: str) -> S.Unit:
        try:
            raw = sexpdata.loads(text, nil=None, true=None, false=None)
        except Exception as e:
            raise DumpError(f"{self.filename}: S-expression syntax error: {e}") from e
        if _head(raw) != "unit":
            raise DumpError(f"{self.filename}: expected (unit ...) at top level")
        unit = self._load_unit(raw)
        _log.debug("loaded unit %s from %s (%d files, %d types)",
                   unit.name, self.filename, len(unit.files), len(self.types))
        return unit

    # ── Common pieces ────────────────────────────────────────────────

    def _pos(self, kw: Dict[str, Sexp], *fallback) -> S.Position:
        at = kw.get("at")
        if at is None:
            for node in fallback:
                pos = S.position_of(node) if node is not None else None
                if pos is not None and pos.line:
                    return pos
            return S.Position(file=self.current_file)
        if not isinstance(at, list) or len(at) not in (2, 3):
            raise DumpError(f"malformed :at {at!r}, expected (line col [offset])",
                            S.Position(file=self.current_file))
        offset = _as_int(at[2]) if len(at) == 3 else -1
        return S.Position(self.current_file, _as_int(at[0]), _as_int(at[1]), offset)

    def _type(self, kw: Dict[str, Sexp]) -> Optional[GoType]:
        raw = kw.get("type")
        if raw is None:
            return None
        try:
            return self.types.get(_as_str(raw))
        except TypeSyntaxError as e:
            raise TypeSyntaxError(e.text, e.detail, position=self._pos(kw)) from e

    def _param(self, s: Sexp) -> S.Param:
        if not isinstance(s, list) or not s:
            raise DumpError(f"expected (name \"type\") parameter, got {s!r}",
                            S.Position(file=self.current_file))
        positional, kw = _split_args([None] + list(s))
        if len(positional) == 1:
            name, type_text = "", positional[0]
        elif len(positional) == 2:
            name, type_text = _as_str(positional[0]), positional[1]
        else:
            raise DumpError(f"parameter {s!r} needs a name and a type",
                            S.Position(file=self.current_file))
        kw.setdefault("type", type_text)
        return S.Param(name=name, typ=self._type(kw), pos=self._pos(kw))

    def _params(self, s: Sexp) -> Tuple[S.Param, ...]:
        if _head(s) != "params":
            raise DumpError(f"expected (params ...), got {s!r}",
                            S.Position(file=self.current_file))
        return tuple(self._param(p) for p in s[1:])

    def _block(self, s: Sexp) -> S.BlockStmt:
        if _head(s) != "block":
            raise DumpError(f"expected (block ...), got {s!r}",
                            S.Position(file=self.current_file))
        return self._load_block(s)

    def _one(self, positional: List[Sexp], tag: str, count: int) -> None:
        if len(positional) != count:
            raise DumpError(f"({tag} ...) takes {count} operand(s), got {len(positional)}",
                            S.Position(file=self.current_file))

    # ── Declarations ─────────────────────────────────────────────────

    def _load_unit(self, s: list) -> S.Unit:
        positional, kw = _split_args(s)
        if not positional:
            raise DumpError("(unit ...) needs a name")
        name = _as_str(positional[0])
        files = tuple(self._load_file(f) for f in positional[1:])
        return S.Unit(name=name, path=_as_str(kw.get("path", name)), files=files)

    def _load_file(self, s: Sexp) -> S.File:
        if _head(s) != "file":
            raise UnknownFormError(f"expected (file ...) inside (unit ...), got {s!r}")
        positional, kw = _split_args(s)
        if not positional:
            raise DumpError("(file ...) needs a file name")
        self.current_file = _as_str(positional[0])
        decls = []
        for item in positional[1:]:
            if _head(item) != "func":
                raise UnknownFormError(f"unknown declaration form {item!r}",
                                       S.Position(file=self.current_file))
            decls.append(self._load_func(item))
        return S.File(name=self.current_file, package=_as_str(kw.get("package", "")),
                      decls=tuple(decls))

    def _load_func(self, s: list) -> S.FuncDecl:
        positional, kw = _split_args(s)
        if not positional:
            raise DumpError("(func ...) needs a name", S.Position(file=self.current_file))
        name = _as_str(positional[0])
        params: Tuple[S.Param, ...] = ()
        body = None
        for item in positional[1:]:
            head = _head(item)
            if head == "params":
                params = self._params(item)
            elif head == "block":
                body = self._load_block(item)
            else:
                raise UnknownFormError(f"unexpected form in func {name}: {item!r}",
                                       self._pos(kw))
        recv = self._param(kw["recv"]) if "recv" in kw else None
        return S.FuncDecl(name=name, params=params, body=body, recv=recv,
                          pos=self._pos(kw))

    # ── Dispatch ─────────────────────────────────────────────────────

    def expr(self, s: Sexp) -> S.Expr:
        """Load one expression form."""
        fn = _EXPR_DISPATCH.get(_head(s) or "")
        if fn is None:
            raise UnknownFormError(f"unknown expression form {s!r}",
                                   S.Position(file=self.current_file))
        return fn(self, s)

    def stmt(self, s: Sexp) -> S.Stmt:
        """Load one statement form."""
        fn = _STMT_DISPATCH.get(_head(s) or "")
        if fn is None:
            raise UnknownFormError(f"unknown statement form {s!r}",
                                   S.Position(file=self.current_file))
        return fn(self, s)

    # ── Expressions ──────────────────────────────────────────────────

    @_register(_EXPR_DISPATCH, "ident")
    def _load_ident(self, s: list) -> S.Ident:
        positional, kw = _split_args(s)
        self._one(positional, "ident", 1)
        obj = None
        if "obj" in kw:
            obj_name = _as_str(kw["obj"])
            if obj_name not in _OBJ_KINDS:
                raise DumpError(f"unknown object kind {obj_name!r}", self._pos(kw))
            obj = _OBJ_KINDS[obj_name]
        return S.Ident(name=_as_str(positional[0]), typ=self._type(kw), obj=obj,
                       pkg=_as_str(kw.get("pkg", "")), pos=self._pos(kw))

    @_register(_EXPR_DISPATCH, "lit")
    def _load_lit(self, s: list) -> S.BasicLit:
        positional, kw = _split_args(s)
        self._one(positional, "lit", 2)
        return S.BasicLit(kind=_as_str(positional[0]), value=_as_str(positional[1]),
                          typ=self._type(kw), pos=self._pos(kw))

    @_register(_EXPR_DISPATCH, "composite")
    def _load_composite(self, s: list) -> S.CompositeLit:
        positional, kw = _split_args(s)
        elts = tuple(self.expr(e) for e in positional)
        return S.CompositeLit(elts=elts, typ=self._type(kw), pos=self._pos(kw, *elts))

    @_register(_EXPR_DISPATCH, "kv")
    def _load_kv(self, s: list) -> S.KeyValueExpr:
        positional, kw = _split_args(s)
        self._one(positional, "kv", 2)
        key, value = self.expr(positional[0]), self.expr(positional[1])
        return S.KeyValueExpr(key=key, value=value, typ=self._type(kw),
                              pos=self._pos(kw, key))

    @_register(_EXPR_DISPATCH, "funclit")
    def _load_funclit(self, s: list) -> S.FuncLit:
        positional, kw = _split_args(s)
        params: Tuple[S.Param, ...] = ()
        body = S.BlockStmt()
        for item in positional:
            if _head(item) == "params":
                params = self._params(item)
            else:
                body = self._block(item)
        return S.FuncLit(params=params, body=body, typ=self._type(kw),
                         pos=self._pos(kw, body))

    @_register(_EXPR_DISPATCH, "paren")
    def _load_paren(self, s: list) -> S.ParenExpr:
        positional, kw = _split_args(s)
        self._one(positional, "paren", 1)
        x = self.expr(positional[0])
        return S.ParenExpr(x=x, typ=self._type(kw) or x.typ, pos=self._pos(kw, x))

    @_register(_EXPR_DISPATCH, "sel")
    def _load_sel(self, s: list) -> S.SelectorExpr:
        positional, kw = _split_args(s)
        self._one(positional, "sel", 2)
        x = self.expr(positional[0])
        return S.SelectorExpr(x=x, sel=_as_str(positional[1]), typ=self._type(kw),
                              pos=self._pos(kw, x))

    @_register(_EXPR_DISPATCH, "index")
    def _load_index(self, s: list) -> S.IndexExpr:
        positional, kw = _split_args(s)
        self._one(positional, "index", 2)
        x, index = self.expr(positional[0]), self.expr(positional[1])
        return S.IndexExpr(x=x, index=index, typ=self._type(kw), pos=self._pos(kw, x))

    @_register(_EXPR_DISPATCH, "star")
    def _load_star(self, s: list) -> S.StarExpr:
        positional, kw = _split_args(s)
        self._one(positional, "star", 1)
        x = self.expr(positional[0])
        return S.StarExpr(x=x, typ=self._type(kw), pos=self._pos(kw, x))

    @_register(_EXPR_DISPATCH, "unary")
    def _load_unary(self, s: list) -> S.UnaryExpr:
        positional, kw = _split_args(s)
        self._one(positional, "unary", 2)
        x = self.expr(positional[1])
        return S.UnaryExpr(op=_as_str(positional[0]), x=x, typ=self._type(kw),
                           pos=self._pos(kw, x))

    @_register(_EXPR_DISPATCH, "binary")
    def _load_binary(self, s: list) -> S.BinaryExpr:
        positional, kw = _split_args(s)
        self._one(positional, "binary", 3)
        x, y = self.expr(positional[1]), self.expr(positional[2])
        return S.BinaryExpr(op=_as_str(positional[0]), x=x, y=y, typ=self._type(kw),
                            pos=self._pos(kw, x))

    @_register(_EXPR_DISPATCH, "call")
    def _load_call(self, s: list) -> S.CallExpr:
        positional, kw = _split_args(s)
        if not positional:
            raise DumpError("(call ...) needs a function", self._pos(kw))
        fun = self.expr(positional[0])
        args = tuple(self.expr(a) for a in positional[1:])
        return S.CallExpr(fun=fun, args=args, typ=self._type(kw), pos=self._pos(kw, fun))

    # ── Statements ───────────────────────────────────────────────────

    @_register(_STMT_DISPATCH, "expr")
    def _load_expr_stmt(self, s: list) -> S.ExprStmt:
        positional, kw = _split_args(s)
        self._one(positional, "expr", 1)
        x = self.expr(positional[0])
        return S.ExprStmt(x=x, pos=self._pos(kw, x))

    @_register(_STMT_DISPATCH, "assign")
    def _load_assign(self, s: list) -> S.AssignStmt:
        positional, kw = _split_args(s)
        ops = [i for i, item in enumerate(positional) if _is_string(item)]
        if len(ops) != 1:
            raise DumpError("(assign ...) needs exactly one operator string", self._pos(kw))
        split = ops[0]
        lhs = tuple(self.expr(e) for e in positional[:split])
        rhs = tuple(self.expr(e) for e in positional[split + 1:])
        if not lhs or not rhs:
            raise DumpError("(assign ...) needs both sides", self._pos(kw))
        return S.AssignStmt(lhs=lhs, tok=positional[split], rhs=rhs,
                            pos=self._pos(kw, lhs[0]))

    @_register(_STMT_DISPATCH, "incdec")
    def _load_incdec(self, s: list) -> S.IncDecStmt:
        positional, kw = _split_args(s)
        self._one(positional, "incdec", 2)
        tok = _as_str(positional[1])
        if tok not in ("++", "--"):
            raise DumpError(f"bad inc/dec operator {tok!r}", self._pos(kw))
        x = self.expr(positional[0])
        return S.IncDecStmt(x=x, tok=tok, pos=self._pos(kw, x))

    @_register(_STMT_DISPATCH, "var")
    def _load_var(self, s: list) -> S.DeclStmt:
        positional, kw = _split_args(s)
        typ = self._type(kw)
        names: List[S.Ident] = []
        values: List[S.Expr] = []
        for item in positional:
            if isinstance(item, list):
                values.append(self.expr(item))
            elif values:
                raise DumpError("(var ...) names must precede values", self._pos(kw))
            else:
                names.append(S.Ident(name=_as_str(item), typ=typ, obj=S.ObjKind.VAR,
                                     pos=self._pos(kw)))
        if not names:
            raise DumpError("(var ...) declares no names", self._pos(kw))
        return S.DeclStmt(names=tuple(names), values=tuple(values), typ=typ,
                          pos=self._pos(kw, *values))

    @_register(_STMT_DISPATCH, "return")
    def _load_return(self, s: list) -> S.ReturnStmt:
        positional, kw = _split_args(s)
        results = tuple(self.expr(e) for e in positional)
        return S.ReturnStmt(results=results, pos=self._pos(kw, *results))

    @_register(_STMT_DISPATCH, "block")
    def _load_block(self, s: list) -> S.BlockStmt:
        positional, kw = _split_args(s)
        stmts = tuple(self.stmt(e) for e in positional)
        return S.BlockStmt(stmts=stmts, pos=self._pos(kw, *stmts))

    @_register(_STMT_DISPATCH, "if")
    def _load_if(self, s: list) -> S.IfStmt:
        positional, kw = _split_args(s)
        if len(positional) not in (2, 3):
            raise DumpError("(if cond (block ...) [else]) expected", self._pos(kw))
        cond = self.expr(positional[0])
        body = self._block(positional[1])
        else_ = self.stmt(positional[2]) if len(positional) == 3 else None
        init = self.stmt(kw["init"]) if "init" in kw else None
        return S.IfStmt(cond=cond, body=body, else_=else_, init=init,
                        pos=self._pos(kw, init, cond))

    @_register(_STMT_DISPATCH, "for")
    def _load_for(self, s: list) -> S.ForStmt:
        positional, kw = _split_args(s)
        self._one(positional, "for", 1)
        body = self._block(positional[0])
        init = self.stmt(kw["init"]) if "init" in kw else None
        cond = self.expr(kw["cond"]) if "cond" in kw else None
        post = self.stmt(kw["post"]) if "post" in kw else None
        return S.ForStmt(body=body, init=init, cond=cond, post=post,
                         pos=self._pos(kw, init, cond, body))

    @_register(_STMT_DISPATCH, "range")
    def _load_range(self, s: list) -> S.RangeStmt:
        positional, kw = _split_args(s)
        self._one(positional, "range", 2)
        x = self.expr(positional[0])
        body = self._block(positional[1])
        key = self.expr(kw["key"]) if "key" in kw else None
        value = self.expr(kw["value"]) if "value" in kw else None
        return S.RangeStmt(x=x, body=body, key=key, value=value,
                           tok=_as_str(kw.get("tok", ":=")),
                           pos=self._pos(kw, key, x))

    @_register(_STMT_DISPATCH, "switch")
    def _load_switch(self, s: list) -> S.SwitchStmt:
        positional, kw = _split_args(s)
        clauses = tuple(self._load_case(c) for c in positional)
        tag = self.expr(kw["tag"]) if "tag" in kw else None
        init = self.stmt(kw["init"]) if "init" in kw else None
        return S.SwitchStmt(clauses=clauses, tag=tag, init=init,
                            pos=self._pos(kw, init, tag, *clauses))

    @_register(_STMT_DISPATCH, "case")
    def _load_case(self, s: list) -> S.CaseClause:
        if _head(s) != "case":
            raise UnknownFormError(f"expected (case ...) inside (switch ...), got {s!r}",
                                   S.Position(file=self.current_file))
        positional, kw = _split_args(s)
        exprs: List[S.Expr] = []
        body: List[S.Stmt] = []
        for item in positional:
            if _head(item) in _EXPR_DISPATCH:
                if body:
                    raise DumpError("case expressions must precede statements",
                                    self._pos(kw))
                exprs.append(self.expr(item))
            else:
                body.append(self.stmt(item))
        return S.CaseClause(exprs=tuple(exprs), body=tuple(body),
                            pos=self._pos(kw, *exprs, *body))

    @_register(_STMT_DISPATCH, "defer")
    def _load_defer(self, s: list) -> S.DeferStmt:
        positional, kw = _split_args(s)
        self._one(positional, "defer", 1)
        call = self.expr(positional[0])
        return S.DeferStmt(call=call, pos=self._pos(kw, call))

    @_register(_STMT_DISPATCH, "go")
    def _load_go(self, s: list) -> S.GoStmt:
        positional, kw = _split_args(s)
        self._one(positional, "go", 1)
        call = self.expr(positional[0])
        return S.GoStmt(call=call, pos=self._pos(kw, call))

    @_register(_STMT_DISPATCH, "branch")
    def _load_branch(self, s: list) -> S.BranchStmt:
        positional, kw = _split_args(s)
        if len(positional) not in (1, 2):
            raise DumpError("(branch tok [label]) expected", self._pos(kw))
        label = _as_str(positional[1]) if len(positional) == 2 else ""
        return S.BranchStmt(tok=_as_str(positional[0]), label=label, pos=self._pos(kw))


# ═══════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════

def loads_unit(text: str, *, filename: str = "<string>") -> S.Unit:
    """Parse a unit dump from a string.

    Parameters
    ----------
    text:
        The S-expression text of one ``(unit ...)`` form.
    filename:
        Used in error messages only; node positions carry the file names
        given by the ``(file ...)`` forms.

    Raises
    ------
    DumpError
        On malformed S-expressions or unknown forms.
    TypeSyntaxError
        When a ``:type`` string does not parse.
    """
    try:
        return DumpLoader(filename).load(text)
    except RwsepError:
        raise
    except (ValueError, TypeError, IndexError, KeyError, AssertionError) as e:
        raise DumpError(f"{filename}: malformed unit dump: {e}") from e


def load_unit(path: str) -> S.Unit:
    """Read and parse the unit dump at *path*."""
    try:
        with open(path, encoding="utf-8") as fh:
            text = fh.read()
    except OSError as e:
        raise DumpError(f"cannot read unit dump {path}: {e}") from e
    return loads_unit(text, filename=os.fspath(path))
