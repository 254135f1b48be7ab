"""
rwsep/types.py
══════════════

Resolved-type descriptors handed to the engine by the front end.

Every expression in a unit dump may carry its resolved type as a Go
type string, exactly as ``go/types`` prints it (``*data.BigStruct``,
``map[int]int``, ``struct{d *data.BigStruct}``, ``func(p *int)``).  This
module parses those strings with a Parsimonious PEG grammar into a small
type term algebra.

Term algebra
────────────
  - BASIC:      name = "int", "string", "untyped int", ...
  - NAMED:      pkg_path + name; pkg_name is the last path segment
  - POINTER:    elem
  - SLICE:      elem
  - ARRAY:      elem, length
  - MAP:        key, elem
  - CHAN:       elem
  - STRUCT:     fields (ordered)
  - FUNC:       params, results
  - INTERFACE:  (opaque)

``GoType`` objects compare by identity: the type graph may be cyclic
when built programmatically, and the classifier relies on identity for
its visited set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Set

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from rwsep.errors import TypeSyntaxError

_log = logging.getLogger(__name__)

__all__ = [
    "TypeKind",
    "StructField",
    "GoType",
    "BASIC_TYPE_NAMES",
    "TYPE_GRAMMAR",
    "TYPE_GRAMMAR_RULES",
    "parse_type",
    "TypeCache",
    "type_to_str",
]


class TypeKind(Enum):
    """Discriminant for the type term algebra."""
    BASIC = auto()
    NAMED = auto()
    POINTER = auto()
    SLICE = auto()
    ARRAY = auto()
    MAP = auto()
    CHAN = auto()
    STRUCT = auto()
    FUNC = auto()
    INTERFACE = auto()


BASIC_TYPE_NAMES = frozenset({
    "bool", "string", "byte", "rune", "uintptr",
    "int", "int8", "int16", "int32", "int64",
    "uint", "uint8", "uint16", "uint32", "uint64",
    "float32", "float64", "complex64", "complex128",
    "unsafe.Pointer", "invalid type",
})


@dataclass(eq=False)
class StructField:
    """One field of an anonymous struct type."""
    name: str
    typ: GoType
    embedded: bool = False


@dataclass(eq=False)
class GoType:
    """
    A node in the type term algebra.

    Only the attributes relevant to ``kind`` are populated; see the
    module docstring for the layout of each kind.
    """

    kind: TypeKind
    name: str = ""                                  # BASIC / NAMED
    pkg_path: str = ""                              # NAMED
    elem: Optional[GoType] = None                   # POINTER/SLICE/ARRAY/MAP/CHAN
    key: Optional[GoType] = None                    # MAP
    length: int = -1                                # ARRAY
    fields: List[StructField] = field(default_factory=list)   # STRUCT
    params: List[GoType] = field(default_factory=list)        # FUNC
    results: List[GoType] = field(default_factory=list)       # FUNC

    # ── Factory methods ──────────────────────────────────────────────

    @classmethod
    def basic(cls, name: str) -> GoType:
        return cls(kind=TypeKind.BASIC, name=name)

    @classmethod
    def named(cls, pkg_path: str, name: str) -> GoType:
        return cls(kind=TypeKind.NAMED, pkg_path=pkg_path, name=name)

    @classmethod
    def pointer(cls, elem: GoType) -> GoType:
        return cls(kind=TypeKind.POINTER, elem=elem)

    @classmethod
    def slice(cls, elem: GoType) -> GoType:
        return cls(kind=TypeKind.SLICE, elem=elem)

    @classmethod
    def array(cls, elem: GoType, length: int) -> GoType:
        return cls(kind=TypeKind.ARRAY, elem=elem, length=length)

    @classmethod
    def map(cls, key: GoType, elem: GoType) -> GoType:
        return cls(kind=TypeKind.MAP, key=key, elem=elem)

    @classmethod
    def chan(cls, elem: GoType) -> GoType:
        return cls(kind=TypeKind.CHAN, elem=elem)

    @classmethod
    def struct(cls, fields: Optional[List[StructField]] = None) -> GoType:
        return cls(kind=TypeKind.STRUCT, fields=list(fields or []))

    @classmethod
    def func(cls, params: Optional[List[GoType]] = None,
             results: Optional[List[GoType]] = None) -> GoType:
        return cls(kind=TypeKind.FUNC, params=list(params or []),
                   results=list(results or []))

    @classmethod
    def interface(cls) -> GoType:
        return cls(kind=TypeKind.INTERFACE)

    @classmethod
    def from_name(cls, text: str) -> GoType:
        """Build a BASIC or NAMED type from a (possibly qualified) name.

        ``example.com/app/data.BigStruct`` splits at the last dot into
        package path ``example.com/app/data`` and name ``BigStruct``.
        Unqualified names outside the predeclared set (``error``,
        ``any``) become NAMED types of the universe scope.
        """
        if text in BASIC_TYPE_NAMES:
            return cls.basic(text)
        path, dot, name = text.rpartition(".")
        if not dot:
            return cls.named("", text)
        return cls.named(path, name)

    # ── Queries ──────────────────────────────────────────────────────

    @property
    def pkg_name(self) -> str:
        """Package name of a NAMED type: the last segment of its path."""
        return self.pkg_path.rsplit("/", 1)[-1]

    @property
    def qualified_name(self) -> str:
        if self.kind is TypeKind.NAMED and self.pkg_path:
            return f"{self.pkg_name}.{self.name}"
        return self.name

    @property
    def is_pointer(self) -> bool:
        return self.kind is TypeKind.POINTER

    def strip_pointers(self) -> GoType:
        """Follow POINTER links to the first non-pointer type."""
        t = self
        seen: Set[int] = set()
        while t.kind is TypeKind.POINTER and t.elem is not None and id(t) not in seen:
            seen.add(id(t))
            t = t.elem
        return t

    def __str__(self) -> str:
        return type_to_str(self)

    def __repr__(self) -> str:
        return f"GoType({type_to_str(self)})"


def type_to_str(t: Optional[GoType], depth: int = 0) -> str:
    """Render a GoType back to Go syntax."""
    if t is None:
        return "<nil>"
    if depth > 20:
        return "..."
    k = t.kind
    if k is TypeKind.BASIC:
        return t.name
    if k is TypeKind.NAMED:
        return f"{t.pkg_path}.{t.name}" if t.pkg_path else t.name
    if k is TypeKind.POINTER:
        return "*" + type_to_str(t.elem, depth + 1)
    if k is TypeKind.SLICE:
        return "[]" + type_to_str(t.elem, depth + 1)
    if k is TypeKind.ARRAY:
        return f"[{t.length}]" + type_to_str(t.elem, depth + 1)
    if k is TypeKind.MAP:
        return f"map[{type_to_str(t.key, depth + 1)}]{type_to_str(t.elem, depth + 1)}"
    if k is TypeKind.CHAN:
        return "chan " + type_to_str(t.elem, depth + 1)
    if k is TypeKind.STRUCT:
        parts = []
        for f in t.fields:
            rendered = type_to_str(f.typ, depth + 1)
            parts.append(rendered if f.embedded else f"{f.name} {rendered}")
        return "struct{" + "; ".join(parts) + "}"
    if k is TypeKind.FUNC:
        params = ", ".join(type_to_str(p, depth + 1) for p in t.params)
        if not t.results:
            return f"func({params})"
        if len(t.results) == 1:
            return f"func({params}) {type_to_str(t.results[0], depth + 1)}"
        results = ", ".join(type_to_str(r, depth + 1) for r in t.results)
        return f"func({params}) ({results})"
    return "interface{}"


# ═════════════════════════════════════════════════════════════════════════
#  TYPE-STRING GRAMMAR (Parsimonious PEG)
# ═════════════════════════════════════════════════════════════════════════

TYPE_GRAMMAR_RULES = r'''
    type            = pointer / slice / array / map / chan / struct
                    / func / interface / untyped / named

    pointer         = "*" _ type
    slice           = "[" _ "]" _ type
    array           = "[" _ int _ "]" _ type
    map             = "map" _ "[" _ type _ "]" _ type
    chan            = chan_kw __ type
    chan_kw         = "chan<-" / "<-chan" / "chan"

    struct          = "struct" _ "{" _ field_list? _ "}"
    field_list      = field (_ ";" _ field)* (_ ";")?
    field           = named_field / embedded_field
    named_field     = ident __ type
    embedded_field  = type _

    func            = "func" _ "(" _ param_list? _ ")" _ results?
    results         = result_tuple / type
    result_tuple    = "(" _ param_list? _ ")"
    param_list      = param (_ "," _ param)*
    param           = named_param / variadic / type
    named_param     = ident __ (variadic / type)
    variadic        = "..." _ type

    interface       = "interface" _ "{" ~"[^}]*" "}"
    untyped         = "untyped" __ ident
    named           = ~"[A-Za-z_][A-Za-z0-9_./-]*"

    ident           = ~"[A-Za-z_][A-Za-z0-9_]*"
    int             = ~"[0-9]+"
    _               = ~r"\s*"
    __              = ~r"\s+"
'''

TYPE_GRAMMAR = Grammar(TYPE_GRAMMAR_RULES)


def _optional(value) -> list:
    """Unwrap the visited result of an optional ``rule?`` match."""
    if isinstance(value, list) and value:
        return value[0]
    return []


def _repeated(value, index: int) -> list:
    """Collect element *index* of every match of a ``(...)*`` group."""
    if isinstance(value, list):
        return [item[index] for item in value]
    return []


class _TypeBuilder(NodeVisitor):
    """Transforms the Parsimonious parse tree into GoType terms."""

    def generic_visit(self, node: Node, visited_children: list):
        return visited_children or node

    def visit_type(self, node, visited_children):
        return visited_children[0]

    def visit_pointer(self, node, visited_children):
        _, _, elem = visited_children
        return GoType.pointer(elem)

    def visit_slice(self, node, visited_children):
        *_, elem = visited_children
        return GoType.slice(elem)

    def visit_array(self, node, visited_children):
        _, _, length, _, _, _, elem = visited_children
        return GoType.array(elem, length)

    def visit_map(self, node, visited_children):
        _, _, _, _, key, _, _, _, elem = visited_children
        return GoType.map(key, elem)

    def visit_chan(self, node, visited_children):
        _, _, elem = visited_children
        return GoType.chan(elem)

    def visit_struct(self, node, visited_children):
        _, _, _, _, fields, _, _ = visited_children
        return GoType.struct(_optional(fields))

    def visit_field_list(self, node, visited_children):
        first, rest, _ = visited_children
        return [first] + _repeated(rest, 3)

    def visit_field(self, node, visited_children):
        return visited_children[0]

    def visit_named_field(self, node, visited_children):
        name, _, typ = visited_children
        return StructField(name=name, typ=typ)

    def visit_embedded_field(self, node, visited_children):
        typ, _ = visited_children
        return StructField(name=typ.strip_pointers().name, typ=typ, embedded=True)

    def visit_func(self, node, visited_children):
        _, _, _, _, params, _, _, _, results = visited_children
        return GoType.func(_optional(params), _optional(results))

    def visit_results(self, node, visited_children):
        result = visited_children[0]
        if isinstance(result, GoType):
            return [result]
        return result

    def visit_result_tuple(self, node, visited_children):
        _, _, params, _, _ = visited_children
        return _optional(params)

    def visit_param_list(self, node, visited_children):
        first, rest = visited_children
        return [first] + _repeated(rest, 3)

    def visit_param(self, node, visited_children):
        return visited_children[0]

    def visit_named_param(self, node, visited_children):
        _, _, (typ,) = visited_children
        return typ

    def visit_variadic(self, node, visited_children):
        _, _, elem = visited_children
        return GoType.slice(elem)

    def visit_interface(self, node, visited_children):
        return GoType.interface()

    def visit_untyped(self, node, visited_children):
        _, _, name = visited_children
        return GoType.basic(f"untyped {name}")

    def visit_named(self, node, visited_children):
        return GoType.from_name(node.text)

    def visit_ident(self, node, visited_children):
        return node.text

    def visit_int(self, node, visited_children):
        return int(node.text)


def parse_type(text: str) -> GoType:
    """Parse a Go type string into a :class:`GoType`.

    Raises
    ------
    TypeSyntaxError
        If *text* does not match the type grammar.
    """
    source = text.strip()
    if not source:
        raise TypeSyntaxError(text, "empty type string")
    try:
        tree = TYPE_GRAMMAR.parse(source)
    except ParseError as exc:
        raise TypeSyntaxError(text, str(exc)) from exc
    try:
        return _TypeBuilder().visit(tree)
    except VisitationError as exc:
        raise TypeSyntaxError(text, str(exc)) from exc


class TypeCache:
    """Parses each distinct type string once per dump.

    Named types parsed through the same cache are shared objects, so
    two mentions of ``*data.BigStruct`` point at one NAMED node.
    """

    def __init__(self) -> None:
        self._by_text: Dict[str, GoType] = {}
        self._named: Dict[str, GoType] = {}

    def get(self, text: str) -> GoType:
        cached = self._by_text.get(text)
        if cached is not None:
            return cached
        typ = self._intern(parse_type(text), set())
        self._by_text[text] = typ
        _log.debug("parsed type %r -> %s", text, typ)
        return typ

    def _intern(self, t: GoType, seen: Set[int]) -> GoType:
        if id(t) in seen:
            return t
        seen.add(id(t))
        if t.kind is TypeKind.NAMED:
            return self._named.setdefault(type_to_str(t), t)
        if t.elem is not None:
            t.elem = self._intern(t.elem, seen)
        if t.key is not None:
            t.key = self._intern(t.key, seen)
        for f in t.fields:
            f.typ = self._intern(f.typ, seen)
        t.params = [self._intern(p, seen) for p in t.params]
        t.results = [self._intern(r, seen) for r in t.results]
        return t

    def __len__(self) -> int:
        return len(self._by_text)
