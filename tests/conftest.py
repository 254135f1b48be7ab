# tests/conftest.py
"""
Shared dump sources and builders for the rwsep test suite.

Dumps are written in the S-expression format read by :mod:`rwsep.dump`.
The builders below keep positions explicit: every ``r`` receiver
identifier carries its own ``:at``, and selectors, calls and statements
without ``:at`` inherit the position of their first child.
"""

from pathlib import Path

import pytest

from rwsep.analyzer import RWSepAnalyzer
from rwsep.config import ProtectedTypeConfig
from rwsep.dump import loads_unit

DATA_DIR = Path(__file__).parent / "data"

READER_FILE = "reader/reader.go"
READER_T = "*reader.Reader"
BIG_T = "*data.BigStruct"


# ─────────────────────────────────────────────────────────────────────────
#  Builders
# ─────────────────────────────────────────────────────────────────────────

def ident(name, typ=None, line=0, col=0, obj="var", pkg=None):
    parts = [f"(ident {name}"]
    if typ:
        parts.append(f':type "{typ}"')
    if obj:
        parts.append(f":obj {obj}")
    if pkg:
        parts.append(f':pkg "{pkg}"')
    if line:
        parts.append(f":at ({line} {col})")
    return " ".join(parts) + ")"


def recv_d(line, col=2, recv="r"):
    """``r.d`` with ``r`` at (line, col)."""
    return f'(sel {ident(recv, READER_T, line, col)} d :type "{BIG_T}")'


def field_ref(line, col=2, field="Value1", typ="int", recv="r"):
    """``r.d.<field>`` with ``r`` at (line, col)."""
    return f'(sel {recv_d(line, col, recv)} {field} :type "{typ}")'


def addr(expr, typ="*int"):
    return f'(unary "&" {expr} :type "{typ}")'


def deref(name, line, col, typ="*int", elem="int"):
    """``*name`` positioned at (line, col), the identifier one column later."""
    return f'(star {ident(name, typ, line, col + 1)} :type "{elem}" :at ({line} {col}))'


def lit(value, kind="INT", typ="untyped int"):
    return f'(lit {kind} "{value}" :type "{typ}")'


def method(name, body, line=1, params="(params)", recv="r"):
    return (f'(func {name} :recv ({recv} "{READER_T}") :at ({line} 1) '
            f"{params} (block {body}))")


def func(name, body, line=1, params="(params)"):
    return f"(func {name} :at ({line} 1) {params} (block {body}))"


def unit(*funcs, name="reader", path="example.com/app/reader", file=READER_FILE):
    return (f'(unit {name} :path "{path}" (file "{file}" :package {name} '
            f'{" ".join(funcs)}))')


# ─────────────────────────────────────────────────────────────────────────
#  Scenario sources
# ─────────────────────────────────────────────────────────────────────────

# ReadInt returns r.d.Value1 unmodified.
SCENARIO_A = unit(
    method("ReadInt", f"(return {field_ref(12, 9)})", line=11),
)

# r.d.Value1++ then r.d.Value1 = 2.
SCENARIO_B = unit(
    method("Mutate",
           f'(incdec {field_ref(12, 2)} "++") '
           f'(assign {field_ref(13, 2)} "=" {lit(2)})',
           line=11),
)

# p := &r.d.Value2; *p = "x"
SCENARIO_C = unit(
    method("Sneaky",
           f'(assign {ident("p", "*string", 12, 2)} ":=" '
           f'{addr(field_ref(12, 8, "Value2", "string"), "*string")}) '
           f'(assign {deref("p", 13, 2, "*string", "string")} "=" '
           f'{lit("x", "STRING", "untyped string")})',
           line=11),
)

# r.helper(&r.d.Value1) where helper(p *int) { *p = 0 }
SCENARIO_D = unit(
    method("CallsHelper",
           f'(expr (call (sel {ident("r", READER_T, 12, 2)} helper :type "func(p *int)") '
           f"{addr(field_ref(12, 11))}))",
           line=11),
    method("helper",
           f'(assign {deref("p", 16, 2)} "=" {lit(0)})',
           line=15, params='(params (p "*int" :at (15 25)))'),
)

# H -> G -> F, only F writes, through the pointer it was handed.
CHAIN_POINTER = unit(
    func("F", f'(assign {deref("p", 3, 2)} "=" {lit(0)})',
         line=2, params='(params (p "*int"))'),
    func("G", f'(expr (call {ident("F", "func(p *int)", 7, 2, obj="func")} '
              f'{ident("p", "*int", 7, 4)}))',
         line=6, params='(params (p "*int"))'),
    method("H", f'(expr (call {ident("G", "func(p *int)", 11, 2, obj="func")} '
                f"{addr(field_ref(11, 5))}))",
           line=10),
)

# H -> G -> F where F writes a field of the *data.BigStruct it receives.
CHAIN_STRUCT = unit(
    func("F", f'(assign (sel {ident("d", BIG_T, 3, 2)} Value1 :type "int") "=" {lit(1)})',
         line=2, params=f'(params (d "{BIG_T}"))'),
    func("G", f'(expr (call {ident("F", None, 7, 2, obj="func")} '
              f'{ident("d", BIG_T, 7, 4)}))',
         line=6, params=f'(params (d "{BIG_T}"))'),
    method("H", f'(expr (call {ident("G", None, 11, 2, obj="func")} {recv_d(11, 4)}))',
           line=10),
)

# a3 := &r.d.Value1; a2 := a3; a1 := a2; *a1 = 5
ALIAS_CHAIN = unit(
    method("Chain",
           f'(assign {ident("a3", "*int", 12, 2)} ":=" {addr(field_ref(12, 9))}) '
           f'(assign {ident("a2", "*int", 13, 2)} ":=" {ident("a3", "*int", 13, 8)}) '
           f'(assign {ident("a1", "*int", 14, 2)} ":=" {ident("a2", "*int", 14, 8)}) '
           f'(assign {deref("a1", 15, 2)} "=" {lit(5)})',
           line=11),
)

# a := &x; a = a; *a = 1
ALIAS_CYCLE = unit(
    method("Cycle",
           f'(var x :type "int") '
           f'(assign {ident("a", "*int", 13, 2)} ":=" {addr(ident("x", "int", 13, 8))}) '
           f'(assign {ident("a", "*int", 14, 2)} "=" {ident("a", "*int", 14, 6)}) '
           f'(assign {deref("a", 15, 2)} "=" {lit(1)})',
           line=11),
)

# Reads in every statement form, no writes.
PURE_READER = unit(
    method("Sum",
           f'(assign {ident("x", "int", 12, 2)} ":=" '
           f'(binary "+" {field_ref(12, 7)} {lit(1)} :type "int")) '
           f'(if (binary "==" {field_ref(13, 5, "Value2", "string")} '
           f'{lit("", "STRING", "untyped string")} :type "untyped bool") '
           f'(block (return {ident("x", "int", 14, 10)}))) '
           f'(range {field_ref(16, 20, "Arr", "[]int")} '
           f'(block (assign {ident("x", "int", 17, 3)} "+=" {ident("v", "int", 17, 8)})) '
           f':key {ident("_")} :value {ident("v", "int", 16, 9)}) '
           f'(expr (call (sel {ident("fmt", None, 19, 2, obj="pkg")} Println) '
           f"{field_ref(19, 14)})) "
           f'(return (index {field_ref(20, 9, "Map", "map[int]int")} {lit(0)} :type "int"))',
           line=11, params="(params)"),
    method("ReadString", f'(return {field_ref(24, 9, "Value2", "string")})', line=23),
)

# The original "invalidreader" fixture: 2 inc/dec and 3 assignment issues.
INVALID_READER = unit(
    method("IncDecInt",
           f'(incdec {field_ref(12, 2)} "++") '
           f'(incdec {field_ref(13, 2)} "--") '
           f"(return {field_ref(14, 9)})",
           line=11),
    method("AssignmentString",
           f'(assign {field_ref(18, 2)} "+=" {lit(1)}) '
           f'(assign {field_ref(19, 2)} "=" {lit(2)}) '
           f'(assign {field_ref(20, 2, "Value2", "string")} "=" '
           f'{lit("input", "STRING", "untyped string")}) '
           f'(return {field_ref(21, 9, "Value2", "string")})',
           line=17),
)


# ─────────────────────────────────────────────────────────────────────────
#  Helpers and fixtures
# ─────────────────────────────────────────────────────────────────────────

def analyze_source(source, **config):
    """Load *source* and run a fresh analyzer over it."""
    analyzer = RWSepAnalyzer(ProtectedTypeConfig(**config))
    return analyzer.analyze(loads_unit(source))


def run_source(source, **config):
    return analyze_source(source, **config).issues


def rule_ids(issues):
    return [i.rule_id for i in issues]


def positions(issues):
    return [(i.position.line, i.position.column) for i in issues]


def body_unit(body, params="(params)"):
    """A reader unit with one method ``M`` (declared on line 1) holding *body*."""
    return unit(method("M", body, line=1, params=params))


@pytest.fixture
def analyzer():
    return RWSepAnalyzer(ProtectedTypeConfig())


@pytest.fixture
def data_dir():
    return DATA_DIR
