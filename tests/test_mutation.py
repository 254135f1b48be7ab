# tests/test_mutation.py
"""
Tests for the intraprocedural mutation rules and alias bookkeeping.
"""

import pytest

from rwsep import syntax as S
from rwsep.aliases import AliasTracker
from rwsep.classifier import TypeClassifier
from rwsep.diagnostics import Rule
from rwsep.mutation import MutationDetector, TargetKind
from rwsep.types import parse_type
from tests.conftest import (
    ALIAS_CHAIN,
    ALIAS_CYCLE,
    BIG_T,
    INVALID_READER,
    PURE_READER,
    SCENARIO_A,
    SCENARIO_B,
    SCENARIO_C,
    addr,
    body_unit,
    deref,
    field_ref,
    ident,
    lit,
    positions,
    recv_d,
    rule_ids,
    run_source,
)


# ─────────────────────────────────────────────────────────────────────────
#  Direct field writes
# ─────────────────────────────────────────────────────────────────────────

class TestDirectWrites:

    def test_reads_only(self):
        assert run_source(SCENARIO_A) == []
        assert run_source(PURE_READER) == []

    def test_incdec_then_assign(self):
        issues = run_source(SCENARIO_B)
        assert rule_ids(issues) == ["fieldIncDec", "fieldAssign"]
        assert positions(issues) == [(12, 2), (13, 2)]
        assert issues[0].message == (
            "increment/decrement of field r.d.Value1 of protected type data.BigStruct")
        assert issues[1].message == (
            "direct assignment to field r.d.Value1 of protected type data.BigStruct")

    def test_invalid_reader_fixture(self):
        issues = run_source(INVALID_READER)
        assert rule_ids(issues) == ["fieldIncDec", "fieldIncDec",
                                    "fieldAssign", "fieldAssign", "fieldAssign"]
        assert positions(issues) == [(12, 2), (13, 2), (18, 2), (19, 2), (20, 2)]

    def test_parenthesised_target(self):
        issues = run_source(body_unit(f'(assign (paren {field_ref(2)}) "=" {lit(1)})'))
        assert rule_ids(issues) == ["fieldAssign"]
        assert positions(issues) == [(2, 2)]
        assert "r.d.Value1" in issues[0].message

    def test_compound_assignment(self):
        issues = run_source(body_unit(f'(assign {field_ref(2)} "*=" {lit(3)})'))
        assert rule_ids(issues) == ["fieldAssign"]

    def test_one_issue_per_protected_lhs(self):
        issues = run_source(body_unit(
            f'(assign {ident("a", "int", 2, 2)} {field_ref(2, 5)} '
            f'{field_ref(2, 17, "Value2", "string")} "=" '
            f'{lit(1)} {lit(2)} {lit("s", "STRING", "untyped string")})'))
        assert rule_ids(issues) == ["fieldAssign", "fieldAssign"]
        assert positions(issues) == [(2, 5), (2, 17)]

    def test_local_pointer_to_protected_struct(self):
        issues = run_source(body_unit(
            f'(assign {ident("p", BIG_T, 2, 2)} ":=" {recv_d(2, 7)}) '
            f'(assign (sel {ident("p", BIG_T, 3, 2)} Value1 :type "int") "=" {lit(1)})'))
        assert rule_ids(issues) == ["fieldAssign"]
        assert issues[0].message.startswith("direct assignment to field p.Value1")

    def test_promoted_field_of_embedded_pointer(self):
        embeds = "struct{*data.BigStruct}"
        issues = run_source(body_unit(
            f'(var x :type "{embeds}") '
            f'(assign (sel {ident("x", embeds, 3, 2)} Value1 :type "int") "=" {lit(1)})'))
        assert rule_ids(issues) == ["fieldAssign"]
        assert positions(issues) == [(3, 2)]
        assert issues[0].message == (
            "direct assignment to field x.Value1 of protected type data.BigStruct")

    def test_nested_value_field(self):
        inner = f'(sel {recv_d(2)} Inner :type "data.Inner")'
        issues = run_source(body_unit(
            f'(assign (sel {inner} X :type "int") "=" {lit(1)})'))
        assert rule_ids(issues) == ["fieldAssign"]
        assert issues[0].message == (
            "direct assignment to field r.d.Inner.X of protected type data.BigStruct")

    def test_write_through_pointer_valued_field_is_allowed(self):
        other = f'(sel {recv_d(2)} Next :type "*data.Other")'
        assert run_source(body_unit(
            f'(assign (sel {other} X :type "int") "=" {lit(1)})')) == []

    def test_unrelated_struct(self):
        assert run_source(body_unit(
            f'(assign (sel {ident("o", "*data.Other", 2, 2)} Value1 :type "int") '
            f'"=" {lit(1)})')) == []

    def test_unresolved_types_are_not_protected(self):
        assert run_source(body_unit(
            f'(assign (sel (sel {ident("r", None, 2, 2)} d) Value1) "=" {lit(1)})')) == []


# ─────────────────────────────────────────────────────────────────────────
#  Indexed writes
# ─────────────────────────────────────────────────────────────────────────

class TestIndexedWrites:

    def test_slice_element(self):
        issues = run_source(body_unit(
            f'(assign (index {field_ref(2, 2, "Arr", "[]int")} {lit(0)} :type "int") '
            f'"=" {lit(1)})'))
        assert rule_ids(issues) == ["indexedWrite"]
        assert issues[0].message == "indexed write r.d.Arr[0] into protected field r.d.Arr"
        assert positions(issues) == [(2, 2)]

    def test_map_entry_incdec(self):
        issues = run_source(body_unit(
            f'(incdec (index {field_ref(2, 2, "Map", "map[int]int")} {lit(7)} '
            f':type "int") "++")'))
        assert rule_ids(issues) == ["indexedWrite"]

    def test_nested_array_path(self):
        grid = field_ref(2, 2, "Grid", "[3][3]int")
        issues = run_source(body_unit(
            f'(assign (index (index {grid} {lit(1)} :type "[3]int") {lit(2)} :type "int") '
            f'"=" {lit(0)})'))
        assert rule_ids(issues) == ["indexedWrite"]
        assert "into protected field r.d.Grid" in issues[0].message

    def test_through_dereferenced_alias(self):
        issues = run_source(body_unit(
            f'(assign {ident("p", "*[]int", 2, 2)} ":=" '
            f'{addr(field_ref(2, 8, "Arr", "[]int"), "*[]int")}) '
            f'(assign (index (paren {deref("p", 3, 3, "*[]int", "[]int")}) {lit(0)} '
            f':type "int") "=" {lit(1)})'))
        assert rule_ids(issues) == ["indexedWrite"]
        assert issues[0].message == (
            "indexed write (*p)[0] into protected field r.d.Arr through p")

    def test_local_slice_is_not_protected(self):
        assert run_source(body_unit(
            f'(assign (index {ident("xs", "[]int", 2, 2)} {lit(0)} :type "int") '
            f'"=" {lit(1)})')) == []


# ─────────────────────────────────────────────────────────────────────────
#  Pointer-mediated writes
# ─────────────────────────────────────────────────────────────────────────

class TestPointerWrites:

    def test_scenario_c(self):
        issues = run_source(SCENARIO_C)
        assert rule_ids(issues) == ["pointerAssign"]
        assert positions(issues) == [(13, 2)]
        assert issues[0].message == (
            "pointer-mediated assignment to protected field r.d.Value2 through p")

    def test_alias_chain(self):
        issues = run_source(ALIAS_CHAIN)
        assert rule_ids(issues) == ["pointerAssign"]
        assert positions(issues) == [(15, 2)]
        assert issues[0].message.endswith("r.d.Value1 through a1")

    def test_alias_self_copy_of_local(self):
        assert run_source(ALIAS_CYCLE) == []

    def test_alias_self_copy_of_field(self):
        issues = run_source(body_unit(
            f'(assign {ident("a", "*int", 2, 2)} ":=" {addr(field_ref(2, 8))}) '
            f'(assign {ident("a", "*int", 3, 2)} "=" {ident("a", "*int", 3, 6)}) '
            f'(assign {deref("a", 4, 2)} "=" {lit(1)})'))
        assert rule_ids(issues) == ["pointerAssign"]

    def test_pointer_incdec(self):
        issues = run_source(body_unit(
            f'(assign {ident("p", "*int", 2, 2)} ":=" {addr(field_ref(2, 8))}) '
            f'(incdec {deref("p", 3, 2)} "--")'))
        assert rule_ids(issues) == ["pointerIncDec"]
        assert positions(issues) == [(3, 2)]
        assert issues[0].message == (
            "pointer-mediated increment/decrement of protected field r.d.Value1 through p")

    def test_var_declaration_alias(self):
        issues = run_source(body_unit(
            f'(var p :type "*int" {addr(field_ref(2, 11))}) '
            f'(assign {deref("p", 3, 2)} "=" {lit(1)})'))
        assert rule_ids(issues) == ["pointerAssign"]

    def test_rebinding_forgets_alias(self):
        assert run_source(body_unit(
            f'(var x :type "int") '
            f'(assign {ident("p", "*int", 2, 2)} ":=" {addr(field_ref(2, 8))}) '
            f'(assign {ident("p", "*int", 3, 2)} "=" {addr(ident("x", "int", 3, 7))}) '
            f'(assign {deref("p", 4, 2)} "=" {lit(1)})')) == []

    def test_selector_through_alias(self):
        inner = f'(sel {recv_d(2, 8)} Inner :type "data.Inner")'
        issues = run_source(body_unit(
            f'(assign {ident("p", "*data.Inner", 2, 2)} ":=" {addr(inner, "*data.Inner")}) '
            f'(assign (sel {ident("p", "*data.Inner", 3, 2)} X :type "int") "=" {lit(1)})'))
        assert rule_ids(issues) == ["pointerAssign"]
        assert issues[0].message == (
            "pointer-mediated assignment to protected field r.d.Inner through p")

    def test_dereferenced_address_of(self):
        issues = run_source(body_unit(
            f'(assign (star {addr(field_ref(2, 4))} :type "int" :at (2 2)) "=" {lit(3)})'))
        assert rule_ids(issues) == ["pointerAssign"]
        assert issues[0].message.endswith("through &r.d.Value1")

    def test_pointer_to_unrelated_variable(self):
        assert run_source(body_unit(
            f'(var x :type "int") '
            f'(assign {ident("p", "*int", 2, 2)} ":=" {addr(ident("x", "int", 2, 8))}) '
            f'(assign {deref("p", 3, 2)} "=" {lit(1)})')) == []

    def test_alias_inside_function_literal(self):
        body = (f'(assign {ident("p", "*int", 3, 3)} ":=" {addr(field_ref(3, 9))}) '
                f'(assign {deref("p", 4, 3)} "=" {lit(1)})')
        issues = run_source(body_unit(
            f'(assign {ident("f", "func()", 2, 2)} ":=" (funclit (params) (block {body})))'))
        assert rule_ids(issues) == ["pointerAssign"]
        assert positions(issues) == [(4, 3)]


# ─────────────────────────────────────────────────────────────────────────
#  Range, builtins, strict mode
# ─────────────────────────────────────────────────────────────────────────

class TestOtherRules:

    def test_range_binding_protected_value(self):
        issues = run_source(body_unit(
            f'(range {ident("items", "[]*data.BigStruct", 2, 20)} (block) '
            f':key {ident("_")} :value {ident("it", BIG_T, 2, 9)})'))
        assert rule_ids(issues) == ["loopBinding"]
        assert positions(issues) == [(2, 9)]
        assert issues[0].message == (
            "range loop variable it binds protected type data.BigStruct")

    def test_range_assigning_into_field(self):
        issues = run_source(body_unit(
            f'(range {ident("xs", "[]int", 2, 24)} (block) '
            f':key {field_ref(2, 6)} :tok "=")'))
        assert rule_ids(issues) == ["fieldAssign"]
        assert positions(issues) == [(2, 6)]

    def test_builtin_delete(self):
        call = (f'(call {ident("delete", "func(map[int]int, int)", 2, 2, obj="builtin")} '
                f'{field_ref(2, 9, "Map", "map[int]int")} {lit(1)})')
        issues = run_source(body_unit(f"(expr {call})"))
        assert rule_ids(issues) == ["builtinWrite"]
        assert issues[0].message == "builtin delete writes into protected field r.d.Map"
        assert positions(issues) == [(2, 2)]

    def test_builtin_copy_through_alias(self):
        issues = run_source(body_unit(
            f'(assign {ident("p", "*[]int", 2, 2)} ":=" '
            f'{addr(field_ref(2, 8, "Arr", "[]int"), "*[]int")}) '
            f'(expr (call {ident("copy", None, 3, 2, obj="builtin")} '
            f'{deref("p", 3, 7, "*[]int", "[]int")} {ident("src", "[]int", 3, 11)}))'))
        assert rule_ids(issues) == ["builtinWrite"]
        assert issues[0].message.endswith("r.d.Arr through p")

    def test_user_function_named_like_builtin(self):
        assert run_source(body_unit(
            f'(expr (call {ident("clear", None, 2, 2, obj="func")} '
            f'{field_ref(2, 8, "Map", "map[int]int")}))')) == []

    def test_method_call_needs_strict(self):
        src = body_unit(f'(expr (call (sel {recv_d(2)} Reset :type "func()")))')
        assert run_source(src) == []
        issues = run_source(src, strict=True)
        assert rule_ids(issues) == ["methodCall"]
        assert issues[0].message == "calling method Reset on protected type data.BigStruct"


# ─────────────────────────────────────────────────────────────────────────
#  Detector in isolation
# ─────────────────────────────────────────────────────────────────────────

class TestDetector:

    @pytest.fixture
    def detector(self):
        found = []
        det = MutationDetector(TypeClassifier("data", "BigStruct"), AliasTracker(),
                               lambda pos, msg, rule: found.append(rule),
                               "data.BigStruct")
        det.found = found
        return det

    def _field(self):
        r = S.Ident("r", typ=parse_type(BIG_T))
        return S.SelectorExpr(r, "Value1", typ=parse_type("int"))

    def test_classify_field(self, detector):
        target = detector.classify_target(self._field())
        assert target.kind is TargetKind.FIELD
        assert target.via == ""

    def test_classify_pointer_via_alias(self, detector):
        f = self._field()
        detector.aliases.record("p", f)
        target = detector.classify_target(S.StarExpr(S.Ident("p")))
        assert target.kind is TargetKind.POINTER
        assert target.field is f and target.via == "p"

    def test_classify_plain_identifier(self, detector):
        assert detector.classify_target(S.Ident("x")) is None

    def test_track_bindings_mismatched_arity_forgets(self, detector):
        detector.aliases.record("p", self._field())
        detector.track_bindings((S.Ident("p"), S.Ident("ok")),
                                (S.CallExpr(S.Ident("f")),))
        assert "p" not in detector.aliases

    def test_blank_identifier_is_never_bound(self, detector):
        detector.track_bindings((S.Ident("_"),), (S.UnaryExpr("&", self._field()),))
        assert "_" not in detector.aliases

    def test_compound_assignment_keeps_alias(self, detector):
        f = self._field()
        detector.aliases.record("p", f)
        detector.track_assign(S.AssignStmt((S.Ident("p"),), "+=", (S.Ident("q"),)))
        assert detector.aliases.resolve("p") is f

    def test_check_incdec_reports_rule(self, detector):
        detector.check_incdec(S.IncDecStmt(self._field(), "++"))
        assert detector.found == [Rule.FIELD_INC_DEC]
