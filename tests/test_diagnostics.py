# tests/test_diagnostics.py
"""
Tests for rules, issues, the issue set and the reporter.
"""

import io
import json

import pytest

from rwsep.diagnostics import Issue, IssueReporter, IssueSet, Rule, filter_suppressed
from rwsep.syntax import Position

POS = Position("reader/reader.go", 20, 2)


def _issue(rule=Rule.FIELD_ASSIGN, line=20, message="direct assignment"):
    return Issue(Position("reader/reader.go", line, 2), message, rule)


class TestRule:

    def test_ids_are_unique(self):
        assert len(set(Rule.ids())) == len(Rule)

    def test_by_id(self):
        assert Rule.by_id("pointerEscape") is Rule.POINTER_ESCAPE
        with pytest.raises(KeyError):
            Rule.by_id("noSuchRule")

    @pytest.mark.parametrize("rule", [Rule.LOOP_BINDING, Rule.METHOD_CALL,
                                      Rule.POINTER_ESCAPE])
    def test_advisory_rules_do_not_mark_modifies(self, rule):
        assert not rule.sets_modifies

    def test_write_rules_mark_modifies(self):
        assert Rule.POINTER_ASSIGN.sets_modifies
        assert Rule.CONTAMINATED_CALL.sets_modifies

    def test_issue_classes(self):
        assert Rule.FIELD_ASSIGN.issue_class == "direct mutation"
        assert Rule.POINTER_ASSIGN.issue_class == "pointer-mediated assignment"


class TestIssue:

    def test_gcc_format(self):
        issue = Issue(POS, "direct assignment to field r.d.Value1", Rule.FIELD_ASSIGN)
        assert issue.to_gcc_format() == (
            "reader/reader.go:20:2: error: direct assignment to field r.d.Value1 "
            "[fieldAssign]")
        assert str(issue) == issue.to_gcc_format()

    def test_json(self):
        data = json.loads(Issue(POS, "msg", Rule.POINTER_ESCAPE).to_json_str())
        assert data == {
            "file": "reader/reader.go",
            "linenr": 20,
            "column": 2,
            "severity": "error",
            "message": "msg",
            "addon": "rwsep",
            "errorId": "pointerEscape",
            "extra": "pointer escape",
        }

    def test_value_equality(self):
        assert _issue() == _issue()
        assert len({_issue(), _issue()}) == 1


class TestIssueSet:

    def test_dedup_on_position_and_message(self):
        s = IssueSet()
        assert s.report(POS, "m", Rule.FIELD_ASSIGN)
        assert not s.report(POS, "m", Rule.FIELD_INC_DEC)
        assert s.report(POS, "other", Rule.FIELD_ASSIGN)
        assert len(s) == 2

    def test_insertion_order_and_drain(self):
        s = IssueSet()
        s.add(_issue(line=30))
        s.add(_issue(line=10))
        assert [i.position.line for i in s] == [30, 10]
        drained = s.drain()
        assert [i.position.line for i in drained] == [30, 10]
        assert len(s) == 0

    def test_report_deduplicates_on_position_and_message(self):
        s = IssueSet()
        assert s.report(POS, "m", Rule.POINTER_ESCAPE)
        assert not s.report(POS, "m", Rule.CONTAMINATED_CALL)
        assert s.report(POS, "other", Rule.CONTAMINATED_CALL)
        assert [i.rule for i in s] == [Rule.POINTER_ESCAPE, Rule.CONTAMINATED_CALL]


class TestReporter:

    def test_text_output(self):
        out = io.StringIO()
        reporter = IssueReporter(out)
        assert reporter.emit_all([_issue(line=1), _issue(line=2)]) == 2
        assert out.getvalue().splitlines() == [
            "reader/reader.go:1:2: error: direct assignment [fieldAssign]",
            "reader/reader.go:2:2: error: direct assignment [fieldAssign]",
        ]
        assert reporter.reported == 2

    def test_json_output(self):
        out = io.StringIO()
        IssueReporter(out, fmt="json").emit(_issue(Rule.LOOP_BINDING))
        assert json.loads(out.getvalue())["errorId"] == "loopBinding"

    def test_suppression(self):
        out = io.StringIO()
        reporter = IssueReporter(out, suppressed={"methodCall"})
        reporter.emit_all([_issue(Rule.METHOD_CALL), _issue(Rule.FIELD_ASSIGN, line=3)])
        assert reporter.reported == 1
        assert reporter.suppressed_count == 1
        assert "methodCall" not in out.getvalue()

    def test_summary(self):
        reporter = IssueReporter(io.StringIO(), suppressed={"pointerEscape"})
        assert reporter.summary() == "no issues"
        reporter.emit_all([_issue(Rule.FIELD_ASSIGN), _issue(Rule.FIELD_INC_DEC, line=4),
                           _issue(Rule.FIELD_ASSIGN, line=5), _issue(Rule.POINTER_ESCAPE)])
        assert reporter.summary() == (
            "3 issue(s): fieldAssign=2, fieldIncDec=1 (1 suppressed)")

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            IssueReporter(io.StringIO(), fmt="xml")


def test_filter_suppressed():
    issues = [_issue(Rule.FIELD_ASSIGN), _issue(Rule.METHOD_CALL, line=9)]
    assert filter_suppressed(issues, {"methodCall"}) == issues[:1]
    assert filter_suppressed(issues, None) == issues
