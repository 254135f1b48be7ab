"""
rwsep/diagnostics.py
════════════════════

Issues, the per-run issue set and the reporter.

An :class:`Issue` is one finding: a position, a human-readable message
and the :class:`Rule` that produced it.  The :class:`IssueSet` collected
during a run deduplicates on ``(position, message)`` and keeps
first-insertion order.  The :class:`IssueReporter` filters suppressed
rule ids and renders each issue as one line, either GCC style::

    reader/reader.go:20:2: error: direct assignment to field r.d.Value1 ... [fieldAssign]

or as a cppcheck-addon style JSON object per line.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, TextIO, Tuple

from rwsep.syntax import Position

_log = logging.getLogger(__name__)

__all__ = [
    "Rule",
    "Issue",
    "IssueSet",
    "IssueReporter",
    "OUTPUT_FORMATS",
]

ADDON_NAME = "rwsep"


class Rule(Enum):
    """Every rule the engine can report, with its issue class."""

    FIELD_ASSIGN = ("fieldAssign", "direct mutation")
    POINTER_ASSIGN = ("pointerAssign", "pointer-mediated assignment")
    INDEXED_WRITE = ("indexedWrite", "indexed mutation")
    FIELD_INC_DEC = ("fieldIncDec", "direct mutation")
    POINTER_INC_DEC = ("pointerIncDec", "pointer-mediated increment")
    BUILTIN_WRITE = ("builtinWrite", "builtin mutation")
    LOOP_BINDING = ("loopBinding", "protected loop variable")
    METHOD_CALL = ("methodCall", "method call on protected value")
    POINTER_ESCAPE = ("pointerEscape", "pointer escape")
    CONTAMINATED_CALL = ("contaminatedCall", "call to mutating function")

    def __init__(self, rule_id: str, issue_class: str) -> None:
        self.rule_id = rule_id
        self.issue_class = issue_class

    @property
    def sets_modifies(self) -> bool:
        """Whether an issue of this rule marks the enclosing function as mutating."""
        return self not in (Rule.LOOP_BINDING, Rule.METHOD_CALL, Rule.POINTER_ESCAPE)

    @classmethod
    def by_id(cls, rule_id: str) -> Rule:
        for rule in cls:
            if rule.rule_id == rule_id:
                return rule
        raise KeyError(rule_id)

    @classmethod
    def ids(cls) -> Tuple[str, ...]:
        return tuple(rule.rule_id for rule in cls)


@dataclass(frozen=True, slots=True)
class Issue:
    """A single finding."""

    position: Position
    message: str
    rule: Rule

    @property
    def rule_id(self) -> str:
        return self.rule.rule_id

    def to_json_dict(self) -> Dict[str, Any]:
        """Serialize to the cppcheck addon output format."""
        return {
            "file": self.position.file,
            "linenr": self.position.line,
            "column": self.position.column,
            "severity": "error",
            "message": self.message,
            "addon": ADDON_NAME,
            "errorId": self.rule_id,
            "extra": self.rule.issue_class,
        }

    def to_json_str(self) -> str:
        return json.dumps(self.to_json_dict())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: error: message [ruleId]."""
        return f"{self.position}: error: {self.message} [{self.rule_id}]"

    def __str__(self) -> str:
        return self.to_gcc_format()


class IssueSet:
    """Ordered, deduplicated collection of issues for one run."""

    def __init__(self) -> None:
        self._issues: Dict[Tuple[Position, str], Issue] = {}

    def add(self, issue: Issue) -> bool:
        """Insert *issue*; returns False if an equal one is already present."""
        key = (issue.position, issue.message)
        if key in self._issues:
            return False
        self._issues[key] = issue
        _log.debug("issue %s", issue)
        return True

    def report(self, position: Position, message: str, rule: Rule) -> bool:
        return self.add(Issue(position, message, rule))

    def drain(self) -> List[Issue]:
        """Return every issue in insertion order and empty the set."""
        issues = list(self._issues.values())
        self._issues.clear()
        return issues

    def __iter__(self) -> Iterator[Issue]:
        return iter(list(self._issues.values()))

    def __len__(self) -> int:
        return len(self._issues)


# ═════════════════════════════════════════════════════════════════════════
#  REPORTER
# ═════════════════════════════════════════════════════════════════════════

OUTPUT_FORMATS = ("text", "json")


class IssueReporter:
    """
    Writes issues to a stream, dropping suppressed rule ids.

    Usage
    -----
    >>> reporter = IssueReporter(sys.stdout, fmt="text", suppressed={"methodCall"})
    >>> reporter.emit_all(result.issues)
    >>> reporter.reported
    2
    """

    def __init__(self, stream: TextIO, fmt: str = "text",
                 suppressed: Iterable[str] = ()) -> None:
        if fmt not in OUTPUT_FORMATS:
            raise ValueError(f"unknown output format {fmt!r}")
        self.stream = stream
        self.fmt = fmt
        self.suppressed: Set[str] = set(suppressed)
        self.counts: Counter = Counter()
        self.suppressed_count = 0

    def is_suppressed(self, issue: Issue) -> bool:
        return issue.rule_id in self.suppressed

    def emit(self, issue: Issue) -> bool:
        if self.is_suppressed(issue):
            self.suppressed_count += 1
            return False
        line = issue.to_json_str() if self.fmt == "json" else issue.to_gcc_format()
        self.stream.write(line + "\n")
        self.counts[issue.rule_id] += 1
        return True

    def emit_all(self, issues: Iterable[Issue]) -> int:
        return sum(1 for issue in issues if self.emit(issue))

    @property
    def reported(self) -> int:
        return sum(self.counts.values())

    def summary(self) -> str:
        if not self.counts:
            text = "no issues"
        else:
            per_rule = ", ".join(f"{rule}={n}" for rule, n in sorted(self.counts.items()))
            text = f"{self.reported} issue(s): {per_rule}"
        if self.suppressed_count:
            text += f" ({self.suppressed_count} suppressed)"
        return text


def filter_suppressed(issues: Iterable[Issue],
                      suppressed: Optional[Iterable[str]]) -> List[Issue]:
    """Drop issues whose rule id is in *suppressed*."""
    dropped = set(suppressed or ())
    return [i for i in issues if i.rule_id not in dropped]
