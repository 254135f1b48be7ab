# rwsep/errors.py
"""
Exception hierarchy for the rwsep analyzer.

Hierarchy
─────────
┌──────────────────────────────────────────────────────────────────┐
│  RwsepError (base)                                               │
│  ├── InputError            - the unit cannot be analysed         │
│  │   ├── DumpError         - malformed unit dump                 │
│  │   ├── TypeSyntaxError   - unparseable resolved-type string    │
│  │   └── UnsupportedNodeError - node outside the closed set     │
│  ├── ConfigError           - invalid protected-type settings     │
│  └── InternalError         - analyzer bugs (should never happen) │
└──────────────────────────────────────────────────────────────────┘

Input errors are fatal for one unit only: the batch entry points in
:mod:`rwsep.analyzer` log them and carry on with the remaining units.
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from rwsep.syntax import Position


@unique
class ErrorCode(Enum):
    """Stable identifiers for every error class, ``RWS-XXXX``.

    Ranges:
      - 1000-1999: input (dump / type / node) errors
      - 2000-2999: configuration errors
      - 9000-9999: internal errors
    """

    MALFORMED_DUMP = "RWS-1001"
    UNKNOWN_FORM = "RWS-1002"
    BAD_TYPE_STRING = "RWS-1101"
    UNSUPPORTED_NODE = "RWS-1201"
    BAD_CONFIG = "RWS-2001"
    INTERNAL = "RWS-9001"


class RwsepError(Exception):
    """Base class for all errors raised by rwsep."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, position: Optional[Position] = None) -> None:
        super().__init__(message)
        self.message = message
        self.position = position

    def __str__(self) -> str:
        if self.position is not None and self.position.line:
            return f"{self.position}: {self.message} [{self.code.value}]"
        return f"{self.message} [{self.code.value}]"


class InputError(RwsepError):
    """The front end handed us something we cannot analyse."""

    code = ErrorCode.MALFORMED_DUMP


class DumpError(InputError):
    """A unit dump is not a well-formed S-expression tree."""

    code = ErrorCode.MALFORMED_DUMP


class UnknownFormError(DumpError):
    """A ``(tag ...)`` form whose head symbol is not part of the dump format."""

    code = ErrorCode.UNKNOWN_FORM


class TypeSyntaxError(InputError):
    """A resolved-type string does not match the type grammar."""

    code = ErrorCode.BAD_TYPE_STRING

    def __init__(self, text: str, detail: str = "", position: Optional[Position] = None) -> None:
        message = f"cannot parse type {text!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, position)
        self.text = text
        self.detail = detail


class UnsupportedNodeError(InputError):
    """A syntax node that is not one of the known variants reached the engine."""

    code = ErrorCode.UNSUPPORTED_NODE

    def __init__(self, node: object) -> None:
        super().__init__(f"unsupported syntax node {type(node).__name__}",
                         getattr(node, "pos", None))
        self.node = node


class ConfigError(RwsepError):
    """Invalid analyzer configuration (missing names, bad config file, ...)."""

    code = ErrorCode.BAD_CONFIG


class InternalError(RwsepError):
    """Analyzer invariant violated."""

    code = ErrorCode.INTERNAL
