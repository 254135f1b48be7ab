"""
rwsep — read/write separation checker
=====================================

Static analysis that keeps a *reader* unit from mutating a *protected*
type declared in a *data* unit: directly, through local pointer aliases,
or through helper functions that receive a pointer to protected data.

Core modules
------------
types
    Resolved Go type descriptors and the type-string grammar.
syntax
    The typed syntax tree the engine consumes.
dump
    Loader for S-expression unit dumps produced by the front end.
classifier
    Is a type (or does it structurally contain) the protected type?
aliases
    Per-function alias chains of pointers to protected fields.
mutation
    The mutation rules.
callgraph
    Call graph, parameter taint and the contamination closure.
analyzer
    The driver tying it all together.
diagnostics
    Issues and the reporter.

Quick start
-----------
>>> from rwsep import RWSepAnalyzer, ProtectedTypeConfig, load_unit
>>> analyzer = RWSepAnalyzer(ProtectedTypeConfig(reader_unit="reader"))
>>> for issue in analyzer.run(load_unit("reader.sexp")):
...     print(issue)
"""

from __future__ import annotations

import logging

__version__ = "0.3.0"

from rwsep.analyzer import AnalysisResult, BatchResult, RWSepAnalyzer
from rwsep.config import ProtectedTypeConfig, load_config_file, resolve_config
from rwsep.diagnostics import Issue, IssueReporter, Rule
from rwsep.dump import load_unit, loads_unit
from rwsep.errors import (
    ConfigError,
    DumpError,
    InputError,
    RwsepError,
    TypeSyntaxError,
    UnsupportedNodeError,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "AnalysisResult",
    "BatchResult",
    "RWSepAnalyzer",
    "ProtectedTypeConfig",
    "load_config_file",
    "resolve_config",
    "Issue",
    "IssueReporter",
    "Rule",
    "load_unit",
    "loads_unit",
    "ConfigError",
    "DumpError",
    "InputError",
    "RwsepError",
    "TypeSyntaxError",
    "UnsupportedNodeError",
]
