#!/usr/bin/env python3
"""rwsep/main.py — command-line entry point.

Usage examples
--------------
    # Check a reader unit with the default names (reader / data.BigStruct)
    rwsep reader.sexp

    # Name the units and the protected type explicitly
    rwsep --reader example.com/app/reader --data example.com/app/data \\
          --struct BigStruct dumps/*.sexp

    # Strict mode, JSON output, call graph for graphviz
    rwsep --strict --format json --callgraph-dot cg.dot reader.sexp

    # Same thing as a module
    python -m rwsep reader.sexp

Exit codes
----------
    0   No (unsuppressed) issues.
    1   At least one issue was reported.
    2   Usage or configuration error (bad flag, missing file, bad config).

Dumps that fail to load are logged and skipped; they do not change the
exit code on their own.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import textwrap
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from rwsep import __version__
from rwsep.analyzer import RWSepAnalyzer
from rwsep.config import ProtectedTypeConfig, resolve_config
from rwsep.diagnostics import OUTPUT_FORMATS, IssueReporter, Rule
from rwsep.errors import ConfigError

_log = logging.getLogger("rwsep")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ISSUES: int = 1
EXIT_USAGE: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``rwsep`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("rwsep")
    for old in [h for h in root.handlers if getattr(h, "_rwsep_cli", False)]:
        root.removeHandler(old)
    handler = logging.StreamHandler(sys.stderr)
    handler._rwsep_cli = True
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.setLevel(level)
    root.addHandler(handler)


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _build_parser() -> argparse.ArgumentParser:
    """Construct the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="rwsep",
        description=(
            "rwsep: read/write separation checker.\n\n"
            "Reports every place where code in the reader unit mutates the\n"
            "protected type, directly, through an alias, or through a\n"
            "helper function reached with a pointer to protected data."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(f"""\
            rules:
              {', '.join(Rule.ids())}

            environment:
              RWSEP_READER, RWSEP_DATA, RWSEP_STRUCT, RWSEP_WRITER
        """),
    )
    parser.add_argument(
        "dumps",
        nargs="+",
        metavar="DUMP",
        help="Unit dump files (S-expressions produced by the front end).",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    names = parser.add_argument_group("protected type")
    names.add_argument("--reader", dest="reader_unit", metavar="UNIT",
                       help="Reader unit name or import path (default: reader).")
    names.add_argument("--data", dest="data_unit", metavar="UNIT",
                       help="Unit declaring the protected type (default: data).")
    names.add_argument("--struct", dest="type_name", metavar="NAME",
                       help="Protected type name (default: BigStruct).")
    names.add_argument("--writer", dest="writer_unit", metavar="UNIT",
                       help="Writer unit (informational).")
    names.add_argument("--config", metavar="FILE",
                       help="S-expression configuration file.")

    checks = parser.add_argument_group("checks")
    checks.add_argument("--strict", action="store_const", const=True, default=None,
                        help="Also report method calls on protected values.")
    checks.add_argument("--suppress", action="append", default=[], metavar="RULE",
                        choices=Rule.ids(),
                        help="Do not report RULE (repeatable).")

    output = parser.add_argument_group("output")
    output.add_argument("--format", choices=OUTPUT_FORMATS, default="text",
                        help="Diagnostic format (default: text).")
    output.add_argument("-o", "--output", metavar="FILE",
                        help="Write diagnostics to FILE instead of stdout.")
    output.add_argument("--callgraph-dot", metavar="FILE",
                        help="Write the call graph of every analysed unit as DOT.")
    return parser


# ===========================================================================
# Entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the rwsep CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else EXIT_USAGE

    _configure_logging(args.verbose)

    try:
        config: ProtectedTypeConfig = resolve_config(
            config_file=args.config,
            environ=os.environ,
            suppressed=args.suppress,
            reader_unit=args.reader_unit,
            data_unit=args.data_unit,
            type_name=args.type_name,
            writer_unit=args.writer_unit,
            strict=args.strict,
        )
    except ConfigError as e:
        _log.error("%s", e)
        return EXIT_USAGE

    missing = [d for d in args.dumps if not os.path.isfile(d)]
    if missing:
        for path in missing:
            _log.error("unit dump not found: %s", path)
        return EXIT_USAGE

    _log.info("protected type %s, reader unit %s%s", config.protected_name,
              config.reader_unit, " (strict)" if config.strict else "")

    batch = RWSepAnalyzer(config).analyze_paths(args.dumps)

    stream = _open_output(args.output)
    try:
        reporter = IssueReporter(stream, fmt=args.format, suppressed=config.suppressed)
        reporter.emit_all(batch.issues)
    finally:
        if stream is not sys.stdout:
            stream.close()
    _log.info("%s", reporter.summary())

    if args.callgraph_dot:
        graphs: List[str] = [r.graph.to_dot(title=r.unit)
                             for r in batch.results if r.graph is not None]
        dot_path = Path(args.callgraph_dot).expanduser()
        dot_path.parent.mkdir(parents=True, exist_ok=True)
        dot_path.write_text("\n".join(graphs) + "\n", encoding="utf-8")
        _log.info("wrote %d call graph(s) to %s", len(graphs), dot_path)

    for name, error in batch.errors:
        _log.warning("skipped %s: %s", name, error)

    return EXIT_ISSUES if reporter.reported else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
