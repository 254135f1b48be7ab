"""
rwsep/config.py
═══════════════

Protected-type configuration.

A :class:`ProtectedTypeConfig` names the reader unit, the data unit and
the protected type, plus the ambient switches (strict mode, suppressed
rule ids).  It is frozen: one instance is shared by every component of
a run and never changes.

Sources, lowest precedence first::

    built-in defaults  →  config file  →  RWSEP_* environment  →  CLI flags

Config file
───────────
An S-expression, read with ``sexpdata``::

    ; rwsep.sexp
    (rwsep
      (reader "example.com/app/reader")
      (data   "data")
      (struct "BigStruct")
      (writer "example.com/app/writer")
      (strict t)
      (suppress "methodCall" "loopBinding"))
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

import sexpdata
from sexpdata import Symbol

from rwsep.errors import ConfigError

_log = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_READER",
    "DEFAULT_DATA",
    "DEFAULT_STRUCT",
    "ENV_PREFIX",
    "ProtectedTypeConfig",
    "parse_config",
    "load_config_file",
    "resolve_config",
]

DEFAULT_READER = "reader"
DEFAULT_DATA = "data"
DEFAULT_STRUCT = "BigStruct"

ENV_PREFIX = "RWSEP_"

# config-file / environment key → dataclass field
_KEYS: Dict[str, str] = {
    "reader": "reader_unit",
    "data": "data_unit",
    "struct": "type_name",
    "writer": "writer_unit",
}


@dataclass(frozen=True, slots=True)
class ProtectedTypeConfig:
    """Which type is protected, and from whom.

    Attributes
    ----------
    reader_unit:
        Name or import path of the unit whose code must not mutate.
    data_unit:
        Name or import path of the unit declaring the protected type.
    type_name:
        Name of the protected type inside *data_unit*.
    writer_unit:
        The unit allowed to mutate.  Informational only: only the
        reader unit is ever analysed.
    strict:
        Also report method calls on protected receivers.
    suppressed:
        Rule ids dropped at reporting time.
    """

    reader_unit: str = DEFAULT_READER
    data_unit: str = DEFAULT_DATA
    type_name: str = DEFAULT_STRUCT
    writer_unit: Optional[str] = None
    strict: bool = False
    suppressed: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        for name in ("reader_unit", "data_unit", "type_name"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"{name} must be a non-empty string, got {value!r}")
        if not isinstance(self.suppressed, frozenset):
            object.__setattr__(self, "suppressed", frozenset(self.suppressed))

    @property
    def protected_name(self) -> str:
        """``<data unit name>.<type>``, as used in issue messages."""
        return f"{self.data_unit.rsplit('/', 1)[-1]}.{self.type_name}"

    def matches_reader(self, unit_name: str, unit_path: str = "") -> bool:
        return self.reader_unit in (unit_name, unit_path)

    def with_overrides(self, **overrides: Any) -> ProtectedTypeConfig:
        """Copy with every non-``None`` override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "suppressed" in changes:
            changes["suppressed"] = self.suppressed | frozenset(changes["suppressed"])
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 base: Optional[ProtectedTypeConfig] = None) -> ProtectedTypeConfig:
        """Apply ``RWSEP_READER`` / ``_DATA`` / ``_STRUCT`` / ``_WRITER``."""
        env = os.environ if environ is None else environ
        base = base or cls()
        overrides = {}
        for key, attr in _KEYS.items():
            value = env.get(ENV_PREFIX + key.upper())
            if value:
                overrides[attr] = value
        if overrides:
            _log.debug("environment overrides: %s", overrides)
        return base.with_overrides(**overrides)


# ═════════════════════════════════════════════════════════════════════════
#  CONFIG FILE
# ═════════════════════════════════════════════════════════════════════════

def _text(value: Any, where: str) -> str:
    if isinstance(value, Symbol):
        return value.value()
    if isinstance(value, str):
        return value
    raise ConfigError(f"{where}: expected a string, got {value!r}")


def _flag(value: Any, where: str) -> bool:
    text = _text(value, where).lower()
    if text in ("t", "true", "yes", "1"):
        return True
    if text in ("nil", "false", "no", "0"):
        return False
    raise ConfigError(f"{where}: expected t or nil, got {text!r}")


def parse_config(text: str, *, filename: str = "<string>",
                 base: Optional[ProtectedTypeConfig] = None) -> ProtectedTypeConfig:
    """Parse the ``(rwsep ...)`` form in *text* over *base*."""
    try:
        raw = sexpdata.loads(text, nil=None, true=None, false=None)
    except Exception as e:
        raise ConfigError(f"{filename}: S-expression syntax error: {e}") from e
    if not (isinstance(raw, list) and raw and isinstance(raw[0], Symbol)
            and raw[0].value() == "rwsep"):
        raise ConfigError(f"{filename}: expected (rwsep ...) at top level")

    overrides: Dict[str, Any] = {}
    for entry in raw[1:]:
        if not (isinstance(entry, list) and entry and isinstance(entry[0], Symbol)):
            raise ConfigError(f"{filename}: expected (key value ...), got {entry!r}")
        key = entry[0].value()
        args = entry[1:]
        where = f"{filename}: ({key} ...)"
        if key in _KEYS:
            if len(args) != 1:
                raise ConfigError(f"{where} takes exactly one value")
            overrides[_KEYS[key]] = _text(args[0], where)
        elif key == "strict":
            overrides["strict"] = _flag(args[0], where) if args else True
        elif key == "suppress":
            overrides["suppressed"] = frozenset(_text(a, where) for a in args)
        else:
            raise ConfigError(f"{filename}: unknown setting {key!r}")
    return (base or ProtectedTypeConfig()).with_overrides(**overrides)


def load_config_file(path: str,
                     base: Optional[ProtectedTypeConfig] = None) -> ProtectedTypeConfig:
    """Read the config file at *path* over *base* (defaults if omitted)."""
    try:
        with open(path, encoding="utf-8") as fh:
            text = fh.read()
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    _log.info("loading configuration from %s", path)
    return parse_config(text, filename=path, base=base)


def resolve_config(config_file: Optional[str] = None,
                   environ: Optional[Mapping[str, str]] = None,
                   suppressed: Iterable[str] = (),
                   **cli: Any) -> ProtectedTypeConfig:
    """Merge every configuration source in precedence order.

    ``cli`` keys are dataclass field names (``reader_unit=...``); ``None``
    values mean "not given on the command line".
    """
    config = ProtectedTypeConfig()
    if config_file:
        config = load_config_file(config_file, base=config)
    config = ProtectedTypeConfig.from_env(environ, base=config)
    extra = frozenset(suppressed)
    return config.with_overrides(suppressed=extra or None, **cli)
