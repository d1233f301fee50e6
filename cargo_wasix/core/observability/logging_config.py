"""
Logging configuration — one setup call per process.

Console records go to stderr in cargo's own voice (``warning: ...``,
``error: ...``) so cargo-wasix output blends with the compiler's.  More
verbose levels add timestamps and the emitting module.

Level precedence:
    --debug / --verbose / --quiet  >  CARGO_WASIX_LOG_LEVEL  >  WARNING

An optional log file (``CARGO_WASIX_LOG_FILE``) always gets full detail,
at ``CARGO_WASIX_LOG_FILE_LEVEL`` or the console level.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping

LEVEL_ENV = "CARGO_WASIX_LOG_LEVEL"
FILE_ENV = "CARGO_WASIX_LOG_FILE"
FILE_LEVEL_ENV = "CARGO_WASIX_LOG_FILE_LEVEL"

# INFO — progress lines, timestamped
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# DEBUG / file — file:line for tracing cache and pipeline steps
_FMT_DETAIL = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


class CargoStyleFormatter(logging.Formatter):
    """``warning: message``, matching cargo's diagnostic prefixes."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = record.levelname.lower()
        if prefix == "critical":
            prefix = "error"
        return f"{prefix}: {record.getMessage()}"


def resolve_level(
    *,
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    env: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return (env or {}).get(LEVEL_ENV) or "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger; replaces any handlers set up earlier.

    Args:
        level: Console level name. Unknown names fall back to WARNING.
        log_file: Optional path of a log file.
        log_file_level: Level for the file; defaults to ``level``.
    """
    numeric_level = _parse_level(level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    if numeric_level <= logging.DEBUG:
        console.setFormatter(logging.Formatter(_FMT_DETAIL, datefmt=_DATEFMT_DEBUG))
    elif numeric_level <= logging.INFO:
        console.setFormatter(logging.Formatter(_FMT_VERBOSE, datefmt=_DATEFMT_VERBOSE))
    else:
        console.setFormatter(CargoStyleFormatter())

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(console)
    effective_level = numeric_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_DETAIL, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(effective_level)
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
