"""
Logging setup for the homelab CLI.

main.py calls setup_logging() once; modules just use
``logging.getLogger(__name__)``.

Console level: --debug / --verbose / --quiet, then HOMELAB_LOG_LEVEL,
then WARNING. HOMELAB_LOG_FILE adds a file handler whose level comes
from HOMELAB_LOG_FILE_LEVEL (console level when unset).
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping

_DETAILED = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d | %(message)s"

# console format by threshold, most verbose first
_CONSOLE_FORMATS: list[tuple[int, str, str | None]] = [
    (logging.DEBUG, _DETAILED, "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
]

_FILE_FORMAT = logging.Formatter(_DETAILED, datefmt="%Y-%m-%d %H:%M:%S")


def resolve_level(
    verbose: bool = False,
    quiet: bool = False,
    debug: bool = False,
    env: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level from CLI flags and the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return (env or {}).get("HOMELAB_LOG_LEVEL") or "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root logger's handlers with a stderr handler and, optionally, a file handler.

    Unknown level names fall back to WARNING.
    """
    console_level = _level_number(level)
    handlers: list[logging.Handler] = [_console_handler(console_level)]

    if log_file:
        file_level = _level_number(log_file_level) if log_file_level else console_level
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(_FILE_FORMAT)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(min(h.level for h in handlers))

    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = "%(message)s", None
    for threshold, candidate, candidate_datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            fmt, datefmt = candidate, candidate_datefmt
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _level_number(name: str | None) -> int:
    numeric = getattr(logging, (name or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
