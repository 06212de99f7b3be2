"""Logging setup for the drawbot scripts.

Every record carries the context fields pushed with :func:`push_context`.
The scripts push ``app``, ``job`` and ``port``; the stream controller
keeps ``line=<sent>/<total>`` current while a program is streaming.
Fields are process-wide, so records from the scheduler worker and the
serial listener thread carry the same fields as the main thread.

Format examples:
    Human: 2026-10-19T13:45:12.345Z | WARNING  | app=send_job line=12/480 | drawbot.hardware.stream_controller: No ack for 'G1 X3 Y4' after 30.0 s; continuing
    JSON:  {"t": "2026-10-19T13:45:12.345+00:00", "lvl": "WARNING", "name": "...", "app": "send_job", "line": "12/480", "msg": "..."}

Calling :func:`setup_logging` again replaces the handlers it installed
earlier instead of stacking new ones.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from drawbot.utils.fs import ensure_dir

_fields: dict[str, Any] = {}
_fields_lock = threading.Lock()

# Marks handlers owned by setup_logging so a re-run only removes its own.
_OWNED = "_drawbot_owned"

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
_RESET = "\033[0m"

QUIET_LIBS = ("PIL",)


# ---------------------------------------------------------------------------
# Context fields
# ---------------------------------------------------------------------------


def push_context(**fields: Any) -> None:
    """Add or replace context fields on all subsequent records.

    Examples
    --------
    >>> push_context(app="send_job", port="/dev/rfcomm0")
    """
    with _fields_lock:
        _fields.update(fields)


def pop_context(keys: Iterable[str] | None = None) -> None:
    """Remove context fields; all of them when *keys* is None."""
    with _fields_lock:
        if keys is None:
            _fields.clear()
            return
        for key in keys:
            _fields.pop(key, None)


def context_fields() -> dict[str, Any]:
    """Copy of the current context fields, in insertion order."""
    with _fields_lock:
        return dict(_fields)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------


class ContextFormatter(logging.Formatter):
    """Render records as one human-readable line or one JSON object.

    Parameters
    ----------
    fmt_mode : str
        ``"human"`` or ``"json"``.
    use_color : bool
        Colour the level name (human mode only).
    """

    def __init__(self, fmt_mode: str = "human", use_color: bool = False) -> None:
        super().__init__()
        if fmt_mode not in ("human", "json"):
            raise ValueError(f"Unknown log format {fmt_mode!r}")
        self.fmt_mode = fmt_mode
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        fields = context_fields()
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)

        if self.fmt_mode == "json":
            entry: dict[str, Any] = {
                "t": ts.isoformat(timespec="milliseconds"),
                "lvl": record.levelname,
                "name": record.name,
                **fields,
                "msg": record.getMessage(),
            }
            if record.exc_info:
                entry["exc"] = self.formatException(record.exc_info)
            return json.dumps(entry, default=str)

        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{_LEVEL_COLORS.get(record.levelname, '')}{level}{_RESET}"
        parts = [ts.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z", level]
        if fields:
            parts.append(" ".join(f"{k}={v}" for k, v in fields.items()))
        parts.append(f"{record.name}: {record.getMessage()}")
        text = " | ".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


# ---------------------------------------------------------------------------
# Setup / teardown
# ---------------------------------------------------------------------------


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    *,
    json: bool = False,
    color: bool = True,
    to_stderr: bool = True,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
    capture_warnings: bool = True,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Configure the root logger for a script run.

    Parameters
    ----------
    log_level : str
        Root level name, e.g. ``"INFO"``.
    log_file : str | None
        Also log to this file; parent directories are created.
    json : bool
        JSON lines in the log file (the console stays human-readable).
    color : bool
        Coloured level names when stderr is a terminal.
    to_stderr : bool
        Attach a console handler.
    max_bytes, backup_count : int
        Size-based rotation of *log_file*; ``max_bytes=0`` disables it.
    capture_warnings : bool
        Route :mod:`warnings` through logging.
    context : dict | None
        Initial context fields, e.g. ``{"app": "send_job"}``.

    Returns
    -------
    dict
        ``{"handlers": [...]}`` with the handlers installed by this call.

    Raises
    ------
    ValueError
        Unknown level name.
    """
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level {log_level!r}")

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _OWNED, False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)

    handlers: list[logging.Handler] = []
    if to_stderr:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(
            ContextFormatter("human", use_color=color and sys.stderr.isatty())
        )
        handlers.append(console)

    if log_file:
        ensure_dir(Path(log_file).parent)
        if max_bytes > 0:
            file_handler: logging.Handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        else:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(ContextFormatter("json" if json else "human"))
        handlers.append(file_handler)

    for handler in handlers:
        setattr(handler, _OWNED, True)
        root.addHandler(handler)

    for lib in QUIET_LIBS:
        logging.getLogger(lib).setLevel(logging.WARNING)
    if capture_warnings:
        logging.captureWarnings(True)
    if context:
        push_context(**context)

    return {"handlers": handlers}


def install_excepthook() -> None:
    """Log uncaught exceptions (except Ctrl+C) before the process exits."""

    def log_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logging.getLogger(__name__).critical(
            "Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback),
        )

    sys.excepthook = log_exception


def shutdown() -> None:
    """Flush and close all handlers; call at the end of main()."""
    logging.shutdown()
