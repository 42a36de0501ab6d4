"""
vstore.logging
--------------

Structured logging for the storage engine:
- JSON or concise colored text output
- Context-local fields via `contextvars` (trace_id, component, backend, epoch)
- Bytes rendered as hex, so digests read naturally in logs
- Optional JSON file tee

Usage
-----
    from vstore import logging as vlog

    vlog.configure(json=False, level="DEBUG")
    log = vlog.get_logger(__name__)

    with vlog.trace_scope():
        vlog.bind(component="importer", backend="sqlite")
        log.info("batch committed", extra={"epoch": 12, "root": root})

Library code only obtains loggers; nothing here runs at import time, so an
application embedding vstore keeps full control of the root logger.

Environment: VSTORE_LOG_FORMAT=(json|text), VSTORE_LOG_LEVEL.
"""

from __future__ import annotations

import datetime as _dt
import io
import json
import logging
import os
import sys
import threading
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("_VSTORE_LOG_CONTEXT", default={})

DEFAULT_CONTEXT_KEYS = (
    "trace_id",
    "component",
    "backend",
    "epoch",
)

# LogRecord attributes that are not user fields.
_RESERVED = frozenset(
    (
        "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
        "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
        "created", "msecs", "relativeCreated", "thread", "threadName",
        "processName", "process", "taskName", "message", "asctime",
    )
)


# ----------------------------
# Context
# ----------------------------


def context() -> Dict[str, Any]:
    """Return a *copy* of the active logging context."""
    return dict(_LOG_CONTEXT.get())


def bind(**fields: Any) -> None:
    cur = dict(_LOG_CONTEXT.get())
    cur.update({k: _coerce_value(v) for k, v in fields.items()})
    _LOG_CONTEXT.set(cur)


def unbind(*keys: str) -> None:
    cur = dict(_LOG_CONTEXT.get())
    for k in keys:
        cur.pop(k, None)
    _LOG_CONTEXT.set(cur)


def clear_context() -> None:
    _LOG_CONTEXT.set({})


def short_uuid() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def trace_scope(trace_id: Optional[str] = None) -> Iterator[str]:
    """Ensure a trace_id for the scope; restores the prior context on exit."""
    prev = dict(_LOG_CONTEXT.get())
    tid = trace_id or short_uuid()
    try:
        bind(trace_id=tid)
        yield tid
    finally:
        _LOG_CONTEXT.set(prev)


# ----------------------------
# Formatters
# ----------------------------


def _coerce_value(v: Any) -> Any:
    if v is None or isinstance(v, (bool, int, float, str)):
        return v
    if isinstance(v, (bytes, bytearray, memoryview)):
        return bytes(v).hex()
    if isinstance(v, (list, tuple)):
        return [_coerce_value(x) for x in v]
    if isinstance(v, dict):
        return {str(k): _coerce_value(x) for k, x in v.items()}
    if isinstance(v, _dt.datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=_dt.timezone.utc)
        return v.isoformat()
    return str(v)


def _utcnow_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat(timespec="milliseconds")


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        k: _coerce_value(v)
        for k, v in record.__dict__.items()
        if not k.startswith("_") and k not in _RESERVED
    }


_RESET = "\x1b[0m"
_GREY = "\x1b[90m"
_CYAN = "\x1b[36m"
_LEVEL_COLOR = {
    logging.DEBUG: _GREY,
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[1m\x1b[35m",
}


def _supports_color(stream: Any) -> bool:
    try:
        return bool(stream.isatty()) and os.environ.get("NO_COLOR") is None
    except (AttributeError, ValueError):
        return False


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": _utcnow_iso(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "pid": os.getpid(),
            "tid": threading.get_ident(),
        }
        payload.update(context())
        for k, v in _extras(record).items():
            payload.setdefault(k, v)
        if record.exc_info:
            payload["err"] = "".join(traceback.format_exception(*record.exc_info)).rstrip()
        return json.dumps(payload, separators=(",", ":"), default=str)


class TextFormatter(logging.Formatter):
    """
    One-liner:
      2025-01-05T12:34:56.789+00:00 | INFO  | vstore.engine | trace_id=ab12.. | epoch=3 | committed
    """

    def __init__(self, stream: Any) -> None:
        super().__init__()
        self._color = _supports_color(stream)

    def format(self, record: logging.LogRecord) -> str:
        ctx = context()
        ctx_str = " ".join(f"{k}={ctx[k]}" for k in DEFAULT_CONTEXT_KEYS if ctx.get(k) is not None)
        extras = " ".join(f"{k}={v}" for k, v in _extras(record).items() if k not in ctx)

        ts, lvl, name = _utcnow_iso(), f"{record.levelname:<5}", record.name
        if self._color:
            ts = f"{_GREY}{ts}{_RESET}"
            lvl = f"{_LEVEL_COLOR.get(record.levelno, '')}{lvl}{_RESET}"
            name = f"{_CYAN}{name}{_RESET}"
            if ctx_str:
                ctx_str = f"{_GREY}{ctx_str}{_RESET}"

        line = f"{ts} | {lvl} | {name}"
        if ctx_str:
            line += f" | {ctx_str}"
        if extras:
            line += f" | {extras}"
        line += f" | {record.getMessage()}"
        if record.exc_info:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info)).rstrip()
        return line


# ----------------------------
# Setup
# ----------------------------

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def _coerce_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return _LEVELS.get(str(level).upper(), logging.INFO)


def _env_json_override() -> Optional[bool]:
    env = os.environ.get("VSTORE_LOG_FORMAT", "").strip().lower()
    if env in ("json", "text"):
        return env == "json"
    return None


def configure(
    *,
    json: Optional[bool] = None,
    level: str | int | None = None,
    stream: io.TextIOBase | Any = sys.stderr,
    file_path: Optional[Path | str] = None,
    logger_name: str = "vstore",
) -> logging.Logger:
    """
    Configure the `vstore` logger hierarchy (not the root logger).

    json=None picks VSTORE_LOG_FORMAT, else JSON for non-TTY streams.
    level=None picks VSTORE_LOG_LEVEL, else INFO.
    """
    if json is None:
        env = _env_json_override()
        json = env if env is not None else not _supports_color(stream)
    lvl = _coerce_level(level if level is not None else os.environ.get("VSTORE_LOG_LEVEL", "INFO"))

    logger = logging.getLogger(logger_name)
    logger.setLevel(lvl)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    console = logging.StreamHandler(stream)
    console.setLevel(lvl)
    console.setFormatter(JSONFormatter() if json else TextFormatter(stream))
    logger.addHandler(console)

    if file_path:
        p = Path(file_path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(p, encoding="utf-8")
        fh.setLevel(lvl)
        fh.setFormatter(JSONFormatter())
        logger.addHandler(fh)

    logger.propagate = False
    return logger


def configure_from_config(cfg: Any) -> logging.Logger:
    """Apply a `vstore.config.LoggingConfig` (or a full Config)."""
    lc = getattr(cfg, "logging", cfg)
    fmt = (getattr(lc, "format", None) or "").lower()
    return configure(
        json=None if fmt in ("", "auto") else fmt == "json",
        level=getattr(lc, "level", None),
        file_path=getattr(lc, "file", None),
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or "vstore")


class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges constant fields with call-site `extra`."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        extra = kwargs.get("extra") or {}
        kwargs["extra"] = {**(self.extra or {}), **extra}
        return msg, kwargs


def with_fields(logger: logging.Logger, **fields: Any) -> ContextAdapter:
    return ContextAdapter(logger, extra={k: _coerce_value(v) for k, v in fields.items()})


__all__ = [
    "configure",
    "configure_from_config",
    "get_logger",
    "with_fields",
    "ContextAdapter",
    "JSONFormatter",
    "TextFormatter",
    "bind",
    "unbind",
    "context",
    "clear_context",
    "trace_scope",
    "short_uuid",
]
