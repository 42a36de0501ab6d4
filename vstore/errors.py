"""
vstore.errors
-------------

A small, consistent error system for the storage engine.

Design goals
------------
- One root `VStoreError` with machine-friendly `code` and optional `data`.
- Concrete subclasses for the engine's failure classes (conflict, backend I/O,
  corruption, encoding, aborted commits, SAID verification, config).
- Non-invasive helpers to enrich errors with contextual fields (key, epoch,
  digest) so callers can diagnose without retrying blindly.
- Safe JSON representation (`to_dict`) suitable for logs and the CLI.
- Clear separation of *retryable* vs *permanent* failures. Only the engine
  facade acts on `retryable`; lower layers surface errors unchanged.

This module uses only stdlib to avoid import cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type, TypeVar


class ErrorCode(str, Enum):
    INTERNAL = "VSTORE/INTERNAL"
    NOT_FOUND = "VSTORE/NOT_FOUND"
    CONFLICT = "VSTORE/CONFLICT"
    BACKEND_IO = "VSTORE/BACKEND_IO"
    CORRUPTION = "VSTORE/CORRUPTION"
    ENCODING = "VSTORE/ENCODING"
    COMMIT_ABORTED = "VSTORE/COMMIT_ABORTED"
    INVALID_SAID = "VSTORE/INVALID_SAID"
    CONFIG = "VSTORE/CONFIG"


@dataclass(eq=False)
class VStoreError(Exception):
    """
    Root error for vstore components.

    Attributes
    ----------
    code: str
        Machine-stable error code (see ErrorCode).
    message: str
        Human hint suitable for logs.
    data: dict
        Optional machine data (digests, keys, epoch numbers). JSON-serializable.
    retryable: bool
        Whether the operation may succeed on retry without changing inputs.
    cause: Optional[BaseException]
        Wrapped original exception; not included in equality comparison.
    """

    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    retryable: bool = False
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        super().__init__(f"{self.code}: {self.message}")

    def with_context(self, **ctx: Any) -> "VStoreError":
        """Return a *new* error with extra context merged (does not mutate)."""
        out = _clone(self)
        out.data = {**self.data, **_jsonmap(ctx)}
        return out

    def with_cause(self, exc: BaseException) -> "VStoreError":
        """Attach/replace the causal exception (returns a new instance)."""
        out = _clone(self)
        out.data = dict(self.data)
        out.cause = exc
        return out

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        """JSON-safe shape suitable for logs and CLI output."""
        out = {
            "code": str(getattr(self.code, "value", self.code)),
            "message": self.message,
            "data": _coerce_json(self.data),
            "retryable": self.retryable,
        }
        if include_cause and self.cause is not None:
            out["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return out

    def __str__(self) -> str:
        code = getattr(self.code, "value", self.code)
        parts = [f"{code}: {self.message}"]
        if self.data:
            preview = ", ".join(f"{k}={_preview(v)}" for k, v in self.data.items())
            parts.append(f"[{preview}]")
        return " ".join(parts)


class InternalError(VStoreError):
    def __init__(self, message: str = "internal error", **data: Any) -> None:
        super().__init__(code=ErrorCode.INTERNAL, message=message, data=_jsonmap(data))


class NotFound(VStoreError):
    """A lookup found nothing. A normal outcome; raised only by *_or_raise helpers."""

    def __init__(self, message: str = "not found", **data: Any) -> None:
        super().__init__(code=ErrorCode.NOT_FOUND, message=message, data=_jsonmap(data))


class ConflictError(VStoreError):
    """The head moved since the caller read it (optimistic concurrency miss)."""

    def __init__(self, message: str = "head epoch conflict", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.CONFLICT,
            message=message,
            data=_jsonmap(data),
            retryable=True,
        )


class BackendIOError(VStoreError):
    """Transient backend failure (connection dropped, lock timeout, ...)."""

    def __init__(self, message: str = "backend I/O error", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.BACKEND_IO,
            message=message,
            data=_jsonmap(data),
            retryable=True,
        )


class CorruptionError(VStoreError):
    """Fetched bytes do not hash to the digest that references them. Fatal."""

    def __init__(self, message: str = "node digest mismatch", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.CORRUPTION,
            message=message,
            data=_jsonmap(data),
            retryable=False,
        )


class EncodingError(VStoreError):
    """Canonical encode/decode failure. Never silently coerced."""

    def __init__(self, message: str = "encoding error", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.ENCODING,
            message=message,
            data=_jsonmap(data),
            retryable=False,
        )


class CommitAbortedError(VStoreError):
    """The engine's retry budget ran out."""

    def __init__(self, attempts: int, message: str = "commit aborted", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.COMMIT_ABORTED,
            message=message,
            data=_jsonmap({"attempts": attempts, **data}),
            retryable=False,
        )

    @property
    def attempts(self) -> int:
        return int(self.data.get("attempts", 0))


class InvalidSaid(VStoreError):
    def __init__(self, message: str = "SAID verification failed", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.INVALID_SAID,
            message=message,
            data=_jsonmap(data),
            retryable=False,
        )


class ConfigError(VStoreError):
    def __init__(self, message: str = "invalid configuration", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.CONFIG,
            message=message,
            data=_jsonmap(data),
            retryable=False,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

T = TypeVar("T", bound=VStoreError)


def wrap(exc: BaseException, *, as_: Type[T] = InternalError, **ctx: Any) -> VStoreError:
    """
    Wrap any exception into a VStoreError subclass, attaching context.
    If `exc` is already a VStoreError, returns a context-enriched copy.
    """
    if isinstance(exc, VStoreError):
        return exc.with_context(**ctx)
    err = as_(f"{type(exc).__name__}: {exc}", **ctx)  # type: ignore[call-arg]
    return err.with_cause(exc)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, VStoreError) and exc.retryable


def _clone(err: VStoreError) -> VStoreError:
    # Subclass __init__ signatures differ; copy state without re-running them.
    out = err.__class__.__new__(err.__class__)
    out.__dict__.update(err.__dict__)
    Exception.__init__(out, *err.args)
    return out


def _jsonmap(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: _coerce_json(v) for k, v in data.items()}


def _coerce_json(v: Any) -> Any:
    # Keep JSON primitives; hex-encode bytes; stringify the rest.
    if v is None or isinstance(v, (bool, int, float, str)):
        return v
    if isinstance(v, (bytes, bytearray, memoryview)):
        return bytes(v).hex()
    if isinstance(v, (list, tuple)):
        return [_coerce_json(x) for x in v]
    if isinstance(v, dict):
        return {str(k): _coerce_json(x) for k, x in v.items()}
    return str(v)


def _preview(v: Any, limit: int = 96) -> str:
    s = str(_coerce_json(v))
    return s if len(s) <= limit else s[:limit] + "…"


__all__ = [
    "ErrorCode",
    "VStoreError",
    "InternalError",
    "NotFound",
    "ConflictError",
    "BackendIOError",
    "CorruptionError",
    "EncodingError",
    "CommitAbortedError",
    "InvalidSaid",
    "ConfigError",
    "wrap",
    "is_retryable",
]
