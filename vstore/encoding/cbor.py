"""
Canonical CBOR codec
--------------------

Thin, strict wrapper around cbor2 in canonical mode (RFC 8949 §4.2.1
deterministic encoding). Used for every byte string the engine hashes or
persists besides raw node bytes: epoch records, proofs and typed records.

Supported Python types:
- None, bool
- int (cbor2 emits bignum tags 2/3 beyond 64-bit)
- bytes
- str
- list/tuple
- dict (keys must be int/bytes/str)

Rejected:
- float / Decimal (no stable cross-language representation)
- sets, custom classes, semantic tags other than bignums
- trailing bytes after the top-level item
- non-canonical input (decode re-encodes and compares)

Every failure is raised as vstore.errors.EncodingError.

Public API:
- dumps(obj) -> bytes
- loads(data) -> object
"""

from __future__ import annotations

from typing import Any

import cbor2

from ..errors import EncodingError

_MAX_DEPTH = 512


def _check(x: Any, depth: int = 0) -> None:
    if depth > _MAX_DEPTH:
        raise EncodingError("maximum nesting exceeded", depth=depth)
    if x is None or isinstance(x, (bool, int, str, bytes)):
        return
    if isinstance(x, (list, tuple)):
        for item in x:
            _check(item, depth + 1)
        return
    if isinstance(x, dict):
        for k, v in x.items():
            if isinstance(k, bool) or not isinstance(k, (int, str, bytes)):
                raise EncodingError("map keys must be int, str or bytes", key_type=type(k).__name__)
            _check(v, depth + 1)
        return
    raise EncodingError("unsupported type for canonical CBOR", type=type(x).__name__)


def dumps(obj: Any) -> bytes:
    """Encode `obj` with deterministic canonical CBOR."""
    if isinstance(obj, (bytearray, memoryview)):
        obj = bytes(obj)
    _check(obj)
    try:
        return cbor2.dumps(obj, canonical=True)
    except (cbor2.CBOREncodeError, TypeError, ValueError, OverflowError) as e:
        raise EncodingError(f"CBOR encode failed: {e}") from e


def loads(data: bytes) -> Any:
    """
    Decode one canonical CBOR item occupying *all* of `data`.

    Decoded content is re-encoded and compared byte-for-byte with the input,
    which rejects trailing bytes and any non-canonical encoding in one step.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise EncodingError("CBOR input must be bytes", got=type(data).__name__)
    raw = bytes(data)
    try:
        obj = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, ValueError, TypeError, EOFError) as e:
        raise EncodingError(f"CBOR decode failed: {e}") from e
    _check(obj)
    if cbor2.dumps(obj, canonical=True) != raw:
        raise EncodingError("non-canonical CBOR or trailing bytes", length=len(raw))
    return obj


__all__ = ["dumps", "loads"]
