"""
vstore.utils.bytes
==================

Lightweight helpers around byte handling:

- Hex helpers: to_hex/from_hex, 0x-prefix management
- Length guards: ensure_len
- Bytes-like normalization: b(), is_byteslike()

Examples
--------
>>> to_hex(b"\\x01\\x02")
'0x0102'
>>> from_hex('0xdeadbeef')
b'\\xde\\xad\\xbe\\xef'
"""

from __future__ import annotations

from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


def is_byteslike(x: object) -> bool:
    return isinstance(x, (bytes, bytearray, memoryview))


def b(x: BytesLike) -> bytes:
    """Normalize a bytes-like object to immutable bytes."""
    if isinstance(x, bytes):
        return x
    if isinstance(x, (bytearray, memoryview)):
        return bytes(x)
    raise TypeError(f"expected bytes-like, got {type(x).__name__}")


def strip0x(s: str) -> str:
    return s[2:] if s.startswith(("0x", "0X")) else s


def to_hex(data: BytesLike, *, prefix: bool = True) -> str:
    """Return lowercase hex string of data."""
    h = b(data).hex()
    return f"0x{h}" if prefix else h


def from_hex(h: str) -> bytes:
    """Parse hex string with or without 0x prefix; ignores surrounding whitespace."""
    if not isinstance(h, str):
        raise TypeError("from_hex expects str")
    h = strip0x(h.strip().replace(" ", ""))
    if len(h) % 2 == 1:
        h = "0" + h
    try:
        return bytes.fromhex(h)
    except ValueError as e:
        raise ValueError(f"invalid hex string: {e}") from e


def ensure_len(data: BytesLike, n: int, *, what: str = "value") -> bytes:
    out = b(data)
    if len(out) != n:
        raise ValueError(f"{what} must be {n} bytes, got {len(out)}")
    return out


__all__ = [
    "BytesLike",
    "is_byteslike",
    "b",
    "strip0x",
    "to_hex",
    "from_hex",
    "ensure_len",
]
