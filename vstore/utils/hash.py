"""
vstore.utils.hash
=================

Content addressing for the authenticated map.

Every digest in the engine is SHA3-256 (32 bytes). Tree nodes are hashed with a
1-byte domain tag in front of their payload:

    LEAF = 0x00 || key_digest || value_digest
    NODE = 0x01 || left_digest || right_digest

The tag keeps a leaf digest from ever colliding with an internal node digest,
so a leaf cannot be substituted for a subtree in a proof. The stored encoding
of a node *is* its hash preimage, which lets readers re-verify fetched bytes
with a single hash.

EMPTY (the digest of an empty subtree) is sha3_256(b""). It is never stored.

BLAKE3 is exposed separately for self-addressing identifiers (see vstore.said);
it never participates in tree hashing.
"""

from __future__ import annotations

import hashlib

import blake3 as _blake3

from ..errors import EncodingError
from .bytes import BytesLike
from .bytes import b as _b

DIGEST_SIZE = 32
DIGEST_BITS = DIGEST_SIZE * 8

LEAF_TAG = b"\x00"
NODE_TAG = b"\x01"

ZERO32 = b"\x00" * DIGEST_SIZE


def sha3_256(data: BytesLike) -> bytes:
    """SHA3-256 digest."""
    return hashlib.sha3_256(_b(data)).digest()


def blake3_256(data: BytesLike) -> bytes:
    """BLAKE3 digest, 32 bytes."""
    return _blake3.blake3(_b(data)).digest()


# The single tree hash function.
digest = sha3_256

EMPTY = sha3_256(b"")


def check_digest(d: object, *, what: str = "digest") -> bytes:
    """Return `d` as bytes if it is a well-formed digest, else raise EncodingError."""
    if not isinstance(d, (bytes, bytearray, memoryview)):
        raise EncodingError(f"{what} must be bytes", got=type(d).__name__)
    out = bytes(d)
    if len(out) != DIGEST_SIZE:
        raise EncodingError(f"{what} must be {DIGEST_SIZE} bytes", length=len(out))
    return out


def key_digest(key: BytesLike) -> bytes:
    return sha3_256(key)


def value_digest(value: BytesLike) -> bytes:
    return sha3_256(value)


def leaf_bytes(kd: bytes, vd: bytes) -> bytes:
    return LEAF_TAG + kd + vd


def node_bytes(left: bytes, right: bytes) -> bytes:
    return NODE_TAG + left + right


def leaf_digest(kd: bytes, vd: bytes) -> bytes:
    """Digest of a leaf binding key_digest → value_digest."""
    return sha3_256(leaf_bytes(check_digest(kd, what="key_digest"), check_digest(vd, what="value_digest")))


def node_digest(left: bytes, right: bytes) -> bytes:
    """Digest of an internal node over two child digests."""
    return sha3_256(node_bytes(check_digest(left, what="left"), check_digest(right, what="right")))


# ------------
# Path bits
# ------------


def bit_at(d: bytes, i: int) -> int:
    """Bit `i` of a digest, MSB first. Bit 0 selects the child at depth 0."""
    if not (0 <= i < len(d) * 8):
        raise IndexError(f"bit index {i} out of range")
    return (d[i >> 3] >> (7 - (i & 7))) & 1


def common_prefix_bits(a: bytes, b: bytes) -> int:
    """Number of leading bits `a` and `b` share."""
    n = 0
    for x, y in zip(a, b):
        if x == y:
            n += 8
            continue
        diff = x ^ y
        return n + (8 - diff.bit_length())
    return n


__all__ = [
    "DIGEST_SIZE",
    "DIGEST_BITS",
    "LEAF_TAG",
    "NODE_TAG",
    "EMPTY",
    "ZERO32",
    "sha3_256",
    "blake3_256",
    "digest",
    "check_digest",
    "key_digest",
    "value_digest",
    "leaf_bytes",
    "node_bytes",
    "leaf_digest",
    "node_digest",
    "bit_at",
    "common_prefix_bits",
]
