"""
vstore.smt.node: node layout and read-side verification

Two node kinds, each stored as the exact bytes that are hashed:

    Leaf      LEAF_TAG(0x00) || key_digest(32) || value_digest(32)   65 bytes
    Internal  NODE_TAG(0x01) || left(32)       || right(32)          65 bytes

A node's digest is sha3_256(stored bytes). The empty subtree is the EMPTY
digest and has no stored form.

`decode_node(raw, expected)` is the single gate between untrusted storage and
the tree: it recomputes the digest of fetched bytes and validates the layout,
raising CorruptionError on any mismatch.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Union

from ..errors import CorruptionError
from ..utils.hash import (DIGEST_SIZE, EMPTY, LEAF_TAG, NODE_TAG, leaf_bytes,
                          node_bytes, sha3_256)

NODE_SIZE = 1 + 2 * DIGEST_SIZE


@dataclass(frozen=True)
class Leaf:
    key_digest: bytes
    value_digest: bytes

    def encode(self) -> bytes:
        return leaf_bytes(self.key_digest, self.value_digest)

    @property
    def digest(self) -> bytes:
        return sha3_256(self.encode())


@dataclass(frozen=True)
class Internal:
    left: bytes
    right: bytes

    def encode(self) -> bytes:
        return node_bytes(self.left, self.right)

    @property
    def digest(self) -> bytes:
        return sha3_256(self.encode())

    def child(self, bit: int) -> bytes:
        return self.right if bit else self.left


Node = Union[Leaf, Internal]


def parse_node(raw: bytes) -> Node:
    """Parse stored node bytes without checking them against a digest."""
    if len(raw) != NODE_SIZE:
        raise CorruptionError("bad node length", length=len(raw))
    tag, a, c = raw[:1], raw[1 : 1 + DIGEST_SIZE], raw[1 + DIGEST_SIZE :]
    if tag == LEAF_TAG:
        return Leaf(a, c)
    if tag == NODE_TAG:
        return Internal(a, c)
    raise CorruptionError("unknown node tag", tag=tag)


def decode_node(raw: bytes, expected: bytes) -> Node:
    """Verify that `raw` hashes to `expected`, then parse it."""
    got = sha3_256(raw)
    if not hmac.compare_digest(got, expected):
        raise CorruptionError("node digest mismatch", expected=expected, got=got)
    return parse_node(raw)


def is_empty(d: bytes) -> bool:
    return d == EMPTY


__all__ = ["Leaf", "Internal", "Node", "NODE_SIZE", "parse_node", "decode_node", "is_empty"]
