"""
vstore.utils
============

Byte helpers and content addressing shared by every other module.
"""

from __future__ import annotations

from .bytes import BytesLike, b, from_hex, to_hex
from .hash import EMPTY, DIGEST_SIZE, digest, leaf_digest, node_digest

__all__ = [
    "BytesLike",
    "b",
    "from_hex",
    "to_hex",
    "EMPTY",
    "DIGEST_SIZE",
    "digest",
    "leaf_digest",
    "node_digest",
]
