"""
vstore.encoding
===============

Public encoding surface:

- cbor.py:      canonical CBOR dumps/loads (cbor2, canonical mode, strict)
- canonical.py: the record contract (`to_canonical` / `from_canonical`) and the
                `canonical_record` dataclass decorator
"""

from __future__ import annotations

from typing import Any

from ..utils.hash import sha3_256
from .canonical import (CanonicalRecord, canonical_record, decode_record,
                        encode_record, record_digest)
from .cbor import dumps as cbor_dumps
from .cbor import loads as cbor_loads


def cbor_sha3_256(obj: Any) -> bytes:
    """sha3_256(cbor_dumps(obj))."""
    return sha3_256(cbor_dumps(obj))


__all__ = [
    "cbor_dumps",
    "cbor_loads",
    "cbor_sha3_256",
    "CanonicalRecord",
    "canonical_record",
    "encode_record",
    "decode_record",
    "record_digest",
]
