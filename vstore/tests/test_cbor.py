"""
Canonical CBOR codec: determinism and strict rejection.
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vstore.encoding import cbor_dumps, cbor_loads, cbor_sha3_256
from vstore.errors import EncodingError

_scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-(2**63), max_value=2**64 - 1),
    st.binary(max_size=40),
    st.text(max_size=20),
)
_values = st.recursive(
    _scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(st.one_of(st.integers(0, 50), st.text(max_size=6)), children, max_size=4),
    ),
    max_leaves=20,
)


def test_map_key_order_does_not_matter():
    a = {"b": 1, "a": 2, 3: b"x"}
    b = {3: b"x", "a": 2, "b": 1}
    assert cbor_dumps(a) == cbor_dumps(b)
    assert cbor_sha3_256(a) == cbor_sha3_256(b)


@given(_values)
def test_reencoding_is_byte_identical(v):
    enc = cbor_dumps(v)
    assert cbor_dumps(cbor_loads(enc)) == enc


@pytest.mark.parametrize("bad", [1.5, {1.0: 1}, {True: 1}, {1, 2}, object(), [0.1]])
def test_unsupported_values_rejected(bad):
    with pytest.raises(EncodingError):
        cbor_dumps(bad)


def test_trailing_bytes_rejected():
    with pytest.raises(EncodingError):
        cbor_loads(cbor_dumps([1, 2]) + b"\x00")


def test_non_canonical_input_rejected():
    # 1 encoded with a one-byte argument instead of inline
    with pytest.raises(EncodingError):
        cbor_loads(b"\x18\x01")
    # map with keys out of canonical order: {"b": 1, "a": 2}
    with pytest.raises(EncodingError):
        cbor_loads(b"\xa2\x61b\x01\x61a\x02")


def test_float_input_rejected():
    with pytest.raises(EncodingError):
        cbor_loads(b"\xf9\x3c\x00")  # half-precision 1.0


def test_garbage_rejected():
    with pytest.raises(EncodingError):
        cbor_loads(b"\xff\xff")
    with pytest.raises(EncodingError):
        cbor_loads("not bytes")  # type: ignore[arg-type]
