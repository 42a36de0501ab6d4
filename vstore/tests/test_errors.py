import json
import sqlite3

import pytest

from vstore.errors import (BackendIOError, CommitAbortedError, ConflictError,
                           CorruptionError, EncodingError, ErrorCode,
                           InternalError, InvalidSaid, NotFound, VStoreError,
                           is_retryable, wrap)


@pytest.mark.parametrize(
    "err,code,retryable",
    [
        (NotFound(), ErrorCode.NOT_FOUND, False),
        (ConflictError(), ErrorCode.CONFLICT, True),
        (BackendIOError(), ErrorCode.BACKEND_IO, True),
        (CorruptionError(), ErrorCode.CORRUPTION, False),
        (EncodingError(), ErrorCode.ENCODING, False),
        (CommitAbortedError(3), ErrorCode.COMMIT_ABORTED, False),
        (InvalidSaid(), ErrorCode.INVALID_SAID, False),
        (InternalError(), ErrorCode.INTERNAL, False),
    ],
)
def test_taxonomy(err, code, retryable):
    assert isinstance(err, VStoreError)
    assert err.code == code
    assert err.retryable is retryable
    assert is_retryable(err) is retryable


def test_context_is_json_safe():
    err = CorruptionError("node digest mismatch", expected=b"\x01\x02", epoch=4)
    d = err.to_dict()
    assert d["code"] == "VSTORE/CORRUPTION"
    assert d["data"] == {"expected": "0102", "epoch": 4}
    json.dumps(d)
    assert "expected=0102" in str(err)


def test_with_context_and_cause_do_not_mutate():
    base = ConflictError("head moved", head_epoch=1)
    more = base.with_context(key=b"k")
    assert base.data == {"head_epoch": 1}
    assert more.data == {"head_epoch": 1, "key": "6b"}
    assert isinstance(more, ConflictError)
    caused = base.with_cause(ValueError("x"))
    assert base.cause is None
    assert isinstance(caused.cause, ValueError)
    assert caused.to_dict(include_cause=True)["cause"]["type"] == "ValueError"


def test_wrap():
    e = wrap(sqlite3.OperationalError("database is locked"), as_=BackendIOError, op="cas_head")
    assert isinstance(e, BackendIOError)
    assert e.retryable
    assert e.data["op"] == "cas_head"
    assert isinstance(e.cause, sqlite3.OperationalError)
    again = wrap(e, attempt=2)
    assert again.data == {"op": "cas_head", "attempt": 2}
    assert not is_retryable(ValueError())


def test_commit_aborted_attempts():
    assert CommitAbortedError(4, last_code="VSTORE/CONFLICT").attempts == 4
