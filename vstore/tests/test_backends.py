"""
Backend contract: both reference backends behave identically.
"""

from __future__ import annotations

import sqlite3

import pytest

from vstore.batch import WriteBatch
from vstore.db import Backend, KeyIndex, MemoryBackend, SQLiteBackend, open_backend
from vstore.db import _parse_uri
from vstore.engine import Engine
from vstore.epoch import Epoch
from vstore.errors import BackendIOError, ConfigError, ConflictError
from vstore.utils.hash import EMPTY, sha3_256


def test_protocols(backend):
    assert isinstance(backend, Backend)
    assert isinstance(backend, KeyIndex)


def test_genesis_before_first_commit(backend):
    assert backend.get_head() == Epoch.genesis()
    assert backend.get_epoch(0) == Epoch.genesis()
    assert backend.get_epoch(1) is None
    assert list(backend.iter_epochs()) == [Epoch.genesis()]


def test_nodes_are_idempotent(backend):
    d = sha3_256(b"blob")
    backend.put_nodes({d: b"blob"})
    backend.put_nodes({d: b"blob"})
    backend.put_nodes({})
    assert backend.get_node(d) == b"blob"
    assert backend.get_node(sha3_256(b"nope")) is None


def test_cas_head(backend):
    g = backend.get_head()
    e1 = g.successor(sha3_256(b"r1"))
    backend.cas_head(EMPTY, e1)
    assert backend.get_head() == e1
    with pytest.raises(ConflictError):
        backend.cas_head(EMPTY, e1.successor(sha3_256(b"r2")))  # wrong expected root
    with pytest.raises(ConflictError):
        backend.cas_head(e1.root, g.successor(sha3_256(b"r2")))  # wrong number
    with pytest.raises(ConflictError):
        backend.cas_head(e1.root, Epoch(2, sha3_256(b"r2"), sha3_256(b"elsewhere")))  # bad link
    assert backend.get_head() == e1
    assert [e.number for e in backend.iter_epochs(1)] == [1]
    assert list(backend.iter_epochs(0, 1)) == [g]


def test_key_index_scan(backend):
    backend.record_keys([b"b", b"a", b"c", b"a"])
    backend.record_keys([])
    assert list(backend.scan_keys()) == [b"a", b"b", b"c"]
    assert list(backend.scan_keys(b"b")) == [b"b", b"c"]
    assert list(backend.scan_keys(None, b"c")) == [b"a", b"b"]
    assert list(backend.scan_keys(b"b", b"b")) == []


def _script(eng: Engine):
    out = []
    out.append(eng.put(b"alice", b"1"))
    out.append(eng.commit(WriteBatch.of([(b"bob", b"2"), (b"carol", b"3")]), b"meta"))
    out.append(eng.delete(b"alice"))
    out.append(eng.commit(WriteBatch()))
    return out


def test_memory_and_sqlite_agree(tmp_path):
    with MemoryBackend() as mem, SQLiteBackend(tmp_path / "p.db") as sql:
        a = _script(Engine(mem))
        b = _script(Engine(sql))
        assert a == b
        assert list(mem.iter_epochs()) == list(sql.iter_epochs())
        assert mem.node_count() == sql.node_count()
        pa = Engine(mem).prove(b"bob")
        pb = Engine(sql).prove(b"bob")
        assert pa == pb


def test_sqlite_persists_across_reopen(tmp_path):
    path = tmp_path / "sub" / "store.db"
    with SQLiteBackend(path) as be:
        Engine(be).put(b"k", b"v")
    with SQLiteBackend(path) as be:
        eng = Engine(be)
        assert eng.head().number == 1
        assert eng.get_value(b"k") == b"v"
        assert list(eng.iter_keys()) == [b"k"]


def test_sqlite_two_connections_share_cas(tmp_path):
    path = tmp_path / "shared.db"
    with SQLiteBackend(path) as one, SQLiteBackend(path) as two:
        e1 = Engine(one).put(b"a", b"1")
        assert two.get_head() == e1
        stale = Epoch.genesis().successor(sha3_256(b"x"))
        with pytest.raises(ConflictError):
            two.cas_head(EMPTY, stale)
        Engine(two).put(b"b", b"2")
        assert Engine(one).get_value(b"b") == b"2"


def test_sqlite_closed_backend_raises_io(tmp_path):
    be = SQLiteBackend(tmp_path / "c.db")
    be.close()
    be.close()
    with pytest.raises(BackendIOError):
        be.get_head()


def test_sqlite_operational_error_is_backend_io(tmp_path):
    conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
    be = SQLiteBackend(conn)
    conn.execute("DROP TABLE nodes")
    with pytest.raises(BackendIOError):
        be.get_node(EMPTY)


@pytest.mark.parametrize(
    "uri,kind,path",
    [
        ("memory://", "memory", ""),
        ("sqlite:///rel/store.db", "sqlite", "rel/store.db"),
        ("sqlite:////abs/store.db", "sqlite", "/abs/store.db"),
        ("sqlite:///:memory:", "sqlite", ":memory:"),
        ("data/x.sqlite3", "sqlite", "data/x.sqlite3"),
    ],
)
def test_parse_uri(uri, kind, path):
    assert _parse_uri(uri) == (kind, path)


def test_open_backend():
    be = open_backend("memory://")
    assert isinstance(be, MemoryBackend)
    sq = open_backend("sqlite:///:memory:")
    assert isinstance(sq, SQLiteBackend)
    sq.close()
    with pytest.raises(ConfigError):
        open_backend("rocksdb:///tmp/x")
