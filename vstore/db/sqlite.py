"""
SQLite backend
==============

Relational implementation of the backend contract plus `KeyIndex`, on the
stdlib `sqlite3` module.

Schema:
    nodes(d BLOB PRIMARY KEY, v BLOB NOT NULL)          content-addressed arena
    epochs(n INTEGER PRIMARY KEY, rec BLOB NOT NULL)    canonical epoch records
    head(id INTEGER PRIMARY KEY CHECK (id = 0), n INTEGER NOT NULL)
    keys(k BLOB PRIMARY KEY)                            raw key index

`cas_head` runs inside `BEGIN IMMEDIATE`, which takes SQLite's write lock up
front: the head read, the precondition check, the epoch insert and the head
update happen atomically with respect to other connections and processes.

Pragmas: WAL journal with NORMAL sync; readers never block the writer.

Threading: one connection opened with `check_same_thread=False`; an RLock
serializes its use inside the process. `sqlite3.OperationalError` (locked,
busy, disk I/O) is reported as BackendIOError.
"""

from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, Mapping, Optional, Union

from ..epoch import Epoch
from ..errors import BackendIOError, wrap
from ..logging import get_logger
from .backend import check_cas

log = get_logger("vstore.db.sqlite")

DEFAULT_PRAGMAS = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "temp_store": "MEMORY",
    "foreign_keys": "OFF",
}

DEFAULT_TIMEOUT = 5.0


def _apply_pragmas(conn: sqlite3.Connection, pragmas: Optional[dict] = None) -> None:
    p = dict(DEFAULT_PRAGMAS)
    if pragmas:
        p.update(pragmas)
    for name, value in p.items():
        conn.execute(f"PRAGMA {name}={value}")


def _migrate(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS nodes (d BLOB PRIMARY KEY, v BLOB NOT NULL)")
    conn.execute("CREATE TABLE IF NOT EXISTS epochs (n INTEGER PRIMARY KEY, rec BLOB NOT NULL)")
    conn.execute(
        "CREATE TABLE IF NOT EXISTS head (id INTEGER PRIMARY KEY CHECK (id = 0), n INTEGER NOT NULL)"
    )
    conn.execute("CREATE TABLE IF NOT EXISTS keys (k BLOB PRIMARY KEY)")
    conn.execute("BEGIN IMMEDIATE")
    try:
        conn.execute(
            "INSERT OR IGNORE INTO epochs(n, rec) VALUES(0, ?)",
            (Epoch.genesis().to_bytes(),),
        )
        conn.execute("INSERT OR IGNORE INTO head(id, n) VALUES(0, 0)")
        conn.execute("COMMIT")
    except BaseException:
        conn.execute("ROLLBACK")
        raise


def _normalize_path(path: Union[str, "os.PathLike[str]"]) -> str:
    # sqlite:///rel.db is relative, sqlite:////abs.db is absolute
    s = str(path)
    if s.startswith("sqlite:///"):
        s = s[len("sqlite:///"):]
    return s or ":memory:"


def _open_connection(path: str, *, pragmas: Optional[dict] = None, timeout: float = DEFAULT_TIMEOUT) -> sqlite3.Connection:
    if path != ":memory:":
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)
    conn = sqlite3.connect(
        path,
        timeout=timeout,
        isolation_level=None,  # autocommit; transactions are explicit
        check_same_thread=False,
    )
    if path != ":memory:":
        _apply_pragmas(conn, pragmas)
    _migrate(conn)
    return conn


class SQLiteBackend:
    """
    Use `open_sqlite_backend(path)` or `vstore.db.open_backend("sqlite:///...")`.
    """

    def __init__(self, conn_or_path: Union[sqlite3.Connection, str, "os.PathLike[str]"] = ":memory:", *, pragmas: Optional[dict] = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        try:
            if isinstance(conn_or_path, sqlite3.Connection):
                self._conn = conn_or_path
                _migrate(self._conn)
                self.path = ":connection:"
            else:
                self.path = _normalize_path(conn_or_path)
                self._conn = _open_connection(self.path, pragmas=pragmas, timeout=timeout)
        except sqlite3.OperationalError as e:
            raise wrap(e, as_=BackendIOError, op="open") from e
        self._lock = threading.RLock()
        self._closed = False

    @contextmanager
    def _io(self, op: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._closed:
                raise BackendIOError("backend is closed", op=op)
            try:
                yield self._conn
            except sqlite3.OperationalError as e:
                log.warning("sqlite operation failed", extra={"op": op, "error": str(e)})
                raise wrap(e, as_=BackendIOError, op=op) from e

    @contextmanager
    def _tx(self, op: str) -> Iterator[sqlite3.Connection]:
        with self._io(op) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.OperationalError:
                conn.execute("ROLLBACK")
                raise

    # ---- nodes ----

    def get_node(self, digest: bytes) -> Optional[bytes]:
        with self._io("get_node") as conn:
            row = conn.execute("SELECT v FROM nodes WHERE d = ?", (bytes(digest),)).fetchone()
        return None if row is None else bytes(row[0])

    def put_nodes(self, nodes: Mapping[bytes, bytes]) -> None:
        if not nodes:
            return
        with self._tx("put_nodes") as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO nodes(d, v) VALUES(?, ?)",
                [(bytes(d), bytes(v)) for d, v in nodes.items()],
            )

    def node_count(self) -> int:
        with self._io("node_count") as conn:
            return int(conn.execute("SELECT COUNT(*) FROM nodes").fetchone()[0])

    # ---- epochs ----

    def _read_head(self, conn: sqlite3.Connection) -> Epoch:
        row = conn.execute(
            "SELECT e.rec FROM head h JOIN epochs e ON e.n = h.n WHERE h.id = 0"
        ).fetchone()
        if row is None:
            raise BackendIOError("head row missing", path=self.path)
        return Epoch.from_bytes(bytes(row[0]))

    def get_head(self) -> Epoch:
        with self._io("get_head") as conn:
            return self._read_head(conn)

    def cas_head(self, expected_prev: bytes, new_epoch: Epoch) -> None:
        with self._tx("cas_head") as conn:
            check_cas(self._read_head(conn), expected_prev, new_epoch)
            conn.execute("INSERT INTO epochs(n, rec) VALUES(?, ?)", (new_epoch.number, new_epoch.to_bytes()))
            conn.execute("UPDATE head SET n = ? WHERE id = 0", (new_epoch.number,))

    def get_epoch(self, number: int) -> Optional[Epoch]:
        with self._io("get_epoch") as conn:
            row = conn.execute("SELECT rec FROM epochs WHERE n = ?", (int(number),)).fetchone()
        return None if row is None else Epoch.from_bytes(bytes(row[0]))

    def iter_epochs(self, start: int = 0, end: Optional[int] = None) -> Iterator[Epoch]:
        with self._io("iter_epochs") as conn:
            if end is None:
                rows = conn.execute("SELECT rec FROM epochs WHERE n >= ? ORDER BY n", (int(start),)).fetchall()
            else:
                rows = conn.execute(
                    "SELECT rec FROM epochs WHERE n >= ? AND n < ? ORDER BY n", (int(start), int(end))
                ).fetchall()
        for (rec,) in rows:
            yield Epoch.from_bytes(bytes(rec))

    # ---- key index ----

    def record_keys(self, keys: Iterable[bytes]) -> None:
        rows = [(bytes(k),) for k in keys]
        if not rows:
            return
        with self._tx("record_keys") as conn:
            conn.executemany("INSERT OR IGNORE INTO keys(k) VALUES(?)", rows)

    def scan_keys(self, start: Optional[bytes] = None, end: Optional[bytes] = None) -> Iterator[bytes]:
        sql = "SELECT k FROM keys"
        clauses, params = [], []
        if start is not None:
            clauses.append("k >= ?")
            params.append(bytes(start))
        if end is not None:
            clauses.append("k < ?")
            params.append(bytes(end))
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY k"
        with self._io("scan_keys") as conn:
            rows = conn.execute(sql, params).fetchall()
        for (k,) in rows:
            yield bytes(k)

    # ---- lifecycle ----

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()

    def __enter__(self) -> "SQLiteBackend":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SQLiteBackend(path={self.path!r})"


def open_sqlite_backend(path: Union[str, "os.PathLike[str]"] = ":memory:", **kw) -> SQLiteBackend:
    return SQLiteBackend(path, **kw)


__all__ = ["SQLiteBackend", "open_sqlite_backend", "DEFAULT_PRAGMAS"]
