"""
vstore.db
=========

Backend contract and the two reference backends.

URIs
----
- "memory://"                      → MemoryBackend
- "sqlite:///path/to/store.db"     → SQLite file (relative path)
- "sqlite:////abs/path/store.db"   → SQLite file (absolute path)
- "sqlite:///:memory:"             → in-memory SQLite
- bare "*.db" / "*.sqlite" paths   → SQLite file

Example
-------
>>> from vstore.db import open_backend
>>> be = open_backend("memory://")
>>> be.get_head().number
0
"""

from __future__ import annotations

from typing import Tuple

from ..errors import ConfigError
from .backend import Backend, KeyIndex, supports_key_index
from .memory import MemoryBackend
from .sqlite import SQLiteBackend, open_sqlite_backend

_SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")


def _parse_uri(uri: str) -> Tuple[str, str]:
    """Split a backend URI into (kind, path)."""
    u = (uri or "").strip()
    if u.startswith("memory://"):
        return ("memory", "")
    if u.startswith("sqlite:///"):
        return ("sqlite", u[len("sqlite:///"):] or ":memory:")
    if u.endswith(_SQLITE_SUFFIXES):
        return ("sqlite", u)
    raise ConfigError("unsupported backend URI", uri=uri)


def open_backend(uri: str) -> Backend:
    """Open a backend by URI. See module docstring for supported forms."""
    kind, path = _parse_uri(uri)
    if kind == "memory":
        return MemoryBackend()
    return open_sqlite_backend(path)


__all__ = [
    "Backend",
    "KeyIndex",
    "MemoryBackend",
    "SQLiteBackend",
    "open_backend",
    "open_sqlite_backend",
    "supports_key_index",
]
