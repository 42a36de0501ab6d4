"""
Shared fixtures:
- memory and SQLite backends (parametrized `backend`)
- an Engine wired to a private metrics registry and a recording sleep
- FlakyBackend: injects BackendIOError / ConflictError around cas_head
- OvertakenBackend: our CAS lands, a rival commits on top, then the call fails
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, List

import pytest

from vstore.batch import WriteBatch
from vstore.db.memory import MemoryBackend
from vstore.db.sqlite import SQLiteBackend
from vstore.engine import Engine
from vstore.epoch import Epoch
from vstore.errors import BackendIOError
from vstore.metrics import StoreMetrics


@pytest.fixture
def memory_backend() -> Iterator[MemoryBackend]:
    be = MemoryBackend()
    yield be
    be.close()


@pytest.fixture
def sqlite_backend(tmp_path: Path) -> Iterator[SQLiteBackend]:
    be = SQLiteBackend(tmp_path / "store.db")
    yield be
    be.close()


@pytest.fixture(params=["memory", "sqlite"])
def backend(request: pytest.FixtureRequest, tmp_path: Path):
    if request.param == "memory":
        be = MemoryBackend()
    else:
        be = SQLiteBackend(tmp_path / f"{request.node.name}.db")
    yield be
    be.close()


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def engine(backend, sleeps: SleepRecorder) -> Engine:
    return Engine(backend, metrics=StoreMetrics(), sleep=sleeps)


class FlakyBackend(MemoryBackend):
    """
    MemoryBackend whose first `fail_cas` calls to cas_head raise BackendIOError.
    With `land=True` the CAS is applied before the error is raised, as when a
    connection drops after the server committed.
    """

    def __init__(self, fail_cas: int = 0, *, land: bool = False) -> None:
        super().__init__()
        self.fail_cas = fail_cas
        self.land = land
        self.cas_calls = 0

    def cas_head(self, expected_prev: bytes, new_epoch: Epoch) -> None:
        self.cas_calls += 1
        if self.fail_cas > 0:
            self.fail_cas -= 1
            if self.land:
                super().cas_head(expected_prev, new_epoch)
            raise BackendIOError("connection reset", op="cas_head")
        super().cas_head(expected_prev, new_epoch)


class RacingBackend(MemoryBackend):
    """
    MemoryBackend where another writer slips in a commit right before each of
    the first `races` CAS attempts.
    """

    def __init__(self, races: int = 1) -> None:
        super().__init__()
        self.races = races
        self.rival_keys: List[bytes] = []

    def cas_head(self, expected_prev: bytes, new_epoch: Epoch) -> None:
        if self.races > 0:
            self.races -= 1
            rival = Engine(MemoryBackendView(self))
            key = f"rival-{len(self.rival_keys)}".encode()
            self.rival_keys.append(key)
            rival.put(key, b"r")
        super().cas_head(expected_prev, new_epoch)


class OvertakenBackend(MemoryBackend):
    """
    MemoryBackend whose first CAS lands, then another writer commits
    `rival` on top of it, and only then the call fails with BackendIOError.
    """

    def __init__(self, rival: WriteBatch) -> None:
        super().__init__()
        self.rival = rival
        self.cas_calls = 0

    def cas_head(self, expected_prev: bytes, new_epoch: Epoch) -> None:
        self.cas_calls += 1
        super().cas_head(expected_prev, new_epoch)
        if self.cas_calls == 1:
            Engine(MemoryBackendView(self)).commit(self.rival)
            raise BackendIOError("connection reset", op="cas_head")


class MemoryBackendView:
    """Shares a MemoryBackend's state but bypasses subclass hooks."""

    def __init__(self, inner: MemoryBackend) -> None:
        self._inner = inner

    def get_node(self, digest: bytes):
        return MemoryBackend.get_node(self._inner, digest)

    def put_nodes(self, nodes) -> None:
        MemoryBackend.put_nodes(self._inner, nodes)

    def get_head(self) -> Epoch:
        return MemoryBackend.get_head(self._inner)

    def cas_head(self, expected_prev: bytes, new_epoch: Epoch) -> None:
        MemoryBackend.cas_head(self._inner, expected_prev, new_epoch)

    def get_epoch(self, number: int):
        return MemoryBackend.get_epoch(self._inner, number)

    def iter_epochs(self, start: int = 0, end=None):
        return MemoryBackend.iter_epochs(self._inner, start, end)

    def close(self) -> None:
        pass


@pytest.fixture
def flaky_factory():
    return FlakyBackend


@pytest.fixture
def racing_factory():
    return RacingBackend


@pytest.fixture
def overtaken_factory():
    return OvertakenBackend
