"""
In-process backend
==================

Dict-backed implementation of the backend contract plus `KeyIndex`. One
`threading.Lock` guards the head, which makes `cas_head` atomic across threads.
Node reads take no lock: dict reads of immutable bytes are safe under the GIL,
and a node becomes reachable only after the epoch that references it is
published.

Used by tests and as the default for `open_backend("memory://")`.
"""

from __future__ import annotations

import bisect
import threading
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

from ..epoch import Epoch
from .backend import check_cas, key_in_range


class MemoryBackend:
    def __init__(self) -> None:
        self._nodes: Dict[bytes, bytes] = {}
        self._epochs: List[Epoch] = [Epoch.genesis()]
        self._keys: List[bytes] = []
        self._key_set: set[bytes] = set()
        self._lock = threading.Lock()
        self._closed = False

    # ---- nodes ----

    def get_node(self, digest: bytes) -> Optional[bytes]:
        return self._nodes.get(bytes(digest))

    def put_nodes(self, nodes: Mapping[bytes, bytes]) -> None:
        if not nodes:
            return
        with self._lock:
            for d, raw in nodes.items():
                self._nodes.setdefault(bytes(d), bytes(raw))

    def node_count(self) -> int:
        return len(self._nodes)

    # ---- epochs ----

    def get_head(self) -> Epoch:
        return self._epochs[-1]

    def cas_head(self, expected_prev: bytes, new_epoch: Epoch) -> None:
        with self._lock:
            check_cas(self._epochs[-1], expected_prev, new_epoch)
            self._epochs.append(new_epoch)

    def get_epoch(self, number: int) -> Optional[Epoch]:
        epochs = self._epochs
        if 0 <= number < len(epochs):
            return epochs[number]
        return None

    def iter_epochs(self, start: int = 0, end: Optional[int] = None) -> Iterator[Epoch]:
        snapshot = list(self._epochs)
        stop = len(snapshot) if end is None else min(end, len(snapshot))
        for i in range(max(start, 0), stop):
            yield snapshot[i]

    # ---- key index ----

    def record_keys(self, keys: Iterable[bytes]) -> None:
        with self._lock:
            for k in keys:
                k = bytes(k)
                if k not in self._key_set:
                    self._key_set.add(k)
                    bisect.insort(self._keys, k)

    def scan_keys(self, start: Optional[bytes] = None, end: Optional[bytes] = None) -> Iterator[bytes]:
        with self._lock:
            keys = list(self._keys)
        lo = 0 if start is None else bisect.bisect_left(keys, start)
        for k in keys[lo:]:
            if not key_in_range(k, start, end):
                break
            yield k

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> "MemoryBackend":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"MemoryBackend(nodes={len(self._nodes)}, head={self._epochs[-1].number})"


__all__ = ["MemoryBackend"]
