"""
Backend adapter interface
=========================

The persistence contract every storage medium satisfies. The engine and the
authenticated map talk to storage only through these calls:

    get_node(digest)               -> bytes | None
    put_nodes({digest: bytes})     -> None        (batched, idempotent)
    get_head()                     -> Epoch       (genesis until first commit)
    cas_head(expected_prev, epoch) -> None        (atomic compare-and-swap)
    get_epoch(number)              -> Epoch | None
    iter_epochs(start, end)        -> Iterator[Epoch]
    close()                        -> None

Semantics
---------
- Nodes are content addressed: writing the same digest twice is harmless, and
  a stored node is never changed. Backends do not verify digests; readers do.
- `cas_head` succeeds only if the stored head root equals `expected_prev` and
  `epoch.number == head.number + 1`. It persists the epoch record and moves
  the head in one atomic step, otherwise raises ConflictError.
- Transient failures (connection loss, lock timeouts) surface as
  BackendIOError. Backends never retry; the engine owns retry policy.

Optional capability
-------------------
`KeyIndex` remembers raw keys so enumeration tooling can walk live keys in
lexicographic order. The tree itself only stores key digests.

Backends are duck-typed through `typing.Protocol`.
"""

from __future__ import annotations

from typing import (Iterable, Iterator, Mapping, Optional, Protocol,
                    runtime_checkable)

from ..epoch import Epoch
from ..errors import ConflictError


@runtime_checkable
class Backend(Protocol):
    def get_node(self, digest: bytes) -> Optional[bytes]: ...

    def put_nodes(self, nodes: Mapping[bytes, bytes]) -> None: ...

    def get_head(self) -> Epoch: ...

    def cas_head(self, expected_prev: bytes, new_epoch: Epoch) -> None: ...

    def get_epoch(self, number: int) -> Optional[Epoch]: ...

    def iter_epochs(self, start: int = 0, end: Optional[int] = None) -> Iterator[Epoch]: ...

    def close(self) -> None: ...


@runtime_checkable
class KeyIndex(Protocol):
    def record_keys(self, keys: Iterable[bytes]) -> None: ...

    def scan_keys(self, start: Optional[bytes] = None, end: Optional[bytes] = None) -> Iterator[bytes]: ...


def check_cas(head: Epoch, expected_prev: bytes, new_epoch: Epoch) -> None:
    """Shared CAS precondition; raises ConflictError on a lost race."""
    if head.root != expected_prev or new_epoch.number != head.number + 1:
        raise ConflictError(
            "head moved",
            expected=expected_prev,
            head_root=head.root,
            head_epoch=head.number,
            proposed_epoch=new_epoch.number,
        )
    if new_epoch.prev_root != expected_prev:
        raise ConflictError(
            "epoch does not link to expected head",
            expected=expected_prev,
            prev_root=new_epoch.prev_root,
        )


def supports_key_index(backend: object) -> bool:
    return isinstance(backend, KeyIndex)


def key_in_range(key: bytes, start: Optional[bytes], end: Optional[bytes]) -> bool:
    """Half-open lexicographic range check [start, end)."""
    if start is not None and key < start:
        return False
    if end is not None and key >= end:
        return False
    return True


__all__ = ["Backend", "KeyIndex", "check_cas", "supports_key_index", "key_in_range"]
