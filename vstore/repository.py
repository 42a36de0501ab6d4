"""
vstore.repository: SAID-addressed record stores on top of the engine

Records are written through `Engine.commit`, so every stored version is covered
by an epoch root and can be proven.

Key layout (UTF-8):

    <namespace>/said/<said>       canonical bytes of the record
    <namespace>/latest/<prefix>   SAID of the newest version (versioned only)

A versioned write stores the new version and moves the latest pointer in the
same commit, pinned to the epoch the precondition was read at. A concurrent
writer therefore surfaces as ConflictError rather than a lost update.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, List, Optional, Type, TypeVar

from .batch import WriteBatch
from .encoding.canonical import encode_record
from .engine import Engine
from .epoch import Epoch
from .errors import ConflictError, InvalidSaid, NotFound
from .logging import get_logger
from .said import SelfAddressed, Versioned
from .smt.proof import Proof
from .smt.proof import verify as _verify

log = get_logger("vstore.repository")

S = TypeVar("S", bound=SelfAddressed)
V = TypeVar("V", bound=Versioned)


def said_key(namespace: str, said: str) -> bytes:
    return f"{namespace}/said/{said}".encode("utf-8")


def latest_key(namespace: str, prefix: str) -> bytes:
    return f"{namespace}/latest/{prefix}".encode("utf-8")


class _Base(Generic[S]):
    def __init__(self, engine: Engine, record_type: Type[S], namespace: str) -> None:
        if not namespace or "/" in namespace:
            raise ValueError("namespace must be a non-empty string without '/'")
        self.engine = engine
        self.record_type = record_type
        self.namespace = namespace

    def get_by_said(self, said: str, epoch: Optional[int] = None) -> Optional[S]:
        item = self.engine.get_record(said_key(self.namespace, said), self.record_type, epoch)
        if item is not None and item.get_said() != said:
            raise InvalidSaid("stored record does not carry its key SAID", said=said, got=item.get_said())
        return item

    def get_by_said_or_raise(self, said: str) -> S:
        item = self.get_by_said(said)
        if item is None:
            raise NotFound("no record with this SAID", namespace=self.namespace, said=said)
        return item


class UnversionedRepository(_Base[S]):
    def create(self, item: S) -> S:
        item.derive_said()
        return self.insert(item)

    def insert(self, item: S) -> S:
        item.verify_said()
        self.engine.put(said_key(self.namespace, item.get_said()), encode_record(item))
        return item


@dataclass(frozen=True)
class LatestProof(Generic[V]):
    """The latest version of a prefix plus proofs of both keys at one epoch."""

    record: V
    epoch: Epoch
    pointer_proof: Proof
    record_proof: Proof
    namespace: str

    def verify(self, root: Optional[bytes] = None) -> bool:
        root = self.epoch.root if root is None else root
        said = self.record.get_said()
        return _verify(
            self.pointer_proof, latest_key(self.namespace, self.record.get_prefix()), said.encode("utf-8"), root
        ) and _verify(self.record_proof, said_key(self.namespace, said), encode_record(self.record), root)


class VersionedRepository(_Base[V]):
    def create(self, item: V) -> V:
        item.derive_prefix()
        return self.insert(item)

    def update(self, item: V) -> V:
        item.increment()
        return self.insert(item)

    def insert(self, item: V) -> V:
        item.verify()
        head = self.engine.head()
        latest_said = self._latest_said(item.get_prefix(), head.number)

        if item.get_version() == 0:
            if latest_said is not None:
                raise ConflictError("prefix already exists", prefix=item.get_prefix())
        else:
            latest = None if latest_said is None else self.get_by_said(latest_said, head.number)
            if latest is None:
                raise ConflictError("no prior version for prefix", prefix=item.get_prefix())
            if item.get_previous() != latest.get_said() or item.get_version() != latest.get_version() + 1:
                raise ConflictError(
                    "version does not extend latest",
                    prefix=item.get_prefix(),
                    latest=latest.get_said(),
                    latest_version=latest.get_version(),
                    previous=item.get_previous(),
                    version=item.get_version(),
                )

        batch = WriteBatch()
        batch.put(said_key(self.namespace, item.get_said()), encode_record(item))
        batch.put(latest_key(self.namespace, item.get_prefix()), item.get_said().encode("utf-8"))
        epoch = self.engine.commit(batch, base=head)
        log.debug(
            "version stored",
            extra={"prefix": item.get_prefix(), "version": item.get_version(), "epoch": epoch.number},
        )
        return item

    def _latest_said(self, prefix: str, epoch: Optional[int] = None) -> Optional[str]:
        raw = self.engine.get_value(latest_key(self.namespace, prefix), epoch)
        return None if raw is None else raw.decode("utf-8")

    def get_latest(self, prefix: str, epoch: Optional[int] = None) -> Optional[V]:
        said = self._latest_said(prefix, epoch)
        return None if said is None else self.get_by_said(said, epoch)

    def get_history(self, prefix: str) -> List[V]:
        """All versions of `prefix`, oldest first, following `previous` links."""
        out: List[V] = []
        cur = self.get_latest(prefix)
        while cur is not None:
            out.append(cur)
            prev = cur.get_previous()
            if prev is None:
                break
            nxt = self.get_by_said(prev)
            if nxt is None:
                raise NotFound("history link missing", prefix=prefix, said=prev)
            if nxt.get_version() + 1 != cur.get_version():
                raise InvalidSaid("history versions not consecutive", prefix=prefix, said=prev)
            cur = nxt
        out.reverse()
        return out

    def exists(self, prefix: str) -> bool:
        return self.engine.get(latest_key(self.namespace, prefix)) is not None

    def prove_latest(self, prefix: str) -> LatestProof[V]:
        head = self.engine.head()
        record = self.get_latest(prefix, head.number)
        if record is None:
            raise NotFound("no record for prefix", namespace=self.namespace, prefix=prefix)
        return LatestProof(
            record=record,
            epoch=head,
            pointer_proof=self.engine.prove(latest_key(self.namespace, prefix), head),
            record_proof=self.engine.prove(said_key(self.namespace, record.get_said()), head),
            namespace=self.namespace,
        )


__all__ = [
    "UnversionedRepository",
    "VersionedRepository",
    "LatestProof",
    "said_key",
    "latest_key",
]
