"""
vstore.engine: the facade callers use

    engine = Engine(open_backend("sqlite:///store.db"))
    epoch = engine.put(b"alice", b"1")
    proof = engine.prove(b"alice")
    assert Engine.verify(proof, b"alice", b"1", epoch.root)

Commit protocol
---------------
    head = backend.get_head()
    result = tree.apply(batch, head)          # writes new nodes, not the head
    backend.cas_head(head.root, head+1)       # the only serialization point

On ConflictError the engine re-reads the head and recomputes the batch
against it. On BackendIOError it first checks whether its epoch already became
head (the CAS may have landed before the connection dropped), and otherwise
sleeps with capped exponential backoff before trying again. After
`max_retries` retries it gives up with CommitAbortedError. Nothing below the
engine retries.

Readers never lock: every published epoch references immutable nodes.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Type, TypeVar, Union

from .batch import WriteBatch
from .config import Config, EngineConfig
from .config import load as load_config
from .db import open_backend
from .db.backend import supports_key_index
from .encoding.canonical import decode_record, encode_record
from .epoch import CommitLog, Epoch, find_breaks, verify_chain
from .errors import (BackendIOError, CommitAbortedError, ConflictError,
                     CorruptionError, InternalError, NotFound, VStoreError)
from .logging import get_logger
from .metrics import StoreMetrics
from .smt.proof import Proof
from .smt.proof import verify as _verify
from .smt.proof import verify_digest as _verify_digest
from .smt.tree import SparseMerkleTree
from .utils.bytes import BytesLike, b
from .utils.hash import sha3_256

log = get_logger("vstore.engine")

R = TypeVar("R")
EpochRef = Union[None, int, Epoch]


class Engine:
    def __init__(
        self,
        backend: Any,
        config: Union[Config, EngineConfig, None] = None,
        metrics: Optional[StoreMetrics] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if isinstance(config, Config):
            engine_cfg = config.engine
            metrics = metrics or StoreMetrics(
                namespace=config.metrics.namespace, enabled=config.metrics.enabled
            )
        else:
            engine_cfg = config or EngineConfig()
        engine_cfg.validate()
        self.backend = backend
        self.config = engine_cfg
        self.metrics = metrics or StoreMetrics()
        self.tree = SparseMerkleTree(backend)
        self.log = CommitLog(backend)
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Config, **kw: Any) -> "Engine":
        return cls(open_backend(config.backend.uri), config, **kw)

    def close(self) -> None:
        self.backend.close()

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def _backoff(self, retry: int) -> float:
        # retry: 1,2,3,... -> base * 2^(retry-1), capped
        return min(self.config.backoff_max, self.config.backoff_base * (2 ** (retry - 1)))

    def commit(self, batch: WriteBatch, metadata: bytes = b"", *, base: Optional[Epoch] = None) -> Epoch:
        """
        Apply `batch` as exactly one new epoch and return it.

        With `base`, the caller has read state at that epoch and the batch is
        only valid on top of it: a moved head raises ConflictError instead of
        being recomputed.
        """
        metadata = b(metadata)
        retries = 0
        last: Optional[VStoreError] = None
        with self.metrics.time_commit() as outcome:
            while True:
                proposed: Optional[Epoch] = None
                try:
                    head = self.log.head()
                    if base is not None and head != base:
                        raise ConflictError("head moved since read", base_epoch=base.number, head_epoch=head.number)
                    result = self.tree.apply(batch, head)
                    proposed = head.successor(result.root, metadata)
                    if supports_key_index(self.backend):
                        self.backend.record_keys(k for k, v in batch.resolved().items() if v is not None)
                    self.log.advance(head.root, proposed.root, metadata, base=head)
                    outcome.ok()
                    log.info(
                        "epoch committed",
                        extra={"epoch": proposed.number, "root": proposed.root, "retries": retries},
                    )
                    return proposed
                except ConflictError as e:
                    self.metrics.note_conflict()
                    if base is not None:
                        outcome.fail("conflict")
                        raise
                    last, reason = e, "conflict"
                except BackendIOError as e:
                    last, reason = e, "backend_io"
                    landed = self._landed(proposed)
                    if landed is not None:
                        outcome.ok()
                        log.info("epoch committed despite backend error", extra={"epoch": landed.number})
                        return landed
                except CorruptionError:
                    self.metrics.note_corruption()
                    outcome.fail("corruption")
                    raise

                if retries >= self.config.max_retries:
                    self.metrics.note_abort()
                    outcome.fail("aborted")
                    log.warning(
                        "commit aborted",
                        extra={"attempts": retries + 1, "last_error": str(last)},
                    )
                    err = CommitAbortedError(retries + 1, last_code=str(getattr(last.code, "value", last.code)))
                    raise err.with_cause(last) from last
                retries += 1
                self.metrics.note_retry(reason)
                log.debug("retrying commit", extra={"retry": retries, "reason": reason})
                if reason == "backend_io":
                    self._sleep(self._backoff(retries))

    def _landed(self, proposed: Optional[Epoch]) -> Optional[Epoch]:
        # Look up our own epoch number: other writers may already have
        # committed on top of it, so the head alone cannot tell.
        if proposed is None:
            return None
        try:
            stored = self.log.epoch(proposed.number)
        except BackendIOError:
            return None
        return stored if stored == proposed else None

    def put(self, key: BytesLike, value: Any, metadata: bytes = b"") -> Epoch:
        return self.commit(WriteBatch().put(key, value), metadata)

    def delete(self, key: BytesLike, metadata: bytes = b"") -> Epoch:
        return self.commit(WriteBatch().delete(key), metadata)

    @contextmanager
    def batch(self, metadata: bytes = b"") -> Iterator[WriteBatch]:
        """Collect mutations and commit them on clean exit (nothing on error)."""
        wb = WriteBatch()
        yield wb
        self.commit(wb, metadata)

    def put_record(self, key: BytesLike, record: Any, metadata: bytes = b"") -> Epoch:
        return self.commit(WriteBatch().put(key, encode_record(record)), metadata)

    # ------------------------------------------------------------------ #
    # Epochs
    # ------------------------------------------------------------------ #

    def head(self) -> Epoch:
        return self.log.head()

    def epoch(self, number: int) -> Optional[Epoch]:
        return self.log.epoch(number)

    def history(self, start: int = 0, end: Optional[int] = None) -> List[Epoch]:
        return self.log.history(start, end)

    def verify_history(self) -> bool:
        epochs = self.history()
        ok = verify_chain(epochs) and not find_breaks(epochs)
        if not ok:
            log.error("epoch chain broken", extra={"breaks": find_breaks(epochs)})
        return ok

    def resolve(self, epoch: EpochRef) -> Epoch:
        """The epoch for a reference: None is the head, an int is looked up."""
        if epoch is None:
            return self.log.head()
        if isinstance(epoch, Epoch):
            return epoch
        found = self.log.epoch(int(epoch))
        if found is None:
            raise NotFound("unknown epoch", epoch=epoch)
        return found

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def _read(self, fn: Callable[[], R]) -> R:
        try:
            return fn()
        except CorruptionError:
            self.metrics.note_corruption()
            raise

    def get(self, key: BytesLike, epoch: EpochRef = None) -> Optional[bytes]:
        """Value digest for `key` at `epoch` (head by default), or None."""
        root = self.resolve(epoch).root
        return self._read(lambda: self.tree.get(key, root))

    def get_value(self, key: BytesLike, epoch: EpochRef = None) -> Optional[bytes]:
        """Value bytes for `key`, checked against the committed value digest."""
        vd = self.get(key, epoch)
        if vd is None:
            return None
        raw = self.backend.get_node(vd)
        if raw is None:
            self.metrics.note_corruption("missing_value")
            raise CorruptionError("value blob missing", key=b(key), value_digest=vd)
        if sha3_256(raw) != vd:
            self.metrics.note_corruption()
            raise CorruptionError("value blob digest mismatch", key=b(key), value_digest=vd)
        return raw

    def get_value_or_raise(self, key: BytesLike, epoch: EpochRef = None) -> bytes:
        v = self.get_value(key, epoch)
        if v is None:
            raise NotFound("key not found", key=b(key))
        return v

    def get_record(self, key: BytesLike, record_type: Type[R], epoch: EpochRef = None) -> Optional[R]:
        raw = self.get_value(key, epoch)
        return None if raw is None else decode_record(record_type, raw)

    def iter_keys(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        epoch: EpochRef = None,
    ) -> Iterator[bytes]:
        """Live keys at `epoch` in lexicographic order over [start, end)."""
        if not supports_key_index(self.backend):
            raise InternalError("backend does not index keys", backend=type(self.backend).__name__)
        root = self.resolve(epoch).root
        for k in self.backend.scan_keys(start, end):
            if self._read(lambda: self.tree.get(k, root)) is not None:
                yield k

    # ------------------------------------------------------------------ #
    # Proofs
    # ------------------------------------------------------------------ #

    def prove(self, key: BytesLike, epoch: EpochRef = None) -> Proof:
        root = self.resolve(epoch).root
        proof = self._read(lambda: self.tree.prove(key, root))
        self.metrics.note_proof(inclusion=proof.is_inclusion)
        return proof

    @staticmethod
    def verify(proof: Proof, key: BytesLike, claimed_value: Optional[BytesLike], root: bytes) -> bool:
        return _verify(proof, key, claimed_value, root)

    @staticmethod
    def verify_digest(proof: Proof, key: BytesLike, claimed_value_digest: Optional[bytes], root: bytes) -> bool:
        return _verify_digest(proof, key, claimed_value_digest, root)

    def check_proof(self, proof: Proof, key: BytesLike, claimed_value: Optional[BytesLike], root: bytes) -> bool:
        """`verify` that also records the outcome in metrics."""
        ok = _verify(proof, key, claimed_value, root)
        self.metrics.note_verification(ok)
        return ok


def open_engine(uri: Optional[str] = None, config: Optional[Config] = None, **kw: Any) -> Engine:
    """Open an engine on `uri`, or on `config.backend.uri`."""
    if config is None:
        config = load_config(backend={"uri": uri}) if uri else load_config()
    elif uri:
        config.backend.uri = uri
    return Engine.from_config(config, **kw)


__all__ = ["Engine", "open_engine"]
