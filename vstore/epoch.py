"""
vstore.epoch
============

Epochs and the commit log.

An epoch is the unit of versioning: `(number, root, prev_root, metadata)`.
Epoch 0 is genesis, with the empty-tree root and 32 zero bytes as prev_root.
Every later epoch links to its predecessor by carrying the predecessor's root
as `prev_root`, so a sequence of epochs forms a hash chain.

Record format (canonical CBOR, small integer keys):

    {1: number, 2: root, 3: prev_root, 4: metadata}

The log advances only through the backend's compare-and-swap, which checks
both the head root and the head number (a no-op commit keeps the root, so the
root alone cannot detect a lost race).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .encoding.cbor import dumps as cbor_dumps
from .encoding.cbor import loads as cbor_loads
from .errors import ConflictError, EncodingError
from .logging import get_logger
from .utils.bytes import from_hex, to_hex
from .utils.hash import EMPTY, ZERO32, check_digest

log = get_logger("vstore.epoch")

GENESIS_PREV_ROOT = ZERO32


@dataclass(frozen=True)
class Epoch:
    number: int
    root: bytes
    prev_root: bytes
    metadata: bytes = b""

    def __post_init__(self) -> None:
        if isinstance(self.number, bool) or not isinstance(self.number, int) or self.number < 0:
            raise EncodingError("epoch number must be a non-negative int", number=repr(self.number))
        check_digest(self.root, what="root")
        check_digest(self.prev_root, what="prev_root")
        if not isinstance(self.metadata, bytes):
            raise EncodingError("epoch metadata must be bytes", got=type(self.metadata).__name__)

    @classmethod
    def genesis(cls) -> "Epoch":
        return cls(number=0, root=EMPTY, prev_root=GENESIS_PREV_ROOT)

    @property
    def is_genesis(self) -> bool:
        return self.number == 0

    def successor(self, root: bytes, metadata: bytes = b"") -> "Epoch":
        return Epoch(number=self.number + 1, root=root, prev_root=self.root, metadata=metadata)

    # ---- encoding ----

    def to_bytes(self) -> bytes:
        return cbor_dumps({1: self.number, 2: self.root, 3: self.prev_root, 4: self.metadata})

    @classmethod
    def from_bytes(cls, data: bytes) -> "Epoch":
        m = cbor_loads(data)
        if not isinstance(m, dict) or set(m.keys()) != {1, 2, 3, 4}:
            raise EncodingError("malformed epoch record")
        if not isinstance(m[4], bytes):
            raise EncodingError("epoch metadata must be bytes")
        return cls(number=m[1], root=m[2], prev_root=m[3], metadata=m[4])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "root": to_hex(self.root),
            "prevRoot": to_hex(self.prev_root),
            "metadata": to_hex(self.metadata),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Epoch":
        try:
            return cls(
                number=int(d["number"]),
                root=from_hex(d["root"]),
                prev_root=from_hex(d["prevRoot"]),
                metadata=from_hex(d.get("metadata", "")),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise EncodingError(f"malformed epoch dict: {e}") from e


# --------------------------
# Chain checks
# --------------------------


def verify_chain(epochs: Sequence[Epoch]) -> bool:
    """True iff every epoch's prev_root equals the previous epoch's root."""
    for prev, cur in zip(epochs, epochs[1:]):
        if cur.prev_root != prev.root:
            return False
    return True


def find_breaks(epochs: Sequence[Epoch]) -> List[int]:
    """
    Audit a history and return the indices of offending epochs:
    a broken root link, a gap in numbering, or (index 0) a genesis epoch
    whose root/prev_root are not the empty-tree sentinel values.
    """
    bad: List[int] = []
    if epochs and epochs[0].number == 0:
        g = epochs[0]
        if g.root != EMPTY or g.prev_root != GENESIS_PREV_ROOT:
            bad.append(0)
    for i in range(1, len(epochs)):
        prev, cur = epochs[i - 1], epochs[i]
        if cur.prev_root != prev.root or cur.number != prev.number + 1:
            bad.append(i)
    return bad


# --------------------------
# Commit log
# --------------------------


class CommitLog:
    """Append-only epoch chain stored in a backend."""

    def __init__(self, backend: Any) -> None:
        self.backend = backend

    def head(self) -> Epoch:
        return self.backend.get_head()

    def epoch(self, number: int) -> Optional[Epoch]:
        return self.backend.get_epoch(number)

    def history(self, start: int = 0, end: Optional[int] = None) -> List[Epoch]:
        """Epochs with start <= number < end (end defaults to head + 1)."""
        return list(self.backend.iter_epochs(start, end))

    def iter(self, start: int = 0, end: Optional[int] = None) -> Iterator[Epoch]:
        return self.backend.iter_epochs(start, end)

    def advance(self, prev_root_expected: bytes, new_root: bytes, metadata: bytes = b"", *, base: Optional[Epoch] = None) -> Epoch:
        """
        Append an epoch on top of the head. `base` pins the head epoch the caller
        computed against; without it the current head is read and must match
        `prev_root_expected`.
        """
        head = base if base is not None else self.head()
        if head.root != prev_root_expected:
            raise ConflictError(
                "head moved",
                expected=prev_root_expected,
                head_root=head.root,
                head_epoch=head.number,
            )
        new = Epoch(number=head.number + 1, root=new_root, prev_root=prev_root_expected, metadata=metadata)
        self.backend.cas_head(prev_root_expected, new)
        log.debug("epoch advanced", extra={"epoch": new.number, "root": new.root.hex()})
        return new


__all__ = ["Epoch", "CommitLog", "GENESIS_PREV_ROOT", "verify_chain", "find_breaks"]
