"""
vstore.batch
============

Ordered write batches. A batch is applied as a whole into exactly one new
epoch. Within a batch the last mutation for a key wins.

    batch = WriteBatch()
    batch.put(b"alice", b"1")
    batch.delete(b"bob")
    with engine.batch() as b:      # commit on clean exit
        b.put(b"carol", b"3")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .encoding.canonical import encode_record
from .utils.bytes import BytesLike, b


class _Tombstone:
    __slots__ = ()

    def __repr__(self) -> str:
        return "TOMBSTONE"

    def __reduce__(self) -> str:
        return "TOMBSTONE"


TOMBSTONE = _Tombstone()

Mutation = Tuple[bytes, Union[bytes, _Tombstone]]


@dataclass
class WriteBatch:
    ops: List[Mutation] = field(default_factory=list)

    @classmethod
    def of(cls, items: Iterable[Tuple[BytesLike, Any]]) -> "WriteBatch":
        """Build from (key, value) pairs; a value of None or TOMBSTONE deletes."""
        out = cls()
        for k, v in items:
            if v is None or v is TOMBSTONE:
                out.delete(k)
            else:
                out.put(k, v)
        return out

    def put(self, key: BytesLike, value: Any) -> "WriteBatch":
        """Queue a write. `value` may be bytes or a canonical record."""
        self.ops.append((b(key), encode_record(value)))
        return self

    def delete(self, key: BytesLike) -> "WriteBatch":
        self.ops.append((b(key), TOMBSTONE))
        return self

    def extend(self, other: "WriteBatch") -> "WriteBatch":
        self.ops.extend(other.ops)
        return self

    def resolved(self) -> Dict[bytes, Optional[bytes]]:
        """Last-write-wins view: key -> value bytes, or None for deletion."""
        out: Dict[bytes, Optional[bytes]] = {}
        for k, v in self.ops:
            out[k] = None if v is TOMBSTONE else v  # type: ignore[assignment]
        return out

    def keys(self) -> List[bytes]:
        return list(self.resolved().keys())

    def __len__(self) -> int:
        return len(self.ops)

    def __bool__(self) -> bool:
        return bool(self.ops)

    def __iter__(self) -> Iterator[Mutation]:
        return iter(self.ops)


__all__ = ["WriteBatch", "TOMBSTONE", "Mutation"]
