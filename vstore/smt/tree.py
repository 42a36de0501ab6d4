"""
vstore.smt.tree: the authenticated map

A sparse binary Merkle tree over the 256 bits of H(key), MSB first (bit 0
chooses the child below the root; 0 = left, 1 = right), kept in canonical
compressed form:

  • a subtree with no leaves is EMPTY
  • a subtree with exactly one leaf *is* that leaf, at the subtree's position
  • a subtree with two or more leaves is an internal node

Shape is a pure function of the key_digest → value_digest contents, so two
trees with the same contents have the same root however they were built.

Updates are path-copying. `apply` walks only the paths of the batch's keys,
re-uses every untouched sibling digest as-is, and hands all new node bytes to
the backend in a single `put_nodes` call. Value bytes are written into the same
content-addressed arena under H(value), which lets the engine materialize
values without a second store.

Nothing read from the backend is trusted: every node goes through
`decode_node`, which rejects bytes that do not hash to the referencing digest.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..batch import WriteBatch
from ..epoch import Epoch
from ..errors import ConflictError, CorruptionError
from ..logging import get_logger
from ..utils.bytes import BytesLike, b
from ..utils.hash import (DIGEST_BITS, EMPTY, bit_at, key_digest,
                          value_digest)
from .node import Internal, Leaf, Node, decode_node, parse_node
from .proof import Proof
from .proof import verify as _verify
from .proof import verify_digest as _verify_digest

log = get_logger("vstore.smt")

# (key_digest, value_digest or None for delete), sorted by key_digest
Mutations = Sequence[Tuple[bytes, Optional[bytes]]]

_EMPTY, _LEAF, _NODE = 0, 1, 2


@dataclass(frozen=True)
class ApplyResult:
    root: bytes
    base: Epoch
    nodes: Dict[bytes, bytes] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.root != self.base.root


def _split(muts: Mutations, depth: int) -> Tuple[Mutations, Mutations]:
    # muts are sorted by key digest, so all 0-bits precede all 1-bits at `depth`
    i = 0
    n = len(muts)
    while i < n and not bit_at(muts[i][0], depth):
        i += 1
    return muts[:i], muts[i:]


class SparseMerkleTree:
    def __init__(self, backend) -> None:
        self.backend = backend

    # ------------------------------------------------------------------ #
    # Node access
    # ------------------------------------------------------------------ #

    def _fetch(self, d: bytes, pending: Optional[Mapping[bytes, bytes]] = None) -> Node:
        if pending is not None and d in pending:
            return parse_node(pending[d])
        raw = self.backend.get_node(d)
        if raw is None:
            raise CorruptionError("referenced node missing", digest=d)
        return decode_node(raw, d)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def _walk(self, kd: bytes, root: bytes, siblings: Optional[List[bytes]] = None) -> Optional[Leaf]:
        cur = root
        depth = 0
        while cur != EMPTY:
            node = self._fetch(cur)
            if isinstance(node, Leaf):
                return node
            if depth >= DIGEST_BITS:
                raise CorruptionError("path deeper than key digest", root=root)
            bit = bit_at(kd, depth)
            if siblings is not None:
                siblings.append(node.child(1 - bit))
            cur = node.child(bit)
            depth += 1
        return None

    def get(self, key: BytesLike, root: bytes) -> Optional[bytes]:
        """Value digest bound to `key` under `root`, or None."""
        kd = key_digest(b(key))
        leaf = self._walk(kd, root)
        if leaf is None or leaf.key_digest != kd:
            return None
        return leaf.value_digest

    def prove(self, key: BytesLike, root: bytes) -> Proof:
        kd = key_digest(b(key))
        path: List[bytes] = []
        leaf = self._walk(kd, root, path)
        path.reverse()
        terminal = None if leaf is None else (leaf.key_digest, leaf.value_digest)
        return Proof(key_digest=kd, siblings=tuple(path), leaf=terminal)

    def iter_leaves(self, root: bytes) -> Iterator[Tuple[bytes, bytes]]:
        """Depth-first (key_digest, value_digest) pairs in key-digest order."""
        stack = [root]
        while stack:
            d = stack.pop()
            if d == EMPTY:
                continue
            node = self._fetch(d)
            if isinstance(node, Leaf):
                yield node.key_digest, node.value_digest
            else:
                stack.append(node.right)
                stack.append(node.left)

    # ------------------------------------------------------------------ #
    # Verification (pure)
    # ------------------------------------------------------------------ #

    @staticmethod
    def verify(proof: Proof, key: BytesLike, claimed_value: Optional[BytesLike], root: bytes) -> bool:
        return _verify(proof, key, claimed_value, root)

    @staticmethod
    def verify_digest(proof: Proof, key: BytesLike, claimed_value_digest: Optional[bytes], root: bytes) -> bool:
        return _verify_digest(proof, key, claimed_value_digest, root)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def apply(self, batch: WriteBatch, base_epoch: Epoch) -> ApplyResult:
        """
        Compute the root after `batch` on top of `base_epoch` and persist the new
        nodes. The head is not moved; that is the commit log's job.
        """
        head = self.backend.get_head()
        if head.number != base_epoch.number or head.root != base_epoch.root:
            raise ConflictError(
                "base epoch is no longer head",
                base_epoch=base_epoch.number,
                head_epoch=head.number,
            )

        blobs: Dict[bytes, bytes] = {}
        muts: List[Tuple[bytes, Optional[bytes]]] = []
        for k, v in batch.resolved().items():
            if v is None:
                muts.append((key_digest(k), None))
            else:
                vd = value_digest(v)
                blobs[vd] = v
                muts.append((key_digest(k), vd))
        muts.sort(key=lambda m: m[0])

        pending: Dict[bytes, bytes] = {}
        root, _ = self._update(base_epoch.root, None, muts, 0, pending)

        writes = dict(blobs)
        writes.update(pending)
        if writes:
            self.backend.put_nodes(writes)
        log.debug(
            "batch applied",
            extra={"mutations": len(muts), "new_nodes": len(pending), "root": root},
        )
        return ApplyResult(root=root, base=base_epoch, nodes=writes)

    def _put(self, node: Node, pending: Dict[bytes, bytes]) -> bytes:
        raw = node.encode()
        d = node.digest
        pending[d] = raw
        return d

    def _kind(self, d: bytes, kind: Optional[int], pending: Mapping[bytes, bytes]) -> int:
        if kind is not None:
            return kind
        if d == EMPTY:
            return _EMPTY
        return _LEAF if isinstance(self._fetch(d, pending), Leaf) else _NODE

    def _update(
        self,
        d: bytes,
        kind: Optional[int],
        muts: Mutations,
        depth: int,
        pending: Dict[bytes, bytes],
    ) -> Tuple[bytes, Optional[int]]:
        if not muts:
            return d, kind
        if d == EMPTY:
            return self._build([(kd, vd) for kd, vd in muts if vd is not None], depth, pending)

        node = self._fetch(d, pending)
        if isinstance(node, Leaf):
            leaves = {node.key_digest: node.value_digest}
            for kd, vd in muts:
                if vd is None:
                    leaves.pop(kd, None)
                else:
                    leaves[kd] = vd
            return self._build(sorted(leaves.items()), depth, pending)

        if depth >= DIGEST_BITS:
            raise CorruptionError("internal node at maximum depth", digest=d)
        lm, rm = _split(muts, depth)
        left, lk = self._update(node.left, None, lm, depth + 1, pending)
        right, rk = self._update(node.right, None, rm, depth + 1, pending)
        return self._join(left, lk, right, rk, pending)

    def _join(
        self,
        left: bytes,
        lk: Optional[int],
        right: bytes,
        rk: Optional[int],
        pending: Dict[bytes, bytes],
    ) -> Tuple[bytes, int]:
        lk = self._kind(left, lk, pending)
        rk = self._kind(right, rk, pending)
        if lk == _EMPTY and rk == _EMPTY:
            return EMPTY, _EMPTY
        # a lone leaf rises to the parent position
        if lk == _EMPTY and rk == _LEAF:
            return right, _LEAF
        if rk == _EMPTY and lk == _LEAF:
            return left, _LEAF
        return self._put(Internal(left, right), pending), _NODE

    def _build(self, leaves: Sequence[Tuple[bytes, bytes]], depth: int, pending: Dict[bytes, bytes]) -> Tuple[bytes, int]:
        if not leaves:
            return EMPTY, _EMPTY
        if len(leaves) == 1:
            kd, vd = leaves[0]
            return self._put(Leaf(kd, vd), pending), _LEAF
        if depth >= DIGEST_BITS:
            raise CorruptionError("distinct leaves share a full key digest", depth=depth)
        lm, rm = _split(leaves, depth)
        left, _ = self._build(lm, depth + 1, pending)
        right, _ = self._build(rm, depth + 1, pending)
        return self._put(Internal(left, right), pending), _NODE


__all__ = ["SparseMerkleTree", "ApplyResult"]
