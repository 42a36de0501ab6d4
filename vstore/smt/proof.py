"""
vstore.smt.proof: membership / non-membership proofs

A proof for key K against a root is the path the tree walks for H(K):

    key_digest   H(K)
    siblings     sibling digests from the terminal node up to the root
    terminal     where the walk stopped:
                   EMPTY            nothing stored on this path
                   Leaf(kd, vd)     the single leaf in this subtree

Verification never touches storage. It folds the siblings over the terminal
digest, choosing left/right from the bits of H(K), and compares the result
with the claimed root:

* inclusion of (K, V):  terminal is Leaf(H(K), H(V))
* non-inclusion of K:   terminal is EMPTY, or a *divergent* leaf whose key
                        digest differs from H(K) but shares the first
                        len(siblings) bits with it (the leaf occupies K's
                        path position, so K cannot also be present)

Wire format (canonical CBOR, integer keys)
------------------------------------------
    {0: version (=1), 1: key_digest, 2: [siblings leaf→root],
     3: terminal kind (0 empty, 1 leaf), 4: leaf key digest, 5: leaf value digest}

Keys 4 and 5 are present exactly when the terminal is a leaf. Unknown versions
and malformed shapes raise EncodingError.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..encoding.cbor import dumps as cbor_dumps
from ..encoding.cbor import loads as cbor_loads
from ..errors import EncodingError
from ..utils.bytes import BytesLike, b, from_hex, to_hex
from ..utils.hash import (DIGEST_BITS, DIGEST_SIZE, EMPTY, bit_at, check_digest,
                          common_prefix_bits, key_digest, leaf_digest,
                          node_digest, value_digest)

PROOF_FORMAT_VERSION = 1

TERMINAL_EMPTY = 0
TERMINAL_LEAF = 1


@dataclass(frozen=True)
class Proof:
    key_digest: bytes
    siblings: Tuple[bytes, ...] = field(default_factory=tuple)
    leaf: Optional[Tuple[bytes, bytes]] = None  # (key_digest, value_digest) or None for EMPTY

    @property
    def depth(self) -> int:
        return len(self.siblings)

    @property
    def terminal_kind(self) -> int:
        return TERMINAL_EMPTY if self.leaf is None else TERMINAL_LEAF

    @property
    def is_inclusion(self) -> bool:
        """True when the terminal leaf belongs to this proof's key."""
        return self.leaf is not None and self.leaf[0] == self.key_digest

    @property
    def value_digest(self) -> Optional[bytes]:
        return self.leaf[1] if self.is_inclusion else None  # type: ignore[index]

    def terminal_digest(self) -> bytes:
        if self.leaf is None:
            return EMPTY
        return leaf_digest(*self.leaf)

    def compute_root(self) -> bytes:
        """Fold siblings over the terminal; the result is the root this proof commits to."""
        cur = self.terminal_digest()
        depth = len(self.siblings)
        for i, sib in enumerate(self.siblings):
            level = depth - 1 - i
            if bit_at(self.key_digest, level):
                cur = node_digest(sib, cur)
            else:
                cur = node_digest(cur, sib)
        return cur

    # ---- encoding ----

    def to_bytes(self) -> bytes:
        m: Dict[int, Any] = {
            0: PROOF_FORMAT_VERSION,
            1: self.key_digest,
            2: list(self.siblings),
            3: self.terminal_kind,
        }
        if self.leaf is not None:
            m[4], m[5] = self.leaf
        return cbor_dumps(m)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Proof":
        m = cbor_loads(data)
        if not isinstance(m, dict):
            raise EncodingError("proof must be a CBOR map")
        if m.get(0) != PROOF_FORMAT_VERSION:
            raise EncodingError("unsupported proof format version", version=m.get(0))
        kind = m.get(3)
        expected = {0, 1, 2, 3} | ({4, 5} if kind == TERMINAL_LEAF else set())
        if kind not in (TERMINAL_EMPTY, TERMINAL_LEAF) or set(m.keys()) != expected:
            raise EncodingError("malformed proof map", keys=sorted(m.keys()), kind=kind)
        sibs = m[2]
        if not isinstance(sibs, list) or len(sibs) > DIGEST_BITS:
            raise EncodingError("siblings must be a list of at most 256 digests")
        leaf = None
        if kind == TERMINAL_LEAF:
            leaf = (check_digest(m[4], what="leaf key digest"), check_digest(m[5], what="leaf value digest"))
        return cls(
            key_digest=check_digest(m[1], what="key digest"),
            siblings=tuple(check_digest(s, what="sibling") for s in sibs),
            leaf=leaf,
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "version": PROOF_FORMAT_VERSION,
            "keyDigest": to_hex(self.key_digest),
            "siblings": [to_hex(s) for s in self.siblings],
            "terminal": "leaf" if self.leaf is not None else "empty",
        }
        if self.leaf is not None:
            d["leafKeyDigest"] = to_hex(self.leaf[0])
            d["leafValueDigest"] = to_hex(self.leaf[1])
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Proof":
        if not isinstance(d, dict):
            raise EncodingError("proof must be a JSON object", type=type(d).__name__)
        try:
            if int(d.get("version", PROOF_FORMAT_VERSION)) != PROOF_FORMAT_VERSION:
                raise EncodingError("unsupported proof format version", version=d.get("version"))
            terminal = d["terminal"]
            leaf = None
            if terminal == "leaf":
                leaf = (
                    check_digest(from_hex(d["leafKeyDigest"]), what="leaf key digest"),
                    check_digest(from_hex(d["leafValueDigest"]), what="leaf value digest"),
                )
            elif terminal != "empty":
                raise EncodingError("unknown terminal kind", terminal=terminal)
            sibs = d["siblings"]
            if len(sibs) > DIGEST_BITS:
                raise EncodingError("too many siblings", count=len(sibs))
            return cls(
                key_digest=check_digest(from_hex(d["keyDigest"]), what="key digest"),
                siblings=tuple(check_digest(from_hex(s), what="sibling") for s in sibs),
                leaf=leaf,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise EncodingError(f"malformed proof dict: {e}") from e


# --------------------------
# Verification
# --------------------------


def _is_digest(x: object) -> bool:
    return isinstance(x, bytes) and len(x) == DIGEST_SIZE


def _well_formed(proof: Proof) -> bool:
    if not _is_digest(proof.key_digest):
        return False
    sibs = proof.siblings
    if not isinstance(sibs, (tuple, list)) or len(sibs) > DIGEST_BITS:
        return False
    if not all(_is_digest(s) for s in sibs):
        return False
    if proof.leaf is None:
        return True
    return (
        isinstance(proof.leaf, tuple)
        and len(proof.leaf) == 2
        and _is_digest(proof.leaf[0])
        and _is_digest(proof.leaf[1])
    )


def verify_digest(proof: Proof, key: BytesLike, claimed_value_digest: Optional[bytes], root: bytes) -> bool:
    """
    Pure check of `proof` for `key` against `root`.

    claimed_value_digest=None asks "is `key` absent?"; otherwise "is `key`
    bound to this value digest?". Returns False on any mismatch, including a
    hand-built proof whose fields are not 32-byte digests. A bad proof or root
    never raises.
    """
    if not _well_formed(proof):
        return False
    if claimed_value_digest is not None and not _is_digest(claimed_value_digest):
        return False
    if not _is_digest(root):
        return False
    kd = key_digest(b(key))
    if not hmac.compare_digest(proof.key_digest, kd):
        return False
    depth = len(proof.siblings)

    if claimed_value_digest is not None:
        if proof.leaf is None:
            return False
        lkd, lvd = proof.leaf
        if lkd != kd or not hmac.compare_digest(lvd, claimed_value_digest):
            return False
    elif proof.leaf is not None:
        lkd, _ = proof.leaf
        if lkd == kd:
            return False
        if common_prefix_bits(lkd, kd) < depth:
            return False

    return hmac.compare_digest(proof.compute_root(), root)


def verify(proof: Proof, key: BytesLike, claimed_value: Optional[BytesLike], root: bytes) -> bool:
    """Like verify_digest, for callers holding the value bytes."""
    vd = None if claimed_value is None else value_digest(b(claimed_value))
    return verify_digest(proof, key, vd, root)


__all__ = [
    "Proof",
    "PROOF_FORMAT_VERSION",
    "TERMINAL_EMPTY",
    "TERMINAL_LEAF",
    "verify",
    "verify_digest",
]
