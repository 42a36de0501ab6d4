"""
vstore.smt: authenticated map

- node.py   stored node layout and digest-checked decoding
- proof.py  Proof type, wire format, pure verification
- tree.py   SparseMerkleTree: get / apply / prove / iter_leaves
"""

from __future__ import annotations

from .node import Internal, Leaf, decode_node
from .proof import PROOF_FORMAT_VERSION, Proof, verify, verify_digest
from .tree import ApplyResult, SparseMerkleTree

__all__ = [
    "Leaf",
    "Internal",
    "decode_node",
    "Proof",
    "PROOF_FORMAT_VERSION",
    "verify",
    "verify_digest",
    "SparseMerkleTree",
    "ApplyResult",
]
