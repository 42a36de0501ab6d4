"""
vstore package.

A backend-agnostic, verifiable key-value storage engine: callers commit write
batches and receive a root commitment per epoch; membership and
non-membership of any key can be proven against that commitment.

Layout (leaf-first):

- vstore.errors     : error taxonomy
- vstore.logging    : structured logging and trace context
- vstore.config     : layered configuration (defaults/file/env/overrides)
- vstore.metrics    : Prometheus counters and histograms
- vstore.utils      : bytes/hex helpers and content addressing (SHA3-256)
- vstore.encoding   : canonical CBOR and the record encoding contract
- vstore.time       : UTC microsecond timestamps
- vstore.batch      : ordered write batches
- vstore.smt        : sparse Merkle tree, node codec, proofs
- vstore.db         : backend protocol + memory/sqlite reference backends
- vstore.epoch      : epoch records and the hash-linked commit log
- vstore.engine     : commit/retry facade
- vstore.said       : self-addressing identifiers and versioned records
- vstore.repository : record repositories stored through the engine
- vstore.cli        : `vstore` command line

Only re-exports the version here to keep import-time side effects near zero.
"""

from __future__ import annotations

from .version import __version__


def get_version() -> str:
    """Return the semantic version string for this package."""
    return __version__


__all__ = ["__version__", "get_version"]
