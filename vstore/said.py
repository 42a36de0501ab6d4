"""
vstore.said: self-addressing identifiers and versioned records

A SAID is a digest of a record's own content, embedded in the record. To
compute it the `said` field is first replaced by a fixed 44-character
placeholder ("#" * 44), the record is serialized to canonical JSON (fields in
declaration order, compact separators, bytes as hex, timestamps as RFC 3339),
hashed with BLAKE3-256, and encoded as a CESR qb64 digest: code "E" followed
by 43 base64url characters, 44 characters in total.

Versioned records add a lineage:

    prefix    SAID of version 0 (computed with prefix also set to the placeholder)
    previous  SAID of the prior version, None for version 0
    version   0, 1, 2, ...
    created_at (optional) refreshed on every increment

so each version points at its predecessor and the whole history forms a hash
chain rooted at the prefix.

    @canonical_record
    @dataclass
    class Profile(Versioned):
        name: str = ""
        said: str = ""
        prefix: str = ""
        previous: Optional[str] = None
        version: int = 0
        created_at: Optional[StorageDatetime] = None

    p = Profile.create(name="alice")        # version 0, said == prefix
    p2 = p.next(name="alice b.")            # version 1, previous == p.said
"""

from __future__ import annotations

import base64
import copy
import dataclasses
import json
from typing import Any, Optional, TypeVar

from .encoding.canonical import to_plain
from .errors import InvalidSaid
from .time import StorageDatetime
from .utils.hash import blake3_256

SAID_LENGTH = 44
SAID_PLACEHOLDER = "#" * SAID_LENGTH
BLAKE3_256_CODE = "E"

S = TypeVar("S", bound="SelfAddressed")
V = TypeVar("V", bound="Versioned")


def qb64_digest(raw: bytes, code: str = BLAKE3_256_CODE) -> str:
    """CESR qb64 text for a 32-byte digest with a one-character code."""
    if len(raw) != 32:
        raise ValueError("qb64_digest expects a 32-byte digest")
    # one lead pad byte aligns 32 bytes to 33, i.e. 44 base64 characters
    b64 = base64.urlsafe_b64encode(b"\x00" + raw).decode("ascii")
    return code + b64[1:]


def qb64_raw(said: str) -> bytes:
    """Inverse of qb64_digest; raises InvalidSaid on malformed input."""
    if not isinstance(said, str) or len(said) != SAID_LENGTH or said[0] != BLAKE3_256_CODE:
        raise InvalidSaid("malformed SAID", said=said)
    try:
        data = base64.urlsafe_b64decode("A" + said[1:])
    except (ValueError, TypeError) as e:
        raise InvalidSaid("malformed SAID", said=said) from e
    return data[1:]


def canonical_json(obj: Any) -> bytes:
    return json.dumps(
        to_plain(obj, hex_bytes=True), separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def compute_said(obj: Any) -> str:
    """BLAKE3-256 over the canonical JSON of `obj`, as CESR qb64."""
    return qb64_digest(blake3_256(canonical_json(obj)))


class SelfAddressed:
    """Mixin for dataclasses carrying their own SAID."""

    __said_field__ = "said"

    def get_said(self) -> str:
        return getattr(self, self.__said_field__)

    def derive_said(self: S) -> S:
        setattr(self, self.__said_field__, SAID_PLACEHOLDER)
        setattr(self, self.__said_field__, compute_said(self))
        return self

    def verify_said(self) -> None:
        expected = copy.deepcopy(self).derive_said().get_said()
        if expected != self.get_said():
            raise InvalidSaid("SAID verification failed", expected=expected, got=self.get_said())

    def said_is_valid(self) -> bool:
        try:
            self.verify_said()
        except InvalidSaid:
            return False
        return True

    @classmethod
    def create(cls: type[S], **fields: Any) -> S:
        """Build an instance and derive its SAID."""
        item = cls(**{cls.__said_field__: "", **fields})
        return item.derive_said()


class Versioned(SelfAddressed):
    """
    Mixin for versioned self-addressed dataclasses. Records order by
    (prefix, version); field equality stays the dataclass default.
    """

    __prefix_field__ = "prefix"
    __previous_field__ = "previous"
    __version_field__ = "version"
    __created_at_field__ = "created_at"

    # ---- accessors ----

    def get_prefix(self) -> str:
        return getattr(self, self.__prefix_field__)

    def get_previous(self) -> Optional[str]:
        return getattr(self, self.__previous_field__)

    def get_version(self) -> int:
        return getattr(self, self.__version_field__)

    def _has_created_at(self) -> bool:
        return any(f.name == self.__created_at_field__ for f in dataclasses.fields(self))  # type: ignore[arg-type]

    def get_created_at(self) -> Optional[StorageDatetime]:
        return getattr(self, self.__created_at_field__) if self._has_created_at() else None

    def set_created_at(self, created_at: StorageDatetime) -> None:
        if self._has_created_at():
            setattr(self, self.__created_at_field__, created_at)

    # ---- lineage ----

    def derive_prefix(self: V) -> V:
        setattr(self, self.__prefix_field__, SAID_PLACEHOLDER)
        self.derive_said()
        setattr(self, self.__prefix_field__, self.get_said())
        return self

    def verify_prefix(self) -> None:
        fresh = copy.deepcopy(self).derive_prefix()
        if fresh.get_said() != self.get_said() or fresh.get_prefix() != self.get_prefix():
            raise InvalidSaid(
                "SAID prefix verification failed",
                said=self.get_said(),
                prefix=self.get_prefix(),
                expected=fresh.get_said(),
            )

    def increment(self: V) -> V:
        """Turn this record into its successor version (in place)."""
        setattr(self, self.__previous_field__, self.get_said())
        setattr(self, self.__version_field__, self.get_version() + 1)
        self.set_created_at(StorageDatetime.now())
        return self.derive_said()

    def next(self: V, **changes: Any) -> V:
        """Copy with `changes` applied, incremented to the next version."""
        out = copy.deepcopy(self)
        for k, v in changes.items():
            setattr(out, k, v)
        return out.increment()

    def verify_unchanged(self, proposed: "Versioned") -> bool:
        """True if `proposed` is this record re-versioned with no content change."""
        candidate = copy.deepcopy(self)
        setattr(candidate, self.__previous_field__, self.get_said())
        setattr(candidate, self.__version_field__, self.get_version() + 1)
        candidate.set_created_at(proposed.get_created_at() or StorageDatetime.now())
        candidate.derive_said()
        return candidate.get_said() == proposed.get_said()

    def verify(self) -> None:
        """Version 0 must satisfy the prefix rule; later versions their SAID."""
        if self.get_version() == 0:
            self.verify_prefix()
        else:
            self.verify_said()

    @classmethod
    def create(cls: type[V], **fields: Any) -> V:
        defaults: dict = {
            cls.__said_field__: "",
            cls.__prefix_field__: "",
            cls.__previous_field__: None,
            cls.__version_field__: 0,
        }
        if any(f.name == cls.__created_at_field__ for f in dataclasses.fields(cls)):  # type: ignore[arg-type]
            defaults[cls.__created_at_field__] = StorageDatetime.now()
        item = cls(**{**defaults, **fields})
        return item.derive_prefix()

    # ---- ordering ----

    def _order_key(self) -> tuple:
        return (self.get_prefix(), self.get_version())

    def __lt__(self, other: "Versioned") -> bool:
        if not isinstance(other, Versioned):
            return NotImplemented
        return self._order_key() < other._order_key()

    def __le__(self, other: "Versioned") -> bool:
        if not isinstance(other, Versioned):
            return NotImplemented
        return self._order_key() <= other._order_key()

    def __gt__(self, other: "Versioned") -> bool:
        if not isinstance(other, Versioned):
            return NotImplemented
        return self._order_key() > other._order_key()

    def __ge__(self, other: "Versioned") -> bool:
        if not isinstance(other, Versioned):
            return NotImplemented
        return self._order_key() >= other._order_key()


__all__ = [
    "SAID_LENGTH",
    "SAID_PLACEHOLDER",
    "compute_said",
    "canonical_json",
    "qb64_digest",
    "qb64_raw",
    "SelfAddressed",
    "Versioned",
]
