"""
vstore.time
===========

UTC timestamps with microsecond precision, serialized as RFC 3339 with a `Z`
suffix and exactly six fractional digits:

    2025-01-02T03:04:05.000006Z

Records carry these in hashed content (SAIDs, canonical CBOR), so the textual
form must be stable. Sub-microsecond precision never reaches a record because
Python's datetime has none.
"""

from __future__ import annotations

import datetime as _dt
from functools import total_ordering
from typing import Union

_FMT = "%Y-%m-%dT%H:%M:%S.%fZ"


@total_ordering
class StorageDatetime:
    __slots__ = ("_dt",)

    def __init__(self, value: _dt.datetime) -> None:
        if not isinstance(value, _dt.datetime):
            raise TypeError(f"expected datetime, got {type(value).__name__}")
        if value.tzinfo is None:
            value = value.replace(tzinfo=_dt.timezone.utc)
        self._dt = value.astimezone(_dt.timezone.utc)

    @classmethod
    def now(cls) -> "StorageDatetime":
        return cls(_dt.datetime.now(_dt.timezone.utc))

    @classmethod
    def parse(cls, s: str) -> "StorageDatetime":
        """Parse any RFC 3339 timestamp; the offset is normalized to UTC."""
        if not isinstance(s, str):
            raise TypeError("StorageDatetime.parse expects str")
        text = s.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return cls(_dt.datetime.fromisoformat(text))
        except ValueError as e:
            raise ValueError(f"invalid RFC 3339 timestamp: {s!r}") from e

    @classmethod
    def from_timestamp_micros(cls, micros: int) -> "StorageDatetime":
        epoch = _dt.datetime(1970, 1, 1, tzinfo=_dt.timezone.utc)
        return cls(epoch + _dt.timedelta(microseconds=micros))

    @property
    def datetime(self) -> _dt.datetime:
        return self._dt

    def timestamp_micros(self) -> int:
        epoch = _dt.datetime(1970, 1, 1, tzinfo=_dt.timezone.utc)
        delta = self._dt - epoch
        return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds

    def is_from_future(self) -> bool:
        return StorageDatetime.now() < self

    def to_rfc3339(self) -> str:
        return self._dt.strftime(_FMT)

    def __add__(self, other: Union[_dt.timedelta, int, float]) -> "StorageDatetime":
        if isinstance(other, (int, float)):
            other = _dt.timedelta(seconds=other)
        if not isinstance(other, _dt.timedelta):
            return NotImplemented
        return StorageDatetime(self._dt + other)

    def __sub__(self, other: _dt.timedelta) -> "StorageDatetime":
        if not isinstance(other, _dt.timedelta):
            return NotImplemented
        return StorageDatetime(self._dt - other)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StorageDatetime):
            return NotImplemented
        return self._dt == other._dt

    def __lt__(self, other: "StorageDatetime") -> bool:
        if not isinstance(other, StorageDatetime):
            return NotImplemented
        return self._dt < other._dt

    def __hash__(self) -> int:
        return hash(self._dt)

    def __str__(self) -> str:
        return self.to_rfc3339()

    def __repr__(self) -> str:
        return f"StorageDatetime({self.to_rfc3339()!r})"


__all__ = ["StorageDatetime"]
