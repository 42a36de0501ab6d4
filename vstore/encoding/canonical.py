"""
Canonical record encoding
=========================

The engine treats values as opaque bytes. Typed records get to and from those
bytes through a two-method contract:

    record.to_canonical() -> bytes
    RecordType.from_canonical(data) -> RecordType

Any class can implement the pair by hand. Dataclasses get it for free from the
`canonical_record` decorator, which reflects over the fields at runtime and
encodes the field mapping as canonical CBOR:

    @canonical_record
    @dataclass
    class Account:
        owner: str
        balance: int
        memo: Optional[bytes] = None

Field values may be None, bool, int, str, bytes, lists, str/int/bytes-keyed
dicts, nested canonical dataclasses and StorageDatetime (stored as its RFC 3339
text). Decoding is driven by the field annotations; unknown fields, missing
required fields and type mismatches raise EncodingError.

Equal records therefore always produce identical bytes, which is what makes the
value digest a stable commitment.
"""

from __future__ import annotations

import dataclasses
import types
import typing
from typing import Any, Callable, Dict, Optional, Protocol, Type, TypeVar, runtime_checkable

from ..errors import EncodingError
from ..time import StorageDatetime
from ..utils.hash import sha3_256
from .cbor import dumps as cbor_dumps
from .cbor import loads as cbor_loads

R = TypeVar("R")


@runtime_checkable
class CanonicalRecord(Protocol):
    def to_canonical(self) -> bytes: ...

    @classmethod
    def from_canonical(cls, data: bytes) -> "CanonicalRecord": ...


# --------------------------
# Plain-value conversion
# --------------------------


def to_plain(obj: Any, *, hex_bytes: bool = False) -> Any:
    """
    Convert a record (or any supported value) into nested dict/list/primitives.

    With `hex_bytes=True` byte strings become lowercase hex text, which is the
    form used for canonical JSON.
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        raise EncodingError("floats are not canonical", value=repr(obj))
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).hex() if hex_bytes else bytes(obj)
    if isinstance(obj, StorageDatetime):
        return obj.to_rfc3339()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_plain(getattr(obj, f.name), hex_bytes=hex_bytes) for f in dataclasses.fields(obj)}
    if isinstance(obj, (list, tuple)):
        return [to_plain(x, hex_bytes=hex_bytes) for x in obj]
    if isinstance(obj, dict):
        out: Dict[Any, Any] = {}
        for k, v in obj.items():
            if isinstance(k, (bytes, bytearray)) and hex_bytes:
                k = bytes(k).hex()
            out[k] = to_plain(v, hex_bytes=hex_bytes)
        return out
    raise EncodingError("unsupported record field type", type=type(obj).__name__)


def _is_optional(tp: Any) -> Optional[Any]:
    if typing.get_origin(tp) in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        if len(args) == 1 and len(typing.get_args(tp)) == 2:
            return args[0]
    return None


def from_plain(tp: Any, value: Any, *, where: str = "value") -> Any:
    """Rebuild a value of annotated type `tp` from its plain form."""
    if tp is Any:
        return value

    inner = _is_optional(tp)
    if inner is not None:
        return None if value is None else from_plain(inner, value, where=where)

    if tp is type(None):
        if value is not None:
            raise EncodingError("expected null", field=where)
        return None

    if tp is StorageDatetime:
        if not isinstance(value, str):
            raise EncodingError("timestamp must be RFC 3339 text", field=where)
        try:
            return StorageDatetime.parse(value)
        except ValueError as e:
            raise EncodingError(str(e), field=where) from e

    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        if not isinstance(value, dict):
            raise EncodingError("nested record must be a map", field=where, record=tp.__name__)
        return _build(tp, value)

    origin = typing.get_origin(tp)
    if origin in (list, tuple):
        if not isinstance(value, list):
            raise EncodingError("expected array", field=where)
        args = typing.get_args(tp)
        if origin is tuple:
            if len(args) == 2 and args[1] is Ellipsis:
                return tuple(from_plain(args[0], v, where=where) for v in value)
            if len(args) != len(value):
                raise EncodingError("tuple arity mismatch", field=where)
            return tuple(from_plain(a, v, where=where) for a, v in zip(args, value))
        elem = args[0] if args else Any
        return [from_plain(elem, v, where=where) for v in value]
    if origin is dict:
        if not isinstance(value, dict):
            raise EncodingError("expected map", field=where)
        kt, vt = typing.get_args(tp) or (Any, Any)
        return {from_plain(kt, k, where=where): from_plain(vt, v, where=where) for k, v in value.items()}

    if tp in (bool, int, str, bytes):
        # bool is an int subclass; keep them apart in both directions
        if tp is int and isinstance(value, bool):
            raise EncodingError("expected int, got bool", field=where)
        if not isinstance(value, tp):
            raise EncodingError(
                f"expected {tp.__name__}", field=where, got=type(value).__name__
            )
        return value

    raise EncodingError("unsupported annotation", field=where, annotation=str(tp))


def _build(cls: Type[R], plain: Dict[Any, Any]) -> R:
    hints = typing.get_type_hints(cls)
    fields = {f.name: f for f in dataclasses.fields(cls) if f.init}
    unknown = set(plain) - set(fields)
    if unknown:
        raise EncodingError("unknown fields", record=cls.__name__, fields=sorted(map(str, unknown)))
    kwargs: Dict[str, Any] = {}
    for name, f in fields.items():
        if name not in plain:
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:  # type: ignore[misc]
                raise EncodingError("missing field", record=cls.__name__, field=name)
            continue
        kwargs[name] = from_plain(hints.get(name, Any), plain[name], where=f"{cls.__name__}.{name}")
    return cls(**kwargs)


# --------------------------
# Decorator and helpers
# --------------------------


def canonical_record(cls: Type[R]) -> Type[R]:
    """Give a dataclass `to_canonical`/`from_canonical` unless it defines its own."""
    if not dataclasses.is_dataclass(cls):
        raise TypeError("canonical_record requires a dataclass")

    if "to_canonical" not in cls.__dict__:

        def to_canonical(self) -> bytes:
            return cbor_dumps(to_plain(self))

        cls.to_canonical = to_canonical  # type: ignore[attr-defined]

    if "from_canonical" not in cls.__dict__:

        def from_canonical(klass, data: bytes):
            plain = cbor_loads(data)
            if not isinstance(plain, dict):
                raise EncodingError("record must be a CBOR map", record=klass.__name__)
            return _build(klass, plain)

        cls.from_canonical = classmethod(from_canonical)  # type: ignore[attr-defined]

    return cls


def encode_record(record: Any) -> bytes:
    """Canonical bytes for a record, or pass bytes through unchanged."""
    if isinstance(record, (bytes, bytearray, memoryview)):
        return bytes(record)
    enc: Optional[Callable[[], bytes]] = getattr(record, "to_canonical", None)
    if enc is None:
        raise EncodingError("object does not implement to_canonical", type=type(record).__name__)
    out = enc()
    if not isinstance(out, bytes):
        raise EncodingError("to_canonical must return bytes", type=type(record).__name__)
    return out


def decode_record(record_type: Type[R], data: bytes) -> R:
    dec = getattr(record_type, "from_canonical", None)
    if dec is None:
        raise EncodingError("type does not implement from_canonical", type=getattr(record_type, "__name__", str(record_type)))
    return dec(data)


def record_digest(record: Any) -> bytes:
    """SHA3-256 of the record's canonical bytes (its value digest)."""
    return sha3_256(encode_record(record))


__all__ = [
    "CanonicalRecord",
    "canonical_record",
    "to_plain",
    "from_plain",
    "encode_record",
    "decode_record",
    "record_digest",
]
