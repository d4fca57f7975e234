"""Declarative binary layouts for Anchor-serialized accounts and payloads.

A layout is an ordered list of typed fields. Offsets are computed from the
declared sizes, so a change in the upstream field order is a one-line edit
to the table instead of a chain of offset arithmetic.
"""

from __future__ import annotations

import hashlib
import struct
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import base58

DISCRIMINATOR_SIZE = 8
PUBKEY_SIZE = 32


class DecodeError(Exception):
    """Base exception for binary decoding failures."""


class AccountTooSmallError(DecodeError):
    """Raised when an account buffer is shorter than its layout."""


class BadDiscriminatorError(DecodeError):
    """Raised when the leading discriminator does not match the expected schema."""


class InstructionTooShortError(DecodeError):
    """Raised when instruction data is shorter than its argument layout."""


class InvalidSideError(DecodeError):
    """Raised when a side tag is neither bid (0) nor ask (1)."""


class EventDecodeError(DecodeError):
    """Raised when a program event payload cannot be decoded."""


class FieldKind(Enum):
    """Wire encodings understood by :class:`Layout`."""

    U8 = "u8"
    BOOL = "bool"
    U64 = "u64"
    I64 = "i64"
    U128 = "u128"
    PUBKEY = "pubkey"
    OPTIONAL_PUBKEY = "optional_pubkey"
    BYTES = "bytes"


_STRUCT_FORMATS = {
    FieldKind.U8: "<B",
    FieldKind.BOOL: "<?",
    FieldKind.U64: "<Q",
    FieldKind.I64: "<q",
}

_FIXED_SIZES = {
    FieldKind.U8: 1,
    FieldKind.BOOL: 1,
    FieldKind.U64: 8,
    FieldKind.I64: 8,
    FieldKind.U128: 16,
    FieldKind.PUBKEY: PUBKEY_SIZE,
    # 1-byte presence tag + payload, always reserved
    FieldKind.OPTIONAL_PUBKEY: 1 + PUBKEY_SIZE,
}


@dataclass(frozen=True)
class LayoutField:
    name: str
    kind: FieldKind
    size: int

    def decode(self, data: bytes, offset: int) -> Any:
        if self.kind in _STRUCT_FORMATS:
            return struct.unpack_from(_STRUCT_FORMATS[self.kind], data, offset)[0]
        if self.kind == FieldKind.U128:
            return int.from_bytes(data[offset : offset + 16], "little")
        if self.kind == FieldKind.PUBKEY:
            return encode_pubkey(data[offset : offset + PUBKEY_SIZE])
        if self.kind == FieldKind.OPTIONAL_PUBKEY:
            if data[offset] == 0:
                return None
            return encode_pubkey(data[offset + 1 : offset + 1 + PUBKEY_SIZE])
        return bytes(data[offset : offset + self.size])


def u8(name: str) -> LayoutField:
    return LayoutField(name, FieldKind.U8, 1)


def boolean(name: str) -> LayoutField:
    return LayoutField(name, FieldKind.BOOL, 1)


def u64(name: str) -> LayoutField:
    return LayoutField(name, FieldKind.U64, 8)


def i64(name: str) -> LayoutField:
    return LayoutField(name, FieldKind.I64, 8)


def u128(name: str) -> LayoutField:
    return LayoutField(name, FieldKind.U128, 16)


def pubkey(name: str) -> LayoutField:
    return LayoutField(name, FieldKind.PUBKEY, _FIXED_SIZES[FieldKind.PUBKEY])


def optional_pubkey(name: str) -> LayoutField:
    return LayoutField(name, FieldKind.OPTIONAL_PUBKEY, _FIXED_SIZES[FieldKind.OPTIONAL_PUBKEY])


def raw_bytes(name: str, size: int) -> LayoutField:
    return LayoutField(name, FieldKind.BYTES, size)


class Layout:
    """An ordered, fixed-size sequence of fields.

    Example:
        ```python
        layout = Layout([raw_bytes("discriminator", 8), u8("side"), i64("price")])
        layout.offset_of("price")  # 9
        layout.decode(data)["side"]
        ```
    """

    def __init__(self, fields: Iterable[LayoutField]) -> None:
        self.fields: tuple[LayoutField, ...] = tuple(fields)
        self._offsets: dict[str, int] = {}
        offset = 0
        for field in self.fields:
            if field.name in self._offsets:
                raise ValueError(f"Duplicate layout field: {field.name}")
            self._offsets[field.name] = offset
            offset += field.size
        self.size = offset

    def offset_of(self, name: str) -> int:
        return self._offsets[name]

    def field(self, name: str) -> LayoutField:
        for field in self.fields:
            if field.name == name:
                return field
        raise KeyError(name)

    def decode_field(self, data: bytes, name: str) -> Any:
        field = self.field(name)
        offset = self._offsets[name]
        if len(data) < offset + field.size:
            raise DecodeError(f"Buffer too short for field {name!r} at offset {offset}")
        return field.decode(data, offset)

    def decode(self, data: bytes, *, skip: Iterable[str] = ()) -> dict[str, Any]:
        """Decode every field; the buffer may be longer than the layout."""
        if len(data) < self.size:
            raise DecodeError(f"Buffer of {len(data)} bytes is shorter than layout size {self.size}")
        skipped = set(skip)
        return {
            field.name: field.decode(data, self._offsets[field.name])
            for field in self.fields
            if field.name not in skipped
        }


def encode_pubkey(raw: bytes) -> str:
    return base58.b58encode(bytes(raw)).decode("ascii")


def decode_pubkey(address: str) -> bytes:
    raw = base58.b58decode(address)
    if len(raw) != PUBKEY_SIZE:
        raise ValueError(f"Public key must decode to {PUBKEY_SIZE} bytes, got {len(raw)}")
    return raw


def instruction_discriminator(name: str) -> bytes:
    """Anchor instruction sighash: ``sha256("global:<snake_case_name>")[:8]``."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:DISCRIMINATOR_SIZE]


def event_discriminator(name: str) -> bytes:
    """Anchor event tag: ``sha256("event:<EventName>")[:8]``."""
    return hashlib.sha256(f"event:{name}".encode()).digest()[:DISCRIMINATOR_SIZE]
