"""Tests for the binary layout primitives."""

import struct

import pytest

from openbook_indexer.decoder.layout import (
    DecodeError,
    Layout,
    decode_pubkey,
    encode_pubkey,
    event_discriminator,
    i64,
    instruction_discriminator,
    optional_pubkey,
    pubkey,
    raw_bytes,
    u8,
    u64,
    u128,
)


class TestLayout:
    """Tests for Layout offsets and decoding."""

    def test_offsets_are_cumulative(self) -> None:
        layout = Layout([raw_bytes("discriminator", 8), u8("side"), i64("price"), i64("qty")])

        assert layout.offset_of("side") == 8
        assert layout.offset_of("price") == 9
        assert layout.offset_of("qty") == 17
        assert layout.size == 25

    def test_optional_pubkey_reserves_33_bytes(self) -> None:
        """Offsets after an optional pubkey do not depend on presence."""
        layout = Layout([optional_pubkey("oracle"), u8("after")])

        assert layout.offset_of("after") == 33

    def test_optional_pubkey_absent_and_present(self) -> None:
        layout = Layout([optional_pubkey("oracle")])
        key = bytes(range(32))

        assert layout.decode(b"\x00" + key)["oracle"] is None
        assert layout.decode(b"\x01" + key)["oracle"] == encode_pubkey(key)

    def test_decode_signed_and_unsigned(self) -> None:
        layout = Layout([i64("signed"), u64("unsigned"), u128("wide")])
        data = struct.pack("<qQ", -5, 2**64 - 1) + (2**100).to_bytes(16, "little")

        fields = layout.decode(data)

        assert fields == {"signed": -5, "unsigned": 2**64 - 1, "wide": 2**100}

    def test_decode_short_buffer_raises(self) -> None:
        layout = Layout([u64("a"), u64("b")])

        with pytest.raises(DecodeError):
            layout.decode(b"\x00" * 15)

    def test_decode_allows_trailing_bytes(self) -> None:
        layout = Layout([u8("a")])

        assert layout.decode(b"\x07\xff\xff") == {"a": 7}

    def test_decode_skip(self) -> None:
        layout = Layout([raw_bytes("discriminator", 8), u8("side")])

        assert layout.decode(b"\x00" * 8 + b"\x01", skip=("discriminator",)) == {"side": 1}

    def test_decode_field_checks_bounds(self) -> None:
        layout = Layout([u8("a"), u64("b")])

        with pytest.raises(DecodeError):
            layout.decode_field(b"\x00" * 5, "b")

    def test_duplicate_field_rejected(self) -> None:
        with pytest.raises(ValueError):
            Layout([u8("a"), u8("a")])

    def test_unknown_field(self) -> None:
        layout = Layout([u8("a")])

        with pytest.raises(KeyError):
            layout.field("missing")


class TestPubkeys:
    def test_round_trip(self) -> None:
        raw = bytes(range(1, 33))

        assert decode_pubkey(encode_pubkey(raw)) == raw

    def test_decode_wrong_length(self) -> None:
        with pytest.raises(ValueError):
            decode_pubkey(encode_pubkey(b"\x01" * 31))

    def test_pubkey_field(self) -> None:
        layout = Layout([pubkey("key")])
        raw = b"\x09" * 32

        assert layout.decode(raw)["key"] == encode_pubkey(raw)


class TestDiscriminators:
    def test_instruction_discriminator_is_8_bytes(self) -> None:
        assert len(instruction_discriminator("place_order")) == 8

    def test_namespaces_differ(self) -> None:
        assert instruction_discriminator("FillLog") != event_discriminator("FillLog")
