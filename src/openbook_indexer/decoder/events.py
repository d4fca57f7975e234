"""Program event payloads found in transaction logs.

Fills are emitted as ``Program data: <base64>`` lines; the order id assigned
by ``place_order`` comes back as ``Program return: <program> <base64>``.
"""

from __future__ import annotations

from dataclasses import dataclass

from openbook_indexer.decoder.layout import (
    DISCRIMINATOR_SIZE,
    EventDecodeError,
    Layout,
    boolean,
    event_discriminator,
    i64,
    pubkey,
    raw_bytes,
    u8,
    u64,
)

FILL_LOG_DISCRIMINATOR = event_discriminator("FillLog")

FILL_LOG_LAYOUT = Layout(
    [
        raw_bytes("discriminator", DISCRIMINATOR_SIZE),
        pubkey("market"),
        u8("taker_side"),
        u8("maker_slot"),
        boolean("maker_out"),
        u64("timestamp"),
        u64("seq_num"),
        pubkey("maker"),
        u64("maker_client_order_id"),
        u64("maker_fee"),
        u64("maker_timestamp"),
        pubkey("taker"),
        u64("taker_client_order_id"),
        u64("taker_fee_ceil"),
        i64("price"),
        i64("quantity"),
    ]
)


@dataclass(frozen=True)
class FillLog:
    """One maker/taker match.

    ``maker`` and ``taker`` are open-orders account addresses; ``price`` is in
    price lots and ``quantity`` in base lots.
    """

    market: str
    taker_side: int
    maker_slot: int
    maker_out: bool
    timestamp: int
    seq_num: int
    maker: str
    maker_client_order_id: int
    maker_fee: int
    maker_timestamp: int
    taker: str
    taker_client_order_id: int
    taker_fee_ceil: int
    price: int
    quantity: int

    @property
    def trade_side(self) -> str:
        """Side from the taker's perspective."""
        return "buy" if self.taker_side == 0 else "sell"

    @property
    def maker_side(self) -> str:
        return "ask" if self.taker_side == 0 else "bid"


def is_fill_log(data: bytes) -> bool:
    return bytes(data[:DISCRIMINATOR_SIZE]) == FILL_LOG_DISCRIMINATOR


def decode_fill_log(data: bytes) -> FillLog:
    if not is_fill_log(data):
        raise EventDecodeError("Payload is not a FillLog event")
    if len(data) < FILL_LOG_LAYOUT.size:
        raise EventDecodeError(f"FillLog payload has {len(data)} bytes, need {FILL_LOG_LAYOUT.size}")
    fields = FILL_LOG_LAYOUT.decode(data, skip=("discriminator",))
    return FillLog(**fields)


def decode_fill_logs(payloads: list[bytes]) -> list[FillLog]:
    """Decode every FillLog among ``payloads``, ignoring other events."""
    return [decode_fill_log(p) for p in payloads if is_fill_log(p)]


def decode_order_id_return(data: bytes) -> int | None:
    """Decode a Borsh ``Option<u128>`` order id into its signed low 64 bits.

    Returns None when the program placed nothing (``None`` variant).
    """
    if not data:
        raise EventDecodeError("Empty return data")
    if data[0] == 0:
        return None
    if data[0] != 1 or len(data) < 17:
        raise EventDecodeError(f"Malformed Option<u128> return data ({len(data)} bytes)")
    return int.from_bytes(data[1:9], "little", signed=True)
