"""OpenBook v2 market account decoding."""

from __future__ import annotations

from dataclasses import dataclass

from openbook_indexer.decoder.layout import (
    DISCRIMINATOR_SIZE,
    AccountTooSmallError,
    BadDiscriminatorError,
    Layout,
    optional_pubkey,
    pubkey,
    raw_bytes,
)

MARKET_DISCRIMINATOR = bytes([219, 190, 213, 55, 0, 227, 198, 154])
MIN_MARKET_ACCOUNT_SIZE = 500
MARKET_NAME_SIZE = 16

DEFAULT_BASE_DECIMALS = 8
DEFAULT_QUOTE_DECIMALS = 6

MARKET_LAYOUT = Layout(
    [
        raw_bytes("discriminator", DISCRIMINATOR_SIZE),
        pubkey("admin"),
        pubkey("market_authority"),
        pubkey("bids"),
        pubkey("asks"),
        pubkey("event_heap"),
        optional_pubkey("oracle_a"),
        optional_pubkey("oracle_b"),
        optional_pubkey("collect_fee_admin"),
        optional_pubkey("open_orders_admin"),
        optional_pubkey("consume_events_admin"),
        optional_pubkey("close_market_admin"),
        raw_bytes("name", MARKET_NAME_SIZE),
        pubkey("base_mint"),
        pubkey("quote_mint"),
    ]
)


@dataclass(frozen=True)
class MarketAccount:
    """A decoded market account."""

    address: str
    name: str
    base_mint: str
    quote_mint: str
    bids: str
    asks: str
    event_heap: str
    base_decimals: int = DEFAULT_BASE_DECIMALS
    quote_decimals: int = DEFAULT_QUOTE_DECIMALS

    @property
    def symbol(self) -> str:
        return self.name


def _decode_name(raw: bytes, address: str) -> str:
    name = raw.decode("utf-8", errors="replace").rstrip("\x00").strip()
    if not name:
        return f"Market-{address[:8]}"
    return name


def decode_market_account(
    data: bytes,
    address: str,
    *,
    base_decimals: int = DEFAULT_BASE_DECIMALS,
    quote_decimals: int = DEFAULT_QUOTE_DECIMALS,
) -> MarketAccount:
    """Decode a raw market account.

    Args:
        data: Raw account bytes.
        address: Account address, used to synthesize a name when the
            on-chain name is blank.
        base_decimals: Base mint precision (mints are not fetched).
        quote_decimals: Quote mint precision.

    Raises:
        AccountTooSmallError: Buffer is shorter than a market account.
        BadDiscriminatorError: Buffer is not a market account.
    """
    if len(data) < MIN_MARKET_ACCOUNT_SIZE:
        raise AccountTooSmallError(
            f"Market account {address} has {len(data)} bytes, need {MIN_MARKET_ACCOUNT_SIZE}"
        )
    if bytes(data[:DISCRIMINATOR_SIZE]) != MARKET_DISCRIMINATOR:
        raise BadDiscriminatorError(f"Account {address} is not a market account")

    fields = MARKET_LAYOUT.decode(data)
    return MarketAccount(
        address=address,
        name=_decode_name(fields["name"], address),
        base_mint=fields["base_mint"],
        quote_mint=fields["quote_mint"],
        bids=fields["bids"],
        asks=fields["asks"],
        event_heap=fields["event_heap"],
        base_decimals=base_decimals,
        quote_decimals=quote_decimals,
    )
