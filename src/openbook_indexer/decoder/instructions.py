"""Instruction argument decoding and account schemas.

Account positions for each instruction are declared once as an ordered tuple
of role names, so the router asks for ``"market"`` instead of hardcoding an
index into the account list.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from openbook_indexer.decoder.layout import (
    DISCRIMINATOR_SIZE,
    DecodeError,
    InstructionTooShortError,
    InvalidSideError,
    Layout,
    i64,
    instruction_discriminator,
    raw_bytes,
    u8,
    u64,
)

logger = logging.getLogger(__name__)

PLACE_ORDER_DISCRIMINATOR = instruction_discriminator("place_order")
CANCEL_ORDER_DISCRIMINATOR = instruction_discriminator("cancel_order")
CANCEL_ORDER_BY_CLIENT_ORDER_ID_DISCRIMINATOR = instruction_discriminator(
    "cancel_order_by_client_order_id"
)
CONSUME_EVENTS_DISCRIMINATOR = instruction_discriminator("consume_events")


class Side(str, Enum):
    BID = "bid"
    ASK = "ask"

    @classmethod
    def from_tag(cls, tag: int) -> Side:
        if tag == 0:
            return cls.BID
        if tag == 1:
            return cls.ASK
        raise InvalidSideError(f"Invalid side tag: {tag}")

    @property
    def opposite(self) -> Side:
        return Side.ASK if self is Side.BID else Side.BID


class OrderType(str, Enum):
    LIMIT = "limit"
    IMMEDIATE_OR_CANCEL = "immediate_or_cancel"
    POST_ONLY = "post_only"
    MARKET = "market"
    POST_ONLY_SLIDE = "post_only_slide"
    FILL_OR_KILL = "fill_or_kill"

    @classmethod
    def from_tag(cls, tag: int) -> OrderType:
        try:
            return _ORDER_TYPE_TAGS[tag]
        except IndexError:
            raise DecodeError(f"Unknown order type tag: {tag}") from None

    @property
    def rests_on_book(self) -> bool:
        return self in (OrderType.LIMIT, OrderType.POST_ONLY, OrderType.POST_ONLY_SLIDE)


_ORDER_TYPE_TAGS = (
    OrderType.LIMIT,
    OrderType.IMMEDIATE_OR_CANCEL,
    OrderType.POST_ONLY,
    OrderType.MARKET,
    OrderType.POST_ONLY_SLIDE,
    OrderType.FILL_OR_KILL,
)

PLACE_ORDER_ARGS_LAYOUT = Layout(
    [
        raw_bytes("discriminator", DISCRIMINATOR_SIZE),
        u8("side"),
        i64("price_lots"),
        i64("max_base_lots"),
    ]
)

# Trailing PlaceOrderArgs fields, decoded only when present.
PLACE_ORDER_EXTENDED_LAYOUT = Layout(
    [
        *PLACE_ORDER_ARGS_LAYOUT.fields,
        i64("max_quote_lots_including_fees"),
        u64("client_order_id"),
        u8("order_type"),
    ]
)

CANCEL_BY_CLIENT_ORDER_ID_LAYOUT = Layout(
    [raw_bytes("discriminator", DISCRIMINATOR_SIZE), u64("client_order_id")]
)

# The program order id is a u128; rows are keyed by its signed low word.
CANCEL_ORDER_LAYOUT = Layout([raw_bytes("discriminator", DISCRIMINATOR_SIZE), i64("order_id_low")])


@dataclass(frozen=True)
class PlaceOrderArgs:
    side: Side
    price_lots: int
    max_base_lots: int
    max_quote_lots_including_fees: int | None = None
    client_order_id: int | None = None
    order_type: OrderType | None = None


DEFAULT_PLACE_ORDER_ARGS = PlaceOrderArgs(side=Side.BID, price_lots=1000, max_base_lots=10)


def decode_place_order_args(data: bytes) -> PlaceOrderArgs:
    """Decode ``place_order`` instruction data.

    Raises:
        InstructionTooShortError: Fewer than 25 bytes.
        InvalidSideError: Side tag outside {0, 1}.
    """
    if len(data) < PLACE_ORDER_ARGS_LAYOUT.size:
        raise InstructionTooShortError(
            f"place_order data has {len(data)} bytes, need {PLACE_ORDER_ARGS_LAYOUT.size}"
        )
    fields = PLACE_ORDER_ARGS_LAYOUT.decode(data, skip=("discriminator",))
    side = Side.from_tag(fields["side"])

    if len(data) < PLACE_ORDER_EXTENDED_LAYOUT.size:
        return PlaceOrderArgs(
            side=side,
            price_lots=fields["price_lots"],
            max_base_lots=fields["max_base_lots"],
        )

    extended = PLACE_ORDER_EXTENDED_LAYOUT.decode(data, skip=("discriminator",))
    try:
        order_type: OrderType | None = OrderType.from_tag(extended["order_type"])
    except DecodeError as e:
        logger.debug("Ignoring order type: %s", e)
        order_type = None
    return PlaceOrderArgs(
        side=side,
        price_lots=extended["price_lots"],
        max_base_lots=extended["max_base_lots"],
        max_quote_lots_including_fees=extended["max_quote_lots_including_fees"],
        client_order_id=extended["client_order_id"],
        order_type=order_type,
    )


def decode_place_order_args_or_default(data: bytes) -> PlaceOrderArgs:
    try:
        return decode_place_order_args(data)
    except DecodeError as e:
        logger.warning("Falling back to default order args: %s", e)
        return DEFAULT_PLACE_ORDER_ARGS


def decode_cancel_by_client_order_id_args(data: bytes) -> int:
    if len(data) < CANCEL_BY_CLIENT_ORDER_ID_LAYOUT.size:
        raise InstructionTooShortError(
            f"cancel_order_by_client_order_id data has {len(data)} bytes, "
            f"need {CANCEL_BY_CLIENT_ORDER_ID_LAYOUT.size}"
        )
    return int(CANCEL_BY_CLIENT_ORDER_ID_LAYOUT.decode_field(data, "client_order_id"))


def decode_cancel_order_args(data: bytes) -> int:
    """Return the signed low 64 bits of the cancelled program order id."""
    if len(data) < DISCRIMINATOR_SIZE + 16:
        raise InstructionTooShortError(f"cancel_order data has {len(data)} bytes, need 24")
    return int(CANCEL_ORDER_LAYOUT.decode_field(data, "order_id_low"))


@dataclass(frozen=True)
class InstructionAccountSchema:
    """Named account roles of one instruction, in on-chain order."""

    instruction: str
    roles: tuple[str, ...]

    def position(self, role: str) -> int:
        try:
            return self.roles.index(role)
        except ValueError:
            raise KeyError(f"{self.instruction} has no account role {role!r}") from None

    def resolve(self, role: str, accounts: Sequence[int], account_keys: Sequence[str]) -> str | None:
        """Map a role to an address through the instruction's account indices."""
        position = self.position(role)
        if position >= len(accounts):
            return None
        key_index = accounts[position]
        if key_index >= len(account_keys):
            return None
        return account_keys[key_index]


PLACE_ORDER_ACCOUNTS = InstructionAccountSchema(
    "place_order",
    (
        "signer",
        "open_orders_account",
        "open_orders_admin",
        "user_token_account",
        "market",
        "bids",
        "asks",
        "event_heap",
        "market_vault",
        "oracle_a",
        "oracle_b",
        "token_program",
    ),
)

CANCEL_ORDER_ACCOUNTS = InstructionAccountSchema(
    "cancel_order",
    ("signer", "open_orders_account", "market", "bids", "asks"),
)

CANCEL_ORDER_BY_CLIENT_ORDER_ID_ACCOUNTS = InstructionAccountSchema(
    "cancel_order_by_client_order_id",
    ("signer", "open_orders_account", "market", "bids", "asks"),
)

CONSUME_EVENTS_ACCOUNTS = InstructionAccountSchema(
    "consume_events",
    ("consume_events_admin", "market", "event_heap"),
)
