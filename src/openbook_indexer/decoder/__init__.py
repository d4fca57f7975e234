"""Binary decoding of OpenBook v2 accounts, instructions and events."""

from openbook_indexer.decoder.events import (
    FILL_LOG_DISCRIMINATOR,
    FillLog,
    decode_fill_log,
    decode_fill_logs,
    decode_order_id_return,
)
from openbook_indexer.decoder.instructions import (
    DEFAULT_PLACE_ORDER_ARGS,
    PLACE_ORDER_ACCOUNTS,
    PLACE_ORDER_DISCRIMINATOR,
    InstructionAccountSchema,
    OrderType,
    PlaceOrderArgs,
    Side,
    decode_place_order_args,
    decode_place_order_args_or_default,
)
from openbook_indexer.decoder.layout import (
    AccountTooSmallError,
    BadDiscriminatorError,
    DecodeError,
    EventDecodeError,
    InstructionTooShortError,
    InvalidSideError,
    Layout,
)
from openbook_indexer.decoder.market import (
    MARKET_DISCRIMINATOR,
    MARKET_LAYOUT,
    MIN_MARKET_ACCOUNT_SIZE,
    MarketAccount,
    decode_market_account,
)

__all__ = [
    "AccountTooSmallError",
    "BadDiscriminatorError",
    "DEFAULT_PLACE_ORDER_ARGS",
    "DecodeError",
    "EventDecodeError",
    "FILL_LOG_DISCRIMINATOR",
    "FillLog",
    "InstructionAccountSchema",
    "InstructionTooShortError",
    "InvalidSideError",
    "Layout",
    "MARKET_DISCRIMINATOR",
    "MARKET_LAYOUT",
    "MIN_MARKET_ACCOUNT_SIZE",
    "MarketAccount",
    "OrderType",
    "PLACE_ORDER_ACCOUNTS",
    "PLACE_ORDER_DISCRIMINATOR",
    "PlaceOrderArgs",
    "Side",
    "decode_fill_log",
    "decode_fill_logs",
    "decode_market_account",
    "decode_order_id_return",
    "decode_place_order_args",
    "decode_place_order_args_or_default",
]
