"""Routes classified events of a transaction into the persistence gateway.

Every classified tag is first written to the event log, then handled:

    PlaceOrder            -> order row (plus any fills it matched)
    Fill / ConsumeEvents  -> trade rows decoded from FillLog events
    CancelOrder           -> order status -> cancelled
    anything else         -> event log only

Backfill and the live consumer share one router, so a transaction seen by
both feeds resolves to the same rows. Routing order does not matter either:
fills and cancels seen before their order are applied when it is inserted.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from openbook_indexer.decoder.events import FillLog, decode_fill_log, decode_order_id_return, is_fill_log
from openbook_indexer.decoder.instructions import (
    CANCEL_ORDER_ACCOUNTS,
    CANCEL_ORDER_BY_CLIENT_ORDER_ID_ACCOUNTS,
    CANCEL_ORDER_BY_CLIENT_ORDER_ID_DISCRIMINATOR,
    CANCEL_ORDER_DISCRIMINATOR,
    CONSUME_EVENTS_ACCOUNTS,
    CONSUME_EVENTS_DISCRIMINATOR,
    PLACE_ORDER_ACCOUNTS,
    PLACE_ORDER_DISCRIMINATOR,
    OrderType,
    decode_cancel_by_client_order_id_args,
    decode_cancel_order_args,
    decode_place_order_args_or_default,
)
from openbook_indexer.decoder.layout import DISCRIMINATOR_SIZE, DecodeError
from openbook_indexer.ingestor.classifier import EventTag, extract_program_data, extract_program_returns
from openbook_indexer.storage.repos import OrderDTO, TradeDTO

if TYPE_CHECKING:
    from openbook_indexer.ingestor.models import CompiledInstruction, Transaction
    from openbook_indexer.storage.gateway import PersistenceGateway

logger = logging.getLogger(__name__)

# Instruction data shorter than this cannot carry place-order arguments.
FALLBACK_MIN_INSTRUCTION_SIZE = 16


def synthesize_order_id(slot: int, timestamp: int, ordinal: int = 0) -> int:
    """Order id used when the program did not report one."""
    return slot * 1000 + timestamp % 1000 + ordinal


def initial_order_status(filled: int, quantity: int, order_type: OrderType | None) -> str:
    if quantity > 0 and filled >= quantity:
        return "filled"
    if order_type is not None and not order_type.rests_on_book:
        # the unmatched remainder never rests on the book
        return "cancelled"
    return "partially_filled" if filled > 0 else "open"


def _discriminator(ix: CompiledInstruction) -> bytes:
    return bytes(ix.data[:DISCRIMINATOR_SIZE])


@dataclass
class TransactionContext:
    """Per-transaction decode results shared by every tag of the transaction."""

    transaction: Transaction
    timestamp: int
    place_orders: list[CompiledInstruction]
    order_ids: list[int | None]
    cancels: list[CompiledInstruction]
    consume_events: list[CompiledInstruction]
    fills: list[FillLog]
    fills_recorded: bool = False
    ordinals: Counter[EventTag] = field(default_factory=Counter)

    @classmethod
    def build(cls, transaction: Transaction, program_id: str, *, timestamp: int) -> TransactionContext:
        program_ixs = transaction.instructions_for(program_id)

        place_orders = [ix for ix in program_ixs if _discriminator(ix) == PLACE_ORDER_DISCRIMINATOR]
        if not place_orders:
            fallback = next(
                (ix for ix in program_ixs if len(ix.data) > FALLBACK_MIN_INSTRUCTION_SIZE), None
            )
            if fallback is not None:
                place_orders = [fallback]

        order_ids: list[int | None] = []
        for ret in extract_program_returns(transaction.log_messages, program_id):
            if ret.instruction != "PlaceOrder":
                continue
            try:
                order_ids.append(decode_order_id_return(ret.data))
            except DecodeError as e:
                logger.warning("Bad place_order return data in %s: %s", transaction.signature, e)
                order_ids.append(None)

        fills: list[FillLog] = []
        for payload in extract_program_data(transaction.log_messages):
            if not is_fill_log(payload):
                continue
            try:
                fills.append(decode_fill_log(payload))
            except DecodeError as e:
                logger.warning("Undecodable FillLog in %s: %s", transaction.signature, e)

        cancel_discriminators = (CANCEL_ORDER_DISCRIMINATOR, CANCEL_ORDER_BY_CLIENT_ORDER_ID_DISCRIMINATOR)
        return cls(
            transaction=transaction,
            timestamp=timestamp,
            place_orders=place_orders,
            order_ids=order_ids,
            cancels=[ix for ix in program_ixs if _discriminator(ix) in cancel_discriminators],
            consume_events=[
                ix for ix in program_ixs if _discriminator(ix) == CONSUME_EVENTS_DISCRIMINATOR
            ],
            fills=fills,
        )

    @property
    def signature(self) -> str:
        return self.transaction.signature

    @property
    def slot(self) -> int:
        return self.transaction.slot

    def next_ordinal(self, tag: EventTag) -> int:
        ordinal = self.ordinals[tag]
        self.ordinals[tag] += 1
        return ordinal

    def place_order(self, ordinal: int) -> CompiledInstruction | None:
        return self.place_orders[ordinal] if ordinal < len(self.place_orders) else None

    def returned_order_id(self, ordinal: int) -> int | None:
        return self.order_ids[ordinal] if ordinal < len(self.order_ids) else None

    def place_order_accounts(self) -> set[str]:
        accounts: set[str] = set()
        for ix in self.place_orders:
            account = PLACE_ORDER_ACCOUNTS.resolve(
                "open_orders_account", ix.accounts, self.transaction.account_keys
            )
            if account:
                accounts.add(account)
        return accounts

    def market_for(self, tag: EventTag, ordinal: int) -> str | None:
        """Best-effort market association for the event log."""
        keys = self.transaction.account_keys
        if tag == EventTag.PLACE_ORDER:
            ix = self.place_order(ordinal)
            return PLACE_ORDER_ACCOUNTS.resolve("market", ix.accounts, keys) if ix else None
        if tag in (EventTag.FILL, EventTag.CONSUME_EVENTS):
            if self.fills:
                return self.fills[0].market
            if self.consume_events:
                return CONSUME_EVENTS_ACCOUNTS.resolve("market", self.consume_events[0].accounts, keys)
            return None
        if tag == EventTag.CANCEL_ORDER and ordinal < len(self.cancels):
            return CANCEL_ORDER_ACCOUNTS.resolve("market", self.cancels[ordinal].accounts, keys)
        return None


class EventRouter:
    """Dispatches classified events to structured handlers.

    Example:
        ```python
        router = EventRouter(gateway, program_id)
        tags = classify_log_lines(tx.log_messages)
        await router.handle_transaction(tx, tags, timestamp=tx.timestamp_ms)
        ```
    """

    def __init__(self, gateway: PersistenceGateway, program_id: str) -> None:
        self._gateway = gateway
        self._program_id = program_id

    @property
    def program_id(self) -> str:
        return self._program_id

    async def handle_transaction(
        self, transaction: Transaction, tags: Sequence[EventTag], *, timestamp: int
    ) -> int:
        """Log and route every tag of one transaction.

        Failures are contained per tag. Returns the number of tags handled
        without error.
        """
        if not tags:
            return 0
        ctx = TransactionContext.build(transaction, self._program_id, timestamp=timestamp)
        handled = 0
        for tag in tags:
            ordinal = ctx.next_ordinal(tag)
            try:
                await self._gateway.log_event(
                    tag.value,
                    signature=ctx.signature,
                    slot=ctx.slot,
                    timestamp=timestamp,
                    market_id=ctx.market_for(tag, ordinal),
                    user_address=transaction.fee_payer,
                )
                await self.route(tag, ctx, ordinal)
                handled += 1
            except Exception as e:
                logger.warning(
                    "Failed to process %s event in %s (slot %d): %s",
                    tag.value,
                    ctx.signature,
                    ctx.slot,
                    e,
                )
        return handled

    async def route(self, tag: EventTag, ctx: TransactionContext, ordinal: int = 0) -> None:
        if tag == EventTag.PLACE_ORDER:
            await self._on_place_order(ctx, ordinal)
        elif tag in (EventTag.FILL, EventTag.CONSUME_EVENTS):
            await self._on_fill(ctx)
        elif tag == EventTag.CANCEL_ORDER:
            await self._on_cancel(ctx, ordinal)
        else:
            # CreateMarket included: markets come from the scanner only
            logger.debug("No structured handling for %s in %s", tag.value, ctx.signature)

    async def _on_place_order(self, ctx: TransactionContext, ordinal: int) -> None:
        ix = ctx.place_order(ordinal)
        if ix is None:
            logger.warning("No place_order instruction #%d in %s", ordinal, ctx.signature)
            return

        keys = ctx.transaction.account_keys
        market = PLACE_ORDER_ACCOUNTS.resolve("market", ix.accounts, keys)
        user = ctx.transaction.fee_payer
        if market is None or user is None:
            logger.warning("Cannot resolve market/user for place_order in %s", ctx.signature)
            return
        open_orders_account = PLACE_ORDER_ACCOUNTS.resolve("open_orders_account", ix.accounts, keys)

        args = decode_place_order_args_or_default(ix.data)
        order_id = ctx.returned_order_id(ordinal)
        if order_id is None:
            order_id = synthesize_order_id(ctx.slot, ctx.timestamp, ordinal)

        matched = sum(
            f.quantity
            for f in ctx.fills
            if f.market == market
            and f.taker == open_orders_account
            and (args.client_order_id is None or f.taker_client_order_id == args.client_order_id)
        )
        filled = max(0, min(args.max_base_lots, matched))
        order_type = args.order_type or OrderType.LIMIT

        outcome = await self._gateway.insert_order(
            OrderDTO(
                market_id=market,
                order_id=order_id,
                user_address=user,
                side=args.side.value,
                order_type=order_type.value,
                price=args.price_lots,
                quantity=args.max_base_lots,
                filled=filled,
                status=initial_order_status(filled, args.max_base_lots, args.order_type),
                timestamp=ctx.timestamp,
                slot=ctx.slot,
                signature=ctx.signature,
                open_orders_account=open_orders_account,
                client_order_id=args.client_order_id,
            )
        )
        logger.debug("Order %s/%d %s", market, order_id, outcome.value)

        await self._record_fills(ctx)

    async def _on_fill(self, ctx: TransactionContext) -> None:
        if not ctx.fills:
            logger.debug("No FillLog records in %s; event kept in log only", ctx.signature)
            return
        await self._record_fills(ctx)

    async def _record_fills(self, ctx: TransactionContext) -> None:
        if ctx.fills_recorded:
            return
        ctx.fills_recorded = True

        own_accounts = ctx.place_order_accounts()
        for fill in ctx.fills:
            try:
                await self._record_fill(ctx, fill, own_accounts)
            except Exception as e:
                logger.warning("Failed to record fill %d in %s: %s", fill.seq_num, ctx.signature, e)

    async def _record_fill(self, ctx: TransactionContext, fill: FillLog, own_accounts: set[str]) -> None:
        maker = await self._gateway.find_order_owner(
            market_id=fill.market, open_orders_account=fill.maker
        )
        if fill.taker in own_accounts and ctx.transaction.fee_payer:
            taker: str | None = ctx.transaction.fee_payer
        else:
            taker = await self._gateway.find_order_owner(
                market_id=fill.market, open_orders_account=fill.taker
            )

        outcome = await self._gateway.record_fill(
            TradeDTO(
                market_id=fill.market,
                maker=maker or fill.maker,
                taker=taker or fill.taker,
                side=fill.trade_side,
                price=fill.price,
                quantity=fill.quantity,
                timestamp=ctx.timestamp,
                slot=ctx.slot,
                signature=ctx.signature,
                seq_num=fill.seq_num,
            ),
            maker_open_orders_account=fill.maker,
            maker_side=fill.maker_side,
            maker_client_order_id=fill.maker_client_order_id,
        )
        logger.debug("Trade %s#%d %s", ctx.signature, fill.seq_num, outcome.value)

    async def _on_cancel(self, ctx: TransactionContext, ordinal: int) -> None:
        if ordinal >= len(ctx.cancels):
            logger.debug("No decodable cancel instruction #%d in %s", ordinal, ctx.signature)
            return
        ix = ctx.cancels[ordinal]
        keys = ctx.transaction.account_keys

        if _discriminator(ix) == CANCEL_ORDER_BY_CLIENT_ORDER_ID_DISCRIMINATOR:
            schema = CANCEL_ORDER_BY_CLIENT_ORDER_ID_ACCOUNTS
            market = schema.resolve("market", ix.accounts, keys)
            open_orders_account = schema.resolve("open_orders_account", ix.accounts, keys)
            if market is None or open_orders_account is None:
                logger.warning("Cannot resolve accounts for cancel in %s", ctx.signature)
                return
            client_order_id = decode_cancel_by_client_order_id_args(ix.data)
            cancelled = await self._gateway.cancel_order_by_client_order_id(
                market_id=market,
                open_orders_account=open_orders_account,
                client_order_id=client_order_id,
                signature=ctx.signature,
                slot=ctx.slot,
                timestamp=ctx.timestamp,
            )
        else:
            market = CANCEL_ORDER_ACCOUNTS.resolve("market", ix.accounts, keys)
            if market is None:
                logger.warning("Cannot resolve market for cancel in %s", ctx.signature)
                return
            order_id = decode_cancel_order_args(ix.data)
            cancelled = await self._gateway.cancel_order(
                market_id=market,
                order_id=order_id,
                signature=ctx.signature,
                slot=ctx.slot,
                timestamp=ctx.timestamp,
            )

        logger.debug("Cancel in %s updated %d order(s)", ctx.signature, cancelled)
