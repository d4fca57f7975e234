"""Pytest configuration and fixtures."""

from __future__ import annotations

import base64
import struct
from collections.abc import Callable, Sequence

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from openbook_indexer.config import DEFAULT_OPENBOOK_PROGRAM_ID
from openbook_indexer.decoder.events import FILL_LOG_DISCRIMINATOR
from openbook_indexer.decoder.instructions import PLACE_ORDER_DISCRIMINATOR
from openbook_indexer.decoder.layout import decode_pubkey, encode_pubkey
from openbook_indexer.ingestor.models import CompiledInstruction, Transaction
from openbook_indexer.storage.database import DatabaseManager
from openbook_indexer.storage.gateway import PersistenceGateway
from openbook_indexer.storage.models import Base


def pubkey_for(n: int) -> str:
    return encode_pubkey(bytes([n]) * 32)


def place_order_data(
    side: int,
    price: int,
    quantity: int,
    *,
    client_order_id: int | None = None,
    order_type: int = 0,
) -> bytes:
    data = PLACE_ORDER_DISCRIMINATOR + struct.pack("<Bqq", side, price, quantity)
    if client_order_id is not None:
        data += struct.pack("<qQB", 0, client_order_id, order_type)
    return data


def fill_log_payload(
    *,
    market: str,
    maker: str,
    taker: str,
    price: int,
    quantity: int,
    taker_side: int = 0,
    seq_num: int = 0,
    maker_client_order_id: int = 0,
    taker_client_order_id: int = 0,
    timestamp: int = 1_700_000_000,
) -> bytes:
    return b"".join(
        [
            FILL_LOG_DISCRIMINATOR,
            decode_pubkey(market),
            struct.pack("<BB?QQ", taker_side, 0, False, timestamp, seq_num),
            decode_pubkey(maker),
            struct.pack("<QQQ", maker_client_order_id, 0, timestamp),
            decode_pubkey(taker),
            struct.pack("<QQqq", taker_client_order_id, 0, price, quantity),
        ]
    )


def program_data_line(payload: bytes) -> str:
    return "Program data: " + base64.b64encode(payload).decode("ascii")


def order_id_return_line(program_id: str, order_id: int) -> str:
    data = b"\x01" + order_id.to_bytes(16, "little", signed=True)
    return f"Program return: {program_id} " + base64.b64encode(data).decode("ascii")


def build_transaction(
    *,
    signature: str,
    slot: int,
    account_keys: Sequence[str],
    instructions: Sequence[tuple[int, Sequence[int], bytes]] = (),
    logs: Sequence[str] = (),
    block_time: int | None = None,
) -> Transaction:
    return Transaction(
        signature=signature,
        slot=slot,
        account_keys=tuple(account_keys),
        instructions=tuple(
            CompiledInstruction(program_id_index=p, accounts=tuple(a), data=d)
            for p, a, d in instructions
        ),
        log_messages=tuple(logs),
        block_time=block_time,
    )


@pytest.fixture
def program_id() -> str:
    return DEFAULT_OPENBOOK_PROGRAM_ID


@pytest.fixture
def pubkey() -> Callable[[int], str]:
    """Deterministic distinct base58 addresses: ``pubkey(1)``, ``pubkey(2)``..."""
    return pubkey_for


@pytest.fixture
def fill_log():
    return fill_log_payload


@pytest.fixture
def program_data():
    return program_data_line


@pytest.fixture
def order_id_return():
    return order_id_return_line


@pytest.fixture
def order_bytes():
    return place_order_data


@pytest.fixture
def build_tx():
    return build_transaction


@pytest.fixture
def place_order_tx(program_id):
    """Factory for a single place_order transaction.

    Account keys: 0 user, 1 open orders account, 2 market, 3 program.
    """

    def make(
        *,
        user: str,
        market: str,
        open_orders: str | None = None,
        side: int = 0,
        price: int = 1500,
        quantity: int = 25,
        slot: int = 42,
        signature: str = "sig-place-1",
        extra_logs: Sequence[str] = (),
        data: bytes | None = None,
        client_order_id: int | None = None,
    ) -> Transaction:
        open_orders = open_orders or pubkey_for(200)
        keys = [user, open_orders, market, program_id]
        # place_order accounts: signer, open_orders, admin, token acct, market, ...
        accounts = [0, 1, 3, 0, 2, 3, 3, 3, 3, 3, 3, 3]
        ix_data = (
            data
            if data is not None
            else place_order_data(side, price, quantity, client_order_id=client_order_id)
        )
        logs = [
            f"Program {program_id} invoke [1]",
            "Program log: Instruction: PlaceOrder",
            *extra_logs,
            f"Program {program_id} success",
        ]
        return build_transaction(
            signature=signature,
            slot=slot,
            account_keys=keys,
            instructions=[(3, accounts, ix_data)],
            logs=logs,
        )

    return make


@pytest.fixture
async def async_engine():
    """In-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_manager(async_engine) -> DatabaseManager:
    return DatabaseManager.from_engine(async_engine)


@pytest.fixture
def gateway(db_manager) -> PersistenceGateway:
    return PersistenceGateway(db_manager)
