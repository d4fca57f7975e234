"""Storage layer - Database schemas, repositories and the persistence gateway."""

from openbook_indexer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from openbook_indexer.storage.gateway import PersistenceGateway
from openbook_indexer.storage.models import (
    OPEN_STATUSES,
    Base,
    CancelModel,
    EventModel,
    MarketModel,
    OrderModel,
    TradeModel,
)
from openbook_indexer.storage.repos import (
    CANCEL_BY_CLIENT_ORDER_ID,
    CANCEL_BY_ORDER_ID,
    CancelDTO,
    CancelRepository,
    EventDTO,
    EventRepository,
    InsertOutcome,
    MarketDTO,
    MarketRepository,
    OpenOrderValue,
    OrderBookDepth,
    OrderDTO,
    OrderRepository,
    PriceLevel,
    TradeDTO,
    TradeRepository,
)

__all__ = [
    "Base",
    "CANCEL_BY_CLIENT_ORDER_ID",
    "CANCEL_BY_ORDER_ID",
    "CancelDTO",
    "CancelModel",
    "CancelRepository",
    "DatabaseManager",
    "EventDTO",
    "EventModel",
    "EventRepository",
    "InsertOutcome",
    "MarketDTO",
    "MarketModel",
    "MarketRepository",
    "OPEN_STATUSES",
    "OpenOrderValue",
    "OrderBookDepth",
    "OrderDTO",
    "OrderModel",
    "OrderRepository",
    "PersistenceGateway",
    "PriceLevel",
    "TradeDTO",
    "TradeModel",
    "TradeRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
