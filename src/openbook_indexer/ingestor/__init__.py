"""Data ingestion layer - Solana RPC, log subscription, backfill and live routing."""

from openbook_indexer.ingestor.backfill import BackfillController, BackfillResult
from openbook_indexer.ingestor.classifier import (
    EventTag,
    classify_log_line,
    classify_log_lines,
    extract_program_data,
    extract_program_returns,
)
from openbook_indexer.ingestor.live import CountersSnapshot, IngestionCounters, LiveConsumer
from openbook_indexer.ingestor.log_stream import (
    LogStreamConnectionError,
    LogStreamError,
    LogSubscription,
    StreamClosedError,
)
from openbook_indexer.ingestor.models import (
    CompiledInstruction,
    LogNotification,
    ProgramAccount,
    SignatureInfo,
    Transaction,
)
from openbook_indexer.ingestor.router import EventRouter, TransactionContext
from openbook_indexer.ingestor.rpc import (
    RateLimitError,
    RpcRequestError,
    RpcResponseError,
    SolanaRpcClient,
    SolanaRpcError,
)

__all__ = [
    "BackfillController",
    "BackfillResult",
    "CompiledInstruction",
    "CountersSnapshot",
    "EventRouter",
    "EventTag",
    "IngestionCounters",
    "LiveConsumer",
    "LogNotification",
    "LogStreamConnectionError",
    "LogStreamError",
    "LogSubscription",
    "ProgramAccount",
    "RateLimitError",
    "RpcRequestError",
    "RpcResponseError",
    "SignatureInfo",
    "SolanaRpcClient",
    "SolanaRpcError",
    "StreamClosedError",
    "Transaction",
    "TransactionContext",
    "classify_log_line",
    "classify_log_lines",
    "extract_program_data",
    "extract_program_returns",
]
