"""Market discovery over the program's accounts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import base58

from openbook_indexer.decoder.layout import DecodeError
from openbook_indexer.decoder.market import (
    DEFAULT_BASE_DECIMALS,
    DEFAULT_QUOTE_DECIMALS,
    MARKET_DISCRIMINATOR,
    MarketAccount,
    decode_market_account,
)
from openbook_indexer.storage.repos import MarketDTO

if TYPE_CHECKING:
    from openbook_indexer.ingestor.rpc import SolanaRpcClient
    from openbook_indexer.storage.gateway import PersistenceGateway

logger = logging.getLogger(__name__)


def market_account_filters() -> list[dict[str, object]]:
    """``getProgramAccounts`` filters selecting market accounts."""
    return [
        {
            "memcmp": {
                "offset": 0,
                "bytes": base58.b58encode(MARKET_DISCRIMINATOR).decode("ascii"),
            }
        }
    ]


@dataclass(frozen=True)
class ScanResult:
    markets: list[MarketAccount]
    failures: int


class MarketScanner:
    """Finds every market account of the program and upserts it.

    Decimals are not read from the mints; every market gets the configured
    defaults.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        gateway: PersistenceGateway,
        program_id: str,
        *,
        base_decimals: int = DEFAULT_BASE_DECIMALS,
        quote_decimals: int = DEFAULT_QUOTE_DECIMALS,
    ) -> None:
        self._rpc = rpc
        self._gateway = gateway
        self._program_id = program_id
        self._base_decimals = base_decimals
        self._quote_decimals = quote_decimals

    async def scan_markets(self) -> ScanResult:
        """Fetch and decode market accounts.

        Accounts owned by another program or failing to decode are skipped
        and counted as failures. RPC errors propagate.
        """
        accounts = await self._rpc.get_program_accounts(
            self._program_id, filters=market_account_filters()
        )
        logger.info("Found %d accounts matching the market discriminator", len(accounts))

        markets: list[MarketAccount] = []
        failures = 0
        for account in accounts:
            if account.owner != self._program_id:
                logger.warning(
                    "Skipping %s: not owned by the program (owner: %s)", account.pubkey, account.owner
                )
                failures += 1
                continue
            try:
                market = decode_market_account(
                    account.data,
                    account.pubkey,
                    base_decimals=self._base_decimals,
                    quote_decimals=self._quote_decimals,
                )
            except DecodeError as e:
                logger.warning("Failed to parse market %s: %s", account.pubkey, e)
                failures += 1
                continue
            logger.info(
                "Market %s - %s (base: %s, quote: %s)",
                market.address,
                market.name,
                market.base_mint[:8],
                market.quote_mint[:8],
            )
            markets.append(market)

        logger.info("Parsed %d markets", len(markets))
        return ScanResult(markets=markets, failures=failures)

    async def index_markets(self, markets: list[MarketAccount]) -> int:
        """Upsert markets; returns how many were written."""
        created_at = int(datetime.now(UTC).timestamp() * 1000)
        indexed = new = 0
        for market in markets:
            try:
                outcome = await self._gateway.upsert_market(
                    MarketDTO(
                        id=market.address,
                        base_mint=market.base_mint,
                        quote_mint=market.quote_mint,
                        symbol=market.symbol,
                        base_decimals=market.base_decimals,
                        quote_decimals=market.quote_decimals,
                        created_at=created_at,
                    )
                )
            except Exception as e:
                logger.warning("Failed to index market %s: %s", market.address, e)
                continue
            indexed += 1
            if outcome.inserted:
                new += 1
                logger.debug("New market %s", market.address)
        logger.info(
            "Indexed %d/%d markets (%d new, %d re-scanned)",
            indexed,
            len(markets),
            new,
            indexed - new,
        )
        return indexed

    async def run(self) -> ScanResult:
        result = await self.scan_markets()
        await self.index_markets(result.markets)
        return result
