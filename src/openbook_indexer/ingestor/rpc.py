"""Solana JSON-RPC client with rate limiting and failover.

This module provides an HTTP JSON-RPC client for the handful of calls the
indexer needs, with:
- Token-bucket rate limiting to respect provider limits
- Retry logic with exponential backoff
- Failover to a secondary RPC URL
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any

import aiohttp

from openbook_indexer.ingestor.models import ProgramAccount, SignatureInfo, Transaction

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_REQUESTS_PER_SECOND = 10
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.5
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_COMMITMENT = "confirmed"


class SolanaRpcError(Exception):
    """Base exception for Solana RPC errors."""


class RpcRequestError(SolanaRpcError):
    """Raised when an RPC request cannot be completed."""


class RpcResponseError(SolanaRpcError):
    """Raised when the node answers with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"RPC {method} returned error {code}: {message}")
        self.method = method
        self.code = code


class RateLimitError(SolanaRpcError):
    """Raised when the provider rejects a request with HTTP 429."""


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class SolanaRpcClient:
    """JSON-RPC client for a Solana node.

    Example:
        ```python
        client = SolanaRpcClient("http://localhost:8899")
        slot = await client.get_slot()
        page = await client.get_signatures_for_address(program_id, limit=100)
        await client.close()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        commitment: str = DEFAULT_COMMITMENT,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the RPC client.

        Args:
            rpc_url: Primary RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            commitment: Default commitment level for reads.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum attempts per endpoint.
            retry_delay_seconds: Initial delay between retries.
            request_timeout_seconds: Total timeout for one HTTP request.

        Raises:
            ValueError: If ``max_retries`` is below 1.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._commitment = commitment
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._timeout = request_timeout_seconds

        self._session: aiohttp.ClientSession | None = None
        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._request_ids = itertools.count(1)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

    @property
    def commitment(self) -> str:
        return self._commitment

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, url: str, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._request_ids), "method": method, "params": params}
        session = await self._get_session()
        try:
            async with session.post(url, json=payload) as response:
                if response.status == 429:
                    raise RateLimitError(f"RPC {method} rate limited by {url}")
                if response.status >= 400:
                    text = await response.text()
                    raise RpcRequestError(f"RPC {method} HTTP {response.status}: {text[:200]}")
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise RpcRequestError(f"RPC {method} request to {url} failed: {e}") from e

        if not isinstance(body, dict):
            raise RpcRequestError(f"RPC {method} returned a non-object body")
        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RpcResponseError(method, code, message)
        return body.get("result")

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _call_with_retries(self, url: str, method: str, params: list[Any], *, label: str) -> Any:
        delay = self._retry_delay
        attempt = 0
        while True:
            try:
                return await self._post(url, method, params)
            except RpcResponseError:
                raise
            except SolanaRpcError as e:
                attempt += 1
                logger.warning(
                    "%s RPC %s failed (attempt %d/%d): %s",
                    label,
                    method,
                    attempt,
                    self._max_retries,
                    e,
                )
                if attempt >= self._max_retries:
                    raise
                await asyncio.sleep(delay)
                delay *= 2

    async def _execute_with_retry(self, method: str, params: list[Any]) -> Any:
        """Execute an RPC call with retry and failover logic.

        Raises:
            RpcResponseError: The node rejected the request itself.
            SolanaRpcError: All retries and failover failed.
        """
        await self._rate_limiter.acquire()

        last_error: SolanaRpcError | None = None
        if self._should_try_primary():
            try:
                result = await self._call_with_retries(self._rpc_url, method, params, label="Primary")
                self._primary_healthy = True
                return result
            except RpcResponseError:
                raise
            except SolanaRpcError as e:
                last_error = e
                self._primary_healthy = False
                self._last_primary_check = time.monotonic()

        if self._fallback_rpc_url:
            result = await self._call_with_retries(
                self._fallback_rpc_url, method, params, label="Fallback"
            )
            logger.info("Fallback RPC succeeded for %s", method)
            return result

        raise RpcRequestError(f"RPC call {method} failed after all retries: {last_error}")

    async def get_slot(self, *, commitment: str | None = None) -> int:
        result = await self._execute_with_retry(
            "getSlot", [{"commitment": commitment or self._commitment}]
        )
        return int(result)

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        before: str | None = None,
        limit: int = 100,
        commitment: str | None = None,
    ) -> list[SignatureInfo]:
        """Fetch one page of signatures, newest first.

        Args:
            address: Account whose history to list.
            before: Only signatures older than this one.
            limit: Page size (the node caps this at 1000).
            commitment: Overrides the client's default commitment.
        """
        config: dict[str, Any] = {"limit": limit, "commitment": commitment or self._commitment}
        if before:
            config["before"] = before
        result = await self._execute_with_retry("getSignaturesForAddress", [address, config])
        return [SignatureInfo.from_rpc(item) for item in result or []]

    async def get_transaction(self, signature: str, *, commitment: str | None = None) -> Transaction | None:
        """Fetch a transaction, or None when the node does not have it."""
        config = {
            "encoding": "json",
            "maxSupportedTransactionVersion": 0,
            "commitment": commitment or self._commitment,
        }
        result = await self._execute_with_retry("getTransaction", [signature, config])
        if result is None:
            return None
        return Transaction.from_rpc(result)

    async def get_program_accounts(
        self,
        program_id: str,
        *,
        filters: list[dict[str, Any]] | None = None,
        commitment: str | None = None,
    ) -> list[ProgramAccount]:
        config: dict[str, Any] = {
            "encoding": "base64",
            "commitment": commitment or self._commitment,
        }
        if filters:
            config["filters"] = filters
        result = await self._execute_with_retry("getProgramAccounts", [program_id, config])
        # withContext responses wrap the list in {"context", "value"}
        if isinstance(result, dict):
            result = result.get("value")
        return [ProgramAccount.from_rpc(item) for item in result or []]
