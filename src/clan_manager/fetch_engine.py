"""
Fetch Engine for the stats API.

``FetchEngine.fetch_batch`` turns a list of URLs into a positionally aligned
list of FetchResults:
- Identical URLs are requested once and fanned back out to every position
- A run-scoped cache (held by FetchContext) short-circuits repeated URLs
- A per-run fetch budget turns new URLs into BUDGET_EXCEEDED results once spent
- URLs are sent in fixed-size batches; requests of a batch run concurrently,
  each authorized with a randomly chosen active key
- 403/429 ban the key for the rest of the run, 5xx and transport errors are
  retried with linear backoff, 404 is a cached "not found"
- An empty key pool or a batch that is still failing after the last
  attempt aborts the call
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Optional, Sequence

import httpx

from .audit_logger import AuditLogger
from .config import ApiKey, FetchConfig, RetryConfig
from .enums import FetchStatus, LogLevel
from .exceptions import KeyPoolExhaustedError, NetworkError, RetryExhaustedError
from .key_pool import KeyPool
from .models import FetchResult
from .retry_manager import RetryManager, Sleeper


@dataclass
class FetchContext:
    """
    Mutable state of one pipeline run.

    Holds the shrinking key pool, the URL cache and the budget counter.
    A new context is created for every run and passed to the engine.
    """

    key_pool: KeyPool
    max_fetches: int
    cache: dict[str, FetchResult] = field(default_factory=dict)
    fetch_count: int = 0

    @classmethod
    def create(
        cls,
        keys: Sequence[ApiKey],
        max_fetches: int,
        rng: Optional[random.Random] = None,
    ) -> "FetchContext":
        return cls(key_pool=KeyPool(keys, rng=rng), max_fetches=max_fetches)

    @property
    def budget_remaining(self) -> int:
        return max(0, self.max_fetches - self.fetch_count)


class _IncompleteBatch(NetworkError):
    """Some URLs of the current batch need another attempt."""


class FetchEngine:
    """Deduplicating, caching, key-rotating batch fetcher."""

    COMPONENT = "FetchEngine"

    def __init__(
        self,
        context: FetchContext,
        fetch_config: FetchConfig,
        retry_config: RetryConfig,
        logger: Optional[AuditLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        """
        Initialize the fetch engine.

        Args:
            context: Run-scoped key pool, cache and budget
            fetch_config: Batch size, budget, pause and timeout settings
            retry_config: Attempt count and backoff base
            logger: Optional audit logger
            transport: Optional httpx transport (tests pass an httpx.MockTransport)
            sleep: Awaitable sleep used for backoff and batch pauses
        """
        self._context = context
        self._config = fetch_config
        self._logger = logger
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self._retry_manager = RetryManager(retry_config, sleep=self._sleep)
        self._client: Optional[httpx.AsyncClient] = None
        self._budget_warned = False

    async def __aenter__(self) -> "FetchEngine":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def context(self) -> FetchContext:
        return self._context

    @property
    def api_base(self) -> str:
        return self._config.api_base.rstrip("/")

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_seconds),
                transport=self._transport,
                follow_redirects=True,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_batch(self, urls: Sequence[str]) -> list[FetchResult]:
        """
        Fetch ``urls`` and return one result per input position.

        Raises:
            KeyPoolExhaustedError: If every key was banned before the work finished
            RetryExhaustedError: If server or network errors outlast the attempt limit
        """
        if not urls:
            return []

        cache = self._context.cache
        local: dict[str, FetchResult] = {}
        pending: list[str] = []

        for url in dict.fromkeys(urls):
            if url in cache:
                continue
            if self._context.fetch_count >= self._context.max_fetches:
                local[url] = FetchResult(url=url, status=FetchStatus.BUDGET_EXCEEDED)
                continue
            self._context.fetch_count += 1
            pending.append(url)

        if len(local) and not self._budget_warned:
            self._budget_warned = True
            self._log(
                LogLevel.WARN,
                "Fetch budget exhausted, skipping new URLs",
                {"budget": self._context.max_fetches, "skipped": len(local)},
            )

        batch_size = max(1, self._config.batch_size)
        for index, start in enumerate(range(0, len(pending), batch_size)):
            if index > 0:
                await self._sleep(self._config.batch_pause_seconds)
            local.update(await self._fetch_chunk(pending[start:start + batch_size]))

        return [cache.get(url) or local[url] for url in urls]

    async def _fetch_chunk(self, chunk: list[str]) -> dict[str, FetchResult]:
        """Fetch one batch, re-issuing only its unresolved URLs on each retry."""
        outstanding = list(chunk)
        resolved: dict[str, FetchResult] = {}

        async def attempt() -> dict[str, FetchResult]:
            nonlocal outstanding
            self._context.key_pool.ensure_available()

            results = await asyncio.gather(
                *(self._fetch_one(url) for url in outstanding),
                return_exceptions=True,
            )
            # siblings have all settled before anything is raised
            for result in results:
                if isinstance(result, BaseException):
                    raise result

            retry: list[str] = []
            for result in results:
                if result.status.is_retryable:
                    retry.append(result.url)
                    continue
                resolved[result.url] = result
                if result.status.is_cacheable:
                    self._context.cache[result.url] = result

            outstanding = retry
            if retry:
                raise _IncompleteBatch(
                    code="batch_incomplete",
                    message=f"{len(retry)} URL(s) need another attempt",
                    details={"urls": retry},
                )
            return resolved

        outcome = await self._retry_manager.execute_with_retry(
            attempt,
            is_retryable=lambda e: isinstance(e, _IncompleteBatch),
        )
        if outcome.success:
            return outcome.result

        error = outcome.last_error
        if isinstance(error, KeyPoolExhaustedError):
            self._log_error("API key pool exhausted", error)
            raise error
        if isinstance(error, _IncompleteBatch):
            exhausted = RetryExhaustedError(
                code="retry_exhausted",
                message=f"Batch still failing after {outcome.attempts} attempts",
                details={"urls": list(outstanding), "attempts": outcome.attempts},
            )
            self._log_error("Batch retries exhausted", exhausted)
            raise exhausted from error
        raise error

    async def _fetch_one(self, url: str) -> FetchResult:
        key = self._context.key_pool.choose()
        client = self._ensure_client()

        try:
            response = await client.get(url, headers={"Authorization": f"Bearer {key.value}"})
        except httpx.TimeoutException as e:
            self._log(LogLevel.WARN, "Request timed out", {"url": url, "error": str(e)})
            return FetchResult(url=url, status=FetchStatus.NETWORK_ERROR)
        except httpx.HTTPError as e:
            self._log(LogLevel.WARN, "Transport error", {"url": url, "error": str(e)})
            return FetchResult(url=url, status=FetchStatus.NETWORK_ERROR)

        code = response.status_code

        if code == 200:
            try:
                payload = response.json()
            except ValueError:
                self._log(LogLevel.WARN, "Malformed JSON body", {"url": url})
                return FetchResult(url=url, status=FetchStatus.SERVER_ERROR, http_status_code=code)
            return FetchResult(url=url, status=FetchStatus.OK, payload=payload, http_status_code=code)

        if code == 404:
            return FetchResult(url=url, status=FetchStatus.NOT_FOUND, http_status_code=code)

        if code in (403, 429):
            status = FetchStatus.AUTH_FAILED if code == 403 else FetchStatus.RATE_LIMITED
            if await self._context.key_pool.ban(key, reason=f"http_{code}"):
                self._log(
                    LogLevel.WARN,
                    f"API {code} on key {key.name}, removed from pool",
                    {"key_name": key.name, "remaining": len(self._context.key_pool)},
                )
            return FetchResult(url=url, status=status, http_status_code=code)

        if code >= 500:
            self._log(LogLevel.WARN, f"API {code}", {"url": url})
            return FetchResult(url=url, status=FetchStatus.SERVER_ERROR, http_status_code=code)

        self._log(LogLevel.WARN, f"API {code}, not retried", {"url": url})
        return FetchResult(url=url, status=FetchStatus.CLIENT_ERROR, http_status_code=code)

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    def _log_error(self, message: str, error: Exception) -> None:
        if self._logger:
            self._logger.log_error(self.COMPONENT, message, error=error)
