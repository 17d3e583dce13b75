"""Rate-limited, retrying httpx client with optional response caching."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import httpx
from aiolimiter import AsyncLimiter
from hishel import AsyncSqliteStorage
from hishel.httpx import AsyncCacheClient
from httpx_retries import Retry, RetryTransport

from seedport.config.storage import get_storage_config

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    from seedport.config.http_resilience import CacheConfig, ResilienceConfig, RetryPolicy

log = logging.getLogger(__name__)

T = TypeVar("T")


class PayloadTooLargeError(httpx.HTTPError):
    """A download grew past the caller's byte limit and was abandoned."""

    def __init__(self, url: str, limit: int) -> None:
        super().__init__(f"{url} exceeds {limit} bytes")
        self.url = url
        self.limit = limit


@dataclass(frozen=True, slots=True)
class Download:
    url: str
    content_type: str | None
    content: bytes


def build_retry(policy: RetryPolicy) -> Retry:
    return Retry(
        total=policy.attempts,
        backoff_factor=policy.backoff_factor,
        max_backoff_wait=policy.backoff_cap,
        backoff_jitter=policy.jitter,
        respect_retry_after_header=policy.honour_retry_after,
        allowed_methods=tuple(policy.methods),
        status_forcelist=tuple(policy.statuses),
        retry_on_exceptions=policy.errors,
    )


def build_cache_storage(config: CacheConfig | None) -> AsyncSqliteStorage | None:
    if config is None or not config.enabled:
        return None
    match config.backend:
        case "memory":
            database_path = ":memory:"
        case "sqlite":
            database_path = config.sqlite_path or str(get_storage_config().http_cache_path())
        case other:
            raise ValueError(f"Unsupported cache backend: {other}")
    return AsyncSqliteStorage(
        database_path=database_path,
        default_ttl=config.ttl_seconds,
        refresh_ttl_on_access=config.refresh_on_access,
    )


class ResilientClient:
    """Async HTTP client shared by adapters that reach out to the network.

    Retries go through :class:`httpx_retries.RetryTransport`; the optional
    rate limit wraps every request, streamed downloads included.
    """

    def __init__(self, config: ResilienceConfig) -> None:
        self.config = config
        self._limiter = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit is not None
            else None
        )
        transport = RetryTransport(retry=build_retry(config.retry))
        headers = dict(config.headers or {})
        storage = build_cache_storage(config.cache)
        self._client: httpx.AsyncClient
        if storage is None:
            self._client = httpx.AsyncClient(
                timeout=config.timeout_seconds,
                follow_redirects=config.follow_redirects,
                headers=headers,
                transport=transport,
            )
        else:
            self._client = AsyncCacheClient(
                timeout=config.timeout_seconds,
                follow_redirects=config.follow_redirects,
                headers=headers,
                transport=transport,
                storage=storage,
            )

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, url: str) -> httpx.Response:
        return await self._throttled(lambda: self._client.get(url))

    async def download(self, url: str, *, max_bytes: int | None = None) -> Download:
        """GET ``url`` and read its body, giving up once ``max_bytes`` is passed.

        Non-2xx responses raise :class:`httpx.HTTPStatusError`.
        """

        async def fetch() -> Download:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()
                declared = response.headers.get("content-length", "")
                if max_bytes is not None and declared.isdigit() and int(declared) > max_bytes:
                    raise PayloadTooLargeError(url, max_bytes)
                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if max_bytes is not None and len(body) > max_bytes:
                        raise PayloadTooLargeError(url, max_bytes)
                log.debug("%s: downloaded %d bytes from %s", self.config.name, len(body), url)
                return Download(
                    url=str(response.url),
                    content_type=response.headers.get("content-type"),
                    content=bytes(body),
                )

        return await self._throttled(fetch)

    async def _throttled(self, func: Callable[[], Awaitable[T]]) -> T:
        if self._limiter is None:
            return await func()
        async with self._limiter:
            return await func()
