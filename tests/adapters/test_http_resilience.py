from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
import pytest

from seedport.adapters.http_resilience import (
    PayloadTooLargeError,
    ResilientClient,
    build_cache_storage,
)
from seedport.config.http_resilience import CacheConfig, RateLimit, ResilienceConfig

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


def _client(handler: httpx.MockTransport) -> ResilientClient:
    client = ResilientClient(
        ResilienceConfig(name="test", cache=None, ratelimit=RateLimit(max_calls=10, per_seconds=1))
    )
    client._client = httpx.AsyncClient(transport=handler)  # noqa: SLF001  # type: ignore[reportPrivateUsage]
    return client


async def _chunks() -> AsyncIterator[bytes]:
    for chunk in (b"abc", b"def", b"ghi"):
        yield chunk


def test_download_reads_chunked_body() -> None:
    async def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "image/gif"}, content=_chunks())

    async def scenario() -> None:
        async with _client(httpx.MockTransport(handler)) as client:
            download = await client.download("https://example.org/a.gif", max_bytes=9)
        assert download.content == b"abcdefghi"
        assert download.content_type == "image/gif"
        assert download.url == "https://example.org/a.gif"

    asyncio.run(scenario())


def test_download_stops_once_limit_is_passed() -> None:
    async def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_chunks())

    async def scenario() -> None:
        async with _client(httpx.MockTransport(handler)) as client:
            with pytest.raises(PayloadTooLargeError) as excinfo:
                await client.download("https://example.org/a.gif", max_bytes=5)
        assert excinfo.value.limit == 5

    asyncio.run(scenario())


def test_download_raises_for_error_status() -> None:
    async def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async def scenario() -> None:
        async with _client(httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await client.download("https://example.org/a.gif")

    asyncio.run(scenario())


def test_build_cache_storage() -> None:
    assert build_cache_storage(None) is None
    assert build_cache_storage(CacheConfig(enabled=False)) is None
    assert build_cache_storage(CacheConfig(backend="memory")) is not None
    with pytest.raises(ValueError, match="Unsupported cache backend"):
        build_cache_storage(CacheConfig(backend="redis"))  # type: ignore[arg-type]
