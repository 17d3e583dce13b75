"""Media service that downloads URLs into the local media directory."""

from __future__ import annotations

import logging
import mimetypes
from contextlib import asynccontextmanager
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Final, TypeAlias
from urllib.parse import unquote, urlparse
from uuid import uuid4

import httpx

from seedport.adapters.http_resilience import PayloadTooLargeError, ResilientClient
from seedport.domain.errors import MediaFetchError
from seedport.domain.ports import MediaRef

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Mapping
    from pathlib import Path

    from seedport.adapters.http_resilience import Download
    from seedport.config.http_resilience import ResilienceConfig
    from seedport.config.media import MediaConfig

log = logging.getLogger(__name__)

ClientFactory: TypeAlias = "Callable[[ResilienceConfig], ResilientClient]"

HTML_TYPES: Final[frozenset[str]] = frozenset({"text/html", "application/xhtml+xml"})
DEFAULT_EXTENSION: Final[str] = ".bin"


def _mime_type(content_type: str | None) -> str:
    content_type = content_type or "application/octet-stream"
    return content_type.split(";", 1)[0].strip().lower()


def _extension(url: str, mime_type: str) -> str:
    suffix = PurePosixPath(unquote(urlparse(url).path)).suffix.lower()
    if suffix:
        return suffix
    return mimetypes.guess_extension(mime_type) or DEFAULT_EXTENSION


def _max_bytes(default: int, constraints: Mapping[str, object] | None) -> int:
    if not constraints:
        return default
    limit = constraints.get("maxSize")
    if isinstance(limit, int) and limit > 0:
        return min(limit, default)
    return default


class HttpMediaService:
    """Implements :class:`seedport.domain.ports.MediaService` over httpx.

    Files land in ``<media_dir>/<id[:2]>/<id><ext>``; the returned id is the
    generated UUID. Inside :meth:`session` all downloads go through one
    client, so the configured rate limit holds across rows; outside it each
    call opens its own.
    """

    def __init__(
        self,
        config: MediaConfig,
        *,
        client_factory: ClientFactory = ResilientClient,
    ) -> None:
        self.config = config
        self._client_factory = client_factory
        self._client: ResilientClient | None = None

    def path_for(self, media_id: str, extension: str) -> Path:
        return self.config.media_dir / media_id[:2] / f"{media_id}{extension}"

    @asynccontextmanager
    async def session(self) -> AsyncIterator[ResilientClient]:
        if self._client is not None:
            yield self._client
            return
        async with self._client_factory(self.config.resilience) as client:
            self._client = client
            try:
                yield client
            finally:
                self._client = None

    async def _download(self, url: str, limit: int) -> Download:
        async with self.session() as client:
            return await client.download(url, max_bytes=limit)

    async def upload_from_url(
        self,
        url: str,
        context: str,
        constraints: Mapping[str, object] | None = None,
    ) -> MediaRef:
        limit = _max_bytes(self.config.max_bytes, constraints)
        try:
            download = await self._download(url, limit)
        except PayloadTooLargeError as exc:
            raise MediaFetchError(f"File too large: exceeds {exc.limit} bytes") from exc
        except httpx.HTTPError as exc:
            raise MediaFetchError(f"Failed to fetch URL: {exc}") from exc

        mime_type = _mime_type(download.content_type)
        if mime_type in HTML_TYPES:
            raise MediaFetchError("URL returned an HTML page instead of a media file")

        content = download.content
        media_id = str(uuid4())
        path = self.path_for(media_id, _extension(url, mime_type))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as exc:
            raise MediaFetchError(f"Could not store media: {exc}") from exc

        log.info("Stored %s media %s (%s, %d bytes)", context, media_id, mime_type, len(content))
        return MediaRef(id=media_id)
