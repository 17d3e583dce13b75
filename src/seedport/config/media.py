"""Media download configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from .env import optional_int_env
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig
from .storage import get_storage_config

if TYPE_CHECKING:
    from pathlib import Path

    from .storage import StorageConfig

DEFAULT_MAX_MEDIA_BYTES: Final[int] = 20 * 1024 * 1024
DEFAULT_USER_AGENT: Final[str] = "seedport-media/0.1"


def _default_resilience() -> ResilienceConfig:
    return ResilienceConfig(
        name="media",
        timeout_seconds=20.0,
        ratelimit=RateLimit(max_calls=4, per_seconds=1.0),
        cache=CacheConfig(enabled=False),
        headers={"User-Agent": DEFAULT_USER_AGENT},
    )


@dataclass(frozen=True, slots=True)
class MediaConfig:
    media_dir: Path
    max_bytes: int = DEFAULT_MAX_MEDIA_BYTES
    resilience: ResilienceConfig = field(default_factory=_default_resilience)


def get_media_config(*, storage: StorageConfig | None = None) -> MediaConfig:
    storage_config = storage or get_storage_config()
    return MediaConfig(
        media_dir=storage_config.media_dir,
        max_bytes=optional_int_env("SEEDPORT_MEDIA_MAX_BYTES", DEFAULT_MAX_MEDIA_BYTES),
    )
