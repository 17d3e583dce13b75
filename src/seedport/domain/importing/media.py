"""Record normalisation before reference resolution.

Two steps run on every import record:

* media columns holding a URL (plain or markdown ``[text](url)``) are
  materialised through the media service and replaced by the returned id;
* nested aggregate objects (``"position": {"lat": .., "lng": ..}``) are
  flattened into their storage columns (``position_lat``, ``position_lng``).

:func:`nest_aggregates` is the inverse used when exporting backups.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from seedport.domain.errors import MediaFetchError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from seedport.domain.ports import MediaService
    from seedport.domain.records import Record
    from seedport.domain.schema import EntityDescriptor

log = logging.getLogger(__name__)

MEDIA_CONTEXT: Final[str] = "seed"
MAX_REPORTED_URL_LENGTH: Final[int] = 80

_MARKDOWN_LINK = re.compile(r"^\[[^\]]*\]\((https?://[^)\s]+)\)$")
_PLAIN_URL = re.compile(r"^https?://\S+$")


@dataclass(frozen=True, slots=True)
class MediaError:
    row: int
    field: str
    url: str
    error: str

    @property
    def message(self) -> str:
        return f"Row {self.row}: {self.field} {self.url}: {self.error}"


def extract_url(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if (match := _MARKDOWN_LINK.match(text)) is not None:
        return match.group(1)
    if _PLAIN_URL.match(text):
        return text
    return None


def shorten_url(url: str) -> str:
    if len(url) <= MAX_REPORTED_URL_LENGTH:
        return url
    return url[:MAX_REPORTED_URL_LENGTH] + "..."


async def resolve_media_urls(
    entity: EntityDescriptor,
    record: Record,
    media_service: MediaService | None,
    row: int,
) -> list[MediaError]:
    """Swap URLs in media columns for stored media ids, in place.

    A failed fetch nulls the field and is reported; it never fails the row.
    """

    if media_service is None:
        return []
    errors: list[MediaError] = []
    for column in entity.columns:
        if not column.is_media:
            continue
        url = extract_url(record.get(column.name))
        if url is None:
            continue
        try:
            media = await media_service.upload_from_url(url, MEDIA_CONTEXT, column.media)
        except MediaFetchError as exc:
            log.warning("Row %d: media %s could not be fetched: %s", row, column.name, exc)
            errors.append(
                MediaError(row=row, field=column.name, url=shorten_url(url), error=str(exc))
            )
            record[column.name] = None
            continue
        record[column.name] = media.id
    return errors


def flatten_aggregates(entity: EntityDescriptor, record: Record) -> None:
    """Spread nested aggregate objects over their flat columns, in place."""

    sources: set[str] = set()
    for column in entity.columns:
        source, member = column.aggregate_source, column.aggregate_field
        if source is None or member is None:
            continue
        nested = record.get(source)
        if not isinstance(nested, dict):
            continue
        sources.add(source)
        if member in nested:
            record[column.name] = nested[member]
    for source in sources:
        if entity.column(source) is None:
            del record[source]


def nest_aggregates(entity: EntityDescriptor, row: Mapping[str, object]) -> Record:
    """Fold flat aggregate columns back into nested objects."""

    nested_row: Record = {}
    groups: dict[str, dict[str, object]] = {}
    for key, value in row.items():
        column = entity.column(key)
        if column is None or column.aggregate_source is None or column.aggregate_field is None:
            nested_row[key] = value
            continue
        groups.setdefault(column.aggregate_source, {})[column.aggregate_field] = value
    for source, members in groups.items():
        if any(value is not None for value in members.values()):
            nested_row[source] = members
    return nested_row
