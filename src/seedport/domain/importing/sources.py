"""Record files: one JSON array per entity, named ``<ClassName>.json``."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from seedport.domain.errors import InvalidSourceError, SourceNotFoundError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from seedport.domain.records import Record

log = logging.getLogger(__name__)


def source_path(directory: Path, entity_name: str) -> Path:
    return directory / f"{entity_name}.json"


def has_source(directory: Path, entity_name: str) -> bool:
    return source_path(directory, entity_name).is_file()


def read_records(directory: Path, entity_name: str) -> list[Record]:
    path = source_path(directory, entity_name)
    if not path.is_file():
        raise SourceNotFoundError(f"No source file for {entity_name}: {path}")
    return parse_records(path.read_text(encoding="utf-8"), origin=str(path))


def parse_records(text: str, *, origin: str = "<input>") -> list[Record]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidSourceError(f"{origin} is not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise InvalidSourceError(f"{origin} must contain a JSON array of records")
    records: list[Record] = []
    for index, item in enumerate(payload, start=1):
        if not isinstance(item, dict):
            raise InvalidSourceError(f"{origin}: element {index} is not an object")
        records.append(item)
    return records


def read_records_if_present(directory: Path, entity_name: str) -> list[Record] | None:
    """Like :func:`read_records` but ``None`` for a missing file.

    Unreadable files are logged and treated as absent; status reporting must not
    fail because one file in a directory is broken.
    """

    if not has_source(directory, entity_name):
        return None
    try:
        return read_records(directory, entity_name)
    except InvalidSourceError as exc:
        log.warning("Ignoring unreadable source: %s", exc)
        return None


def write_records(directory: Path, entity_name: str, records: Sequence[Record]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = source_path(directory, entity_name)
    path.write_text(
        json.dumps(list(records), indent=2, ensure_ascii=False, default=str) + "\n",
        encoding="utf-8",
    )
    return path


def remove_source(directory: Path, entity_name: str) -> bool:
    path = source_path(directory, entity_name)
    if not path.is_file():
        return False
    path.unlink()
    return True
