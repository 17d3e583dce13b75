"""What a load reports back.

Every list is capped but its total is counted in full. Reference errors,
fuzzy matches and updated keys are aggregated by identity and carry an
occurrence count so a file with one bad label on 3000 rows yields one entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeAlias, TypeVar

from seedport.config.importing import ImportLimits

if TYPE_CHECKING:
    from collections.abc import Hashable

    from seedport.domain.importing.media import MediaError
    from seedport.domain.importing.references import FuzzyMatchUsage, ReferenceWarning


@dataclass(slots=True)
class CappedLog:
    """Keeps the first ``limit`` messages and counts the rest."""

    limit: int
    messages: list[str] = field(default_factory=list)
    total: int = 0

    def add(self, message: str) -> None:
        self.total += 1
        if len(self.messages) < self.limit:
            self.messages.append(message)

    @property
    def dropped(self) -> int:
        return self.total - len(self.messages)


@dataclass(slots=True, kw_only=True)
class ReferenceErrorSummary:
    field: str
    value: str
    target_entity: str
    count: int = 0

    @property
    def message(self) -> str:
        return f'"{self.value}" not found in {self.target_entity} ({self.count} records)'

    def to_dict(self) -> dict[str, object]:
        return {
            "field": self.field,
            "value": self.value,
            "targetEntity": self.target_entity,
            "count": self.count,
            "message": self.message,
        }


@dataclass(slots=True, kw_only=True)
class FuzzyMatchSummary:
    field: str
    value: str
    matched_label: str
    target_entity: str
    count: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "field": self.field,
            "value": self.value,
            "matchedLabel": self.matched_label,
            "targetEntity": self.target_entity,
            "count": self.count,
        }


@dataclass(slots=True)
class UpdatedKey:
    key: str
    count: int = 0

    def to_dict(self) -> dict[str, object]:
        return {"key": self.key, "count": self.count}


@dataclass(frozen=True, slots=True)
class BatchDuplicate:
    value: str
    first_row: int
    duplicate_row: int

    def to_dict(self) -> dict[str, object]:
        return {"value": self.value, "firstRow": self.first_row, "duplicateRow": self.duplicate_row}


K = TypeVar("K", bound="Hashable")
V = TypeVar("V")


class Tally(Generic[K, V]):
    """Aggregates entries by key, most frequent first."""

    def __init__(self) -> None:
        self._entries: dict[K, V] = {}
        self._counts: dict[K, int] = {}

    def add(self, key: K, entry: V) -> V:
        current = self._entries.setdefault(key, entry)
        self._counts[key] = self._counts.get(key, 0) + 1
        return current

    def count(self, key: K) -> int:
        return self._counts.get(key, 0)

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def most_common(self, limit: int) -> list[V]:
        ranked = sorted(self._entries, key=lambda key: self._counts[key], reverse=True)
        return [self._entries[key] for key in ranked[:limit]]

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(slots=True, kw_only=True)
class LoadResult:
    entity: str
    loaded: int = 0
    updated: int = 0
    skipped: int = 0
    replaced: int = 0
    quality_accepted: int = 0
    quality_rejected: int = 0
    source: str | None = None
    limits: ImportLimits = field(default_factory=ImportLimits)
    warnings: list[str] = field(default_factory=list)
    errors: CappedLog = field(init=False)
    store_errors: CappedLog = field(init=False)
    duplicates: list[BatchDuplicate] = field(default_factory=list)
    media_errors: list[MediaError] = field(default_factory=list)
    _reference_errors: Tally[tuple[str, str, str], ReferenceErrorSummary] = field(
        default_factory=Tally, repr=False
    )
    _fuzzy_matches: Tally[tuple[str, str, str], FuzzyMatchSummary] = field(
        default_factory=Tally, repr=False
    )
    _updated_keys: Tally[str, UpdatedKey] = field(default_factory=Tally, repr=False)

    def __post_init__(self) -> None:
        self.errors = CappedLog(self.limits.max_row_errors)
        self.store_errors = CappedLog(self.limits.max_store_errors)

    def record_reference_error(self, warning: ReferenceWarning) -> None:
        key = (warning.field, warning.value, warning.target_entity)
        summary = self._reference_errors.add(
            key,
            ReferenceErrorSummary(
                field=warning.field, value=warning.value, target_entity=warning.target_entity
            ),
        )
        summary.count += 1

    def record_fuzzy_match(self, usage: FuzzyMatchUsage) -> None:
        key = (usage.field, usage.value, usage.target_entity)
        summary = self._fuzzy_matches.add(
            key,
            FuzzyMatchSummary(
                field=usage.field,
                value=usage.value,
                matched_label=usage.matched_label,
                target_entity=usage.target_entity,
            ),
        )
        summary.count += 1

    def record_updated_key(self, key: str) -> None:
        self._updated_keys.add(key, UpdatedKey(key)).count += 1

    def record_duplicate(self, duplicate: BatchDuplicate) -> None:
        if len(self.duplicates) < self.limits.max_report_entries:
            self.duplicates.append(duplicate)

    def record_media_error(self, error: MediaError) -> None:
        if len(self.media_errors) < self.limits.max_report_entries:
            self.media_errors.append(error)

    @property
    def reference_errors(self) -> list[ReferenceErrorSummary]:
        return self._reference_errors.most_common(self.limits.max_report_entries)

    @property
    def reference_errors_total(self) -> int:
        return self._reference_errors.total

    @property
    def fuzzy_matches(self) -> list[FuzzyMatchSummary]:
        return self._fuzzy_matches.most_common(self.limits.max_report_entries)

    @property
    def fuzzy_match_total(self) -> int:
        return self._fuzzy_matches.total

    @property
    def updated_keys(self) -> list[UpdatedKey]:
        return self._updated_keys.most_common(self.limits.max_report_entries)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "entity": self.entity,
            "loaded": self.loaded,
            "updated": self.updated,
            "skipped": self.skipped,
            "replaced": self.replaced,
            "qualityAccepted": self.quality_accepted,
            "qualityRejected": self.quality_rejected,
            "warnings": list(self.warnings),
            "errors": self.errors.messages + self.store_errors.messages,
            "fkErrors": [summary.to_dict() for summary in self.reference_errors],
            "fkErrorsTotal": self.reference_errors_total,
            "fuzzyMatches": [summary.to_dict() for summary in self.fuzzy_matches],
            "fuzzyMatchTotal": self.fuzzy_match_total,
            "duplicates": [duplicate.to_dict() for duplicate in self.duplicates],
            "updatedKeys": [entry.to_dict() for entry in self.updated_keys],
            "mediaErrors": [
                {"row": e.row, "field": e.field, "url": e.url, "error": e.error}
                for e in self.media_errors
            ],
        }
        if self.source is not None:
            payload["source"] = self.source
        return payload


@dataclass(frozen=True, slots=True)
class LoadFailure:
    """An entity of a batch operation that could not be loaded at all."""

    entity: str
    error: str

    def to_dict(self) -> dict[str, object]:
        return {"entity": self.entity, "error": self.error}


EntityOutcome: TypeAlias = "LoadResult | LoadFailure"
BatchOutcome: TypeAlias = "dict[str, EntityOutcome]"
