"""Record import and reconciliation.

Records arrive as JSON arrays keyed by field label. References to other
entities are written as human-readable labels and resolved against stored
rows, the current batch or, failing that, a fuzzy subsequence match. Rows that
cannot be stored cleanly are either skipped or, in quality mode, neutralised
and flagged through the ``_ql`` bit mask.
"""

from __future__ import annotations

from .backup import (
    BackupResult,
    UploadResult,
    backup_all,
    restore_backup,
    restore_entity,
    upload_entity,
)
from .loader import (
    ImportMode,
    LoadContext,
    LoadOptions,
    clear_all,
    clear_entity,
    import_all,
    load_all,
    load_entity,
    load_sources,
    reset_all,
)
from .quality import Deficit
from .results import LoadFailure, LoadResult
from .validation import (
    EntityStatus,
    ImportValidation,
    count_seed_conflicts,
    get_status,
    validate_import,
)

__all__ = [
    "BackupResult",
    "Deficit",
    "EntityStatus",
    "ImportMode",
    "ImportValidation",
    "LoadContext",
    "LoadFailure",
    "LoadOptions",
    "LoadResult",
    "UploadResult",
    "backup_all",
    "clear_all",
    "clear_entity",
    "count_seed_conflicts",
    "get_status",
    "import_all",
    "load_all",
    "load_entity",
    "load_sources",
    "reset_all",
    "restore_backup",
    "restore_entity",
    "upload_entity",
    "validate_import",
]
