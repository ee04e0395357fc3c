"""Archival: archive-then-delete, listing, restore, and purge.

Usage:
    from records_engine.archive import archive_records, restore_archived, purge_archived
"""

from records_engine.archive.archiver import RecordArchiver, archive_records
from records_engine.archive.models import (
    ArchiveEntry,
    ArchivedRecord,
    ArchiveResult,
    ArchiveState,
    ArchiveTransition,
    RestoredAccount,
    RestoreError,
    RestoreResult,
)
from records_engine.archive.recovery import list_archived, purge_archived, restore_archived

__all__ = [
    "RecordArchiver",
    "archive_records",
    "list_archived",
    "restore_archived",
    "purge_archived",
    "ArchivedRecord",
    "ArchiveResult",
    "ArchiveEntry",
    "ArchiveState",
    "ArchiveTransition",
    "RestoredAccount",
    "RestoreError",
    "RestoreResult",
]
