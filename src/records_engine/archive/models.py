"""Archive, restore and purge result models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ArchiveState(str, Enum):
    """Steps of one archive run, in the order they are reached."""

    START = "start"
    COLUMNS_DISCOVERED = "columns_discovered"
    ALREADY_ARCHIVED = "already_archived"
    SNAPSHOT_WRITTEN = "snapshot_written"
    CASCADE_DELETED = "cascade_deleted"
    PRIMARY_DELETED = "primary_deleted"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class ArchiveTransition(BaseModel):
    """One recorded state change.  ``user_id`` is None for batch-level states."""

    user_id: Any = None
    state: ArchiveState


class ArchivedRecord(BaseModel):
    """A record moved to the archive table."""

    user_id: Any
    name: str | None = None
    email: str | None = None
    archive_id: Any = None
    already_archived: bool = False
    cascaded_rows: int = 0


class ArchiveResult(BaseModel):
    """Result of archive_records()."""

    archived: list[ArchivedRecord] = Field(default_factory=list)
    skipped: list[Any] = Field(default_factory=list)
    trace: list[ArchiveTransition] = Field(default_factory=list)

    @property
    def archived_count(self) -> int:
        return len(self.archived)


class RestoredAccount(BaseModel):
    """An account recreated from the archive."""

    archive_id: Any
    user_id: Any
    role: str
    name: str
    email: str
    temporary_password: str


class RestoreError(BaseModel):
    """An archive entry restore_archived() could not restore."""

    archive_id: Any
    message: str


class ArchiveEntry(BaseModel):
    """One row of the archive listing."""

    archive_id: Any
    user_id: Any = None
    role: str | None = None
    role_label: str = "Unknown"
    name: str | None = None
    email: str | None = None
    reason: str | None = None
    archived_at: Any = None


class RestoreResult(BaseModel):
    """Result of restore_archived()."""

    restored: list[RestoredAccount] = Field(default_factory=list)
    errors: list[RestoreError] = Field(default_factory=list)
