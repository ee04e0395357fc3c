"""Exception taxonomy for the provisioning and archival engine.

Callers typically map these to outcomes as follows:

- ``SchemaUnavailable``: feature absent on this deployment (often non-fatal).
- ``NoApplicableColumns``: schema drifted too far to write anything.
- ``WriteRejected``: constraint violation, a conflict (HTTP 409 equivalent).
- ``StorageUnavailable``: connectivity failure, retried higher up if at all.
- ``ArchiveUnavailable``: archive table missing, archival must not proceed.

Usage:
    from records_engine.errors import WriteRejected

    try:
        result = await provision(adapter, "principal", account)
    except WriteRejected as e:
        return {"error": str(e)}, 409
"""


class RecordsEngineError(Exception):
    """Base class for all engine errors."""

    pass


class SchemaUnavailable(RecordsEngineError):
    """Raised when a table, column, or metadata view cannot be introspected."""

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class NoApplicableColumns(RecordsEngineError):
    """Raised when no candidate column survives filtering against a ColumnSet."""

    def __init__(self, table: str) -> None:
        super().__init__(f"No applicable columns to write for table '{table}'")
        self.table = table


class WriteRejected(RecordsEngineError):
    """Raised when the store rejects a write (unique, FK, or check constraint)."""

    pass


class StorageUnavailable(RecordsEngineError):
    """Raised when the relational store cannot be reached."""

    pass


class ArchiveUnavailable(RecordsEngineError):
    """Raised when the archive table is missing or unusable."""

    pass
