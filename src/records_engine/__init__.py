"""records-engine: Schema-adaptive account provisioning and archival.

Creates, archives, lists, restores and purges accounts against relational schemas
whose optional columns and role tables vary between deployments.  Every
write adapts to the columns that actually exist.

Usage:
    from records_engine import get_adapter, provision, archive_records
    from records_engine import AccountInput, DatabaseConfig, load_config
    from records_engine import SchemaCatalog, ForeignKeyIndex, IdentifierAllocator
"""

__version__ = "0.1.0"

# Adapters
from records_engine.adapters.base import DatabaseClient, TransactionalAdapter
from records_engine.adapters.postgres import AsyncPostgresAdapter

# Config
from records_engine.config.loader import load_config
from records_engine.config.models import DatabaseConfig, DatabaseProfile, RoleSettings

# Errors
from records_engine.errors import (
    ArchiveUnavailable,
    NoApplicableColumns,
    RecordsEngineError,
    SchemaUnavailable,
    StorageUnavailable,
    WriteRejected,
)

# Factory
from records_engine.factory import (
    ProfileNotFoundError,
    connect_and_validate,
    get_adapter,
    resolve_url,
)

# Schema
from records_engine.schema.catalog import SchemaCatalog
from records_engine.schema.foreign_keys import ForeignKeyIndex
from records_engine.schema.models import ColumnSet, ReferenceEdge

# Engine
from records_engine.identifiers import IdentifierAllocator, SequenceSource, format_identifier
from records_engine.writer import AdaptiveWriter, FieldCandidate
from records_engine.provisioning import AccountInput, provision, provision_many
from records_engine.archive import (
    RecordArchiver,
    archive_records,
    list_archived,
    purge_archived,
    restore_archived,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "TransactionalAdapter",
    "AsyncPostgresAdapter",
    # Config
    "load_config",
    "DatabaseConfig",
    "DatabaseProfile",
    "RoleSettings",
    # Errors
    "RecordsEngineError",
    "SchemaUnavailable",
    "NoApplicableColumns",
    "WriteRejected",
    "StorageUnavailable",
    "ArchiveUnavailable",
    # Factory
    "get_adapter",
    "connect_and_validate",
    "ProfileNotFoundError",
    "resolve_url",
    # Schema
    "SchemaCatalog",
    "ForeignKeyIndex",
    "ColumnSet",
    "ReferenceEdge",
    # Engine
    "IdentifierAllocator",
    "SequenceSource",
    "format_identifier",
    "AdaptiveWriter",
    "FieldCandidate",
    "AccountInput",
    "provision",
    "provision_many",
    "RecordArchiver",
    "archive_records",
    "list_archived",
    "restore_archived",
    "purge_archived",
]
