"""Database adapters package.

Provides the ``DatabaseClient`` and ``TransactionalAdapter`` Protocols and the
async PostgreSQL implementation.

Usage:
    from records_engine.adapters import AsyncPostgresAdapter, DatabaseClient, Like
"""

from records_engine.adapters.base import (
    DatabaseClient,
    Like,
    TransactionalAdapter,
    validate_identifier,
)
from records_engine.adapters.postgres import AsyncPostgresAdapter, quote_ident

__all__ = [
    "DatabaseClient",
    "TransactionalAdapter",
    "Like",
    "AsyncPostgresAdapter",
    "quote_ident",
    "validate_identifier",
]
