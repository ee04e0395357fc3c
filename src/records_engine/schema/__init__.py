"""Schema introspection: column discovery and foreign keys.

Usage:
    from records_engine.schema import SchemaCatalog, ForeignKeyIndex
"""

from records_engine.schema.catalog import SchemaCatalog
from records_engine.schema.foreign_keys import ForeignKeyIndex
from records_engine.schema.models import (
    ColumnSet,
    ConnectionResult,
    DeploymentReport,
    ReferenceEdge,
    RoleReadiness,
)

__all__ = [
    "SchemaCatalog",
    "ForeignKeyIndex",
    "ColumnSet",
    "ConnectionResult",
    "DeploymentReport",
    "ReferenceEdge",
    "RoleReadiness",
]
