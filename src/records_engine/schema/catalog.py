"""Runtime column discovery.

``SchemaCatalog`` answers "which columns does this table have right now?"
from ``information_schema.columns``.  One catalog lives for one logical
operation (one transaction); results are never shared across operations
because the schema may differ between deployments or change between calls.

Usage:
    async with adapter.transaction() as client:
        catalog = SchemaCatalog(client)
        users = await catalog.columns_of("users")
        archive = await catalog.try_columns_of("archive_users")
        found = await catalog.resolve_first(["principal", "principals"])
"""

import logging
from collections.abc import Iterable

from records_engine.adapters.base import DatabaseClient
from records_engine.errors import SchemaUnavailable
from records_engine.schema.models import ColumnSet

logger = logging.getLogger(__name__)

COLUMNS_QUERY = """
    SELECT column_name
    FROM information_schema.columns
    WHERE table_schema = current_schema()
      AND table_name = :table
    ORDER BY ordinal_position
"""


class SchemaCatalog:
    """Per-operation cache of table column sets."""

    def __init__(self, client: DatabaseClient) -> None:
        self._client = client
        self._cache: dict[str, ColumnSet] = {}
        self._missing: set[str] = set()

    async def columns_of(self, table: str) -> ColumnSet:
        """Return the columns of ``table``.

        Raises:
            SchemaUnavailable: If the table does not exist or the metadata
                query fails.
        """
        if table in self._cache:
            return self._cache[table]
        if table in self._missing:
            raise SchemaUnavailable(f"Table '{table}' does not exist", table=table)

        async with self._client.savepoint():
            rows = await self._client.fetch(COLUMNS_QUERY, {"table": table})

        columns = frozenset(row["column_name"] for row in rows)
        if not columns:
            self._missing.add(table)
            raise SchemaUnavailable(f"Table '{table}' does not exist", table=table)

        column_set = ColumnSet(table, columns)
        self._cache[table] = column_set
        logger.debug("Discovered %d columns on %s", len(column_set), table)
        return column_set

    async def try_columns_of(self, table: str) -> ColumnSet | None:
        """Like ``columns_of`` but returns None for an absent table."""
        try:
            return await self.columns_of(table)
        except SchemaUnavailable:
            return None

    async def resolve_first(
        self, candidates: Iterable[str]
    ) -> tuple[str, ColumnSet] | None:
        """Return the first candidate table that exists, with its columns."""
        for table in candidates:
            column_set = await self.try_columns_of(table)
            if column_set is not None:
                return table, column_set
        return None
