"""Foreign-key discovery for cascade deletes.

``ForeignKeyIndex`` lists every (table, column) that references a target
table, read from the ``pg_constraint`` catalog.  Constraints are matched
through the referencing and referenced table oids, so two tables that reuse
a constraint name never cross over.  It performs no filtering: callers drop
the edges they must not cascade into.
"""

import logging

from records_engine.adapters.base import DatabaseClient
from records_engine.errors import SchemaUnavailable
from records_engine.schema.models import ReferenceEdge

logger = logging.getLogger(__name__)

REFERENCES_QUERY = """
    SELECT
        src.relname AS referencing_table,
        src_col.attname AS referencing_column,
        dst_col.attname AS referenced_column
    FROM pg_constraint con
    JOIN pg_class src ON src.oid = con.conrelid
    JOIN pg_class dst ON dst.oid = con.confrelid
    JOIN pg_namespace ns ON ns.oid = dst.relnamespace
    CROSS JOIN LATERAL unnest(con.conkey, con.confkey) AS cols(src_attnum, dst_attnum)
    JOIN pg_attribute src_col
        ON src_col.attrelid = con.conrelid AND src_col.attnum = cols.src_attnum
    JOIN pg_attribute dst_col
        ON dst_col.attrelid = con.confrelid AND dst_col.attnum = cols.dst_attnum
    WHERE con.contype = 'f'
      AND ns.nspname = current_schema()
      AND dst.relname = :table
    ORDER BY src.relname, src_col.attname
"""


class ForeignKeyIndex:
    """Per-operation cache of inbound foreign keys."""

    def __init__(self, client: DatabaseClient) -> None:
        self._client = client
        self._cache: dict[str, list[ReferenceEdge]] = {}

    async def referencing_tables(self, target: str) -> list[ReferenceEdge]:
        """Return the edges pointing at ``target``.

        Returns an empty list when nothing references the table or the
        metadata views are unavailable.  Connectivity failures propagate.
        """
        if target in self._cache:
            return list(self._cache[target])

        try:
            async with self._client.savepoint():
                rows = await self._client.fetch(REFERENCES_QUERY, {"table": target})
        except SchemaUnavailable as e:
            logger.warning("Foreign-key metadata unavailable for %s: %s", target, e)
            rows = []

        edges = [
            ReferenceEdge(
                referencing_table=row["referencing_table"],
                referencing_column=row["referencing_column"],
                referenced_column=row["referenced_column"],
            )
            for row in rows
        ]
        self._cache[target] = edges
        logger.debug("Found %d reference(s) to %s", len(edges), target)
        return list(edges)
