"""Schema-adaptive INSERT and UPDATE.

Callers describe what they would like to write as an ordered list of
``FieldCandidate`` objects.  ``AdaptiveWriter`` keeps only the candidates
whose column exists on the live table (per an injected ``ColumnSet``) and
whose value is non-empty, unless the candidate opts in to empty values.

Usage:
    users = await catalog.columns_of("users")
    writer = AdaptiveWriter(client)
    user_id = await writer.insert(
        "users",
        users,
        [
            FieldCandidate("first_name", "Ana"),
            FieldCandidate("middle_name", None, include_empty=True),
            FieldCandidate("email", "ana@example.com"),
        ],
        returning="user_id",
    )
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from records_engine.adapters.base import DatabaseClient, validate_identifier
from records_engine.errors import NoApplicableColumns, SchemaUnavailable
from records_engine.schema.models import ColumnSet

logger = logging.getLogger(__name__)


def is_empty(value: Any) -> bool:
    """None and whitespace-only strings count as empty."""
    return value is None or (isinstance(value, str) and not value.strip())


def timestamp_now() -> datetime:
    """Naive UTC timestamp for created_at / updated_at style columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class FieldCandidate:
    """A column the caller wants to write, if the table has it."""

    column: str
    value: Any
    include_empty: bool = False

    @property
    def has_value(self) -> bool:
        return self.include_empty or not is_empty(self.value)


class AdaptiveWriter:
    """Writes only the columns a table actually has."""

    def __init__(self, client: DatabaseClient) -> None:
        self._client = client

    @staticmethod
    def plan(
        column_set: ColumnSet, candidates: Iterable[FieldCandidate]
    ) -> dict[str, Any]:
        """Return the ordered column -> value mapping that would be written.

        A column listed more than once is taken from its first applicable
        candidate.  No I/O.
        """
        planned: dict[str, Any] = {}
        for candidate in candidates:
            if candidate.column in planned:
                continue
            if candidate.column not in column_set:
                continue
            if not candidate.has_value:
                continue
            planned[validate_identifier(candidate.column)] = candidate.value
        return planned

    async def insert(
        self,
        table: str,
        column_set: ColumnSet,
        candidates: Iterable[FieldCandidate],
        returning: str | None = None,
    ) -> Any:
        """Insert one row and return the generated key.

        Args:
            table: Target table; must match ``column_set.table``.
            column_set: Live columns of ``table``.
            candidates: Ordered candidate fields.
            returning: Key column to return.  Ignored when the table lacks it.

        Returns:
            Value of ``returning`` for the new row, or None.

        Raises:
            NoApplicableColumns: If no candidate survives filtering.
            WriteRejected: If the store rejects the row.
        """
        self._check_table(table, column_set)
        data = self.plan(column_set, candidates)
        if not data:
            raise NoApplicableColumns(table)

        key_column = returning if returning and returning in column_set else None
        logger.debug("INSERT %s (%s)", table, ", ".join(data))
        return await self._client.insert(table, data, returning=key_column)

    async def update_where(
        self,
        table: str,
        column_set: ColumnSet,
        candidates: Iterable[FieldCandidate],
        key_column: str,
        key_value: Any,
    ) -> int:
        """Update the applicable columns on rows where ``key_column = key_value``.

        Returns:
            Number of rows updated.

        Raises:
            SchemaUnavailable: If ``key_column`` is not on the table.
            NoApplicableColumns: If no candidate survives filtering.
        """
        self._check_table(table, column_set)
        if key_column not in column_set:
            raise SchemaUnavailable(
                f"Column '{key_column}' does not exist on '{table}'", table=table
            )

        data = self.plan(column_set, candidates)
        if not data:
            raise NoApplicableColumns(table)

        logger.debug("UPDATE %s SET %s WHERE %s", table, ", ".join(data), key_column)
        return await self._client.update(table, data, {key_column: key_value})

    @staticmethod
    def _check_table(table: str, column_set: ColumnSet) -> None:
        validate_identifier(table)
        if column_set.table != table:
            raise ValueError(
                f"ColumnSet for '{column_set.table}' used to write '{table}'"
            )
