"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that every transaction-scoped session
must implement, and the ``TransactionalAdapter`` Protocol for the objects that
hand those sessions out.  All methods are ``async def``.

Every ``DatabaseClient`` call runs on the single connection checked out for
the surrounding transaction -- there is no autocommit path.

Usage:
    from records_engine.adapters.base import DatabaseClient, Like

    async def latest_code(client: DatabaseClient) -> list[dict]:
        return await client.select(
            "users",
            ["principal_id"],
            filters={"principal_id": Like("PR-25%")},
            order_by="principal_id",
            descending=True,
            limit=1,
        )
"""

import re
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


def validate_identifier(name: str) -> str:
    """Return ``name`` if it is a plain SQL identifier.

    Raises:
        ValueError: If ``name`` contains anything but letters, digits, ``_``
            or ``$``, or starts with a digit.
    """
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


@dataclass(frozen=True)
class Like:
    """Filter value rendered as ``column LIKE :param`` instead of equality.

    Example:
        filters = {"principal_id": Like("PR-25%")}
    """

    pattern: str


class DatabaseClient(Protocol):
    """Transaction-scoped database session interface.

    Table and column names passed to these methods must already be validated
    against introspection results; values are always bound as parameters.
    """

    async def select(
        self,
        table: str,
        columns: Sequence[str] | None = None,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        for_update: bool = False,
        length_first: bool = False,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Column names to return.  ``None`` selects every column.
            filters: Optional dict of column=value filters (AND).  A ``Like``
                value renders a ``LIKE`` comparison; ``None`` renders
                ``IS NULL``.
            order_by: Optional column name to sort by.
            descending: Sort descending when ``order_by`` is given.
            length_first: Sort by the length of ``order_by`` before its value,
                so zero-padded numbers of different widths sort numerically.
            limit: Optional maximum row count.
            for_update: Lock the matched rows until the transaction ends, so a
                concurrent transaction selecting them the same way waits.

        Returns:
            List of dicts, one per row.  Empty list if no matches.
        """
        ...

    async def insert(
        self, table: str, data: dict[str, Any], returning: str | None = None
    ) -> Any:
        """Insert one row.

        Args:
            table: Table name.
            data: Ordered mapping of column=value pairs.
            returning: Optional column whose value is returned.

        Returns:
            Value of the ``returning`` column, or ``None``.

        Raises:
            WriteRejected: On constraint violation.
        """
        ...

    async def update(
        self, table: str, data: dict[str, Any], filters: dict[str, Any]
    ) -> int:
        """Update rows matching filters and return the affected row count."""
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        """Delete rows matching filters and return the affected row count."""
        ...

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a read-only statement (metadata queries) and return its rows."""
        ...

    def savepoint(self) -> AbstractAsyncContextManager[None]:
        """Open a nested transaction.

        Errors raised inside the block roll back to the savepoint only, so a
        failed optional lookup does not abort the surrounding transaction.
        """
        ...

    async def advisory_lock(self, key: str) -> None:
        """Take a transaction-scoped advisory lock identified by ``key``."""
        ...


class TransactionalAdapter(Protocol):
    """Owner of a connection pool that hands out transaction-scoped sessions."""

    def transaction(self) -> AbstractAsyncContextManager[DatabaseClient]:
        """Check out one connection and open one transaction.

        Commits when the block exits normally, rolls back when it raises.
        """
        ...

    async def close(self) -> None:
        """Dispose of the connection pool."""
        ...
