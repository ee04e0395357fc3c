"""Archive-then-delete for user accounts.

``RecordArchiver`` moves live accounts into the archive table and removes
them, together with every row that references them, inside the caller's
transaction.  Each record walks the same ordered steps::

    COLUMNS_DISCOVERED -> ALREADY_ARCHIVED | SNAPSHOT_WRITTEN
        -> CASCADE_DELETED -> PRIMARY_DELETED

``COLUMNS_DISCOVERED`` is reached once per batch.  ``archive_records`` wraps a
batch in one transaction and adds ``COMMITTED`` or ``ROLLED_BACK``.  Tables to
cascade into come from foreign-key metadata, never from a fixed list.

Usage:
    from records_engine.archive import archive_records

    result = await archive_records(adapter, [42, 43], reason="Retired", role="principal")
    for record in result.archived:
        print(record.user_id, record.name)
"""

import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from records_engine.adapters.base import DatabaseClient, TransactionalAdapter
from records_engine.archive.models import (
    ArchivedRecord,
    ArchiveResult,
    ArchiveState,
    ArchiveTransition,
)
from records_engine.config.models import DatabaseConfig
from records_engine.errors import ArchiveUnavailable
from records_engine.naming import clean_text, compute_full_name, normalize_contact
from records_engine.schema.catalog import SchemaCatalog
from records_engine.schema.foreign_keys import ForeignKeyIndex
from records_engine.schema.models import ColumnSet
from records_engine.writer import AdaptiveWriter, FieldCandidate, timestamp_now

logger = logging.getLogger(__name__)


@dataclass
class _RecordRun:
    """Working state for one record inside a batch."""

    user_id: Any
    user_row: dict = field(default_factory=dict)
    profile_row: dict | None = None
    identifier: str | None = None
    existing: dict | None = None
    archive_id: Any = None
    cascaded_rows: int = 0
    state: ArchiveState = ArchiveState.COLUMNS_DISCOVERED


class RecordArchiver:
    """Archives user accounts of one role on an open transaction.

    Args:
        client: Transaction-scoped database client.
        role: Role name from ``config.roles``; selects the role-profile table.
        config: Engine configuration (default: built-in defaults).

    Raises:
        ValueError: If ``role`` is not configured.
    """

    def __init__(
        self,
        client: DatabaseClient,
        role: str,
        config: DatabaseConfig | None = None,
    ) -> None:
        self._client = client
        self._config = config or DatabaseConfig()
        self._role_name = role
        self._role = self._config.role(role)
        self._catalog = SchemaCatalog(client)
        self._foreign_keys = ForeignKeyIndex(client)
        self._writer = AdaptiveWriter(client)

        self._archive: ColumnSet | None = None
        self._users: ColumnSet | None = None
        self._profile: ColumnSet | None = None
        self._log: ColumnSet | None = None
        self._current: Any = None

        self.trace: list[ArchiveTransition] = []
        self._record(None, ArchiveState.START)

    # ------------------------------------------------------------------
    # Trace
    # ------------------------------------------------------------------

    def _record(self, user_id: Any, state: ArchiveState) -> None:
        self.trace.append(ArchiveTransition(user_id=user_id, state=state))

    def _advance(self, run: _RecordRun, state: ArchiveState) -> None:
        run.state = state
        self._record(run.user_id, state)

    def mark_committed(self) -> None:
        """Record that the surrounding transaction committed."""
        self._record(None, ArchiveState.COMMITTED)

    def mark_rolled_back(self) -> None:
        """Record that the surrounding transaction rolled back."""
        self._record(self._current, ArchiveState.ROLLED_BACK)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def discover(self) -> None:
        """Resolve the archive, users, role-profile and log tables.

        Raises:
            ArchiveUnavailable: If the archive table is missing or has no
                user key column.
            SchemaUnavailable: If the users table is missing.
        """
        archive_cfg = self._config.archive

        archive = await self._catalog.try_columns_of(archive_cfg.table)
        if archive is None or len(archive) == 0:
            raise ArchiveUnavailable(
                f"Archive table '{archive_cfg.table}' is not available"
            )
        if archive_cfg.key_column not in archive:
            raise ArchiveUnavailable(
                f"Archive table '{archive_cfg.table}' has no "
                f"'{archive_cfg.key_column}' column"
            )

        self._archive = archive
        self._users = await self._catalog.columns_of(self._config.users.table)
        resolved = await self._catalog.resolve_first(self._role.table_candidates)
        self._profile = resolved[1] if resolved else None
        self._log = await self._catalog.try_columns_of(archive_cfg.log_table)
        self._record(None, ArchiveState.COLUMNS_DISCOVERED)

        logger.debug(
            "Archiving %s accounts: profile table %s, log table %s",
            self._role_name,
            self._profile.table if self._profile else None,
            self._log.table if self._log else None,
        )

    async def run(self, user_ids: Iterable[Any], reason: str | None = None) -> ArchiveResult:
        """Archive every id in order.  Ids with no live row are skipped.

        Any exception leaves the transaction for the caller to roll back.
        """
        if self._archive is None:
            await self.discover()

        archive_reason = clean_text(reason) or self._config.archive.default_reason
        archived: list[ArchivedRecord] = []
        skipped: list[Any] = []

        for user_id in user_ids:
            self._current = user_id
            record = await self.archive_one(user_id, archive_reason)
            if record is None:
                skipped.append(user_id)
            else:
                archived.append(record)
        self._current = None

        return ArchiveResult(archived=archived, skipped=skipped)

    # ------------------------------------------------------------------
    # One record
    # ------------------------------------------------------------------

    def _steps(self) -> list[Callable[[_RecordRun, str], Awaitable[None]]]:
        return [
            self._find_existing,
            self._write_snapshot,
            self._cascade,
            self._delete_primary,
        ]

    async def archive_one(self, user_id: Any, reason: str) -> ArchivedRecord | None:
        """Run the per-record steps for ``user_id``.

        Returns:
            The archived record, or None when no live row exists.
        """
        run = await self._load(user_id)
        if run is None:
            logger.info("User %s not found, skipping", user_id)
            return None

        for step in self._steps():
            await step(run, reason)

        logger.info(
            "Archived user %s (%s)",
            user_id,
            "already archived" if run.existing is not None else "snapshot written",
        )
        return ArchivedRecord(
            user_id=user_id,
            name=compute_full_name(run.user_row, self._config.users.key_column),
            email=clean_text(run.user_row.get(self._config.users.email_column)),
            archive_id=run.archive_id,
            already_archived=run.existing is not None,
            cascaded_rows=run.cascaded_rows,
        )

    def _profile_link(self, user_row: dict, user_id: Any) -> tuple[str, Any] | None:
        """Column and value that tie the role-profile row to ``user_row``."""
        if self._profile is None:
            return None
        link = self._profile.first_of(self._role.link_columns)
        if link is None:
            return None
        value = user_id if link == self._config.users.key_column else user_row.get(link)
        if value is None:
            return None
        return link, value

    async def _load(self, user_id: Any) -> _RecordRun | None:
        users_cfg = self._config.users
        rows = await self._client.select(
            users_cfg.table,
            filters={users_cfg.key_column: user_id},
            limit=1,
            for_update=True,
        )
        if not rows:
            return None

        run = _RecordRun(user_id=user_id, user_row=rows[0])

        link = self._profile_link(run.user_row, user_id)
        if link is not None:
            profile_rows = await self._client.select(
                self._profile.table, filters={link[0]: link[1]}, limit=1
            )
            run.profile_row = profile_rows[0] if profile_rows else None

        id_columns = [*self._role.id_columns, users_cfg.code_column]
        for row in (run.user_row, run.profile_row or {}):
            for column in id_columns:
                value = clean_text(row.get(column))
                if value:
                    run.identifier = value
                    break
            if run.identifier:
                break
        return run

    async def _find_existing(self, run: _RecordRun, reason: str) -> None:
        archive_cfg = self._config.archive
        archive = self._archive
        archive_id_column = archive.first_of(archive_cfg.id_columns)

        rows = await self._client.select(
            archive.table, filters={archive_cfg.key_column: run.user_id}, limit=1
        )
        if not rows and run.identifier and archive_cfg.code_column in archive:
            rows = await self._client.select(
                archive.table,
                filters={archive_cfg.code_column: run.identifier, archive_cfg.key_column: None},
                limit=1,
            )
        if not rows:
            return

        run.existing = rows[0]
        if archive_id_column is not None:
            run.archive_id = run.existing.get(archive_id_column)

        if run.existing.get(archive_cfg.key_column) in (None, 0):
            if archive_id_column is not None and run.archive_id is not None:
                key_column, key_value = archive_id_column, run.archive_id
            else:
                key_column, key_value = archive_cfg.code_column, run.identifier
            await self._writer.update_where(
                archive.table,
                archive,
                [FieldCandidate(archive_cfg.key_column, run.user_id)],
                key_column,
                key_value,
            )
            logger.debug("Backfilled %s on archive row for user %s", archive_cfg.key_column, run.user_id)

        self._advance(run, ArchiveState.ALREADY_ARCHIVED)

    async def _write_snapshot(self, run: _RecordRun, reason: str) -> None:
        if run.existing is not None:
            return

        archive_cfg = self._config.archive
        archive = self._archive
        user = run.user_row
        profile = run.profile_row or {}

        def pick(column: str) -> Any:
            value = user.get(column)
            if value is None or (isinstance(value, str) and not value.strip()):
                value = profile.get(column)
            return value

        contact = normalize_contact(user) or normalize_contact(profile)
        contact_column = archive.first_of(["phone_number", "contact_number"])
        now = timestamp_now()

        candidates = [
            FieldCandidate(archive_cfg.key_column, run.user_id),
            FieldCandidate(archive_cfg.code_column, run.identifier),
        ]
        candidates += [FieldCandidate(c, run.identifier) for c in self._role.id_columns]
        candidates += [
            FieldCandidate("username", pick("username")),
            FieldCandidate("first_name", pick("first_name")),
            FieldCandidate("middle_name", pick("middle_name")),
            FieldCandidate("last_name", pick("last_name")),
            FieldCandidate("suffix", pick("suffix")),
            FieldCandidate("email", clean_text(user.get(self._config.users.email_column))),
        ]
        if contact_column is not None:
            candidates.append(FieldCandidate(contact_column, contact))
        candidates += [
            FieldCandidate("role_id", user.get("role_id")),
            FieldCandidate("role", clean_text(user.get("role")) or self._role.role_value or self._role_name),
            FieldCandidate("name", compute_full_name(user, self._config.users.key_column)),
            FieldCandidate("created_at", user.get("created_at")),
            FieldCandidate("updated_at", user.get("updated_at")),
            FieldCandidate("reason", reason),
            FieldCandidate("archived_at", now),
            FieldCandidate("timestamp", now),
        ]
        if archive_cfg.snapshot_column in archive:
            snapshot = {"user": user, "profile": run.profile_row}
            candidates.append(
                FieldCandidate(archive_cfg.snapshot_column, json.dumps(snapshot, default=str))
            )

        run.archive_id = await self._writer.insert(
            archive.table,
            archive,
            candidates,
            returning=archive.first_of(archive_cfg.id_columns),
        )
        self._advance(run, ArchiveState.SNAPSHOT_WRITTEN)

    async def _cascade(self, run: _RecordRun, reason: str) -> None:
        users_table = self._config.users.table
        excluded = {
            users_table,
            self._config.archive.table,
            self._config.archive.log_table,
        }
        if self._profile is not None:
            excluded.add(self._profile.table)

            if run.profile_row is not None:
                for edge in await self._foreign_keys.referencing_tables(self._profile.table):
                    if edge.referencing_table in excluded:
                        continue
                    run.cascaded_rows += await self._delete_referencing(
                        edge.referencing_table,
                        edge.referencing_column,
                        run.profile_row.get(edge.referenced_column),
                    )

        for edge in await self._foreign_keys.referencing_tables(users_table):
            if edge.referencing_table in excluded:
                continue
            run.cascaded_rows += await self._delete_referencing(
                edge.referencing_table,
                edge.referencing_column,
                run.user_row.get(edge.referenced_column),
            )

        self._advance(run, ArchiveState.CASCADE_DELETED)

    async def _delete_referencing(self, table: str, column: str, value: Any) -> int:
        if value is None:
            return 0
        deleted = await self._client.delete(table, {column: value})
        if deleted:
            logger.debug("Cascade deleted %d row(s) from %s.%s", deleted, table, column)
        return deleted

    async def _delete_primary(self, run: _RecordRun, reason: str) -> None:
        users_cfg = self._config.users

        if self._log is not None and users_cfg.key_column in self._log:
            await self._client.delete(self._log.table, {users_cfg.key_column: run.user_id})

        link = self._profile_link(run.user_row, run.user_id)
        if link is not None:
            await self._client.delete(self._profile.table, {link[0]: link[1]})

        await self._client.delete(users_cfg.table, {users_cfg.key_column: run.user_id})
        self._advance(run, ArchiveState.PRIMARY_DELETED)


async def archive_records(
    adapter: TransactionalAdapter,
    user_ids: Iterable[Any],
    reason: str | None = None,
    role: str = "principal",
    settings: DatabaseConfig | None = None,
) -> ArchiveResult:
    """Archive a batch of accounts in one all-or-nothing transaction.

    Args:
        adapter: Adapter that hands out transactions.
        user_ids: Users to archive, in order.
        reason: Archive reason (default: ``settings.archive.default_reason``).
        role: Role whose profile table is cleaned up with the account.
        settings: Engine configuration (default: built-in defaults).

    Returns:
        ArchiveResult with archived records, skipped ids and the state trace.

    Raises:
        ArchiveUnavailable: If the archive table is missing.
        WriteRejected: If a delete or the snapshot insert is rejected.
        StorageUnavailable: If the store cannot be reached.
    """
    config = settings or DatabaseConfig()
    config.role(role)
    ids = list(user_ids)

    archiver: RecordArchiver | None = None
    try:
        async with adapter.transaction() as client:
            archiver = RecordArchiver(client, role, config)
            result = await archiver.run(ids, reason)
    except BaseException:
        if archiver is not None:
            archiver.mark_rolled_back()
            logger.warning("Archive batch rolled back: %s", [t.state.value for t in archiver.trace])
        raise

    archiver.mark_committed()
    logger.info(
        "Archive batch committed: %d archived, %d skipped",
        result.archived_count,
        len(result.skipped),
    )
    return result.model_copy(update={"trace": list(archiver.trace)})
