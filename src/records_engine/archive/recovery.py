"""List, restore and purge archived accounts.

``list_archived`` shows what the archive holds, newest first, reading only
the columns the archive table has.  ``restore_archived`` recreates live
``users`` rows from archive entries, one transaction per entry, and reports
entries it could not restore instead of failing the whole request.  ``purge_archived`` deletes archive entries for
good in a single transaction.
"""

import json
import logging
from collections.abc import Iterable
from typing import Any

from records_engine.adapters.base import DatabaseClient, TransactionalAdapter
from records_engine.archive.models import (
    ArchiveEntry,
    RestoredAccount,
    RestoreError,
    RestoreResult,
)
from records_engine.config.models import DatabaseConfig
from records_engine.errors import (
    ArchiveUnavailable,
    NoApplicableColumns,
    SchemaUnavailable,
    WriteRejected,
)
from records_engine.naming import (
    clean_text,
    compute_full_name,
    normalize_role,
    split_name_parts,
)
from records_engine.provisioning.accounts import generate_temporary_password
from records_engine.schema.catalog import SchemaCatalog
from records_engine.schema.models import ColumnSet
from records_engine.writer import AdaptiveWriter, FieldCandidate, is_empty, timestamp_now

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Archive entry not found."
DUPLICATE_MESSAGE = "A user with the same identifier or email already exists."


async def _archive_columns(
    catalog: SchemaCatalog, config: DatabaseConfig
) -> tuple[ColumnSet, str]:
    """Archive ColumnSet and its row id column.

    Raises:
        ArchiveUnavailable: If the table is missing or has no id column.
    """
    table = config.archive.table
    archive = await catalog.try_columns_of(table)
    if archive is None:
        raise ArchiveUnavailable(f"Archive table '{table}' is not available")
    id_column = archive.first_of(config.archive.id_columns)
    if id_column is None:
        raise ArchiveUnavailable(
            f"Archive table '{table}' has none of the id columns "
            f"{', '.join(config.archive.id_columns)}"
        )
    return archive, id_column


def _snapshot_user(row: dict, snapshot_column: str) -> dict:
    """The ``user`` object stored in the snapshot column, if readable."""
    raw = row.get(snapshot_column)
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Unreadable archive snapshot, using discrete columns only")
            return {}
    if isinstance(raw, dict) and isinstance(raw.get("user"), dict):
        return raw["user"]
    return {}


async def _restore_one(
    client: DatabaseClient,
    archive_id: Any,
    config: DatabaseConfig,
) -> RestoredAccount | None:
    catalog = SchemaCatalog(client)
    writer = AdaptiveWriter(client)
    users_cfg = config.users
    archive_cfg = config.archive

    archive, id_column = await _archive_columns(catalog, config)
    users = await catalog.columns_of(users_cfg.table)

    rows = await client.select(
        archive.table, filters={id_column: archive_id}, limit=1, for_update=True
    )
    if not rows:
        return None

    row = rows[0]
    snapshot = _snapshot_user(row, archive_cfg.snapshot_column)

    def text(*columns: str) -> str | None:
        for source in (row, snapshot):
            for column in columns:
                value = clean_text(source.get(column))
                if value:
                    return value
        return None

    resolved_id = row.get(id_column, archive_id)
    raw_user_id = row.get(archive_cfg.key_column)
    if not isinstance(raw_user_id, int) or isinstance(raw_user_id, bool) or raw_user_id <= 0:
        raw_user_id = None

    role = normalize_role(text("role"))
    name = text("name", "username") or f"Restored User {raw_user_id or resolved_id}"
    parts = split_name_parts(name)
    first_name = text("first_name") or parts.first_name
    middle_name = text("middle_name") if text("first_name") else parts.middle_name
    last_name = text("last_name") or parts.last_name
    contact = text("contact_number", "phone_number")
    if raw_user_id is not None:
        fallback_email = f"restored_user_{raw_user_id}@restored.local"
    else:
        fallback_email = f"restored_{resolved_id}@restored.local"
    email = text("email", "user_email") or fallback_email
    username = text("username") or email

    key = users_cfg.key_column
    if raw_user_id is not None and key in users:
        if await client.select(users_cfg.table, [key], filters={key: raw_user_id}, limit=1):
            raise WriteRejected(DUPLICATE_MESSAGE)
    if users_cfg.email_column in users:
        if await client.select(
            users_cfg.table, [users_cfg.email_column], filters={users_cfg.email_column: email}, limit=1
        ):
            raise WriteRejected(DUPLICATE_MESSAGE)

    password = generate_temporary_password()
    now = timestamp_now()
    candidates = [
        FieldCandidate(key, raw_user_id),
        FieldCandidate("first_name", first_name),
        FieldCandidate("middle_name", middle_name),
        FieldCandidate("last_name", last_name),
        FieldCandidate("suffix", text("suffix")),
        FieldCandidate("name", name),
        FieldCandidate(users_cfg.email_column, email),
        FieldCandidate("username", username),
        FieldCandidate("role", role),
        FieldCandidate("contact_number", contact),
        FieldCandidate("phone_number", contact),
        FieldCandidate(users_cfg.code_column, text(archive_cfg.code_column)),
        FieldCandidate("status", "Active"),
        FieldCandidate("password", password),
        FieldCandidate("created_at", now),
        FieldCandidate("updated_at", now),
    ]
    generated = await writer.insert(users_cfg.table, users, candidates, returning=key)
    user_id = raw_user_id if raw_user_id is not None and key in users else generated
    if user_id is None:
        raise WriteRejected("Failed to determine restored user identifier.")

    await client.delete(archive.table, {id_column: resolved_id})

    return RestoredAccount(
        archive_id=resolved_id,
        user_id=user_id,
        role=role,
        name=name,
        email=email,
        temporary_password=password,
    )


async def restore_archived(
    adapter: TransactionalAdapter,
    archive_ids: Iterable[Any],
    settings: DatabaseConfig | None = None,
) -> RestoreResult:
    """Recreate live accounts from archive entries.

    Each entry is restored in its own transaction: the user row is inserted
    and the archive row deleted together.  Missing entries and collisions
    on user id or email are reported in ``errors``.

    Raises:
        ArchiveUnavailable: If the archive table is missing.
        StorageUnavailable: If the store cannot be reached.
    """
    config = settings or DatabaseConfig()
    result = RestoreResult()

    for archive_id in archive_ids:
        try:
            async with adapter.transaction() as client:
                restored = await _restore_one(client, archive_id, config)
        except (WriteRejected, NoApplicableColumns, SchemaUnavailable) as e:
            logger.warning("Could not restore archive entry %s: %s", archive_id, e)
            result.errors.append(RestoreError(archive_id=archive_id, message=str(e)))
            continue

        if restored is None:
            result.errors.append(RestoreError(archive_id=archive_id, message=NOT_FOUND_MESSAGE))
            continue

        logger.info("Restored archive entry %s as user %s", restored.archive_id, restored.user_id)
        result.restored.append(restored)

    return result


async def purge_archived(
    adapter: TransactionalAdapter,
    archive_ids: Iterable[Any],
    settings: DatabaseConfig | None = None,
) -> list[Any]:
    """Permanently delete archive entries.

    Returns:
        The ids that existed and were deleted.

    Raises:
        ArchiveUnavailable: If the archive table is missing.
    """
    config = settings or DatabaseConfig()
    deleted: list[Any] = []

    async with adapter.transaction() as client:
        archive, id_column = await _archive_columns(SchemaCatalog(client), config)
        for archive_id in archive_ids:
            if await client.delete(archive.table, {id_column: archive_id}):
                deleted.append(archive_id)

    logger.info("Purged %d archive entr%s", len(deleted), "y" if len(deleted) == 1 else "ies")
    return deleted


def _role_filter(role: str | None, config: DatabaseConfig) -> str | None:
    """Stored ``role`` value for a role name, or None for every role."""
    role = clean_text(role)
    if role is None or role.lower() == "all":
        return None
    settings = config.roles.get(role)
    if settings is not None:
        return settings.role_value or role
    return role.lower()


def _role_label(role: str | None, config: DatabaseConfig) -> str:
    if not role:
        return "Unknown"
    for name, settings in config.roles.items():
        if role in (name, settings.role_value):
            return settings.label or name
    return role


async def list_archived(
    adapter: TransactionalAdapter,
    role: str | None = None,
    settings: DatabaseConfig | None = None,
) -> list[ArchiveEntry]:
    """List archive entries, newest first.

    Args:
        adapter: Database adapter.
        role: Only list entries archived with this role ("all" or None
            lists every entry).  A configured role name matches its stored
            ``role_value``.
        settings: Engine configuration; defaults apply when omitted.

    Returns:
        One ``ArchiveEntry`` per row.  Fields whose column is missing from
        the archive table are filled from the JSON snapshot when present.

    Raises:
        ArchiveUnavailable: If the archive table is missing or has no id column.
    """
    config = settings or DatabaseConfig()
    archive_cfg = config.archive
    stored_role = _role_filter(role, config)

    async with adapter.transaction() as client:
        archive, id_column = await _archive_columns(SchemaCatalog(client), config)

        filters: dict[str, Any] = {}
        if stored_role is not None:
            if "role" not in archive:
                logger.warning(
                    "Archive table '%s' has no role column; no entry matches role %s",
                    archive.table,
                    stored_role,
                )
                return []
            filters["role"] = stored_role

        order_column = archive.first_of(["archived_at", "timestamp"]) or id_column
        rows = await client.select(
            archive.table,
            filters=filters or None,
            order_by=order_column,
            descending=True,
        )

    entries: list[ArchiveEntry] = []
    for row in rows:
        snapshot = _snapshot_user(row, archive_cfg.snapshot_column)
        merged = {**snapshot, **{k: v for k, v in row.items() if not is_empty(v)}}
        entry_role = clean_text(merged.get("role"))
        entries.append(
            ArchiveEntry(
                archive_id=row.get(id_column),
                user_id=row.get(archive_cfg.key_column),
                role=entry_role,
                role_label=_role_label(entry_role, config),
                name=compute_full_name(merged, archive_cfg.key_column),
                email=clean_text(merged.get(config.users.email_column)),
                reason=clean_text(row.get("reason")),
                archived_at=row.get(order_column) if order_column != id_column else None,
            )
        )

    logger.debug("Listed %d archive entr%s", len(entries), "y" if len(entries) == 1 else "ies")
    return entries
