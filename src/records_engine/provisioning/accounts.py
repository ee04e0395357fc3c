"""Account provisioning and identifier backfill.

``provision`` creates one account: a ``users`` row plus, when the role has a
profile table on this deployment, the role-profile row, with a freshly
allocated role identifier written wherever the schema has room for it.  All
of it runs in one transaction.

Usage:
    from records_engine.provisioning import AccountInput, provision

    result = await provision(
        adapter,
        "principal",
        AccountInput(first_name="Ana", last_name="Cruz", email="ana@example.com"),
    )
    result.identifier          # 'PR-250001'
    result.temporary_password  # hand to the account owner
"""

import logging
import secrets
import string
from collections.abc import Iterable
from typing import Any

from records_engine.adapters.base import DatabaseClient, TransactionalAdapter
from records_engine.config.models import DatabaseConfig, RoleSettings
from records_engine.errors import NoApplicableColumns, WriteRejected
from records_engine.identifiers import (
    IdentifierAllocator,
    current_epoch,
    discover_sequence_sources,
    format_identifier,
)
from records_engine.naming import build_full_name
from records_engine.provisioning.models import (
    AccountInput,
    BatchProvisionResult,
    ProvisionResult,
    SkippedAccount,
)
from records_engine.schema.catalog import SchemaCatalog
from records_engine.schema.models import ColumnSet
from records_engine.writer import AdaptiveWriter, FieldCandidate, timestamp_now

logger = logging.getLogger(__name__)

_PASSWORD_ALPHABET = string.ascii_lowercase + string.digits


def generate_temporary_password(length: int = 8) -> str:
    """Random lowercase alphanumeric password for first login."""
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def _identifier_columns(
    column_set: ColumnSet, role: RoleSettings, code_column: str | None
) -> list[str]:
    """Columns on ``column_set`` that should carry the role identifier.

    Every role id column present, or the generic code column when the table
    has no role-specific one.
    """
    columns = [c for c in role.id_columns if c in column_set]
    if not columns and code_column and code_column in column_set:
        columns.append(code_column)
    return columns


async def _provision_in(
    client: DatabaseClient,
    role_name: str,
    account: AccountInput,
    password: str,
    config: DatabaseConfig,
    epoch: str,
) -> ProvisionResult:
    role = config.role(role_name)
    users_cfg = config.users
    catalog = SchemaCatalog(client)
    writer = AdaptiveWriter(client)

    users = await catalog.columns_of(users_cfg.table)
    resolved = await catalog.resolve_first(role.table_candidates)
    profile_table, profile = resolved if resolved else (None, None)

    if users_cfg.email_column in users:
        existing = await client.select(
            users_cfg.table,
            [users_cfg.email_column],
            filters={users_cfg.email_column: account.email},
            limit=1,
        )
        if existing:
            raise WriteRejected(f"Email already exists: {account.email}")

    sources = await discover_sequence_sources(catalog, role, config, profile_table)
    identifier: str | None = None
    if sources:
        allocator = IdentifierAllocator(client, serialize=config.engine.serialize_allocation)
        identifier = await allocator.next_id(role.prefix, epoch, sources)

    full_name = build_full_name(
        account.first_name, account.middle_name, account.last_name, account.suffix
    )
    now = timestamp_now()
    role_value = role.role_value or role_name

    user_candidates = [
        FieldCandidate("first_name", account.first_name),
        FieldCandidate("middle_name", account.middle_name, include_empty=True),
        FieldCandidate("last_name", account.last_name),
        FieldCandidate("suffix", account.suffix, include_empty=True),
        FieldCandidate("name", full_name),
        FieldCandidate(users_cfg.email_column, account.email),
        FieldCandidate("username", account.email),
        FieldCandidate("contact_number", account.phone_number),
        FieldCandidate("phone_number", account.phone_number),
        FieldCandidate("role", role_value),
        FieldCandidate("status", "Active"),
        FieldCandidate("password", password),
    ]
    user_candidates += [
        FieldCandidate(column, identifier)
        for column in _identifier_columns(users, role, users_cfg.code_column)
    ]
    user_candidates += [
        FieldCandidate("created_at", now),
        FieldCandidate("updated_at", now),
    ]

    user_id = await writer.insert(
        users_cfg.table, users, user_candidates, returning=users_cfg.key_column
    )

    if profile is not None:
        link_column = profile.first_of(role.link_columns)
        profile_candidates = []
        if link_column is not None and link_column not in role.id_columns:
            profile_candidates.append(FieldCandidate(link_column, user_id))
        profile_candidates += [
            FieldCandidate(column, identifier)
            for column in _identifier_columns(profile, role, None)
        ]
        profile_candidates += [
            FieldCandidate("first_name", account.first_name),
            FieldCandidate("middle_name", account.middle_name, include_empty=True),
            FieldCandidate("last_name", account.last_name),
            FieldCandidate("suffix", account.suffix, include_empty=True),
            FieldCandidate("name", full_name),
            FieldCandidate("email", account.email),
            FieldCandidate("contact_number", account.phone_number),
            FieldCandidate("phone_number", account.phone_number),
            FieldCandidate("status", "Active"),
            FieldCandidate("role", role_value),
            FieldCandidate("created_at", now),
            FieldCandidate("updated_at", now),
        ]
        if len(writer.plan(profile, profile_candidates)) > 1:
            await writer.insert(profile_table, profile, profile_candidates)

    display_id = identifier
    if display_id is None and isinstance(user_id, int):
        display_id = format_identifier(None, role.prefix, user_id, epoch=epoch)

    logger.info("Provisioned %s %s (user %s)", role_name, display_id, user_id)
    return ProvisionResult(
        user_id=user_id,
        identifier=display_id,
        full_name=full_name,
        email=account.email,
        temporary_password=password,
        profile_table=profile_table,
    )


async def provision(
    adapter: TransactionalAdapter,
    role: str,
    account: AccountInput,
    settings: DatabaseConfig | None = None,
    epoch: str | None = None,
) -> ProvisionResult:
    """Create one account in its own transaction.

    The account is written to the users table and, when the role has a
    profile table, to that table as well.  The profile row is skipped when
    the only column it would receive is the link back to the user.

    Args:
        adapter: Adapter that hands out transactions.
        role: Role name from ``settings.roles`` (e.g. ``"principal"``).
        account: Account details.
        settings: Engine configuration (default: built-in defaults).
        epoch: Two-digit identifier epoch (default: current year).

    Returns:
        ProvisionResult with the new key, identifier and temporary password.

    Raises:
        ValueError: If ``role`` is not configured.
        SchemaUnavailable: If the users table does not exist.
        WriteRejected: If the email is taken or the store rejects the row.
        NoApplicableColumns: If the users table has none of the candidate columns.
    """
    config = settings or DatabaseConfig()
    config.role(role)
    password = account.password or generate_temporary_password()

    async with adapter.transaction() as client:
        return await _provision_in(
            client, role, account, password, config, epoch or current_epoch()
        )


async def provision_many(
    adapter: TransactionalAdapter,
    role: str,
    accounts: Iterable[AccountInput],
    settings: DatabaseConfig | None = None,
    epoch: str | None = None,
) -> BatchProvisionResult:
    """Provision several independent accounts, one transaction each.

    Rejected accounts are reported in ``skipped`` and do not stop the batch.
    ``StorageUnavailable`` aborts the remaining accounts.
    """
    result = BatchProvisionResult()
    for account in accounts:
        try:
            created = await provision(adapter, role, account, settings, epoch)
        except (WriteRejected, NoApplicableColumns) as e:
            logger.warning("Skipped %s: %s", account.email, e)
            result.skipped.append(SkippedAccount(email=account.email, reason=str(e)))
            continue
        result.created.append(created)

    logger.info(
        "Batch provisioning: %d created, %d skipped",
        result.created_count,
        len(result.skipped),
    )
    return result


async def backfill_identifiers(
    adapter: TransactionalAdapter,
    role: str,
    settings: DatabaseConfig | None = None,
    epoch: str | None = None,
) -> int:
    """Write canonical identifiers onto accounts that lack one.

    A stored identifier that is already canonical is kept; anything else is
    replaced by ``format_identifier`` with the user id as the sequence.

    Returns:
        Number of accounts whose identifier was written.
    """
    config = settings or DatabaseConfig()
    role_cfg = config.role(role)
    users_cfg = config.users
    key = users_cfg.key_column

    async with adapter.transaction() as client:
        catalog = SchemaCatalog(client)
        writer = AdaptiveWriter(client)

        users = await catalog.columns_of(users_cfg.table)
        if key not in users:
            return 0
        user_id_columns = [c for c in role_cfg.id_columns if c in users]

        resolved = await catalog.resolve_first(role_cfg.table_candidates)
        profile_table, profile = resolved if resolved else (None, None)
        profile_link = profile.first_of(role_cfg.link_columns) if profile else None
        if profile_link in role_cfg.id_columns:
            # Profile rows keyed by the identifier itself cannot be matched to users
            profile_link = None
        profile_id_columns = (
            [c for c in role_cfg.id_columns if c in profile]
            if profile is not None and profile_link is not None
            else []
        )

        if not user_id_columns and not profile_id_columns:
            return 0

        profiles_by_user: dict[Any, dict] = {}
        if profile is not None and profile_link is not None:
            for row in await client.select(profile_table):
                profiles_by_user.setdefault(row.get(profile_link), row)

        if "role" in users:
            user_rows = await client.select(
                users_cfg.table, filters={"role": role_cfg.role_value or role}
            )
        elif profiles_by_user:
            user_rows = [
                row
                for row in await client.select(users_cfg.table)
                if row.get(key) in profiles_by_user
            ]
        else:
            return 0

        updated = 0
        for user_row in sorted(user_rows, key=lambda r: str(r.get(key))):
            user_id = user_row.get(key)
            if user_id is None:
                continue
            profile_row = profiles_by_user.get(user_id, {})

            stored = next(
                (
                    value
                    for value in [user_row.get(c) for c in user_id_columns]
                    + [profile_row.get(c) for c in profile_id_columns]
                    if isinstance(value, str) and value.strip()
                ),
                None,
            )
            fallback = user_id if isinstance(user_id, int) else None
            identifier = format_identifier(stored, role_cfg.prefix, fallback, epoch=epoch)

            touched = False
            stale_user = [c for c in user_id_columns if user_row.get(c) != identifier]
            if stale_user:
                await writer.update_where(
                    users_cfg.table,
                    users,
                    [FieldCandidate(c, identifier) for c in stale_user],
                    key,
                    user_id,
                )
                touched = True

            stale_profile = [c for c in profile_id_columns if profile_row.get(c) != identifier]
            if profile_row and stale_profile:
                await writer.update_where(
                    profile_table,
                    profile,
                    [FieldCandidate(c, identifier) for c in stale_profile],
                    profile_link,
                    user_id,
                )
                touched = True

            if touched:
                updated += 1
                logger.debug("Backfilled %s for user %s", identifier, user_id)

    logger.info("Backfilled %d %s identifier(s)", updated, role)
    return updated
