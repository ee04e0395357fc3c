"""Human-readable sequential identifiers (``PR-250001``).

An identifier is ``<PREFIX>-<YY><SEQ>``: a role prefix, the two-digit year
("epoch") and a sequence number zero-padded to at least four digits.  Past
9999 the sequence simply grows to five or more digits.

``IdentifierAllocator.next_id`` mints the next identifier by scanning every
``SequenceSource`` that may hold previously issued values and taking the
highest sequence it can parse.  ``format_identifier`` is the display-side
counterpart: it returns canonical identifiers unchanged and synthesizes one
for legacy rows that never had one.

Usage:
    allocator = IdentifierAllocator(client)
    new_id = await allocator.next_id(
        "PR",
        current_epoch(),
        [SequenceSource("users", "principal_id"), SequenceSource("principal", "principal_id")],
    )

    format_identifier("PR-250007", "PR")            # 'PR-250007'
    format_identifier(None, "PR", 42, epoch="25")   # 'PR-250042'
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime

from records_engine.adapters.base import DatabaseClient, Like
from records_engine.config.models import DatabaseConfig, RoleSettings
from records_engine.errors import SchemaUnavailable
from records_engine.schema.catalog import SchemaCatalog

logger = logging.getLogger(__name__)

_PREFIX_RE = re.compile(r"^[A-Za-z0-9]+$")
_EPOCH_RE = re.compile(r"^\d{2}$")


@dataclass(frozen=True)
class SequenceSource:
    """A (table, column) pair that may hold previously issued identifiers."""

    table: str
    column: str

    def __str__(self) -> str:
        return f"{self.table}.{self.column}"


def current_epoch(now: datetime | None = None) -> str:
    """Two-digit year used as the identifier epoch."""
    now = now or datetime.now()
    return f"{now.year % 100:02d}"


def _check_prefix(prefix: str) -> str:
    if not _PREFIX_RE.match(prefix or ""):
        raise ValueError(f"Invalid identifier prefix: {prefix!r}")
    return prefix


def _check_epoch(epoch: str) -> str:
    if not _EPOCH_RE.match(epoch or ""):
        raise ValueError(f"Epoch must be two digits, got {epoch!r}")
    return epoch


def build_identifier(prefix: str, epoch: str, sequence: int) -> str:
    """Assemble ``<prefix>-<epoch><sequence padded to 4>``."""
    return f"{_check_prefix(prefix)}-{_check_epoch(epoch)}{sequence:04d}"


def is_canonical(value: object, prefix: str) -> bool:
    """True if ``value`` is a string of the form ``<prefix>-YY`` plus 4+ digits."""
    if not isinstance(value, str):
        return False
    pattern = rf"^{re.escape(_check_prefix(prefix))}-\d{{2}}\d{{4,}}$"
    return re.match(pattern, value) is not None


def parse_sequence(value: object, prefix: str) -> int | None:
    """Extract the sequence number from a canonical identifier, else None."""
    if not isinstance(value, str):
        return None
    pattern = rf"^{re.escape(_check_prefix(prefix))}-\d{{2}}(\d{{4,}})$"
    match = re.match(pattern, value.strip())
    if match is None:
        return None
    return int(match.group(1))


def format_identifier(
    raw: object,
    prefix: str,
    fallback_sequence: int | None = None,
    epoch: str | None = None,
) -> str:
    """Return ``raw`` when it is already canonical, otherwise build one.

    The built identifier uses ``max(1, fallback_sequence)`` (1 when no
    fallback is given) and ``epoch`` (default: the current year).
    """
    normalized = raw.strip() if isinstance(raw, str) else ""
    if normalized and is_canonical(normalized, prefix):
        return normalized

    sequence = max(1, int(fallback_sequence)) if fallback_sequence is not None else 1
    return build_identifier(prefix, epoch or current_epoch(), sequence)


class IdentifierAllocator:
    """Mints the next identifier for a prefix and epoch.

    Runs on the caller's transaction.  Each source is read inside its own
    savepoint so a missing table or a non-text column only removes that source.

    Args:
        client: Transaction-scoped database client.
        serialize: Take a transaction-scoped advisory lock on
            ``<prefix>-<epoch>`` before scanning, so concurrent allocations for
            the same prefix and epoch run one after another.
    """

    def __init__(self, client: DatabaseClient, serialize: bool = False) -> None:
        self._client = client
        self._serialize = serialize

    async def next_id(
        self, prefix: str, epoch: str, sources: list[SequenceSource]
    ) -> str:
        """Return ``<prefix>-<epoch><max+1>`` over all sources.

        Raises:
            StorageUnavailable: If the store cannot be reached.
        """
        _check_prefix(prefix)
        _check_epoch(epoch)

        if self._serialize:
            await self._client.advisory_lock(f"{prefix}-{epoch}")

        highest = 0
        for source in sources:
            latest = await self._latest_value(source, prefix, epoch)
            sequence = parse_sequence(latest, prefix)
            if sequence is not None:
                highest = max(highest, sequence)

        identifier = build_identifier(prefix, epoch, highest + 1)
        logger.debug(
            "Allocated %s from %d source(s), previous max %d",
            identifier,
            len(sources),
            highest,
        )
        return identifier

    async def _latest_value(
        self, source: SequenceSource, prefix: str, epoch: str
    ) -> object | None:
        try:
            async with self._client.savepoint():
                rows = await self._client.select(
                    source.table,
                    [source.column],
                    filters={source.column: Like(f"{prefix}-{epoch}%")},
                    order_by=source.column,
                    descending=True,
                    limit=1,
                    length_first=True,
                )
        except SchemaUnavailable as e:
            logger.warning("Skipping sequence source %s: %s", source, e)
            return None

        if not rows:
            return None
        return rows[0].get(source.column)


async def discover_sequence_sources(
    catalog: SchemaCatalog,
    role: RoleSettings,
    config: DatabaseConfig,
    profile_table: str | None = None,
) -> list[SequenceSource]:
    """List the places identifiers for ``role`` may already live.

    Covers the role's id columns on the users table, the role-profile table
    and the archive table, plus the users and archive code columns.  Archived
    identifiers are included so they are never reissued.
    """
    sources: list[SequenceSource] = []

    def add(table: str, column: str) -> None:
        source = SequenceSource(table, column)
        if source not in sources:
            sources.append(source)

    users = await catalog.try_columns_of(config.users.table)
    if users is not None:
        for column in role.id_columns:
            if column in users:
                add(users.table, column)
        if config.users.code_column in users:
            add(users.table, config.users.code_column)

    if profile_table is not None:
        profile = await catalog.try_columns_of(profile_table)
        if profile is not None:
            for column in role.id_columns:
                if column in profile:
                    add(profile.table, column)

    archive = await catalog.try_columns_of(config.archive.table)
    if archive is not None:
        for column in role.id_columns:
            if column in archive:
                add(archive.table, column)
        if config.archive.code_column in archive:
            add(archive.table, config.archive.code_column)

    return sources
