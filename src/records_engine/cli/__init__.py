"""CLI for the records engine.

Operator commands for profile management, schema inspection, identifier
preview, and account provisioning / archival.

Usage:
    RECORDS_PROFILE=local records-engine connect
    records-engine status
    records-engine profiles
    records-engine validate
    records-engine columns users
    records-engine references users
    records-engine next-id principal
    records-engine provision principal --first-name Ana --last-name Cruz --email ana@example.com
    records-engine archive principal --user-id 42 --reason "Retired"
    records-engine archived --role principal
    records-engine restore --archive-id 7
    records-engine purge --archive-id 7 --confirm
    records-engine backfill-ids principal

Commands:
    connect       - Connect to a profile and check the engine's tables exist
    status        - Show current connection status
    profiles      - List available profiles
    validate      - Re-check the current profile
    columns       - List the columns of a table
    references    - List foreign keys pointing at a table
    next-id       - Preview the next identifier for a role (no writes)
    provision     - Create one account
    archive       - Archive accounts and cascade-delete their rows
    archived      - List archive entries, newest first
    restore       - Recreate accounts from archive entries
    purge         - Permanently delete archive entries
    backfill-ids  - Write canonical identifiers onto accounts missing one

Exit codes: 0 success, 1 failure, 2 conflict (write rejected).
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from records_engine.adapters.postgres import AsyncPostgresAdapter
from records_engine.archive import (
    archive_records,
    list_archived,
    purge_archived,
    restore_archived,
)
from records_engine.config.loader import load_config
from records_engine.config.models import DatabaseConfig
from records_engine.errors import RecordsEngineError, WriteRejected
from records_engine.factory import (
    ProfileNotFoundError,
    connect_and_validate,
    get_adapter,
    load_settings,
    read_profile_lock,
)
from records_engine.identifiers import (
    IdentifierAllocator,
    current_epoch,
    discover_sequence_sources,
)
from records_engine.provisioning import AccountInput, backfill_identifiers, provision
from records_engine.schema.catalog import SchemaCatalog
from records_engine.schema.foreign_keys import ForeignKeyIndex

console = Console()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFLICT = 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _config_path(args: argparse.Namespace) -> Path | None:
    value = getattr(args, "config", None)
    return Path(value) if value else None


def _run(coro: Awaitable[int]) -> int:
    """Run an async command and map engine errors to exit codes."""
    try:
        return asyncio.run(coro)
    except WriteRejected as e:
        console.print(f"[bold red]x[/bold red] Conflict: {e}")
        return EXIT_CONFLICT
    except (RecordsEngineError, ProfileNotFoundError, KeyError, ValueError) as e:
        message = e.args[0] if isinstance(e, KeyError) and e.args else e
        console.print(f"[bold red]x[/bold red] {message}")
        return EXIT_FAILURE


async def _with_adapter(
    args: argparse.Namespace,
    body: Callable[[AsyncPostgresAdapter, DatabaseConfig], Awaitable[int]],
) -> int:
    """Open an adapter for the active profile, run ``body``, then close it."""
    config_path = _config_path(args)
    settings = load_settings(config_path)
    adapter = await get_adapter(env_prefix=args.env_prefix, config_path=config_path)
    try:
        return await body(adapter, settings)
    finally:
        await adapter.close()


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Returns:
        0 on success, 1 on failure.
    """
    previous_profile = read_profile_lock()

    console.print("Connecting to database...", style="dim")

    result = await connect_and_validate(
        env_prefix=args.env_prefix, config_path=_config_path(args)
    )

    if result.success:
        console.print()
        console.print(
            f"[bold green]v[/bold green] Connected to profile: "
            f"[bold cyan]{result.profile_name}[/bold cyan]"
        )
        console.print("  Deployment check: [green]PASSED[/green]")

        if previous_profile and previous_profile != result.profile_name:
            console.print(
                f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
                f"[dim]to[/dim] [bold cyan]{result.profile_name}[/bold cyan]"
            )
        return EXIT_OK

    console.print()
    console.print(f"[bold red]x[/bold red] {result.error}")
    if result.schema_report:
        console.print("\n[bold]Deployment report:[/bold]")
        console.print(result.schema_report.format_report())
    return EXIT_FAILURE


async def _async_validate(args: argparse.Namespace) -> int:
    """Async implementation for validate command.

    Returns:
        0 when ready, 1 when not ready or no profile.
    """
    profile = read_profile_lock()

    if not profile:
        console.print("[yellow]No validated profile.[/yellow]")
        console.print(
            "[dim]Run[/dim] [cyan]records-engine connect[/cyan] [dim]first.[/dim]"
        )
        return EXIT_FAILURE

    console.print(f"Checking profile: [bold cyan]{profile}[/bold cyan]")

    result = await connect_and_validate(
        profile_name=profile,
        env_prefix=args.env_prefix,
        validate_only=True,
        config_path=_config_path(args),
    )

    console.print()
    if result.schema_report:
        console.print(result.schema_report.format_report())
    if result.schema_valid:
        console.print("\n[bold green]v[/bold green] Deployment is ready")
        return EXIT_OK

    if result.error and not result.schema_report:
        console.print(f"[bold red]x[/bold red] {result.error}")
    else:
        console.print("\n[bold red]x[/bold red] Deployment is not ready")
    return EXIT_FAILURE


async def _async_columns(args: argparse.Namespace) -> int:
    """Async implementation for columns command."""

    async def body(adapter: AsyncPostgresAdapter, settings: DatabaseConfig) -> int:
        async with adapter.transaction() as client:
            column_set = await SchemaCatalog(client).columns_of(args.table)

        table = Table(title=f"Columns of {args.table}", show_header=False)
        table.add_column("Column")
        for column in column_set:
            table.add_row(column)
        console.print(table)
        return EXIT_OK

    return await _with_adapter(args, body)


async def _async_references(args: argparse.Namespace) -> int:
    """Async implementation for references command."""

    async def body(adapter: AsyncPostgresAdapter, settings: DatabaseConfig) -> int:
        async with adapter.transaction() as client:
            edges = await ForeignKeyIndex(client).referencing_tables(args.table)

        if not edges:
            console.print(f"[dim]No foreign keys reference {args.table}.[/dim]")
            return EXIT_OK

        table = Table(
            title=f"References to {args.table}", show_header=True, header_style="bold"
        )
        table.add_column("Table")
        table.add_column("Column")
        table.add_column("References")
        for edge in edges:
            table.add_row(
                edge.referencing_table,
                edge.referencing_column,
                f"{args.table}.{edge.referenced_column}",
            )
        console.print(table)
        return EXIT_OK

    return await _with_adapter(args, body)


async def _async_next_id(args: argparse.Namespace) -> int:
    """Async implementation for next-id command.  Read-only."""

    async def body(adapter: AsyncPostgresAdapter, settings: DatabaseConfig) -> int:
        role = settings.role(args.role)
        epoch = args.epoch or current_epoch()
        async with adapter.transaction() as client:
            catalog = SchemaCatalog(client)
            resolved = await catalog.resolve_first(role.table_candidates)
            sources = await discover_sequence_sources(
                catalog, role, settings, resolved[0] if resolved else None
            )
            identifier = await IdentifierAllocator(client).next_id(
                role.prefix, epoch, sources
            )

        console.print(f"Next {args.role} identifier: [bold cyan]{identifier}[/bold cyan]")
        if sources:
            console.print(f"[dim]Sources: {', '.join(str(s) for s in sources)}[/dim]")
        else:
            console.print("[yellow]No identifier columns found; nothing would be stored.[/yellow]")
        return EXIT_OK

    return await _with_adapter(args, body)


async def _async_provision(args: argparse.Namespace) -> int:
    """Async implementation for provision command."""
    account = AccountInput(
        first_name=args.first_name,
        middle_name=args.middle_name,
        last_name=args.last_name,
        suffix=args.suffix,
        email=args.email,
        phone_number=args.phone,
    )

    async def body(adapter: AsyncPostgresAdapter, settings: DatabaseConfig) -> int:
        result = await provision(adapter, args.role, account, settings)

        table = Table(title="Account Created", show_header=False)
        table.add_column("Key", style="dim")
        table.add_column("Value")
        table.add_row("User id", str(result.user_id))
        table.add_row("Identifier", f"[bold cyan]{result.identifier or '-'}[/bold cyan]")
        table.add_row("Name", result.full_name)
        table.add_row("Email", result.email)
        table.add_row("Temporary password", result.temporary_password)
        if result.profile_table:
            table.add_row("Profile table", result.profile_table)
        console.print(table)
        return EXIT_OK

    return await _with_adapter(args, body)


async def _async_archive(args: argparse.Namespace) -> int:
    """Async implementation for archive command."""

    async def body(adapter: AsyncPostgresAdapter, settings: DatabaseConfig) -> int:
        result = await archive_records(
            adapter, args.user_id, reason=args.reason, role=args.role, settings=settings
        )

        table = Table(title="Archived Accounts", show_header=True, header_style="bold")
        table.add_column("User id")
        table.add_column("Name")
        table.add_column("Email")
        table.add_column("Archive id")
        table.add_column("Cascaded rows", justify="right")
        for record in result.archived:
            name = record.name or ""
            if record.already_archived:
                name += " [dim](already archived)[/dim]"
            table.add_row(
                str(record.user_id),
                name,
                record.email or "",
                "" if record.archive_id is None else str(record.archive_id),
                str(record.cascaded_rows),
            )
        console.print(table)

        if result.skipped:
            console.print(
                f"[yellow]Skipped (not found): "
                f"{', '.join(str(u) for u in result.skipped)}[/yellow]"
            )
        return EXIT_OK

    return await _with_adapter(args, body)


async def _async_archived(args: argparse.Namespace) -> int:
    """Async implementation for archived command."""

    async def body(adapter: AsyncPostgresAdapter, settings: DatabaseConfig) -> int:
        entries = await list_archived(adapter, args.role, settings)

        if not entries:
            console.print("[dim]No archive entries found[/dim]")
            return EXIT_OK

        table = Table(title="Archived Accounts", show_header=True, header_style="bold")
        table.add_column("Archive id")
        table.add_column("User id")
        table.add_column("Role")
        table.add_column("Name")
        table.add_column("Email")
        table.add_column("Reason")
        table.add_column("Archived")
        for entry in entries:
            table.add_row(
                str(entry.archive_id),
                "" if entry.user_id is None else str(entry.user_id),
                entry.role_label,
                entry.name or "",
                entry.email or "",
                entry.reason or "",
                "" if entry.archived_at is None else str(entry.archived_at),
            )
        console.print(table)
        console.print(f"[dim]{len(entries)} entr{'y' if len(entries) == 1 else 'ies'}[/dim]")
        return EXIT_OK

    return await _with_adapter(args, body)


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command."""

    async def body(adapter: AsyncPostgresAdapter, settings: DatabaseConfig) -> int:
        result = await restore_archived(adapter, args.archive_id, settings)

        if result.restored:
            table = Table(title="Restored Accounts", show_header=True, header_style="bold")
            table.add_column("Archive id")
            table.add_column("User id")
            table.add_column("Role")
            table.add_column("Name")
            table.add_column("Email")
            table.add_column("Temporary password")
            for entry in result.restored:
                table.add_row(
                    str(entry.archive_id),
                    str(entry.user_id),
                    entry.role,
                    entry.name,
                    entry.email,
                    entry.temporary_password,
                )
            console.print(table)

        for error in result.errors:
            console.print(f"[red]Archive entry {error.archive_id}: {error.message}[/red]")

        return EXIT_OK if not result.errors else EXIT_FAILURE

    return await _with_adapter(args, body)


async def _async_purge(args: argparse.Namespace) -> int:
    """Async implementation for purge command."""
    if not args.confirm:
        console.print(
            f"[yellow]Would permanently delete archive entries: "
            f"{', '.join(str(i) for i in args.archive_id)}[/yellow]"
        )
        console.print("[dim]Re-run with[/dim] [cyan]--confirm[/cyan] [dim]to delete.[/dim]")
        return EXIT_OK

    async def body(adapter: AsyncPostgresAdapter, settings: DatabaseConfig) -> int:
        deleted = await purge_archived(adapter, args.archive_id, settings)
        console.print(f"[bold green]v[/bold green] Purged {len(deleted)} archive entr{'y' if len(deleted) == 1 else 'ies'}")
        missing = [i for i in args.archive_id if i not in deleted]
        if missing:
            console.print(f"[yellow]Not found: {', '.join(str(i) for i in missing)}[/yellow]")
        return EXIT_OK

    return await _with_adapter(args, body)


async def _async_backfill_ids(args: argparse.Namespace) -> int:
    """Async implementation for backfill-ids command."""

    async def body(adapter: AsyncPostgresAdapter, settings: DatabaseConfig) -> int:
        updated = await backfill_identifiers(adapter, args.role, settings)
        console.print(f"[bold green]v[/bold green] Backfilled {updated} {args.role} identifier(s)")
        return EXIT_OK

    return await _with_adapter(args, body)


# ============================================================================
# Command handlers
# ============================================================================


def cmd_connect(args: argparse.Namespace) -> int:
    """Connect to a profile and check the deployment.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return _run(_async_connect(args))


def cmd_validate(args: argparse.Namespace) -> int:
    """Re-check the current profile.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return _run(_async_validate(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Show current connection status.

    Reads only local files (lock file and TOML config) -- no database calls.

    Returns:
        0 always (informational command).
    """
    profile = read_profile_lock()

    if profile:
        table = Table(title="Connection Status", show_header=False)
        table.add_column("Key", style="dim")
        table.add_column("Value")

        table.add_row("Current profile", f"[bold cyan]{profile}[/bold cyan]")
        table.add_row("Profile source", ".records-profile (validated)")

        try:
            config = load_config(_config_path(args))
            if profile in config.profiles:
                p = config.profiles[profile]
                if p.description:
                    table.add_row("Description", p.description)
            table.add_row("Archive table", config.archive.table)
            table.add_row("Roles", ", ".join(config.roles))
        except FileNotFoundError:
            table.add_row("Warning", "[yellow]records.toml not found[/yellow]")

        console.print(table)
    else:
        console.print("[yellow]No validated profile.[/yellow]")
        console.print(
            "[dim]Run:[/dim] [cyan]RECORDS_PROFILE=<name> records-engine connect[/cyan]"
        )

    return EXIT_OK


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from records.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if records.toml not found.
    """
    try:
        config = load_config(_config_path(args))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return EXIT_FAILURE

    current = read_profile_lock()

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = current profile")

    return EXIT_OK


def cmd_columns(args: argparse.Namespace) -> int:
    """List the columns of a table."""
    return _run(_async_columns(args))


def cmd_references(args: argparse.Namespace) -> int:
    """List foreign keys pointing at a table."""
    return _run(_async_references(args))


def cmd_next_id(args: argparse.Namespace) -> int:
    """Preview the next identifier for a role."""
    return _run(_async_next_id(args))


def cmd_provision(args: argparse.Namespace) -> int:
    """Create one account."""
    return _run(_async_provision(args))


def cmd_archive(args: argparse.Namespace) -> int:
    """Archive accounts."""
    return _run(_async_archive(args))


def cmd_archived(args: argparse.Namespace) -> int:
    """List archive entries."""
    return _run(_async_archived(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore archived accounts."""
    return _run(_async_restore(args))


def cmd_purge(args: argparse.Namespace) -> int:
    """Permanently delete archive entries."""
    return _run(_async_purge(args))


def cmd_backfill_ids(args: argparse.Namespace) -> int:
    """Backfill missing role identifiers."""
    return _run(_async_backfill_ids(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with every subcommand."""
    parser = argparse.ArgumentParser(
        prog="records-engine",
        description="Schema-adaptive account provisioning and archival",
    )

    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_RECORDS_PROFILE)"
        ),
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to records.toml (default: ./records.toml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_connect = subparsers.add_parser(
        "connect", help="Connect to a profile and check the deployment"
    )
    p_connect.set_defaults(func=cmd_connect)

    p_status = subparsers.add_parser("status", help="Show current connection status")
    p_status.set_defaults(func=cmd_status)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_validate = subparsers.add_parser("validate", help="Re-check the current profile")
    p_validate.set_defaults(func=cmd_validate)

    p_columns = subparsers.add_parser("columns", help="List the columns of a table")
    p_columns.add_argument("table", help="Table name")
    p_columns.set_defaults(func=cmd_columns)

    p_references = subparsers.add_parser(
        "references", help="List foreign keys pointing at a table"
    )
    p_references.add_argument("table", help="Referenced table name")
    p_references.set_defaults(func=cmd_references)

    p_next_id = subparsers.add_parser(
        "next-id", help="Preview the next identifier for a role (no writes)"
    )
    p_next_id.add_argument("role", help="Role name (e.g. principal)")
    p_next_id.add_argument("--epoch", default=None, help="Two-digit year (default: current)")
    p_next_id.set_defaults(func=cmd_next_id)

    p_provision = subparsers.add_parser("provision", help="Create one account")
    p_provision.add_argument("role", help="Role name (e.g. principal)")
    p_provision.add_argument("--first-name", required=True)
    p_provision.add_argument("--middle-name", default=None)
    p_provision.add_argument("--last-name", required=True)
    p_provision.add_argument("--suffix", default=None)
    p_provision.add_argument("--email", required=True)
    p_provision.add_argument("--phone", default=None, help="Contact number")
    p_provision.set_defaults(func=cmd_provision)

    p_archive = subparsers.add_parser(
        "archive", help="Archive accounts and cascade-delete their rows"
    )
    p_archive.add_argument("role", help="Role name (e.g. principal)")
    p_archive.add_argument(
        "--user-id", type=int, nargs="+", required=True, help="User ids to archive"
    )
    p_archive.add_argument("--reason", default=None, help="Archive reason")
    p_archive.set_defaults(func=cmd_archive)

    p_archived = subparsers.add_parser("archived", help="List archive entries, newest first")
    p_archived.add_argument(
        "--role", default=None, help="Only entries archived with this role (default: all)"
    )
    p_archived.set_defaults(func=cmd_archived)

    p_restore = subparsers.add_parser(
        "restore", help="Recreate accounts from archive entries"
    )
    p_restore.add_argument(
        "--archive-id", type=int, nargs="+", required=True, help="Archive entry ids"
    )
    p_restore.set_defaults(func=cmd_restore)

    p_purge = subparsers.add_parser(
        "purge", help="Permanently delete archive entries"
    )
    p_purge.add_argument(
        "--archive-id", type=int, nargs="+", required=True, help="Archive entry ids"
    )
    p_purge.add_argument(
        "--confirm",
        action="store_true",
        help="Actually delete (without this flag, only shows what would be deleted)",
    )
    p_purge.set_defaults(func=cmd_purge)

    p_backfill = subparsers.add_parser(
        "backfill-ids", help="Write canonical identifiers onto accounts missing one"
    )
    p_backfill.add_argument("role", help="Role name (e.g. principal)")
    p_backfill.set_defaults(func=cmd_backfill_ids)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
