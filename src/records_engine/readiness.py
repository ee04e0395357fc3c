"""Deployment readiness check.

Reports whether the tables the engine needs exist on the connected database,
and how each configured role resolves.  Read-only.

Usage:
    async with adapter.transaction() as client:
        report = await assess_deployment(client, config)
    if not report.ready:
        print(report.format_report())
"""

from records_engine.adapters.base import DatabaseClient
from records_engine.config.models import DatabaseConfig
from records_engine.identifiers import discover_sequence_sources
from records_engine.schema.catalog import SchemaCatalog
from records_engine.schema.models import DeploymentReport, RoleReadiness


async def assess_deployment(
    client: DatabaseClient, settings: DatabaseConfig | None = None
) -> DeploymentReport:
    """Inspect the live schema against the engine configuration."""
    config = settings or DatabaseConfig()
    catalog = SchemaCatalog(client)

    users = await catalog.try_columns_of(config.users.table)
    archive = await catalog.try_columns_of(config.archive.table)
    log = await catalog.try_columns_of(config.archive.log_table)

    report = DeploymentReport(
        users_table=config.users.table,
        users_present=users is not None,
        archive_table=config.archive.table,
        archive_present=archive is not None,
        archive_key_present=archive is not None and config.archive.key_column in archive,
        snapshot_column_present=archive is not None and config.archive.snapshot_column in archive,
        log_table_present=log is not None,
    )

    for name, role in config.roles.items():
        resolved = await catalog.resolve_first(role.table_candidates)
        profile_table = resolved[0] if resolved else None
        sources = await discover_sequence_sources(catalog, role, config, profile_table)
        report.roles.append(
            RoleReadiness(
                role=name,
                prefix=role.prefix,
                profile_table=profile_table,
                sequence_sources=[str(s) for s in sources],
            )
        )

    return report
