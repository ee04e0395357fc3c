"""Schema metadata models: column sets, reference edges, and readiness reports."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from pydantic import BaseModel, Field


# ============================================================================
# Introspection Results
# ============================================================================


@dataclass(frozen=True)
class ColumnSet:
    """Immutable set of column names that exist on one table.

    Example:
        >>> cols = ColumnSet("users", frozenset({"user_id", "email"}))
        >>> "email" in cols
        True
        >>> cols.first_of(["contact_number", "email"])
        'email'
    """

    table: str
    columns: frozenset[str]

    def __contains__(self, column: object) -> bool:
        return column in self.columns

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.columns))

    def __len__(self) -> int:
        return len(self.columns)

    def has(self, column: str) -> bool:
        """Return True if ``column`` exists on the table."""
        return column in self.columns

    def first_of(self, candidates: Iterable[str]) -> str | None:
        """Return the first candidate column present on the table, if any."""
        for column in candidates:
            if column in self.columns:
                return column
        return None


@dataclass(frozen=True)
class ReferenceEdge:
    """A foreign key from ``referencing_table.referencing_column`` to a target table."""

    referencing_table: str
    referencing_column: str
    referenced_column: str


# ============================================================================
# Deployment Readiness
# ============================================================================


class RoleReadiness(BaseModel):
    """How one role resolves on the live schema."""

    role: str
    prefix: str
    profile_table: str | None = None
    sequence_sources: list[str] = Field(default_factory=list)


class DeploymentReport(BaseModel):
    """Result of assess_deployment()."""

    users_table: str
    users_present: bool = False
    archive_table: str
    archive_present: bool = False
    archive_key_present: bool = False
    snapshot_column_present: bool = False
    log_table_present: bool = False
    roles: list[RoleReadiness] = Field(default_factory=list)

    @property
    def ready(self) -> bool:
        """True when provisioning and archival can both run."""
        return self.users_present and self.archive_present and self.archive_key_present

    @property
    def problems(self) -> list[str]:
        """Blocking problems, in the order they should be fixed."""
        issues: list[str] = []
        if not self.users_present:
            issues.append(f"Users table '{self.users_table}' not found")
        if not self.archive_present:
            issues.append(f"Archive table '{self.archive_table}' not found")
        elif not self.archive_key_present:
            issues.append(f"Archive table '{self.archive_table}' has no user key column")
        return issues

    def format_report(self) -> str:
        """Format readiness as human-readable report."""
        if self.ready:
            lines = ["Deployment ready"]
        else:
            lines = ["Deployment not ready:"]
            for problem in self.problems:
                lines.append(f"    - {problem}")

        if self.archive_present and not self.snapshot_column_present:
            lines.append("\n  Archive snapshots disabled (no snapshot column)")

        for role in self.roles:
            profile = role.profile_table or "(none)"
            lines.append(f"\n  {role.role} [{role.prefix}]: profile table {profile}")
            if role.sequence_sources:
                lines.append(f"    sequence sources: {', '.join(role.sequence_sources)}")
            else:
                lines.append("    sequence sources: (none, identifiers start at 0001)")

        return "\n".join(lines)


class ConnectionResult(BaseModel):
    """Result of connect_and_validate()."""

    success: bool
    profile_name: str | None = None
    schema_valid: bool = False
    schema_report: DeploymentReport | None = None
    error: str | None = None
