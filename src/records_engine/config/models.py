"""Pydantic models for engine configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Connection Profiles
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from records.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    jsonb_columns: list[str] = Field(default_factory=list)


# ============================================================================
# Table Layout Settings
# ============================================================================


class UsersSettings(BaseModel):
    """Where live user accounts are stored."""

    table: str = "users"
    key_column: str = "user_id"
    email_column: str = "email"
    code_column: str = "user_code"


class ArchiveSettings(BaseModel):
    """Archive table layout and archival defaults."""

    table: str = "archive_users"
    key_column: str = "user_id"
    id_columns: list[str] = Field(
        default_factory=lambda: ["archive_id", "archived_id", "id"]
    )
    code_column: str = "user_code"
    snapshot_column: str = "snapshot_json"
    log_table: str = "account_logs"
    default_reason: str = "Archived by IT Administrator"


class RoleSettings(BaseModel):
    """One account role: its identifier prefix and role-profile table."""

    prefix: str
    label: str = ""
    role_value: str | None = None  # Value for users.role; defaults to the role name
    id_columns: list[str] = Field(default_factory=list)
    table_candidates: list[str] = Field(default_factory=list)
    link_columns: list[str] = Field(default_factory=lambda: ["user_id"])


class EngineSettings(BaseModel):
    """Engine behaviour switches."""

    serialize_allocation: bool = False


DEFAULT_ROLES: dict[str, RoleSettings] = {
    "principal": RoleSettings(
        prefix="PR",
        label="Principal",
        id_columns=["principal_id"],
        table_candidates=["principal", "principals", "principal_info"],
    ),
    "it_admin": RoleSettings(
        prefix="IA",
        label="IT Admin",
        role_value="admin",
        id_columns=["admin_id", "it_admin_id"],
        table_candidates=["it_admin", "it_admins", "admin"],
    ),
    "teacher": RoleSettings(
        prefix="TE",
        label="Teacher",
        id_columns=["teacher_id"],
        table_candidates=[
            "teacher",
            "teachers",
            "teacher_info",
            "teacher_accounts",
            "faculty",
            "teacher_tbl",
        ],
        link_columns=["user_id", "teacher_id", "employee_id"],
    ),
    "master_teacher": RoleSettings(
        prefix="MT",
        label="Master Teacher",
        id_columns=["master_teacher_id", "masterteacher_id"],
        table_candidates=["master_teacher", "master_teachers", "masterteacher"],
    ),
}


def _default_roles() -> dict[str, RoleSettings]:
    return {name: role.model_copy(deep=True) for name, role in DEFAULT_ROLES.items()}


# ============================================================================
# Complete Configuration
# ============================================================================


class DatabaseConfig(BaseModel):
    """Complete engine configuration from records.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    users: UsersSettings = Field(default_factory=UsersSettings)
    archive: ArchiveSettings = Field(default_factory=ArchiveSettings)
    roles: dict[str, RoleSettings] = Field(default_factory=_default_roles)
    engine: EngineSettings = Field(default_factory=EngineSettings)

    def role(self, name: str) -> RoleSettings:
        """Look up a role by name.

        Raises:
            ValueError: If the role is not configured.
        """
        try:
            return self.roles[name]
        except KeyError:
            available = ", ".join(sorted(self.roles)) or "(none)"
            raise ValueError(
                f"Unknown role '{name}'. Available roles: {available}"
            ) from None
