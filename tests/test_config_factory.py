"""Tests for configuration loading, profile selection and deployment checks."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from records_engine.adapters.postgres import AsyncPostgresAdapter
from records_engine.config import DEFAULT_ROLES, DatabaseConfig, DatabaseProfile, load_config
from records_engine.factory import (
    ProfileNotFoundError,
    clear_profile_lock,
    connect_and_validate,
    get_active_profile_name,
    get_adapter,
    load_settings,
    read_profile_lock,
    resolve_url,
    write_profile_lock,
)
from records_engine.readiness import assess_deployment

from conftest import FakeDatabase, build_school_db

CONFIG_TOML = """
[profiles.local]
url = "postgresql://localhost/school"
description = "Local"

[profiles.staging]
url = "postgresql://app:[YOUR-PASSWORD]@db/school"
db_password = "p@ss"
jsonb_columns = ["snapshot_json"]

[archive]
table = "archived_accounts"

[roles.teacher]
prefix = "TC"

[roles.registrar]
prefix = "RG"
id_columns = ["registrar_id"]
table_candidates = ["registrar"]
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "records.toml"
    path.write_text(CONFIG_TOML)
    return path


# ============================================================================
# Test: load_config
# ============================================================================


class TestLoadConfig:
    """Verify TOML parsing and role merging."""

    def test_profiles_parsed(self, config_file: Path) -> None:
        """Every [profiles.*] table becomes a DatabaseProfile."""
        config = load_config(config_file)
        assert set(config.profiles) == {"local", "staging"}
        assert config.profiles["staging"].jsonb_columns == ["snapshot_json"]

    def test_partial_sections_keep_defaults(self, config_file: Path) -> None:
        """Unset keys fall back to their defaults."""
        config = load_config(config_file)
        assert config.archive.table == "archived_accounts"
        assert config.archive.default_reason == "Archived by IT Administrator"
        assert config.users.table == "users"

    def test_roles_merged_over_defaults(self, config_file: Path) -> None:
        """A role override only replaces the keys it names."""
        config = load_config(config_file)
        assert config.role("teacher").prefix == "TC"
        assert config.role("teacher").table_candidates == DEFAULT_ROLES["teacher"].table_candidates
        assert config.role("registrar").id_columns == ["registrar_id"]
        assert config.role("principal").prefix == "PR"

    def test_defaults_not_mutated(self, config_file: Path) -> None:
        """Overrides never leak into DEFAULT_ROLES."""
        load_config(config_file)
        assert DEFAULT_ROLES["teacher"].prefix == "TE"

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        """Malformed TOML raises ValueError."""
        path = tmp_path / "records.toml"
        path.write_text("[profiles.local\nurl=")
        with pytest.raises(ValueError, match="Invalid TOML"):
            load_config(path)

    def test_load_settings_defaults(self, tmp_path: Path) -> None:
        """load_settings falls back to built-in defaults."""
        settings = load_settings(tmp_path / "absent.toml")
        assert settings.profiles == {}
        assert set(settings.roles) == set(DEFAULT_ROLES)

    def test_unknown_role(self) -> None:
        """role() names the available roles."""
        with pytest.raises(ValueError, match="principal"):
            DatabaseConfig().role("janitor")


# ============================================================================
# Test: Profile selection
# ============================================================================


class TestProfileSelection:
    """Verify env var, lock file and URL resolution."""

    def test_env_var_wins(self) -> None:
        """RECORDS_PROFILE is read first."""
        with patch.dict(os.environ, {"RECORDS_PROFILE": "local"}, clear=False):
            assert get_active_profile_name() == "local"

    def test_custom_prefix(self) -> None:
        """An env prefix is prepended to the variable name."""
        with patch.dict(os.environ, {"SCHOOL_RECORDS_PROFILE": "staging"}, clear=False):
            assert get_active_profile_name("SCHOOL_") == "staging"

    def test_lock_file_fallback(self, tmp_path: Path) -> None:
        """Without the env var the lock file is used."""
        lock_file = tmp_path / ".records-profile"
        lock_file.write_text("staging\n")
        env_clean = {k: v for k, v in os.environ.items() if k != "RECORDS_PROFILE"}
        with patch.dict(os.environ, env_clean, clear=True), \
             patch("records_engine.factory._profile_lock_file", return_value=lock_file):
            assert get_active_profile_name() == "staging"

    def test_raises_when_no_profile(self, tmp_path: Path) -> None:
        """No env var and no lock file raises ProfileNotFoundError."""
        lock_file = tmp_path / ".records-profile"
        env_clean = {k: v for k, v in os.environ.items() if k != "RECORDS_PROFILE"}
        with patch.dict(os.environ, env_clean, clear=True), \
             patch("records_engine.factory._profile_lock_file", return_value=lock_file):
            with pytest.raises(ProfileNotFoundError, match="records-engine connect"):
                get_active_profile_name()

    def test_lock_file_follows_cwd(self, tmp_path: Path, monkeypatch) -> None:
        """The lock file is resolved in the current directory at call time."""
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()

        monkeypatch.chdir(first)
        write_profile_lock("local")
        monkeypatch.chdir(second)

        assert read_profile_lock() is None
        write_profile_lock("staging")
        assert (second / ".records-profile").read_text() == "staging"
        assert (first / ".records-profile").read_text() == "local"

        clear_profile_lock()
        assert not (second / ".records-profile").exists()

    def test_password_substitution(self) -> None:
        """[YOUR-PASSWORD] is replaced with the URL-encoded password."""
        profile = DatabaseProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db", db_password="p@ss/1")
        assert resolve_url(profile) == "postgresql://u:p%40ss%2F1@h/db"

    def test_no_password_no_change(self) -> None:
        """Without db_password the URL is untouched."""
        profile = DatabaseProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db")
        assert resolve_url(profile) == "postgresql://u:[YOUR-PASSWORD]@h/db"


# ============================================================================
# Test: get_adapter
# ============================================================================


class TestGetAdapter:
    """Verify adapter construction."""

    @pytest.mark.asyncio
    async def test_direct_url(self) -> None:
        """An explicit URL bypasses profile lookup."""
        with patch.object(AsyncPostgresAdapter, "__init__", return_value=None) as mock_init:
            adapter = await get_adapter(database_url="postgresql://x/db")
        assert isinstance(adapter, AsyncPostgresAdapter)
        mock_init.assert_called_once_with(database_url="postgresql://x/db")

    @pytest.mark.asyncio
    async def test_profile_from_config(self, config_file: Path) -> None:
        """A named profile passes its resolved URL and jsonb columns."""
        with patch.object(AsyncPostgresAdapter, "__init__", return_value=None) as mock_init:
            await get_adapter(profile_name="staging", config_path=config_file)
        mock_init.assert_called_once_with(
            database_url="postgresql://app:p%40ss@db/school",
            jsonb_columns=["snapshot_json"],
        )

    @pytest.mark.asyncio
    async def test_unknown_profile(self, config_file: Path) -> None:
        """A profile missing from records.toml raises KeyError."""
        with pytest.raises(KeyError, match="Available profiles"):
            await get_adapter(profile_name="prod", config_path=config_file)

    @pytest.mark.asyncio
    async def test_env_url_fallback(self, tmp_path: Path) -> None:
        """Without records.toml, <prefix>DATABASE_URL is used."""
        with patch.dict(os.environ, {"APP_DATABASE_URL": "postgresql://env/db"}, clear=False), \
             patch.object(AsyncPostgresAdapter, "__init__", return_value=None) as mock_init:
            await get_adapter(env_prefix="APP_", config_path=tmp_path / "records.toml")
        mock_init.assert_called_once_with(database_url="postgresql://env/db")

    @pytest.mark.asyncio
    async def test_nothing_configured(self, tmp_path: Path) -> None:
        """No config and no URL raises ProfileNotFoundError."""
        env_clean = {k: v for k, v in os.environ.items() if not k.endswith("DATABASE_URL")}
        with patch.dict(os.environ, env_clean, clear=True):
            with pytest.raises(ProfileNotFoundError):
                await get_adapter(config_path=tmp_path / "records.toml")


# ============================================================================
# Test: Deployment readiness
# ============================================================================


class TestAssessDeployment:
    """Verify the readiness report."""

    @pytest.mark.asyncio
    async def test_school_deployment_ready(self, school_db) -> None:
        """The full fixture schema is ready and resolves the principal table."""
        async with school_db.transaction() as client:
            report = await assess_deployment(client)

        assert report.ready
        assert report.problems == []
        assert report.snapshot_column_present
        assert report.log_table_present
        principal = next(r for r in report.roles if r.role == "principal")
        assert principal.profile_table == "principal"
        assert "principal.principal_id" in principal.sequence_sources
        assert "Deployment ready" in report.format_report()

    @pytest.mark.asyncio
    async def test_missing_archive_not_ready(self) -> None:
        """No archive table is a blocking problem."""
        db = FakeDatabase()
        db.create_table("users", ["user_id", "email"], auto_column="user_id")
        async with db.transaction() as client:
            report = await assess_deployment(client)

        assert not report.ready
        assert report.problems == ["Archive table 'archive_users' not found"]
        assert "Deployment not ready" in report.format_report()


class TestConnectAndValidate:
    """Verify connect_and_validate with an in-memory store."""

    @pytest.mark.asyncio
    async def test_writes_lock_on_success(self, config_file: Path, tmp_path: Path) -> None:
        """A ready deployment is connected and remembered."""
        lock_file = tmp_path / ".records-profile"
        db = build_school_db()
        # The fixture config renames the archive table
        db.tables["archived_accounts"] = db.tables.pop("archive_users")
        db.tables["archived_accounts"].name = "archived_accounts"

        with patch("records_engine.factory.AsyncPostgresAdapter", return_value=db), \
             patch("records_engine.factory._profile_lock_file", return_value=lock_file):
            result = await connect_and_validate("local", config_path=config_file)

        assert result.success
        assert result.schema_valid
        assert lock_file.read_text() == "local"
        assert db.closed

    @pytest.mark.asyncio
    async def test_validate_only_keeps_lock(self, config_file: Path, tmp_path: Path) -> None:
        """validate_only never writes the lock file."""
        lock_file = tmp_path / ".records-profile"
        db = build_school_db()

        with patch("records_engine.factory.AsyncPostgresAdapter", return_value=db), \
             patch("records_engine.factory._profile_lock_file", return_value=lock_file):
            result = await connect_and_validate(
                "local", validate_only=True, config_path=config_file
            )

        assert not result.success
        assert "archived_accounts" in result.error
        assert not lock_file.exists()

    @pytest.mark.asyncio
    async def test_unknown_profile(self, config_file: Path) -> None:
        """An unknown profile is reported without connecting."""
        result = await connect_and_validate("prod", config_path=config_file)
        assert not result.success
        assert "Available: local, staging" in result.error
