"""Database adapter factory and profile selection.

Supports two configuration modes:
1. Profile mode (records.toml + .records-profile): named database profiles,
   validated against the engine's table expectations on connect.
2. URL mode (``<PREFIX>DATABASE_URL``): a single connection URL, used when no
   records.toml exists.
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from records_engine.adapters.postgres import AsyncPostgresAdapter
from records_engine.config.loader import load_config
from records_engine.config.models import DatabaseConfig, DatabaseProfile
from records_engine.errors import RecordsEngineError
from records_engine.readiness import assess_deployment
from records_engine.schema.models import ConnectionResult

logger = logging.getLogger(__name__)

# Profile lock file name, resolved against the working directory on each use
_PROFILE_LOCK_NAME = ".records-profile"


# ============================================================================
# Profile Lock File Operations
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


def _profile_lock_file() -> Path:
    return Path.cwd() / _PROFILE_LOCK_NAME


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    lock_file = _profile_lock_file()
    if lock_file.exists():
        return lock_file.read_text().strip() or None
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Only call this after a successful readiness check.

    Args:
        profile_name: Name of validated profile
    """
    _profile_lock_file().write_text(profile_name)


def clear_profile_lock() -> None:
    """Remove profile lock file."""
    lock_file = _profile_lock_file()
    if lock_file.exists():
        lock_file.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. ``<env_prefix>RECORDS_PROFILE`` env var (initial connect or CI/CD)
    2. .records-profile file (validated profile from previous connect)
    3. Raise ProfileNotFoundError

    Args:
        env_prefix: Prefix for the environment variable, e.g. ``"SCHOOL_"``
            reads ``SCHOOL_RECORDS_PROFILE``.

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_profile = os.environ.get(f"{env_prefix}RECORDS_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_prefix}RECORDS_PROFILE=<name> records-engine connect"
    )


def get_active_profile(
    env_prefix: str = "", config_path: Path | None = None
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Returns:
        Tuple of (profile_name, DatabaseProfile)

    Raises:
        ProfileNotFoundError: If no profile configured
        KeyError: If profile not found in records.toml
    """
    profile_name = get_active_profile_name(env_prefix)
    config = load_config(config_path)

    if profile_name not in config.profiles:
        raise KeyError(
            f"Profile '{profile_name}' not found in records.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def load_settings(config_path: Path | None = None) -> DatabaseConfig:
    """Engine configuration, or built-in defaults when records.toml is absent."""
    try:
        return load_config(config_path)
    except FileNotFoundError:
        logger.debug("No records.toml found, using default table settings")
        return DatabaseConfig()


# ============================================================================
# Connection and Validation
# ============================================================================


async def connect_and_validate(
    profile_name: str | None = None,
    env_prefix: str = "",
    validate_only: bool = False,
    config_path: Path | None = None,
) -> ConnectionResult:
    """Connect to a profile and check the engine's tables are present.

    On success (and unless ``validate_only``), the profile is written to the
    lock file so later calls pick it up without the env var.

    Example:
        >>> result = await connect_and_validate("local")
        >>> result.success
        True
    """
    if profile_name is None:
        try:
            profile_name = get_active_profile_name(env_prefix)
        except ProfileNotFoundError as e:
            return ConnectionResult(success=False, error=str(e))

    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        return ConnectionResult(success=False, profile_name=profile_name, error=str(e))

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys())
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Profile '{profile_name}' not found. Available: {available}",
        )

    profile = config.profiles[profile_name]
    adapter = AsyncPostgresAdapter(
        database_url=resolve_url(profile), jsonb_columns=profile.jsonb_columns
    )
    try:
        async with adapter.transaction() as client:
            report = await assess_deployment(client, config)
    except RecordsEngineError as e:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Failed to connect to database: {e}",
        )
    finally:
        await adapter.close()

    if not report.ready:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            schema_valid=False,
            schema_report=report,
            error=f"Deployment not ready: {'; '.join(report.problems)}",
        )

    if not validate_only:
        write_profile_lock(profile_name)

    return ConnectionResult(
        success=True,
        profile_name=profile_name,
        schema_valid=True,
        schema_report=report,
    )


# ============================================================================
# Database Adapter Factory
# ============================================================================


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    config_path: Path | None = None,
) -> AsyncPostgresAdapter:
    """Create a new adapter.  No caching: the caller owns and closes it.

    Resolution order: explicit ``database_url``, explicit or active profile
    from records.toml, then ``<env_prefix>DATABASE_URL``.

    Raises:
        ProfileNotFoundError: If no database configuration found
        KeyError: If the named profile is not in records.toml
    """
    if database_url:
        return AsyncPostgresAdapter(database_url=database_url)

    config_file = config_path or Path.cwd() / "records.toml"
    if config_file.exists():
        try:
            if profile_name is None:
                profile_name = get_active_profile_name(env_prefix)
            config = load_config(config_file)
            if profile_name not in config.profiles:
                raise KeyError(
                    f"Profile '{profile_name}' not found in records.toml.\n"
                    f"Available profiles: {', '.join(config.profiles.keys())}"
                )
            profile = config.profiles[profile_name]
            return AsyncPostgresAdapter(
                database_url=resolve_url(profile), jsonb_columns=profile.jsonb_columns
            )
        except ProfileNotFoundError:
            # Fall through to URL mode
            pass

    env_url = os.environ.get(f"{env_prefix}DATABASE_URL")
    if env_url:
        return AsyncPostgresAdapter(database_url=env_url)

    raise ProfileNotFoundError(
        "No database configuration found.\n"
        "Either:\n"
        f"  1. Create records.toml and run: {env_prefix}RECORDS_PROFILE=<name> records-engine connect\n"
        f"  2. Set {env_prefix}DATABASE_URL"
    )
