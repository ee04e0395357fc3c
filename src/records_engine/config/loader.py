"""Configuration loading from records.toml."""

import logging
import tomllib
from pathlib import Path

from records_engine.config.models import (
    ArchiveSettings,
    DatabaseConfig,
    DatabaseProfile,
    EngineSettings,
    RoleSettings,
    UsersSettings,
    _default_roles,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "records.toml"


def load_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load engine configuration from TOML file.

    Roles declared under ``[roles.<name>]`` are merged over the built-in
    defaults, so a file only has to mention the roles it changes.

    Args:
        config_path: Path to records.toml (default: ./records.toml)

    Returns:
        DatabaseConfig with all profiles and table settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_NAME

    if not config_path.exists():
        raise FileNotFoundError(
            f"Engine config not found: {config_path}\n"
            f"Create {DEFAULT_CONFIG_NAME} with at least one [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    roles = _default_roles()
    for name, role_data in data.get("roles", {}).items():
        if name in roles:
            merged = {**roles[name].model_dump(), **role_data}
            roles[name] = RoleSettings(**merged)
        else:
            roles[name] = RoleSettings(**role_data)

    logger.debug("Loaded %d profile(s) and %d role(s) from %s", len(profiles), len(roles), config_path)

    return DatabaseConfig(
        profiles=profiles,
        users=UsersSettings(**data.get("users", {})),
        archive=ArchiveSettings(**data.get("archive", {})),
        roles=roles,
        engine=EngineSettings(**data.get("engine", {})),
    )
