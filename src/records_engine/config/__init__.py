"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from records_engine.config import load_config, DatabaseConfig
"""

from records_engine.config.loader import load_config
from records_engine.config.models import (
    DEFAULT_ROLES,
    ArchiveSettings,
    DatabaseConfig,
    DatabaseProfile,
    EngineSettings,
    RoleSettings,
    UsersSettings,
)

__all__ = [
    "load_config",
    "DEFAULT_ROLES",
    "ArchiveSettings",
    "DatabaseConfig",
    "DatabaseProfile",
    "EngineSettings",
    "RoleSettings",
    "UsersSettings",
]
