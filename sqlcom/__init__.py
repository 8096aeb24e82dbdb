"""Connection profile management for the sqlcom SQL client."""

from __future__ import annotations

from .config import AppConfig, ConfigProfileSource, configure_logging, load_config, save_config
from .database import Database
from .drivers import (
    DatabaseConnectionError,
    ProfilesNotFoundError,
    QueryError,
    SqlcomError,
    StatementError,
    UpdateError,
)
from .models import ConnectionType, ProfileRow, ReconnectResult, format_type_name
from .registry import COLUMNS, HIDDEN_COLUMNS, ProfileRegistry, RegistryEvent

__all__ = [
    "AppConfig",
    "COLUMNS",
    "ConfigProfileSource",
    "ConnectionType",
    "Database",
    "DatabaseConnectionError",
    "HIDDEN_COLUMNS",
    "ProfileRegistry",
    "ProfileRow",
    "ProfilesNotFoundError",
    "QueryError",
    "ReconnectResult",
    "RegistryEvent",
    "SqlcomError",
    "StatementError",
    "UpdateError",
    "configure_logging",
    "format_type_name",
    "load_config",
    "save_config",
]
