"""App configuration and saved-profile persistence."""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import Sequence

import tomllib

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from .database import DEFAULT_STATUS_TIMEOUT, Database
from .drivers import DRIVER_FACTORIES, Driver, ProfilesNotFoundError
from .models import ConnectionType

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "sqlcom" / "config.toml"

_TOML_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


class ConnectionProfileConfig(BaseModel):
    """Connection profile stored in config.toml."""

    name: str = ""
    type: ConnectionType = ConnectionType.MYSQL
    host: str = ""
    port: int | str = ""
    username: str = ""
    password: SecretStr = SecretStr("")
    uid: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _accept_labels(cls, value: object) -> object:
        if isinstance(value, str) and not isinstance(value, ConnectionType):
            return ConnectionType.from_label(value)
        return value

    @classmethod
    def from_profile(cls, profile: Database) -> ConnectionProfileConfig:
        return cls(
            name=profile.name,
            type=profile.connection_type,
            host=profile.host,
            port=profile.port,
            username=profile.username,
            password=SecretStr(profile.password),
            uid=profile.uid,
        )


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    status_timeout: float = DEFAULT_STATUS_TIMEOUT
    connect_timeout: float = 10.0
    log_level: str = "WARNING"
    active_profile: str | None = None
    active_profile_uid: str | None = None
    profiles: list[ConnectionProfileConfig] = Field(default_factory=list)

    def with_active_profile(self, name: str | None, uid: str | None = None) -> AppConfig:
        """Return a copy with the active profile updated."""

        return self.model_copy(update={"active_profile": name, "active_profile_uid": uid})

    def with_profiles(self, profiles: Sequence[Database]) -> AppConfig:
        """Return a copy holding the given runtime profiles."""

        entries = [ConnectionProfileConfig.from_profile(profile) for profile in profiles]
        return self.model_copy(update={"profiles": entries})


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file: %s", exc)
        return AppConfig()
    try:
        return AppConfig(**data)
    except ValidationError as exc:
        LOG.warning("Ignoring invalid config values: %s", exc)
        return AppConfig(profiles=data.get("profiles", []))


def save_config(config: AppConfig, path: Path | None = None) -> None:
    """Persist configuration to disk."""

    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"status_timeout = {config.status_timeout}",
        f"connect_timeout = {config.connect_timeout}",
        f"log_level = {_quote(config.log_level)}",
    ]
    if config.active_profile is not None:
        lines.append(f"active_profile = {_quote(config.active_profile)}")
    if config.active_profile_uid:
        lines.append(f"active_profile_uid = {_quote(config.active_profile_uid)}")
    if config.profiles:
        lines.append("")
        for profile in config.profiles:
            lines.append("[[profiles]]")
            lines.append(f"name = {_quote(profile.name)}")
            lines.append(f"type = {_quote(profile.type.value)}")
            lines.append(f"host = {_quote(profile.host)}")
            if isinstance(profile.port, int):
                lines.append(f"port = {profile.port}")
            else:
                lines.append(f"port = {_quote(profile.port)}")
            lines.append(f"username = {_quote(profile.username)}")
            # TODO: move passwords to the OS keyring instead of the config file.
            lines.append(f"password = {_quote(profile.password.get_secret_value())}")
            if profile.uid:
                lines.append(f"uid = {_quote(profile.uid)}")
            lines.append("")
    target.write_text("\n".join(lines) + "\n")


def configure_logging(config: AppConfig) -> None:
    """Apply the configured log level to the package logger."""

    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        LOG.warning("Unknown log level '%s'; keeping defaults", config.log_level)
        return
    logging.getLogger("sqlcom").setLevel(level)


class ConfigProfileSource:
    """Loads and saves registry profiles through config.toml."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self.active_profile: str | None = None
        self.active_profile_uid: str | None = None
        self._drivers: dict[ConnectionType, Driver] = {}

    def load_profiles(self) -> list[Database]:
        path = self.path or CONFIG_FILE
        if not path.exists():
            raise ProfilesNotFoundError(f"No config file at {path}")
        config = load_config(path)
        if not config.profiles:
            raise ProfilesNotFoundError(f"No profiles saved in {path}")
        self.active_profile = config.active_profile
        self.active_profile_uid = config.active_profile_uid
        return [self._build(entry, config) for entry in config.profiles]

    def save_profiles(self, profiles: Sequence[Database], active: Database | None) -> None:
        path = self.path or CONFIG_FILE
        config = load_config(path).with_profiles(profiles)
        if active is not None:
            config = config.with_active_profile(active.name, active.uid)
        else:
            config = config.with_active_profile(None)
        save_config(config, path)
        self.active_profile = config.active_profile
        self.active_profile_uid = config.active_profile_uid

    def _build(self, entry: ConnectionProfileConfig, config: AppConfig) -> Database:
        return Database(
            entry.name,
            entry.host,
            entry.port,
            entry.username,
            entry.password.get_secret_value(),
            connection_type=entry.type,
            uid=entry.uid,
            driver=self._driver(entry.type, config),
            driver_factory=partial(self._driver, config=config),
            status_timeout=config.status_timeout,
        )

    def _driver(self, connection_type: ConnectionType, config: AppConfig) -> Driver:
        driver = self._drivers.get(connection_type)
        if driver is None:
            driver = DRIVER_FACTORIES[connection_type](connect_timeout=config.connect_timeout)
            self._drivers[connection_type] = driver
        return driver


def _quote(value: str) -> str:
    """Render a TOML basic string, escaping quotes, backslashes and control characters."""

    escaped = "".join(_TOML_ESCAPES.get(char) or _escape_control(char) for char in value)
    return f'"{escaped}"'


def _escape_control(char: str) -> str:
    if char < "\x20" or char == "\x7f":
        return f"\\u{ord(char):04X}"
    return char


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    for key in ("status_timeout", "connect_timeout"):
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            data[key] = float(value)
    for key in ("log_level", "active_profile", "active_profile_uid"):
        value = raw.get(key)
        if isinstance(value, str):
            data[key] = value
    profiles = raw.get("profiles")
    if isinstance(profiles, list):
        parsed_profiles: list[ConnectionProfileConfig] = []
        for entry in profiles:
            if not isinstance(entry, dict):
                continue
            try:
                parsed_profiles.append(ConnectionProfileConfig(**entry))
            except (ValidationError, ValueError) as exc:
                LOG.warning("Skipping invalid saved profile: %s", exc)
        data["profiles"] = parsed_profiles
    return data


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConfigProfileSource",
    "ConnectionProfileConfig",
    "configure_logging",
    "load_config",
    "save_config",
]
