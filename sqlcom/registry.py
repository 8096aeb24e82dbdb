"""Ordered registry of connection profiles with a single active profile."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Literal, Protocol, Sequence

from .database import Database
from .drivers import ProfilesNotFoundError, QueryError
from .models import ConnectionType, ProfileRow, ReconnectResult, Row

LOG = logging.getLogger(__name__)

COLUMNS: tuple[str, ...] = ("Type", "Host", "Db Name", "Username", "Password", "uniqueid")
HIDDEN_COLUMNS = frozenset({"uniqueid"})

_COLUMN_FIELDS = {
    "Host": "host",
    "Db Name": "name",
    "Username": "username",
    "Password": "password",
}

EventKind = Literal["loaded", "added", "removed", "active", "updated"]


@dataclass(frozen=True, slots=True)
class RegistryEvent:
    """Change notification delivered to presentation listeners."""

    kind: EventKind
    profile: Database | None = None


RegistryListener = Callable[[RegistryEvent], None]


class ProfileSource(Protocol):
    """Persistence collaborator that supplies saved profiles."""

    def load_profiles(self) -> Sequence[Database]:
        """Return saved profiles or raise ProfilesNotFoundError."""


class ProfileStore(Protocol):
    def save_profiles(self, profiles: Sequence[Database], active: Database | None) -> None: ...


class ProfileRegistry:
    """Keeps profiles in display order and tracks the active one."""

    def __init__(self, source: ProfileSource | None = None) -> None:
        self._profiles: list[Database] = []
        self._active: Database | None = None
        self._listeners: set[RegistryListener] = set()
        if source is not None:
            self.load(source)

    @property
    def profiles(self) -> tuple[Database, ...]:
        """Profiles in insertion order."""

        return tuple(self._profiles)

    @property
    def active(self) -> Database | None:
        """The active profile, or ``None`` when nothing is selected."""

        return self._active

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, profile: object) -> bool:
        return any(entry is profile for entry in self._profiles)

    def load(self, source: ProfileSource) -> tuple[Database, ...]:
        """Replace the registry contents with the profiles from ``source``."""

        try:
            loaded = list(source.load_profiles())
        except ProfilesNotFoundError as exc:
            LOG.info("No saved profiles found: %s", exc)
            loaded = []
        self._profiles = loaded
        self._active = self._initial_active(source)
        self._notify(RegistryEvent("loaded"))
        return self.profiles

    def add(self, profile: Database) -> None:
        """Append a profile; the active selection is left untouched."""

        if profile in self:
            raise ValueError(f"Profile '{profile.name}' is already registered.")
        self._profiles.append(profile)
        self._notify(RegistryEvent("added", profile))

    def new_profile(self, connection_type: ConnectionType = ConnectionType.MYSQL) -> Database:
        """Append a blank profile of the given type and return it."""

        profile = Database("", "", "", "", "", connection_type=connection_type)
        self.add(profile)
        return profile

    def remove(self, profile: Database) -> None:
        """Close and drop a profile, re-pointing the active selection if needed."""

        if profile not in self:
            raise ValueError(f"Profile '{profile.name}' not found.")
        if not profile.disconnect():
            LOG.warning("Profile '%s' did not close cleanly before removal", profile.name)
        self._profiles = [entry for entry in self._profiles if entry is not profile]
        self._notify(RegistryEvent("removed", profile))
        if self._active is profile:
            self._active = self._profiles[0] if self._profiles else None
            self._notify(RegistryEvent("active", self._active))

    def set_active(self, profile: Database) -> None:
        if profile not in self:
            raise ValueError(f"Profile '{profile.name}' not found.")
        self._active = profile
        self._notify(RegistryEvent("active", profile))

    def get(self, uid: str) -> Database:
        """Look up a profile by its unique id."""

        for profile in self._profiles:
            if profile.uid == uid:
                return profile
        raise ValueError(f"Profile with id '{uid}' not found.")

    def rows(self) -> list[ProfileRow]:
        """Flat rows for tabular display, matching ``COLUMNS``."""

        return [profile.to_row() for profile in self._profiles]

    def apply_row_edit(self, uid: str, column: str, value: str) -> ReconnectResult:
        """Push a single edited table cell back onto its profile."""

        profile = self.get(uid)
        if column == "Type":
            profile.connection_type = ConnectionType.from_label(value)
            result = ReconnectResult(connected=profile.connected)
        elif column in _COLUMN_FIELDS:
            result = profile.update(**{_COLUMN_FIELDS[column]: value})
        else:
            raise ValueError(f"Column '{column}' is not editable.")
        self._notify(RegistryEvent("updated", profile))
        return result

    def connect_active(self) -> bool:
        """Connect the active profile, reporting failure as ``False``."""

        if self._active is None:
            return False
        connected = self._active.try_connect()
        self._notify(RegistryEvent("updated", self._active))
        return connected

    def disconnect_active(self) -> bool:
        if self._active is None:
            return True
        closed = self._active.disconnect()
        self._notify(RegistryEvent("updated", self._active))
        return closed

    def run(self, statement: str) -> list[Row] | int:
        """Execute a statement against the active profile."""

        if self._active is None:
            raise QueryError("No active connection selected.")
        return self._active.execute(statement)

    def save(self, store: ProfileStore) -> None:
        store.save_profiles(self.profiles, self._active)

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Subscribe to registry changes; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _initial_active(self, source: ProfileSource) -> Database | None:
        if not self._profiles:
            return None
        # Saved uid first; the name is only a fallback for files written without one.
        preferred_uid = getattr(source, "active_profile_uid", None)
        if preferred_uid:
            for profile in self._profiles:
                if profile.uid == preferred_uid:
                    return profile
        preferred = getattr(source, "active_profile", None)
        if preferred is not None:
            for profile in self._profiles:
                if profile.name == preferred:
                    return profile
        return self._profiles[0]

    def _notify(self, event: RegistryEvent) -> None:
        for listener in tuple(self._listeners):
            listener(event)


__all__ = [
    "COLUMNS",
    "HIDDEN_COLUMNS",
    "ProfileRegistry",
    "ProfileSource",
    "ProfileStore",
    "RegistryEvent",
    "RegistryListener",
]
