"""Connection profile holding parameters and an optional live connection."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Callable
from uuid import uuid4

from .drivers import (
    DatabaseConnectionError,
    Driver,
    DriverConnection,
    QueryError,
    UpdateError,
    driver_for,
)
from .models import ConnectionType, ProfileRow, ReconnectResult, Row

LOG = logging.getLogger(__name__)

DEFAULT_STATUS_TIMEOUT = 5.0

PROFILE_FIELDS = ("name", "host", "port", "username", "password")

_ROW_STATEMENTS = {"select", "with", "show", "values", "describe", "desc", "explain"}

# Leading whitespace, comments and opening parentheses before the first keyword.
_LEADING_NOISE = re.compile(r"^(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/|\()+", re.DOTALL)


def returns_rows(statement: str) -> bool:
    """Whether a statement is expected to produce a result set."""

    token = _LEADING_NOISE.sub("", statement, count=1).split(None, 1)
    if not token:
        return False
    return token[0].lower() in _ROW_STATEMENTS


def _profile_field(attr: str, doc: str) -> property:
    def _get(self: Database) -> Any:
        return getattr(self, f"_{attr}")

    def _set(self: Database, value: Any) -> None:
        self.update(**{attr: value})

    return property(_get, _set, doc=doc)


class Database:
    """A named database connection profile.

    Construction never touches the network; the live connection is only
    opened by :meth:`connect`. Assigning any of ``name``, ``host``, ``port``,
    ``username`` or ``password`` reconnects with the new values and never
    raises: failures land in :attr:`last_error`. Use :meth:`update` to get
    the outcome of that reconnect, or :meth:`set_fields` to change values
    without reconnecting.
    """

    name = _profile_field("name", "Database name.")
    host = _profile_field("host", "Server host.")
    port = _profile_field("port", "Server port (string or int).")
    username = _profile_field("username", "Login user.")
    password = _profile_field("password", "Login password, held in plaintext.")

    def __init__(
        self,
        name: str,
        host: str,
        port: str | int,
        username: str,
        password: str,
        *,
        connection_type: ConnectionType | str = ConnectionType.MYSQL,
        uid: str | None = None,
        driver: Driver | None = None,
        driver_factory: Callable[[ConnectionType], Driver] | None = None,
        status_timeout: float = DEFAULT_STATUS_TIMEOUT,
    ) -> None:
        self._name = name
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._connection_type = ConnectionType(connection_type)
        self.uid = uid or uuid4().hex
        self.status_timeout = status_timeout
        self.last_error: str | None = None
        self._driver = driver
        self._driver_factory = driver_factory
        self._connection: DriverConnection | None = None
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return (
            f"Database(name={self._name!r}, type={self._connection_type.label!r}, "
            f"host={self._host!r}, port={self._port!r}, username={self._username!r}, "
            f"password='***', uid={self.uid!r})"
        )

    @property
    def connection_type(self) -> ConnectionType:
        return self._connection_type

    @connection_type.setter
    def connection_type(self, value: ConnectionType | str) -> None:
        new_type = ConnectionType(value)
        with self._lock:
            if new_type is self._connection_type:
                return
            self._discard_handle()
            self._connection_type = new_type
            self._driver = self._driver_factory(new_type) if self._driver_factory is not None else None

    @property
    def driver(self) -> Driver:
        if self._driver is not None:
            return self._driver
        return driver_for(self._connection_type)

    @property
    def connection(self) -> DriverConnection | None:
        """The live handle, if one is held."""

        return self._connection

    @property
    def connected(self) -> bool:
        """Whether a live handle is held; use :meth:`status` to check it."""

        return self._connection is not None

    def connect(self) -> bool:
        """Open a fresh connection from the current fields.

        Any existing handle is closed first. Returns whether the new
        connection answers the liveness check.
        """

        with self._lock:
            self._discard_handle()
            try:
                self._connection = self.driver.open(self)
            except DatabaseConnectionError as exc:
                self.last_error = str(exc)
                raise
            except Exception as exc:
                self.last_error = str(exc)
                raise DatabaseConnectionError(f"Failed to connect to profile '{self._name}': {exc}") from exc
            self.last_error = None
            LOG.info("Connected profile '%s' (%s@%s)", self._name, self._username, self._host)
        return self.status()

    def try_connect(self) -> bool:
        """Like :meth:`connect` but reports failure as ``False``."""

        return self.apply().connected

    def disconnect(self) -> bool:
        """Close the live connection; a profile with none counts as closed."""

        with self._lock:
            if self._connection is None:
                return True
            try:
                self._connection.close()
                closed = self._connection.is_closed()
            except Exception as exc:
                LOG.warning("Failed to close profile '%s': %s", self._name, exc)
                return False
            if closed:
                self._connection = None
                LOG.info("Disconnected profile '%s'", self._name)
            return closed

    def status(self) -> bool:
        """Check the live connection, bounded by ``status_timeout`` seconds.

        The check shares the profile lock with connect and execute; a profile
        busy for longer than the timeout reports ``False``.
        """

        if not self._lock.acquire(timeout=self.status_timeout):
            LOG.debug("Status check for profile '%s' timed out waiting for the connection", self._name)
            return False
        try:
            conn = self._connection
            if conn is None:
                return False
            return bool(conn.is_valid(self.status_timeout))
        except Exception as exc:
            LOG.debug("Status check for profile '%s' failed: %s", self._name, exc)
            return False
        finally:
            self._lock.release()

    def execute_query(self, statement: str) -> list[Row]:
        """Run a read statement and return its rows in column order."""

        with self._lock:
            if self._connection is None:
                raise QueryError(f"Profile '{self._name}' is not connected.")
            try:
                rows = self._connection.query(statement)
            except Exception as exc:
                raise QueryError(f"Query failed on profile '{self._name}': {exc}", exc) from exc
        return list(rows)

    def execute_update(self, statement: str) -> int:
        """Run a mutating statement and return the affected row count."""

        with self._lock:
            if self._connection is None:
                raise UpdateError(f"Profile '{self._name}' is not connected.")
            try:
                return int(self._connection.update(statement))
            except Exception as exc:
                raise UpdateError(f"Update failed on profile '{self._name}': {exc}", exc) from exc

    def execute(self, statement: str) -> list[Row] | int:
        """Dispatch to :meth:`execute_query` or :meth:`execute_update`."""

        statement = statement.strip()
        if not statement:
            raise QueryError("Provide SQL to execute.")
        if returns_rows(statement):
            return self.execute_query(statement)
        return self.execute_update(statement)

    def set_fields(self, **changes: Any) -> None:
        """Change connection fields without reconnecting."""

        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown profile field(s): {', '.join(sorted(unknown))}")
        with self._lock:
            for field, value in changes.items():
                setattr(self, f"_{field}", value)

    def apply(self) -> ReconnectResult:
        """Reconnect with the current fields, capturing any failure."""

        with self._lock:
            try:
                connected = self.connect()
            except DatabaseConnectionError as exc:
                LOG.warning("Reconnect for profile '%s' failed: %s", self._name, exc, exc_info=True)
                return ReconnectResult(connected=False, error=str(exc))
        if not connected:
            return ReconnectResult(connected=False, error="Connection is not responding.")
        return ReconnectResult(connected=True)

    def update(self, **changes: Any) -> ReconnectResult:
        """Change connection fields and reconnect, reporting the outcome."""

        with self._lock:
            self.set_fields(**changes)
            return self.apply()

    def _discard_handle(self) -> None:
        conn, self._connection = self._connection, None
        if conn is None:
            return
        try:
            conn.close()
        except Exception as exc:
            LOG.debug("Ignoring close failure on profile '%s': %s", self._name, exc)

    def to_row(self) -> ProfileRow:
        return ProfileRow(
            type=self._connection_type.label,
            host=str(self._host),
            name=str(self._name),
            username=str(self._username),
            password=str(self._password),
            uid=self.uid,
        )


__all__ = ["DEFAULT_STATUS_TIMEOUT", "Database", "PROFILE_FIELDS", "returns_rows"]
