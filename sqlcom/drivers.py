"""Driver backends that open live connections for a profile."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Protocol, runtime_checkable

import asyncpg
import pymysql
import pymysql.cursors

from .models import ConnectionType, Row

if TYPE_CHECKING:
    from .database import Database

LOG = logging.getLogger(__name__)


class SqlcomError(RuntimeError):
    """Base class for errors raised by sqlcom."""


class DatabaseConnectionError(SqlcomError):
    """Raised when a profile cannot (re)establish its connection."""


class StatementError(SqlcomError):
    """Base for statement failures; ``error`` holds the driver exception."""

    def __init__(self, message: str, error: BaseException | None = None) -> None:
        super().__init__(message)
        self.error = error


class QueryError(StatementError):
    """Raised when a read statement fails."""


class UpdateError(StatementError):
    """Raised when a mutating statement fails."""


class ProfilesNotFoundError(SqlcomError, FileNotFoundError):
    """Raised by a profile source that has nothing persisted."""


@runtime_checkable
class DriverConnection(Protocol):
    """Live handle returned by a driver."""

    def is_valid(self, timeout: float) -> bool:
        """Return whether the connection answers within ``timeout`` seconds."""

    def is_closed(self) -> bool: ...

    def close(self) -> None: ...

    def query(self, sql: str) -> list[Row]: ...

    def update(self, sql: str) -> int: ...


@runtime_checkable
class Driver(Protocol):
    """Opens live connections from a profile's current fields."""

    def open(self, profile: "Database") -> DriverConnection: ...


def _port(value: str | int | None, default: int) -> int:
    if value is None or str(value).strip() == "":
        return default
    return int(str(value).strip())


class PymysqlConnection:
    """DriverConnection wrapper around a PyMySQL connection.

    A liveness check that times out leaves ``ping`` running on the ping
    thread, so the connection is abandoned: it reports invalid and closed,
    refuses further statements, and is closed once the ping returns.
    """

    def __init__(self, conn: pymysql.connections.Connection) -> None:
        self._conn = conn
        self._pinger: ThreadPoolExecutor | None = None
        self._abandoned = False

    def is_valid(self, timeout: float) -> bool:
        if self._abandoned or not self._conn.open:
            return False
        if self._pinger is None:
            self._pinger = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sqlcom-mysql-ping")
        future = self._pinger.submit(self._conn.ping, False)
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            LOG.warning("MySQL liveness check timed out after %ss; abandoning connection", timeout)
            self._abandoned = True
            future.add_done_callback(lambda _future: self._close_quietly())
            return False
        except pymysql.MySQLError as exc:
            LOG.debug("MySQL liveness check failed: %s", exc)
            return False
        return True

    def is_closed(self) -> bool:
        return self._abandoned or not self._conn.open

    def close(self) -> None:
        if self._pinger is not None:
            self._pinger.shutdown(wait=False)
            self._pinger = None
        if not self._abandoned and self._conn.open:
            self._conn.close()

    def query(self, sql: str) -> list[Row]:
        self._ensure_usable()
        with self._conn.cursor(pymysql.cursors.DictCursor) as cursor:
            cursor.execute(sql)
            return [dict(row) for row in cursor.fetchall()]

    def update(self, sql: str) -> int:
        self._ensure_usable()
        with self._conn.cursor() as cursor:
            affected = cursor.execute(sql)
        self._conn.commit()
        return max(int(affected or 0), 0)

    def _ensure_usable(self) -> None:
        if self._abandoned:
            raise pymysql.err.InterfaceError(0, "Connection abandoned after a timed-out liveness check")

    def _close_quietly(self) -> None:
        try:
            if self._conn.open:
                self._conn.close()
        except pymysql.MySQLError as exc:
            LOG.debug("Ignoring close failure on abandoned MySQL connection: %s", exc)


class PymysqlDriver:
    """Driver for MySQL/MariaDB servers via PyMySQL."""

    default_port = 3306

    def __init__(self, *, connect_timeout: float = 10.0) -> None:
        self._connect_timeout = connect_timeout

    def open(self, profile: "Database") -> PymysqlConnection:
        try:
            conn = pymysql.connect(
                host=profile.host or "localhost",
                port=_port(profile.port, self.default_port),
                user=profile.username or None,
                password=profile.password or "",
                database=profile.name or None,
                connect_timeout=self._connect_timeout,
            )
        except Exception as exc:
            raise DatabaseConnectionError(f"Failed to connect to profile '{profile.name}': {exc}") from exc
        return PymysqlConnection(conn)


class AsyncpgConnection:
    """DriverConnection wrapper bridging an asyncpg connection onto the driver loop."""

    def __init__(self, conn: Any, driver: "AsyncpgDriver") -> None:
        self._conn = conn
        self._driver = driver

    def is_valid(self, timeout: float) -> bool:
        if self._conn.is_closed():
            return False
        try:
            self._driver.run(
                asyncio.wait_for(self._conn.fetchval("SELECT 1"), timeout),
                timeout=timeout,
            )
        except Exception as exc:
            LOG.debug("PostgreSQL liveness check failed: %s", exc)
            return False
        return True

    def is_closed(self) -> bool:
        return bool(self._conn.is_closed())

    def close(self) -> None:
        if not self._conn.is_closed():
            self._driver.run(self._conn.close())

    def query(self, sql: str) -> list[Row]:
        records = self._driver.run(self._conn.fetch(sql))
        return [dict(record.items()) for record in records]

    def update(self, sql: str) -> int:
        status = self._driver.run(self._conn.execute(sql))
        return _affected_rows(status)


class AsyncpgDriver:
    """Driver for PostgreSQL servers via asyncpg, run on a private event loop."""

    default_port = 5432

    def __init__(self, *, connect_timeout: float = 10.0) -> None:
        self._connect_timeout = connect_timeout
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name="sqlcom-asyncpg-driver",
            daemon=True,
        )
        self._loop_thread.start()

    def open(self, profile: "Database") -> AsyncpgConnection:
        conn = self.run(self._connect(profile))
        return AsyncpgConnection(conn, self)

    def run(self, coro: Coroutine[Any, Any, Any], *, timeout: float | None = None) -> Any:
        """Run a coroutine on the driver loop and wait for its result."""

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout)
        except FutureTimeoutError:
            future.cancel()
            raise

    def shutdown(self) -> None:
        """Stop the background event loop (testing helper)."""

        if not self._loop.is_running():  # pragma: no cover - defensive
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=1)

    async def _connect(self, profile: "Database") -> Any:
        try:
            kwargs: dict[str, object] = {
                "host": profile.host or "localhost",
                "port": _port(profile.port, self.default_port),
                "timeout": self._connect_timeout,
            }
            if profile.username:
                kwargs["user"] = profile.username
            if profile.password:
                kwargs["password"] = profile.password
            if profile.name:
                kwargs["database"] = profile.name
            return await asyncpg.connect(**kwargs)
        except Exception as exc:
            raise DatabaseConnectionError(f"Failed to connect to profile '{profile.name}': {exc}") from exc


def _affected_rows(status: str | None) -> int:
    """Parse the row count out of a PostgreSQL command tag like ``UPDATE 3``."""

    if not status:
        return 0
    tail = status.rsplit(None, 1)[-1]
    return int(tail) if tail.isdigit() else 0


DRIVER_FACTORIES: dict[ConnectionType, Callable[..., Driver]] = {
    ConnectionType.MYSQL: PymysqlDriver,
    ConnectionType.POSTGRESQL: AsyncpgDriver,
}

_shared_drivers: dict[ConnectionType, Driver] = {}
_shared_lock = threading.Lock()


def driver_for(connection_type: ConnectionType) -> Driver:
    """Return the process-wide default driver for a connection type."""

    with _shared_lock:
        driver = _shared_drivers.get(connection_type)
        if driver is None:
            driver = DRIVER_FACTORIES[connection_type]()
            _shared_drivers[connection_type] = driver
        return driver


__all__ = [
    "AsyncpgConnection",
    "AsyncpgDriver",
    "DRIVER_FACTORIES",
    "DatabaseConnectionError",
    "Driver",
    "DriverConnection",
    "ProfilesNotFoundError",
    "PymysqlConnection",
    "PymysqlDriver",
    "QueryError",
    "SqlcomError",
    "StatementError",
    "UpdateError",
    "driver_for",
]
