"""Tests for the PyMySQL and asyncpg driver backends."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any

import pymysql
import pytest

from sqlcom.database import Database
from sqlcom.drivers import (
    AsyncpgDriver,
    DatabaseConnectionError,
    PymysqlDriver,
    QueryError,
    _affected_rows,
    driver_for,
)
from sqlcom.models import ConnectionType


class _FakeCursor:
    def __init__(self, conn: "_FakeMysqlConnection") -> None:
        self._conn = conn

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def execute(self, sql: str) -> int:
        self._conn.executed.append(sql)
        return self._conn.affected

    def fetchall(self) -> list[dict[str, Any]]:
        return self._conn.rows


class _FakeMysqlConnection:
    def __init__(self) -> None:
        self.open = True
        self.rows: list[dict[str, Any]] = []
        self.affected = 0
        self.executed: list[str] = []
        self.commits = 0
        self.release = threading.Event()
        self.hang = False

    def cursor(self, cursor_class: object = None) -> _FakeCursor:
        return _FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def ping(self, reconnect: bool = True) -> None:
        if self.hang:
            self.release.wait(5)

    def close(self) -> None:
        self.open = False


def _profile(**kwargs: Any) -> Database:
    return Database("shop", "db.internal", "3307", "app", "secret", **kwargs)


def test_pymysql_driver_passes_profile_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    fake = _FakeMysqlConnection()

    def _connect(**kwargs: Any) -> _FakeMysqlConnection:
        captured.update(kwargs)
        return fake

    monkeypatch.setattr("sqlcom.drivers.pymysql.connect", _connect)

    connection = PymysqlDriver(connect_timeout=2.0).open(_profile())

    assert captured["host"] == "db.internal"
    assert captured["port"] == 3307
    assert captured["user"] == "app"
    assert captured["password"] == "secret"
    assert captured["database"] == "shop"
    assert captured["connect_timeout"] == 2.0
    assert connection.is_valid(1.0) is True


def test_pymysql_driver_wraps_connect_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _connect(**kwargs: Any) -> None:
        raise RuntimeError("access denied")

    monkeypatch.setattr("sqlcom.drivers.pymysql.connect", _connect)

    with pytest.raises(DatabaseConnectionError, match="access denied"):
        PymysqlDriver().open(_profile())


def test_pymysql_driver_rejects_bad_port(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sqlcom.drivers.pymysql.connect", lambda **kwargs: _FakeMysqlConnection())
    profile = Database("shop", "db", "not-a-port", "app", "secret")

    with pytest.raises(DatabaseConnectionError):
        PymysqlDriver().open(profile)


def test_pymysql_connection_query_update_and_close(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeMysqlConnection()
    fake.rows = [{"id": 1, "name": "widget"}]
    fake.affected = 4
    monkeypatch.setattr("sqlcom.drivers.pymysql.connect", lambda **kwargs: fake)
    connection = PymysqlDriver().open(_profile())

    assert connection.query("SELECT id, name FROM items") == [{"id": 1, "name": "widget"}]
    assert connection.update("DELETE FROM items") == 4
    assert fake.commits == 1
    connection.close()
    assert connection.is_closed() is True
    assert connection.is_valid(1.0) is False


def test_pymysql_status_check_is_bounded(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeMysqlConnection()
    fake.hang = True
    monkeypatch.setattr("sqlcom.drivers.pymysql.connect", lambda **kwargs: fake)
    profile = _profile(driver=PymysqlDriver(), status_timeout=0.1)
    profile.connect()

    started = time.perf_counter()
    try:
        assert profile.status() is False
        assert time.perf_counter() - started < 2
    finally:
        fake.release.set()
        profile.disconnect()


def test_pymysql_connection_is_abandoned_after_timed_out_status(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeMysqlConnection()
    monkeypatch.setattr("sqlcom.drivers.pymysql.connect", lambda **kwargs: fake)
    connection = PymysqlDriver().open(_profile())
    fake.hang = True

    assert connection.is_valid(0.1) is False
    fake.hang = False
    fake.release.set()
    deadline = time.monotonic() + 2
    while fake.open and time.monotonic() < deadline:
        time.sleep(0.01)

    assert fake.open is False
    assert connection.is_valid(1.0) is False
    assert connection.is_closed() is True
    with pytest.raises(pymysql.err.InterfaceError):
        connection.query("SELECT 1")
    with pytest.raises(pymysql.err.InterfaceError):
        connection.update("DELETE FROM items")
    assert fake.executed == []
    connection.close()


def test_abandoned_pymysql_connection_surfaces_query_error(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeMysqlConnection()
    monkeypatch.setattr("sqlcom.drivers.pymysql.connect", lambda **kwargs: fake)
    profile = _profile(driver=PymysqlDriver(), status_timeout=0.1)
    assert profile.connect() is True
    fake.hang = True

    try:
        assert profile.status() is False
        with pytest.raises(QueryError):
            profile.execute_query("SELECT 1")
        assert fake.executed == []
    finally:
        fake.release.set()
        profile.disconnect()


class _FakeRecord(dict):
    pass


class _FakePgConnection:
    def __init__(self) -> None:
        self.closed = False
        self.hang = False
        self.rows = [_FakeRecord(id=1, email="a@example.com")]
        self.status = "UPDATE 3"

    async def fetch(self, sql: str) -> list[_FakeRecord]:
        return self.rows

    async def execute(self, sql: str) -> str:
        return self.status

    async def fetchval(self, sql: str) -> int:
        if self.hang:
            await asyncio.sleep(10)
        return 1

    async def close(self) -> None:
        self.closed = True

    def is_closed(self) -> bool:
        return self.closed


def test_asyncpg_driver_round_trips_through_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakePgConnection()
    captured: dict[str, Any] = {}

    async def _connect(**kwargs: Any) -> _FakePgConnection:
        captured.update(kwargs)
        return fake

    monkeypatch.setattr("sqlcom.drivers.asyncpg.connect", _connect)
    driver = AsyncpgDriver(connect_timeout=3.0)
    profile = _profile(connection_type=ConnectionType.POSTGRESQL, driver=driver)

    try:
        assert profile.connect() is True
        assert captured == {
            "host": "db.internal",
            "port": 3307,
            "timeout": 3.0,
            "user": "app",
            "password": "secret",
            "database": "shop",
        }
        assert profile.execute_query("SELECT id, email FROM users") == [{"id": 1, "email": "a@example.com"}]
        assert profile.execute_update("UPDATE users SET active = true") == 3
        assert profile.disconnect() is True
        assert fake.closed is True
    finally:
        driver.shutdown()


def test_asyncpg_status_check_is_bounded(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakePgConnection()
    fake.hang = True

    async def _connect(**kwargs: Any) -> _FakePgConnection:
        return fake

    monkeypatch.setattr("sqlcom.drivers.asyncpg.connect", _connect)
    driver = AsyncpgDriver()
    connection = driver.open(_profile())

    try:
        started = time.perf_counter()
        assert connection.is_valid(0.1) is False
        assert time.perf_counter() - started < 2
    finally:
        driver.shutdown()


def test_asyncpg_driver_wraps_connect_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _broken_connect(**kwargs: Any) -> None:
        raise OSError("connection refused")

    monkeypatch.setattr("sqlcom.drivers.asyncpg.connect", _broken_connect)
    driver = AsyncpgDriver()

    try:
        with pytest.raises(DatabaseConnectionError, match="connection refused"):
            driver.open(_profile())
    finally:
        driver.shutdown()


@pytest.mark.parametrize(
    ("status", "expected"),
    [("UPDATE 3", 3), ("INSERT 0 1", 1), ("CREATE TABLE", 0), ("", 0), (None, 0)],
)
def test_affected_rows_parses_command_tags(status: str | None, expected: int) -> None:
    assert _affected_rows(status) == expected


def test_driver_for_returns_shared_instance() -> None:
    assert driver_for(ConnectionType.MYSQL) is driver_for(ConnectionType.MYSQL)
    assert isinstance(driver_for(ConnectionType.MYSQL), PymysqlDriver)
