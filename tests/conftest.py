"""Shared fakes for the profile/registry tests."""

from __future__ import annotations

import pytest

from sqlcom.database import Database
from sqlcom.drivers import DatabaseConnectionError


class FakeConnection:
    def __init__(self, rows=None, affected: int = 0, valid: bool = True) -> None:  # type: ignore[no-untyped-def]
        self.rows = rows if rows is not None else []
        self.affected = affected
        self.valid = valid
        self.closed = False
        self.fail_with: Exception | None = None
        self.statements: list[str] = []
        self.check_timeouts: list[float] = []

    def is_valid(self, timeout: float) -> bool:
        self.check_timeouts.append(timeout)
        return self.valid and not self.closed

    def is_closed(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    def query(self, sql: str):  # type: ignore[no-untyped-def]
        self.statements.append(sql)
        if self.fail_with is not None:
            raise self.fail_with
        return self.rows

    def update(self, sql: str) -> int:
        self.statements.append(sql)
        if self.fail_with is not None:
            raise self.fail_with
        return self.affected


class FakeDriver:
    """Driver that hands out FakeConnections and records the fields it saw."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.opened: list[FakeConnection] = []
        self.seen: list[tuple[str, str, object, str, str]] = []

    def open(self, profile: Database) -> FakeConnection:
        self.seen.append((profile.name, profile.host, profile.port, profile.username, profile.password))
        if self.fail:
            raise DatabaseConnectionError(f"Failed to connect to profile '{profile.name}': refused")
        connection = FakeConnection()
        self.opened.append(connection)
        return connection


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def make_profile(driver: FakeDriver):  # type: ignore[no-untyped-def]
    def _make(name: str = "shop", **kwargs: object) -> Database:
        kwargs.setdefault("driver", driver)
        return Database(name, "localhost", "3306", "root", "secret", **kwargs)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def failing_driver() -> FakeDriver:
    return FakeDriver(fail=True)
