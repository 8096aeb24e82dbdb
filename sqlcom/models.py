"""Shared types used across the profile/registry modules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, NamedTuple

Row = dict[str, Any]

_TYPE_PREFIX = "Database"


def format_type_name(identifier: str) -> str:
    """Turn a connection-type identifier into a display label.

    ``"DatabaseMYSQL"`` becomes ``"Mysql"``; a single character is simply
    upper-cased and an empty remainder stays empty.
    """

    name = identifier.replace(_TYPE_PREFIX, "")
    return name[:1].upper() + name[1:].lower()


class ConnectionType(str, Enum):
    """Database backends a profile can connect through."""

    MYSQL = "DatabaseMYSQL"
    POSTGRESQL = "DatabasePOSTGRESQL"

    @property
    def label(self) -> str:
        return TYPE_LABELS[self]

    @classmethod
    def from_label(cls, label: str) -> ConnectionType:
        """Resolve a display label (or raw identifier) back to its type."""

        for member, text in TYPE_LABELS.items():
            if label in (text, member.value):
                return member
        raise ValueError(f"Unknown connection type '{label}'.")


TYPE_LABELS: Mapping[ConnectionType, str] = {
    ConnectionType.MYSQL: format_type_name(ConnectionType.MYSQL.value),
    ConnectionType.POSTGRESQL: format_type_name(ConnectionType.POSTGRESQL.value),
}


class ProfileRow(NamedTuple):
    """Flat representation of a profile for tabular display."""

    type: str
    host: str
    name: str
    username: str
    password: str
    uid: str


@dataclass(frozen=True, slots=True)
class ReconnectResult:
    """Outcome of applying field changes to a live connection."""

    connected: bool
    error: str | None = None

    def __bool__(self) -> bool:
        return self.connected


__all__ = [
    "ConnectionType",
    "ProfileRow",
    "ReconnectResult",
    "Row",
    "TYPE_LABELS",
    "format_type_name",
]
