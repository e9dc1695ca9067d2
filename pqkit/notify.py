"""Notification messages, listener events and the errors of LISTEN/NOTIFY."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from pqkit.quote import quote_identifier

UNLISTEN_ALL_QUERY = "UNLISTEN *"

_FIELD_NAMES = {
    "S": "severity",
    "V": "severity_nonlocalized",
    "C": "code",
    "M": "message",
    "D": "detail",
    "H": "hint",
    "P": "position",
    "p": "internal_position",
    "q": "internal_query",
    "W": "where",
    "s": "schema",
    "t": "table",
    "c": "column",
    "d": "data_type",
    "n": "constraint",
    "F": "file",
    "L": "line",
    "R": "routine",
}


@dataclass(frozen=True)
class Notification:
    """A notification sent by a server backend.

    ``be_pid`` is the process ID of the notifying backend and ``extra`` the
    payload, empty if none was given.
    """

    be_pid: int
    channel: str
    extra: str = ""


class ListenerEventType(IntEnum):
    """State changes of a listener's database connection."""

    CONNECTED = 0
    DISCONNECTED = 1
    RECONNECTED = 2
    CONNECTION_ATTEMPT_FAILED = 3


class ListenerError(Exception):
    """Base class of listener errors."""


class ListenerClosedError(ListenerError):
    """Raised when a closed listener or listener connection is used."""

    def __init__(self, message: str = "pq: Listener has been closed") -> None:
        super().__init__(message)


class ChannelAlreadyOpenError(ListenerError):
    """Raised by listen when the channel is already being listened on."""

    def __init__(self, message: str = "pq: channel is already open") -> None:
        super().__init__(message)


class ChannelNotOpenError(ListenerError):
    """Raised by unlisten when the channel is not being listened on."""

    def __init__(self, message: str = "pq: channel is not open") -> None:
        super().__init__(message)


class ServerError(Exception):
    """An ErrorResponse or NoticeResponse sent by the server.

    Every known field is available as an attribute, empty when absent; the
    raw fields are kept in ``fields`` keyed by their one-letter code.
    """

    severity: str
    severity_nonlocalized: str
    code: str
    message: str
    detail: str
    hint: str
    position: str
    internal_position: str
    internal_query: str
    where: str
    schema: str
    table: str
    column: str
    data_type: str
    constraint: str
    file: str
    line: str
    routine: str

    def __init__(self, fields: dict[str, str]) -> None:
        self.fields = dict(fields)
        for code, name in _FIELD_NAMES.items():
            setattr(self, name, self.fields.get(code, ""))
        super().__init__(f"pq: {self.message}")


def _read_cstring(data: bytes, offset: int) -> tuple[str, int]:
    end = data.find(b"\x00", offset)
    if end < 0:
        raise ValueError("unterminated string in server message")
    return data[offset:end].decode("utf-8", errors="replace"), end + 1


def parse_notification(payload: bytes) -> Notification:
    """Parse the body of a NotificationResponse message."""
    if len(payload) < 4:
        raise ValueError("notification message is too short")
    (be_pid,) = struct.unpack_from(">i", payload)
    channel, offset = _read_cstring(payload, 4)
    extra, _ = _read_cstring(payload, offset)
    return Notification(be_pid, channel, extra)


def parse_server_error(payload: bytes) -> ServerError:
    """Parse the body of an ErrorResponse or NoticeResponse message."""
    fields: dict[str, str] = {}
    offset = 0
    while offset < len(payload):
        code = payload[offset]
        if code == 0:
            break
        value, offset = _read_cstring(payload, offset + 1)
        fields[chr(code)] = value
    return ServerError(fields)


def simple_query_message(query: str) -> bytes:
    """Frame *query* as a simple Query ('Q') protocol message."""
    body = query.encode("utf-8") + b"\x00"
    return b"Q" + struct.pack(">i", len(body) + 4) + body


def listen_query(channel: str) -> str:
    """Return the LISTEN statement for *channel*."""
    return "LISTEN " + quote_identifier(channel)


def unlisten_query(channel: str) -> str:
    """Return the UNLISTEN statement for *channel*."""
    return "UNLISTEN " + quote_identifier(channel)