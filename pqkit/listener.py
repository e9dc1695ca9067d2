"""Connections dedicated to LISTEN/NOTIFY, with automatic reconnection."""

from __future__ import annotations

import queue
import socket
import struct
import threading
import time
from collections.abc import Callable, Iterator
from enum import Enum
from typing import Any

from pqkit.notify import (
    UNLISTEN_ALL_QUERY,
    ChannelAlreadyOpenError,
    ChannelNotOpenError,
    ListenerClosedError,
    ListenerError,
    ListenerEventType,
    Notification,
    ServerError,
    listen_query,
    parse_notification,
    parse_server_error,
    simple_query_message,
    unlisten_query,
)

_CONN_CLOSED_MESSAGE = "pq: ListenerConn has been closed"
_HEADER = struct.Struct(">ci")
_CLOSED = object()

# Errors that mean a query never completed on the server.
_CONNECTION_ERRORS = (OSError, EOFError, ListenerError)


class ConnState(Enum):
    """Where a listener connection is in the simple-query protocol."""

    IDLE = 0
    EXPECT_RESPONSE = 1
    EXPECT_READY_FOR_QUERY = 2


_PREDECESSOR = {
    ConnState.IDLE: ConnState.EXPECT_READY_FOR_QUERY,
    ConnState.EXPECT_RESPONSE: ConnState.IDLE,
    ConnState.EXPECT_READY_FOR_QUERY: ConnState.EXPECT_RESPONSE,
}


class ListenerConn:
    """A low-level connection that waits for notifications.

    *connection* is a connected, authenticated socket-like object with
    ``recv``, ``sendall`` and ``close``. Notifications are put on the
    *notifications* queue; ``None`` is put there once the connection is gone,
    after which :meth:`err` tells why.
    """

    def __init__(self, connection: Any, notifications: queue.Queue) -> None:
        self._connection = connection
        self._notifications = notifications
        self._connection_lock = threading.Lock()
        self._sender_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = ConnState.IDLE
        self._error: BaseException | None = None
        self._replies: queue.Queue = queue.Queue()
        self.notice_handler: Callable[[ServerError], Any] | None = None
        self._reader = threading.Thread(
            target=self._run, name="pqkit-listener-conn", daemon=True
        )
        self._reader.start()

    def __enter__(self) -> ListenerConn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        try:
            self.close()
        except ListenerClosedError:
            pass

    def _set_state(self, new_state: ConnState) -> bool:
        with self._state_lock:
            if self._state is not _PREDECESSOR[new_state]:
                return False
            self._state = new_state
            return True

    def _recv_exact(self, size: int) -> bytes:
        data = bytearray()
        while len(data) < size:
            chunk = self._connection.recv(size - len(data))
            if not chunk:
                raise EOFError("connection closed by server")
            data += chunk
        return bytes(data)

    def _read_message(self) -> tuple[str, bytes]:
        raw_type, length = _HEADER.unpack(self._recv_exact(_HEADER.size))
        if length < 4:
            raise ListenerError(f"invalid message length {length}")
        return raw_type.decode("latin-1"), self._recv_exact(length - 4)

    def _loop(self) -> None:
        while True:
            kind, body = self._read_message()
            if kind == "A":
                self._notifications.put(parse_notification(body))
            elif kind in ("T", "D", "S"):
                continue
            elif kind == "E":
                error = parse_server_error(body)
                if not self._set_state(ConnState.EXPECT_READY_FOR_QUERY):
                    raise ListenerError(f"unexpected error from server: {error}") from error
                self._replies.put(("E", error))
            elif kind in ("C", "I"):
                if not self._set_state(ConnState.EXPECT_READY_FOR_QUERY):
                    raise ListenerError("unexpected CommandComplete")
            elif kind == "Z":
                if not self._set_state(ConnState.IDLE):
                    raise ListenerError("unexpected ReadyForQuery")
                self._replies.put(("Z", None))
            elif kind == "N":
                handler = self.notice_handler
                if handler is not None:
                    handler(parse_server_error(body))
            else:
                raise ListenerError(f"unexpected message {kind!r} from server")

    def _run(self) -> None:
        try:
            self._loop()
        except Exception as exc:
            error: BaseException = exc
        # Whoever closed the connection first holds the more meaningful error.
        with self._connection_lock:
            if self._error is None:
                self._error = error
            self._close_connection()
        self._replies.put(_CLOSED)
        self._notifications.put(None)

    def _close_connection(self) -> None:
        shutdown = getattr(self._connection, "shutdown", None)
        if shutdown is not None:
            try:
                shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        try:
            self._connection.close()
        except OSError:
            pass

    def listen(self, channel: str) -> None:
        """Send a LISTEN for *channel*; see :meth:`exec_simple_query`."""
        self.exec_simple_query(listen_query(channel))

    def unlisten(self, channel: str) -> None:
        """Send an UNLISTEN for *channel*; see :meth:`exec_simple_query`."""
        self.exec_simple_query(unlisten_query(channel))

    def unlisten_all(self) -> None:
        """Send ``UNLISTEN *``; see :meth:`exec_simple_query`."""
        self.exec_simple_query(UNLISTEN_ALL_QUERY)

    def ping(self) -> None:
        """Check that the server answers; raises if the connection failed."""
        try:
            self.exec_simple_query("")
        except ServerError as exc:
            raise ListenerError(f"unexpected error from ping: {exc}") from exc

    def exec_simple_query(self, query: str) -> None:
        """Run *query* without parameters on the connection.

        Raises :class:`ServerError` if the query ran and the server rejected
        it. Any other exception means the query could not be run; the
        connection is then closed or about to close.
        """
        with self._sender_lock:
            with self._connection_lock:
                error = self._error
            if error is not None:
                raise error
            if not self._set_state(ConnState.EXPECT_RESPONSE):
                raise RuntimeError("two queries running at the same time")
            try:
                self._connection.sendall(simple_query_message(query))
            except OSError as exc:
                with self._connection_lock:
                    if self._error is None:
                        self._error = exc
                self._close_connection()
                raise

            server_error: ServerError | None = None
            while True:
                reply = self._replies.get()
                if reply is _CLOSED:
                    self._replies.put(_CLOSED)
                    with self._connection_lock:
                        lost = self._error
                    raise lost if lost is not None else ListenerError("connection lost")
                kind, reply_error = reply
                if kind == "Z":
                    if server_error is not None:
                        raise server_error
                    return
                server_error = reply_error

    def close(self) -> None:
        """Close the connection; raises ListenerClosedError if already closed."""
        with self._connection_lock:
            if self._error is not None:
                raise ListenerClosedError(_CONN_CLOSED_MESSAGE)
            self._error = ListenerClosedError(_CONN_CLOSED_MESSAGE)
        self._close_connection()

    def err(self) -> BaseException | None:
        """Return why the connection was closed, or None while it is open."""
        return self._error


def _close_quietly(cn: ListenerConn) -> None:
    try:
        cn.close()
    except ListenerClosedError:
        pass


class Listener:
    """Listens for notifications and keeps its connection alive.

    *dial* is called with no arguments to open a new connection for a
    :class:`ListenerConn`. After a lost connection the listener waits
    *min_reconnect_interval* seconds before reconnecting, doubling the wait
    after each failed attempt up to *max_reconnect_interval*.
    *event_callback*, if given, is called as ``event_callback(event, error)``
    on every connection state change.
    """

    def __init__(
        self,
        dial: Callable[[], Any],
        min_reconnect_interval: float,
        max_reconnect_interval: float,
        event_callback: Callable[[ListenerEventType, BaseException | None], Any] | None = None,
    ) -> None:
        self._dial = dial
        self._min_interval = min_reconnect_interval
        self._max_interval = max_reconnect_interval
        self._event_callback = event_callback
        self._notify: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._reconnected = threading.Condition(self._lock)
        self._closing = threading.Event()
        self._closed = False
        self._cn: ListenerConn | None = None
        self._channels: set[str] = set()
        self._thread = threading.Thread(target=self._run, name="pqkit-listener", daemon=True)
        self._thread.start()

    def __enter__(self) -> Listener:
        return self

    def __exit__(self, *exc_info: object) -> None:
        try:
            self.close()
        except ListenerClosedError:
            pass

    def notifications(self) -> Iterator[Notification | None]:
        """Yield notifications until the listener is closed.

        ``None`` is yielded after each reconnection, since notifications may
        have been lost while the connection was down.
        """
        while True:
            item = self._notify.get()
            if item is _CLOSED:
                self._notify.put(_CLOSED)
                return
            yield item

    def listen(self, channel: str) -> None:
        """Start listening on *channel*, waiting until a connection exists.

        Raises ChannelAlreadyOpenError, a ServerError from the server, or
        ListenerClosedError if the listener is closed meanwhile.
        """
        with self._lock:
            if self._closed:
                raise ListenerClosedError()
            if channel in self._channels:
                raise ChannelAlreadyOpenError()
            if self._cn is not None:
                try:
                    self._cn.listen(channel)
                except ServerError:
                    raise
                except _CONNECTION_ERRORS:
                    pass  # the reconnect will listen on it
            self._channels.add(channel)
            while self._cn is None:
                self._reconnected.wait()
                if self._closed:
                    raise ListenerClosedError()

    def unlisten(self, channel: str) -> None:
        """Stop listening on *channel*; raises ChannelNotOpenError if not open."""
        with self._lock:
            if self._closed:
                raise ListenerClosedError()
            if channel not in self._channels:
                raise ChannelNotOpenError()
            if self._cn is not None:
                try:
                    self._cn.unlisten(channel)
                except ServerError:
                    raise
                except _CONNECTION_ERRORS:
                    pass
            self._channels.discard(channel)

    def unlisten_all(self) -> None:
        """Stop listening on every channel."""
        with self._lock:
            if self._closed:
                raise ListenerClosedError()
            if self._cn is not None:
                try:
                    self._cn.unlisten_all()
                except ServerError:
                    raise
                except _CONNECTION_ERRORS:
                    pass
            self._channels = set()

    def ping(self) -> None:
        """Check the server answers; raises if there is no working connection."""
        with self._lock:
            if self._closed:
                raise ListenerClosedError()
            if self._cn is None:
                raise ListenerError("no connection")
            self._cn.ping()

    def close(self) -> None:
        """Disconnect and shut down; raises ListenerClosedError if already closed."""
        with self._lock:
            if self._closed:
                raise ListenerClosedError()
            if self._cn is not None:
                _close_quietly(self._cn)
            self._closed = True
            self._closing.set()
            self._reconnected.notify_all()

    def _is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def _emit(self, event: ListenerEventType, error: BaseException | None) -> None:
        if self._event_callback is not None:
            self._event_callback(event, error)

    def _resync(self, cn: ListenerConn, notifications: queue.Queue) -> None:
        for channel in list(self._channels):
            try:
                cn.listen(channel)
            except ServerError:
                raise
            except _CONNECTION_ERRORS as exc:
                while notifications.get() is not None:
                    pass
                lost = cn.err()
                raise (lost if lost is not None else exc)
        # What arrived during the sync is dropped: a None follows anyway.
        while True:
            try:
                item = notifications.get_nowait()
            except queue.Empty:
                return
            if item is None:
                notifications.put(None)
                return

    def _connect(self) -> queue.Queue:
        notifications: queue.Queue = queue.Queue()
        cn = ListenerConn(self._dial(), notifications)
        with self._lock:
            try:
                if self._closed:
                    raise ListenerClosedError()
                self._resync(cn, notifications)
            except BaseException:
                _close_quietly(cn)
                raise
            self._cn = cn
            self._reconnected.notify_all()
        return notifications

    def _disconnect_cleanup(self) -> BaseException | None:
        with self._lock:
            cn = self._cn
            if cn is None:
                return None
            error = cn.err()
            _close_quietly(cn)
            self._cn = None
            return error

    def _run(self) -> None:
        try:
            self._maintain_connection()
        finally:
            self._notify.put(_CLOSED)

    def _maintain_connection(self) -> None:
        first = True
        interval = self._min_interval
        while True:
            while True:
                try:
                    notifications = self._connect()
                    break
                except Exception as exc:
                    if self._is_closed():
                        return
                    self._emit(ListenerEventType.CONNECTION_ATTEMPT_FAILED, exc)
                    self._closing.wait(interval)
                    interval = min(interval * 2, self._max_interval)

            if first:
                self._emit(ListenerEventType.CONNECTED, None)
                first = False
            else:
                self._emit(ListenerEventType.RECONNECTED, None)
                self._notify.put(None)

            interval = self._min_interval
            next_reconnect = time.monotonic() + interval

            while (notification := notifications.get()) is not None:
                self._notify.put(notification)

            error = self._disconnect_cleanup()
            if self._is_closed():
                return
            self._emit(ListenerEventType.DISCONNECTED, error)
            self._closing.wait(max(0.0, next_reconnect - time.monotonic()))