# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Transport protocol and implementations.

A connection carries exactly one request and one reply.  The helpers here
set up such connections over in-process pipes or Unix domain sockets and
run the accept loop that binds each incoming connection to a fresh
dispatch.
"""

from __future__ import annotations

import contextlib
import errno
import logging
import os
import socket
import stat
import threading
from collections.abc import Iterator
from io import IOBase
from typing import Protocol, cast, runtime_checkable

from serde_dispatch._debug import wire_transport_logger
from serde_dispatch.client import Proxy, ProxyConnection
from serde_dispatch.errors import RpcError
from serde_dispatch.server import Dispatcher

__all__ = [
    "PipeTransport",
    "RpcTransport",
    "UnixTransport",
    "make_pipe_pair",
    "make_unix_pair",
    "serve_pipe",
    "serve_unix",
    "unix_connect",
]

_logger = logging.getLogger("serde_dispatch.rpc")

_ACCEPT_POLL_INTERVAL = 0.1
"""Seconds between checks of ``stop_event`` while waiting for a connection."""


# ---------------------------------------------------------------------------
# RpcTransport protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class RpcTransport(Protocol):
    """Bidirectional byte stream transport."""

    @property
    def reader(self) -> IOBase:
        """Readable binary stream."""
        ...

    @property
    def writer(self) -> IOBase:
        """Writable binary stream."""
        ...

    def close(self) -> None:
        """Close the transport."""
        ...


# ---------------------------------------------------------------------------
# PipeTransport + make_pipe_pair
# ---------------------------------------------------------------------------


class PipeTransport:
    """Transport backed by file-like IO streams (e.g. from os.pipe())."""

    __slots__ = ("_reader", "_writer")

    def __init__(self, reader: IOBase, writer: IOBase) -> None:
        """Initialize with reader and writer streams."""
        self._reader = reader
        self._writer = writer

    @property
    def reader(self) -> IOBase:
        """Readable binary stream."""
        return self._reader

    @property
    def writer(self) -> IOBase:
        """Writable binary stream."""
        return self._writer

    def close(self) -> None:
        """Close both streams."""
        self._reader.close()
        self._writer.close()


def make_pipe_pair() -> tuple[PipeTransport, PipeTransport]:
    """Create connected client/server transports using os.pipe().

    Returns (client_transport, server_transport).
    """
    c2s_r, c2s_w = os.pipe()
    s2c_r, s2c_w = os.pipe()
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug(
            "make_pipe_pair: c2s=(%d,%d), s2c=(%d,%d)",
            c2s_r,
            c2s_w,
            s2c_r,
            s2c_w,
        )
    client = PipeTransport(
        os.fdopen(s2c_r, "rb"),
        os.fdopen(c2s_w, "wb", buffering=0),
    )
    server = PipeTransport(
        os.fdopen(c2s_r, "rb"),
        os.fdopen(s2c_w, "wb", buffering=0),
    )
    return client, server


# ---------------------------------------------------------------------------
# UnixTransport + make_unix_pair
# ---------------------------------------------------------------------------


class UnixTransport:
    """Transport over a connected Unix domain socket.

    The reader is buffered so that ``read(n)`` returns exactly *n* bytes;
    the writer is buffered too and must be flushed after each message.
    The transport owns the socket and closes it on :meth:`close`.
    """

    __slots__ = ("_closed", "_reader", "_sock", "_writer")

    def __init__(self, sock: socket.socket) -> None:
        """Wrap a connected socket."""
        self._sock = sock
        self._reader = cast(IOBase, sock.makefile("rb"))
        self._writer = cast(IOBase, sock.makefile("wb"))
        self._closed = False

    @property
    def reader(self) -> IOBase:
        """Readable binary stream."""
        return self._reader

    @property
    def writer(self) -> IOBase:
        """Writable binary stream (buffered; flush after each message)."""
        return self._writer

    @property
    def socket(self) -> socket.socket:
        """The underlying socket."""
        return self._sock

    def shutdown(self) -> None:
        """Flush pending output and shut the connection down in both directions."""
        with contextlib.suppress(OSError, ValueError):
            self._writer.flush()
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)

    def close(self) -> None:
        """Close both streams and the socket.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(OSError, ValueError):
            self._writer.close()
        self._reader.close()
        self._sock.close()


def make_unix_pair() -> tuple[UnixTransport, UnixTransport]:
    """Create connected client/server transports using socket.socketpair().

    Returns (client_transport, server_transport).
    """
    client_sock, server_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug(
            "make_unix_pair: client_fd=%d, server_fd=%d",
            client_sock.fileno(),
            server_sock.fileno(),
        )
    return UnixTransport(client_sock), UnixTransport(server_sock)


# ---------------------------------------------------------------------------
# Unix socket server
# ---------------------------------------------------------------------------


def _prepare_socket_path(path: str, replace_stale: bool) -> None:
    """Make sure nothing occupies *path*, removing a stale socket if allowed.

    Raises:
        FileExistsError: If *path* exists and *replace_stale* is false, or
            if it exists and is not a socket.

    """
    try:
        mode = os.lstat(path).st_mode
    except FileNotFoundError:
        return
    if not replace_stale:
        raise FileExistsError(
            errno.EEXIST, "Socket path already exists; remove it or pass replace_stale=True", path
        )
    if not stat.S_ISSOCK(mode):
        raise FileExistsError(errno.EEXIST, "Refusing to replace a path that is not a socket", path)
    _logger.info("Removing stale socket %s", path, extra={"socket_path": path})
    os.unlink(path)


def _serve_connection(dispatcher: Dispatcher, conn: socket.socket) -> bool:
    """Serve the single request of one accepted connection, then close it.

    Returns:
        ``True`` if the request was served, ``False`` if it failed.

    """
    transport = UnixTransport(conn)
    try:
        dispatcher.handle_request(transport.reader, transport.writer)
        transport.writer.flush()
        return True
    except RpcError as exc:
        _logger.warning(
            "Dropping connection after failed request: %s",
            exc,
            extra={"server_id": dispatcher.server_id, "error_type": type(exc).__name__},
        )
        return False
    except OSError as exc:
        _logger.warning(
            "Connection failed: %s",
            exc,
            extra={"server_id": dispatcher.server_id, "error_type": type(exc).__name__},
        )
        return False
    finally:
        transport.shutdown()
        transport.close()


def serve_unix(
    dispatcher: Dispatcher,
    path: str,
    *,
    replace_stale: bool = False,
    threaded: bool = False,
    stop_event: threading.Event | None = None,
    max_requests: int | None = None,
    ready_event: threading.Event | None = None,
) -> int:
    """Accept connections on a Unix socket, one request per connection.

    Connections are handled one after another, or each on its own thread
    when *threaded* is true.  A failed request is logged and only its
    connection is dropped.  The socket file is removed when the loop ends.

    Args:
        dispatcher: Serves every accepted connection.
        path: Filesystem path to bind.
        replace_stale: Remove an existing socket file at *path* first.
        threaded: Handle each connection on its own thread.
        stop_event: When set, the loop stops accepting and returns.
        max_requests: Stop after this many connections have been accepted.
        ready_event: Set once the socket is listening.

    Returns:
        The number of connections accepted.

    Raises:
        FileExistsError: If *path* exists and *replace_stale* is false.

    """
    _prepare_socket_path(path, replace_stale)
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    workers: list[threading.Thread] = []
    accepted = 0
    try:
        listener.bind(path)
        listener.listen()
        if stop_event is not None:
            listener.settimeout(_ACCEPT_POLL_INTERVAL)
        _logger.info(
            "Listening on %s for %s (server_id=%s)",
            path,
            dispatcher.specification.name,
            dispatcher.server_id,
            extra={"server_id": dispatcher.server_id, "socket_path": path},
        )
        if ready_event is not None:
            ready_event.set()

        while max_requests is None or accepted < max_requests:
            if stop_event is not None and stop_event.is_set():
                break
            try:
                conn, _ = listener.accept()
            except TimeoutError:
                continue
            conn.settimeout(None)
            accepted += 1
            if wire_transport_logger.isEnabledFor(logging.DEBUG):
                wire_transport_logger.debug("serve_unix: accepted connection %d, fd=%d", accepted, conn.fileno())
            if threaded:
                worker = threading.Thread(target=_serve_connection, args=(dispatcher, conn), daemon=True)
                worker.start()
                workers = _live_workers(workers)
                workers.append(worker)
            else:
                _serve_connection(dispatcher, conn)
    finally:
        listener.close()
        for worker in workers:
            worker.join()
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)
        _logger.info(
            "Stopped listening on %s after %d connection(s)",
            path,
            accepted,
            extra={"server_id": dispatcher.server_id, "socket_path": path},
        )
    return accepted


def _live_workers(workers: list[threading.Thread]) -> list[threading.Thread]:
    """Return the connection threads that are still running."""
    return [w for w in workers if w.is_alive()]


@contextlib.contextmanager
def unix_connect[P](protocol: type[P], path: str) -> Iterator[P]:
    """Connect to a Unix domain socket server and yield a single-use typed proxy.

    Args:
        protocol: The interface class.
        path: Filesystem path of the Unix domain socket.

    Yields:
        A proxy for *protocol*; it can make exactly one call.

    """
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(path)
    except BaseException:
        sock.close()
        raise
    transport = UnixTransport(sock)
    try:
        with ProxyConnection(protocol, transport) as proxy:
            yield proxy
    finally:
        transport.close()


# ---------------------------------------------------------------------------
# In-process harness
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def serve_pipe[P](protocol: type[P], implementation: object) -> Iterator[P]:
    """Start an in-process pipe server and yield a single-use typed proxy.

    Useful for tests and demos.  A background thread serves the one request
    the proxy can make.

    Args:
        protocol: The interface class.
        implementation: Object implementing every method of *protocol*.

    Yields:
        A proxy for *protocol*.

    """
    client_transport, server_transport = make_pipe_pair()
    dispatcher = Dispatcher(protocol, implementation)

    def _serve() -> None:
        try:
            dispatcher.serve(server_transport)
        except RpcError as exc:
            _logger.warning("In-process request failed: %s", exc, extra={"server_id": dispatcher.server_id})
        finally:
            with contextlib.suppress(OSError):
                server_transport.writer.close()

    thread = threading.Thread(target=_serve, daemon=True)
    thread.start()
    try:
        yield cast(P, Proxy(protocol, client_transport.reader, client_transport.writer))
    finally:
        with contextlib.suppress(OSError):
            client_transport.close()
        thread.join(timeout=5)
        with contextlib.suppress(OSError):
            server_transport.close()
