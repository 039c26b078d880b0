"""Shared test fixtures for serde-dispatch tests."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Protocol

import pytest

from serde_dispatch import Dispatcher, Proxy, RpcError, make_unix_pair, serve_pipe, serve_unix, unix_connect

ConnFactory = Callable[[type, object], contextlib.AbstractContextManager[Any]]
"""Type alias for the ``make_conn`` fixture return type."""


@dataclass(frozen=True)
class Positive:
    """A value that rejects itself unless positive."""

    n: int

    def __post_init__(self) -> None:
        if self.n <= 0:
            raise ValueError("n must be positive")


@dataclass(frozen=True)
class Unchecked:
    """Same layout as Positive, without the check; used to send values Positive refuses."""

    n: int


class Gate(Protocol):
    """Takes and returns a validated value."""

    def admit(self, value: Positive) -> Positive: ...


class GateImpl:
    """Implementation of Gate."""

    def admit(self, value: Positive) -> Positive:
        return value


def _short_unix_path(tag: str) -> str:
    """Return a socket path short enough for ``AF_UNIX`` (108 bytes on Linux)."""
    return os.path.join(tempfile.mkdtemp(prefix=f"sd-{tag}-"), "sock")


def _wait_for_unix(path: str, timeout: float = 5.0) -> None:
    """Poll until a socket file appears at *path*."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if os.path.exists(path):
            return
        time.sleep(0.01)
    raise TimeoutError(f"Unix socket {path} did not appear within {timeout}s")


@pytest.fixture
def socket_path() -> Iterator[str]:
    """A fresh, short Unix socket path; its directory is removed afterwards."""
    path = _short_unix_path("t")
    yield path
    shutil.rmtree(os.path.dirname(path), ignore_errors=True)


@contextlib.contextmanager
def running_unix_server(
    dispatcher: Dispatcher,
    path: str,
    **kwargs: Any,
) -> Iterator[threading.Event]:
    """Run :func:`serve_unix` on a background thread until the block exits.

    Yields the stop event; the server thread is joined on exit.
    """
    stop = threading.Event()
    ready = threading.Event()
    thread = threading.Thread(
        target=serve_unix,
        args=(dispatcher, path),
        kwargs={"stop_event": stop, "ready_event": ready, **kwargs},
        daemon=True,
    )
    thread.start()
    assert ready.wait(5), "server did not start listening"
    try:
        yield stop
    finally:
        stop.set()
        thread.join(timeout=5)
        assert not thread.is_alive(), "server thread did not stop"


@pytest.fixture(autouse=True)
def _drop_cli_log_handlers() -> Iterator[None]:
    """Remove handlers the CLI attaches so they never outlive a CliRunner stream."""
    yield
    root = logging.getLogger("serde_dispatch")
    for handler in [h for h in root.handlers if getattr(h, "_serde_dispatch_cli", False)]:
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


@pytest.fixture(params=["pipe", "unix_pair", "unix_socket"])
def make_conn(request: pytest.FixtureRequest, socket_path: str) -> ConnFactory:
    """Return a factory that opens a single-use proxy to a served implementation.

    Parametrized over in-process pipes, a Unix ``socketpair()`` and a real
    Unix socket server so tests automatically run against all three.
    """

    def factory(protocol: type, implementation: object) -> contextlib.AbstractContextManager[Any]:
        if request.param == "pipe":
            return serve_pipe(protocol, implementation)
        if request.param == "unix_pair":

            @contextlib.contextmanager
            def _pair_conn() -> Iterator[Any]:
                client, server = make_unix_pair()
                dispatcher = Dispatcher(protocol, implementation)

                def _serve() -> None:
                    try:
                        dispatcher.serve(server)
                    except RpcError:
                        pass
                    finally:
                        server.shutdown()

                thread = threading.Thread(target=_serve, daemon=True)
                thread.start()
                try:
                    with Proxy(protocol, client.reader, client.writer, on_close=client.close) as proxy:
                        yield proxy
                finally:
                    client.close()
                    thread.join(timeout=5)
                    server.close()

            return _pair_conn()

        @contextlib.contextmanager
        def _socket_conn() -> Iterator[Any]:
            with running_unix_server(Dispatcher(protocol, implementation), socket_path), unix_connect(
                protocol, socket_path
            ) as proxy:
                yield proxy

        return _socket_conn()

    return factory
