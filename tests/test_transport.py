# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for pipe and Unix socket transports and the Unix accept loop."""

from __future__ import annotations

import os
import socket
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from serde_dispatch import (
    Dispatcher,
    Proxy,
    ProxyConnection,
    RpcTransport,
    make_pipe_pair,
    make_unix_pair,
    serve_unix,
    transport,
    unix_connect,
)
from serde_dispatch.codec import Ordinal, UInt, decode_bytes, encode_bytes
from serde_dispatch.demo import ConcreteWorld, World
from tests.conftest import Gate, GateImpl, Positive, Unchecked, running_unix_server

_GARBAGE = b"\xff\xff\xff\xff\x10\x00\x00\x00" + b"not a flatbuffer"


def _ping(path: str, num: int) -> str:
    with unix_connect(World, path) as world:
        return world.ping(num)


def _raw_exchange(path: str, payload: bytes) -> bytes:
    """Send *payload* on a fresh connection, half-close, and read until EOF."""
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.settimeout(5)
        sock.connect(path)
        sock.sendall(payload)
        sock.shutdown(socket.SHUT_WR)
        chunks = []
        while chunk := sock.recv(4096):
            chunks.append(chunk)
    return b"".join(chunks)


# ---------------------------------------------------------------------------
# Tests: in-process transports
# ---------------------------------------------------------------------------


class TestPairs:
    """make_pipe_pair and make_unix_pair."""

    def test_transports_satisfy_protocol(self) -> None:
        """Both pair kinds implement RpcTransport."""
        for client, server in (make_pipe_pair(), make_unix_pair()):
            assert isinstance(client, RpcTransport)
            assert isinstance(server, RpcTransport)
            client.close()
            server.close()

    @pytest.mark.parametrize("make_pair", [make_pipe_pair, make_unix_pair])
    def test_serve_counts_requests(self, make_pair: object) -> None:
        """Dispatcher.serve answers each request in turn until the client closes."""
        client, server = make_pair()  # type: ignore[operator]
        dispatcher = Dispatcher(World, ConcreteWorld())
        served: list[int] = []
        thread = threading.Thread(target=lambda: served.append(dispatcher.serve(server)), daemon=True)
        thread.start()
        try:
            assert Proxy(World, client.reader, client.writer).ping(1) == "pong "
            assert Proxy(World, client.reader, client.writer).ping(2) == "pong pong "
        finally:
            client.close()
            thread.join(timeout=5)
            server.close()
        assert served == [2]

    def test_proxy_connection_closes_transport(self) -> None:
        """ProxyConnection closes its transport on exit."""
        client, server = make_unix_pair()
        thread = threading.Thread(target=Dispatcher(World, ConcreteWorld()).serve, args=(server,), daemon=True)
        thread.start()
        with ProxyConnection(World, client) as world:
            assert world.ping(3) == "pong pong pong "
        assert client.reader.closed
        thread.join(timeout=5)
        assert not thread.is_alive()
        server.close()

    def test_unix_close_is_idempotent(self) -> None:
        """Closing a Unix transport twice is harmless."""
        client, server = make_unix_pair()
        client.close()
        client.close()
        server.close()


# ---------------------------------------------------------------------------
# Tests: serve_unix
# ---------------------------------------------------------------------------


class TestServeUnix:
    """The Unix accept loop: one request per connection."""

    def test_sequential(self, socket_path: str) -> None:
        """Several connections are served one after another."""
        with running_unix_server(Dispatcher(World, ConcreteWorld()), socket_path):
            assert [_ping(socket_path, n) for n in range(4)] == ["", "pong ", "pong pong ", "pong pong pong "]
        assert not os.path.exists(socket_path)

    def test_threaded(self, socket_path: str) -> None:
        """Concurrent clients are each answered correctly."""
        with (
            running_unix_server(Dispatcher(World, ConcreteWorld()), socket_path, threaded=True),
            ThreadPoolExecutor(max_workers=8) as pool,
        ):
            results = list(pool.map(lambda n: _ping(socket_path, n), range(16)))
        assert results == ["pong " * n for n in range(16)]

    def test_max_requests(self, socket_path: str) -> None:
        """The loop returns after accepting max_requests connections."""
        ready = threading.Event()
        result: list[int] = []
        thread = threading.Thread(
            target=lambda: result.append(
                serve_unix(Dispatcher(World, ConcreteWorld()), socket_path, max_requests=2, ready_event=ready)
            ),
            daemon=True,
        )
        thread.start()
        assert ready.wait(5)
        assert _ping(socket_path, 1) == "pong "
        assert _ping(socket_path, 1) == "pong "
        thread.join(timeout=5)
        assert result == [2]
        assert not os.path.exists(socket_path)

    def test_stop_event(self, socket_path: str) -> None:
        """Setting the stop event ends an idle loop."""
        with running_unix_server(Dispatcher(World, ConcreteWorld()), socket_path) as stop:
            assert os.path.exists(socket_path)
            stop.set()
        assert not os.path.exists(socket_path)

    def test_existing_file_refused(self, socket_path: str) -> None:
        """A regular file at the path is never replaced."""
        with open(socket_path, "w") as f:
            f.write("keep me")
        dispatcher = Dispatcher(World, ConcreteWorld())
        with pytest.raises(FileExistsError):
            serve_unix(dispatcher, socket_path, max_requests=0)
        with pytest.raises(FileExistsError, match="not a socket"):
            serve_unix(dispatcher, socket_path, replace_stale=True, max_requests=0)
        with open(socket_path) as f:
            assert f.read() == "keep me"

    def test_stale_socket(self, socket_path: str) -> None:
        """A leftover socket file is refused by default and replaced on request."""
        stale = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        stale.bind(socket_path)
        stale.close()
        assert os.path.exists(socket_path)
        dispatcher = Dispatcher(World, ConcreteWorld())
        with pytest.raises(FileExistsError):
            serve_unix(dispatcher, socket_path, max_requests=0)
        with running_unix_server(dispatcher, socket_path, replace_stale=True):
            assert _ping(socket_path, 2) == "pong pong "

    def test_bad_request_drops_only_that_connection(self, socket_path: str) -> None:
        """Garbage and unknown ordinals close their connection; the server keeps going."""
        with running_unix_server(Dispatcher(World, ConcreteWorld()), socket_path):
            assert _raw_exchange(socket_path, _GARBAGE) == b""
            assert _raw_exchange(socket_path, encode_bytes(7, Ordinal)) == b""
            assert _raw_exchange(socket_path, b"") == b""
            assert _ping(socket_path, 1) == "pong "

    def test_unbuildable_argument_drops_only_that_connection(self, socket_path: str) -> None:
        """An argument its constructor rejects closes the connection; the loop keeps serving."""
        request = encode_bytes(0, Ordinal) + encode_bytes(Unchecked(-1), Unchecked)
        with running_unix_server(Dispatcher(Gate, GateImpl()), socket_path):
            assert _raw_exchange(socket_path, request) == b""
            assert _raw_exchange(socket_path, request) == b""
            with unix_connect(Gate, socket_path) as gate:
                assert gate.admit(Positive(2)) == Positive(2)

    def test_threaded_forgets_finished_workers(self, socket_path: str, monkeypatch: pytest.MonkeyPatch) -> None:
        """Each accept sees only the workers still running, not every past connection."""
        seen: list[int] = []
        live_workers = transport._live_workers

        def settle_then_prune(workers: list[threading.Thread]) -> list[threading.Thread]:
            seen.append(len(workers))
            for worker in workers:
                worker.join(5)
            return live_workers(workers)

        monkeypatch.setattr(transport, "_live_workers", settle_then_prune)
        with running_unix_server(Dispatcher(World, ConcreteWorld()), socket_path, threaded=True):
            for n in range(5):
                assert _ping(socket_path, n) == "pong " * n
        assert seen == [0, 1, 1, 1, 1]

    def test_live_workers(self) -> None:
        """Finished threads are dropped and running ones kept."""
        release = threading.Event()
        done = threading.Thread(target=lambda: None)
        running = threading.Thread(target=release.wait, args=(5,))
        done.start()
        done.join()
        running.start()
        try:
            assert transport._live_workers([done, running]) == [running]
        finally:
            release.set()
            running.join()
        assert transport._live_workers([done, running]) == []

    def test_raw_request(self, socket_path: str) -> None:
        """A hand-built request gets exactly the encoded reply back."""
        with running_unix_server(Dispatcher(World, ConcreteWorld()), socket_path):
            reply = _raw_exchange(socket_path, encode_bytes(0, Ordinal) + encode_bytes(3, UInt))
        assert decode_bytes(reply, str) == "pong pong pong "

    def test_connect_missing_socket(self, socket_path: str) -> None:
        """Connecting to a path nobody listens on raises OSError."""
        with pytest.raises(OSError), unix_connect(World, socket_path):
            pass
