# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client proxy and connection."""

from __future__ import annotations

import logging
from collections.abc import Callable
from types import TracebackType
from typing import IO, TYPE_CHECKING, Any, cast

from serde_dispatch._debug import wire_request_logger, wire_transport_logger
from serde_dispatch.errors import EncodingError
from serde_dispatch.schema import InterfaceSpecification, MethodSignature, as_specification
from serde_dispatch.wire import read_reply, write_request

if TYPE_CHECKING:
    from serde_dispatch.transport import RpcTransport

__all__ = ["Proxy", "ProxyConnection", "close_proxy", "connect"]


class Proxy:
    """Client-side stand-in for a remote implementation of an interface.

    Attribute access returns a caller for each interface method.  A proxy
    carries exactly one call: the first call consumes it, and any later
    call raises ``RuntimeError``.  Open a new connection for each call.

    Every public attribute name is left to the interface, so a method may
    be called ``close`` or ``specification``.  Close a proxy by leaving its
    ``with`` block or with :func:`close_proxy`.

    Not thread-safe.
    """

    def __init__(
        self,
        interface: type | InterfaceSpecification,
        reader: IO[bytes],
        writer: IO[bytes],
        *,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        """Wrap *reader* and *writer* as the connection to one dispatcher.

        Args:
            interface: The interface class, or its already-built specification.
            reader: Stream the reply is read from.
            writer: Stream the request is written to.
            on_close: Called once after both streams are closed, typically to
                release the underlying socket.

        Raises:
            InterfaceError: If *interface* is not a valid RPC interface.

        """
        self._spec = as_specification(interface)
        self._reader = reader
        self._writer = writer
        self._on_close = on_close
        self._consumed = False
        self._closed = False

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        info = self._spec.by_name(name)
        if info is None:
            raise AttributeError(f"{self._spec.name} has no RPC method '{name}'")
        caller = self._make_caller(info)
        self.__dict__[name] = caller
        return caller

    def _make_caller(self, info: MethodSignature) -> Callable[..., object]:
        def caller(*args: object, **kwargs: object) -> object:
            bound = info.call_signature.bind(*args, **kwargs)
            bound.apply_defaults()
            self._consume(info)
            if wire_request_logger.isEnabledFor(logging.DEBUG):
                wire_request_logger.debug("Proxy call: method=%s, ordinal=%d", info.name, info.ordinal)
            write_request(self._writer, info, dict(bound.arguments))
            flush = getattr(self._writer, "flush", None)
            if flush is not None:
                try:
                    flush()
                except OSError as exc:
                    raise EncodingError(f"Failed to flush request for '{info.name}': {exc}") from exc
            return read_reply(self._reader, info)

        caller.__name__ = info.name
        caller.__qualname__ = f"{self._spec.name}.{info.name}"
        caller.__doc__ = info.doc
        caller.__signature__ = info.call_signature  # type: ignore[attr-defined]
        return caller

    def _consume(self, info: MethodSignature) -> None:
        if self._closed:
            raise RuntimeError(f"Proxy for {self._spec.name} is closed")
        if self._consumed:
            raise RuntimeError(
                f"Proxy for {self._spec.name} already made its call; "
                f"open a new connection to call '{info.name}'"
            )
        self._consumed = True

    def _close(self) -> None:
        """Close both streams, then run the ``on_close`` callback.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("Proxy close: interface=%s", self._spec.name)
        self._writer.close()
        if self._reader is not self._writer:
            self._reader.close()
        if self._on_close is not None:
            self._on_close()

    def __enter__(self) -> Proxy:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager."""
        self._close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "consumed" if self._consumed else "ready"
        return f"<Proxy {self._spec.name} ({state})>"


def close_proxy(proxy: object) -> None:
    """Close a proxy returned by :class:`Proxy`, :func:`connect` or a connection helper.

    Closes both streams and runs the ``on_close`` callback.  Idempotent.

    Raises:
        TypeError: If *proxy* is not a :class:`Proxy`.

    """
    if not isinstance(proxy, Proxy):
        raise TypeError(f"Expected a Proxy, got {type(proxy).__name__}")
    proxy._close()


def connect[P](protocol: type[P], reader: IO[bytes], writer: IO[bytes]) -> P:
    """Return a single-use proxy for *protocol*, typed as the protocol.

    Example::

        world = connect(World, reader, writer)
        world.ping(5)

    Raises:
        InterfaceError: If *protocol* is not a valid RPC interface.

    """
    return cast(P, Proxy(protocol, reader, writer))


# ---------------------------------------------------------------------------
# ProxyConnection: typed context manager
# ---------------------------------------------------------------------------


class ProxyConnection[P]:
    """Context manager that provides a typed proxy over a transport.

    The type parameter ``P`` is the interface class, so IDEs see its
    methods on the proxy::

        with ProxyConnection(World, transport) as world:
            reply = world.ping(5)

    The transport is closed on exit.
    """

    __slots__ = ("_protocol", "_transport")

    def __init__(self, protocol: type[P], transport: RpcTransport) -> None:
        """Initialize with an interface class and transport."""
        self._protocol = protocol
        self._transport = transport

    def __enter__(self) -> P:
        """Enter the context and return a typed proxy."""
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("ProxyConnection open: interface=%s", self._protocol.__name__)
        return cast(P, Proxy(self._protocol, self._transport.reader, self._transport.writer))

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the transport."""
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("ProxyConnection close: interface=%s", self._protocol.__name__)
        self._transport.close()
