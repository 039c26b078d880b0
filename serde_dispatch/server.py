# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Server-side dispatch: route one request to the bound implementation."""

from __future__ import annotations

import io
import logging
import time
import uuid
from typing import IO, TYPE_CHECKING, Any, Literal

from serde_dispatch.errors import ImplementationError, RpcError, UnknownSelectorError
from serde_dispatch.schema import (
    InterfaceSpecification,
    MethodSignature,
    as_specification,
    validate_implementation,
)
from serde_dispatch.wire import read_arguments, read_ordinal, write_reply

if TYPE_CHECKING:
    from serde_dispatch.transport import RpcTransport

__all__ = ["Dispatcher"]

_logger = logging.getLogger("serde_dispatch.rpc")
_access_logger = logging.getLogger("serde_dispatch.access")


# ---------------------------------------------------------------------------
# Server helpers
# ---------------------------------------------------------------------------


def _emit_access_log(
    interface_name: str,
    method_name: str,
    ordinal: int | None,
    server_id: str,
    duration_ms: float,
    status: Literal["ok", "error"],
    error_type: str = "",
) -> None:
    """Emit a structured access log record for a completed or failed request."""
    if not _access_logger.isEnabledFor(logging.INFO):
        return
    extra: dict[str, object] = {
        "server_id": server_id,
        "interface": interface_name,
        "method": method_name,
        "ordinal": ordinal if ordinal is not None else -1,
        "duration_ms": round(duration_ms, 2),
        "status": status,
        "error_type": error_type,
    }
    _access_logger.info("%s.%s %s", interface_name, method_name, status, extra=extra)


def _at_eof(reader: io.BufferedReader) -> bool:
    """Whether *reader* has no more bytes, without consuming any."""
    return not reader.peek(1)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class Dispatcher:
    """Serves requests for one interface by calling a bound implementation.

    The dispatcher is stateless between requests and never closes or
    flushes the streams it is handed; the caller owns them.  One dispatcher
    may serve any number of connections, sequentially or from several
    threads, as long as the implementation tolerates that.
    """

    __slots__ = ("_impl", "_server_id", "_spec")

    def __init__(
        self,
        interface: type | InterfaceSpecification,
        implementation: object,
        *,
        server_id: str | None = None,
    ) -> None:
        """Bind *implementation* to *interface*.

        Args:
            interface: The interface class, or its already-built specification.
            implementation: Object providing every method of the interface.
            server_id: Optional identifier used in log records; generated
                when ``None``.

        Raises:
            InterfaceError: If *interface* is not a valid RPC interface.
            TypeError: If *implementation* is missing methods or has
                incompatible signatures.

        """
        self._spec = as_specification(interface)
        self._impl = implementation
        self._server_id = server_id if server_id is not None else uuid.uuid4().hex[:12]
        validate_implementation(self._spec, implementation)
        _logger.info(
            "Dispatcher created for %s (server_id=%s, methods=%d)",
            self._spec.name,
            self._server_id,
            len(self._spec),
            extra={"server_id": self._server_id, "interface": self._spec.name, "method_count": len(self._spec)},
        )

    @property
    def specification(self) -> InterfaceSpecification:
        """The interface this dispatcher serves."""
        return self._spec

    @property
    def implementation(self) -> object:
        """The bound implementation object."""
        return self._impl

    @property
    def server_id(self) -> str:
        """Short random identifier for this dispatcher."""
        return self._server_id

    def handle_request(self, reader: IO[bytes], writer: IO[bytes]) -> MethodSignature:
        """Read one request from *reader*, run it, and write the reply to *writer*.

        Nothing is written unless the implementation returned normally and
        its result encoded successfully.

        Returns:
            The method that was served.

        Raises:
            DecodingError: If the ordinal or a parameter cannot be read.
            UnknownSelectorError: If the ordinal names no method.
            ImplementationError: If the implementation raised; the original
                exception is the ``__cause__``.
            EncodingError: If the result cannot be encoded or written.

        """
        start = time.monotonic()
        method_name = "?"
        ordinal: int | None = None
        try:
            ordinal = read_ordinal(reader)
            method = self._spec.by_ordinal(ordinal)
            if method is None:
                raise UnknownSelectorError(ordinal, len(self._spec), self._spec.name)
            method_name = method.name
            args = read_arguments(reader, method)
            result = self._invoke(method, args)
            write_reply(writer, method, result)
        except RpcError as exc:
            _emit_access_log(
                self._spec.name,
                method_name,
                ordinal,
                self._server_id,
                (time.monotonic() - start) * 1000,
                "error",
                type(exc).__name__,
            )
            raise
        _emit_access_log(
            self._spec.name, method_name, ordinal, self._server_id, (time.monotonic() - start) * 1000, "ok"
        )
        return method

    def _invoke(self, method: MethodSignature, args: dict[str, Any]) -> Any:
        positional = [args[p.name] for p in method.params if not p.keyword_only]
        keywords = {p.name: args[p.name] for p in method.params if p.keyword_only}
        try:
            return getattr(self._impl, method.name)(*positional, **keywords)
        except Exception as exc:
            _logger.error(
                "Error in %s.%s: %s",
                self._spec.name,
                method.name,
                exc,
                exc_info=True,
                extra={"server_id": self._server_id, "method": method.name, "error_type": type(exc).__name__},
            )
            raise ImplementationError(method.name, exc) from exc

    def serve(self, transport: RpcTransport) -> int:
        """Serve requests from *transport* until its reader reaches end of stream.

        Each request is handled with :meth:`handle_request` and the writer
        is flushed after every reply.  End of stream is detected by peeking, so a
        reader without ``peek`` (such as :class:`io.BytesIO`) is read through
        an :class:`io.BufferedReader` for the duration of the loop and
        detached afterwards; such a reader must support ``readinto``.

        Returns:
            The number of requests served.

        Raises:
            RpcError: The first request that fails ends the loop.

        """
        reader: Any = transport.reader
        buffered = None if hasattr(reader, "peek") else io.BufferedReader(reader)
        if buffered is not None:
            reader = buffered
        served = 0
        try:
            while not _at_eof(reader):
                self.handle_request(reader, transport.writer)
                transport.writer.flush()
                served += 1
        finally:
            if buffered is not None:
                buffered.detach()
        _logger.debug("Serve loop ended after %d request(s)", served, extra={"server_id": self._server_id})
        return served
