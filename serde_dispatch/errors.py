# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Diagnostics and errors raised by interface analysis and RPC dispatch.

Two families live here:

- **Definition time**: :class:`Diagnostic` records produced while
  validating an interface class.  They are accumulated, never raised one by
  one; :class:`InterfaceError` carries all of them at once.
- **Run time**: :class:`RpcError` and its subclasses, raised to the caller
  of ``Dispatcher.handle_request`` or a proxy call.  A faulty peer can only
  ever produce one of these, it never takes the host process down.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

__all__ = [
    "DecodingError",
    "Diagnostic",
    "DiagnosticKind",
    "EncodingError",
    "ImplementationError",
    "InterfaceError",
    "RpcError",
    "UnknownSelectorError",
]


# ---------------------------------------------------------------------------
# Definition-time diagnostics
# ---------------------------------------------------------------------------


class DiagnosticKind(Enum):
    """Which calling-convention constraint an interface member violates."""

    UNSUPPORTED_RECEIVER = "UnsupportedReceiver"
    GENERICS_UNSUPPORTED = "GenericsUnsupported"
    CONST_UNSUPPORTED = "ConstUnsupported"
    ASYNC_UNSUPPORTED = "AsyncUnsupported"
    NON_METHOD_MEMBER = "NonMethodMember"
    UNSUPPORTED_PARAMETER = "UnsupportedParameter"
    UNSUPPORTED_TYPE = "UnsupportedType"


@dataclass(frozen=True)
class Diagnostic:
    """One validation failure, reported at the member's definition site.

    Attributes:
        kind: The violated constraint.
        interface: Name of the interface class being analyzed.
        member: Name of the offending member.
        message: Human-readable description of the problem.
        filename: Source file of the member, when it can be determined.
        lineno: First source line of the member, when it can be determined.

    """

    kind: DiagnosticKind
    interface: str
    member: str
    message: str
    filename: str | None = None
    lineno: int | None = None

    @property
    def location(self) -> str:
        """``file:line`` of the definition site, or the qualified member name."""
        if self.filename is not None and self.lineno is not None:
            return f"{self.filename}:{self.lineno}"
        return f"{self.interface}.{self.member}"

    def __str__(self) -> str:
        """Format as ``location: Interface.member: [Kind] message``."""
        return f"{self.location}: {self.interface}.{self.member}: [{self.kind.value}] {self.message}"


class InterfaceError(TypeError):
    """Raised when an interface class cannot be turned into RPC stubs.

    The message lists every diagnostic so all problems can be fixed in one
    pass.
    """

    def __init__(self, interface: str, diagnostics: Sequence[Diagnostic]) -> None:
        """Initialize with the interface name and its diagnostics."""
        self.interface = interface
        self.diagnostics: tuple[Diagnostic, ...] = tuple(diagnostics)
        detail = "\n".join(f"  - {d}" for d in self.diagnostics)
        super().__init__(f"{interface} is not a valid RPC interface ({len(self.diagnostics)} problem(s)):\n{detail}")


# ---------------------------------------------------------------------------
# Runtime errors
# ---------------------------------------------------------------------------


class RpcError(Exception):
    """Base class for every failure surfaced by a dispatch or a proxy call."""


class EncodingError(RpcError):
    """The codec could not produce bytes for a value, or the sink rejected them."""


class DecodingError(RpcError):
    """The codec could not read a value of the expected type.

    Includes a stream that ended before a complete value was read.
    """


class UnknownSelectorError(RpcError):
    """The dispatcher received an ordinal outside the interface's range."""

    def __init__(self, ordinal: int, method_count: int, interface: str = "") -> None:
        """Initialize with the offending ordinal and the number of known methods."""
        self.ordinal = ordinal
        self.method_count = method_count
        self.interface = interface
        name = f"{interface} " if interface else ""
        super().__init__(f"Unknown selector {ordinal} for {name}interface with {method_count} method(s)")


class ImplementationError(RpcError):
    """The bound implementation raised while handling a request.

    The original exception is available as ``__cause__``.
    """

    def __init__(self, method: str, exc: BaseException) -> None:
        """Initialize with the method name and the exception it raised."""
        self.method = method
        super().__init__(f"Implementation of '{method}' raised {type(exc).__name__}: {exc}")
