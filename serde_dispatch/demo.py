# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""The ``World`` demonstration service.

``serde-dispatch serve`` exposes :class:`ConcreteWorld` on a Unix socket and
``serde-dispatch call`` pings it::

    serde-dispatch serve --socket mysocket &
    serde-dispatch call --socket mysocket 5     # pong pong pong pong pong
"""

from __future__ import annotations

from typing import Protocol

from serde_dispatch.codec import UInt
from serde_dispatch.schema import rpc_interface

__all__ = ["DEFAULT_SOCKET", "ConcreteWorld", "World"]

DEFAULT_SOCKET = "mysocket"
"""Socket path used by the demo server and client when none is given."""


@rpc_interface
class World(Protocol):
    """A service that answers pings."""

    def ping(self, num: UInt) -> str:
        """Return ``"pong "`` repeated *num* times."""
        ...


class ConcreteWorld:
    """Implementation of :class:`World`."""

    def ping(self, num: int) -> str:
        """Return ``"pong "`` repeated *num* times."""
        return "pong " * num
