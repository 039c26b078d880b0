"""Checking and describing an interface before serving it.

``validate_interface`` reports every problem in one pass instead of stopping
at the first, and ``describe_interface`` shows the ordinal each method is
called by on the wire.

Run::

    python examples/introspection.py
"""

from __future__ import annotations

from typing import Protocol

from serde_dispatch import describe_interface, interface_spec, validate_interface

# ---------------------------------------------------------------------------
# 1. An interface with mistakes
# ---------------------------------------------------------------------------


class DraftService(Protocol):
    """A service still being written."""

    def greet(self, name: str) -> str:
        """Greet someone by name."""
        ...

    async def fetch(self, key: str) -> bytes:
        """Fetch a blob."""
        ...

    @staticmethod
    def version() -> str:
        """Report the service version."""
        ...

    def add(self, a: float, b: float) -> float:
        """Add two numbers."""
        ...


# ---------------------------------------------------------------------------
# 2. The corrected interface
# ---------------------------------------------------------------------------


class DemoService(Protocol):
    """A demo service for introspection."""

    def greet(self, name: str) -> str:
        """Greet someone by name."""
        ...

    def fetch(self, key: str) -> bytes | None:
        """Fetch a blob, or None when *key* is unknown."""
        ...

    def version(self) -> str:
        """Report the service version."""
        ...

    def add(self, a: float, b: float) -> float:
        """Add two numbers."""
        ...


def main() -> None:
    """Validate the draft, then describe the fixed interface."""
    report = validate_interface(DraftService)
    print(f"{report.interface}: {len(report.diagnostics)} problem(s)")
    for diagnostic in report.diagnostics:
        print(f"  {diagnostic.member}: [{diagnostic.kind.value}] {diagnostic.message}")
    print(f"  still callable: {', '.join(m.name for m in report.methods)}")

    print()
    print(describe_interface(interface_spec(DemoService)))


if __name__ == "__main__":
    main()
