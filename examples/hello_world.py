"""Minimal serde-dispatch example: define an interface and call it in-process.

The dispatcher runs in a background thread and talks to the proxy over an
in-process pipe, so no socket or subprocess is needed.  A proxy carries a
single call, so each call gets its own connection.

Run::

    python examples/hello_world.py
"""

from __future__ import annotations

from typing import Protocol

from serde_dispatch import UInt, rpc_interface, serve_pipe


# 1. Declare the interface.  Every method takes ``self`` and fully
#    annotated parameters; ordinals follow declaration order.
@rpc_interface
class Greeter(Protocol):
    """A simple greeting service."""

    def greet(self, name: str) -> str:
        """Return a greeting for *name*."""
        ...

    def repeat(self, word: str, times: UInt) -> str:
        """Return *word* repeated *times* times."""
        ...

    def add(self, a: float, b: float) -> float:
        """Add two numbers."""
        ...


# 2. Implement it.
class GreeterImpl:
    """Concrete implementation of the Greeter service."""

    def greet(self, name: str) -> str:
        """Return a greeting for *name*."""
        return f"Hello, {name}!"

    def repeat(self, word: str, times: int) -> str:
        """Return *word* repeated *times* times."""
        return word * times

    def add(self, a: float, b: float) -> float:
        """Add two numbers."""
        return a + b


# 3. Call it through a typed proxy, one connection per call.
def main() -> None:
    """Run the example."""
    impl = GreeterImpl()
    with serve_pipe(Greeter, impl) as svc:
        print(svc.greet(name="World"))  # Hello, World!
    with serve_pipe(Greeter, impl) as svc:
        print(svc.repeat("pong ", 3))  # pong pong pong
    with serve_pipe(Greeter, impl) as svc:
        print(svc.add(a=2.5, b=3.5))  # 6.0


if __name__ == "__main__":
    main()
