# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Command-line interface for serde-dispatch.

Provides ``describe`` and ``check`` for inspecting any interface class, and
``serve`` / ``call`` for running the ``World`` demo over a Unix socket.

Usage::

    serde-dispatch describe mypkg.services:Inventory
    serde-dispatch check mypkg.services:Inventory
    serde-dispatch serve --socket mysocket --replace-stale
    serde-dispatch call --socket mysocket 5

"""

from __future__ import annotations

import importlib
import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated

import typer

from serde_dispatch.codec import infer_arrow_type
from serde_dispatch.demo import DEFAULT_SOCKET, ConcreteWorld, World
from serde_dispatch.errors import InterfaceError, RpcError
from serde_dispatch.logging_utils import LogFormat, configure_logging
from serde_dispatch.schema import describe_interface, validate_interface
from serde_dispatch.server import Dispatcher
from serde_dispatch.transport import serve_unix, unix_connect

# ---------------------------------------------------------------------------
# Output format enum
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """Output format for CLI commands."""

    text = "text"
    json = "json"


# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _CliConfig:
    """Holds resolved CLI options."""

    format: OutputFormat = OutputFormat.text


app = typer.Typer(
    name="serde-dispatch",
    help="Inspect RPC interfaces and run the World demo.",
    add_completion=False,
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def _main(
    ctx: typer.Context,
    fmt: Annotated[OutputFormat, typer.Option("--format", "-f", help="Output format")] = OutputFormat.text,
    log_level: Annotated[str, typer.Option("--log-level", help="Level for serde_dispatch loggers")] = "WARNING",
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Log record format")] = LogFormat.text,
) -> None:
    """Configure output and logging options."""
    configure_logging(log_level, log_format)
    ctx.obj = _CliConfig(format=fmt)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_interface(target: str) -> type:
    """Import ``module:attr`` and return the class it names.

    Raises:
        typer.BadParameter: If the target is malformed, cannot be imported,
            or is not a class.

    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise typer.BadParameter(f"Expected MODULE:ATTR, got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise typer.BadParameter(f"Cannot import {module_name!r}: {e}") from e
    obj: object = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise typer.BadParameter(f"{module_name!r} has no attribute {attr!r}") from e
    if not isinstance(obj, type):
        raise typer.BadParameter(f"{target} is not a class")
    return obj


def _print_json(data: object) -> None:
    """Print JSON to stdout."""
    typer.echo(json.dumps(data, indent=2, default=str))


# ---------------------------------------------------------------------------
# describe / check
# ---------------------------------------------------------------------------


@app.command()
def describe(
    ctx: typer.Context,
    target: Annotated[str, typer.Argument(help="Interface class as MODULE:ATTR")],
) -> None:
    """Show an interface's methods with their ordinals."""
    config: _CliConfig = ctx.obj
    interface = _load_interface(target)
    report = validate_interface(interface)
    try:
        spec = report.specification()
    except InterfaceError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    if config.format == OutputFormat.text:
        typer.echo(describe_interface(spec))
        return
    _print_json(
        {
            "interface": spec.name,
            "methods": [
                {
                    "ordinal": m.ordinal,
                    "name": m.name,
                    "params": {p.name: str(infer_arrow_type(p.type_hint)) for p in m.params},
                    "returns": None if not m.has_return else str(infer_arrow_type(m.return_type)),
                    "doc": m.doc,
                }
                for m in spec
            ],
        }
    )


@app.command()
def check(
    ctx: typer.Context,
    target: Annotated[str, typer.Argument(help="Interface class as MODULE:ATTR")],
) -> None:
    """Validate an interface and list every problem found.  Exits 1 on any problem."""
    config: _CliConfig = ctx.obj
    report = validate_interface(_load_interface(target))

    if config.format == OutputFormat.json:
        _print_json(
            {
                "interface": report.interface,
                "ok": report.ok,
                "methods": [m.name for m in report.methods],
                "diagnostics": [
                    {"kind": d.kind.value, "member": d.member, "message": d.message, "location": d.location}
                    for d in report.diagnostics
                ],
            }
        )
    elif report.ok:
        typer.echo(f"{report.interface}: OK ({len(report.methods)} method(s))")
    else:
        for d in report.diagnostics:
            typer.echo(str(d))
        typer.echo(f"{report.interface}: {len(report.diagnostics)} problem(s)")

    if not report.ok:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# serve / call: the World demo
# ---------------------------------------------------------------------------


@app.command()
def serve(
    socket_path: Annotated[str, typer.Option("--socket", "-s", help="Unix socket path")] = DEFAULT_SOCKET,
    replace_stale: Annotated[
        bool, typer.Option("--replace-stale", help="Remove an existing socket file before binding")
    ] = False,
    threaded: Annotated[bool, typer.Option("--threaded", help="Handle each connection on its own thread")] = False,
    max_requests: Annotated[
        int | None, typer.Option("--max-requests", help="Exit after this many connections")
    ] = None,
) -> None:
    """Serve the World demo on a Unix socket until interrupted."""
    dispatcher = Dispatcher(World, ConcreteWorld())
    try:
        serve_unix(
            dispatcher,
            socket_path,
            replace_stale=replace_stale,
            threaded=threaded,
            max_requests=max_requests,
        )
    except FileExistsError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        pass


@app.command()
def call(
    num: Annotated[int, typer.Argument(min=0, help="How many pongs to ask for")],
    socket_path: Annotated[str, typer.Option("--socket", "-s", help="Unix socket path")] = DEFAULT_SOCKET,
) -> None:
    """Ping the World demo server and print its reply."""
    try:
        with unix_connect(World, socket_path) as world:
            reply = world.ping(num)
    except RpcError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except OSError as e:
        typer.echo(f"Error: cannot connect to {socket_path}: {e}", err=True)
        raise typer.Exit(1) from None
    typer.echo(reply)
