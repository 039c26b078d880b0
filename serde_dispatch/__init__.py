# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Interface-to-RPC-stub generation over any duplex byte stream, with Arrow IPC serialization."""

import logging

from serde_dispatch.client import Proxy, ProxyConnection, close_proxy, connect
from serde_dispatch.codec import (
    ArrowType,
    Ordinal,
    UInt,
    decode,
    decode_bytes,
    encode,
    encode_bytes,
    infer_arrow_type,
)
from serde_dispatch.errors import (
    DecodingError,
    Diagnostic,
    DiagnosticKind,
    EncodingError,
    ImplementationError,
    InterfaceError,
    RpcError,
    UnknownSelectorError,
)
from serde_dispatch.schema import (
    InterfaceSpecification,
    MethodSignature,
    Parameter,
    ValidationReport,
    describe_interface,
    interface_spec,
    rpc_interface,
    validate_interface,
)
from serde_dispatch.server import Dispatcher
from serde_dispatch.transport import (
    PipeTransport,
    RpcTransport,
    UnixTransport,
    make_pipe_pair,
    make_unix_pair,
    serve_pipe,
    serve_unix,
    unix_connect,
)

__all__ = [
    # Core
    "Dispatcher",
    "Proxy",
    "ProxyConnection",
    "close_proxy",
    "connect",
    # Interface analysis
    "InterfaceSpecification",
    "MethodSignature",
    "Parameter",
    "ValidationReport",
    "describe_interface",
    "interface_spec",
    "rpc_interface",
    "validate_interface",
    # Errors
    "DecodingError",
    "Diagnostic",
    "DiagnosticKind",
    "EncodingError",
    "ImplementationError",
    "InterfaceError",
    "RpcError",
    "UnknownSelectorError",
    # Serialization
    "ArrowType",
    "Ordinal",
    "UInt",
    "decode",
    "decode_bytes",
    "encode",
    "encode_bytes",
    "infer_arrow_type",
    # Transports
    "PipeTransport",
    "RpcTransport",
    "UnixTransport",
    "make_pipe_pair",
    "make_unix_pair",
    "serve_pipe",
    "serve_unix",
    "unix_connect",
]

# Attach NullHandler to the package logger so library users don't get
# "No handler found" warnings.
logging.getLogger("serde_dispatch").addHandler(logging.NullHandler())
