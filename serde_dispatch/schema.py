# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Interface analysis: validation, ordinal assignment, and the canonical specification.

An RPC interface is a class, normally a ``typing.Protocol``, whose public
methods take the instance as first parameter followed by annotated
parameters::

    @rpc_interface
    class World(Protocol):
        def ping(self, num: UInt) -> str: ...

:func:`validate_interface` walks the members in declaration order and
checks each against the calling convention, accumulating a
:class:`~serde_dispatch.errors.Diagnostic` per rejected member instead of
stopping at the first one.  Every accepted method gets an ordinal equal to
its position among the *accepted* methods, so numbering is always
contiguous.

:func:`interface_spec` is the single, memoized source of the
:class:`InterfaceSpecification` that both the Dispatcher and the Proxy are
driven by.  It raises :class:`~serde_dispatch.errors.InterfaceError` when
any member was rejected.
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Annotated, Any, TypeVar, get_args, get_origin, get_type_hints

import pyarrow as pa

from serde_dispatch.codec import ArrowType, infer_arrow_type, is_unit_type
from serde_dispatch.errors import Diagnostic, DiagnosticKind, InterfaceError

__all__ = [
    "InterfaceSpecification",
    "MethodSignature",
    "Parameter",
    "ValidationReport",
    "as_specification",
    "describe_interface",
    "interface_spec",
    "rpc_interface",
    "validate_interface",
]


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Parameter:
    """One parameter of an RPC method, excluding the receiver.

    Attributes:
        name: Parameter name as declared on the interface.
        type_hint: The resolved Python annotation.
        arrow_type: Arrow type the codec uses for this parameter.
        kind: ``POSITIONAL_ONLY``, ``POSITIONAL_OR_KEYWORD`` or ``KEYWORD_ONLY``.
        default: Declared default, or ``inspect.Parameter.empty``.

    """

    name: str
    type_hint: Any
    arrow_type: pa.DataType
    kind: inspect._ParameterKind = inspect.Parameter.POSITIONAL_OR_KEYWORD
    default: Any = inspect.Parameter.empty

    @property
    def keyword_only(self) -> bool:
        """Whether the parameter must be passed by keyword."""
        return self.kind is inspect.Parameter.KEYWORD_ONLY


@dataclass(frozen=True)
class MethodSignature:
    """Wire-level description of a single RPC method.

    Attributes:
        name: Method name as it appears on the interface.
        ordinal: Zero-based selector written at the start of every request.
        params: Parameters in declaration order, receiver excluded.
        return_type: The return annotation; ``None`` when none was declared.
        doc: The method's docstring, if any.
        filename: Source file of the declaration, when known.
        lineno: First source line of the declaration, when known.

    """

    name: str
    ordinal: int
    params: tuple[Parameter, ...]
    return_type: Any = None
    doc: str | None = None
    filename: str | None = None
    lineno: int | None = None

    @property
    def has_return(self) -> bool:
        """``False`` for methods returning the unit type."""
        return not is_unit_type(self.return_type)

    @functools.cached_property
    def call_signature(self) -> inspect.Signature:
        """Signature used to bind proxy call arguments (no receiver)."""
        return inspect.Signature(
            [inspect.Parameter(p.name, p.kind, default=p.default, annotation=p.type_hint) for p in self.params]
        )

    def format(self) -> str:
        """Format as ``name(a: T, ...) -> R`` for messages and listings."""
        params = ", ".join(f"{p.name}: {_format_type(p.type_hint)}" for p in self.params)
        return f"{self.name}({params}) -> {_format_type(self.return_type)}"


@dataclass(frozen=True)
class InterfaceSpecification:
    """The canonical, ordinal-assigned description of one interface.

    Raises ``ValueError`` on construction if the ordinals are not exactly
    ``0..len(methods) - 1`` in order, or if a method name repeats.
    """

    name: str
    methods: tuple[MethodSignature, ...]
    _by_name: Mapping[str, MethodSignature] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Check ordinal contiguity and build the name index."""
        for position, method in enumerate(self.methods):
            if method.ordinal != position:
                raise ValueError(
                    f"{self.name}.{method.name} has ordinal {method.ordinal}, expected {position}; "
                    "ordinals must be contiguous and start at 0"
                )
        by_name = {m.name: m for m in self.methods}
        if len(by_name) != len(self.methods):
            raise ValueError(f"{self.name} declares duplicate method names")
        object.__setattr__(self, "_by_name", MappingProxyType(by_name))

    def __len__(self) -> int:
        """Number of methods (and therefore of valid ordinals)."""
        return len(self.methods)

    def __iter__(self) -> Iterator[MethodSignature]:
        """Iterate methods in ordinal order."""
        return iter(self.methods)

    def by_ordinal(self, ordinal: int) -> MethodSignature | None:
        """Return the method selected by *ordinal*, or ``None`` if out of range."""
        if 0 <= ordinal < len(self.methods):
            return self.methods[ordinal]
        return None

    def by_name(self, name: str) -> MethodSignature | None:
        """Return the method called *name*, or ``None``."""
        return self._by_name.get(name)

    @property
    def names(self) -> tuple[str, ...]:
        """Method names in ordinal order."""
        return tuple(m.name for m in self.methods)


@dataclass(frozen=True)
class ValidationReport:
    """Outcome of analyzing an interface class: accepted methods plus diagnostics."""

    interface: str
    methods: tuple[MethodSignature, ...]
    diagnostics: tuple[Diagnostic, ...]

    @property
    def ok(self) -> bool:
        """Whether every member was accepted."""
        return not self.diagnostics

    def specification(self) -> InterfaceSpecification:
        """Return the specification, or raise if any member was rejected.

        Raises:
            InterfaceError: Listing every diagnostic.

        """
        if self.diagnostics:
            raise InterfaceError(self.interface, self.diagnostics)
        return InterfaceSpecification(self.interface, self.methods)


# ---------------------------------------------------------------------------
# Member collection
# ---------------------------------------------------------------------------

_ANNOTATION_ONLY = object()


def _format_type(hint: Any) -> str:
    if is_unit_type(hint):
        return "None"
    if get_origin(hint) is Annotated:
        for marker in get_args(hint)[1:]:
            if isinstance(marker, ArrowType):
                return str(marker.arrow_type)
        hint = get_args(hint)[0]
    if isinstance(hint, type):
        return hint.__qualname__
    return inspect.formatannotation(hint)


def _collect_members(interface: type) -> dict[str, Any]:
    """Return the public members of *interface* in declaration order.

    Base classes come first; an override keeps the position of the member it
    overrides.  Annotation-only attributes follow the defined members and map
    to ``_ANNOTATION_ONLY``.
    """
    members: dict[str, Any] = {}
    annotated: dict[str, Any] = {}
    for klass in reversed(interface.__mro__):
        if klass is object or klass.__module__ == "typing":
            continue
        for name, value in vars(klass).items():
            if not name.startswith("_"):
                members[name] = value
        for name in inspect.get_annotations(klass):
            if not name.startswith("_"):
                annotated[name] = _ANNOTATION_ONLY
    for name, marker in annotated.items():
        members.setdefault(name, marker)
    return members


def _underlying_function(member: Any) -> Any:
    """Peel staticmethod/classmethod/property/cached_property and decorator wrappers."""
    for attr in ("__func__", "fget", "func"):
        inner = getattr(member, attr, None)
        if inner is not None:
            member = inner
            break
    return inspect.unwrap(member) if callable(member) else member


def _source_location(member: Any, interface: type) -> tuple[str | None, int | None]:
    code = getattr(_underlying_function(member), "__code__", None)
    if code is not None:
        return code.co_filename, code.co_firstlineno
    try:
        _, lineno = inspect.getsourcelines(interface)
        return inspect.getsourcefile(interface), lineno
    except (OSError, TypeError):
        return None, None


def _is_memoized(member: Any) -> bool:
    return callable(member) and hasattr(member, "cache_info") and hasattr(member, "__wrapped__")


def _contains_typevar(hint: Any) -> bool:
    if isinstance(hint, TypeVar):
        return True
    return any(_contains_typevar(arg) for arg in get_args(hint))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_RECEIVER_KINDS = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
_VARIADIC_KINDS = {
    inspect.Parameter.VAR_POSITIONAL: "*args",
    inspect.Parameter.VAR_KEYWORD: "**kwargs",
}


class _Rejected(Exception):
    """Internal: one member failed a check."""

    def __init__(self, kind: DiagnosticKind, message: str) -> None:
        self.kind = kind
        self.message = message
        super().__init__(message)


def _check_method(member: Any) -> tuple[tuple[Parameter, ...], Any]:
    """Run every calling-convention check on one member.

    Returns:
        The parameters (receiver excluded) and the return type.

    Raises:
        _Rejected: On the first violated constraint.

    """
    is_static = isinstance(member, staticmethod)
    is_class = isinstance(member, classmethod)
    memoized = _is_memoized(member)

    if member is _ANNOTATION_ONLY:
        raise _Rejected(DiagnosticKind.NON_METHOD_MEMBER, "annotated attribute; only methods can be called remotely")
    if not (inspect.isfunction(member) or is_static or is_class or memoized):
        kind = type(member).__name__
        raise _Rejected(DiagnosticKind.NON_METHOD_MEMBER, f"{kind} member; only methods can be called remotely")

    if memoized:
        raise _Rejected(
            DiagnosticKind.CONST_UNSUPPORTED, "memoized (functools.cache/lru_cache) methods are not supported for RPC"
        )

    func = member.__func__ if (is_static or is_class) else member
    if inspect.iscoroutinefunction(func) or inspect.isasyncgenfunction(func):
        raise _Rejected(DiagnosticKind.ASYNC_UNSUPPORTED, "async methods are not supported for RPC")

    if getattr(func, "__type_params__", ()):
        raise _Rejected(DiagnosticKind.GENERICS_UNSUPPORTED, "generic methods are not supported for RPC")

    hints: dict[str, Any] | None
    hints_error: Exception | None = None
    try:
        hints = get_type_hints(func, include_extras=True)
    except (NameError, AttributeError, TypeError) as exc:
        hints, hints_error = None, exc
    if hints is not None and any(_contains_typevar(h) for h in hints.values()):
        raise _Rejected(
            DiagnosticKind.GENERICS_UNSUPPORTED, "type variables in the signature are not supported for RPC"
        )

    if is_static or is_class:
        label = "staticmethod" if is_static else "classmethod"
        raise _Rejected(
            DiagnosticKind.UNSUPPORTED_RECEIVER,
            f"{label}; RPC methods must take some form of the instance as first parameter",
        )
    sig = inspect.signature(func)
    params = list(sig.parameters.values())
    if not params or params[0].kind not in _RECEIVER_KINDS:
        raise _Rejected(
            DiagnosticKind.UNSUPPORTED_RECEIVER,
            "RPC methods must take some form of the instance as first parameter",
        )
    rest = params[1:]

    variadic = [f"'{p.name}' is {_VARIADIC_KINDS[p.kind]}" for p in rest if p.kind in _VARIADIC_KINDS]
    if variadic:
        raise _Rejected(
            DiagnosticKind.UNSUPPORTED_PARAMETER,
            "every parameter after the receiver must be a single typed argument: " + ", ".join(variadic),
        )

    if hints is None:
        raise _Rejected(DiagnosticKind.UNSUPPORTED_TYPE, f"failed to resolve type hints: {hints_error}")

    resolved: list[Parameter] = []
    for p in rest:
        if p.name not in hints:
            raise _Rejected(DiagnosticKind.UNSUPPORTED_TYPE, f"parameter '{p.name}' has no type annotation")
        try:
            arrow_type = infer_arrow_type(hints[p.name])
        except TypeError as exc:
            raise _Rejected(DiagnosticKind.UNSUPPORTED_TYPE, f"parameter '{p.name}': {exc}") from exc
        resolved.append(Parameter(p.name, hints[p.name], arrow_type, p.kind, p.default))

    return_type = hints.get("return", type(None))
    if is_unit_type(return_type):
        return_type = None
    else:
        try:
            infer_arrow_type(return_type)
        except TypeError as exc:
            raise _Rejected(DiagnosticKind.UNSUPPORTED_TYPE, f"return type: {exc}") from exc

    return tuple(resolved), return_type


def validate_interface(interface: type) -> ValidationReport:
    """Analyze *interface* and return its accepted methods plus every diagnostic.

    Never raises for a malformed member; each rejected member contributes
    exactly one diagnostic and no ordinal.

    Raises:
        TypeError: If *interface* is not a class.

    """
    if not isinstance(interface, type):
        raise TypeError(f"Expected an interface class, got {type(interface).__name__}")

    methods: list[MethodSignature] = []
    diagnostics: list[Diagnostic] = []
    for name, member in _collect_members(interface).items():
        filename, lineno = _source_location(member, interface)
        try:
            params, return_type = _check_method(member)
        except _Rejected as rejected:
            diagnostics.append(
                Diagnostic(rejected.kind, interface.__name__, name, rejected.message, filename=filename, lineno=lineno)
            )
            continue
        methods.append(
            MethodSignature(
                name=name,
                ordinal=len(methods),
                params=params,
                return_type=return_type,
                doc=inspect.getdoc(member),
                filename=filename,
                lineno=lineno,
            )
        )

    return ValidationReport(interface.__name__, tuple(methods), tuple(diagnostics))


@functools.cache
def interface_spec(interface: type) -> InterfaceSpecification:
    """Return the canonical specification of *interface*.

    Computed once per class; every later call returns the same object, so a
    Dispatcher and a Proxy built in one process share one ordinal table.

    Raises:
        InterfaceError: If any member violates the calling convention.

    """
    return validate_interface(interface).specification()


def rpc_interface[C: type](interface: C) -> C:
    """Class decorator: validate *interface* at its definition site.

    The class is returned unchanged; its specification is computed and
    cached so that any violation fails the import that defines it.

    Raises:
        InterfaceError: Listing every rejected member.

    """
    interface_spec(interface)
    return interface


def as_specification(interface: type | InterfaceSpecification) -> InterfaceSpecification:
    """Accept either an interface class or an already-built specification."""
    if isinstance(interface, InterfaceSpecification):
        return interface
    return interface_spec(interface)


def describe_interface(interface: type | InterfaceSpecification) -> str:
    """Return a human-readable listing of an interface's methods by ordinal."""
    spec = as_specification(interface)
    lines: list[str] = [f"RPC Interface: {spec.name}", ""]
    for method in spec:
        lines.append(f"  [{method.ordinal}] {method.format()}")
        if method.doc:
            lines.append(f"      doc: {method.doc.strip()}")
    lines.append("")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Implementation validation
# ---------------------------------------------------------------------------

_PLACEHOLDER = object()


def validate_implementation(spec: InterfaceSpecification, implementation: object) -> None:
    """Validate that *implementation* can serve every method of *spec*.

    Checks that each method exists, is callable, and accepts the declared
    parameters the way the dispatcher passes them (positionally, keyword-only
    parameters by keyword).

    Raises:
        TypeError: If one or more problems are found.  The message lists
            every problem so the developer can fix them all in one pass.

    """
    errors: list[str] = []

    for info in spec:
        method = getattr(implementation, info.name, None)

        if method is None:
            errors.append(f"missing method {info.format()}")
            continue

        if not callable(method):
            errors.append(f"'{info.name}' exists but is not callable")
            continue

        try:
            impl_sig = inspect.signature(method)
        except (TypeError, ValueError):
            continue
        args = [_PLACEHOLDER for p in info.params if not p.keyword_only]
        kwargs = {p.name: _PLACEHOLDER for p in info.params if p.keyword_only}
        try:
            impl_sig.bind(*args, **kwargs)
        except TypeError as exc:
            errors.append(f"'{info.name}()' cannot accept the parameters of {info.format()}: {exc}")

    if errors:
        impl_name = type(implementation).__name__
        header = f"{impl_name} does not implement {spec.name}:"
        detail = "\n".join(f"  - {e}" for e in errors)
        raise TypeError(f"{header}\n{detail}")
