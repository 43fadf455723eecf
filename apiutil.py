"""
apiutil - Helper functions shared by the API client generator.

Architecture: Functional Core
- Data: immutable dataclasses (member descriptors, annotations)
- Computations: pure functions (no I/O, no printing)
- Errors: contract violations raised immediately to the caller
"""

from __future__ import annotations

import ast
import datetime as dt
import functools
import importlib.util
import logging
import types
import typing
from collections.abc import Callable, Iterable, Iterator, Mapping, Sized
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T")
M = TypeVar("M", bound="TypeMember")

# Attribute under which annotations are stored on their target.
ATTRIBUTES_SLOT = "__custom_attributes__"

# Module only importable under the PyPy runtime.
PYPY_MARKER_MODULE = "__pypy__"

_PROPERTY_DECORATORS = frozenset({"property", "cached_property"})
_UNION_ORIGINS = (typing.Union, types.UnionType)


# =============================================================================
# DOMAIN TYPES (Data)
# =============================================================================


@dataclass(frozen=True)
class TypeMember:
    """A member declared inside a type definition."""

    name: str
    start_line: int = 0  # 1-indexed, includes decorators
    end_line: int = 0  # 1-indexed, inclusive


@dataclass(frozen=True)
class MemberField(TypeMember):
    """A field (class attribute) declaration."""

    annotation: str | None = None
    value: str | None = None  # source text of the initializer


@dataclass(frozen=True)
class MemberProperty(TypeMember):
    """A property declaration; setters are folded into their getter."""

    annotation: str | None = None
    has_setter: bool = False


@dataclass(frozen=True)
class MemberMethod(TypeMember):
    is_async: bool = False


@dataclass(frozen=True)
class TypeDeclaration(TypeMember):
    """A (possibly nested) type declaration and its members, in order."""

    bases: tuple[str, ...] = ()
    members: tuple[TypeMember, ...] = ()


@dataclass(frozen=True)
class StringValue:
    """Annotation carrying the string form of an enum member."""

    text: str


# =============================================================================
# ERRORS
# =============================================================================


class InvalidArgumentError(ValueError):
    """An argument violated the calling contract."""

    def __init__(self, message: str, param_name: str | None = None) -> None:
        self.message = message
        self.param_name = param_name
        if param_name is not None:
            message = f"{message} (Parameter '{param_name}')"
        super().__init__(message)


class ArgumentNullError(InvalidArgumentError):
    """A required argument was None."""

    def __init__(self, param_name: str, message: str = "Value cannot be null") -> None:
        super().__init__(message, param_name)


def render_error(error: Exception) -> str:
    """Render an error message. Pure: Exception -> str."""
    return f"Error: {error}"


# =============================================================================
# GUARDS AND PREDICATES (Pure)
# =============================================================================


def throw_if_null(value: object, name: str) -> None:
    """Raise ArgumentNullError naming `name` when value is None."""
    if value is None:
        raise ArgumentNullError(name)


def throw_if_null_or_empty(value: Sized | None, name: str) -> None:
    """
    Raise when a string or sized container is None or has zero length.

    Values without a length raise TypeError.
    """
    throw_if_null(value, name)
    if len(value) == 0:
        raise InvalidArgumentError("Parameter was empty", name)


def is_null_or_empty(value: Iterable[Any] | None) -> bool:
    """
    True for None and for values with no elements.

    Sized values are checked with len(). Any other iterable is counted by
    consuming it, so a single-use iterator is exhausted afterwards.
    """
    if value is None:
        return True
    if isinstance(value, Sized):
        return len(value) == 0
    return sum(1 for _ in value) == 0


def is_not_null_or_empty(value: Iterable[Any] | None) -> bool:
    return not is_null_or_empty(value)


# =============================================================================
# MAPPING LOOKUPS (Pure)
# =============================================================================


def get_value_as_null(
    mapping: Mapping[K, V] | None,
    key: K,
    default: V | None = None,
) -> V | None:
    """
    Fetch a value from a mapping, returning `default` if there is none.

    Never raises: a missing key, an unhashable key and a None mapping all
    give `default`. Does not trigger defaultdict factories.
    """
    if mapping is None:
        return default
    try:
        if key not in mapping:
            return default
    except TypeError:
        return default
    return mapping[key]


def get_value_as_string_list_or_empty(
    mapping: Mapping[K, Any] | None,
    key: K,
) -> Iterator[str | None]:
    """
    Lazily yield str() of each element stored under `key`, None for None.

    A missing key, a None value or a value that is not iterable gives an
    empty iterator. Text is iterated like any other sequence, so a string
    yields its characters. The mapping itself is checked immediately, not
    on first iteration.
    """
    throw_if_null(mapping, "mapping")
    value = get_value_as_null(mapping, key)
    if value is None or not isinstance(value, Iterable):
        return iter(())
    return (str(item) if item is not None else None for item in value)


def as_read_only(mapping: Mapping[K, V] | None) -> Mapping[K, V]:
    """Return a read-only view sharing storage with `mapping`."""
    throw_if_null(mapping, "mapping")
    return types.MappingProxyType(mapping)


# =============================================================================
# MEMBER LOOKUPS (Pure)
# =============================================================================


def _find_by_name(
    members: Iterable[TypeMember] | None,
    name: str | None,
    kind: type[M],
) -> M | None:
    throw_if_null(members, "members")
    throw_if_null_or_empty(name, "name")

    for member in members:
        if isinstance(member, kind) and member.name == name:
            return member
    return None


def find_field_by_name(members: Iterable[TypeMember] | None, name: str) -> MemberField | None:
    """Return the first field called `name`, or None."""
    return _find_by_name(members, name, MemberField)


def find_property_by_name(
    members: Iterable[TypeMember] | None, name: str
) -> MemberProperty | None:
    """Return the first property called `name`, or None."""
    return _find_by_name(members, name, MemberProperty)


def find_type_member_by_name(
    members: Iterable[TypeMember] | None, name: str
) -> TypeDeclaration | None:
    """Return the first nested type declaration called `name`, or None."""
    return _find_by_name(members, name, TypeDeclaration)


def find_member_by_name(members: Iterable[TypeMember] | None, name: str) -> TypeMember | None:
    """Return the first member of any kind called `name`, or None."""
    return _find_by_name(members, name, TypeMember)


# =============================================================================
# MEMBER EXTRACTION (Pure: source -> descriptors)
# =============================================================================


def _line_span(node: ast.stmt) -> tuple[int, int]:
    decorators = getattr(node, "decorator_list", ())
    start = min((d.lineno for d in decorators), default=node.lineno)
    end = node.end_lineno if node.end_lineno is not None else node.lineno
    return start, end


def _decorator_name(node: ast.expr) -> str | None:
    match node:
        case ast.Name(id=name):
            return name
        case ast.Attribute(attr=attr):
            return attr
        case ast.Call(func=func):
            return _decorator_name(func)
        case _:
            return None


def _property_accessor(node: ast.FunctionDef | ast.AsyncFunctionDef) -> tuple[str, str] | None:
    """Return (property name, "setter"|"deleter") for `@x.setter`-style functions."""
    for decorator in node.decorator_list:
        match decorator:
            case ast.Attribute(value=ast.Name(id=owner), attr=("setter" | "deleter") as accessor):
                return owner, accessor
    return None


def _members_from_node(node: ast.stmt) -> tuple[TypeMember, ...]:
    start, end = _line_span(node)

    match node:
        case ast.ClassDef():
            return (_declaration_from_class(node),)

        case ast.FunctionDef() | ast.AsyncFunctionDef():
            decorators = {_decorator_name(d) for d in node.decorator_list}
            if decorators & _PROPERTY_DECORATORS:
                annotation = ast.unparse(node.returns) if node.returns is not None else None
                return (MemberProperty(node.name, start, end, annotation=annotation),)
            is_async = isinstance(node, ast.AsyncFunctionDef)
            return (MemberMethod(node.name, start, end, is_async=is_async),)

        case ast.AnnAssign(target=ast.Name(id=name), annotation=annotation, value=value):
            initializer = ast.unparse(value) if value is not None else None
            return (
                MemberField(name, start, end, annotation=ast.unparse(annotation), value=initializer),
            )

        case ast.Assign(targets=targets, value=value):
            initializer = ast.unparse(value)
            return tuple(
                MemberField(target.id, start, end, value=initializer)
                for target in targets
                if isinstance(target, ast.Name)
            )

        case _:
            return ()


def _members_from_body(body: Iterable[ast.stmt]) -> tuple[TypeMember, ...]:
    members: list[TypeMember] = []

    for node in body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            accessor = _property_accessor(node)
            if accessor is not None:
                owner, kind = accessor
                index = next(
                    (
                        i
                        for i, m in enumerate(members)
                        if isinstance(m, MemberProperty) and m.name == owner
                    ),
                    None,
                )
                if index is not None:
                    getter = members[index]
                    _, end = _line_span(node)
                    members[index] = replace(
                        getter,
                        end_line=max(getter.end_line, end),
                        has_setter=getter.has_setter or kind == "setter",
                    )
                    continue

        members.extend(_members_from_node(node))

    return tuple(members)


def _declaration_from_class(node: ast.ClassDef) -> TypeDeclaration:
    start, end = _line_span(node)
    return TypeDeclaration(
        node.name,
        start,
        end,
        bases=tuple(ast.unparse(base) for base in node.bases),
        members=_members_from_body(node.body),
    )


def extract_type_declarations(source: str) -> tuple[TypeDeclaration, ...]:
    """
    Extract every top-level class as a TypeDeclaration.

    Members keep declaration order, so a name may appear more than once
    (e.g. a field and a nested class of the same name).

    Pure: str -> tuple[TypeDeclaration, ...]
    """
    tree = ast.parse(source)
    declarations = tuple(
        _declaration_from_class(node)
        for node in ast.iter_child_nodes(tree)
        if isinstance(node, ast.ClassDef)
    )
    logger.debug("Extracted %d type declarations", len(declarations))
    return declarations


def find_type_declaration(source: str, name: str) -> TypeDeclaration | None:
    """Parse `source` and return its top-level class called `name`, or None."""
    return find_type_member_by_name(extract_type_declarations(source), name)


# =============================================================================
# REFLECTION HELPERS
# =============================================================================


def _attached_attributes(target: object) -> tuple[object, ...]:
    if typing.get_origin(target) is typing.Annotated:
        return tuple(target.__metadata__)
    try:
        own = vars(target)
    except TypeError:
        return ()
    # Only the target's own namespace; base classes are not searched.
    return tuple(own.get(ATTRIBUTES_SLOT, ()))


def _attach(target: object, attributes: Iterable[object]) -> None:
    setattr(target, ATTRIBUTES_SLOT, _attached_attributes(target) + tuple(attributes))


def custom_attribute(*attributes: object) -> Callable[[T], T]:
    """Decorator attaching annotations to a class or function."""

    def decorate(target: T) -> T:
        _attach(target, attributes)
        return target

    return decorate


def get_custom_attribute(target: object, attribute_type: type[T]) -> T | None:
    """
    Return the first annotation of `attribute_type` attached to `target`.

    Looks at annotations attached with custom_attribute()/string_values() and
    at the metadata of typing.Annotated aliases. Inherited annotations are
    not considered.
    """
    throw_if_null(target, "target")
    for attribute in _attached_attributes(target):
        if isinstance(attribute, attribute_type):
            return attribute
    return None


def string_values(**texts: str) -> Callable[[type[Enum]], type[Enum]]:
    """
    Enum class decorator attaching a StringValue to each named member.

        @string_values(JSON="json", ATOM="atom")
        class Alt(Enum):
            JSON = 1
            ATOM = 2
    """

    def decorate(enum_cls: type[Enum]) -> type[Enum]:
        for member_name, text in texts.items():
            member = enum_cls.__members__.get(member_name)
            if member is None:
                raise InvalidArgumentError(
                    f"{enum_cls.__name__} has no member '{member_name}'", "texts"
                )
            _attach(member, (StringValue(text),))
        return enum_cls

    return decorate


def get_string_value(value: Enum) -> str:
    """Return the StringValue text declared for an enum member."""
    throw_if_null(value, "value")
    if not isinstance(value, Enum):
        raise InvalidArgumentError(f"{value!r} is not an enum member", "value")

    attribute = get_custom_attribute(value, StringValue)
    if attribute is not None:
        return attribute.text

    raise InvalidArgumentError(
        f"Enum value '{type(value).__name__}.{value.name}' does not contain a StringValue attribute",
        "value",
    )


def get_non_nullable_type(tp: Any) -> Any:
    """
    Unwrap one level of optionality: Optional[X] and X | None give X.

    Any other type is returned unchanged, which makes this idempotent.
    """
    throw_if_null(tp, "tp")
    if typing.get_origin(tp) not in _UNION_ORIGINS:
        return tp

    args = typing.get_args(tp)
    if type(None) not in args:
        return tp

    remaining = tuple(arg for arg in args if arg is not type(None))
    if len(remaining) == 1:
        return remaining[0]
    return typing.Union[remaining]


@functools.singledispatch
def convert_to_string(value: object) -> str | None:
    """
    Convert a value to a string using the converter registered for its type.

    None gives None. Register converters for further types with
    `convert_to_string.register(SomeType)`.
    """
    return str(value)


@convert_to_string.register(type(None))
def _convert_none(value: None) -> None:
    return None


@convert_to_string.register(Enum)
def _convert_enum(value: Enum) -> str:
    return value.name


@convert_to_string.register(dt.date)
@convert_to_string.register(dt.time)
def _convert_temporal(value: dt.date | dt.time) -> str:
    return value.isoformat()


# =============================================================================
# ENVIRONMENT
# =============================================================================


def runtime_marker_present(marker: str) -> bool:
    """True when the marker module `marker` can be imported."""
    throw_if_null_or_empty(marker, "marker")
    try:
        return importlib.util.find_spec(marker) is not None
    except (ImportError, ValueError):
        return False


def is_pypy_runtime() -> bool:
    """
    Please don't use this unless absolutely necessary.

    True when running under PyPy, for working around runtime differences.
    """
    present = runtime_marker_present(PYPY_MARKER_MODULE)
    logger.debug("Runtime marker %s present: %s", PYPY_MARKER_MODULE, present)
    return present
