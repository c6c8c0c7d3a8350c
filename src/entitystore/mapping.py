"""
Mapping builder: from a record type to its table description.

Record types declare fields as class annotations. The builder walks the
class hierarchy most-derived first, drops names already seen (shadowing),
skips storage constants and private names, and classifies what remains:

- persisted fields get a column and a codec from the type registry
- inverse fields have no column and are loaded by a secondary query
- ignored fields are never touched

Exactly one persisted field becomes the primary key: the first declared
with `column(primary_key=True)`, else the first named `id` or `_id`.
"""
import enum
import functools
import inspect
import logging
import re
import types
import typing
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Final

from entitystore.exceptions import MappingError, MissingPrimaryKey
from entitystore.exceptions import NoMappingFound, UnmappableType

if TYPE_CHECKING:
    from entitystore.registry import TypeRegistry
    from entitystore.types import TypeMapping

logger = logging.getLogger(__name__)

__all__ = [
    'column',
    'ColumnInfo',
    'EntityMapping',
    'FieldDescriptor',
    'FieldRole',
    'build_mapping',
    'reflect_fields',
    'field_defaults',
    'table_name_for',
]

PRIMARY_KEY_NAMES = ('id', '_id')

_MISSING = object()


class ColumnInfo:
    """Per-field mapping options, declared as the field's class attribute.

    Reading the attribute on an instance that has no value of its own
    raises AttributeError.
    """

    def __init__(self, name: str | None = None, primary_key: bool = False,
                 inverse: str | None = None, ignore: bool = False, force: bool = False,
                 default: Any = None, default_factory: Callable[[], Any] | None = None) -> None:
        if default is not None and default_factory is not None:
            raise ValueError('cannot specify both default and default_factory')
        self.name = name
        self.primary_key = primary_key
        self.inverse = inverse
        self.ignore = ignore
        self.force = force
        self.default = default
        self.default_factory = default_factory
        self.field_name = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.field_name = name

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        raise AttributeError(f'{type(instance).__name__!r} object has no value for field {self.field_name!r}')

    def __repr__(self) -> str:
        options = {k: v for k, v in vars(self).items() if v and k != 'field_name'}
        return f'column({", ".join(f"{k}={v!r}" for k, v in options.items())})'


def column(name: str | None = None, *, primary_key: bool = False, inverse: str | None = None,
           ignore: bool = False, force: bool = False, default: Any = None,
           default_factory: Callable[[], Any] | None = None) -> Any:
    """Customise how a field is mapped.

    Args:
        name: Column name, defaults to the field name
        primary_key: Use this field as the primary key
        inverse: Make this a relationship back-reference; names the field
            (or column) on the related type that points back at this record
        ignore: Never map this field
        force: Map the field even though its name is private
        default: Value given to new records
        default_factory: Callable producing the value for new records

    Examples
        class Person(Entity):
            id: int
            name: str = column('full_name')
            employer: Department | None = None

        class Department(Entity):
            id: int
            people: list[Person] = column(inverse='employer')
    """
    return ColumnInfo(name=name, primary_key=primary_key, inverse=inverse, ignore=ignore,
                      force=force, default=default, default_factory=default_factory)


class FieldRole(enum.Enum):
    PERSISTED = 'persisted'
    INVERSE = 'inverse'


@dataclass(frozen=True)
class FieldDescriptor:
    """One mapped field of a record type."""
    name: str
    column: str
    role: FieldRole
    python_type: type
    element_type: type | None = None
    inverse: str | None = None
    codec: 'TypeMapping' = field(default=None, compare=False, repr=False)


@dataclass
class EntityMapping:
    """Table description of one record type.

    Only `schema_created` changes after the mapping is built.
    """
    record_type: type
    table_name: str
    fields: tuple[FieldDescriptor, ...]
    primary_key: FieldDescriptor
    inverse_fields: tuple[FieldDescriptor, ...] = ()
    schema_created: bool = field(default=False, compare=False)

    @property
    def columns(self) -> list[str]:
        return [f.column for f in self.fields]

    @property
    def auto_increment(self) -> bool:
        """Whether the store generates primary key values (integral keys)."""
        key_type = self.primary_key.python_type
        return issubclass(key_type, int) and not issubclass(key_type, bool)

    def field(self, name: str) -> FieldDescriptor | None:
        for f in self.fields + self.inverse_fields:
            if f.name == name:
                return f
        return None

    def column_for(self, name: str) -> str | None:
        """Column of the persisted field called `name`, or `name` itself if it is a column.
        """
        for f in self.fields:
            if f.name == name:
                return f.column
        for f in self.fields:
            if f.column.lower() == name.lower():
                return f.column
        return None


def table_name_for(record_type: type) -> str:
    """Table name of a record type: `__tablename__`, else its qualified name with non-identifier characters removed.
    """
    explicit = vars(record_type).get('__tablename__')
    if explicit:
        return explicit
    return re.sub(r'\W', '', f'{record_type.__module__}.{record_type.__qualname__}')


def _mapped_classes(record_type: type) -> list[type]:
    from entitystore.entity import Entity

    base = set(Entity.__mro__)
    return [klass for klass in record_type.__mro__ if klass not in base]


def _type_hints(klass: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(klass)
    except NameError as err:
        logger.error(f'Cannot resolve annotations of {klass.__qualname__}: {err}')
        raise UnmappableType(f'Cannot resolve annotations of {klass.__qualname__}: {err}') from err


def reflect_fields(record_type: type) -> list[tuple[type, str, Any]]:
    """Return `(declaring class, name, type hint)` for every annotation of a record type.

    Classes are visited most-derived first; a name declared at several
    levels appears once per level.
    """
    reflected = []
    for klass in _mapped_classes(record_type):
        names = inspect.get_annotations(klass)
        if not names:
            continue
        hints = _type_hints(klass)
        reflected.extend((klass, name, hints[name]) for name in names)
    return reflected


def _is_constant(hint: Any) -> bool:
    return hint is ClassVar or hint is Final or typing.get_origin(hint) in {ClassVar, Final}


def _unwrap_optional(hint: Any) -> Any:
    if typing.get_origin(hint) in {typing.Union, types.UnionType}:
        args = [arg for arg in typing.get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def _split_type(hint: Any) -> tuple[Any, Any]:
    """Return `(python type, element type)` for a field annotation."""
    hint = _unwrap_optional(hint)
    origin = typing.get_origin(hint)
    if isinstance(origin, type) and issubclass(origin, list):
        args = typing.get_args(hint)
        return origin, _unwrap_optional(args[0]) if args else None
    return hint, None


def _is_entity_type(python_type: Any) -> bool:
    from entitystore.entity import Entity

    return isinstance(python_type, type) and issubclass(python_type, Entity)


def _field_options(klass: type, name: str) -> ColumnInfo:
    info = vars(klass).get(name, _MISSING)
    return info if isinstance(info, ColumnInfo) else ColumnInfo()


def _is_private(name: str, info: ColumnInfo) -> bool:
    return name.startswith('_') and name not in PRIMARY_KEY_NAMES and not info.force


def _inverse_field(record_type, name, info, python_type, element_type) -> FieldDescriptor:
    target = element_type if element_type is not None else python_type
    if python_type is list and element_type is None:
        raise UnmappableType(f'{record_type.__name__}.{name}: inverse list needs an element type, e.g. list[Person]')
    if not _is_entity_type(target):
        raise UnmappableType(
            f'{record_type.__name__}.{name}: inverse fields must refer to record types, not {target!r}')
    return FieldDescriptor(name=name, column=info.name or name, role=FieldRole.INVERSE,
                           python_type=python_type, element_type=element_type, inverse=info.inverse)


def build_mapping(record_type: type, registry: 'TypeRegistry') -> EntityMapping:
    """Reflect a record type into an `EntityMapping`.

    Raises
        UnmappableType: If a persisted field's type has no mapping
        MissingPrimaryKey: If no field qualifies as the primary key
        MappingError: If two fields map to the same column
    """
    persisted: list[FieldDescriptor] = []
    inverse: list[FieldDescriptor] = []
    explicit_key = None
    named_key = None
    seen: set[str] = set()

    for klass, name, hint in reflect_fields(record_type):
        if name in seen:
            continue
        seen.add(name)

        if _is_constant(hint):
            continue
        info = _field_options(klass, name)
        if info.ignore or _is_private(name, info):
            continue

        python_type, element_type = _split_type(hint)

        if info.inverse:
            inverse.append(_inverse_field(record_type, name, info, python_type, element_type))
            continue

        if element_type is not None or (isinstance(python_type, type) and issubclass(python_type, list)):
            logger.error(f'{record_type.__name__}.{name} is a list and must be declared inverse')
            raise UnmappableType(f'{record_type.__name__}.{name}: list fields must be declared inverse')

        try:
            codec = registry.resolve(python_type)
        except NoMappingFound as err:
            logger.error(f'{record_type.__name__}.{name}: {err}')
            raise UnmappableType(f'{record_type.__name__}.{name}: {err}') from err

        descriptor = FieldDescriptor(name=name, column=info.name or name, role=FieldRole.PERSISTED,
                                     python_type=python_type, codec=codec)
        persisted.append(descriptor)

        if info.primary_key and explicit_key is None:
            explicit_key = descriptor
        elif name in PRIMARY_KEY_NAMES and named_key is None:
            named_key = descriptor

    primary_key = explicit_key or named_key
    if primary_key is None:
        logger.error(f'No primary key found for {record_type.__name__}')
        raise MissingPrimaryKey(
            f'{record_type.__name__} has no primary key: name a field id or _id, '
            'or declare one with column(primary_key=True)')

    columns = [f.column.lower() for f in persisted]
    duplicates = sorted({c for c in columns if columns.count(c) > 1})
    if duplicates:
        logger.error(f'{record_type.__name__} maps several fields to columns {duplicates}')
        raise MappingError(f'{record_type.__name__} maps several fields to columns {duplicates}')

    mapping = EntityMapping(
        record_type=record_type,
        table_name=table_name_for(record_type),
        fields=tuple(persisted),
        primary_key=primary_key,
        inverse_fields=tuple(inverse),
    )
    logger.debug(f'Built mapping for {record_type.__name__}: table {mapping.table_name}, '
                 f'columns {mapping.columns}, primary key {primary_key.column}')
    return mapping


@functools.cache
def field_defaults(record_type: type) -> dict[str, Callable[[], Any]]:
    """Return a factory for the initial value of every declared field of a record type.
    """
    defaults: dict[str, Callable[[], Any]] = {}
    seen: set[str] = set()
    for klass in _mapped_classes(record_type):
        hints = _type_hints(klass)
        for name in inspect.get_annotations(klass):
            if name in seen:
                continue
            seen.add(name)
            if _is_constant(hints[name]):
                continue
            value = vars(klass).get(name, _MISSING)
            if isinstance(value, ColumnInfo):
                python_type, _ = _split_type(hints[name])
                if value.default_factory is not None:
                    defaults[name] = value.default_factory
                elif value.inverse and isinstance(python_type, type) and issubclass(python_type, list):
                    defaults[name] = python_type
                else:
                    defaults[name] = functools.partial(_constant, value.default)
            elif value is _MISSING:
                defaults[name] = functools.partial(_constant, None)
            else:
                defaults[name] = functools.partial(_constant, value)
    return defaults


def _constant(value: Any) -> Any:
    return value
