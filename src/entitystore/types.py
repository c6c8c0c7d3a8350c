"""
Type mappings between Python values and SQL literal text.

Each `TypeMapping` pairs a Python type with
1. The SQL column type used when a table is created
2. An encoder rendering a value as literal SQL text
3. A decoder reading the value back from a `RowCursor` column

Mappings are matched by subclass, so the entity reference mapping handles
every record type and the date mapping handles `date` but loses to the
datetime mapping for `datetime` values once both are registered.
"""
import datetime
import decimal
import logging
import math
import pathlib
import urllib.parse
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import dateutil.parser
import numpy as np
from dateutil import tz
from entitystore.exceptions import MappingError, TransientEntityError
from entitystore.exceptions import TypeConversionError, UnmappableType
from entitystore.sql import NULL, build_select_sql, escape_string

if TYPE_CHECKING:
    from entitystore.connection import StoreHandle
    from entitystore.context import EntityContext
    from entitystore.cursor import RowCursor
    from entitystore.mapping import EntityMapping, FieldDescriptor
    from entitystore.persistence import PrecursorSet

logger = logging.getLogger(__name__)

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=tz.UTC)
ONE_MILLISECOND = datetime.timedelta(milliseconds=1)


class TypeMapping:
    """Base class for codecs.

    Subclasses override `encode_value` and `decode_value`; the base
    class takes care of SQL nulls in both directions.
    """

    def __init__(self, python_type: type, sql_type: str) -> None:
        self.python_type = python_type
        self.sql_type_name = sql_type

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.python_type.__name__} -> {self.sql_type_name}>'

    def handles(self, python_type: Any) -> bool:
        """Check if values of `python_type` can be stored with this mapping.
        """
        return isinstance(python_type, type) and issubclass(python_type, self.python_type)

    def sql_type(self, python_type: type, context: 'EntityContext | None' = None) -> str:
        """Return the SQL column type for a field declared as `python_type`."""
        return self.sql_type_name

    def encode(self, value: Any, handle: 'StoreHandle | None' = None,
               context: 'EntityContext | None' = None) -> str:
        """Render a value as SQL literal text."""
        if value is None:
            return NULL
        return self.encode_value(value)

    def encode_value(self, value: Any) -> str:
        raise NotImplementedError

    def decode(self, cursor: 'RowCursor', index: int, python_type: type,
               handle: 'StoreHandle | None' = None,
               precursors: 'PrecursorSet | None' = None,
               context: 'EntityContext | None' = None) -> Any:
        """Read column `index` of the current cursor row as `python_type`."""
        if cursor.is_null(index):
            return None
        return self.decode_value(cursor, index, python_type)

    def decode_value(self, cursor: 'RowCursor', index: int, python_type: type) -> Any:
        raise NotImplementedError


class IntegerTypeMapping(TypeMapping):

    def encode_value(self, value: Any) -> str:
        return str(int(value))

    def decode_value(self, cursor, index, python_type):
        value = cursor.get_long(index)
        if python_type is None or python_type is self.python_type:
            return value
        return python_type(value)


class BooleanTypeMapping(TypeMapping):
    """Booleans are stored as 0/1 integers."""

    def encode_value(self, value: Any) -> str:
        return '1' if value else '0'

    def decode_value(self, cursor, index, python_type):
        return cursor.get_long(index) != 0


class FloatTypeMapping(TypeMapping):
    """Floating point values; NaN and infinities have no SQL literal and are stored as null."""

    def encode_value(self, value: Any) -> str:
        value = float(value)
        if not math.isfinite(value):
            return NULL
        return repr(value)

    def decode_value(self, cursor, index, python_type):
        return cursor.get_double(index)


class DecimalTypeMapping(TypeMapping):

    def encode_value(self, value: Any) -> str:
        if not value.is_finite():
            return NULL
        return str(value)

    def decode_value(self, cursor, index, python_type):
        return decimal.Decimal(cursor.get_string(index))


class StringTypeMapping(TypeMapping):

    def encode_value(self, value: Any) -> str:
        return escape_string(str(value))

    def decode_value(self, cursor, index, python_type):
        return cursor.get_string(index)


def to_epoch_millis(value: datetime.datetime) -> int:
    """Milliseconds since the epoch; naive datetimes are taken as UTC.

    >>> to_epoch_millis(datetime.datetime(1970, 1, 1, 0, 0, 1))
    1000
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz.UTC)
    return (value - EPOCH) // ONE_MILLISECOND


def from_epoch_millis(value: Any) -> datetime.datetime:
    """Inverse of `to_epoch_millis`, returning an aware UTC datetime.

    Text that is not a number is parsed as an ISO timestamp, which is how
    tables written by older versions stored dates.
    """
    if isinstance(value, (bytes, str)):
        text = value.decode() if isinstance(value, bytes) else value
        try:
            value = int(text)
        except ValueError:
            parsed = dateutil.parser.parse(text)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=tz.UTC)
            return parsed.astimezone(tz.UTC)
    return EPOCH + datetime.timedelta(milliseconds=int(value))


class DateTimeTypeMapping(TypeMapping):
    """Datetimes are stored as BIGINT epoch milliseconds."""

    def encode_value(self, value: datetime.datetime) -> str:
        return str(to_epoch_millis(value))

    def decode_value(self, cursor, index, python_type):
        return from_epoch_millis(cursor.get_value(index))


class DateTypeMapping(TypeMapping):
    """Dates are stored as the epoch milliseconds of their UTC midnight."""

    def encode_value(self, value: datetime.date) -> str:
        midnight = datetime.datetime.combine(value, datetime.time(), tzinfo=tz.UTC)
        return str(to_epoch_millis(midnight))

    def decode_value(self, cursor, index, python_type):
        return from_epoch_millis(cursor.get_value(index)).date()


class LocatorTypeMapping(TypeMapping):
    """Opaque locators (UUIDs, paths, URLs) stored as text.

    Null and the empty string both decode to None.
    """

    def __init__(self, python_type: type, sql_type: str = 'VARCHAR',
                 to_text: Callable[[Any], str] = str,
                 from_text: Callable[[type, str], Any] | None = None) -> None:
        super().__init__(python_type, sql_type)
        self.to_text = to_text
        self.from_text = from_text or (lambda python_type, text: python_type(text))

    def encode_value(self, value: Any) -> str:
        return escape_string(self.to_text(value))

    def decode(self, cursor, index, python_type, handle=None, precursors=None, context=None):
        text = cursor.get_string(index)
        if not text:
            return None
        return self.from_text(python_type or self.python_type, text)


class NumpyTypeMapping(TypeMapping):
    """Numpy scalars keep their width in the column type and come back as the declared scalar type."""

    def encode_value(self, value: Any) -> str:
        item = value.item()
        if isinstance(item, bool):
            return '1' if item else '0'
        if isinstance(item, float) and not math.isfinite(item):
            return NULL
        return repr(item)

    def decode_value(self, cursor, index, python_type):
        python_type = python_type or self.python_type
        if issubclass(python_type, np.bool_):
            return python_type(cursor.get_long(index) != 0)
        if issubclass(python_type, np.floating):
            return python_type(cursor.get_double(index))
        return python_type(cursor.get_long(index))


class StringifyTypeMapping(TypeMapping):
    """Best-effort fallback: store `str(value)` and rebuild with the declared type's constructor.
    """

    def __init__(self) -> None:
        super().__init__(object, 'VARCHAR')

    def encode_value(self, value: Any) -> str:
        return escape_string(str(value))

    def decode_value(self, cursor, index, python_type):
        text = cursor.get_string(index)
        if python_type is None or python_type in {object, str}:
            return text
        try:
            return python_type(text)
        except (TypeError, ValueError) as err:
            logger.debug(f'Could not rebuild {python_type.__name__} from {text!r}: {err}')
            return text


class EntityTypeMapping(TypeMapping):
    """References to other records, stored as the referenced primary key.

    Encoding a transient record saves it first when a handle is available.
    Decoding loads the referenced row, reusing a record already
    materialised in the current graph load.
    """

    def __init__(self, python_type: type) -> None:
        super().__init__(python_type, 'INTEGER')

    def _context(self, context):
        if context is None:
            from entitystore.context import get_context
            context = get_context()
        return context

    def sql_type(self, python_type: type, context: 'EntityContext | None' = None) -> str:
        context = self._context(context)
        mapping = context.get_mapping(python_type)
        key = mapping.primary_key
        key_type = context.registry.sql_type(key.python_type, context)
        return f'{key_type} REFERENCES {mapping.table_name}({key.column})'

    def encode(self, value: Any, handle: 'StoreHandle | None' = None,
               context: 'EntityContext | None' = None) -> str:
        if value is None:
            return NULL
        context = self._context(context)
        if value.is_transient:
            if handle is None:
                raise TransientEntityError(
                    f'Cannot reference transient {type(value).__name__} without a store handle to save it')
            logger.debug(f'Saving transient {type(value).__name__} referenced by another record')
            value.save(handle, context)
        key = getattr(value, context.get_mapping(type(value)).primary_key.name, None)
        return context.registry.encode(key, handle, context)

    def decode(self, cursor, index, python_type, handle=None, precursors=None, context=None):
        if cursor.is_null(index):
            return None
        from entitystore import persistence

        context = self._context(context)
        mapping = context.get_mapping(python_type)
        key_field = mapping.primary_key
        key = key_field.codec.decode(cursor, index, key_field.python_type, handle, precursors, context)
        if precursors is not None:
            existing = precursors.find(python_type, key)
            if existing is not None:
                return existing
        if handle is None:
            raise TypeConversionError(
                f'Cannot load referenced {python_type.__name__} without a store handle')
        return persistence.load_by_key(context, mapping, key, handle, precursors)

    def query_inverse(self, field: 'FieldDescriptor', related_type: type,
                      owner_mapping: 'EntityMapping', owner: Any, handle: 'StoreHandle',
                      precursors: 'PrecursorSet | None', context: 'EntityContext') -> list:
        """Load every `related_type` row whose reference column points at `owner`.
        """
        from entitystore import persistence

        if handle is None:
            raise TypeConversionError(
                f'Cannot load {owner_mapping.record_type.__name__}.{field.name} without a store handle')
        mapping = context.get_mapping_ensure_schema(handle, related_type)
        column = mapping.column_for(field.inverse)
        if column is None:
            logger.error(f'{related_type.__name__} has no field or column {field.inverse!r}')
            raise MappingError(
                f'{owner_mapping.record_type.__name__}.{field.name}: '
                f'{related_type.__name__} has no field or column {field.inverse!r}')
        owner_key = context.registry.encode(getattr(owner, owner_mapping.primary_key.name), handle, context)
        sql = build_select_sql(mapping.table_name, where=f'{column} = {owner_key}')
        cursor = handle.query(sql)
        records = []
        try:
            if cursor.move_to_first():
                records.append(persistence.load(context, mapping, cursor, handle, precursors))
                while cursor.move_to_next():
                    records.append(persistence.load(context, mapping, cursor, handle, precursors))
        finally:
            cursor.close()
        return records

    def decode_inverse(self, field, owner_mapping, owner, handle, precursors, context):
        records = self.query_inverse(field, field.python_type, owner_mapping, owner,
                                     handle, precursors, context)
        return records[0] if records else None


class ListTypeMapping(TypeMapping):
    """Homogeneous lists of records, only usable on inverse fields.
    """

    def __init__(self) -> None:
        super().__init__(list, '')

    def sql_type(self, python_type, context=None):
        raise UnmappableType('List fields have no column and must be declared inverse')

    def encode(self, value, handle=None, context=None):
        raise TypeConversionError('List fields are never written and must be declared inverse')

    def decode(self, cursor, index, python_type, handle=None, precursors=None, context=None):
        raise TypeConversionError('List fields are never read from a column and must be declared inverse')

    def decode_inverse(self, field, owner_mapping, owner, handle, precursors, context):
        codec = context.registry.resolve(field.element_type)
        if not isinstance(codec, EntityTypeMapping):
            raise UnmappableType(f'{field.name}: list elements must be record types')
        records = codec.query_inverse(field, field.element_type, owner_mapping, owner,
                                      handle, precursors, context)
        return field.python_type(records)


def _parse_url(python_type: type, text: str) -> urllib.parse.ParseResult:
    return urllib.parse.urlparse(text)


def builtin_type_mappings() -> list[TypeMapping]:
    """Return the built-in mappings in registration order.

    Generic types come first so the more specific ones registered after
    them are found first.
    """
    return [
        IntegerTypeMapping(int, 'INTEGER'),
        BooleanTypeMapping(bool, 'TINYINT'),
        FloatTypeMapping(float, 'DOUBLE'),
        DecimalTypeMapping(decimal.Decimal, 'NUMERIC'),
        StringTypeMapping(str, 'VARCHAR'),
        DateTypeMapping(datetime.date, 'BIGINT'),
        DateTimeTypeMapping(datetime.datetime, 'BIGINT'),
        LocatorTypeMapping(uuid.UUID),
        LocatorTypeMapping(pathlib.PurePath),
        LocatorTypeMapping(urllib.parse.ParseResult,
                           to_text=urllib.parse.urlunparse, from_text=_parse_url),
        NumpyTypeMapping(np.floating, 'DOUBLE'),
        NumpyTypeMapping(np.float32, 'FLOAT'),
        NumpyTypeMapping(np.int8, 'TINYINT'),
        NumpyTypeMapping(np.int16, 'SMALLINT'),
        NumpyTypeMapping(np.int32, 'INTEGER'),
        NumpyTypeMapping(np.int64, 'BIGINT'),
        NumpyTypeMapping(np.bool_, 'TINYINT'),
        ListTypeMapping(),
    ]
