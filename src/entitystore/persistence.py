"""
Record codec: insert, update, delete and load of mapped records.

Loading follows relationships. Reference fields load the referenced row
and inverse fields query the related table for rows pointing back at the
record being loaded. A `PrecursorSet` shared across one graph load holds
every record materialised so far, so a relationship that circles back
returns the record already being built instead of loading it again.
"""
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from entitystore.cursor import NOT_FOUND, RowCursor
from entitystore.exceptions import InstantiationFailure, SchemaMismatch
from entitystore.sql import NULL, build_delete_sql, build_insert_sql
from entitystore.sql import build_select_sql, build_update_sql

if TYPE_CHECKING:
    from entitystore.connection import StoreHandle
    from entitystore.context import EntityContext
    from entitystore.mapping import EntityMapping, FieldDescriptor

logger = logging.getLogger(__name__)

__all__ = [
    'NO_GENERATED_KEY',
    'PrecursorSet',
    'encode_field_value',
    'insert',
    'update',
    'delete',
    'load',
    'load_all',
    'load_by_key',
]

NO_GENERATED_KEY = -1


class PrecursorSet:
    """Records materialised during one graph load, keyed by (type, primary key).
    """

    def __init__(self) -> None:
        self._records: dict[tuple[type, Any], Any] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._records.values())

    def __contains__(self, record: Any) -> bool:
        return any(r is record for r in self._records.values())

    def find(self, record_type: type, key: Any) -> Any | None:
        return self._records.get((record_type, key))

    def add(self, record: Any, key: Any) -> None:
        self._records[(type(record), key)] = record


def encode_field_value(mapping: 'EntityMapping', record: Any, field: 'FieldDescriptor',
                       handle: 'StoreHandle | None', context: 'EntityContext') -> str:
    """Encode one field of a record as SQL literal text.

    A field that cannot be read is logged and stored as null rather than
    failing the whole statement.
    """
    try:
        value = getattr(record, field.name)
    except AttributeError as err:
        logger.warning(f'Could not read {mapping.record_type.__name__}.{field.name}, storing null: {err}')
        return NULL
    if value is None:
        return NULL
    return context.registry.encode(value, handle, context)


def _key_clause(mapping: 'EntityMapping', key: Any, handle, context) -> str:
    return f'{mapping.primary_key.column}={context.registry.encode(key, handle, context)}'


def insert(mapping: 'EntityMapping', record: Any, handle: 'StoreHandle',
           context: 'EntityContext') -> int:
    """Insert a record and return its generated key.

    Integral keys are generated by the store and assigned back to the
    record; other keys are written as given and `NO_GENERATED_KEY` is
    returned.
    """
    columns, values = [], []
    for field in mapping.fields:
        if field is mapping.primary_key and mapping.auto_increment:
            continue
        columns.append(field.column)
        values.append(encode_field_value(mapping, record, field, handle, context))

    handle.execute(build_insert_sql(mapping.table_name, columns, values))

    if not mapping.auto_increment:
        return NO_GENERATED_KEY
    key = handle.last_insert_id()
    setattr(record, mapping.primary_key.name, key)
    logger.debug(f'Inserted {mapping.record_type.__name__} with {mapping.primary_key.column}={key}')
    return key


def update(mapping: 'EntityMapping', record: Any, handle: 'StoreHandle',
           context: 'EntityContext') -> int:
    """Write every non-key field of a stored record and return the affected row count.
    """
    assignments = [
        f'{field.column}={encode_field_value(mapping, record, field, handle, context)}'
        for field in mapping.fields
        if field is not mapping.primary_key
    ]
    if not assignments:
        logger.debug(f'Skipping update of {mapping.record_type.__name__}: no columns besides the key')
        return 0
    key = getattr(record, mapping.primary_key.name)
    sql = build_update_sql(mapping.table_name, assignments, _key_clause(mapping, key, handle, context))
    return handle.execute(sql)


def delete(mapping: 'EntityMapping', record: Any, handle: 'StoreHandle',
           context: 'EntityContext') -> int:
    """Delete the row of a stored record; transient records issue nothing.
    """
    if record.is_transient:
        logger.debug(f'Skipping delete of transient {mapping.record_type.__name__}')
        return 0
    key = getattr(record, mapping.primary_key.name)
    return handle.execute(build_delete_sql(mapping.table_name, _key_clause(mapping, key, handle, context)))


def _column_index(mapping: 'EntityMapping', cursor: RowCursor, field: 'FieldDescriptor') -> int:
    index = cursor.column_index(field.column)
    if index == NOT_FOUND:
        logger.error(f'Column {field.column} of {mapping.table_name} missing from result {cursor.columns}')
        raise SchemaMismatch(
            f'Result has no column {field.column} for {mapping.record_type.__name__}.{field.name}; '
            f'table {mapping.table_name} does not match the record type')
    return index


def _instantiate(record_type: type) -> Any:
    try:
        return record_type()
    except Exception as err:
        logger.error(f'Could not instantiate {record_type.__name__}: {err}')
        raise InstantiationFailure(f'Could not instantiate {record_type.__name__} without arguments') from err


def load(context: 'EntityContext', mapping: 'EntityMapping', cursor: RowCursor,
         handle: 'StoreHandle | None', precursors: PrecursorSet | None = None) -> Any:
    """Build a record from the current cursor row.

    If `precursors` already holds a record of this type with the row's key
    that record is returned as it is. Otherwise the new record joins
    `precursors` before its other fields are decoded.
    """
    key_field = mapping.primary_key
    index = _column_index(mapping, cursor, key_field)
    key = key_field.codec.decode(cursor, index, key_field.python_type, handle, precursors, context)

    if precursors is None:
        precursors = PrecursorSet()
    else:
        existing = precursors.find(mapping.record_type, key)
        if existing is not None:
            return existing

    record = _instantiate(mapping.record_type)
    setattr(record, key_field.name, key)
    record._transient = False
    record._context = context
    precursors.add(record, key)

    for field in mapping.fields:
        if field is key_field:
            continue
        index = _column_index(mapping, cursor, field)
        value = field.codec.decode(cursor, index, field.python_type, handle, precursors, context)
        setattr(record, field.name, value)

    for field in mapping.inverse_fields:
        codec = context.registry.resolve(field.python_type)
        setattr(record, field.name, codec.decode_inverse(field, mapping, record, handle, precursors, context))

    return record


def load_all(context: 'EntityContext', mapping: 'EntityMapping', cursor: RowCursor,
             handle: 'StoreHandle | None') -> list:
    """Load every row of a cursor, each row starting its own graph.
    """
    records = []
    if cursor.move_to_first():
        records.append(load(context, mapping, cursor, handle))
        while cursor.move_to_next():
            records.append(load(context, mapping, cursor, handle))
    return records


def load_by_key(context: 'EntityContext', mapping: 'EntityMapping', key: Any,
                handle: 'StoreHandle', precursors: PrecursorSet | None = None) -> Any | None:
    """Load the record stored under `key`, or None if there is no such row.
    """
    context.get_mapping_ensure_schema(handle, mapping.record_type)
    where = f'{mapping.primary_key.column} = {context.registry.encode(key, handle, context)}'
    cursor = handle.query(build_select_sql(mapping.table_name, where=where, limit=1))
    try:
        if not cursor.move_to_first():
            logger.debug(f'No {mapping.record_type.__name__} stored with key {key!r}')
            return None
        return load(context, mapping, cursor, handle, precursors)
    finally:
        cursor.close()
