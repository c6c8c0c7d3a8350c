"""
Schema synthesis for mapped record types.

Tables are created lazily, the first time a mapping is used against a
store, with `CREATE TABLE IF NOT EXISTS`. There is no migration: a table
left over from an older shape of a record type is used as it is.
"""
import logging
from typing import TYPE_CHECKING

from entitystore.sql import build_create_table_sql
from entitystore.types import EntityTypeMapping

if TYPE_CHECKING:
    from entitystore.connection import StoreHandle
    from entitystore.context import EntityContext
    from entitystore.mapping import EntityMapping
    from entitystore.strategy import DatabaseStrategy

logger = logging.getLogger(__name__)

__all__ = ['column_definitions', 'create_table_sql', 'ensure_schema']


def column_definitions(mapping: 'EntityMapping', context: 'EntityContext',
                       strategy: 'DatabaseStrategy') -> list[str]:
    """Render `<column> <type>` for every persisted field, primary key constraint included.
    """
    definitions = []
    for field in mapping.fields:
        sql_type = field.codec.sql_type(field.python_type, context)
        if field is mapping.primary_key:
            definition = strategy.primary_key_definition(sql_type, mapping.auto_increment)
        else:
            definition = strategy.column_type(sql_type)
        definitions.append(f'{field.column} {definition}')
    return definitions


def create_table_sql(mapping: 'EntityMapping', context: 'EntityContext',
                     strategy: 'DatabaseStrategy') -> str:
    return build_create_table_sql(mapping.table_name, column_definitions(mapping, context, strategy))


def _referenced_mappings(mapping: 'EntityMapping', context: 'EntityContext') -> list['EntityMapping']:
    referenced = []
    for field in mapping.fields:
        if isinstance(field.codec, EntityTypeMapping):
            other = context.get_mapping(field.python_type)
            if other is not mapping:
                referenced.append(other)
    return referenced


def ensure_schema(mapping: 'EntityMapping', handle: 'StoreHandle', context: 'EntityContext',
                  _pending: set[type] | None = None) -> None:
    """Create the table of a mapping unless this process already did.

    Tables the mapping references are created first so stores that check
    REFERENCES clauses at creation accept it.
    """
    if mapping.schema_created:
        return
    pending = _pending if _pending is not None else set()
    pending.add(mapping.record_type)
    for other in _referenced_mappings(mapping, context):
        if other.record_type not in pending:
            ensure_schema(other, handle, context, pending)

    sql = create_table_sql(mapping, context, handle.strategy)
    handle.execute(sql)
    handle.mark_schema_created(mapping)
    logger.debug(f'Ensured table {mapping.table_name} for {mapping.record_type.__name__}')
