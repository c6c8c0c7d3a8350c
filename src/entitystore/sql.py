"""
SQL text generation for mapped tables.

Statements are rendered with literal values already encoded by the type
registry, so nothing here deals with placeholders or parameters.

Main entry points:
- `build_create_table_sql()` - CREATE TABLE IF NOT EXISTS
- `build_insert_sql()`, `build_update_sql()`, `build_delete_sql()`
- `build_select_sql()` - SELECT * with WHERE / ORDER BY / LIMIT
- `escape_string()` - quote a text value as a SQL string literal
"""
import logging
from collections.abc import Sequence

logger = logging.getLogger(__name__)

NULL = 'null'


def escape_string(value: str) -> str:
    """Quote text as a SQL string literal, doubling embedded quotes.

    >>> escape_string("O'Brien")
    "'O''Brien'"
    """
    return "'" + value.replace("'", "''") + "'"


def strip_trailing_separator(text: str, separator: str = ',') -> str:
    """Remove a single trailing separator left behind by a column loop.
    """
    text = text.rstrip()
    if text.endswith(separator):
        return text[:-len(separator)]
    return text


def join_columns(columns: Sequence[str], separator: str = ', ') -> str:
    return strip_trailing_separator(separator.join(col for col in columns if col), separator.strip())


def build_create_table_sql(table: str, column_definitions: Sequence[str]) -> str:
    """Generate an idempotent CREATE TABLE statement.

    Args:
        table: Table name
        column_definitions: Rendered `<column> <type> [constraints]` entries

    Returns
        SQL statement string
    """
    return f'CREATE TABLE IF NOT EXISTS {table} ({join_columns(column_definitions)})'


def build_insert_sql(table: str, columns: Sequence[str], values: Sequence[str]) -> str:
    """Generate an INSERT statement from parallel column and literal lists.

    A table whose only column is an auto-generated key gets DEFAULT VALUES.
    """
    if len(columns) != len(values):
        raise ValueError(f'Got {len(columns)} columns but {len(values)} values for {table}')
    if not columns:
        return f'INSERT INTO {table} DEFAULT VALUES'
    return f'INSERT INTO {table} ({join_columns(columns)}) VALUES ({join_columns(values)})'


def build_update_sql(table: str, assignments: Sequence[str], where: str) -> str:
    """Generate an UPDATE statement from rendered `column=value` assignments.
    """
    return f'UPDATE {table} SET {join_columns(assignments, ",")} WHERE {where}'


def build_delete_sql(table: str, where: str) -> str:
    return f'DELETE FROM {table} WHERE {where}'


def build_select_sql(table: str, where: str | None = None,
                     order_by: Sequence[str] | None = None,
                     limit: int | None = None) -> str:
    """Generate a SELECT statement for a mapped table.

    Args:
        table: Table name
        where: WHERE clause (without 'WHERE' keyword)
        order_by: Columns for ORDER BY
        limit: LIMIT value

    Returns
        SQL query string
    """
    sql = f'SELECT * FROM {table}'

    if where:
        sql += f' WHERE {where}'

    if order_by:
        sql += f' ORDER BY {join_columns(order_by)}'

    if limit is not None:
        sql += f' LIMIT {limit}'

    return sql
