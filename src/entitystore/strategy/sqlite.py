"""
SQLite-specific strategy implementation.

It handles SQLite's particular features such as:
- File-per-database storage, with `:memory:` databases shared through a StaticPool
- `last_insert_rowid()` for generated keys
- AUTOINCREMENT, which is only accepted on an `INTEGER PRIMARY KEY` column
- Foreign key enforcement being opt-in per connection
"""
import logging
import pathlib
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from entitystore.strategy.base import DatabaseStrategy, register_strategy
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from entitystore.options import DatabaseOptions

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ':memory:'


def is_memory_database(options: 'DatabaseOptions') -> bool:
    return options.database == MEMORY_DATABASE


def database_path(options: 'DatabaseOptions') -> pathlib.Path | None:
    """Resolve the file backing a SQLite database, or None when in memory.
    """
    if is_memory_database(options):
        return None
    path = pathlib.Path(options.database).expanduser()
    if not path.is_absolute() and options.directory:
        path = pathlib.Path(options.directory).expanduser() / path
    return path


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        path = database_path(options)
        return sa.URL.create(drivername='sqlite', database=str(path) if path else None)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite.

        In-memory databases live as long as their single connection, so
        every handle must share it.
        """
        if is_memory_database(options):
            return {
                'poolclass': StaticPool,
                'connect_args': {'check_same_thread': False},
            }
        return {}

    def configure_connection(self, conn: Any, options: 'DatabaseOptions | None' = None) -> None:
        """Configure connection settings for SQLite.
        """
        if options is not None and options.enforce_foreign_keys:
            conn.execute('PRAGMA foreign_keys = ON')

    def last_insert_id_sql(self) -> str:
        return 'SELECT last_insert_rowid()'

    def primary_key_definition(self, sql_type: str, autoincrement: bool) -> str:
        if autoincrement:
            return 'INTEGER PRIMARY KEY AUTOINCREMENT'
        return f'{sql_type} PRIMARY KEY'

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']
