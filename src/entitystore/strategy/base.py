"""
Base strategy interface for dialect-specific behaviour.

The engine renders one SQL text for every dialect it supports; the few
places where dialects disagree (connection URLs, the last generated key,
auto-increment primary keys and column type names) are delegated to a
strategy looked up by dialect name.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from entitystore.connection import StoreHandle
    from entitystore.options import DatabaseOptions

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for dialect-specific operations.
    """

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier."""

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> Any:
        """Build the SQLAlchemy connection URL for these options."""

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect."""
        return {}

    def configure_connection(self, conn: Any, options: 'DatabaseOptions | None' = None) -> None:
        """Apply per-connection settings to a freshly opened DBAPI connection."""

    @abstractmethod
    def last_insert_id_sql(self) -> str:
        """Return the statement that selects the key generated by the last INSERT."""

    def last_insert_id(self, handle: 'StoreHandle') -> int:
        """Retrieve the key generated by the most recent INSERT on this handle.
        """
        cursor = handle.query(self.last_insert_id_sql())
        try:
            if not cursor.move_to_first():
                from entitystore.exceptions import QueryError
                raise QueryError('Failed to get last inserted id after INSERT')
            return cursor.get_long(0)
        finally:
            cursor.close()

    def column_type(self, sql_type: str) -> str:
        """Translate a registry SQL type name to this dialect's spelling."""
        return sql_type

    @abstractmethod
    def primary_key_definition(self, sql_type: str, autoincrement: bool) -> str:
        """Render the type and constraint part of a primary key column.

        Args:
            sql_type: Registry SQL type of the key column
            autoincrement: Whether the store generates key values

        Returns
            Column type and constraint text, e.g. `INTEGER PRIMARY KEY`
        """

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.

        Returns
            List of field names that must have non-None/non-zero values
        """

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Args:
            options: DatabaseOptions to validate

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')
