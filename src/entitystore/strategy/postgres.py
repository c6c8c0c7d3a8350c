"""
PostgreSQL-specific strategy implementation.

It handles PostgreSQL's particular features such as:
- Sequences behind BIGSERIAL keys, read back with `lastval()`
- Type names that differ from the registry's (no TINYINT, DOUBLE PRECISION)
"""
import logging
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from entitystore.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from entitystore.options import DatabaseOptions

logger = logging.getLogger(__name__)

_TYPE_NAMES = {
    'TINYINT': 'SMALLINT',
    'INTEGER': 'BIGINT',
    'FLOAT': 'REAL',
    'DOUBLE': 'DOUBLE PRECISION',
}


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for PostgreSQL."""
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)

        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port or None,
            database=options.database,
            query=query
        )

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for PostgreSQL."""
        return {}

    def last_insert_id_sql(self) -> str:
        return 'SELECT lastval()'

    def column_type(self, sql_type: str) -> str:
        base, _, rest = sql_type.partition(' ')
        translated = _TYPE_NAMES.get(base.upper(), base)
        return f'{translated} {rest}' if rest else translated

    def primary_key_definition(self, sql_type: str, autoincrement: bool) -> str:
        if autoincrement:
            return 'BIGSERIAL PRIMARY KEY'
        return f'{self.column_type(sql_type)} PRIMARY KEY'

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for PostgreSQL connections."""
        return ['hostname', 'username', 'password', 'database']
