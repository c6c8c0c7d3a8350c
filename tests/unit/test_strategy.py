"""
Unit tests for dialect strategies.
"""
import pytest
from entitystore.options import DatabaseOptions
from entitystore.strategy import PostgresStrategy, SQLiteStrategy
from entitystore.strategy import get_available_dialects, get_db_strategy
from entitystore.strategy import get_strategy, get_strategy_class
from entitystore.strategy import is_supported_dialect
from entitystore.strategy.sqlite import database_path
from sqlalchemy.pool import StaticPool


@pytest.fixture
def postgres_options():
    return DatabaseOptions(
        drivername='postgresql',
        hostname='testhost',
        username='testuser',
        password='testpass',
        database='testdb',
        port=5433,
        timeout=10,
    )


def test_registered_dialects():
    """Test both dialects register themselves"""
    assert set(get_available_dialects()) >= {'sqlite', 'postgresql'}
    assert is_supported_dialect('sqlite')
    assert not is_supported_dialect('oracle')
    assert get_strategy_class('postgresql') is PostgresStrategy


def test_strategy_instances_are_cached():
    """Test the same strategy instance is returned for a dialect"""
    assert get_strategy('sqlite') is get_strategy('sqlite')
    assert isinstance(get_strategy('sqlite'), SQLiteStrategy)


def test_unknown_dialect():
    """Test unknown dialects are rejected"""
    with pytest.raises(ValueError, match='Unsupported dialect: oracle'):
        get_strategy('oracle')


def test_get_db_strategy_from_connection(mocker):
    """Test strategy lookup through a connection's dialect"""
    conn = mocker.Mock()
    conn.dialect = 'postgresql'
    assert isinstance(get_db_strategy(conn), PostgresStrategy)


class TestSQLiteStrategy:
    """Tests for SQLite DDL and connection settings"""

    def test_primary_key_definition(self):
        strategy = get_strategy('sqlite')
        assert strategy.primary_key_definition('INTEGER', True) == 'INTEGER PRIMARY KEY AUTOINCREMENT'
        assert strategy.primary_key_definition('VARCHAR', False) == 'VARCHAR PRIMARY KEY'

    def test_column_types_unchanged(self):
        strategy = get_strategy('sqlite')
        assert strategy.column_type('TINYINT') == 'TINYINT'
        assert strategy.column_type('INTEGER REFERENCES people(id)') == 'INTEGER REFERENCES people(id)'

    def test_last_insert_id_sql(self):
        assert get_strategy('sqlite').last_insert_id_sql() == 'SELECT last_insert_rowid()'

    def test_memory_database(self):
        options = DatabaseOptions(database=':memory:')
        strategy = get_strategy('sqlite')
        assert database_path(options) is None
        assert strategy.get_engine_kwargs(options)['poolclass'] is StaticPool
        assert strategy.build_connection_url(options).database is None

    def test_file_database_resolved_against_directory(self, tmp_path):
        options = DatabaseOptions(database='people.db', directory=str(tmp_path))
        strategy = get_strategy('sqlite')
        assert database_path(options) == tmp_path / 'people.db'
        assert strategy.build_connection_url(options).database == str(tmp_path / 'people.db')
        assert strategy.get_engine_kwargs(options) == {}

    def test_foreign_keys_pragma(self, mocker):
        conn = mocker.Mock()
        strategy = get_strategy('sqlite')

        strategy.configure_connection(conn, DatabaseOptions(database=':memory:'))
        conn.execute.assert_not_called()

        strategy.configure_connection(conn, DatabaseOptions(database=':memory:', enforce_foreign_keys=True))
        conn.execute.assert_called_once_with('PRAGMA foreign_keys = ON')


class TestPostgresStrategy:
    """Tests for PostgreSQL DDL and connection settings"""

    def test_connection_url(self, postgres_options):
        url = get_strategy('postgresql').build_connection_url(postgres_options)
        assert url.drivername == 'postgresql+psycopg'
        assert url.host == 'testhost'
        assert url.port == 5433
        assert url.database == 'testdb'
        assert url.query['connect_timeout'] == '10'

    @pytest.mark.parametrize(('sql_type', 'expected'), [
        ('TINYINT', 'SMALLINT'),
        ('INTEGER', 'BIGINT'),
        ('DOUBLE', 'DOUBLE PRECISION'),
        ('FLOAT', 'REAL'),
        ('VARCHAR', 'VARCHAR'),
        ('BIGINT', 'BIGINT'),
        ('INTEGER REFERENCES people(id)', 'BIGINT REFERENCES people(id)'),
    ])
    def test_column_type(self, sql_type, expected):
        assert get_strategy('postgresql').column_type(sql_type) == expected

    def test_primary_key_definition(self):
        strategy = get_strategy('postgresql')
        assert strategy.primary_key_definition('INTEGER', True) == 'BIGSERIAL PRIMARY KEY'
        assert strategy.primary_key_definition('VARCHAR', False) == 'VARCHAR PRIMARY KEY'

    def test_last_insert_id_sql(self):
        assert get_strategy('postgresql').last_insert_id_sql() == 'SELECT lastval()'

    def test_required_options(self):
        assert PostgresStrategy.get_required_options() == ['hostname', 'username', 'password', 'database']
