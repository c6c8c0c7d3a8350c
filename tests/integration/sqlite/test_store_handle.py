"""
StoreHandle behaviour against a real SQLite connection.
"""
import entitystore
import pytest
from entitystore.strategy.sqlite import SQLiteStrategy


@pytest.fixture
def scratch(sqlite_handle):
    sqlite_handle.execute('CREATE TABLE scratch (id INTEGER PRIMARY KEY AUTOINCREMENT, name VARCHAR)')
    return sqlite_handle


def test_dialect_and_strategy(sqlite_handle):
    assert sqlite_handle.dialect == 'sqlite'
    assert isinstance(sqlite_handle.strategy, SQLiteStrategy)


def test_execute_returns_rowcount(scratch):
    scratch.execute("INSERT INTO scratch (name) VALUES ('a')")
    scratch.execute("INSERT INTO scratch (name) VALUES ('b')")
    assert scratch.execute("UPDATE scratch SET name='c'") == 2
    assert scratch.execute("DELETE FROM scratch WHERE name='missing'") == 0


def test_query_returns_buffered_cursor(scratch):
    scratch.execute("INSERT INTO scratch (name) VALUES ('a')")

    with scratch.query('SELECT id, name FROM scratch') as cursor:
        assert cursor.columns == ['id', 'name']
        assert cursor.move_to_first()
        assert cursor.get_string(cursor.column_index('NAME')) == 'a'
        assert not cursor.move_to_next()
    assert cursor.closed


def test_last_insert_id(scratch):
    scratch.execute("INSERT INTO scratch (name) VALUES ('a')")
    assert scratch.last_insert_id() == 1
    scratch.execute("INSERT INTO scratch (name) VALUES ('b')")
    assert scratch.last_insert_id() == 2


def test_calls_tracked(scratch):
    before = scratch.calls
    scratch.query('SELECT 1')
    scratch.execute('DELETE FROM scratch')
    assert scratch.calls == before + 2
    assert scratch.time >= 0


def test_context_manager_closes(sqlite_store):
    with sqlite_store.get_default_handle() as handle:
        assert not handle.closed
    assert handle.closed
    handle.close()


def test_handles_share_memory_database(sqlite_store, scratch):
    """Test every handle on an in-memory store sees the same database"""
    scratch.execute("INSERT INTO scratch (name) VALUES ('shared')")
    with sqlite_store.get_default_handle() as other:
        assert other.query('SELECT name FROM scratch').rows == [('shared',)]


def test_connect_directly():
    with entitystore.connect(database=':memory:') as handle:
        cursor = handle.query('SELECT 1 AS one')
        assert cursor.rows == [(1,)]


def test_foreign_keys_enforced_when_requested():
    with entitystore.connect(database=':memory:', enforce_foreign_keys=True) as handle:
        cursor = handle.query('PRAGMA foreign_keys')
        cursor.move_to_first()
        assert cursor.get_long(0) == 1
