"""
Fake store handle for unit tests.

Records every statement and answers queries from canned cursors, so the
record codec and query builder can be tested without a database.

Usage:
    def test_insert(fake_handle):
        Person(name='Joe').save(fake_handle)
        assert fake_handle.statements[-2].startswith('INSERT')
"""
import pytest
from entitystore.cursor import RowCursor
from entitystore.strategy import get_strategy


class FakeHandle:
    """Stand-in for StoreHandle that never touches a database.

    Args:
        dialect: Dialect whose strategy renders DDL
        results: Mapping of SQL text (or a prefix of it) to a RowCursor
        next_id: First value returned by `last_insert_id()`
    """

    def __init__(self, dialect='sqlite', results=None, next_id=1):
        self.dialect = dialect
        self.results = dict(results or {})
        self.next_id = next_id
        self.statements = []
        self.in_transaction = False
        self.successful = False
        self.created_in_transaction = []
        self.closed = False

    @property
    def strategy(self):
        return get_strategy(self.dialect)

    def execute(self, sql):
        self.statements.append(sql)
        return 1

    def query(self, sql):
        self.statements.append(sql)
        for prefix, cursor in self.results.items():
            if sql.startswith(prefix):
                return RowCursor(cursor.columns, cursor.rows)
        return RowCursor([], [])

    def last_insert_id(self):
        key = self.next_id
        self.next_id += 1
        return key

    def mark_schema_created(self, mapping):
        mapping.schema_created = True
        if self.in_transaction:
            self.created_in_transaction.append(mapping)

    def begin_transaction(self):
        self.in_transaction = True
        self.successful = False

    def set_transaction_successful(self):
        self.successful = True

    def end_transaction(self):
        if not self.successful:
            for mapping in self.created_in_transaction:
                mapping.schema_created = False
        self.created_in_transaction = []
        self.in_transaction = False

    def close(self):
        self.closed = True

    def statements_starting(self, keyword):
        return [sql for sql in self.statements if sql.startswith(keyword)]


@pytest.fixture
def fake_handle():
    """Fake SQLite-flavoured handle."""
    return FakeHandle()


@pytest.fixture
def create_fake_handle():
    """Factory for fake handles with canned query results.

    Example usage:
        def test_load(create_fake_handle):
            handle = create_fake_handle(results={'SELECT': RowCursor(['id'], [(1,)])})
    """
    def factory(dialect='sqlite', results=None, next_id=1):
        return FakeHandle(dialect=dialect, results=results, next_id=next_id)

    return factory
