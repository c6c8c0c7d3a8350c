"""
Query builder for mapped record types.

Predicates are small expression trees rendered with every logical group
parenthesised, so nesting never depends on SQL operator precedence:

    >>> str(and_(eql('a', 1), or_(eql('b', 2), eql('c', 3))))
    '(a = 1 AND (b = 2 OR c = 3))'

Values are encoded with the type registry when the expression is built.
"""
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import pandas as pd
from entitystore import persistence
from entitystore.context import EntityContext, get_context
from entitystore.sql import build_select_sql

if TYPE_CHECKING:
    from entitystore.connection import StoreHandle
    from entitystore.mapping import EntityMapping

logger = logging.getLogger(__name__)

__all__ = [
    'Expression',
    'BinaryExpression',
    'LogicalExpression',
    'Query',
    'eql',
    'neq',
    'lt',
    'gt',
    'leq',
    'geq',
    'and_',
    'or_',
]

T = TypeVar('T')

EQUAL = ' = '
NOT_EQUAL = ' != '
LESS_THAN = ' < '
GREATER_THAN = ' > '
LESS_THAN_OR_EQUAL = ' <= '
GREATER_THAN_OR_EQUAL = ' >= '


class Expression:
    """A renderable predicate."""

    def generate(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.generate()

    def __and__(self, other: 'Expression') -> 'LogicalExpression':
        return and_(self, other)

    def __or__(self, other: 'Expression') -> 'LogicalExpression':
        return or_(self, other)


class BinaryExpression(Expression):
    """`<column> <operator> <literal>` with an already encoded literal."""

    def __init__(self, column: str, operator: str, literal: str) -> None:
        self.column = column
        self.operator = operator
        self.literal = literal

    def __repr__(self) -> str:
        return f'BinaryExpression({self.generate()!r})'

    def generate(self) -> str:
        return f'{self.column}{self.operator}{self.literal}'


class LogicalExpression(Expression):
    """Two or more expressions joined by AND or OR."""

    def __init__(self, operator: str, *operands: Expression) -> None:
        if len(operands) < 2:
            raise ValueError(f'{operator} needs at least two operands, got {len(operands)}')
        self.operator = operator
        self.operands = operands

    def __repr__(self) -> str:
        return f'LogicalExpression({self.generate()!r})'

    def generate(self) -> str:
        return '(' + f' {self.operator} '.join(op.generate() for op in self.operands) + ')'


def _encode(value: Any, context: EntityContext | None) -> str:
    context = context or get_context()
    return context.registry.encode(value, None, context)


def _compare(column: str, operator: str, value: Any, context: EntityContext | None) -> BinaryExpression:
    if value is None:
        raise ValueError(f'Cannot compare {column} with None using{operator.rstrip()}')
    return BinaryExpression(column, operator, _encode(value, context))


def eql(column: str, value: Any, context: EntityContext | None = None) -> BinaryExpression:
    """`column = value`; None renders `column IS NULL`."""
    if value is None:
        return BinaryExpression(column, ' IS ', 'NULL')
    return _compare(column, EQUAL, value, context)


def neq(column: str, value: Any, context: EntityContext | None = None) -> BinaryExpression:
    """`column != value`; None renders `column IS NOT NULL`."""
    if value is None:
        return BinaryExpression(column, ' IS NOT ', 'NULL')
    return _compare(column, NOT_EQUAL, value, context)


def lt(column: str, value: Any, context: EntityContext | None = None) -> BinaryExpression:
    return _compare(column, LESS_THAN, value, context)


def gt(column: str, value: Any, context: EntityContext | None = None) -> BinaryExpression:
    return _compare(column, GREATER_THAN, value, context)


def leq(column: str, value: Any, context: EntityContext | None = None) -> BinaryExpression:
    return _compare(column, LESS_THAN_OR_EQUAL, value, context)


def geq(column: str, value: Any, context: EntityContext | None = None) -> BinaryExpression:
    return _compare(column, GREATER_THAN_OR_EQUAL, value, context)


def and_(*expressions: Expression) -> LogicalExpression:
    return LogicalExpression('AND', *expressions)


def or_(*expressions: Expression) -> LogicalExpression:
    return LogicalExpression('OR', *expressions)


class Query:
    """SELECT builder for one record type.

    Builder methods return the query so calls chain. The rendered SQL is
    cached until the next builder call.

    Examples
        Person.query().where(eql('name', 'Joe')).order_by('id').limit(5).execute_multi()
    """

    def __init__(self, record_type: type, context: EntityContext | None = None) -> None:
        self.record_type = record_type
        self._context = context
        self._where: Expression | str | None = None
        self._order_by: list[str] = []
        self._limit: int | None = None
        self._sql: str | None = None
        self._single_sql: str | None = None

    def __repr__(self) -> str:
        return f'<Query {self.record_type.__name__}: {self.to_sql()}>'

    def __str__(self) -> str:
        return self.to_sql()

    @property
    def context(self) -> EntityContext:
        return self._context or get_context()

    @property
    def mapping(self) -> 'EntityMapping':
        return self.context.get_mapping(self.record_type)

    def _invalidate(self) -> None:
        self._sql = None
        self._single_sql = None

    def where(self, predicate: Expression | str | None) -> 'Query':
        """Filter by an expression, or by raw SQL text used as given."""
        self._where = predicate
        self._invalidate()
        return self

    def where_id(self, value: Any) -> 'Query':
        return self.where(eql(self.mapping.primary_key.column, value, self.context))

    def order_by(self, *columns: str) -> 'Query':
        self._order_by = list(columns)
        self._invalidate()
        return self

    def limit(self, limit: int | None) -> 'Query':
        if limit is not None and (not isinstance(limit, int) or limit < 0):
            raise ValueError(f'limit must be a non-negative integer or None, got {limit!r}')
        self._limit = limit
        self._invalidate()
        return self

    def _render(self, limit: int | None) -> str:
        where = self._where.generate() if isinstance(self._where, Expression) else self._where
        return build_select_sql(self.mapping.table_name, where=where,
                                order_by=self._order_by, limit=limit)

    def to_sql(self) -> str:
        """Render with the query's own limit."""
        if self._sql is None:
            self._sql = self._render(self._limit)
        return self._sql

    def to_single_sql(self) -> str:
        """Render with a limit of one row."""
        if self._single_sql is None:
            self._single_sql = self._render(1)
        return self._single_sql

    def _run(self, handle: 'StoreHandle | None', func: Callable[['StoreHandle'], T]) -> T:
        if handle is not None:
            return func(handle)
        with self.context.get_default_handle() as handle:
            return func(handle)

    def execute(self, handle: 'StoreHandle | None' = None) -> Any | None:
        """Return the first matching record, or None.
        """
        def _execute(handle):
            mapping = self.context.get_mapping_ensure_schema(handle, self.record_type)
            cursor = handle.query(self.to_single_sql())
            try:
                if not cursor.move_to_first():
                    return None
                return persistence.load(self.context, mapping, cursor, handle)
            finally:
                cursor.close()

        return self._run(handle, _execute)

    def execute_multi(self, handle: 'StoreHandle | None' = None) -> list:
        """Return every matching record, in result order.
        """
        def _execute_multi(handle):
            mapping = self.context.get_mapping_ensure_schema(handle, self.record_type)
            cursor = handle.query(self.to_sql())
            try:
                return persistence.load_all(self.context, mapping, cursor, handle)
            finally:
                cursor.close()

        return self._run(handle, _execute_multi)

    def to_frame(self, handle: 'StoreHandle | None' = None) -> pd.DataFrame:
        """Return the matching rows, undecoded, as a DataFrame.
        """
        def _to_frame(handle):
            self.context.get_mapping_ensure_schema(handle, self.record_type)
            cursor = handle.query(self.to_sql())
            try:
                return cursor.to_frame()
            finally:
                cursor.close()

        return self._run(handle, _to_frame)
