"""
Store connection handling with SQLAlchemy.

This module provides:
1. The `connect()` function for opening a `StoreHandle`
2. The `StoreHandle` class, the driver contract the mapping engine runs on
3. Engine creation and management through a thread-safe registry
4. The `check_connection` retry decorator

The StoreHandle is deliberately narrow:
- execute(sql) - run DDL/DML that returns no rows
- query(sql) - run a read and return a buffered `RowCursor`
- last_insert_id() - key generated by the most recent INSERT
- begin_transaction() / set_transaction_successful() / end_transaction()
"""
import atexit
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import wraps
from typing import Any, Self, TypeVar

import sqlalchemy as sa
from entitystore.cursor import RowCursor
from entitystore.exceptions import DbConnectionError, is_retryable_error
from entitystore.options import DatabaseOptions, load_options
from entitystore.strategy import get_db_strategy, get_strategy
from entitystore.utils import ensure_commit, get_dialect_name
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

__all__ = [
    'StoreHandle',
    'connect',
    'configure_connection',
    'check_connection',
    'create_url_from_options',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def create_url_from_options(options: DatabaseOptions) -> sa.URL:
    """Convert DatabaseOptions to SQLAlchemy URL.
    """
    return get_strategy(options.drivername).build_connection_url(options)


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 1, retry_errors: type | tuple[type, ...] | None = None,
                     retry_backoff: float = 1.5,
                     retry_if: Callable[[BaseException], bool] = is_retryable_error,
                     sleep_func: Callable[[float], None] = time.sleep) -> Callable[..., T]:
    """Connection retry decorator with backoff.

    Retries the wrapped call when it raises one of `retry_errors` (the
    driver connection errors by default) and `retry_if` classifies the
    error as transient. Anything else propagates on the first failure.

    Supports both @check_connection and @check_connection() syntax.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            error_types = retry_errors if retry_errors is not None else DbConnectionError

            tries = 0
            delay = retry_delay
            while True:
                try:
                    return f(*args, **kwargs)
                except error_types as err:
                    if not retry_if(err):
                        raise
                    tries += 1
                    if tries >= max_retries:
                        logger.error(f'Maximum retries ({max_retries}) exceeded: {err}')
                        raise
                    logger.warning(f'Connection error (attempt {tries}/{max_retries}): {err}')
                    sleep_func(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = str(options)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        strategy = get_strategy(options.drivername)
        url = create_url_from_options(options)

        engine_kwargs: dict[str, Any] = {'echo': options.echo}

        if not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(strategy.get_engine_kwargs(options))
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


def dumpsql(func):
    """Decorator for logging statements and tracking their timing."""
    @wraps(func)
    def wrapper(self, sql: str, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{sql}')
        try:
            return func(self, sql, *args, **kwargs)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{sql}')
            raise
        finally:
            elapsed = time.time() - start
            self.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class StoreHandle:
    """Wraps a SQLAlchemy connection with the operations the mapping engine needs

    This class provides a thin wrapper around SQLAlchemy connection objects that:
    1. Runs literal SQL text (values are already encoded by the type registry)
    2. Commits each statement immediately unless a transaction is open
    3. Tracks statement counts and execution time
    4. Supports context manager protocol for explicit resource management
    """

    def __init__(self, sa_connection: sa.engine.Connection | None = None,
                 options: 'DatabaseOptions | None' = None) -> None:
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine if sa_connection else None
        self.options = options
        self._dialect = get_dialect_name(sa_connection) if sa_connection else None
        self.calls = 0
        self.time = 0
        self.in_transaction = False
        self._transaction: sa.engine.RootTransaction | None = None
        self._successful = False
        self._created_in_transaction: list = []

    def __enter__(self) -> Self:
        """Support for context manager protocol
        """
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        """Close the handle when exiting the context manager
        """
        self.close()

    def __repr__(self) -> str:
        return f'<StoreHandle dialect={self._dialect} calls={self.calls} closed={self.closed}>'

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    @property
    def dialect(self) -> str:
        """Return the dialect name ('postgresql' or 'sqlite')."""
        return self._dialect

    @property
    def strategy(self):
        return get_db_strategy(self)

    @property
    def closed(self) -> bool:
        return self.sa_connection is None or self.sa_connection.closed

    def _run(self, sql: str) -> sa.engine.CursorResult:
        return self.sa_connection.exec_driver_sql(
            sql, execution_options={'no_parameters': True})

    def _autocommit(self) -> None:
        if not self.in_transaction:
            ensure_commit(self.sa_connection)

    def _rollback_unless_in_transaction(self) -> None:
        if not self.in_transaction:
            try:
                self.sa_connection.rollback()
            except Exception as e:
                logger.debug(f'Could not roll back after failed statement: {e}')

    @dumpsql
    def execute(self, sql: str) -> int:
        """Execute a statement that returns no rows and return the affected row count.
        """
        try:
            result = self._run(sql)
            rowcount = result.rowcount
            self._autocommit()
            return rowcount
        except Exception:
            self._rollback_unless_in_transaction()
            raise

    @check_connection
    @dumpsql
    def query(self, sql: str) -> RowCursor:
        """Execute a read and return its rows in a buffered cursor.
        """
        try:
            cursor = RowCursor.from_result(self._run(sql))
            self._autocommit()
            logger.debug(f'Query returned {cursor.count()} rows')
            return cursor
        except Exception:
            self._rollback_unless_in_transaction()
            raise

    def last_insert_id(self) -> int:
        """Return the key generated by the most recent INSERT on this handle.
        """
        return self.strategy.last_insert_id(self)

    def mark_schema_created(self, mapping) -> None:
        """Mark the table of a mapping as created on this handle.

        Inside a transaction the mark is undone if the transaction rolls back.
        """
        mapping.schema_created = True
        if self.in_transaction:
            self._created_in_transaction.append(mapping)

    def _forget_created_schemas(self) -> None:
        for mapping in self._created_in_transaction:
            mapping.schema_created = False
        if self._created_in_transaction:
            logger.debug(f'Rollback discarded {len(self._created_in_transaction)} table creations')

    def begin_transaction(self) -> None:
        """Open a transaction; statements run inside it until `end_transaction()`.

        Raises
            RuntimeError: If a transaction is already open on this handle
        """
        if self.in_transaction:
            raise RuntimeError('Nested transactions are not supported')
        if self.sa_connection.in_transaction():
            self.sa_connection.commit()
        self._transaction = self.sa_connection.begin()
        self._successful = False
        self.in_transaction = True
        logger.debug(f'Started transaction for handle {id(self)}')

    def set_transaction_successful(self) -> None:
        """Mark the open transaction to be committed by `end_transaction()`.
        """
        if not self.in_transaction:
            raise RuntimeError('No transaction in progress')
        self._successful = True

    def end_transaction(self) -> None:
        """Commit the open transaction if it was marked successful, else roll it back.
        """
        if not self.in_transaction:
            raise RuntimeError('No transaction in progress')
        try:
            if self._successful:
                self._transaction.commit()
                logger.debug(f'Committed transaction for handle {id(self)}')
            else:
                self._forget_created_schemas()
                self._transaction.rollback()
                logger.warning('Rolling back the current transaction')
        finally:
            self._transaction = None
            self._successful = False
            self._created_in_transaction = []
            self.in_transaction = False

    @contextmanager
    def transaction(self) -> Iterator[Self]:
        """Run the body in a transaction committed only when it completes.

        Examples
            with handle.transaction():
                handle.execute('delete from ...')
                handle.execute('update ...')
        """
        self.begin_transaction()
        try:
            yield self
            self.set_transaction_successful()
        finally:
            self.end_transaction()

    def commit(self) -> None:
        """Explicit commit of any pending work outside a transaction
        """
        self.sa_connection.commit()

    def close(self) -> None:
        """Close the SQLAlchemy connection, committing first if needed
        """
        if self.closed:
            return
        if self.in_transaction:
            logger.warning('Closing handle with an open transaction, rolling back')
            self._transaction.rollback()
            self._forget_created_schemas()
            self._created_in_transaction = []
            self._transaction = None
            self.in_transaction = False
        else:
            ensure_commit(self.sa_connection)
        self.sa_connection.close()
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')


def configure_connection(sa_connection: sa.engine.Connection,
                         options: DatabaseOptions | None = None) -> None:
    """Apply dialect-specific settings to a freshly opened connection.
    """
    strategy = get_db_strategy(sa_connection)
    strategy.configure_connection(sa_connection.connection.driver_connection, options)


def connect(options: DatabaseOptions | dict[str, Any] | None = None, **kw: Any) -> StoreHandle:
    """Open a store handle using SQLAlchemy for connection management

    Args:
        options: Can be:
                - DatabaseOptions object
                - Dictionary of options
                - None, to read the host configuration from the environment
        **kw: Additional keyword arguments to override options

    Returns
        StoreHandle for issuing statements against the store
    """
    options = load_options(options, **kw)
    engine = get_engine_for_options(options)

    sa_connection = engine.connect()
    configure_connection(sa_connection, options)

    return StoreHandle(sa_connection, options)
