"""
Entity store exception classes.
"""
import re
import sqlite3

import psycopg
import sqlalchemy.exc

RETRYABLE_PATTERNS = [
    # SSL/TLS errors
    r'ssl',
    r'tls',
    # Connection drops
    r'connection.*(closed|reset|refused|lost|terminated|broken)',
    r'server closed',
    r'eof detected',
    r'broken pipe',
    # Timeouts
    r'timeout',
    r'timed out',
    # Network issues
    r'could not connect',
    r'no route to host',
    r'network.*(unreachable|error)',
    # Database unavailable
    r'database.*unavailable',
    r'database is locked',
    r'too many connections',
]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient error worth retrying.

    Syntax errors, missing tables and constraint violations will fail again
    and are never retried.

    :param exc: The exception to check.
    :returns: True if the error is likely transient and worth retrying.
    """
    return bool(_RETRYABLE_REGEX.search(str(exc).lower()))


class EntityStoreError(Exception):
    """Base class for all entity store errors.
    """


class ConnectionFailure(EntityStoreError):
    """Error establishing or maintaining the store connection.
    """


class QueryError(EntityStoreError):
    """Error in query construction or execution.
    """


class ConfigurationError(EntityStoreError):
    """Missing or invalid store configuration.
    """


class MappingError(EntityStoreError):
    """A record type cannot be mapped to a table.
    """


class MissingPrimaryKey(MappingError):
    """No primary key was declared or could be inferred for a record type.
    """


class UnmappableType(MappingError):
    """A persisted field has a type with no codec and no default codec.
    """


class TypeConversionError(EntityStoreError):
    """Error converting values between Python and SQL literal text.
    """


class NoMappingFound(TypeConversionError):
    """No codec matches a type and no default codec is configured.
    """


class TransientEntityError(TypeConversionError, ValueError):
    """A transient record was used where a stored row is required.
    """


class SchemaMismatch(EntityStoreError):
    """A column expected by a mapping is absent from a result row.
    """


class InstantiationFailure(EntityStoreError):
    """A record type could not be constructed without arguments.
    """


DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    sqlalchemy.exc.OperationalError,
    sqlalchemy.exc.InterfaceError,
    ConnectionFailure,
    )

IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    sqlalchemy.exc.IntegrityError,
    )

OperationalError = (
    psycopg.OperationalError,
    sqlite3.OperationalError,
    sqlalchemy.exc.OperationalError,
    )
