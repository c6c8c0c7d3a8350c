"""
Entity mapping for SQLite and PostgreSQL.

Record types subclass `Entity`; their tables are created on first use,
records are saved with `save()` and read back with `query()`:

- initialize(database='people.db') - configure the default store
- Entity.save() / Entity.delete() - write a record in its own transaction
- Entity.query().where(eql(...)).execute_multi() - load matching records
- connect(options) - open a StoreHandle for work spanning several calls
"""
__version__ = '0.1.0'

from entitystore.connection import StoreHandle, connect
from entitystore.context import EntityContext, get_context, initialize
from entitystore.context import is_initialized, shutdown
from entitystore.cursor import RowCursor
from entitystore.entity import Entity
from entitystore.exceptions import ConfigurationError, ConnectionFailure
from entitystore.exceptions import DbConnectionError, EntityStoreError
from entitystore.exceptions import InstantiationFailure, IntegrityError
from entitystore.exceptions import MappingError, MissingPrimaryKey
from entitystore.exceptions import NoMappingFound, OperationalError
from entitystore.exceptions import QueryError
from entitystore.exceptions import SchemaMismatch, TransientEntityError
from entitystore.exceptions import TypeConversionError, UnmappableType
from entitystore.mapping import EntityMapping, column
from entitystore.options import DatabaseOptions
from entitystore.persistence import NO_GENERATED_KEY, PrecursorSet
from entitystore.query import Query, and_, eql, geq, gt, leq, lt, neq, or_
from entitystore.registry import TypeRegistry, create_default_registry
from entitystore.types import TypeMapping

__all__ = [
    # Records
    'Entity',
    'column',
    'EntityMapping',
    'PrecursorSet',
    'NO_GENERATED_KEY',
    # Queries
    'Query',
    'eql',
    'neq',
    'lt',
    'gt',
    'leq',
    'geq',
    'and_',
    'or_',
    # Context and store
    'EntityContext',
    'initialize',
    'get_context',
    'is_initialized',
    'shutdown',
    'DatabaseOptions',
    'StoreHandle',
    'RowCursor',
    'connect',
    # Type mappings
    'TypeMapping',
    'TypeRegistry',
    'create_default_registry',
    # Exceptions
    'EntityStoreError',
    'ConfigurationError',
    'ConnectionFailure',
    'QueryError',
    'MappingError',
    'MissingPrimaryKey',
    'UnmappableType',
    'TypeConversionError',
    'NoMappingFound',
    'TransientEntityError',
    'SchemaMismatch',
    'InstantiationFailure',
    'DbConnectionError',
    'IntegrityError',
    'OperationalError',
]
