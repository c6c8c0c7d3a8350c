"""
Entity context: the registry, the mapping cache and the default store.

A process normally uses one default context, set up with `initialize()`
and reached through `get_context()`. Contexts can also be created
directly and passed to the record codec and query builder.
"""
import logging
import os
import threading
from typing import Any

from entitystore.connection import StoreHandle, connect, dispose_all_engines
from entitystore.exceptions import ConfigurationError, ConnectionFailure
from entitystore.exceptions import DbConnectionError
from entitystore.mapping import EntityMapping, build_mapping
from entitystore.options import DatabaseOptions, load_options
from entitystore.registry import TypeRegistry, create_default_registry
from entitystore.schema import ensure_schema
from entitystore.strategy.sqlite import database_path


logger = logging.getLogger(__name__)

__all__ = [
    'EntityContext',
    'initialize',
    'get_context',
    'is_initialized',
    'shutdown',
]

_default_context: 'EntityContext | None' = None
_default_context_lock = threading.RLock()


class EntityContext:
    """Holds the type registry, the mappings built from it and the store options.

    Mappings are built on first use and cached per record type. Two
    threads building the same mapping at once both build it; the results
    are equal and either may end up cached.
    """

    def __init__(self, options: DatabaseOptions | dict[str, Any] | None = None,
                 registry: TypeRegistry | None = None) -> None:
        self.options = load_options(options) if options is not None else None
        if registry is None:
            stringify = self.options.stringify_unmapped if self.options else False
            registry = create_default_registry(stringify_unmapped=stringify)
        self.registry = registry
        self._mappings: dict[type, EntityMapping] = {}

    def __repr__(self) -> str:
        database = self.options.database if self.options else None
        return f'<EntityContext database={database!r} mappings={len(self._mappings)}>'

    def get_mapping(self, record_type: type) -> EntityMapping:
        """Return the cached mapping of a record type, building it on first use.
        """
        mapping = self._mappings.get(record_type)
        if mapping is None:
            mapping = build_mapping(record_type, self.registry)
            self._mappings[record_type] = mapping
        return mapping

    def get_mapping_ensure_schema(self, handle: StoreHandle, record_type: type) -> EntityMapping:
        """Return the mapping of a record type after making sure its table exists.
        """
        mapping = self.get_mapping(record_type)
        ensure_schema(mapping, handle, self)
        return mapping

    def flush_schema_creation_cache(self) -> None:
        """Forget which tables were created, so the next use checks them again.
        """
        for mapping in self._mappings.values():
            mapping.schema_created = False
        logger.debug(f'Flushed schema creation flags of {len(self._mappings)} mappings')

    def get_default_handle(self) -> StoreHandle:
        """Open a handle on the configured store, creating a SQLite file if needed.

        The caller closes the handle.

        Raises
            ConfigurationError: If the context has no store options
            ConnectionFailure: If the store cannot be opened
        """
        if self.options is None:
            raise ConfigurationError('No store configured: call entitystore.initialize() first')

        path = database_path(self.options) if self.options.drivername == 'sqlite' else None
        created = path is not None and not path.exists()
        if created:
            logger.info(f'Creating database {path}')
            self.flush_schema_creation_cache()
            path.parent.mkdir(parents=True, exist_ok=True)

        try:
            handle = connect(self.options)
            if created:
                handle.query('SELECT 1')
                os.chmod(path, self.options.file_mode)
        except DbConnectionError as err:
            logger.error(f'Could not open database {self.options.database}: {err}')
            raise ConnectionFailure(f'Could not open database {self.options.database}: {err}') from err
        return handle


def initialize(options: DatabaseOptions | dict[str, Any] | None = None, **kw: Any) -> EntityContext:
    """Configure the default context.

    Later calls leave the configured context in place and return it.
    """
    global _default_context
    with _default_context_lock:
        if _default_context is not None and _default_context.options is not None:
            logger.debug('Default context already initialized')
            return _default_context
        _default_context = EntityContext(load_options(options, **kw))
        logger.debug(f'Initialized default context for {_default_context.options.database}')
        return _default_context


def get_context() -> EntityContext:
    """Return the default context, creating an unconfigured one if needed.

    An unconfigured context builds mappings and renders queries but has
    no store to open handles on.
    """
    global _default_context
    with _default_context_lock:
        if _default_context is None:
            _default_context = EntityContext()
        return _default_context


def is_initialized() -> bool:
    return _default_context is not None and _default_context.options is not None


def shutdown() -> None:
    """Drop the default context and dispose every engine.
    """
    global _default_context
    with _default_context_lock:
        _default_context = None
    dispose_all_engines()
