"""
Store configuration.

`DatabaseOptions` describes how default handles are opened. The host
configuration (database name and file-visibility policy) may also come
from the environment, which `load_options` consults for unset values.
"""
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

from entitystore.exceptions import ConfigurationError
from entitystore.strategy import get_available_dialects, get_strategy_class
from entitystore.strategy import is_supported_dialect

logger = logging.getLogger(__name__)

__all__ = [
    'DatabaseOptions',
    'load_options',
    'visibility_mode',
    'PRIVATE',
    'WORLD_READABLE',
    'WORLD_WRITEABLE',
]

PRIVATE = 'PRIVATE'
WORLD_READABLE = 'WORLD_READABLE'
WORLD_WRITEABLE = 'WORLD_WRITEABLE'

_VISIBILITY_MODES = {
    PRIVATE: 0o600,
    WORLD_READABLE: 0o644,
    WORLD_WRITEABLE: 0o666,
}

_ENVIRONMENT = {
    'database': 'ENTITYSTORE_DATABASE_NAME',
    'visibility': 'ENTITYSTORE_DATABASE_VISIBILITY',
    'drivername': 'ENTITYSTORE_DRIVERNAME',
    'directory': 'ENTITYSTORE_DIRECTORY',
}


def visibility_mode(visibility: str) -> int:
    """Return the POSIX file mode for a visibility policy.
    """
    try:
        return _VISIBILITY_MODES[visibility.upper()]
    except KeyError:
        raise ValueError(f'visibility must be one of: {list(_VISIBILITY_MODES)}') from None


@dataclass
class DatabaseOptions:
    """Options

    supported driver names: `postgresql`, `sqlite`

    SQLite options:
    - database: bare database name, resolved against `directory`, or `:memory:`
    - directory: where database files live (default: current directory)
    - visibility: `PRIVATE`, `WORLD_READABLE` or `WORLD_WRITEABLE`, applied
      to the database file when it is first created
    - enforce_foreign_keys: turn on `PRAGMA foreign_keys` per connection

    Mapping options:
    - stringify_unmapped: map otherwise unmappable types with the
      best-effort text codec instead of failing

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)
    """
    drivername: str = 'sqlite'
    database: str = None
    directory: str = None
    visibility: str = PRIVATE
    hostname: str = None
    username: str = None
    password: str = None
    port: int = 0
    timeout: int = 0
    stringify_unmapped: bool = False
    enforce_foreign_keys: bool = False
    echo: bool = False
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        self.visibility = (self.visibility or PRIVATE).upper()
        visibility_mode(self.visibility)
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)

    @property
    def file_mode(self) -> int:
        return visibility_mode(self.visibility)


def load_options(options: DatabaseOptions | Mapping[str, Any] | None = None,
                 **kw: Any) -> DatabaseOptions:
    """Build `DatabaseOptions` from an instance, a mapping or the environment.

    Keyword arguments override values from `options`; anything still unset
    falls back to the `ENTITYSTORE_*` environment variables.

    Raises
        ConfigurationError: If no database name can be found
    """
    if isinstance(options, DatabaseOptions):
        return replace(options, **kw) if kw else options

    known = {f.name for f in fields(DatabaseOptions)}
    values = dict(options or {})
    values.update(kw)
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f'Unknown options: {sorted(unknown)}')

    for name, variable in _ENVIRONMENT.items():
        if values.get(name) is None and os.environ.get(variable):
            values[name] = os.environ[variable]
            logger.debug(f'Using {variable} for option {name}')

    if not values.get('database'):
        raise ConfigurationError(
            'No database name configured: pass database= or set ENTITYSTORE_DATABASE_NAME')

    try:
        return DatabaseOptions(**values)
    except ValueError as err:
        raise ConfigurationError(str(err)) from err
