"""
Type mapping registry.

Mappings are kept in a list that is searched front to back; `register`
prepends, so a later registration shadows earlier ones for the types
both handle. The list is not synchronised: register custom mappings
during start-up, before any concurrent store activity.
"""
import logging
from typing import TYPE_CHECKING, Any

from entitystore.exceptions import NoMappingFound
from entitystore.sql import NULL
from entitystore.types import EntityTypeMapping, StringifyTypeMapping
from entitystore.types import TypeMapping, builtin_type_mappings

if TYPE_CHECKING:
    from entitystore.connection import StoreHandle
    from entitystore.context import EntityContext

logger = logging.getLogger(__name__)

__all__ = ['TypeRegistry', 'create_default_registry']


class TypeRegistry:
    """Ordered collection of type mappings with an optional default.
    """

    def __init__(self, mappings: list[TypeMapping] | None = None,
                 default: TypeMapping | None = None) -> None:
        self._mappings: list[TypeMapping] = []
        self.default = default
        for mapping in mappings or []:
            self.register(mapping)

    def __len__(self) -> int:
        return len(self._mappings)

    def __iter__(self):
        return iter(self._mappings)

    def register(self, mapping: TypeMapping) -> None:
        """Add a mapping ahead of every mapping registered before it.
        """
        self._mappings.insert(0, mapping)
        logger.debug(f'Registered {mapping!r}')

    def unregister(self, mapping: TypeMapping) -> None:
        self._mappings.remove(mapping)
        logger.debug(f'Unregistered {mapping!r}')

    def set_default(self, mapping: TypeMapping | None) -> None:
        """Set the mapping used when nothing else matches, or None for no fallback."""
        self.default = mapping

    def find(self, python_type: Any) -> TypeMapping | None:
        """Return the first registered mapping handling `python_type`, ignoring the default.
        """
        for mapping in self._mappings:
            if mapping.handles(python_type):
                return mapping
        return None

    def resolve(self, python_type: Any) -> TypeMapping:
        """Return the mapping for `python_type`, falling back to the default.

        Raises
            NoMappingFound: If nothing matches and no default is set
        """
        mapping = self.find(python_type)
        if mapping is not None:
            return mapping
        if self.default is not None:
            return self.default
        name = getattr(python_type, '__name__', repr(python_type))
        raise NoMappingFound(f'No type mapping for {name} and no default mapping is set')

    def sql_type(self, python_type: type, context: 'EntityContext | None' = None) -> str:
        return self.resolve(python_type).sql_type(python_type, context)

    def encode(self, value: Any, handle: 'StoreHandle | None' = None,
               context: 'EntityContext | None' = None) -> str:
        """Render a value as SQL literal text using the mapping for its runtime type.
        """
        if value is None:
            return NULL
        return self.resolve(type(value)).encode(value, handle, context)


def create_default_registry(stringify_unmapped: bool = False) -> TypeRegistry:
    """Build a registry holding the built-in mappings.

    Args:
        stringify_unmapped: Use the best-effort text mapping as the default

    Returns
        A new TypeRegistry
    """
    from entitystore.entity import Entity

    registry = TypeRegistry(builtin_type_mappings())
    registry.register(EntityTypeMapping(Entity))
    if stringify_unmapped:
        registry.set_default(StringifyTypeMapping())
    return registry
