"""
Entity base class.

Subclass `Entity` and declare fields as annotations:

    class Person(Entity):
        id: int
        name: str
        born: datetime.date | None = None

    joe = Person(name='Joe')
    joe.save()
    Person.query().where(eql('name', 'Joe')).execute()

A new record is transient until it is saved or loaded; `save()` then
inserts it and later calls update it. Deleting a record does not make it
transient again, so saving a deleted record issues an UPDATE that
matches no row. Rolling back a transaction does not restore in-memory
state either: a referenced record saved along the way keeps its key and
stays non-transient although its row is gone.
"""
import logging
from typing import TYPE_CHECKING, Any

from entitystore import persistence
from entitystore.context import EntityContext, get_context
from entitystore.mapping import EntityMapping, field_defaults
from entitystore.query import Query

if TYPE_CHECKING:
    from entitystore.connection import StoreHandle
    from entitystore.cursor import RowCursor

logger = logging.getLogger(__name__)

__all__ = ['Entity']


class Entity:
    """Base class of mapped records.

    Equality and hashing use the concrete type and the primary key value;
    records without a key compare by identity.
    """

    def __init__(self, **kwargs: Any) -> None:
        defaults = field_defaults(type(self))
        unknown = sorted(set(kwargs) - set(defaults))
        if unknown:
            raise TypeError(f'{type(self).__name__}() got unexpected keyword arguments: {", ".join(unknown)}')
        self._transient = True
        self._context: EntityContext | None = None
        for name, default in defaults.items():
            setattr(self, name, kwargs[name] if name in kwargs else default())

    def __repr__(self) -> str:
        key = self._mapping().primary_key
        return f'<{type(self).__name__} {key.name}={getattr(self, key.name, None)!r}>'

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if type(self) is not type(other):
            return NotImplemented
        key = self.primary_key_value
        return key is not None and key == other.primary_key_value

    def __hash__(self) -> int:
        key = self.primary_key_value
        if key is None:
            return object.__hash__(self)
        return hash((type(self), key))

    @classmethod
    def mapping(cls, context: EntityContext | None = None) -> EntityMapping:
        return (context or get_context()).get_mapping(cls)

    def _mapping(self) -> EntityMapping:
        return type(self).mapping(self._context)

    @classmethod
    def query(cls, context: EntityContext | None = None) -> Query:
        return Query(cls, context)

    @classmethod
    def load(cls, cursor: 'RowCursor', handle: 'StoreHandle | None' = None,
             context: EntityContext | None = None) -> 'Entity | None':
        """Build a record from the current row of `cursor` (the first row if it is not positioned).

        Relationships are loaded through `handle`, or a default handle when none is given.
        """
        context = context or get_context()
        mapping = context.get_mapping(cls)
        if not cursor.is_positioned() and not cursor.move_to_first():
            return None
        if handle is not None:
            return persistence.load(context, mapping, cursor, handle)
        with context.get_default_handle() as handle:
            return persistence.load(context, mapping, cursor, handle)

    @classmethod
    def load_all(cls, cursor: 'RowCursor', handle: 'StoreHandle | None' = None,
                 context: EntityContext | None = None) -> list:
        """Build one record per cursor row."""
        context = context or get_context()
        mapping = context.get_mapping(cls)
        if handle is not None:
            return persistence.load_all(context, mapping, cursor, handle)
        with context.get_default_handle() as handle:
            return persistence.load_all(context, mapping, cursor, handle)

    @property
    def primary_key_value(self) -> Any:
        return getattr(self, self._mapping().primary_key.name, None)

    @property
    def is_transient(self) -> bool:
        return self._transient

    def _save(self, handle: 'StoreHandle', context: EntityContext) -> int:
        self._context = context
        mapping = context.get_mapping_ensure_schema(handle, type(self))
        if self._transient:
            key = persistence.insert(mapping, self, handle, context)
            self._transient = False
            return key
        persistence.update(mapping, self, handle, context)
        return persistence.NO_GENERATED_KEY

    def save(self, handle: 'StoreHandle | None' = None,
             context: EntityContext | None = None) -> int:
        """Insert a transient record or update a stored one.

        Without a handle the save runs in its own transaction on a default
        handle, rolled back if anything fails.

        Returns
            The generated key of an insert, or -1 for updates and
            non-integral keys
        """
        context = context or get_context()
        if handle is not None:
            return self._save(handle, context)
        with context.get_default_handle() as handle, handle.transaction():
            return self._save(handle, context)

    def delete(self, handle: 'StoreHandle | None' = None,
               context: EntityContext | None = None) -> None:
        """Delete the stored row; transient records are left alone.
        """
        if self._transient:
            return
        context = context or get_context()
        if handle is not None:
            mapping = context.get_mapping_ensure_schema(handle, type(self))
            persistence.delete(mapping, self, handle, context)
            return
        with context.get_default_handle() as handle, handle.transaction():
            mapping = context.get_mapping_ensure_schema(handle, type(self))
            persistence.delete(mapping, self, handle, context)
