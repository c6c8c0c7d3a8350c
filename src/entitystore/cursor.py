"""
Buffered result cursor.

A `RowCursor` holds every row of one result together with its column
names and exposes the positional interface the record codec reads from:
position at the first row, advance, look columns up by name and read a
column with a typed reader.
"""
import logging
from collections.abc import Iterator, Sequence
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

__all__ = ['RowCursor', 'NOT_FOUND']

NOT_FOUND = -1


class RowCursor:
    """Positional cursor over a fully fetched result.

    The cursor starts before the first row; call `move_to_first()` before
    reading. Column lookups are case-insensitive and return `NOT_FOUND`
    for unknown names.
    """

    def __init__(self, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
        self.columns = list(columns)
        self.rows = [tuple(row) for row in rows]
        self._index = {}
        for i, name in enumerate(self.columns):
            self._index.setdefault(name.lower(), i)
        self._position = -1
        self.closed = False

    @classmethod
    def from_result(cls, result: Any) -> 'RowCursor':
        """Buffer a SQLAlchemy `CursorResult`."""
        if not result.returns_rows:
            return cls([], [])
        columns = list(result.keys())
        return cls(columns, result.fetchall())

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[tuple]:
        return iter(self.rows)

    def __enter__(self) -> 'RowCursor':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'<RowCursor columns={self.columns} rows={len(self.rows)} position={self._position}>'

    def count(self) -> int:
        return len(self.rows)

    @property
    def position(self) -> int:
        return self._position

    def move_to_first(self) -> bool:
        """Position on the first row; False when the result is empty."""
        self._position = 0
        return self.is_positioned()

    def move_to_next(self) -> bool:
        """Advance one row; False once past the last row."""
        if self._position < len(self.rows):
            self._position += 1
        return self.is_positioned()

    def is_positioned(self) -> bool:
        return 0 <= self._position < len(self.rows)

    def column_index(self, name: str) -> int:
        return self._index.get(name.lower(), NOT_FOUND)

    def _current(self) -> tuple:
        if self.closed:
            raise ValueError('Cursor is closed')
        if not self.is_positioned():
            raise IndexError(f'Cursor is not positioned on a row (position {self._position})')
        return self.rows[self._position]

    def get_value(self, index: int) -> Any:
        return self._current()[index]

    def is_null(self, index: int) -> bool:
        return self.get_value(index) is None

    def get_string(self, index: int) -> str | None:
        value = self.get_value(index)
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode()
        return str(value)

    def get_long(self, index: int) -> int | None:
        value = self.get_value(index)
        if value is None:
            return None
        return int(value)

    def get_int(self, index: int) -> int | None:
        """Read a column as a signed 32-bit integer, wrapping like the store's int readers."""
        value = self.get_long(index)
        if value is None:
            return None
        return (value + 2**31) % 2**32 - 2**31

    def get_double(self, index: int) -> float | None:
        value = self.get_value(index)
        if value is None:
            return None
        return float(value)

    def get_float(self, index: int) -> float | None:
        return self.get_double(index)

    def to_frame(self) -> pd.DataFrame:
        """Return the buffered rows as a DataFrame.

        Always returns a DataFrame, never None, with columns preserved for empty results.
        """
        if not self.rows:
            return pd.DataFrame(columns=self.columns)
        return pd.DataFrame.from_records(self.rows, columns=self.columns)

    def close(self) -> None:
        self.closed = True
