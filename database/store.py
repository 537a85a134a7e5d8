"""Storage interface used by the marketplace managers.

The managers never issue SQL themselves. They depend on the small set of
primitives below (get by id, equality/range filters, insert, conditional
update by id, atomic increment and a transactional scope), so the same code
runs against PostgreSQL or the in-process store.

Filter conventions shared by every implementation:
- ``filters``: ``{column: value}`` equality; a list/tuple/set value means
  "one of"; ``None`` means ``IS NULL``.
- ``exclude``: ``{column: value}`` inequality, same value rules.
- ``ranges``: ``{column: (low, high)}`` inclusive, either bound may be None.
- ``search``: ``(columns, term)`` case-insensitive substring match on any column.
- ``order_by``: list of column names, ``'-column'`` for descending.
"""
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncContextManager, Dict, Iterable, List, Optional, Sequence, Tuple

from errors import ValidationError
from .exceptions import DatabaseError
from .lib.schema_manager import latest_schema

Row = Dict[str, Any]

class Store:
    """Base class holding schema metadata and value coercion."""

    def __init__(self, schema: Optional[Dict[str, Any]] = None) -> None:
        self.schema = schema or latest_schema()
        self._tables: Dict[str, Dict[str, Any]] = {
            table['name']: table for table in self.schema['tables']
        }
        self._column_types: Dict[str, Dict[str, str]] = {
            table['name']: {col['name']: col['type'].upper() for col in table['columns']}
            for table in self.schema['tables']
        }

    # Metadata

    def columns(self, table: str) -> Dict[str, str]:
        """Return ``{column: type}`` for a table.

        Raises:
            DatabaseError: If the table is unknown
        """
        try:
            return self._column_types[table]
        except KeyError:
            raise DatabaseError(f"Unknown table: {table}")

    def has_column(self, table: str, column: str) -> bool:
        return column in self.columns(table)

    def unique_constraints(self, table: str) -> List[Tuple[str, ...]]:
        """Unique column groups of a table, primary key included."""
        definition = self._tables[table]
        groups = []
        for col in definition['columns']:
            if col.get('primary_key') or col.get('unique'):
                groups.append((col['name'],))
        for idx in definition.get('indexes', []):
            if idx.get('unique') and 'where' not in idx:
                groups.append(tuple(idx['columns']))
        return groups

    def _check_columns(self, table: str, names: Iterable[str]) -> None:
        known = self.columns(table)
        unknown = [name for name in names if name not in known]
        if unknown:
            raise DatabaseError(f"Unknown columns for {table}: {', '.join(unknown)}")

    # Coercion

    def coerce(self, table: str, column: str, value: Any) -> Any:
        """Convert a Python value to the column's storage type.

        Raises:
            ValidationError: If the value cannot be converted
        """
        if value is None:
            return None
        if isinstance(value, (list, tuple, set, frozenset)) and not self.columns(table)[column].endswith('[]'):
            return [self.coerce(table, column, item) for item in value]

        col_type = self.columns(table)[column]
        try:
            if col_type == 'UUID':
                return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
            if col_type.startswith('DECIMAL'):
                return value if isinstance(value, Decimal) else Decimal(str(value))
            if col_type in ('INT8', 'INTEGER', 'INT4'):
                if isinstance(value, bool):
                    raise ValueError("boolean is not an integer")
                return int(value)
            if col_type == 'BOOLEAN':
                if not isinstance(value, bool):
                    raise ValueError("expected a boolean")
                return value
            if col_type.startswith('TIMESTAMP'):
                if not isinstance(value, datetime):
                    raise ValueError("expected a datetime")
                return value
            if col_type.endswith('[]'):
                return list(value)
            return value
        except (ValueError, TypeError, AttributeError, InvalidOperation):
            raise ValidationError(f"Invalid value for {table}.{column}: {value!r}")

    def coerce_row(self, table: str, values: Dict[str, Any]) -> Row:
        self._check_columns(table, values)
        return {name: self.coerce(table, name, value) for name, value in values.items()}

    # Interface

    async def get(self, table: str, row_id: Any) -> Optional[Row]:
        raise NotImplementedError

    async def find_one(self, table: str, **filters: Any) -> Optional[Row]:
        rows = await self.find(table, filters, limit=1)
        return rows[0] if rows else None

    async def find(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        exclude: Optional[Dict[str, Any]] = None,
        ranges: Optional[Dict[str, Tuple[Any, Any]]] = None,
        search: Optional[Tuple[Sequence[str], str]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Row]:
        raise NotImplementedError

    async def count(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        exclude: Optional[Dict[str, Any]] = None,
        ranges: Optional[Dict[str, Tuple[Any, Any]]] = None,
        search: Optional[Tuple[Sequence[str], str]] = None
    ) -> int:
        raise NotImplementedError

    async def insert(self, table: str, values: Dict[str, Any]) -> Row:
        raise NotImplementedError

    async def update(
        self,
        table: str,
        row_id: Any,
        changes: Dict[str, Any],
        *,
        expected: Optional[Dict[str, Any]] = None,
        exclude: Optional[Dict[str, Any]] = None
    ) -> Optional[Row]:
        """Conditionally update one row.

        The row is changed only if it matches ``expected`` and does not match
        ``exclude``. Returns the updated row, or None when no row matched.
        """
        raise NotImplementedError

    async def update_where(
        self,
        table: str,
        filters: Dict[str, Any],
        changes: Dict[str, Any],
        *,
        exclude: Optional[Dict[str, Any]] = None
    ) -> int:
        """Update every row matching the filters. Returns the row count."""
        raise NotImplementedError

    async def increment(
        self,
        table: str,
        row_id: Any,
        column: str,
        delta: int = 1,
        *,
        floor: Optional[int] = None,
        changes: Optional[Dict[str, Any]] = None
    ) -> Optional[Row]:
        """Atomically add ``delta`` to a counter column, never below ``floor``."""
        raise NotImplementedError

    async def delete_where(self, table: str, **filters: Any) -> int:
        raise NotImplementedError

    async def upsert(
        self,
        table: str,
        values: Dict[str, Any],
        conflict: Sequence[str]
    ) -> Row:
        """Insert a row, or update the row matching the ``conflict`` columns."""
        raise NotImplementedError

    def transaction(self) -> AsyncContextManager['Store']:
        """Return a context manager yielding a store bound to one atomic unit."""
        raise NotImplementedError

    async def close(self) -> None:
        pass
