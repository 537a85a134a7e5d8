"""In-process implementation of the storage interface.

Rows live in dictionaries keyed by id. Column defaults and unique
constraints come from the same schema definitions the PostgreSQL store is
built from. Every call runs under one lock; a transaction holds the lock for
its whole scope and restores a snapshot if the scope raises.
"""
import asyncio
import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from .exceptions import DuplicateRowError
from .store import Row, Store

def _now() -> datetime:
    return datetime.now(timezone.utc)

class MemoryStore(Store):
    """Store keeping all rows in process memory."""

    def __init__(self, schema: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(schema)
        self._data: Dict[str, Dict[uuid.UUID, Row]] = {name: {} for name in self._tables}
        self._lock = asyncio.Lock()
        self._in_transaction = False

    def _view(self) -> 'MemoryStore':
        view = copy.copy(self)
        view._in_transaction = True
        return view

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        if self._in_transaction:
            yield
        else:
            async with self._lock:
                yield

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator['MemoryStore']:
        async with self._guard():
            snapshot = copy.deepcopy(self._data)
            try:
                yield self._view()
            except BaseException:
                self._data.clear()
                self._data.update(snapshot)
                raise

    # Helpers

    def _default(self, col: Dict[str, Any]) -> Any:
        default = col.get('default')
        col_type = col['type'].upper()
        if default is None:
            return None
        if default == 'gen_random_uuid()':
            return uuid.uuid4()
        if default == 'now()':
            return _now()
        if default in ('true', 'false'):
            return default == 'true'
        if default == "'{}'":
            return []
        if default.startswith("'") and default.endswith("'"):
            return default[1:-1]
        if col_type.startswith('DECIMAL'):
            return Decimal(default)
        return int(default)

    def _matches(self, table: str, row: Row, filters: Optional[Dict[str, Any]]) -> bool:
        for column, value in (filters or {}).items():
            self._check_columns(table, [column])
            value = self.coerce(table, column, value)
            current = row.get(column)
            if isinstance(value, list) and not self.columns(table)[column].endswith('[]'):
                if current not in value:
                    return False
            elif current != value:
                return False
        return True

    def _excluded(self, table: str, row: Row, exclude: Optional[Dict[str, Any]]) -> bool:
        # Any matching exclusion drops the row, like AND NOT (...) per column
        for column, value in (exclude or {}).items():
            if self._matches(table, row, {column: value}):
                return True
        return False

    def _in_ranges(self, table: str, row: Row, ranges: Optional[Dict[str, Tuple[Any, Any]]]) -> bool:
        for column, (low, high) in (ranges or {}).items():
            self._check_columns(table, [column])
            current = row.get(column)
            if current is None:
                return False
            if low is not None and current < self.coerce(table, column, low):
                return False
            if high is not None and current > self.coerce(table, column, high):
                return False
        return True

    def _searched(self, table: str, row: Row, search: Optional[Tuple[Sequence[str], str]]) -> bool:
        if not search or not search[1]:
            return True
        columns, term = search
        self._check_columns(table, columns)
        term = term.lower()
        return any(term in str(row.get(column) or '').lower() for column in columns)

    def _select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        exclude: Optional[Dict[str, Any]] = None,
        ranges: Optional[Dict[str, Tuple[Any, Any]]] = None,
        search: Optional[Tuple[Sequence[str], str]] = None
    ) -> List[Row]:
        self._check_columns(table, [
            *(filters or {}), *(exclude or {}), *(ranges or {}), *(search[0] if search else ())
        ])
        return [
            row for row in self._data[table].values()
            if self._matches(table, row, filters)
            and not self._excluded(table, row, exclude)
            and self._in_ranges(table, row, ranges)
            and self._searched(table, row, search)
        ]

    def _check_unique(self, table: str, candidate: Row) -> None:
        for group in self.unique_constraints(table):
            key = tuple(candidate.get(column) for column in group)
            if any(part is None for part in key):
                continue
            for row in self._data[table].values():
                if row['id'] != candidate['id'] and tuple(row.get(c) for c in group) == key:
                    raise DuplicateRowError(table, group)

    def _touch(self, table: str, row: Row) -> None:
        if self.has_column(table, 'updated_at'):
            row['updated_at'] = _now()

    @staticmethod
    def _copy(row: Optional[Row]) -> Optional[Row]:
        return copy.deepcopy(row) if row is not None else None

    @staticmethod
    def _sort(rows: List[Row], order_by: Sequence[str]) -> List[Row]:
        # Stable sorts applied from the last key to the first
        for column in reversed(order_by):
            descending = column.startswith('-')
            name = column.lstrip('-')
            present = [row for row in rows if row.get(name) is not None]
            missing = [row for row in rows if row.get(name) is None]
            present.sort(key=lambda row: row[name], reverse=descending)
            rows = present + missing
        return rows

    # Interface

    async def get(self, table: str, row_id: Any) -> Optional[Row]:
        async with self._guard():
            self.columns(table)
            return self._copy(self._data[table].get(self.coerce(table, 'id', row_id)))

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
        async with self._guard():
            rows = self._select(table, filters, exclude, ranges, search)
            if order_by:
                for column in order_by:
                    self._check_columns(table, [column.lstrip('-')])
                rows = self._sort(rows, order_by)
            rows = rows[offset:]
            if limit is not None:
                rows = rows[:limit]
            return [self._copy(row) for row in rows]

    async def count(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        exclude: Optional[Dict[str, Any]] = None,
        ranges: Optional[Dict[str, Tuple[Any, Any]]] = None,
        search: Optional[Tuple[Sequence[str], str]] = None
    ) -> int:
        async with self._guard():
            return len(self._select(table, filters, exclude, ranges, search))

    async def insert(self, table: str, values: Dict[str, Any]) -> Row:
        async with self._guard():
            provided = self.coerce_row(table, values)
            row = {
                col['name']: self._default(col)
                for col in self._tables[table]['columns']
            }
            row.update(provided)
            self._check_unique(table, row)
            self._data[table][row['id']] = row
            return self._copy(row)

    async def update(
        self,
        table: str,
        row_id: Any,
        changes: Dict[str, Any],
        *,
        expected: Optional[Dict[str, Any]] = None,
        exclude: Optional[Dict[str, Any]] = None
    ) -> Optional[Row]:
        async with self._guard():
            values = self.coerce_row(table, changes)
            row = self._data[table].get(self.coerce(table, 'id', row_id))
            if row is None:
                return None
            if not self._matches(table, row, expected) or self._excluded(table, row, exclude):
                return None
            candidate = dict(row, **values)
            self._check_unique(table, candidate)
            row.update(values)
            self._touch(table, row)
            return self._copy(row)

    async def update_where(
        self,
        table: str,
        filters: Dict[str, Any],
        changes: Dict[str, Any],
        *,
        exclude: Optional[Dict[str, Any]] = None
    ) -> int:
        async with self._guard():
            values = self.coerce_row(table, changes)
            rows = self._select(table, filters, exclude)
            for row in rows:
                row.update(values)
                self._touch(table, row)
            return len(rows)

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
        async with self._guard():
            self._check_columns(table, [column])
            values = self.coerce_row(table, changes or {})
            row = self._data[table].get(self.coerce(table, 'id', row_id))
            if row is None:
                return None
            new_value = (row.get(column) or 0) + int(delta)
            if floor is not None:
                new_value = max(new_value, floor)
            row[column] = new_value
            row.update(values)
            self._touch(table, row)
            return self._copy(row)

    async def delete_where(self, table: str, **filters: Any) -> int:
        async with self._guard():
            rows = self._select(table, filters)
            for row in rows:
                del self._data[table][row['id']]
            return len(rows)

    async def upsert(
        self,
        table: str,
        values: Dict[str, Any],
        conflict: Sequence[str]
    ) -> Row:
        async with self._guard():
            provided = self.coerce_row(table, values)
            matches = self._select(table, {column: provided[column] for column in conflict})
            if matches:
                row = matches[0]
                row.update({k: v for k, v in provided.items() if k not in conflict and k != 'id'})
                self._touch(table, row)
                return self._copy(row)

        return await self.insert(table, values)
