"""PostgreSQL implementation of the storage interface on an asyncpg pool."""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import asyncpg
from asyncpg.exceptions import PostgresError

from .exceptions import DatabaseError, DuplicateRowError
from .store import Row, Store

logger = logging.getLogger(__name__)

class _Query:
    """Accumulates WHERE clauses and positional parameters."""

    def __init__(self, store: Store, table: str, start: int = 1) -> None:
        self.store = store
        self.table = table
        self.clauses: List[str] = []
        self.params: List[Any] = []
        self._next = start

    def param(self, value: Any) -> str:
        self.params.append(value)
        placeholder = f"${self._next}"
        self._next += 1
        return placeholder

    def equals(self, filters: Optional[Dict[str, Any]], negate: bool = False) -> '_Query':
        for column, value in (filters or {}).items():
            self.store._check_columns(self.table, [column])
            value = self.store.coerce(self.table, column, value)
            if value is None:
                clause = f"{column} IS NULL"
            elif isinstance(value, list) and not self.store.columns(self.table)[column].endswith('[]'):
                clause = f"{column} = ANY({self.param(value)})"
            else:
                clause = f"{column} = {self.param(value)}"
            self.clauses.append(f"NOT ({clause})" if negate else clause)
        return self

    def between(self, ranges: Optional[Dict[str, Tuple[Any, Any]]]) -> '_Query':
        for column, (low, high) in (ranges or {}).items():
            self.store._check_columns(self.table, [column])
            if low is not None:
                self.clauses.append(f"{column} >= {self.param(self.store.coerce(self.table, column, low))}")
            if high is not None:
                self.clauses.append(f"{column} <= {self.param(self.store.coerce(self.table, column, high))}")
        return self

    def matching(self, search: Optional[Tuple[Sequence[str], str]]) -> '_Query':
        if search and search[1]:
            columns, term = search
            self.store._check_columns(self.table, columns)
            placeholder = self.param(f"%{term}%")
            self.clauses.append(
                '(' + ' OR '.join(f"{column} ILIKE {placeholder}" for column in columns) + ')'
            )
        return self

    @property
    def where(self) -> str:
        return f"WHERE {' AND '.join(self.clauses)}" if self.clauses else ''

class PostgresStore(Store):
    """Store backed by an asyncpg pool.

    Conditional updates put their preconditions in the ``WHERE`` clause, so
    a transition either applies in one statement or matches no row.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        schema: Optional[Dict[str, Any]] = None,
        conn: Optional[asyncpg.Connection] = None
    ) -> None:
        super().__init__(schema)
        self.pool = pool
        self._conn = conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        if self._conn is not None:
            yield self._conn
        else:
            async with self.pool.acquire() as conn:
                yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator['PostgresStore']:
        if self._conn is not None:
            # Nested scope becomes a savepoint
            async with self._conn.transaction():
                yield self
            return
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresStore(self.pool, schema=self.schema, conn=conn)

    async def _run(self, method: str, table: str, sql: str, *params: Any):
        try:
            async with self._connection() as conn:
                return await getattr(conn, method)(sql, *params)
        except asyncpg.UniqueViolationError as e:
            raise DuplicateRowError(table, message=f"Duplicate row in {table}: {e.detail or e}")
        except PostgresError as e:
            logger.error(f"Database error on {table}: {e}")
            raise DatabaseError(f"Database error on {table}: {e}")

    def _touch(self, table: str) -> str:
        return ', updated_at = now()' if self.has_column(table, 'updated_at') else ''

    async def get(self, table: str, row_id: Any) -> Optional[Row]:
        self.columns(table)
        row = await self._run(
            'fetchrow', table,
            f'SELECT * FROM {table} WHERE id = $1',
            self.coerce(table, 'id', row_id)
        )
        return dict(row) if row else None

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
        query = _Query(self, table).equals(filters).equals(exclude, negate=True)
        query.between(ranges).matching(search)

        sql = f'SELECT * FROM {table} {query.where}'
        if order_by:
            ordering = []
            for column in order_by:
                descending = column.startswith('-')
                name = column.lstrip('-')
                self._check_columns(table, [name])
                ordering.append(f"{name} {'DESC' if descending else 'ASC'} NULLS LAST")
            sql += ' ORDER BY ' + ', '.join(ordering)
        if limit is not None:
            sql += f' LIMIT {query.param(int(limit))}'
        if offset:
            sql += f' OFFSET {query.param(int(offset))}'

        rows = await self._run('fetch', table, sql, *query.params)
        return [dict(row) for row in rows]

    async def count(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        exclude: Optional[Dict[str, Any]] = None,
        ranges: Optional[Dict[str, Tuple[Any, Any]]] = None,
        search: Optional[Tuple[Sequence[str], str]] = None
    ) -> int:
        query = _Query(self, table).equals(filters).equals(exclude, negate=True)
        query.between(ranges).matching(search)
        return await self._run(
            'fetchval', table,
            f'SELECT COUNT(*) FROM {table} {query.where}',
            *query.params
        )

    async def insert(self, table: str, values: Dict[str, Any]) -> Row:
        row = self.coerce_row(table, values)
        columns = list(row)
        placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))
        record = await self._run(
            'fetchrow', table,
            f'''
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            RETURNING *
            ''',
            *row.values()
        )
        return dict(record)

    async def update(
        self,
        table: str,
        row_id: Any,
        changes: Dict[str, Any],
        *,
        expected: Optional[Dict[str, Any]] = None,
        exclude: Optional[Dict[str, Any]] = None
    ) -> Optional[Row]:
        values = self.coerce_row(table, changes)
        assignments = [f"{column} = ${i}" for i, column in enumerate(values, start=1)]
        query = _Query(self, table, start=len(values) + 1)
        query.clauses.append(f"id = {query.param(self.coerce(table, 'id', row_id))}")
        query.equals(expected).equals(exclude, negate=True)

        record = await self._run(
            'fetchrow', table,
            f'''
            UPDATE {table}
            SET {', '.join(assignments)}{self._touch(table)}
            {query.where}
            RETURNING *
            ''',
            *values.values(), *query.params
        )
        return dict(record) if record else None

    async def update_where(
        self,
        table: str,
        filters: Dict[str, Any],
        changes: Dict[str, Any],
        *,
        exclude: Optional[Dict[str, Any]] = None
    ) -> int:
        values = self.coerce_row(table, changes)
        assignments = [f"{column} = ${i}" for i, column in enumerate(values, start=1)]
        query = _Query(self, table, start=len(values) + 1).equals(filters).equals(exclude, negate=True)
        result = await self._run(
            'execute', table,
            f'''
            UPDATE {table}
            SET {', '.join(assignments)}{self._touch(table)}
            {query.where}
            ''',
            *values.values(), *query.params
        )
        return int(result.split()[-1])

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
        self._check_columns(table, [column])
        values = self.coerce_row(table, changes or {})
        assignments = [f"{name} = ${i}" for i, name in enumerate(values, start=1)]
        query = _Query(self, table, start=len(values) + 1)
        expression = f"{column} + {query.param(int(delta))}"
        if floor is not None:
            expression = f"GREATEST({expression}, {query.param(int(floor))})"
        assignments.insert(0, f"{column} = {expression}")
        query.clauses.append(f"id = {query.param(self.coerce(table, 'id', row_id))}")

        record = await self._run(
            'fetchrow', table,
            f'''
            UPDATE {table}
            SET {', '.join(assignments)}{self._touch(table)}
            {query.where}
            RETURNING *
            ''',
            *values.values(), *query.params
        )
        return dict(record) if record else None

    async def delete_where(self, table: str, **filters: Any) -> int:
        query = _Query(self, table).equals(filters)
        result = await self._run(
            'execute', table,
            f'DELETE FROM {table} {query.where}',
            *query.params
        )
        return int(result.split()[-1])

    async def upsert(
        self,
        table: str,
        values: Dict[str, Any],
        conflict: Sequence[str]
    ) -> Row:
        row = self.coerce_row(table, values)
        self._check_columns(table, conflict)
        columns = list(row)
        placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))
        updates = [f"{column} = EXCLUDED.{column}" for column in columns if column not in conflict]
        if self.has_column(table, 'updated_at'):
            updates.append('updated_at = now()')
        record = await self._run(
            'fetchrow', table,
            f'''
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            ON CONFLICT ({', '.join(conflict)}) DO UPDATE
            SET {', '.join(updates)}
            RETURNING *
            ''',
            *row.values()
        )
        return dict(record)
