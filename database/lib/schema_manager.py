"""Versioned schema for the marketplace tables.

Each ``database/schema/vN.py`` module exposes a ``schema`` dict with the
full table list of version N and the ``migrations`` that upgrade N-1 to N.
The DDL builders below turn table dicts into SQL; ``SchemaManager`` applies
them through an asyncpg pool and records versions in ``schema_version``.
"""
import importlib
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'

VERSION_TABLE_SQL = '''
    CREATE TABLE IF NOT EXISTS schema_version (
        version INT8 PRIMARY KEY,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
'''

def load_schema_files(schema_dir: Optional[Path] = None) -> Dict[int, Dict[str, Any]]:
    """Import every ``vN.py`` schema module.

    Returns:
        Dict of version number to schema dict, in version order

    Raises:
        DatabaseSchemaError: If a module fails to import or declares the wrong version
    """
    schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
    found: Dict[int, Dict[str, Any]] = {}
    if not schema_dir.exists():
        return found

    for path in schema_dir.glob('v*.py'):
        if not path.stem[1:].isdigit():
            logger.warning(f"Ignoring schema file with bad name: {path.name}")
            continue
        version = int(path.stem[1:])

        try:
            module = importlib.import_module(f"database.schema.{path.stem}")
        except ImportError as e:
            raise DatabaseSchemaError(f"Cannot import schema {path.name}: {e}")

        schema = getattr(module, 'schema', None)
        if schema is None:
            raise DatabaseSchemaError(f"{path.name} does not define 'schema'")
        if schema.get('version') != version:
            raise DatabaseSchemaError(
                f"{path.name} declares version {schema.get('version')}, expected {version}"
            )
        found[version] = schema

    return dict(sorted(found.items()))

def latest_schema(schema_dir: Optional[Path] = None) -> Dict[str, Any]:
    """The newest schema dict.

    Raises:
        DatabaseSchemaError: If there are no schema modules
    """
    versions = load_schema_files(schema_dir)
    if not versions:
        raise DatabaseSchemaError("No schema versions found")
    return versions[max(versions)]

# DDL builders

def column_sql(col: Dict[str, Any]) -> str:
    parts = [col['name'], col['type']]
    if 'default' in col:
        parts.append(f"DEFAULT {col['default']}")
    if col.get('nullable') is False:
        parts.append('NOT NULL')
    return ' '.join(parts)

def create_table_sql(table: Dict[str, Any]) -> str:
    """``CREATE TABLE`` for one table, without foreign keys or indexes."""
    items = [column_sql(col) for col in table['columns']]
    for col in table['columns']:
        if col.get('primary_key'):
            items.append(f"PRIMARY KEY ({col['name']})")
        elif col.get('unique'):
            items.append(f"UNIQUE ({col['name']})")
    for check in table.get('checks', []):
        items.append(f"CONSTRAINT {check['name']} CHECK ({check['expression']})")

    body = ',\n    '.join(items)
    return f"CREATE TABLE IF NOT EXISTS {table['name']} (\n    {body}\n)"

def foreign_key_sql(table: Dict[str, Any]) -> List[str]:
    return [
        f"ALTER TABLE {table['name']} "
        f"ADD CONSTRAINT fk_{table['name']}_{'_'.join(fk['columns'])} "
        f"FOREIGN KEY ({', '.join(fk['columns'])}) REFERENCES {fk['references']}"
        for fk in table.get('foreign_keys', [])
    ]

def index_sql(table: Dict[str, Any]) -> List[str]:
    statements = []
    for idx in table.get('indexes', []):
        unique = 'UNIQUE ' if idx.get('unique') else ''
        statement = (
            f"CREATE {unique}INDEX IF NOT EXISTS {idx['name']} "
            f"ON {table['name']} ({', '.join(idx['columns'])})"
        )
        if 'where' in idx:
            statement += f" WHERE {idx['where']}"
        statements.append(statement)
    return statements

def fresh_install_sql(schema: Dict[str, Any]) -> List[str]:
    """All statements creating ``schema`` on an empty database.

    Every table is created before any foreign key or index, so constraints
    can reference tables defined later in the file.
    """
    tables = schema.get('tables', [])
    statements = [create_table_sql(table) for table in tables]
    for table in tables:
        statements.extend(foreign_key_sql(table))
    for table in tables:
        statements.extend(index_sql(table))
    return statements

class SchemaManager:
    """Brings a PostgreSQL database to the latest schema version."""

    def __init__(self, pool, schema_dir: Optional[Path] = None) -> None:
        self.pool = pool
        self._schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
        self.current_version = 0

    async def initialize(self) -> None:
        """Create the version table and install or migrate as needed.

        Raises:
            DatabaseSchemaError: If no schema exists or applying it fails
        """
        versions = load_schema_files(self._schema_dir)
        if not versions:
            raise DatabaseSchemaError("No schema versions found")

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(VERSION_TABLE_SQL)
                self.current_version = await conn.fetchval(
                    'SELECT COALESCE(MAX(version), 0) FROM schema_version'
                )
            await self._upgrade(versions)
        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    async def _upgrade(self, versions: Dict[int, Dict[str, Any]]) -> None:
        target = max(versions)
        if self.current_version >= target:
            logger.info(f"Schema is at version {self.current_version}, nothing to do")
            return

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.current_version == 0:
                    logger.info(f"Installing schema version {target}")
                    for statement in fresh_install_sql(versions[target]):
                        await conn.execute(statement)
                    await self._record(conn, target)
                else:
                    for version in range(self.current_version + 1, target + 1):
                        if version not in versions:
                            continue
                        logger.info(f"Migrating schema to version {version}")
                        for statement in versions[version].get('migrations', []):
                            await conn.execute(statement)
                        await self._record(conn, version)

        self.current_version = target

    async def _record(self, conn, version: int) -> None:
        await conn.execute('INSERT INTO schema_version (version) VALUES ($1)', version)
        logger.info(f"Schema version {version} applied")
