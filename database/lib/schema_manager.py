"""Versioned schema application.

Each database/schema/vN.py module exposes a ``schema`` dict:

    version     int, must match the file name
    tables      list of table dicts (columns, primary_key, foreign_keys, indexes)
    triggers    list of trigger dicts (function_name, function_body, name, timing, event, table)
    migrations  raw SQL applied when upgrading an existing database to this version
    seed        idempotent INSERT statements for reference rows

A fresh database gets the latest version's tables in one transaction. An
existing database gets every newer version's migrations in order, each in
its own transaction, followed by that version's seed.
"""
import importlib
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_FILE_RE = re.compile(r'^v(\d+)$')

def column_sql(column: Dict[str, Any]) -> str:
    sql = f"{column['name']} {column['type']}"
    if 'default' in column:
        sql += f" DEFAULT {column['default']}"
    if column.get('nullable') is False or column.get('primary_key'):
        sql += " NOT NULL"
    return sql

def create_table_sql(table: Dict[str, Any]) -> str:
    """CREATE TABLE for a table dict, without foreign keys or indexes."""
    parts = [column_sql(c) for c in table['columns']]
    key = table.get('primary_key') or [c['name'] for c in table['columns'] if c.get('primary_key')]
    if key:
        parts.append(f"PRIMARY KEY ({', '.join(key)})")
    parts.extend(
        f"UNIQUE ({c['name']})" for c in table['columns']
        if c.get('unique') and not c.get('primary_key')
    )
    body = ',\n    '.join(parts)
    return f"CREATE TABLE IF NOT EXISTS {table['name']} (\n    {body}\n)"

def create_index_sql(table_name: str, index: Dict[str, Any]) -> str:
    unique = 'UNIQUE ' if index.get('unique') else ''
    sql = (
        f"CREATE {unique}INDEX IF NOT EXISTS {index['name']} "
        f"ON {table_name} ({', '.join(index['columns'])})"
    )
    if index.get('where'):
        sql += f" WHERE {index['where']}"
    return sql

def foreign_key_sql(table_name: str, fk: Dict[str, Any]) -> str:
    name = f"fk_{table_name}_{'_'.join(fk['columns'])}"
    return (
        f"ALTER TABLE {table_name} ADD CONSTRAINT {name} "
        f"FOREIGN KEY ({', '.join(fk['columns'])}) REFERENCES {fk['references']}"
    )

def trigger_sql(trigger: Dict[str, Any]) -> List[str]:
    """Function, then a drop-and-create of the trigger so reapplying is safe."""
    return [
        f"CREATE OR REPLACE FUNCTION {trigger['function_name']}() RETURNS TRIGGER "
        f"AS $${trigger['function_body']}$$ LANGUAGE plpgsql",
        f"DROP TRIGGER IF EXISTS {trigger['name']} ON {trigger['table']}",
        f"CREATE TRIGGER {trigger['name']} {trigger['timing']} {trigger['event']} "
        f"ON {trigger['table']} FOR EACH ROW EXECUTE FUNCTION {trigger['function_name']}()",
    ]

def schema_statements(schema: Dict[str, Any]) -> List[str]:
    """Every statement needed to build a schema version from nothing, in order."""
    tables = schema.get('tables', [])
    statements = [create_table_sql(t) for t in tables]
    for table in tables:
        statements.extend(foreign_key_sql(table['name'], fk) for fk in table.get('foreign_keys', []))
        statements.extend(create_index_sql(table['name'], idx) for idx in table.get('indexes', []))
    for trigger in schema.get('triggers', []):
        statements.extend(trigger_sql(trigger))
    statements.extend(schema.get('seed', []))
    return statements

class SchemaManager:
    """Tracks the applied schema version and brings the database up to date."""

    def __init__(self, pool, schema_dir: Optional[str] = None) -> None:
        """Initialize schema manager.

        Args:
            pool: Database connection pool
            schema_dir: Directory of vN.py schema files, defaults to database/schema
        """
        self.pool = pool
        self._schema_dir = Path(schema_dir) if schema_dir else Path(__file__).resolve().parent.parent / 'schema'
        self.current_version = 0

    async def initialize(self) -> None:
        """Create the version table if needed and apply anything pending.

        Raises:
            DatabaseSchemaError: If no schema files load or a statement fails
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INT8 PRIMARY KEY,
                        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                ''')
                self.current_version = await conn.fetchval(
                    'SELECT COALESCE(MAX(version), 0) FROM schema_version'
                )

            schemas = self.load_schemas()
            if not schemas:
                raise DatabaseSchemaError(f"No schema files found in {self._schema_dir}")

            latest = max(schemas)
            if self.current_version >= latest:
                logger.info(f"Schema is up to date at version {self.current_version}")
                return

            if self.current_version == 0:
                await self._install(schemas[latest])
            else:
                for version in sorted(v for v in schemas if v > self.current_version):
                    await self._upgrade(schemas[version])
        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    def load_schemas(self) -> Dict[int, Dict[str, Any]]:
        """Import every vN.py under the schema directory.

        Raises:
            DatabaseSchemaError: If a file has no schema or the wrong version
        """
        schemas: Dict[int, Dict[str, Any]] = {}
        if not self._schema_dir.exists():
            return schemas
        for path in self._schema_dir.glob('v*.py'):
            match = SCHEMA_FILE_RE.match(path.stem)
            if not match:
                logger.warning(f"Ignoring schema file with unexpected name: {path.name}")
                continue
            version = int(match.group(1))
            module = importlib.import_module(f"database.schema.{path.stem}")
            schema = getattr(module, 'schema', None)
            if not isinstance(schema, dict):
                raise DatabaseSchemaError(f"{path.name} does not define a schema dict")
            if schema.get('version') != version:
                raise DatabaseSchemaError(
                    f"{path.name} declares version {schema.get('version')}, expected {version}"
                )
            schemas[version] = schema
        return schemas

    async def _install(self, schema: Dict[str, Any]) -> None:
        """Build the latest schema on an empty database."""
        logger.info(f"Installing schema version {schema['version']}")
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for table in reversed(schema.get('tables', [])):
                    await conn.execute(f"DROP TABLE IF EXISTS {table['name']} CASCADE")
                for statement in schema_statements(schema):
                    await conn.execute(statement)
                await conn.execute('INSERT INTO schema_version (version) VALUES ($1)', schema['version'])
        self.current_version = schema['version']
        logger.info(
            f"Installed schema version {schema['version']} with "
            f"{len(schema.get('tables', []))} tables and {len(schema.get('seed', []))} seed rows"
        )

    async def _upgrade(self, schema: Dict[str, Any]) -> None:
        """Apply one version's migrations and seed."""
        logger.info(f"Migrating schema from version {self.current_version} to {schema['version']}")
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for statement in schema.get('migrations', []) + schema.get('seed', []):
                    await conn.execute(statement)
                await conn.execute('INSERT INTO schema_version (version) VALUES ($1)', schema['version'])
        self.current_version = schema['version']
