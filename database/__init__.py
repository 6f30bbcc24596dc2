"""Postgres access for the indexer.

init_db() opens the shared asyncpg pool and brings the schema up to date;
every TokenStore without an explicit pool borrows it through get_pool().
Connection attempts are retried with exponential backoff so the service can
start before the database is accepting connections.
"""

import logging
from typing import Optional

import asyncpg
import backoff

from .exceptions import DatabaseError, DatabaseSchemaError, PersistenceError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

CONNECT_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    OSError,
)

_pool: Optional[asyncpg.Pool] = None

def _log_connect_retry(details):
    logger.warning(
        f"Database not reachable (attempt {details['tries']}), "
        f"retrying in {details['wait']:.1f}s: {details['exception']}"
    )

@backoff.on_exception(backoff.expo, CONNECT_ERRORS, max_tries=5, on_backoff=_log_connect_retry)
async def _open_pool(url: str, min_size: int, max_size: int) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        url,
        min_size=min_size,
        max_size=max_size,
        max_inactive_connection_lifetime=300.0,
        command_timeout=60.0
    )

async def init_db(db_url: Optional[str] = None, force_recreate: bool = False) -> asyncpg.Pool:
    """Open the pool and apply pending schema versions.

    Args:
        db_url: Postgres URL, defaults to the db_url setting
        force_recreate: Forget the applied version so the latest schema is
            installed from scratch. Drops the indexer's tables.

    Returns:
        The shared pool

    Raises:
        DatabaseError: If no URL is configured
        DatabaseSchemaError: If the schema cannot be applied
    """
    global _pool
    from config import settings_conf

    url = db_url or settings_conf.get('db_url')
    if not url:
        raise DatabaseError("No database URL configured (db_url / DB_URL)")

    if _pool is not None:
        await _pool.close()
    _pool = await _open_pool(url, settings_conf['db_pool_min_size'], settings_conf['db_pool_max_size'])

    if force_recreate:
        logger.warning("Recreating schema from scratch")
        async with _pool.acquire() as conn:
            await conn.execute('DROP TABLE IF EXISTS schema_version')

    manager = SchemaManager(_pool)
    try:
        await manager.initialize()
    except DatabaseSchemaError:
        await close()
        raise
    logger.info(f"Database ready at schema version {manager.current_version}")
    return _pool

async def get_pool() -> asyncpg.Pool:
    """The shared pool, initialized on first use."""
    if _pool is None:
        await init_db()
    return _pool

async def close() -> None:
    """Close the shared pool if it is open."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")

__all__ = [
    'init_db', 'get_pool', 'close', 'TokenStore',
    'DatabaseError', 'DatabaseSchemaError', 'PersistenceError'
]

from .store import TokenStore  # noqa: E402
