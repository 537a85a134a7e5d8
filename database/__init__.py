"""Database module for the marketplace store.

This module handles:
- PostgreSQL connection pool initialization
- Schema management
- Store selection (PostgreSQL or in-process) from the configured URL
- Connection lifecycle
"""

import logging
import ssl
from typing import Optional, Dict, Any
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs, urlunparse, urlencode

from .lib.schema_manager import SchemaManager
from .exceptions import DatabaseError, DatabaseSchemaError, DuplicateRowError
from .memory import MemoryStore
from .postgres import PostgresStore
from .store import Row, Store

logger = logging.getLogger(__name__)

MEMORY_URL = 'memory://'

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None
_store: Optional[Store] = None

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for verified server connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Split a database URL into a DSN and connection kwargs.

    SSL is enabled only when the URL asks for it with ``sslmode``
    (``require``, ``verify-ca`` or ``verify-full``).

    Args:
        db_url: Database connection URL

    Returns:
        Dict with the cleaned ``dsn`` and extra connection parameters
    """
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
            'application_name': 'marketplace',
        }
    }

    sslmode = params.pop('sslmode', [None])[0]
    if sslmode in ('require', 'verify-ca', 'verify-full'):
        kwargs['ssl'] = _get_ssl_context()

    query = urlencode({key: values[0] for key, values in params.items()})
    kwargs['dsn'] = urlunparse(parsed._replace(query=query))
    return kwargs

def is_memory_url(db_url: Optional[str]) -> bool:
    return not db_url or db_url.startswith(MEMORY_URL)

@backoff.on_exception(
    backoff.expo,
    (OSError, asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None) -> asyncpg.Pool:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided or is not a PostgreSQL URL
        Exception: If initialization fails after retries
    """
    global _pool, _schema_manager

    try:
        # Import here to avoid circular imports
        from config import settings_conf

        url = db_url or settings_conf.get('db_url')
        if not url or is_memory_url(url):
            raise ValueError("PostgreSQL database URL not provided")

        conn_kwargs = _get_connection_kwargs(url)
        _pool = await asyncpg.create_pool(
            min_size=2,          # Minimum idle connections
            max_size=20,         # Maximum connections
            max_queries=10000,   # Reset connection after this many queries
            max_inactive_connection_lifetime=300.0,  # 5 minutes
            command_timeout=60.0,  # 1 minute command timeout
            **conn_kwargs
        )

        _schema_manager = SchemaManager(_pool)
        await _schema_manager.initialize()
        logger.info("Database pool initialized")
        return _pool

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool

async def create_store(db_url: Optional[str] = None) -> Store:
    """Build a store for the given URL.

    ``memory://`` (or no URL) gives a fresh in-process store; anything else
    is treated as a PostgreSQL URL and gets a pooled store.
    """
    if is_memory_url(db_url):
        logger.info("Using in-process memory store")
        return MemoryStore()
    pool = await init_db(db_url)
    return PostgresStore(pool)

async def get_store() -> Store:
    """Get the process-wide store, creating it from settings on first use."""
    global _store

    if _store is None:
        from config import settings_conf
        _store = await create_store(settings_conf.get('db_url'))
    return _store

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager, _store

    if _store is not None:
        await _store.close()
        _store = None
    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

# Export public interface
__all__ = [
    'init_db', 'get_pool', 'close', 'create_store', 'get_store', 'is_memory_url',
    'Store', 'Row', 'MemoryStore', 'PostgresStore',
    'DatabaseError', 'DatabaseSchemaError', 'DuplicateRowError'
]
