"""
PostgreSQL Client Wrapper for the unicorn platform

Centralized PostgreSQL access through an asyncpg connection pool.
Provides lazy pool creation from InfraConfig and a consistent
transaction/query pattern for repositories.

Usage:
    from core.postgres_client import get_postgres_client

    db = await get_postgres_client("unicorn.contracts")

    row = await db.query_row("SELECT * FROM contracts.contracts WHERE property_id = $1", [property_id])

    async with db.transaction() as conn:
        await conn.execute("UPDATE ...", ...)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.config import InfraConfig, get_settings

logger = logging.getLogger(__name__)

# Errors worth retrying: the server was unreachable or the call ran out of time.
TRANSIENT_DB_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)


class PostgresClient:
    """
    PostgreSQL client wrapper around an asyncpg pool.

    Provides:
    - Lazy pool creation on first use
    - Row results as plain dicts
    - Transaction context manager yielding the raw connection
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
    ):
        """
        Initialize PostgreSQL client wrapper.

        Args:
            service_name: Name of the service using this client
            config: Infrastructure configuration (defaults to global settings)
        """
        self.service_name = service_name
        self.config = config or get_settings().infrastructure
        self._pool: Optional[asyncpg.Pool] = None
        self._pool_lock = asyncio.Lock()

        logger.info(
            f"PostgreSQL client initialized for {service_name}: "
            f"{self.config.postgres_host}:{self.config.postgres_port}/{self.config.postgres_db}"
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool
        async with self._pool_lock:
            if self._pool is None:
                self._pool = await asyncpg.create_pool(
                    dsn=self.config.postgres_dsn,
                    min_size=self.config.postgres_min_pool_size,
                    max_size=self.config.postgres_max_pool_size,
                    command_timeout=self.config.postgres_command_timeout,
                    server_settings={"application_name": self.service_name},
                )
                logger.info(f"PostgreSQL pool created for {self.service_name}")
        return self._pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection and run the block inside a transaction"""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        pool = await self._get_pool()
        rows = await pool.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        pool = await self._get_pool()
        row = await pool.fetchrow(sql, *(params or []))
        return dict(row) if row is not None else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        """Execute SQL statement, returns the command status tag"""
        pool = await self._get_pool()
        return await pool.execute(sql, *(params or []))

    async def health_check(self) -> bool:
        """Check database health"""
        try:
            return await self.query_row("SELECT 1 AS ok") is not None
        except TRANSIENT_DB_ERRORS as e:
            logger.warning(f"PostgreSQL health check failed: {e}")
            return False

    async def close(self):
        """Close the pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")


# Singleton instances per service
_postgres_clients: Dict[str, PostgresClient] = {}


async def get_postgres_client(
    service_name: str,
    config: Optional[InfraConfig] = None,
) -> PostgresClient:
    """
    Get or create PostgreSQL client for a service.

    Args:
        service_name: Service name
        config: Optional infrastructure config override

    Returns:
        PostgresClient instance
    """
    if service_name not in _postgres_clients:
        _postgres_clients[service_name] = PostgresClient(service_name=service_name, config=config)
    return _postgres_clients[service_name]
