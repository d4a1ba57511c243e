from loguru import logger
import asyncpg

class DBConnectionManager:
    """Owns the asyncpg connection pool for the ledger database"""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self._pool = None

    async def get_pool(self) -> asyncpg.Pool:
        """Get or create the connection pool"""
        if self._pool is None:
            logger.debug("DBConnectionManager.get_pool: Creating connection pool")
            self._pool = await asyncpg.create_pool(self.dsn)
        return self._pool

    async def close(self):
        """Close the connection pool"""
        if self._pool:
            await self._pool.close()
            self._pool = None
