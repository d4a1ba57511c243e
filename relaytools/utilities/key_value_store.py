import copy
import json
import traceback
from typing import Any, Dict, Optional
from loguru import logger
from relaytools.sql.sql_manager import SQLManager
from relaytools.utilities.db_manager import DBConnectionManager
from relaytools.utilities.exceptions import PersistenceError

class PostgresKeyValueStore:
    """JSON documents keyed by path, stored in the ledger_documents table"""

    def __init__(self, db_manager: DBConnectionManager, sql_manager: Optional[SQLManager] = None):
        self.db_manager = db_manager
        self.sql_manager = sql_manager or SQLManager()
        self.initialized = False

    async def _get_pool(self):
        """Pool for the ledger database. Creates the tables on first use"""
        pool = await self.db_manager.get_pool()
        if not self.initialized:
            async with pool.acquire() as conn:
                for statement in self.sql_manager.load_statements('init', 'create_tables'):
                    await conn.execute(statement)
            self.initialized = True
            logger.info("PostgresKeyValueStore._get_pool: Ledger tables ready")
        return pool

    async def initialize(self):
        """
        Create the ledger tables if they don't exist.

        Raises:
            PersistenceError: If the database is unreachable
        """
        try:
            await self._get_pool()
        except Exception as e:
            logger.error(f"PostgresKeyValueStore.initialize: Error creating ledger tables: {e}")
            logger.error(traceback.format_exc())
            raise PersistenceError('ledger_documents', str(e))

    async def get(self, key: str) -> Optional[Any]:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                raw = await conn.fetchval("SELECT value::text FROM ledger_documents WHERE key = $1", key)
        except Exception as e:
            logger.error(f"PostgresKeyValueStore.get: Error reading {key}: {e}")
            logger.error(traceback.format_exc())
            raise PersistenceError(key, str(e))
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO ledger_documents (key, value, updated_at)
                    VALUES ($1, $2::jsonb, NOW())
                    ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
                    """,
                    key,
                    json.dumps(value),
                )
        except Exception as e:
            logger.error(f"PostgresKeyValueStore.set: Error writing {key}: {e}")
            logger.error(traceback.format_exc())
            raise PersistenceError(key, str(e))

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

class MemoryKeyValueStore:
    """Process-local store for debug runs without a database"""

    def __init__(self, documents: Optional[Dict[str, Any]] = None):
        self.documents: Dict[str, Any] = documents if documents is not None else {}

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self.documents.get(key))

    async def set(self, key: str, value: Any) -> None:
        # Round trip through JSON so stored values look like what a database returns
        self.documents[key] = json.loads(json.dumps(value))

    async def exists(self, key: str) -> bool:
        return key in self.documents
