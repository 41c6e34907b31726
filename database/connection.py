"""
Database connection management for SQLite.
"""
import asyncio
import aiosqlite
import logging
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


class DatabaseConnection:
    """Manages a shared SQLite connection with WAL mode."""

    def __init__(self, db_path: str):
        """
        Initialize database connection manager.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._is_initialized = False

    async def init_db(self) -> None:
        """
        Initialize database by creating tables if they don't exist.
        """
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        conn = await self.get_connection()

        try:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA temp_store=MEMORY")

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS commands (
                    name TEXT PRIMARY KEY,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    last_used DATETIME
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            await conn.commit()
            self._is_initialized = True
            logger.info(f"Database initialized successfully at {self.db_path} (WAL mode enabled)")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    async def get_connection(self) -> aiosqlite.Connection:
        """
        Get or create database connection with automatic reconnection.

        Returns:
            Active database connection
        """
        async with self._lock:
            if self._connection is not None:
                try:
                    await self._connection.execute("SELECT 1")
                except Exception as e:
                    logger.warning(f"Connection lost, reconnecting: {e}")
                    self._connection = None

            if self._connection is None:
                self._connection = await aiosqlite.connect(
                    self.db_path,
                    timeout=30.0  # Wait up to 30 seconds for locks
                )
                self._connection.row_factory = aiosqlite.Row
                logger.debug("Database connection established")

        return self._connection

    async def close(self) -> None:
        """Close database connection."""
        async with self._lock:
            if self._connection:
                await self._connection.close()
                self._connection = None
                logger.info("Database connection closed")
