"""
Repository layer for database operations.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from database.connection import DatabaseConnection
from database.models import CommandModel


logger = logging.getLogger(__name__)


class CommandRepository:
    """Repository for command toggles and usage counters."""

    def __init__(self, db_connection: DatabaseConnection):
        """
        Initialize command repository.

        Args:
            db_connection: Database connection manager
        """
        self.db_connection = db_connection

    async def seed(self, names: Iterable[str]) -> None:
        """
        Insert missing commands as enabled, leaving existing rows untouched.

        Args:
            names: Command names without prefix
        """
        conn = await self.db_connection.get_connection()

        try:
            await conn.executemany(
                "INSERT OR IGNORE INTO commands (name, enabled, usage_count) VALUES (?, 1, 0)",
                [(name,) for name in names]
            )
            await conn.commit()
            logger.debug("Commands seeded")

        except Exception as e:
            logger.error(f"Failed to seed commands: {e}", exc_info=True)
            await conn.rollback()
            raise

    async def get(self, name: str) -> Optional[CommandModel]:
        """
        Get a command row by name.

        Returns:
            Command model or None if not found
        """
        conn = await self.db_connection.get_connection()

        try:
            cursor = await conn.execute(
                "SELECT name, enabled, usage_count, last_used FROM commands WHERE name = ?",
                (name,)
            )
            row = await cursor.fetchone()
            return self._to_model(row) if row else None

        except Exception as e:
            logger.error(f"Failed to get command: {e}", extra={"command": name}, exc_info=True)
            raise

    async def is_enabled(self, name: str) -> bool:
        """Unknown commands count as enabled."""
        command = await self.get(name)
        return command.enabled if command else True

    async def set_enabled(self, name: str, enabled: bool) -> None:
        """
        Enable or disable a single command.

        Args:
            name: Command name
            enabled: New state
        """
        conn = await self.db_connection.get_connection()

        try:
            await conn.execute(
                """
                INSERT INTO commands (name, enabled, usage_count)
                VALUES (?, ?, 0)
                ON CONFLICT(name) DO UPDATE SET enabled = excluded.enabled
                """,
                (name, int(enabled))
            )
            await conn.commit()
            logger.info(f"Command '{name}' {'enabled' if enabled else 'disabled'}")

        except Exception as e:
            logger.error(f"Failed to set command state: {e}", extra={"command": name}, exc_info=True)
            await conn.rollback()
            raise

    async def enable_all(self) -> None:
        """Re-enable every individually disabled command."""
        conn = await self.db_connection.get_connection()

        try:
            await conn.execute("UPDATE commands SET enabled = 1")
            await conn.commit()
            logger.info("All commands re-enabled")

        except Exception as e:
            logger.error(f"Failed to enable commands: {e}", exc_info=True)
            await conn.rollback()
            raise

    async def record_usage(self, name: str) -> None:
        """
        Increment usage count and stamp last use.

        Args:
            name: Command name
        """
        conn = await self.db_connection.get_connection()

        try:
            await conn.execute(
                """
                UPDATE commands
                SET usage_count = usage_count + 1, last_used = ?
                WHERE name = ?
                """,
                (datetime.now().isoformat(), name)
            )
            await conn.commit()

        except Exception as e:
            logger.error(f"Failed to record command usage: {e}", extra={"command": name}, exc_info=True)
            await conn.rollback()
            raise

    async def list_all(self) -> List[CommandModel]:
        """
        Get all commands ordered by name.
        """
        conn = await self.db_connection.get_connection()

        try:
            cursor = await conn.execute(
                "SELECT name, enabled, usage_count, last_used FROM commands ORDER BY name"
            )
            rows = await cursor.fetchall()
            return [self._to_model(row) for row in rows]

        except Exception as e:
            logger.error(f"Failed to list commands: {e}", exc_info=True)
            raise

    @staticmethod
    def _to_model(row) -> CommandModel:
        return CommandModel(
            name=row['name'],
            enabled=bool(row['enabled']),
            usage_count=row['usage_count'],
            last_used=datetime.fromisoformat(row['last_used']) if row['last_used'] else None
        )


class ConfigRepository:
    """Repository for configuration-related database operations."""

    def __init__(self, db_connection: DatabaseConnection):
        """
        Initialize config repository.

        Args:
            db_connection: Database connection manager
        """
        self.db_connection = db_connection

    async def get(self, key: str) -> Optional[str]:
        """
        Get configuration value by key.

        Args:
            key: Configuration key

        Returns:
            Configuration value or None if not found
        """
        conn = await self.db_connection.get_connection()

        try:
            cursor = await conn.execute(
                "SELECT value FROM config WHERE key = ?",
                (key,)
            )
            row = await cursor.fetchone()

            if row:
                logger.debug(f"Config retrieved: {key}")
                return row['value']
            return None

        except Exception as e:
            logger.error(f"Failed to get config: {e}", exc_info=True)
            raise

    async def set(self, key: str, value: str) -> None:
        """
        Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        conn = await self.db_connection.get_connection()

        try:
            await conn.execute(
                """
                INSERT INTO config (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value)
            )
            await conn.commit()
            logger.debug(f"Config set: {key}")

        except Exception as e:
            logger.error(f"Failed to set config: {e}", exc_info=True)
            await conn.rollback()
            raise

    async def get_bool(self, key: str, default: bool) -> bool:
        value = await self.get(key)
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes", "on")

    async def set_bool(self, key: str, value: bool) -> None:
        await self.set(key, "true" if value else "false")
