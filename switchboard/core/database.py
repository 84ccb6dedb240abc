"""
Centralized Database Module

Single point of access for the gateway's SQLite storage: conversation
messages, working memory, and tracked documents.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Database:
    """Centralized database manager."""

    def __init__(self, db_path: Optional[Path] = None, in_memory: bool = False):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses memory.database_path from config
            in_memory: If True, creates an in-memory database (useful for testing)
        """
        if in_memory:
            self.db_path = ":memory:"
            # StaticPool keeps the single in-memory connection alive across calls
            self.engine = create_engine(
                "sqlite:///:memory:",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool
            )
        else:
            if db_path is None:
                from .config import get_config
                db_path = Path(get_config().memory.database_path)
            self.db_path = Path(db_path)
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                connect_args={"check_same_thread": False}
            )

        self._initialize_schema()

    def _initialize_schema(self):
        """Create database tables if they don't exist."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("""
                    CREATE TABLE IF NOT EXISTS memory_messages (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id TEXT NOT NULL,
                        thread_id TEXT NOT NULL,
                        role TEXT NOT NULL,
                        content TEXT NOT NULL,
                        metadata TEXT,
                        created_at TEXT NOT NULL
                    )
                """))
                conn.execute(text("""
                    CREATE INDEX IF NOT EXISTS idx_memory_messages_thread
                    ON memory_messages(resource_id, thread_id, id)
                """))

                conn.execute(text("""
                    CREATE TABLE IF NOT EXISTS working_memory (
                        resource_id TEXT NOT NULL,
                        thread_id TEXT NOT NULL,
                        data TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        PRIMARY KEY (resource_id, thread_id)
                    )
                """))

                conn.execute(text("""
                    CREATE TABLE IF NOT EXISTS tracked_documents (
                        doc_token TEXT NOT NULL,
                        chat_id TEXT NOT NULL,
                        doc_url TEXT,
                        added_by TEXT,
                        last_revision TEXT,
                        created_at TEXT NOT NULL,
                        PRIMARY KEY (doc_token, chat_id)
                    )
                """))

                conn.commit()
                logger.info(f"Database schema initialized: {self.db_path}")

        except Exception as e:
            logger.error(f"Error initializing database schema: {e}")
            raise

    @contextmanager
    def get_connection(self):
        """
        Get a database connection context manager.

        Usage:
            with db.get_connection() as conn:
                result = conn.execute(text("SELECT * FROM table"))
        """
        conn = self.engine.connect()
        try:
            yield conn
        finally:
            conn.close()

    def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        """
        Execute a write statement and commit.

        Returns:
            Number of affected rows
        """
        with self.get_connection() as conn:
            result = conn.execute(text(sql), params or {})
            conn.commit()
            return result.rowcount

    def fetchall(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[tuple]:
        """Execute a query and fetch all results."""
        with self.get_connection() as conn:
            result = conn.execute(text(sql), params or {})
            return result.fetchall()

    def fetchone(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[tuple]:
        """Execute a query and fetch one result."""
        with self.get_connection() as conn:
            result = conn.execute(text(sql), params or {})
            return result.fetchone()

    def insert(self, table: str, data: Dict[str, Any]) -> int:
        """
        Insert a row into a table.

        Args:
            table: Table name
            data: Dictionary of column: value pairs

        Returns:
            ID of inserted row
        """
        columns = ", ".join(data.keys())
        placeholders = ", ".join(f":{key}" for key in data.keys())
        sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"

        with self.get_connection() as conn:
            result = conn.execute(text(sql), data)
            conn.commit()
            return result.lastrowid

    def delete(self, table: str, where: str, where_params: Dict[str, Any]) -> int:
        """
        Delete rows from a table.

        Args:
            table: Table name
            where: WHERE clause (without the WHERE keyword)
            where_params: Parameters for the WHERE clause

        Returns:
            Number of rows deleted
        """
        with self.get_connection() as conn:
            result = conn.execute(text(f"DELETE FROM {table} WHERE {where}"), where_params)
            conn.commit()
            return result.rowcount

    def close(self):
        """Dispose of the engine's connections."""
        self.engine.dispose()


# Global database instance (lazily initialized)
_db_instance: Optional[Database] = None


def get_db() -> Database:
    """Get the global database instance."""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database()
    return _db_instance


def reset_db():
    """Reset the global database instance. Useful for testing."""
    global _db_instance
    if _db_instance:
        _db_instance.close()
    _db_instance = None
