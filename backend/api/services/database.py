"""
Database service for the API.

Holds one shared connection (PostgreSQL when DATABASE_URL is set, SQLite
otherwise) and hands it to routes inside a commit-or-rollback block.
"""

import threading
from contextlib import contextmanager
from typing import Generator, Optional

from inventory_db import (
    DatabaseConnection,
    create_schema,
    is_postgres,
)


class DatabasePool:
    """
    Simple connection pool.

    Uses a single connection that is reused across requests; a lock keeps
    FastAPI's worker threads from interleaving transactions on it.
    """

    def __init__(self):
        self._db: Optional[DatabaseConnection] = None
        self._lock = threading.RLock()

    def initialize(self, db_path: Optional[str] = None) -> None:
        """Initialize the database connection."""
        self._db = DatabaseConnection(db_path)
        self._db.connect()

    def use_connection(self, conn) -> None:
        """Serve an existing DB-API connection (tests use in-memory SQLite)."""
        create_schema(conn)
        self._db = DatabaseConnection()
        self._db._conn = conn
        self._db._is_postgres = is_postgres(conn)

    def _ensure_connection(self) -> None:
        """Ensure the connection is alive, reconnect if needed."""
        if self._db is None or self._db.conn is None:
            self.initialize()
            return

        try:
            cursor = self._db.cursor()
            cursor.execute("SELECT 1")
        except Exception as e:
            if not self._db.is_connection_error(e):
                raise
            self._db.reconnect()

    @contextmanager
    def get_connection(self) -> Generator:
        """
        Get the database connection.

        Example:
            with db_pool.get_connection() as conn:
                rows, total = list_batches(conn)
        """
        with self._lock:
            self._ensure_connection()
            conn = self._db.conn
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    @property
    def backend(self) -> str:
        if self._db is None or self._db.conn is None:
            return "disconnected"
        return "postgresql" if is_postgres(self._db.conn) else "sqlite"

    def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            self._db.close()
            self._db = None


# Global database pool instance
db_pool = DatabasePool()


def get_db():
    """
    Dependency for FastAPI routes to get a connection context.

    Usage in routes:
        @router.get("/items")
        def get_items(db = Depends(get_db)):
            with db() as conn:
                return list_urls(conn)
    """
    return db_pool.get_connection

