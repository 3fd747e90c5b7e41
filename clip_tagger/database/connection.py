"""
Database connection and session management for clip-tagger.

Provides SQLAlchemy engine, session factory, and connection pooling
with transaction management helpers for SQLite.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional
from sqlalchemy import create_engine, event, pool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base


# Default database path (relative to the working directory)
DEFAULT_DB_PATH = "data/clip_tagger.db"


class DatabaseManager:
    """
    Manages database connections and sessions.

    Provides engine creation, session management, and connection pooling
    configuration for SQLite with proper transaction handling. Each
    manager owns its own engine; there is no module-level instance.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        echo: bool = False,
        check_same_thread: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
    ):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
            echo: If True, SQL statements will be logged
            check_same_thread: SQLite's thread safety check (False for multi-threaded apps)
            pool_size: Number of connections to keep in the pool
            max_overflow: Maximum number of connections to create beyond pool_size
            pool_timeout: Seconds to wait before giving up on getting a connection
        """
        self.db_path = str(db_path or DEFAULT_DB_PATH)
        self.echo = echo
        self.in_memory = self.db_path == ":memory:"

        connect_args = {"check_same_thread": check_same_thread}

        # For in-memory databases, use StaticPool so every session sees the same database
        if self.in_memory:
            poolclass = StaticPool
            connect_args["check_same_thread"] = False
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            poolclass = pool.QueuePool

        self.database_url = f"sqlite:///{self.db_path}"

        engine_kwargs = dict(
            echo=self.echo,
            connect_args=connect_args,
            poolclass=poolclass,
        )
        if poolclass != StaticPool:
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,
            )

        self.engine = create_engine(self.database_url, **engine_kwargs)

        self._configure_sqlite()

        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    def _configure_sqlite(self) -> None:
        """Configure SQLite-specific settings on every new connection of this engine."""

        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable foreign keys and set performance optimizations."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not self.in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")  # Write-Ahead Logging
                cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA temp_store=MEMORY")
            cursor.close()

    def create_all_tables(self) -> None:
        """Create all tables defined in models."""
        Base.metadata.create_all(bind=self.engine)

    def drop_all_tables(self) -> None:
        """Drop all tables (use with caution!)."""
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope with automatic commit/rollback.

        Usage:
            with db_manager.session_scope() as session:
                session.add(event)
                # Automatically commits on success, rolls back on exception

        Yields:
            SQLAlchemy Session within a transaction context
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Close all connections and dispose of the engine."""
        self.engine.dispose()


def create_test_db() -> DatabaseManager:
    """
    Create an in-memory database for testing.

    Returns:
        DatabaseManager instance with in-memory database
    """
    db = DatabaseManager(
        db_path=":memory:",
        echo=False,
        check_same_thread=False,
    )
    db.create_all_tables()
    return db


def bulk_insert_in_chunks(
    session: Session,
    model_class,
    records: list[dict],
    chunk_size: int = 1000
) -> int:
    """
    Insert records in chunks for better performance.

    Args:
        session: SQLAlchemy session
        model_class: SQLAlchemy model class
        records: List of dictionaries with model attributes
        chunk_size: Number of records per chunk

    Returns:
        Total number of records inserted
    """
    total_inserted = 0

    for i in range(0, len(records), chunk_size):
        chunk = records[i:i + chunk_size]
        session.bulk_insert_mappings(model_class, chunk)
        session.flush()
        total_inserted += len(chunk)

    return total_inserted
