"""
Database Manager for Fingerprint Attendance
===========================================
Handles database connection, initialization, and session management.

Features:
- SQLite by default, any SQLAlchemy URL (e.g. PostgreSQL) via DATABASE_URL
- Automatic table creation
- Default configuration seeding
- SQLAlchemy errors surfaced as StorageError
- SQLite transactions start with BEGIN IMMEDIATE (one writer at a time)
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .. import config
from ..exceptions import StorageError
from .models import Base, SystemConfig, Student, PendingRegistration, AttendancePeriod, DEFAULT_CONFIG

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages database connections and provides session context.

    Usage:
        db = DatabaseManager("sqlite:///attendance.db")
        with db.get_session() as session:
            student = session.query(Student).filter_by(fingerprint_id="FP001").first()
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: bool = False,
        demo_mode: Optional[bool] = None
    ):
        """
        Initialize database manager.

        Args:
            database_url: SQLAlchemy URL. Defaults to config.DATABASE_URL
            echo: If True, log all SQL statements (useful for debugging)
            demo_mode: Initial value seeded into the demo_mode config row.
                Defaults to config.DEMO_MODE
        """
        self.database_url = database_url or config.DATABASE_URL
        self.echo = echo
        self.demo_mode = config.DEMO_MODE if demo_mode is None else demo_mode
        self.engine = None
        self.SessionLocal = None
        self._initialized = False

    def initialize(self) -> bool:
        """
        Initialize database connection and create tables.

        Returns:
            True once the database is ready

        Raises:
            StorageError: if the engine cannot be created or tables cannot be built
        """
        if self._initialized:
            return True

        try:
            url = make_url(self.database_url)
            engine_kwargs = {"echo": self.echo}

            if url.get_backend_name() == "sqlite":
                # check_same_thread=False needed for multi-threaded request handling
                engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
                if url.database in (None, "", ":memory:"):
                    engine_kwargs["poolclass"] = StaticPool
                else:
                    Path(url.database).parent.mkdir(parents=True, exist_ok=True)

            self.engine = create_engine(url, **engine_kwargs)

            if url.get_backend_name() == "sqlite":
                # Enable foreign key support (SQLite has it disabled by default)
                @event.listens_for(self.engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):
                    # pysqlite must not emit its own BEGIN; see on_begin below
                    dbapi_connection.isolation_level = None
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.close()

                # Take the write lock up front so read-modify-write sequences
                # (attendance merges) run one at a time
                @event.listens_for(self.engine, "begin")
                def on_begin(conn):
                    conn.exec_driver_sql("BEGIN IMMEDIATE")

            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )

            Base.metadata.create_all(bind=self.engine)
            logger.info(f"Database initialized at: {url.render_as_string(hide_password=True)}")

            self._initialized = True
            self._seed_default_config()
            return True

        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StorageError(f"Failed to initialize database: {e}") from e

    def _seed_default_config(self):
        """Insert default configuration values if not present."""
        seeds = dict(DEFAULT_CONFIG)
        seeds["demo_mode"] = ("true" if self.demo_mode else "false", DEFAULT_CONFIG["demo_mode"][1])

        with self.get_session() as session:
            for key, (value, description) in seeds.items():
                existing = session.query(SystemConfig).filter_by(key=key).first()
                if not existing:
                    session.add(SystemConfig(key=key, value=value, description=description))
                    logger.debug(f"Added default config: {key}={value}")
            session.commit()
            logger.info("Default configuration seeded")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic cleanup.

        Usage:
            with db.get_session() as session:
                # do database operations
                session.commit()

        Yields:
            SQLAlchemy Session object

        Raises:
            StorageError: wrapping any SQLAlchemyError raised inside the block
        """
        if not self._initialized:
            self.initialize()

        session = self.SessionLocal()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise StorageError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_config(self, key: str, default: str = None) -> Optional[str]:
        """
        Get a configuration value by key.

        Args:
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value as string
        """
        with self.get_session() as session:
            row = session.query(SystemConfig).filter_by(key=key).first()
            return row.value if row else default

    def get_config_int(self, key: str, default: int = 0) -> int:
        """Get config value as integer."""
        value = self.get_config(key)
        try:
            return int(value) if value else default
        except ValueError:
            return default

    def get_config_float(self, key: str, default: float = 0.0) -> float:
        """Get config value as float."""
        value = self.get_config(key)
        try:
            return float(value) if value else default
        except ValueError:
            return default

    def get_config_bool(self, key: str, default: bool = False) -> bool:
        """Get config value as boolean."""
        value = self.get_config(key)
        if value is None:
            return default
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_all_config(self) -> dict:
        """Get every configuration row keyed by name."""
        with self.get_session() as session:
            return {row.key: row.to_dict() for row in session.query(SystemConfig).order_by(SystemConfig.key)}

    def set_config(self, key: str, value: str, description: str = None):
        """
        Set a configuration value.

        Args:
            key: Configuration key name
            value: Configuration value
            description: Optional description
        """
        with self.get_session() as session:
            row = session.query(SystemConfig).filter_by(key=key).first()
            if row:
                row.value = value
                row.updated_at = datetime.utcnow()
                if description:
                    row.description = description
            else:
                session.add(SystemConfig(key=key, value=value, description=description))
            session.commit()
            logger.info(f"Config updated: {key}={value}")

    def get_stats(self) -> dict:
        """
        Get database statistics.

        Returns:
            Dictionary with counts and status info
        """
        with self.get_session() as session:
            return {
                "database_url": make_url(self.database_url).render_as_string(hide_password=True),
                "total_students": session.query(Student).count(),
                "pending_registrations": session.query(PendingRegistration).filter_by(is_completed=False).count(),
                "total_periods": session.query(AttendancePeriod).count(),
                "initialized": self._initialized
            }

    def close(self):
        """Close database connection."""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connection closed")


# Global singleton instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the global database manager instance.
    Creates and initializes if not already done.

    Returns:
        DatabaseManager singleton instance
    """
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseManager(echo=config.SQL_ECHO)
        _db_manager.initialize()

    return _db_manager


def reset_db_manager():
    """Reset the global database manager (for testing)."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
    _db_manager = None
