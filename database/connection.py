"""
Database connection and session management.
"""
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from contextlib import contextmanager
from typing import Generator

from database.models import Base
from policy.errors import DatabaseUnavailable
from core.logger import logger


class Database:
    """Database connection manager."""

    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        statement_timeout_ms: int = 0
    ):
        """
        Initialize database connection.

        Args:
            database_url: PostgreSQL connection URL (sqlite:// is accepted for tests)
            pool_size: Number of connections to maintain
            max_overflow: Maximum overflow connections
            statement_timeout_ms: Default statement timeout per connection (0 disables)
        """
        self.database_url = database_url
        self.is_sqlite = database_url.startswith("sqlite")

        if self.is_sqlite:
            # One shared in-memory connection so every session sees the same tables
            self.engine = create_engine(
                database_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=False
            )
        else:
            connect_args = {}
            if statement_timeout_ms:
                connect_args["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"
            self.engine = create_engine(
                database_url,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,  # Verify connections before using
                connect_args=connect_args,
                echo=False  # Set to True for SQL query logging
            )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        logger.info(f"Database engine initialized: {database_url.split('@')[1] if '@' in database_url else 'local'}")

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def create_tables(self):
        """Create all database tables."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def drop_tables(self):
        """Drop all database tables (use with caution!)."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("All database tables dropped")

    def dispose(self):
        """Close every pooled connection."""
        self.engine.dispose()
        logger.info("Database engine disposed")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get database session context manager.

        Commits on success, rolls back on any exception. Connection-level
        failures surface as DatabaseUnavailable.

        Usage:
            with db.get_session() as session:
                # Use session
                pass
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            logger.error(f"Database operational error: {e}")
            raise DatabaseUnavailable() from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_session_dependency(self) -> Generator[Session, None, None]:
        """
        Get database session for FastAPI dependency injection.

        Usage:
            @app.get("/endpoint")
            def endpoint(db: Session = Depends(db.get_session_dependency)):
                pass
        """
        with self.get_session() as session:
            yield session
