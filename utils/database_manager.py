"""
Database Manager for the crawl planner

This module owns the SQLAlchemy engine and session factory shared by the
pattern store, the domain profiler's history store, and the planner's plan
audit trail.
"""

import asyncio
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from models.planning_models import Base
from config import DATABASE_URL, DATABASE_CONFIG
from utils.logging import get_logger

logger = get_logger(__name__)

class DatabaseManager:
    """Manages the planner database engine and sessions"""

    def __init__(self, database_url: Optional[str] = None, create_tables: bool = True):
        self.database_url = database_url or DATABASE_URL
        self.engine: Optional[Engine] = None
        self.SessionLocal = None

        self._initialize_engine()
        if create_tables:
            self.create_tables()

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith('sqlite')

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def _initialize_engine(self):
        """Initialize the database engine and session factory"""
        engine_kwargs = {'echo': DATABASE_CONFIG.get('echo', False)}

        # Use SQLite-specific settings for SQLite, pooled settings for server databases
        if self.is_sqlite:
            engine_kwargs['connect_args'] = {
                'check_same_thread': False,
                'timeout': DATABASE_CONFIG.get('sqlite_busy_timeout', 15.0),
            }
            if self.database_url in ('sqlite://', 'sqlite:///:memory:'):
                # A single shared connection keeps the in-memory database alive
                engine_kwargs['poolclass'] = StaticPool
        else:
            engine_kwargs.update({
                'pool_size': DATABASE_CONFIG.get('pool_size', 5),
                'max_overflow': DATABASE_CONFIG.get('max_overflow', 10),
                'pool_timeout': DATABASE_CONFIG.get('pool_timeout', 30),
                'pool_recycle': DATABASE_CONFIG.get('pool_recycle', 3600),
                'pool_pre_ping': True,
            })

        self.engine = create_engine(self.database_url, **engine_kwargs)
        if self.is_sqlite and 'poolclass' not in engine_kwargs:
            event.listen(self.engine, 'connect', _enable_sqlite_wal)
        self.SessionLocal = sessionmaker(bind=self.engine)

        logger.info("Database engine initialized", database_url=self.database_url)

    def create_tables(self):
        """Create all tables"""
        Base.metadata.create_all(bind=self.engine)

    async def initialize(self) -> bool:
        """Create tables if they don't exist"""
        # Run in thread since SQLAlchemy create_all is synchronous
        await asyncio.to_thread(self.create_tables)
        logger.info("Database tables created/verified successfully")
        return True

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Get a database session with automatic cleanup"""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        """Release pooled connections"""
        if self.engine is not None:
            self.engine.dispose()


def _enable_sqlite_wal(dbapi_connection, connection_record):
    # WAL lets readers proceed while a job commits pattern outcomes
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()
