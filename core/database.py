"""
Relational store: table definitions and engine/session setup.

Only the two tables the consolidation core reads and writes live here.
Rows are converted to the dataclasses in models/ by core.repository so
nothing outside this package touches SQLAlchemy objects.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import DatabaseError
from logging_config import get_logger


logger = get_logger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRow(Base):
    """Machine-code record - matches the jobs table."""
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    source_file_id = Column(Integer, nullable=True, index=True)
    storage_path = Column(String(500), nullable=False)

    # Analysis results, NULL until the package has been parsed
    weight_grams = Column(Float, nullable=True)
    duration_minutes = Column(Float, nullable=True)
    material = Column(String(100), nullable=True)
    printer = Column(String(100), nullable=True)

    uploaded_at = Column(DateTime, default=_utcnow)
    note = Column(Text, nullable=True)

    def __repr__(self):
        return f"<JobRow {self.id}: {self.storage_path}>"


class OrderRow(Base):
    """Print order - matches the orders table."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    project_id = Column(Integer, nullable=True)
    organization_id = Column(Integer, nullable=True, index=True)
    requester_id = Column(String(100), nullable=False, default="")
    quantity = Column(Integer, nullable=False)

    # processing, queued, printing, ready, delivered, error
    state = Column(String(20), nullable=False, default="processing", index=True)

    created_at = Column(DateTime, default=_utcnow)
    requested_delivery = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    note = Column(Text, nullable=True)

    def __repr__(self):
        return f"<OrderRow {self.id}: {self.state}>"


class Database:
    """
    Engine plus session factory for one database URL.

    In-memory SQLite ("sqlite://") is pinned to a single shared connection
    so request threads and run threads see the same data.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url

        engine_kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def create_all(self) -> None:
        """Create missing tables."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise DatabaseError("schema creation", e) from e
        logger.info(f"Database ready ({self.engine.url.get_backend_name()})")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Transactional session scope.

        Commits on success, rolls back on any exception. SQLAlchemy failures
        are re-raised as DatabaseError.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseError("transaction", e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
