"""
Database Module

Sets up the SQLAlchemy engine and session factory and defines the two
tables the verification server persists:
- nonces: consumed nonces, keyed by nonce, with an expiry timestamp
- verifications: append-only audit log of verification attempts

Defaults to a file-based SQLite database (echocheck.db) in the project root.
Any SQLAlchemy URL can be supplied instead.

Privacy: only scores, nonces and the site key are stored; no pointer samples.
"""

import os
from sqlalchemy import create_engine, Column, Integer, Float, String, DateTime, Boolean, Index, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from datetime import datetime, timezone
import logging

from shared.errors import PersistenceUnavailableError

logger = logging.getLogger(__name__)

# Default database path – store in project root
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DB_PATH = os.path.join(BASE_DIR, "echocheck.db")
DEFAULT_DATABASE_URL = f"sqlite:///{DB_PATH}"

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NonceRecord(Base):
    """
    A consumed nonce. The primary key makes insertion the atomic
    check-and-insert: a second insert of the same nonce fails.
    """
    __tablename__ = "nonces"

    nonce = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)              # Unix seconds
    expires_at = Column(Float, nullable=False, index=True)  # Unix seconds

    def __repr__(self):
        return f"<NonceRecord nonce={self.nonce} expires_at={self.expires_at:.0f}>"


class VerificationRecord(Base):
    """One verification attempt, accepted or not."""
    __tablename__ = "verifications"

    id = Column(Integer, primary_key=True, index=True)
    identity = Column(String, nullable=False)
    score = Column(Float, nullable=False)
    decision = Column(Boolean, nullable=False)
    timestamp = Column(Float, nullable=False)   # Client timestamp (ms since epoch)
    nonce = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_verifications_identity_timestamp", "identity", "timestamp"),
    )

    def __repr__(self):
        return f"<VerificationRecord id={self.id} identity={self.identity} score={self.score:.3f}>"


def make_engine(url: str = "", echo: bool = False) -> Engine:
    """
    Create an engine for `url` (default: SQLite file in the project root).
    In-memory SQLite shares one connection so every session sees the same data.
    """
    url = url or DEFAULT_DATABASE_URL
    kwargs = {"echo": echo}
    if url.startswith("sqlite"):
        # Allow FastAPI worker threads to share connections; wait on writer locks
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """
    Create tables if they don't exist and check the connection.

    Raises:
        PersistenceUnavailableError: if the database cannot be reached.
    """
    try:
        Base.metadata.create_all(bind=engine)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise PersistenceUnavailableError(f"Database unavailable: {e}") from e
    logger.info(f"Database initialized: {engine.url.render_as_string(hide_password=True)}")
