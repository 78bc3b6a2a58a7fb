"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for stored compatibility scores.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import create_engine, Column, DateTime, Integer, JSON, String, Index
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class CompatibilityScore(Base):
    """One computed score for a pair of users, in either column order."""

    __tablename__ = "compatibility_scores"
    __table_args__ = (Index("ix_compatibility_pair", "user1_id", "user2_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user1_id = Column(String, nullable=False)
    user2_id = Column(String, nullable=False)
    score = Column(Integer, nullable=True)  # total_gunas as reported by the engine
    details = Column(JSON, nullable=True)  # full engine payload
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    def to_row(self) -> dict:
        return {"score": self.score, "details": self.details}


def init_database(db_path: Path) -> Engine:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file

    Returns:
        The engine the tables were created with
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    return engine


def session_factory(db_path: Path) -> sessionmaker:
    """Create tables if needed and return a session factory bound to db_path."""
    return sessionmaker(bind=init_database(db_path))


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    engine = create_engine(f"sqlite:///{db_path}")
    Session = sessionmaker(bind=engine)
    return Session()
