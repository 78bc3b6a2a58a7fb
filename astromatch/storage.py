"""
Stored compatibility score lookup.

Rows are keyed by an unordered pair: a score computed for (a, b) also
answers a lookup for (b, a).
"""

from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import and_, or_

from .database import CompatibilityScore, session_factory


class CompatibilityStore(Protocol):
    def find(self, viewer_id: str, other_id: str) -> Optional[Dict[str, Any]]:
        ...

    def insert(self, user1_id: str, user2_id: str, score: Optional[int], details: Any) -> None:
        ...


def pair_filter(a: str, b: str):
    return or_(
        and_(CompatibilityScore.user1_id == a, CompatibilityScore.user2_id == b),
        and_(CompatibilityScore.user1_id == b, CompatibilityScore.user2_id == a),
    )


class SqlScoreRepository:
    """CompatibilityStore backed by the compatibility_scores table."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._Session = session_factory(db_path)

    def find(self, viewer_id: str, other_id: str) -> Optional[Dict[str, Any]]:
        """Return the newest ``{score, details}`` row for the pair, or None."""
        session = self._Session()
        try:
            row = (
                session.query(CompatibilityScore)
                .filter(pair_filter(viewer_id, other_id))
                .order_by(CompatibilityScore.created_at.desc(), CompatibilityScore.id.desc())
                .first()
            )
            return row.to_row() if row is not None else None
        finally:
            session.close()

    def insert(self, user1_id: str, user2_id: str, score: Optional[int], details: Any) -> None:
        session = self._Session()
        try:
            session.add(CompatibilityScore(
                user1_id=user1_id,
                user2_id=user2_id,
                score=score,
                details=details,
            ))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def count(self) -> int:
        session = self._Session()
        try:
            return session.query(CompatibilityScore).count()
        finally:
            session.close()
