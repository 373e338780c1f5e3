# File: services/history_service.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from database.db import SessionLocal
from database.models.history_model import AnalysisHistory

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 10


def _to_entry(row: AnalysisHistory) -> Dict[str, Any]:
    created = row.created_at or datetime.now(timezone.utc)
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return {
        "id": row.entry_id,
        "title": row.title,
        "fileName": row.file_name,
        "timestamp": int(created.timestamp() * 1000),
        "result": row.result or {},
        "documentText": row.document_text or "",
    }


class HistoryService:
    """
    Per-user list of completed analyses: newest first, de-duplicated by
    title, capped at MAX_HISTORY_ENTRIES.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        max_entries: int = MAX_HISTORY_ENTRIES,
    ):
        self._session_factory = session_factory
        self.max_entries = max_entries

    def get_history(self, user_id: str) -> List[Dict[str, Any]]:
        db = self._session_factory()
        try:
            rows = (
                db.query(AnalysisHistory)
                .filter(AnalysisHistory.user_id == user_id)
                .order_by(AnalysisHistory.id.desc())
                .limit(self.max_entries)
                .all()
            )
            return [_to_entry(row) for row in rows]
        finally:
            db.close()

    def get_entry(self, entry_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        db = self._session_factory()
        try:
            row = (
                db.query(AnalysisHistory)
                .filter(AnalysisHistory.entry_id == entry_id)
                .filter(AnalysisHistory.user_id == user_id)
                .first()
            )
            return _to_entry(row) if row else None
        finally:
            db.close()

    def save_analysis(self, entry: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        """
        Insert an entry at the head of the user's history. An existing
        entry with the same title is replaced; entries beyond the cap are
        dropped oldest first.
        """
        title = (entry.get("title") or "").strip()
        if not title:
            raise ValueError("History entry requires a title")

        db = self._session_factory()
        try:
            (
                db.query(AnalysisHistory)
                .filter(AnalysisHistory.user_id == user_id)
                .filter(AnalysisHistory.title == title)
                .delete(synchronize_session=False)
            )
            # Flush the delete before inserting under the same unique (user, title)
            db.flush()

            row = AnalysisHistory(
                entry_id=entry.get("id") or uuid.uuid4().hex,
                user_id=user_id,
                title=title,
                file_name=entry.get("fileName") or "",
                result=dict(entry.get("result") or {}),
                document_text=entry.get("documentText") or "",
                created_at=datetime.now(timezone.utc),
            )
            db.add(row)
            db.flush()

            stale = (
                db.query(AnalysisHistory.id)
                .filter(AnalysisHistory.user_id == user_id)
                .order_by(AnalysisHistory.id.desc())
                .offset(self.max_entries)
                .all()
            )
            if stale:
                (
                    db.query(AnalysisHistory)
                    .filter(AnalysisHistory.id.in_([s.id for s in stale]))
                    .delete(synchronize_session=False)
                )

            db.commit()
            db.refresh(row)
            logger.info(f"Saved analysis '{title[:60]}' to history for user {user_id}")
            return _to_entry(row)

        except Exception:
            db.rollback()
            logger.exception("Failed to save analysis history entry.")
            raise

        finally:
            db.close()


_history_service: Optional[HistoryService] = None


def get_history_service() -> HistoryService:
    global _history_service
    if _history_service is None:
        _history_service = HistoryService()
    return _history_service
