# services/session_registry.py
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from services.analysis_orchestrator import AnalysisOrchestrator
from services.concept_map_layout import ForceLayout

logger = logging.getLogger(__name__)


class SessionEntry:
    def __init__(self, orchestrator: AnalysisOrchestrator):
        self.orchestrator = orchestrator
        self.layout: Optional[ForceLayout] = None
        # The conceptMap object the layout was built from
        self.layout_source: Optional[Dict[str, Any]] = None
        self.last_accessed = datetime.now()
        self._lock = threading.Lock()

    def touch(self) -> None:
        with self._lock:
            self.last_accessed = datetime.now()

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        with self._lock:
            idle = now - max(self.last_accessed, self.orchestrator.updated_at)
            return idle > ttl

    def current_layout(self) -> Optional[ForceLayout]:
        """
        The layout for the session's current concept map. A layout built
        from a map that has since been replaced or cleared is discarded.
        """
        concept_map = self.orchestrator.result.get("conceptMap")
        if self.layout is not None and (concept_map is None or concept_map is not self.layout_source):
            self.discard_layout()
        return self.layout

    def discard_layout(self) -> None:
        if self.layout is not None:
            self.layout.stop()
            logger.debug(f"Discarded concept map layout for session {self.orchestrator.session_id}")
        self.layout = None
        self.layout_source = None

    def close(self) -> None:
        self.discard_layout()
        self.orchestrator.reset()


class SessionRegistry:
    """
    In-memory analysis sessions keyed by session id. Sessions idle for
    longer than TTL are dropped on the next create().
    """
    _sessions: Dict[str, SessionEntry] = {}
    _lock = threading.Lock()

    TTL = timedelta(hours=1)

    @classmethod
    def create(cls, user_id: str, factory: Callable[..., AnalysisOrchestrator] = AnalysisOrchestrator) -> AnalysisOrchestrator:
        cls._cleanup()
        orchestrator = factory(user_id=user_id)
        with cls._lock:
            cls._sessions[orchestrator.session_id] = SessionEntry(orchestrator)
        logger.info(f"Session {orchestrator.session_id} created for user {user_id}")
        return orchestrator

    @classmethod
    def get_entry(cls, session_id: str, user_id: str) -> Optional[SessionEntry]:
        """Returns None when the session is unknown or owned by another user."""
        with cls._lock:
            entry = cls._sessions.get(session_id)
        if entry is None or entry.orchestrator.user_id != user_id:
            return None
        entry.touch()
        return entry

    @classmethod
    def get(cls, session_id: str, user_id: str) -> Optional[AnalysisOrchestrator]:
        entry = cls.get_entry(session_id, user_id)
        return entry.orchestrator if entry else None

    @classmethod
    def remove(cls, session_id: str, user_id: str) -> bool:
        with cls._lock:
            entry = cls._sessions.get(session_id)
            if entry is None or entry.orchestrator.user_id != user_id:
                return False
            cls._sessions.pop(session_id, None)
        entry.close()
        logger.info(f"Session {session_id} removed")
        return True

    @classmethod
    def count(cls) -> int:
        with cls._lock:
            return len(cls._sessions)

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            entries = list(cls._sessions.values())
            cls._sessions.clear()
        for entry in entries:
            entry.close()

    @classmethod
    def _cleanup(cls):
        now = datetime.now()

        with cls._lock:
            snapshot = list(cls._sessions.items())

        expired = [(sid, entry) for sid, entry in snapshot if entry.is_expired(now, cls.TTL)]

        if expired:
            with cls._lock:
                for sid, entry in expired:
                    # Only drop it if it is still the same session object
                    if cls._sessions.get(sid) is entry:
                        cls._sessions.pop(sid, None)
            for sid, entry in expired:
                logger.info(f"Session {sid} expired")
                entry.close()
