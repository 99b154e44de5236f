"""
Session repository.

Holds every ResearchSession plus the id of the active one. With a path it is
backed by a single JSON document, loaded wholesale at startup and rewritten
wholesale after each mutation. Observers subscribe to a payload-less "state
changed" signal and re-read whatever they need.
"""

import json
import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional

from review_assistant import transitions
from review_assistant.errors import SessionNotFoundError
from review_assistant.models import ResearchSession

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class SessionRepository:
    """Read/replace access to the stored sessions."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._sessions: Dict[str, ResearchSession] = {}
        self.active_session_id: Optional[str] = None
        self._listeners: List[Listener] = []
        if self.path and self.path.exists():
            self._load()

    # --- observers ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state-changed callback; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        self._save()
        for listener in list(self._listeners):
            listener()

    # --- reads ---

    def list(self) -> List[ResearchSession]:
        return list(self._sessions.values())

    def find(self, session_id: str) -> Optional[ResearchSession]:
        return self._sessions.get(session_id)

    def get(self, session_id: str) -> ResearchSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"No session with id {session_id!r}")
        return session

    def active(self) -> Optional[ResearchSession]:
        if self.active_session_id is None:
            return None
        return self._sessions.get(self.active_session_id)

    # --- writes ---

    def create(self, topic: str) -> ResearchSession:
        """Store a fresh IDLE session for `topic` and make it active."""
        session = transitions.new_session(topic)
        self._sessions[session.id] = session
        self.active_session_id = session.id
        logger.info(f"Created session {session.id} ({session.name!r})")
        self._changed()
        return session

    def replace(self, session: ResearchSession) -> ResearchSession:
        if session.id not in self._sessions:
            raise SessionNotFoundError(f"No session with id {session.id!r}")
        self._sessions[session.id] = session
        self._changed()
        return session

    def apply(self, session_id: str, change: Callable[[ResearchSession], ResearchSession]) -> ResearchSession:
        """Read a session, run a pure transition on it and store the result."""
        return self.replace(change(self.get(session_id)))

    def switch(self, session_id: Optional[str]) -> None:
        if session_id is not None:
            self.get(session_id)
        self.active_session_id = session_id
        self._changed()

    def rename(self, session_id: str, name: str) -> ResearchSession:
        return self.apply(session_id, lambda s: transitions.update(s, name=name.strip() or s.name))

    def delete(self, session_id: str) -> None:
        self.get(session_id)
        del self._sessions[session_id]
        if self.active_session_id == session_id:
            remaining = list(self._sessions)
            self.active_session_id = remaining[0] if remaining else None
        logger.info(f"Deleted session {session_id}")
        self._changed()

    # --- persistence ---

    def _load(self) -> None:
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        for raw in data.get("sessions", []):
            session = ResearchSession.model_validate(raw)
            self._sessions[session.id] = session
        active = data.get("active_session_id")
        self.active_session_id = active if active in self._sessions else None
        logger.info(f"Loaded {len(self._sessions)} sessions from {self.path}")

    def _save(self) -> None:
        if not self.path:
            return
        data = {
            "active_session_id": self.active_session_id,
            "sessions": [s.model_dump(mode="json") for s in self._sessions.values()],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except Exception:
            # the previous document stays in place
            tmp_path.unlink(missing_ok=True)
            raise
