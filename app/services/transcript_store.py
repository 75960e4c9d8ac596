"""Local record of chat sessions and their finalized messages."""

import os
from pathlib import Path

from pydantic import ValidationError

from app.models.messages import Message
from app.models.session import DEFAULT_SESSION_TITLE, ChatSession, TranscriptState, title_from
from app.utils.logging import get_logger

logger = get_logger(__name__)


class TranscriptStore:
    """Sessions persisted as one JSON document.

    Without a path the store lives in memory only. Messages are added at
    turn boundaries, never while a reply is still streaming.
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self._state = self._load()

    def _load(self) -> TranscriptState:
        if self.path is None or not self.path.exists():
            return TranscriptState()
        try:
            return TranscriptState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.error(f"Error loading chat sessions from {self.path}: {e}")
            return TranscriptState()

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(self._state.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Error saving chat sessions to {self.path}: {e}")

    @property
    def sessions(self) -> list[ChatSession]:
        """Sessions, most recently updated first."""
        return sorted(self._state.sessions, key=lambda s: s.updated_at, reverse=True)

    @property
    def active_session_id(self) -> str | None:
        return self._state.active_session_id

    @property
    def active_session(self) -> ChatSession | None:
        return self.get_session(self._state.active_session_id) if self._state.active_session_id else None

    def get_session(self, session_id: str) -> ChatSession | None:
        return next((s for s in self._state.sessions if s.id == session_id), None)

    def create_session(self) -> ChatSession:
        session = ChatSession()
        self._state.sessions.insert(0, session)
        self._state.active_session_id = session.id
        self._save()
        logger.info(f"Created chat session {session.id}")
        return session

    def select_session(self, session_id: str) -> ChatSession:
        session = self.get_session(session_id)
        if session is None:
            raise KeyError(f"Unknown session: {session_id}")
        self._state.active_session_id = session_id
        self._save()
        return session

    def delete_session(self, session_id: str) -> None:
        """Delete a session; the active one passes to the most recent remaining."""
        self._state.sessions = [s for s in self._state.sessions if s.id != session_id]
        if self._state.active_session_id == session_id:
            remaining = self.sessions
            self._state.active_session_id = remaining[0].id if remaining else None
        self._save()
        logger.info(f"Deleted chat session {session_id}")

    def add_message(self, message: Message) -> ChatSession:
        """Append a finalized message to the active session, creating one if needed."""
        session = self.active_session
        if session is None:
            session = ChatSession()
            self._state.sessions.insert(0, session)
            self._state.active_session_id = session.id

        session.messages.append(message)
        if session.title == DEFAULT_SESSION_TITLE:
            session.title = title_from(session.messages)
        session.update_activity()
        self._save()
        return session

    def truncate_active_session(self, count: int) -> None:
        """Keep only the first ``count`` messages of the active session."""
        session = self.active_session
        if session is None:
            return
        del session.messages[count:]
        session.update_activity()
        self._save()

    def clear_active_session(self) -> None:
        session = self.active_session
        if session is None:
            return
        session.messages.clear()
        session.title = DEFAULT_SESSION_TITLE
        session.update_activity()
        self._save()

    def rename_session(self, session_id: str, title: str) -> None:
        session = self.get_session(session_id)
        if session is None:
            raise KeyError(f"Unknown session: {session_id}")
        session.title = title
        session.update_activity()
        self._save()
