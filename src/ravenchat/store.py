"""Concrete implementations for session stores."""

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from .models import (
    DEFAULT_SESSION_TITLE,
    STANDARD_MODE,
    ChatMessage,
    ChatSession,
)

TITLE_LENGTH = 50
MULTIMODAL_TITLE = "Multimodal Message"


def generate_title(message: ChatMessage) -> str:
    """Derives a session title from its first message."""
    if not isinstance(message.content, str):
        return MULTIMODAL_TITLE
    if len(message.content) > TITLE_LENGTH:
        return message.content[:TITLE_LENGTH] + "..."
    return message.content or DEFAULT_SESSION_TITLE


def session_matches(session: ChatSession, query: str) -> bool:
    """Case-insensitive search over a session's title and message texts."""
    query = query.lower().strip()
    if not query:
        return True
    if query in session.title.lower():
        return True
    for msg in session.messages:
        if query in msg.text().lower():
            return True
        if msg.reasoning and query in msg.reasoning.lower():
            return True
        for citation in msg.citations or []:
            if query in citation.title.lower() or query in citation.url.lower():
                return True
    return False


class Store(ABC):
    """Interface for saving and loading chat sessions.

    Subclasses implement the four persistence primitives; session and message
    bookkeeping is shared and serialized by a re-entrant lock so that stream
    updates and UI reads never interleave.
    """

    def __init__(self):
        self._lock = threading.RLock()

    @abstractmethod
    def load_session(self, session_id: str) -> Optional[ChatSession]:
        """Loads a single session from the persistence layer."""
        pass

    @abstractmethod
    def save_session(self, session: ChatSession) -> None:
        """Saves a single session to the persistence layer."""
        pass

    @abstractmethod
    def list_sessions(self) -> List[str]:
        """Lists all session IDs, newest first."""
        pass

    @abstractmethod
    def delete_session(self, session_id: str) -> None:
        """Removes a session; unknown IDs are ignored."""
        pass

    def create_session(
        self, feature_mode: str = STANDARD_MODE, model: str = ""
    ) -> ChatSession:
        session = ChatSession(feature_mode=feature_mode, model=model)
        with self._lock:
            self.save_session(session)
        return session

    def rename_session(self, session_id: str, title: str) -> Optional[ChatSession]:
        with self._lock:
            session = self.load_session(session_id)
            if session is None:
                return None
            session.title = title
            session.updated_at = datetime.now(timezone.utc)
            self.save_session(session)
            return session

    def create_message(self, session_id: str, message: ChatMessage) -> ChatMessage:
        """Appends a message, retitling a fresh session after its first one."""
        with self._lock:
            session = self.load_session(session_id)
            if session is None:
                session = ChatSession(id=session_id)
            session.messages.append(message)
            if session.title == DEFAULT_SESSION_TITLE:
                session.title = generate_title(session.messages[0])
            session.updated_at = datetime.now(timezone.utc)
            self.save_session(session)
            return message

    def update_message(
        self, session_id: str, message_id: str, **patch
    ) -> Optional[ChatMessage]:
        """Replaces fields of a message in place; returns None if it is unknown."""
        with self._lock:
            session = self.load_session(session_id)
            if session is None:
                return None
            for index, msg in enumerate(session.messages):
                if msg.id == message_id:
                    updated = msg.model_copy(update=patch)
                    session.messages[index] = updated
                    session.updated_at = datetime.now(timezone.utc)
                    self.save_session(session)
                    return updated
            return None

    def search_sessions(self, query: str) -> List[ChatSession]:
        with self._lock:
            sessions = [self.load_session(sid) for sid in self.list_sessions()]
        return [s for s in sessions if s is not None and session_matches(s, query)]


class InMemory(Store):
    """Saves and loads sessions from an in-memory dictionary."""

    def __init__(self):
        super().__init__()
        self._sessions: Dict[str, ChatSession] = {}

    def load_session(self, session_id: str) -> Optional[ChatSession]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    def save_session(self, session: ChatSession) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    def list_sessions(self) -> List[str]:
        ordered = sorted(
            self._sessions.values(), key=lambda s: s.created_at, reverse=True
        )
        return [s.id for s in ordered]

    def delete_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


class File(Store):
    """Keeps every session in a single JSON document on disk."""

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read_all(self) -> List[ChatSession]:
        if not self.path.exists():
            return []
        raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        sessions, seen = [], set()
        for item in raw:
            session = ChatSession.model_validate(item)
            if session.id not in seen:
                seen.add(session.id)
                sessions.append(session)
        return sessions

    def _write_all(self, sessions: List[ChatSession]) -> None:
        data = [s.model_dump(mode="json") for s in sessions]
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)

    def load_session(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            return next((s for s in self._read_all() if s.id == session_id), None)

    def save_session(self, session: ChatSession) -> None:
        with self._lock:
            sessions = [s for s in self._read_all() if s.id != session.id]
            sessions.append(session)
            sessions.sort(key=lambda s: s.created_at, reverse=True)
            self._write_all(sessions)

    def list_sessions(self) -> List[str]:
        with self._lock:
            return [s.id for s in self._read_all()]

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            sessions = self._read_all()
            remaining = [s for s in sessions if s.id != session_id]
            if len(remaining) != len(sessions):
                self._write_all(remaining)
