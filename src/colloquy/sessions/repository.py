from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import ValidationError as SchemaError

from colloquy.config import SESSIONS_KEY
from colloquy.errors import StorageError
from colloquy.models import PLACEHOLDER_TITLE, Message, Session, Settings, generate_title
from colloquy.storage import KeyValueStore

logger = logging.getLogger(__name__)


def _first_user_content(messages: list[Message]) -> str | None:
    for message in messages:
        if message.role == "user" and message.content.strip():
            return message.content
    return None


def _decode_sessions(payload: Any) -> list[Session]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise StorageError(f"expected a JSON array, got {type(payload).__name__}")
    sessions: list[Session] = []
    for index, entry in enumerate(payload):
        try:
            sessions.append(Session.model_validate(entry))
        except SchemaError as e:
            logger.warning(f"Skipping unreadable session at position {index}: {e}")
    return sessions


class SessionRepository:
    """Sessions kept as one JSON array under the ``chat_sessions`` key.

    Every mutation re-reads the array, applies the change and writes it back,
    so array order on disk is the order returned by ``list``.
    """

    def __init__(self, store: KeyValueStore, key: str = SESSIONS_KEY):
        self.store = store
        self.key = key

    def _load_all(self) -> list[Session]:
        try:
            return _decode_sessions(self.store.get(self.key))
        except StorageError as e:
            logger.warning(f"Session store is corrupt, treating it as empty: {e}")
            return []

    def _write_all(self, sessions: Iterable[Session]) -> None:
        self.store.set(self.key, [s.to_json() for s in sessions])

    def create(self) -> str:
        sessions = self._load_all()
        session = Session(title=PLACEHOLDER_TITLE)
        sessions.append(session)
        self._write_all(sessions)
        logger.info(f"Created session {session.id}")
        return session.id

    def get(self, session_id: str) -> Session | None:
        for session in self._load_all():
            if session.id == session_id:
                return session
        return None

    def list(self) -> list[Session]:
        return self._load_all()

    def search(self, term: str) -> list[Session]:
        needle = (term or "").lower()
        return [s for s in self._load_all() if needle in s.title.lower()]

    def save(
        self,
        session_id: str,
        messages: list[Message],
        settings: Settings | None = None,
    ) -> Session:
        sessions = self._load_all()
        messages = list(messages)
        first = _first_user_content(messages)

        existing = next((s for s in sessions if s.id == session_id), None)
        if existing is None:
            if messages:
                title = generate_title(messages[0].content)
            else:
                title = PLACEHOLDER_TITLE
            existing = Session(
                id=session_id,
                title=title,
                title_locked=bool(messages),
                messages=messages,
                settings=settings,
            )
            sessions.append(existing)
        else:
            existing.messages = messages
            existing.settings = settings
            if not existing.title_locked and first is not None:
                existing.title = generate_title(first)
                existing.title_locked = True

        self._write_all(sessions)
        logger.debug(f"Saved session {session_id} ({len(messages)} messages)")
        return existing

    def rename(self, session_id: str, title: str) -> bool:
        sessions = self._load_all()
        for session in sessions:
            if session.id == session_id:
                session.title = title
                session.title_locked = True
                self._write_all(sessions)
                logger.info(f"Renamed session {session_id} to '{title}'")
                return True
        return False

    def delete(self, session_id: str) -> None:
        sessions = self._load_all()
        remaining = [s for s in sessions if s.id != session_id]
        if len(remaining) == len(sessions):
            return
        self._write_all(remaining)
        logger.info(f"Deleted session {session_id}")
