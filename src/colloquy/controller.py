from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from common.events import (
    ErrorEvent,
    EventCallback,
    EventEmitter,
    HistoryTruncatedEvent,
    MessageAppendedEvent,
    SessionSavedEvent,
    SessionSelectedEvent,
    StateChangedEvent,
)
from colloquy.context import build_context
from colloquy.errors import SessionNotFoundError, UpstreamError, ValidationError
from colloquy.gateway import CompletionGateway
from colloquy.models import Message, Session, Settings
from colloquy.sessions.repository import SessionRepository
from colloquy.settings import SettingsStore

logger = logging.getLogger(__name__)

IMAGE_DEFAULT_PROMPT = "Analiza esta imagen por favor"

Translator = Callable[[str, str], Awaitable[str]]
Transcriber = Callable[[str, str | None], Awaitable[str]]


class ControllerState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"


class ConversationController:
    """Drives send and regenerate for the active session.

    At most one completion call is in flight at a time; ``send`` and
    ``regenerate`` return None without side effects while one is pending.
    The in-memory ``messages`` list is what a UI shows. It is written to the
    repository only after a successful completion, so a failed regenerate
    leaves the truncated list in memory while the stored session is intact.
    """

    def __init__(
        self,
        repository: SessionRepository,
        settings_store: SettingsStore,
        gateway: CompletionGateway,
        *,
        translator: Translator | None = None,
        transcriber: Transcriber | None = None,
        on_event: EventCallback = None,
    ):
        self.repository = repository
        self.settings_store = settings_store
        self.gateway = gateway
        self.translator = translator
        self.transcriber = transcriber
        self.emitter = EventEmitter(on_event)
        self.session_id: str | None = None
        self.messages: list[Message] = []
        self.state = ControllerState.IDLE

    @property
    def is_sending(self) -> bool:
        return self.state is ControllerState.SENDING

    @property
    def settings(self) -> Settings:
        return self.settings_store.load()

    def _set_state(self, state: ControllerState) -> None:
        self.state = state
        logger.debug(f"Controller state -> {state.value}")
        self.emitter.emit(StateChangedEvent(session_id=self.session_id or "", state=state.value))

    def _ensure_idle(self, action: str) -> None:
        if self.is_sending:
            raise ValidationError(f"Cannot {action} while a reply is pending")

    def _append(self, message: Message) -> None:
        self.messages.append(message)
        self.emitter.emit(
            MessageAppendedEvent(
                session_id=self.session_id or "",
                message_id=message.id,
                role=message.role,
                content=message.content,
            )
        )

    async def _commit(self, reply: str, settings: Settings) -> Message:
        # The reply joins the in-memory list only once the save has gone through.
        assistant = Message(role="assistant", content=reply)
        messages = [*self.messages, assistant]
        await asyncio.to_thread(self.repository.save, self.session_id, messages, settings)
        self._append(assistant)
        self.emitter.emit(SessionSavedEvent(session_id=self.session_id, message_count=len(messages)))
        return assistant

    # Session lifecycle

    def start(self) -> str:
        sessions = self.repository.list()
        if not sessions:
            return self.new_session()
        self.select(sessions[0].id)
        return sessions[0].id

    def new_session(self) -> str:
        self._ensure_idle("start a new session")
        session_id = self.repository.create()
        self.session_id = session_id
        self.messages = []
        self.emitter.emit(SessionSelectedEvent(session_id=session_id, title=""))
        return session_id

    def select(self, session_id: str) -> Session:
        self._ensure_idle("switch sessions")
        session = self.repository.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        self.session_id = session.id
        self.messages = list(session.messages)
        self.emitter.emit(SessionSelectedEvent(session_id=session.id, title=session.title))
        return session

    def current_session(self) -> Session | None:
        if self.session_id is None:
            return None
        return self.repository.get(self.session_id)

    def list_sessions(self, term: str | None = None) -> list[Session]:
        if term:
            return self.repository.search(term)
        return self.repository.list()

    def rename(self, session_id: str, title: str) -> bool:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title must not be empty")
        return self.repository.rename(session_id, title)

    def delete(self, session_id: str) -> None:
        if session_id == self.session_id:
            self._ensure_idle("delete the active session")
        self.repository.delete(session_id)
        if session_id != self.session_id:
            return
        remaining = self.repository.list()
        if remaining:
            self.select(remaining[0].id)
        else:
            self.new_session()

    # Conversation

    async def send(self, content: str, image: str | None = None) -> Message | None:
        if self.is_sending:
            logger.debug("send ignored: a reply is already pending")
            return None
        content = content or ""
        if not content.strip() and not image:
            raise ValidationError("Message must have content or an image")
        if image and not content.strip():
            content = IMAGE_DEFAULT_PROMPT
        if self.session_id is None:
            self.start()

        self._append(Message(role="user", content=content, image=image))
        settings = self.settings_store.load()

        self._set_state(ControllerState.SENDING)
        try:
            if image:
                reply = await self.gateway.complete_with_image(
                    content, image, settings.custom_api_key or None
                )
            else:
                history = build_context(self.messages[:-1], settings)
                reply = await self.gateway.complete_text(
                    history, content, settings.generation_config()
                )
            return await self._commit(reply, settings)
        except UpstreamError as e:
            logger.warning(f"Send failed for session {self.session_id}: {e.details}")
            self.emitter.emit(ErrorEvent(message=e.details, source="send"))
            raise
        finally:
            self._set_state(ControllerState.IDLE)

    async def regenerate(self, index: int) -> Message | None:
        if self.is_sending:
            logger.debug("regenerate ignored: a reply is already pending")
            return None
        if not 0 <= index < len(self.messages):
            raise ValidationError(
                f"No message at index {index} (session has {len(self.messages)})"
            )

        # The resent prompt is the content of the message being replaced. For an
        # assistant message that is its own previous answer, not the question.
        target = self.messages[index]
        self.messages = self.messages[:index]
        self.emitter.emit(
            HistoryTruncatedEvent(session_id=self.session_id or "", length=index)
        )
        settings = self.settings_store.load()

        self._set_state(ControllerState.SENDING)
        try:
            if target.image:
                reply = await self.gateway.complete_with_image(
                    target.content, target.image, settings.custom_api_key or None
                )
            else:
                history = build_context(self.messages, settings)
                reply = await self.gateway.complete_text(
                    history, target.content, settings.generation_config()
                )
            return await self._commit(reply, settings)
        except UpstreamError as e:
            logger.warning(f"Regenerate failed for session {self.session_id}: {e.details}")
            self.emitter.emit(ErrorEvent(message=e.details, source="regenerate"))
            raise
        finally:
            self._set_state(ControllerState.IDLE)

    async def send_voice(self, audio: str, mime_type: str | None = None) -> Message | None:
        if self.transcriber is None:
            raise ValidationError("Transcription is not configured")
        if self.is_sending:
            return None
        text = await self.transcriber(audio, mime_type)
        if self.is_sending:
            raise ValidationError(f"A reply is pending; dictated text was not sent: {text}")
        return await self.send(text)

    async def translate_message(self, index: int) -> str:
        if self.translator is None:
            raise ValidationError("Translation is not configured")
        if not 0 <= index < len(self.messages):
            raise ValidationError(f"No message at index {index}")
        target_language = self.settings_store.load().target_translation_language
        return await self.translator(self.messages[index].content, target_language)
