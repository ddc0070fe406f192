import asyncio

import pytest

from colloquy.controller import ConversationController
from colloquy.models import GenerationConfig, Message, Turn
from colloquy.sessions.repository import SessionRepository
from colloquy.settings import SettingsStore
from colloquy.storage import MemoryStore


class FakeGateway:
    """Records every call; can be told to fail or to hold until released."""

    def __init__(self, replies: list[str] | None = None):
        self.replies = list(replies or [])
        self.text_calls: list[tuple[list[Turn], str, GenerationConfig]] = []
        self.image_calls: list[tuple[str, str, str | None]] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def _reply(self) -> str:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return f"reply {len(self.text_calls) + len(self.image_calls)}"

    async def complete_text(self, history, new_text, gen_config) -> str:
        self.text_calls.append((list(history), new_text, gen_config))
        return await self._reply()

    async def complete_with_image(self, text, image, api_key=None) -> str:
        self.image_calls.append((text, image, api_key))
        return await self._reply()


def make_conversation(n: int) -> list[Message]:
    messages = []
    for i in range(n):
        role = "user" if i % 2 == 0 else "assistant"
        messages.append(Message(role=role, content=f"{role} message {i}"))
    return messages


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def repository(store) -> SessionRepository:
    return SessionRepository(store)


@pytest.fixture
def settings_store(store) -> SettingsStore:
    return SettingsStore(store)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def controller(repository, settings_store, gateway, events) -> ConversationController:
    return ConversationController(
        repository,
        settings_store,
        gateway,
        on_event=events.append,
    )
