import asyncio

import pytest

from common.events import ErrorEvent, HistoryTruncatedEvent, SessionSavedEvent, StateChangedEvent
from colloquy.context import SYSTEM_ACK
from colloquy.controller import IMAGE_DEFAULT_PROMPT, ControllerState, ConversationController
from colloquy.errors import SessionNotFoundError, UpstreamError, ValidationError
from colloquy.models import Turn

from conftest import make_conversation

INSTRUCTION = "Sé breve."


def _stored_session(controller: ConversationController, n: int) -> str:
    session_id = controller.repository.create()
    controller.repository.save(session_id, make_conversation(n))
    controller.select(session_id)
    return session_id


class TestLifecycle:
    def test_start_creates_session_when_repository_empty(self, controller, repository):
        session_id = controller.start()
        assert [s.id for s in repository.list()] == [session_id]
        assert controller.messages == []

    def test_start_selects_first_existing_session(self, controller, repository):
        first = repository.create()
        repository.save(first, make_conversation(2))
        repository.create()
        assert controller.start() == first
        assert len(controller.messages) == 2

    def test_select_unknown_raises(self, controller):
        with pytest.raises(SessionNotFoundError):
            controller.select("missing")

    def test_new_session_clears_messages(self, controller):
        _stored_session(controller, 2)
        new_id = controller.new_session()
        assert controller.session_id == new_id
        assert controller.messages == []

    def test_delete_active_selects_another(self, controller, repository):
        other = repository.create()
        active = _stored_session(controller, 2)
        controller.delete(active)
        assert controller.session_id == other
        assert repository.get(active) is None

    def test_delete_last_session_creates_new_one(self, controller, repository):
        active = controller.start()
        controller.delete(active)
        sessions = repository.list()
        assert len(sessions) == 1
        assert controller.session_id == sessions[0].id != active

    def test_delete_inactive_keeps_selection(self, controller, repository):
        other = repository.create()
        active = _stored_session(controller, 2)
        controller.delete(other)
        assert controller.session_id == active
        assert len(controller.messages) == 2

    def test_delete_missing_is_noop(self, controller):
        active = controller.start()
        controller.delete("nope")
        assert controller.session_id == active

    def test_rename(self, controller, repository):
        session_id = controller.start()
        assert controller.rename(session_id, "  Viajes  ")
        assert repository.get(session_id).title == "Viajes"
        with pytest.raises(ValidationError):
            controller.rename(session_id, "   ")


class TestSend:
    @pytest.mark.asyncio
    async def test_send_appends_pair_and_persists(self, controller, repository, gateway):
        gateway.replies = ["hola humano"]
        controller.start()

        reply = await controller.send("hola como estas hoy amigo")

        assert reply.content == "hola humano"
        assert [(m.role, m.content) for m in controller.messages] == [
            ("user", "hola como estas hoy amigo"),
            ("assistant", "hola humano"),
        ]
        stored = repository.get(controller.session_id)
        assert stored.messages == controller.messages
        assert stored.title == "hola como estas hoy..."
        assert controller.state is ControllerState.IDLE

    @pytest.mark.asyncio
    async def test_history_excludes_new_turn_and_starts_with_instruction(
        self, controller, settings_store, gateway
    ):
        settings_store.update({"systemInstruction": INSTRUCTION})
        _stored_session(controller, 2)

        await controller.send("tercera")

        history, new_text, _ = gateway.text_calls[0]
        assert new_text == "tercera"
        assert history[:2] == [
            Turn(speaker="user", text=INSTRUCTION),
            Turn(speaker="model", text=SYSTEM_ACK),
        ]
        assert [t.text for t in history[2:]] == ["user message 0", "assistant message 1"]

    @pytest.mark.asyncio
    async def test_uses_live_settings_not_session_snapshot(
        self, controller, settings_store, repository, gateway
    ):
        session_id = controller.start()
        await controller.send("uno")
        settings_store.update({"temperature": 0.1, "customApiKey": "mine"})

        await controller.send("dos")

        gen_config = gateway.text_calls[1][2]
        assert gen_config.temperature == 0.1
        assert gen_config.api_key == "mine"
        assert repository.get(session_id).settings.temperature == 0.1

    @pytest.mark.asyncio
    async def test_failure_keeps_user_message_but_does_not_persist(
        self, controller, repository, gateway, events
    ):
        session_id = controller.start()
        gateway.error = UpstreamError("down", details="503 from upstream")

        with pytest.raises(UpstreamError):
            await controller.send("hola")

        assert [m.role for m in controller.messages] == ["user"]
        assert repository.get(session_id).messages == []
        assert controller.state is ControllerState.IDLE
        assert ErrorEvent(message="503 from upstream", source="send") in events

    @pytest.mark.asyncio
    async def test_empty_content_without_image_is_rejected(self, controller, gateway):
        controller.start()
        with pytest.raises(ValidationError):
            await controller.send("   ")
        assert controller.messages == []
        assert gateway.text_calls == []

    @pytest.mark.asyncio
    async def test_image_goes_through_single_shot_call(
        self, controller, settings_store, gateway
    ):
        settings_store.update({"customApiKey": "img-key"})
        _stored_session(controller, 2)

        await controller.send("", image="data:image/jpeg;base64,AAAA")

        assert gateway.text_calls == []
        assert gateway.image_calls == [
            (IMAGE_DEFAULT_PROMPT, "data:image/jpeg;base64,AAAA", "img-key")
        ]
        assert controller.messages[-2].image == "data:image/jpeg;base64,AAAA"

    @pytest.mark.asyncio
    async def test_send_while_sending_is_rejected(self, controller, gateway):
        controller.start()
        gateway.gate = asyncio.Event()

        first = asyncio.create_task(controller.send("primero"))
        await asyncio.sleep(0)
        assert controller.is_sending

        assert await controller.send("segundo") is None
        assert await controller.regenerate(0) is None
        assert [m.content for m in controller.messages] == ["primero"]

        gateway.gate.set()
        await first
        assert len(gateway.text_calls) == 1
        assert len(controller.messages) == 2
        assert not controller.is_sending

    @pytest.mark.asyncio
    async def test_session_switch_blocked_while_sending(self, controller, gateway):
        controller.start()
        gateway.gate = asyncio.Event()
        task = asyncio.create_task(controller.send("hola"))
        await asyncio.sleep(0)

        with pytest.raises(ValidationError):
            controller.new_session()

        gateway.gate.set()
        await task

    @pytest.mark.asyncio
    async def test_state_events_bracket_the_call(self, controller, events):
        controller.start()
        await controller.send("hola")
        states = [e.state for e in events if isinstance(e, StateChangedEvent)]
        assert states == ["sending", "idle"]
        assert any(isinstance(e, SessionSavedEvent) for e in events)

    @pytest.mark.asyncio
    async def test_failed_save_does_not_keep_reply_in_memory(
        self, controller, repository, monkeypatch
    ):
        session_id = controller.start()

        def disk_full(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(repository, "save", disk_full)

        with pytest.raises(OSError):
            await controller.send("hola")

        assert [m.role for m in controller.messages] == ["user"]
        assert repository.get(session_id).messages == []
        assert controller.state is ControllerState.IDLE


class TestRegenerate:
    @pytest.mark.asyncio
    async def test_truncates_to_index_then_appends(self, controller, repository, gateway):
        session_id = _stored_session(controller, 5)
        original = list(controller.messages)
        gateway.replies = ["nueva respuesta"]

        reply = await controller.regenerate(3)

        assert len(controller.messages) == 4
        assert controller.messages[:3] == original[:3]
        assert controller.messages[3] is reply
        assert reply.role == "assistant"
        assert repository.get(session_id).messages == controller.messages

    @pytest.mark.asyncio
    async def test_resends_content_of_message_at_index(self, controller, settings_store, gateway):
        settings_store.update({"systemInstruction": ""})
        _stored_session(controller, 5)

        await controller.regenerate(3)

        history, prompt, _ = gateway.text_calls[0]
        assert prompt == "assistant message 3"
        assert [t.text for t in history] == [
            "user message 0",
            "assistant message 1",
            "user message 2",
        ]

    @pytest.mark.asyncio
    async def test_regenerating_a_user_message_asks_again(self, controller, settings_store, gateway):
        settings_store.update({"systemInstruction": ""})
        _stored_session(controller, 4)

        await controller.regenerate(2)

        _, prompt, _ = gateway.text_calls[0]
        assert prompt == "user message 2"
        assert [m.role for m in controller.messages] == ["user", "assistant", "assistant"]

    @pytest.mark.asyncio
    async def test_failure_leaves_truncation_in_memory_only(
        self, controller, repository, gateway, events
    ):
        session_id = _stored_session(controller, 5)
        gateway.error = UpstreamError("down")

        with pytest.raises(UpstreamError):
            await controller.regenerate(3)

        assert len(controller.messages) == 3
        assert len(repository.get(session_id).messages) == 5
        assert controller.state is ControllerState.IDLE
        assert HistoryTruncatedEvent(session_id=session_id, length=3) in events

        controller.select(session_id)
        assert len(controller.messages) == 5

    @pytest.mark.asyncio
    async def test_message_with_image_uses_image_call(self, controller, repository, gateway):
        session_id = repository.create()
        messages = make_conversation(2)
        messages[0].image = "data:image/png;base64,AAAA"
        repository.save(session_id, messages)
        controller.select(session_id)

        await controller.regenerate(0)

        assert gateway.image_calls[0][:2] == ("user message 0", "data:image/png;base64,AAAA")
        assert len(controller.messages) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [-1, 5, 99])
    async def test_out_of_range_index_is_rejected(self, controller, gateway, index):
        _stored_session(controller, 5)
        with pytest.raises(ValidationError):
            await controller.regenerate(index)
        assert len(controller.messages) == 5
        assert gateway.text_calls == []


class TestCollaborators:
    @pytest.mark.asyncio
    async def test_send_voice_sends_transcription(self, repository, settings_store, gateway):
        calls = []

        async def transcriber(audio, mime_type):
            calls.append((audio, mime_type))
            return "texto dictado"

        controller = ConversationController(
            repository, settings_store, gateway, transcriber=transcriber
        )
        controller.start()

        await controller.send_voice("data:audio/webm;base64,AAAA", "audio/webm")

        assert calls == [("data:audio/webm;base64,AAAA", "audio/webm")]
        assert controller.messages[0].content == "texto dictado"

    @pytest.mark.asyncio
    async def test_dictation_finishing_during_a_send_is_reported(
        self, repository, settings_store, gateway
    ):
        transcribing = asyncio.Event()

        async def transcriber(audio, mime_type):
            await transcribing.wait()
            return "texto dictado"

        controller = ConversationController(
            repository, settings_store, gateway, transcriber=transcriber
        )
        controller.start()
        gateway.gate = asyncio.Event()

        voice = asyncio.create_task(controller.send_voice("data:audio/webm;base64,AAAA"))
        await asyncio.sleep(0)
        typed = asyncio.create_task(controller.send("escrito"))
        await asyncio.sleep(0)
        assert controller.is_sending

        transcribing.set()
        with pytest.raises(ValidationError, match="texto dictado"):
            await voice

        gateway.gate.set()
        await typed
        assert [m.content for m in controller.messages][0] == "escrito"
        assert len(gateway.text_calls) == 1

    @pytest.mark.asyncio
    async def test_translate_message_uses_target_language(
        self, repository, settings_store, gateway
    ):
        async def translator(text, target):
            return f"{target}:{text}"

        settings_store.update({"targetTranslationLanguage": "fr"})
        controller = ConversationController(
            repository, settings_store, gateway, translator=translator
        )
        session_id = repository.create()
        repository.save(session_id, make_conversation(2))
        controller.select(session_id)

        assert await controller.translate_message(1) == "fr:assistant message 1"

    @pytest.mark.asyncio
    async def test_missing_collaborators_raise_validation_error(self, controller):
        controller.start()
        with pytest.raises(ValidationError):
            await controller.send_voice("data:audio/webm;base64,AAAA")
        with pytest.raises(ValidationError):
            await controller.translate_message(0)
