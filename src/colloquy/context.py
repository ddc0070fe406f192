"""Turn history sent upstream with every request.

The completion backend only knows ``user`` and ``model`` turns, so a system
instruction is simulated with a leading user/model pair. The full history is
included on every request; there is no token-budget truncation, so very long
sessions grow the request without bound.
"""

from typing import Iterable

from colloquy.models import Message, Settings, Speaker, Turn

SYSTEM_ACK = (
    "Entendido, actuaré según esas instrucciones, sin irme del eje principal y "
    "respetando la idea para garantizar una experiencia encantadora al usuario."
)

_SPEAKER_FOR_ROLE: dict[str, Speaker] = {"user": "user", "assistant": "model"}


def build_context(prior_messages: Iterable[Message], settings: Settings) -> list[Turn]:
    instruction = settings.system_instruction
    turns: list[Turn] = []
    if instruction:
        turns.append(Turn(speaker="user", text=instruction))
        turns.append(Turn(speaker="model", text=SYSTEM_ACK))

    for message in prior_messages:
        if instruction and message.content == instruction:
            continue
        turns.append(Turn(speaker=_SPEAKER_FOR_ROLE[message.role], text=message.content))
    return turns


def to_wire_history(turns: Iterable[Turn]) -> list[dict]:
    return [turn.to_wire() for turn in turns]


def to_chat_messages(turns: Iterable[Turn], new_text: str | None = None) -> list[dict]:
    """Map turns onto the role/content message list litellm expects."""
    messages = [
        {"role": "assistant" if t.speaker == "model" else "user", "content": t.text}
        for t in turns
    ]
    if new_text is not None:
        messages.append({"role": "user", "content": new_text})
    return messages
