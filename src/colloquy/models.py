from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from common.ids import generate_id

Role = Literal["user", "assistant"]
Speaker = Literal["user", "model"]

PLACEHOLDER_TITLE = "Nuevo Chat"
TITLE_WORDS = 4
TITLE_SUFFIX = "..."

DEFAULT_SYSTEM_INSTRUCTION = (
    "Eres el modelo de inteligencia artificial Unit-O1. Si te preguntan, di que eres "
    "un modelo pre-trained Unit-O1. Trata de mantener un lenguaje natural y mostrar "
    "interés por la vida de los demás. No respondas muy largo si no se te pide."
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_title(first_message: str) -> str:
    return " ".join(first_message.split()[:TITLE_WORDS]) + TITLE_SUFFIX


class Message(BaseModel):
    id: str = Field(default_factory=generate_id)
    role: Role
    content: str
    image: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class GenerationConfig(BaseModel):
    temperature: float
    top_p: float
    top_k: int
    max_output_tokens: int
    api_key: str | None = None


class Settings(BaseModel):
    """Tunable generation parameters, serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION
    temperature: float = Field(default=0.80, ge=0.0, le=1.0)
    top_p: float = Field(default=0.92, ge=0.0, le=1.0)
    top_k: int = Field(default=40, ge=0)
    max_output_tokens: int = Field(default=20000, gt=0)
    custom_api_key: str | None = None
    voice_id: str | None = "es-ES"
    voice_speed: float = Field(default=1.0, gt=0.0)
    voice_pitch: float = Field(default=1.0, gt=0.0)
    target_translation_language: str = "en"

    def generation_config(self) -> GenerationConfig:
        return GenerationConfig(
            temperature=self.temperature,
            top_p=self.top_p,
            top_k=self.top_k,
            max_output_tokens=self.max_output_tokens,
            api_key=self.custom_api_key or None,
        )

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Session(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=generate_id)
    title: str = PLACEHOLDER_TITLE
    title_locked: bool = False
    messages: list[Message] = Field(default_factory=list)
    settings: Settings | None = None
    created_at: datetime = Field(default_factory=utc_now)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Turn(BaseModel):
    speaker: Speaker
    text: str

    def to_wire(self) -> dict:
        return {"role": self.speaker, "parts": [{"text": self.text}]}

    @classmethod
    def from_wire(cls, data: dict) -> "Turn":
        parts = data.get("parts") or []
        text = "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))
        return cls(speaker=data.get("role", "user"), text=text)


class VoiceDescriptor(BaseModel):
    voice_id: str
    name: str
    language_code: str
    ssml_gender: str = "NEUTRAL"
