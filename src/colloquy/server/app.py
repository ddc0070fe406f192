import logging
from functools import partial

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from colloquy.config import AppConfig
from colloquy.controller import Transcriber, Translator
from colloquy.errors import UpstreamError, ValidationError
from colloquy.gateway import CompletionGateway, LiteLLMGateway
from colloquy.models import Settings, Turn
from colloquy.services.transcribe import transcribe
from colloquy.services.translate import translate
from colloquy.services.voices import list_voices

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    content: str = ""
    image: str | None = None
    settings: Settings | None = None
    history: list[dict] = Field(default_factory=list)


class TranslateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    target_language: str = Field(alias="targetLanguage")


class TranscribeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audio: str
    mime_type: str | None = Field(default=None, alias="mimeType")


class SpeechRequest(BaseModel):
    text: str


def _error(status: int, error: str, details: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": error, "details": details})


def _failure(exc: Exception, fallback: str) -> JSONResponse:
    if isinstance(exc, ValidationError):
        return _error(500, "Invalid request", str(exc))
    if isinstance(exc, UpstreamError):
        return _error(500, exc.message, exc.details)
    return _error(500, fallback, str(exc))


def create_app(
    config: AppConfig | None = None,
    *,
    gateway: CompletionGateway | None = None,
    translator: Translator | None = None,
    transcriber: Transcriber | None = None,
) -> FastAPI:
    config = config or AppConfig()
    if gateway is None:
        gateway = LiteLLMGateway(
            config.model,
            default_api_key=config.api_key,
            timeout_seconds=config.timeout_seconds,
        )
    if translator is None:
        translator = partial(
            translate,
            model=config.model,
            api_key=config.api_key,
            timeout_seconds=config.timeout_seconds,
        )
    if transcriber is None:
        transcriber = partial(
            transcribe,
            model=config.transcription_model,
            timeout_seconds=config.timeout_seconds,
        )

    app = FastAPI(title="colloquy", description="Multi-session chat backend")
    app.state.config = config
    app.state.gateway = gateway

    @app.post("/api/chat")
    async def chat(request: ChatRequest):
        settings = request.settings or Settings()
        logger.info(f"Chat request: history={len(request.history)} image={bool(request.image)}")
        try:
            if not request.content.strip() and not request.image:
                raise ValidationError("content is required")
            if request.image:
                text = await gateway.complete_with_image(
                    request.content, request.image, settings.custom_api_key or None
                )
            else:
                history = [Turn.from_wire(item) for item in request.history]
                text = await gateway.complete_text(
                    history, request.content, settings.generation_config()
                )
        except Exception as e:
            logger.exception("Error in chat endpoint")
            return _failure(e, "Internal server error")
        return {"response": text}

    @app.post("/api/translate")
    async def translate_text(request: TranslateRequest):
        try:
            translation = await translator(request.text, request.target_language)
        except Exception as e:
            logger.exception("Error in translate endpoint")
            return _failure(e, "Error al traducir el texto")
        return {"translation": translation}

    @app.post("/api/transcribe")
    async def transcribe_audio(request: TranscribeRequest):
        try:
            transcription = await transcriber(request.audio, request.mime_type)
        except Exception as e:
            logger.exception("Error in transcribe endpoint")
            return _failure(e, "Error al transcribir el audio")
        return {"transcription": transcription}

    @app.get("/api/voices")
    async def voices():
        return {"voices": [v.model_dump() for v in list_voices()]}

    @app.post("/api/text-to-speech")
    async def text_to_speech(request: SpeechRequest):
        return {"text": request.text}

    return app
