import io
import logging
import mimetypes

from common import llm
from colloquy.errors import UpstreamError
from colloquy.media import decode_data_uri

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_MIME = "audio/webm"


def _filename_for(mime_type: str) -> str:
    base = mime_type.split(";", 1)[0].strip()
    extension = mimetypes.guess_extension(base) or "." + base.rsplit("/", 1)[-1]
    return f"audio{extension}"


async def transcribe(
    audio: str,
    mime_type: str | None = None,
    *,
    model: str,
    api_key: str | None = None,
    timeout_seconds: float = 120.0,
) -> str:
    """Transcribe a base64 audio data URI. Empty transcriptions are failures."""
    uri_mime, payload = decode_data_uri(audio)
    mime_type = mime_type or uri_mime or DEFAULT_AUDIO_MIME

    handle = io.BytesIO(payload)
    handle.name = _filename_for(mime_type)
    logger.debug(f"Transcribing {len(payload)} bytes of {mime_type}")
    try:
        text = await llm.transcription(
            model=model, file=handle, api_key=api_key, timeout=timeout_seconds
        )
    except Exception as e:
        raise UpstreamError("Error al transcribir el audio", details=str(e)) from e

    text = text.strip()
    if not text:
        raise UpstreamError("No se pudo transcribir el audio", details="empty transcription")
    return text
