import logging

from common import llm
from colloquy.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

TRANSLATION_LANGUAGES = {
    "en": "Inglés",
    "fr": "Francés",
    "de": "Alemán",
    "it": "Italiano",
    "pt": "Portugués",
    "ca": "Catalán",
    "es": "Español",
}


def build_translation_prompt(text: str, target_language: str) -> str:
    if target_language == "es":
        direction = "del inglés al español"
    else:
        direction = f"del español al {target_language}"
    return (
        f"Traduce el siguiente texto {direction}. Solo proporciona la traducción, "
        f"sin texto adicional ni explicaciones:\n\n\"{text}\""
    )


async def translate(
    text: str,
    target_language: str,
    *,
    model: str,
    api_key: str | None = None,
    timeout_seconds: float = 120.0,
) -> str:
    if not text.strip():
        raise ValidationError("Nothing to translate")
    if not target_language:
        raise ValidationError("targetLanguage is required")

    prompt = build_translation_prompt(text, target_language)
    logger.debug(f"Translating {len(text)} chars to {target_language}")
    try:
        response = await llm.completion(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            api_key=api_key,
            timeout=timeout_seconds,
        )
    except Exception as e:
        raise UpstreamError("Error al traducir el texto", details=str(e)) from e
    return llm.response_text(response).strip()
