import warnings
from typing import Any, BinaryIO

import litellm

warnings.filterwarnings("ignore", message="Pydantic serializer warnings")
litellm.drop_params = True


async def completion(
    model: str,
    messages: list[dict],
    temperature: float = 0.0,
    max_tokens: int = 4096,
    api_key: str | None = None,
    **kwargs,
) -> Any:
    params = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        **kwargs,
    }
    if api_key:
        params["api_key"] = api_key

    return await litellm.acompletion(**params)


def response_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    return getattr(message, "content", None) or ""


async def transcription(
    model: str,
    file: BinaryIO,
    api_key: str | None = None,
    **kwargs,
) -> str:
    params = {"model": model, "file": file, **kwargs}
    if api_key:
        params["api_key"] = api_key
    response = await litellm.atranscription(**params)
    return getattr(response, "text", None) or ""
