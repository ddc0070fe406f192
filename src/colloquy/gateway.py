from __future__ import annotations

import logging
from typing import Protocol

import httpx

from common import llm
from colloquy.context import to_chat_messages, to_wire_history
from colloquy.errors import UpstreamError
from colloquy.media import DEFAULT_IMAGE_MIME, encode_data_uri
from colloquy.models import GenerationConfig, Turn

logger = logging.getLogger(__name__)


class CompletionGateway(Protocol):
    async def complete_text(
        self, history: list[Turn], new_text: str, gen_config: GenerationConfig
    ) -> str: ...

    async def complete_with_image(
        self, text: str, image: str | bytes, api_key: str | None = None
    ) -> str: ...


def _as_data_uri(image: str | bytes) -> str:
    if isinstance(image, bytes):
        return encode_data_uri(image, DEFAULT_IMAGE_MIME)
    if image.startswith("data:"):
        return image
    return f"data:{DEFAULT_IMAGE_MIME};base64,{image}"


class LiteLLMGateway:
    """Calls the completion backend in-process through litellm. No retries."""

    def __init__(
        self,
        model: str,
        default_api_key: str | None = None,
        timeout_seconds: float = 120.0,
    ):
        self.model = model
        self.default_api_key = default_api_key
        self.timeout_seconds = timeout_seconds

    def _key(self, override: str | None) -> str | None:
        return override or self.default_api_key

    async def complete_text(
        self, history: list[Turn], new_text: str, gen_config: GenerationConfig
    ) -> str:
        messages = to_chat_messages(history, new_text)
        logger.debug(f"Completion request: {len(history)} history turns, model={self.model}")
        try:
            response = await llm.completion(
                model=self.model,
                messages=messages,
                temperature=gen_config.temperature,
                max_tokens=gen_config.max_output_tokens,
                top_p=gen_config.top_p,
                top_k=gen_config.top_k,
                api_key=self._key(gen_config.api_key),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            raise UpstreamError("Completion request failed", details=str(e)) from e
        return llm.response_text(response)

    async def complete_with_image(
        self, text: str, image: str | bytes, api_key: str | None = None
    ) -> str:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": text},
                    {"type": "image_url", "image_url": {"url": _as_data_uri(image)}},
                ],
            }
        ]
        try:
            response = await llm.completion(
                model=self.model,
                messages=messages,
                api_key=self._key(api_key),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            raise UpstreamError("Image completion request failed", details=str(e)) from e
        return llm.response_text(response)


class HttpGateway:
    """Completion gateway backed by a running ``colloquy serve`` instance."""

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.timeout_seconds = timeout_seconds

    async def _post_chat(self, body: dict) -> str:
        url = f"{self.base_url}/api/chat"
        try:
            if self._client is not None:
                response = await self._client.post(url, json=body, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(url, json=body)
        except httpx.HTTPError as e:
            raise UpstreamError("Could not reach chat server", details=str(e)) from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code != 200:
            raise UpstreamError(
                str(data.get("error") or f"HTTP {response.status_code}"),
                details=str(data.get("details") or response.text),
            )
        return str(data.get("response", ""))

    async def complete_text(
        self, history: list[Turn], new_text: str, gen_config: GenerationConfig
    ) -> str:
        settings = {
            "temperature": gen_config.temperature,
            "topP": gen_config.top_p,
            "topK": gen_config.top_k,
            "maxOutputTokens": gen_config.max_output_tokens,
        }
        if gen_config.api_key:
            settings["customApiKey"] = gen_config.api_key
        return await self._post_chat(
            {"content": new_text, "settings": settings, "history": to_wire_history(history)}
        )

    async def complete_with_image(
        self, text: str, image: str | bytes, api_key: str | None = None
    ) -> str:
        body: dict = {"content": text, "image": _as_data_uri(image), "history": []}
        if api_key:
            body["settings"] = {"customApiKey": api_key}
        return await self._post_chat(body)
