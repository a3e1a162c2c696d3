"""
HTTP vision-model providers.

Every provider makes exactly one POST per call and returns the assistant
text plus token usage. Transport failures and non-2xx replies raise
ProviderError and are never priced.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
import openai
from openai import AsyncOpenAI

from deskprobe.core.config import API_KEY_VARIABLES, VLMConfig, VLMProvider
from deskprobe.core.errors import ProviderError
from deskprobe.core.vision.imaging import media_type_of

logger = logging.getLogger("deskprobe.vision")

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
VOLCENGINE_BASE_URL = "https://ark.cn-beijing.volces.com/api/v3"

# Usage assumed when a provider omits token counts.
DEFAULT_INPUT_TOKENS = 1000
DEFAULT_OUTPUT_TOKENS = 500


@dataclass(frozen=True)
class ProviderReply:
    text: str
    input_tokens: int
    output_tokens: int


class VisionProvider(ABC):
    """One vision-model endpoint."""

    def __init__(self, config: VLMConfig) -> None:
        self.config = config
        self.provider = config.provider
        self.model = config.resolved_model

    @abstractmethod
    async def call(self, system_prompt: str, user_prompt: str, image_b64: str) -> ProviderReply:
        ...

    async def close(self) -> None:
        return None


class OpenAICompatibleProvider(VisionProvider):
    """Chat-completions providers: OpenAI, Volcengine/Doubao and custom endpoints."""

    DEFAULT_BASE_URLS = {
        VLMProvider.VOLCENGINE: VOLCENGINE_BASE_URL,
        VLMProvider.DOUBAO: VOLCENGINE_BASE_URL,
    }

    def __init__(self, config: VLMConfig, client: Optional[AsyncOpenAI] = None) -> None:
        super().__init__(config)
        if client is None:
            base_url = config.base_url or self.DEFAULT_BASE_URLS.get(config.provider)
            if config.provider == VLMProvider.CUSTOM and not base_url:
                raise ProviderError(config.provider.value, "Custom provider requires base_url")
            if not config.api_key and config.provider != VLMProvider.CUSTOM:
                names = " or ".join(API_KEY_VARIABLES.get(config.provider, ()))
                raise ProviderError(
                    config.provider.value,
                    f"API key not provided. Set {names} or pass api_key in config.",
                )
            client = AsyncOpenAI(
                api_key=config.api_key or "",
                base_url=base_url,
                timeout=config.request_timeout_s,
            )
        self._client = client

    async def call(self, system_prompt: str, user_prompt: str, image_b64: str) -> ProviderReply:
        data_uri = f"data:{media_type_of(image_b64)};base64,{image_b64}"
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                max_tokens=self.config.max_tokens,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {
                        "role": "user",
                        "content": [
                            {"type": "image_url", "image_url": {"url": data_uri}},
                            {"type": "text", "text": user_prompt},
                        ],
                    },
                ],
            )
        except openai.APIStatusError as exc:
            raise ProviderError(self.provider.value, str(exc), status_code=exc.status_code) from exc
        except openai.APIError as exc:
            raise ProviderError(self.provider.value, str(exc)) from exc

        if not response.choices:
            raise ProviderError(self.provider.value, "Response contained no choices")

        usage = response.usage
        return ProviderReply(
            text=response.choices[0].message.content or "",
            input_tokens=(usage.prompt_tokens if usage else 0) or DEFAULT_INPUT_TOKENS,
            output_tokens=(usage.completion_tokens if usage else 0) or DEFAULT_OUTPUT_TOKENS,
        )

    async def close(self) -> None:
        await self._client.close()


class AnthropicProvider(VisionProvider):
    """Anthropic Messages API over httpx."""

    def __init__(self, config: VLMConfig, http_client: Optional[httpx.AsyncClient] = None) -> None:
        super().__init__(config)
        if not config.api_key:
            raise ProviderError(
                "anthropic",
                "API key not provided. Set ANTHROPIC_API_KEY or pass api_key in config.",
            )
        self._url = config.base_url or ANTHROPIC_URL
        self._http = http_client
        self._owns_client = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.config.request_timeout_s)
        return self._http

    async def call(self, system_prompt: str, user_prompt: str, image_b64: str) -> ProviderReply:
        payload = {
            "model": self.model,
            "max_tokens": self.config.max_tokens,
            "system": system_prompt,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": media_type_of(image_b64),
                                "data": image_b64,
                            },
                        },
                        {"type": "text", "text": user_prompt},
                    ],
                }
            ],
        }
        headers = {
            "x-api-key": self.config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        try:
            response = await self._client().post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise ProviderError("anthropic", str(exc)) from exc

        if response.status_code != 200:
            raise ProviderError("anthropic", response.text[:500], status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("anthropic", "Response body was not JSON") from exc

        text = next(
            (block.get("text", "") for block in data.get("content", []) if block.get("type", "text") == "text"),
            "",
        )
        usage = data.get("usage") or {}
        return ProviderReply(
            text=text,
            input_tokens=usage.get("input_tokens") or DEFAULT_INPUT_TOKENS,
            output_tokens=usage.get("output_tokens") or DEFAULT_OUTPUT_TOKENS,
        )

    async def close(self) -> None:
        if self._owns_client and self._http is not None:
            await self._http.aclose()
            self._http = None


PROVIDER_FACTORIES: dict[VLMProvider, Callable[[VLMConfig], VisionProvider]] = {
    VLMProvider.ANTHROPIC: AnthropicProvider,
    VLMProvider.OPENAI: OpenAICompatibleProvider,
    VLMProvider.VOLCENGINE: OpenAICompatibleProvider,
    VLMProvider.DOUBAO: OpenAICompatibleProvider,
    VLMProvider.CUSTOM: OpenAICompatibleProvider,
}


def create_provider(config: VLMConfig) -> VisionProvider:
    factory = PROVIDER_FACTORIES.get(config.provider)
    if factory is None:
        raise ProviderError(config.provider.value, "No HTTP provider for this provider type")
    logger.info(f"[Vision] Using {config.provider.value} provider with model {config.resolved_model}")
    return factory(config)
