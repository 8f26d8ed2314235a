"""Unbound chat-completion provider."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import DEFAULT_UNBOUND_URL
from ..contracts import ModelConfig
from ..exceptions import ConfigurationError, ProviderError
from .base import GenerationProvider

logger = logging.getLogger(__name__)


class UnboundProvider(GenerationProvider):
    """Call an OpenAI-style chat completion endpoint with a bearer key."""

    name = "unbound"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_UNBOUND_URL,
        timeout: float = 60.0,
        default_temperature: float = 0.7,
        default_max_tokens: int = 2048,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self._client = client

    def build_payload(self, prompt: str, model_config: ModelConfig) -> dict[str, Any]:
        temperature = model_config.temperature
        max_tokens = model_config.max_tokens
        return {
            "model": model_config.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.default_temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.default_max_tokens,
        }

    async def generate(self, prompt: str, model_config: ModelConfig) -> str:
        if not self.api_key:
            raise ConfigurationError(
                "UNBOUND_API_KEY is not set in environment variables"
            )

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        payload = self.build_payload(prompt, model_config)

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.base_url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.base_url, json=payload, headers=headers
                    )
        except httpx.HTTPError as exc:
            logger.error(f"Unbound API call failed: {exc!r}")
            raise ProviderError(f"Unbound request failed: {exc}") from exc

        if not response.is_success:
            raise ProviderError(
                f"Unbound API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return self._extract_content(response)

    @staticmethod
    def _extract_content(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"Malformed Unbound response: {exc}") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list):
            raise ProviderError("Malformed Unbound response: missing 'choices'")
        if not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        return content.strip() if isinstance(content, str) else ""

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
