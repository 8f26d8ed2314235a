"""Deterministic provider used when no real backend is selected."""

from __future__ import annotations

import asyncio

from ..contracts import ModelConfig
from .base import GenerationProvider

MOCK_PREFIX = "[Mock AI Response] Processed: "


class MockProvider(GenerationProvider):
    """Echo the rendered prompt back; no network access."""

    name = "mock"

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency

    async def generate(self, prompt: str, model_config: ModelConfig) -> str:
        if self.latency:
            await asyncio.sleep(self.latency)
        return f"{MOCK_PREFIX}{prompt}"
