"""Provider selection for step invocation."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import ProviderConfig
from ..contracts import ModelConfig
from .base import GenerationProvider
from .mock import MOCK_PREFIX, MockProvider
from .unbound import UnboundProvider

logger = logging.getLogger(__name__)

PROVIDER_KINDS = ("unbound", "mock")


def provider_kind(model_config: ModelConfig) -> str:
    """Map a step's provider field onto the closed set of provider kinds.

    Anything that is not a known real backend resolves to ``mock``.
    """
    provider = (model_config.provider or "").strip().lower()
    if provider in PROVIDER_KINDS:
        return provider
    if provider:
        logger.warning(f"Unknown provider {model_config.provider!r}; using mock")
    return "mock"


def resolve_provider(
    model_config: ModelConfig, config: Optional[ProviderConfig] = None
) -> GenerationProvider:
    """Factory returning the provider for ``model_config``."""

    config = config or ProviderConfig()
    kind = provider_kind(model_config)
    if kind == "unbound":
        return UnboundProvider(
            api_key=config.unbound_api_key,
            base_url=config.unbound_base_url,
            timeout=config.request_timeout,
            default_temperature=config.default_temperature,
            default_max_tokens=config.default_max_tokens,
        )
    return MockProvider(latency=config.mock_latency)


__all__ = [
    "GenerationProvider",
    "MockProvider",
    "UnboundProvider",
    "MOCK_PREFIX",
    "PROVIDER_KINDS",
    "provider_kind",
    "resolve_provider",
]
