"""Base interface for generation providers."""

from __future__ import annotations

import abc

from ..contracts import ModelConfig


class GenerationProvider(metaclass=abc.ABCMeta):
    """Turns a rendered prompt into generated text."""

    name: str = "base"

    @abc.abstractmethod
    async def generate(self, prompt: str, model_config: ModelConfig) -> str:
        """Return generated text or raise a :class:`StepError`."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release held resources (no-op by default)."""
        pass
