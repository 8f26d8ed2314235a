"""Step invocation: render the prompt, call the provider, check the result."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Mapping, Optional

from .config import ProviderConfig
from .contracts import CompletionCriteria, ModelConfig
from .exceptions import (
    CompletionCriteriaError,
    ProviderError,
    StepError,
    StepTimeoutError,
)
from .persistence.models import Step
from .providers import GenerationProvider, resolve_provider
from .templating import render

logger = logging.getLogger(__name__)

ProviderResolver = Callable[[ModelConfig], GenerationProvider]


def check_completion(output: str, criteria: Optional[CompletionCriteria]) -> None:
    """Raise if ``output`` does not carry every required JSON field."""
    if criteria is None or not criteria.required_fields:
        return
    try:
        data = json.loads(output)
    except ValueError:
        raise CompletionCriteriaError(
            "Output is not a JSON object", missing=list(criteria.required_fields)
        ) from None
    if not isinstance(data, dict):
        raise CompletionCriteriaError(
            "Output is not a JSON object", missing=list(criteria.required_fields)
        )
    missing = [field for field in criteria.required_fields if field not in data]
    if missing:
        raise CompletionCriteriaError(
            f"Output missing required fields: {', '.join(missing)}", missing=missing
        )


class StepInvoker:
    """Runs one attempt of a step against its generation provider."""

    def __init__(
        self,
        provider_config: Optional[ProviderConfig] = None,
        step_timeout: Optional[float] = None,
        resolver: Optional[ProviderResolver] = None,
    ) -> None:
        self.provider_config = provider_config or ProviderConfig()
        self.step_timeout = step_timeout
        self._resolver = resolver or (
            lambda model_config: resolve_provider(model_config, self.provider_config)
        )

    def render_prompt(self, step: Step, context: Mapping[str, Any]) -> str:
        return render(step.prompt_template, context)

    async def invoke(self, step: Step, context: Mapping[str, Any]) -> str:
        """Return generated text or raise :class:`StepError`."""
        prompt = self.render_prompt(step, context)
        provider = self._resolver(step.model_settings)
        logger.debug(
            f"Dispatching step {step.id} to provider {provider.name} "
            f"(model={step.model_settings.model})"
        )
        call = provider.generate(prompt, step.model_settings)
        try:
            if self.step_timeout:
                output = await asyncio.wait_for(call, timeout=self.step_timeout)
            else:
                output = await call
        except asyncio.TimeoutError as exc:
            if self.step_timeout:
                raise StepTimeoutError(self.step_timeout) from None
            raise ProviderError(f"Provider call timed out: {exc}") from exc
        except StepError:
            raise
        except Exception as exc:
            raise ProviderError(f"{type(exc).__name__}: {exc}") from exc
        check_completion(output, step.completion_criteria)
        return output
