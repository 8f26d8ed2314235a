"""Prompt template rendering."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

PLACEHOLDER = re.compile(r"\{\{([^{}]+)\}\}")


def stringify(value: Any) -> str:
    """Return the text substituted for ``value`` inside a prompt."""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def render(template: str, context: Mapping[str, Any] | None = None) -> str:
    """Substitute every ``{{key}}`` whose key exists in ``context``.

    Unknown placeholders are left verbatim and substituted values are never
    rendered again, so the result is deterministic for a given input.
    """
    if not context:
        return template

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in context:
            return stringify(context[key])
        return match.group(0)

    return PLACEHOLDER.sub(_replace, template)
