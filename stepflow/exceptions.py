"""Exception types raised by stepflow.

Hierarchy:
- StepflowError (base)
  - StepError            a single step attempt failed
    - ProviderError            network / HTTP / malformed response (retry)
    - ConfigurationError       e.g. missing credentials (don't retry)
    - StepTimeoutError         per-step timeout elapsed (retry)
    - CompletionCriteriaError  output lacks required fields (retry)
  - NotFoundError              workflow or execution id does not resolve
  - ReferentialIntegrityError  change would orphan execution logs
"""

from __future__ import annotations


class StepflowError(Exception):
    """Base exception for all stepflow errors."""


class StepError(StepflowError):
    """A step attempt failed; ``retryable`` tells the retry controller what to do."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class ProviderError(StepError):
    """The generation provider could not produce a completion."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, retryable=True)
        self.status_code = status_code


class ConfigurationError(StepError):
    """Required configuration is missing. Never retried."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class StepTimeoutError(StepError):
    def __init__(self, timeout: float):
        super().__init__(f"Step timed out after {timeout}s", retryable=True)
        self.timeout = timeout


class CompletionCriteriaError(StepError):
    """Step output did not satisfy the declared completion criteria."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message, retryable=True)
        self.missing = missing or []


class NotFoundError(StepflowError):
    """A workflow or execution identifier does not resolve."""

    def __init__(self, kind: str, identifier: int):
        super().__init__(f"{kind.capitalize()} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class ReferentialIntegrityError(StepflowError):
    """The store refused a structural change that would orphan log rows."""
