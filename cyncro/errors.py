"""Exception hierarchy shared across the assistant service.

Every AssistantError carries a message that is safe to show to the
client. Anything else that escapes a turn is reported generically.
"""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for errors whose message may be surfaced to the client."""


class ProviderError(AssistantError):
    """An LLM provider could not produce a response."""


class ProviderNotConfiguredError(ProviderError):
    """The selected provider has no credential configured."""


class ProviderNotImplementedError(ProviderError):
    """The provider adapter has no vendor backend wired in yet."""

    def __init__(self, provider: str, dependency: str) -> None:
        self.provider = provider
        self.dependency = dependency
        super().__init__(
            f"{provider} provider is not implemented: install and wire up "
            f"'{dependency}' to enable it"
        )


class ProviderCallError(ProviderError):
    """The vendor API call failed (HTTP error, timeout, malformed body)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class StorageError(AssistantError):
    """Blob or record storage failed."""


class RequestValidationError(AssistantError):
    """A chat request is malformed."""
