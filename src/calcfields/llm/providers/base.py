"""Abstract base class for LLM providers.

This module defines the interface that all LLM providers must implement.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from calcfields.core.models import Result


class LLMRequest(BaseModel):
    """Request to LLM provider."""

    prompt: str
    system: str | None = None
    model_tier: str = "balanced"
    max_tokens: int = 1000
    temperature: float = 0.0
    response_format: str = "json"  # "json" or "text"


class LLMResponse(BaseModel):
    """Response from LLM provider."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class LLMTransientError(Exception):
    """A provider failure worth retrying (rate limit, timeout, overload).

    Raised rather than returned so the retry policy can catch it. Definitive
    failures (bad request, authentication) are returned as failed Results.
    """

    def __init__(self, message: str, rate_limited: bool = False):
        super().__init__(message)
        self.rate_limited = rate_limited


class LLMProvider(ABC):
    """Abstract base for LLM providers."""

    @abstractmethod
    async def complete(self, request: LLMRequest) -> Result[LLMResponse]:
        """Send completion request to provider.

        Args:
            request: The LLM request with prompt and parameters

        Returns:
            Result containing LLMResponse or error message

        Raises:
            LLMTransientError: On failures worth retrying
        """
        pass

    @abstractmethod
    def get_model_for_tier(self, tier: str) -> str:
        """Get model name for a given tier.

        Args:
            tier: Model tier ('fast', 'balanced')

        Returns:
            Model name/identifier for the provider
        """
        pass
