"""Base class for LLM features with common functionality."""

from calcfields.core.logging import increment_llm_call
from calcfields.core.models import Result
from calcfields.llm.config import LLMConfig
from calcfields.llm.prompts import PromptRenderer
from calcfields.llm.providers.base import LLMProvider, LLMRequest, LLMResponse


class LLMFeature:
    """Base class for LLM features.

    Provides common functionality:
    - Configuration access
    - Prompt rendering
    - Metered LLM calls
    """

    def __init__(
        self,
        config: LLMConfig,
        provider: LLMProvider,
        prompt_renderer: PromptRenderer,
    ):
        """Initialize LLM feature.

        Args:
            config: LLM configuration
            provider: LLM provider instance
            prompt_renderer: Prompt template renderer
        """
        self.config = config
        self.provider = provider
        self.renderer = prompt_renderer

    async def _call_llm(
        self,
        system: str | None,
        prompt: str,
        temperature: float,
        model_tier: str,
    ) -> Result[LLMResponse]:
        """Call the provider once and meter the call.

        Raises:
            LLMTransientError: Propagated from the provider for the retry policy
        """
        request = LLMRequest(
            prompt=prompt,
            system=system,
            model_tier=model_tier,
            max_tokens=self.config.limits.max_output_tokens_per_request,
            temperature=temperature,
            response_format="json",
        )

        result = await self.provider.complete(request)
        if result.success and result.value:
            increment_llm_call(result.value.input_tokens, result.value.output_tokens)
        else:
            increment_llm_call()
        return result
