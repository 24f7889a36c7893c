"""Anthropic Claude provider implementation."""

import os
from typing import cast

import anthropic
from anthropic.types import MessageParam
from pydantic import BaseModel

from calcfields.core.models.base import Result
from calcfields.llm.providers.base import (
    LLMProvider,
    LLMRequest,
    LLMResponse,
    LLMTransientError,
)

JSON_ONLY_INSTRUCTION = (
    "Respond with valid JSON only. "
    "Do not use markdown code blocks or any other formatting. "
    "Your entire response should be parseable as JSON."
)


class AnthropicConfig(BaseModel):
    """Configuration for Anthropic provider."""

    api_key_env: str
    default_model: str
    models: dict[str, str]


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider implementation.

    Uses the Anthropic async client. Rate limits, timeouts, connection
    failures and server errors raise LLMTransientError; every other API
    error is a failed Result.
    """

    def __init__(self, config: AnthropicConfig):
        """Initialize Anthropic provider.

        Args:
            config: Provider configuration

        Raises:
            ValueError: If API key environment variable not set
        """
        self.config = config

        api_key = os.getenv(config.api_key_env)
        if not api_key:
            raise ValueError(
                f"Missing environment variable: {config.api_key_env}. "
                f"Set your Anthropic API key in .env file."
            )

        # Retries are handled by the pipeline's retry policy
        self.client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)

    async def complete(self, request: LLMRequest) -> Result[LLMResponse]:
        """Send completion request to Claude API."""
        model = self.get_model_for_tier(request.model_tier)
        messages: list[MessageParam] = [
            cast(MessageParam, {"role": "user", "content": request.prompt})
        ]

        # Claude has no native JSON mode, so it goes into the system prompt
        system_parts = [p for p in (request.system,) if p]
        if request.response_format == "json":
            system_parts.append(JSON_ONLY_INSTRUCTION)

        try:
            if system_parts:
                response = await self.client.messages.create(
                    model=model,
                    max_tokens=request.max_tokens,
                    temperature=request.temperature,
                    messages=messages,
                    system="\n\n".join(system_parts),
                )
            else:
                response = await self.client.messages.create(
                    model=model,
                    max_tokens=request.max_tokens,
                    temperature=request.temperature,
                    messages=messages,
                )
        except anthropic.RateLimitError as e:
            raise LLMTransientError(f"Anthropic rate limit: {e}", rate_limited=True) from e
        except (
            anthropic.APITimeoutError,
            anthropic.APIConnectionError,
            anthropic.InternalServerError,
        ) as e:
            raise LLMTransientError(f"Anthropic unavailable: {e}") from e
        except anthropic.APIError as e:
            return Result.fail(f"Anthropic API error: {e}")

        content = "".join(block.text for block in response.content if block.type == "text")
        if not content:
            return Result.fail(
                f"No text content in response. Content blocks: {[b.type for b in response.content]}"
            )

        return Result.ok(
            LLMResponse(
                content=content,
                model=response.model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
        )

    def get_model_for_tier(self, tier: str) -> str:
        """Get Claude model name for tier ('fast' or 'balanced')."""
        return self.config.models.get(tier, self.config.default_model)
