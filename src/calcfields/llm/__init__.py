"""LLM module - natural-language to calculated-field generation.

Example usage:

    from calcfields.llm import LLMService, load_llm_config

    config = load_llm_config(Path("config/llm.yaml"))
    service = LLMService(config, prompts_dir=Path("config/prompts"))

    outcome = await service.generator.generate(
        scope_id="credit",
        request_text="multiply LTM EBITDA by Total Leverage",
        columns=catalog.get_columns("credit"),
    )
"""

from pathlib import Path

from calcfields.core.config import Settings
from calcfields.llm.config import LLMConfig, load_llm_config
from calcfields.llm.features.expression import (
    ExpressionGenerator,
    GenerationError,
    GenerationErrorKind,
)
from calcfields.llm.prompts import PromptRenderer
from calcfields.llm.providers import LLMProvider, create_provider

__all__ = [
    "LLMService",
    "LLMConfig",
    "load_llm_config",
    "ExpressionGenerator",
    "GenerationError",
    "GenerationErrorKind",
]


class LLMService:
    """Service facade wiring provider, prompts and features from config."""

    def __init__(
        self,
        config: LLMConfig,
        prompts_dir: Path | None = None,
        settings: Settings | None = None,
        provider: LLMProvider | None = None,
    ):
        """Initialize LLM service.

        Args:
            config: LLM configuration
            prompts_dir: Prompt template directory (default: config/prompts)
            settings: Timeout and retry policy
            provider: Provider override; built from config when None

        Raises:
            ValueError: If provider configuration is invalid
        """
        self.config = config

        if provider is None:
            if config.active_provider not in config.providers:
                raise ValueError(
                    f"Active provider '{config.active_provider}' not found in config. "
                    f"Available: {list(config.providers.keys())}"
                )
            provider_config = config.providers[config.active_provider]
            provider = create_provider(config.active_provider, provider_config.model_dump())

        self.provider = provider
        self.renderer = PromptRenderer(prompts_dir)
        self.generator = ExpressionGenerator(config, provider, self.renderer, settings)
