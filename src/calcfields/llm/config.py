"""LLM configuration models and loader.

Loads configuration from config/llm.yaml and provides typed access
to all LLM settings: providers, features, limits.
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    """Configuration for a single LLM provider."""

    api_key_env: str
    default_model: str
    models: dict[str, str]


class FeatureConfig(BaseModel):
    """Configuration for an LLM feature."""

    enabled: bool = True
    model_tier: str = "balanced"
    prompt_file: str | None = None
    description: str = ""


class LLMFeatures(BaseModel):
    """All LLM features configuration."""

    calculated_field: FeatureConfig = Field(
        default_factory=lambda: FeatureConfig(prompt_file="calculated_field")
    )


class LLMLimits(BaseModel):
    """Cost and size limits."""

    max_output_tokens_per_request: int = 1000
    max_columns_in_prompt: int = 200


class LLMConfig(BaseModel):
    """Complete LLM configuration from llm.yaml."""

    version: str = "1.0.0"
    providers: dict[str, ProviderConfig]
    active_provider: str
    features: LLMFeatures = Field(default_factory=LLMFeatures)
    limits: LLMLimits = Field(default_factory=LLMLimits)


def load_llm_config(config_path: Path | None = None) -> LLMConfig:
    """Load LLM configuration from YAML.

    Args:
        config_path: Path to llm.yaml. If None, uses config/llm.yaml

    Returns:
        Parsed LLM configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        pydantic.ValidationError: If config doesn't match schema
    """
    if config_path is None:
        config_path = Path("config/llm.yaml")

    if not config_path.exists():
        raise FileNotFoundError(
            f"LLM config not found: {config_path}. Create config/llm.yaml from the template."
        )

    with open(config_path) as f:
        data = yaml.safe_load(f)

    return LLMConfig(**data)
