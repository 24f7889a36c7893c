"""Configuration management.

Uses pydantic-settings for type-safe configuration from environment variables.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_config_dir() -> Path:
    """Find the config directory by walking up from the package location.

    Looks for a 'config/' directory at the project root.
    Falls back to relative Path("config") if not found.
    """
    # src/calcfields/core/config.py -> core/ -> calcfields/ -> src/ -> root/
    package_dir = Path(__file__).resolve().parent.parent.parent.parent
    candidate = package_dir / "config"
    if candidate.is_dir():
        return candidate

    return Path("config")


class Settings(BaseSettings):
    """Application settings.

    All settings can be overridden via environment variables.
    Prefix: CALCFIELDS_
    """

    model_config = SettingsConfigDict(
        env_prefix="CALCFIELDS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars (like ANTHROPIC_API_KEY)
    )

    # Storage
    output_dir: Path = Field(
        default=Path("./calcfields_output"),
        description="Directory holding metadata.db (field store) and data.duckdb (engine)",
    )
    duckdb_memory_limit: str = Field(default="2GB", description="Memory limit for DuckDB")

    # Configuration paths
    config_path: Path = Field(
        default_factory=_find_config_dir,
        description="Path to configuration files (llm.yaml, prompts, catalogs, tools)",
    )

    # External call policy
    generator_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single expression generation call",
    )
    probe_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single zero-row engine probe",
    )
    max_transient_retries: int = Field(
        default=3,
        description="Retries for timeouts and rate limits; rejections are never retried",
    )
    retry_base_delay_seconds: float = Field(
        default=0.5,
        description="Base delay for exponential backoff between retries",
    )

    # Requests
    max_request_length: int = Field(
        default=2000,
        description="Maximum length of a natural-language field request",
    )

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # 'json' or 'console'


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
