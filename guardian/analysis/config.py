"""
Compliance classifier configuration.

Without an API key no classifier is built and every changed revision is
recorded as UNCERTAIN ("classifier not configured").
"""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnalysisConfig(BaseSettings):
    """
    Configuration for the LLM compliance classifier.

    All settings can be overridden via environment variables prefixed with ANALYSIS_.

    Example:
        ANALYSIS_OPENAI_API_KEY=sk-...
        ANALYSIS_MODEL=gpt-4o
        ANALYSIS_PII_REDACTION_ENABLED=false
    """

    model_config = SettingsConfigDict(
        env_prefix="ANALYSIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    openai_api_key: SecretStr | None = Field(
        default=None,
        description="OpenAI API key. Analysis is disabled when unset.",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints.",
    )
    model: str = Field(default="gpt-4o")
    max_tokens: int = Field(default=4096, ge=256, le=32_768)
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    request_timeout: float = Field(default=60.0, gt=0.0, le=600.0)

    pii_redaction_enabled: bool = Field(
        default=True,
        description="Mask names, emails, phone and id numbers before sending text.",
    )
    max_text_chars: int = Field(
        default=20_000,
        ge=1_000,
        description="Content longer than this is truncated before analysis.",
    )
    guidelines: str = Field(
        default="",
        description="Free-text compliance guidance appended to the system prompt.",
    )

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_timeout: float = Field(default=60.0, gt=0.0)

    @property
    def is_configured(self) -> bool:
        return self.openai_api_key is not None
