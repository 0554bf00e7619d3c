"""
Centralized configuration using Pydantic Settings.

All environment variables are loaded and validated here.
"""

from enum import Enum
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class LLMProtocol(str, Enum):
    """Wire protocol used to talk to the LLM provider."""

    CHAT_COMPLETIONS = "chat_completions"
    RESPONSES = "responses"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OpenAI
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_max_tokens: int = 500
    llm_protocol: LLMProtocol | None = None  # Unset: inferred from the model name
    system_prompt: str | None = None
    use_structured_output: bool = False
    llm_temperature: float = 0.7

    # LLM retry policy
    llm_max_attempts: int = 3
    llm_base_delay_seconds: float = 1.0
    llm_default_retry_after_seconds: float = 60.0
    llm_timeout_seconds: float = 60.0

    # Outbound email (Resend)
    enable_email_sending: bool = False
    email_test_mode: bool = False
    resend_api_key: str = ""
    resend_base_url: str = "https://api.resend.com"
    resend_from_email: str = "amara@example.com"
    resend_from_name: str = "Amara QUO"
    email_allowed_domains: Annotated[list[str], NoDecode] = []
    email_blocked_domains: Annotated[list[str], NoDecode] = ["noreply", "no-reply", "donotreply"]

    # Key-value store
    redis_url: str = "redis://localhost:6379/0"
    store_key_prefix: str = "gmail"

    # Polling and queue sweeps
    scheduler_enabled: bool = False
    poll_interval_seconds: int = 30
    auto_process: bool = False  # Run a queue sweep after each poll
    record_delay_seconds: float = 1.0  # Pause between records within a sweep

    # Branding
    brand_name: str = "AMARA QUO"
    brand_footer: str = "Automated response from Amara QUO Freight Intelligence"

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True  # False for colored dev output

    @field_validator("email_allowed_domains", "email_blocked_domains", mode="before")
    @classmethod
    def _split_domains(cls, value):
        """Accept comma-separated strings as well as lists."""
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [item.strip().lower() for item in value if item and item.strip()]

    @property
    def llm_configured(self) -> bool:
        """Whether an OpenAI API key is available."""
        return bool(self.openai_api_key)

    @property
    def delivery_configured(self) -> bool:
        """Whether outbound email can actually be attempted."""
        return self.enable_email_sending and (self.email_test_mode or bool(self.resend_api_key))


# Global settings instance
settings = Settings()
