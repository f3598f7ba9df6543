"""Application settings."""

import os
from typing import Optional
from pydantic import BaseModel


def _env_int(name: str) -> Optional[int]:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else None


def _env_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else None


def _env_bool(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value in (None, ""):
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Application configuration settings."""

    # LLM Provider settings
    llm_provider: str = "anthropic"  # "openai" or "anthropic"
    llm_model: Optional[str] = None  # Override default model

    # API Keys
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None

    # Persistence
    db_path: str = "data/conversations.db"
    conversation_ttl_minutes: int = 120
    history_limit: int = 10

    # Locale
    locale: str = "id"
    locale_path: Optional[str] = None

    # Pipeline thresholds
    confidence_threshold: float = 0.6
    low_confidence_threshold: float = 0.3

    # Generation
    temperature: float = 0.7
    max_tokens: int = 1000
    intent_max_tokens: int = 200
    intent_temperature: float = 0.3
    llm_timeout_seconds: float = 30.0
    validation_retries: int = 1

    # Usage ceilings
    daily_token_limit: int = 50_000
    monthly_token_limit: int = 1_000_000
    hourly_request_limit: int = 1000
    daily_cost_limit: float = 100.0

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_backoff_factor: float = 2.0

    # Circuit breaker
    circuit_breaker_enabled: bool = True
    circuit_failure_threshold: int = 5
    circuit_reset_timeout: float = 60.0
    circuit_success_threshold: int = 3

    # Response cache
    cache_ttl_hours: int = 24
    cache_max_entries: int = 500
    cache_min_confidence: float = 0.8

    # Logging
    verbose: bool = False

    def __init__(self, **data):
        # Auto-load API keys from environment if not provided
        if "openai_api_key" not in data or data["openai_api_key"] is None:
            data["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

        if "anthropic_api_key" not in data or data["anthropic_api_key"] is None:
            data["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")

        # Operational overrides
        env_overrides = {
            "llm_provider": os.environ.get("LLM_PROVIDER"),
            "llm_model": os.environ.get("LLM_MODEL"),
            "db_path": os.environ.get("PRIMA_DB_PATH"),
            "daily_token_limit": _env_int("DAILY_TOKEN_LIMIT"),
            "monthly_token_limit": _env_int("MONTHLY_TOKEN_LIMIT"),
            "daily_cost_limit": _env_float("DAILY_COST_LIMIT"),
            "hourly_request_limit": _env_int("RATE_LIMIT_REQUESTS_PER_HOUR"),
            "circuit_breaker_enabled": _env_bool("ENABLE_CIRCUIT_BREAKER"),
            "llm_timeout_seconds": _env_float("LLM_TIMEOUT"),
            "conversation_ttl_minutes": _env_int("CONVERSATION_TTL_MINUTES"),
        }
        for key, value in env_overrides.items():
            if data.get(key) is None and value is not None:
                data[key] = value

        super().__init__(**data)

    def get_llm_api_key(self) -> Optional[str]:
        """Get the API key for the configured LLM provider."""
        if self.llm_provider == "openai":
            return self.openai_api_key
        elif self.llm_provider == "anthropic":
            return self.anthropic_api_key
        return None
