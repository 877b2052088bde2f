# [Shared: Configuration]
"""
Application configuration via environment variables.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment / .env file."""

    # Primary model (Layers 1-4)
    primary_model_id: str = "gemini-2.5-flash"
    primary_api_key: str = ""
    primary_base_url: str = ""  # OpenAI-compatible endpoint

    # Challenger model (Layer 3 second opinion, optional)
    challenger_enabled: bool = True
    challenger_model_id: str = "gpt-4o-mini"
    challenger_api_key: str = ""
    challenger_base_url: str = ""

    # Model client
    model_timeout_seconds: float = 60.0
    model_max_retries: int = 2
    model_retry_base_delay: float = 2.0  # seconds, doubles on each retry
    model_max_tokens: int = 4096

    # Layer temperatures
    triage_temperature: float = 0.1
    specialty_temperature: float = 0.3
    fusion_temperature: float = 0.2
    explainability_temperature: float = 0.1

    # Consensus
    consensus_top_n: int = 5
    consensus_max_rank: int = 10
    consensus_confidence_ceiling: int = 99
    consensus_strong_max_gap: int = 0
    consensus_moderate_max_gap: int = 1
    consensus_weak_max_gap: int = 2

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "protected_namespaces": ("settings_",),
    }

    @property
    def challenger_configured(self) -> bool:
        """True when the challenger is switched on and has an endpoint to call."""
        return self.challenger_enabled and bool(self.challenger_base_url)


settings = Settings()
