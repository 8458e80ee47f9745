"""
Configuration management for the Dental Vitals platform
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Dental Vitals Practice Intelligence"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./dental_vitals.db"

    # LLM Configuration
    # llm_provider: "anthropic" or "openai" (any OpenAI-compatible chat completions endpoint)
    llm_provider: str = "anthropic"
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_model: str = "claude-sonnet-4-20250514"
    openai_model: str = "gpt-4o-mini"
    enable_llm_insights: bool = True
    llm_max_tokens: int = 2000
    llm_temperature: float = 0.3
    llm_timeout_seconds: float = 30.0

    # Scoring
    neutral_source_score: int = 50
    default_previous_score: int = 80

    # Insights
    insights_lookback_days: int = 30

    # Scheduler (monthly insights for active clients)
    enable_scheduler: bool = True
    monthly_insights_day: int = 1
    monthly_insights_hour: int = 6
    scheduler_timezone: str = "America/New_York"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
