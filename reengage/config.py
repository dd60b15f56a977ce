"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_base_url: str = "http://localhost:8000"
    app_secret_key: str
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (locks, heartbeats, alert cooldowns)
    redis_url: str = "redis://localhost:6379/0"

    # Tenant generation provider (key lives on the tenant row)
    openai_model: str = "gpt-4o-mini"

    # Platform-wide fallback provider
    ai_platform_provider: str = "openai"  # openai (any OpenAI-compatible gateway) or anthropic
    ai_platform_api_key: str = ""
    ai_platform_base_url: str = ""
    ai_platform_model: str = "google/gemini-2.5-flash"
    anthropic_model: str = "claude-haiku-4-5-20251001"

    ai_timeout_seconds: int = 15
    ai_max_tokens: int = 200
    ai_temperature: float = 0.7

    # Channels
    evolution_api_url: str = "https://evolution.example.com"
    evolution_api_key: str = ""
    meta_graph_url: str = "https://graph.facebook.com/v21.0"
    channel_timeout_seconds: int = 15

    # Encryption (tenant API keys, channel tokens)
    encryption_key: str = ""

    # Trigger surface
    cron_secret: str = ""

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts
    sentry_dsn: str = ""

    # Scheduler
    workers_enabled: bool = True
    followup_poll_interval_seconds: int = 300
    callback_poll_interval_seconds: int = 60
    followup_max_concurrency: int = 10
    followup_scan_page_size: int = 500
    followup_lock_ttl_seconds: int = 120
    followup_lock_wait_seconds: float = 0.5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
