"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage
    database_url: str = "sqlite:///./newsdesk.db"

    # NYT Top Stories API (upstream article source)
    nyt_api_key: Optional[str] = None
    nyt_base_url: str = "https://api.nytimes.com/svc/topstories/v2"

    # Claude LLM configuration (commentary generation)
    anthropic_api_key: Optional[str] = None
    commentary_model: str = "claude-3-haiku-20240307"

    # Local (in-process) cache tier
    local_cache_max_entries: int = 500
    local_cache_sweep_seconds: int = 60

    # Remote cache tier - unset REDIS_URL disables it
    redis_url: Optional[str] = None
    remote_cache_connect_timeout: float = 1.0
    remote_cache_command_timeout: float = 0.8
    remote_cache_retry_seconds: int = 30
    remote_cache_namespace: str = "newsdesk:"

    # SWR policy defaults per content class (seconds)
    cache_ttl_articles: int = 300
    cache_ttl_search: int = 600
    cache_ttl_commentary: int = 1800
    cache_ttl_static: int = 3600
    cache_ttl_nyt_data: int = 900
    cache_stale_threshold_seconds: int = 60
    cache_coalesce_misses: bool = True
    cache_revalidation_workers: int = 4

    # Text-generation API budget
    ai_tokens_per_minute: int = 5500  # Stay under the 6000/min provider quota
    ai_queue_timeout_seconds: float = 30.0
    ai_healthy_floor: int = 1000
    ai_drain_interval_seconds: float = 5.0

    # Background commentary worker
    commentary_worker_enabled: bool = True
    commentary_daily_quota: int = 100
    commentary_tick_seconds: float = 30.0
    commentary_populate_seconds: float = 600.0

    # Listing pre-fetch (keeps popular pages warm in the cache)
    prefetch_enabled: bool = True
    prefetch_home_seconds: float = 900.0  # 15 minutes
    prefetch_categories_seconds: float = 1800.0  # 30 minutes
    prefetch_categories: list[str] = ["technology", "business", "politics", "entertainment"]
    prefetch_limit: int = 20

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
