from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/jobs.db"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    # Redis change feed (push path)
    redis_url: str = "redis://localhost:6379"
    change_feed_channel: str = "jobs:changes"
    change_feed_enabled: bool = True
    change_feed_reconnect_seconds: float = 5.0
    change_feed_publish_timeout_seconds: float = 2.0
    change_feed_connect_timeout_seconds: float = 5.0

    # Poll path and reaper
    poll_interval_seconds: int = 30
    stale_after_seconds: int = 300  # 5 minutes in processing => presumed hung

    # Job processing
    job_timeout_seconds: float = 120.0
    dispatch_delay_seconds: float = 10.0  # Pause between jobs for API quotas

    # Page extraction
    scrape_max_attempts: int = 2
    scrape_retry_delay_seconds: float = 3.0
    scrape_settle_seconds: float = 5.0
    scrape_navigation_timeout_ms: int = 30000
    min_content_length: int = 500

    # Field refinement
    refine_max_chars: int = 30000
    capture_max_chars: int = 50000

    cors_origins: list[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
