"""Settings - environment loading and validation"""
from datetime import datetime
from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = ""

    # Redis (empty -> in-process cache only)
    redis_url: str = ""
    search_cache_ttl: int = 86400  # 24h
    events_list_cache_ttl: int = 30

    # Event processing pipeline
    event_min_date: datetime = datetime(2025, 1, 1)
    completeness_threshold: int = 50
    backfill_min_description: int = 100
    dedup_window_minutes: int = 120
    retention_days: int = 7
    past_event_filter_enabled: bool = False
    past_event_grace_days: int = 7
    tech_filter_enabled: bool = False

    # Streaming search
    stream_max_duration_s: float = 60.0
    stream_heartbeat_s: float = 10.0
    stream_poll_interval_s: float = 2.0
    stream_max_events: int = 100
    stream_job_events_batch: int = 50
    live_scraping_timeout_s: float = 30.0
    search_max_results: int = 50
    events_page_size: int = 20
    default_city: str = "San Francisco"
    default_platforms: List[str] = ["luma", "eventbrite"]

    # Managed crawling service (Apify)
    apify_api_token: str = ""
    apify_base_url: str = "https://api.apify.com/v2"
    apify_eventbrite_actor_id: str = "PmxIAXfwo0gUUNdG4"
    apify_luma_actor_id: str = "r5gMxLV2rOF3J1fxu"
    apify_timeout_s: float = 120.0

    # Direct crawlers
    crawler_timeout: int = 30000
    crawler_user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )
    crawler_max_retries: int = 3
    crawler_http_timeout_s: float = 15.0
    crawler_http_impersonate: str = "chrome110"
    crawler_http_max_clients: int = 20
    luma_api_url: str = "https://api2.luma.com/discover/get-paginated-events"
    luma_latitude: float = 37.7749
    luma_longitude: float = -122.4194

    # Job execution
    job_execution_mode: str = "inline"  # inline | queue
    job_max_attempts: int = 2
    job_backoff_base_s: float = 5.0
    worker_pool_concurrency: int = 2
    queue_poll_interval_s: float = 1.0

    # Rate limits (requests per window)
    rate_limit_search_limit: int = 100
    rate_limit_search_window_s: int = 900
    rate_limit_api_limit: int = 100
    rate_limit_api_window_s: int = 900
    rate_limit_scraping_limit: int = 3
    rate_limit_scraping_window_s: int = 3600

    # Scheduler
    scheduler_enabled: bool = False
    retention_cron_hour: int = 3
    batch_scrape_enabled: bool = False
    batch_scrape_cities: List[str] = ["San Francisco", "Seattle"]
    batch_scrape_interval_hours: int = 6
    batch_scrape_max_events: int = 20
    batch_scrape_query: str = "tech"

    # Batch trigger auth (empty -> open)
    cron_secret: str = ""

    # API
    api_title: str = "Tech Event Discovery"
    api_version: str = "1.0.0"
    api_description: str = "Store-first event search with live crawling over a streaming response."

    # Logging
    log_level: str = "INFO"

    @field_validator("search_cache_ttl", "retention_days", "dedup_window_minutes")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("completeness_threshold")
    @classmethod
    def validate_completeness_threshold(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("completeness_threshold must be within 0..100")
        return v

    @field_validator(
        "stream_max_duration_s",
        "stream_heartbeat_s",
        "stream_poll_interval_s",
        "live_scraping_timeout_s",
    )
    @classmethod
    def validate_stream_timings(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("stream timings must be positive")
        return v

    @field_validator("job_execution_mode")
    @classmethod
    def validate_job_execution_mode(cls, v: str) -> str:
        if v not in ("inline", "queue"):
            raise ValueError("job_execution_mode must be 'inline' or 'queue'")
        return v

    @field_validator("job_max_attempts", "worker_pool_concurrency")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v:
            raise ValueError("database_url must not be empty")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
