from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./funnelbot.db"
    debug: bool = False
    log_level: str = "INFO"
    cors_allow_origins: str = "*"

    # optimistic retries for conversation state writes
    state_cas_max_attempts: int = 5

    schedule_bucket_seconds: int = 300
    scheduled_worker_enabled: bool = True
    scheduled_worker_interval_seconds: float = 5.0
    scheduled_process_limit: int = 20
    scheduled_max_attempts: int = 5
    scheduled_retry_backoff_seconds: float = 30.0
    scheduled_stale_processing_seconds: int = 120

    transport_timeout_seconds: float = 15.0

    alert_bot_token: str | None = None
    alert_chat_id: str | None = None

    expiring_soon_days: int = 7

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
