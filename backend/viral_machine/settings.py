from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    app_name: str = "viral-machine"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "VIRAL_MACHINE_ENVIRONMENT"))
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "VIRAL_MACHINE_LOG_LEVEL"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/viral_machine",
        validation_alias=AliasChoices("DATABASE_URL", "VIRAL_MACHINE_DATABASE_URL"),
    )
    redis_url: str = Field(default="redis://redis:6379/0", validation_alias=AliasChoices("REDIS_URL", "VIRAL_MACHINE_REDIS_URL"))
    queue_name: str = Field(default="video-processing", validation_alias=AliasChoices("QUEUE_NAME", "VIRAL_MACHINE_QUEUE_NAME"))

    # daily schedule
    videos_per_day: int = Field(default=15, ge=1, validation_alias=AliasChoices("VIDEOS_PER_DAY", "VIRAL_MACHINE_VIDEOS_PER_DAY"))
    base_interval_minutes: int = Field(default=96, validation_alias=AliasChoices("BASE_INTERVAL_MINUTES", "VIRAL_MACHINE_BASE_INTERVAL_MINUTES"))
    schedule_jitter_minutes: int = Field(default=15, ge=0, validation_alias=AliasChoices("SCHEDULE_JITTER_MINUTES", "VIRAL_MACHINE_SCHEDULE_JITTER_MINUTES"))
    default_niches: list[str] = Field(default=["Motivational"], validation_alias=AliasChoices("DEFAULT_NICHES", "VIRAL_MACHINE_DEFAULT_NICHES"))

    # orchestrator / queue policy
    max_concurrent_jobs: int = Field(default=3, ge=1, validation_alias=AliasChoices("MAX_CONCURRENT_JOBS", "VIRAL_MACHINE_MAX_CONCURRENT_JOBS"))
    orchestrator_poll_interval_sec: int = Field(default=10, ge=1, validation_alias=AliasChoices("ORCHESTRATOR_POLL_INTERVAL_SEC", "VIRAL_MACHINE_ORCHESTRATOR_POLL_INTERVAL_SEC"))
    workers_enabled: bool = Field(default=True, validation_alias=AliasChoices("WORKERS_ENABLED", "VIRAL_MACHINE_WORKERS_ENABLED"))
    queue_job_attempts: int = Field(default=1, ge=1, validation_alias=AliasChoices("QUEUE_JOB_ATTEMPTS", "VIRAL_MACHINE_QUEUE_JOB_ATTEMPTS"))
    upload_max_retries: int = Field(default=5, ge=1, validation_alias=AliasChoices("UPLOAD_MAX_RETRIES", "VIRAL_MACHINE_UPLOAD_MAX_RETRIES"))
    retry_backoff_ms: int = Field(default=60000, ge=0, validation_alias=AliasChoices("RETRY_BACKOFF_MS", "VIRAL_MACHINE_RETRY_BACKOFF_MS"))
    circuit_failure_threshold: int = Field(default=5, ge=1, validation_alias=AliasChoices("CIRCUIT_FAILURE_THRESHOLD", "VIRAL_MACHINE_CIRCUIT_FAILURE_THRESHOLD"))
    circuit_reset_timeout_sec: int = Field(default=60, ge=0, validation_alias=AliasChoices("CIRCUIT_RESET_TIMEOUT_SEC", "VIRAL_MACHINE_CIRCUIT_RESET_TIMEOUT_SEC"))

    # periodic jobs
    scheduler_enabled: bool = Field(default=True, validation_alias=AliasChoices("SCHEDULER_ENABLED", "VIRAL_MACHINE_SCHEDULER_ENABLED"))
    schedule_interval_minutes: int = Field(default=60, ge=1, validation_alias=AliasChoices("SCHEDULE_INTERVAL_MINUTES", "VIRAL_MACHINE_SCHEDULE_INTERVAL_MINUTES"))
    watchdog_interval_minutes: int = Field(default=5, ge=1, validation_alias=AliasChoices("WATCHDOG_INTERVAL_MINUTES", "VIRAL_MACHINE_WATCHDOG_INTERVAL_MINUTES"))
    stuck_job_minutes: int = Field(default=90, ge=1, validation_alias=AliasChoices("STUCK_JOB_MINUTES", "VIRAL_MACHINE_STUCK_JOB_MINUTES"))
    output_dir: str = Field(default="/data/output", validation_alias=AliasChoices("OUTPUT_DIR", "VIRAL_MACHINE_OUTPUT_DIR"))
    cleanup_max_age_days: int = Field(default=7, ge=1, validation_alias=AliasChoices("CLEANUP_MAX_AGE_DAYS", "VIRAL_MACHINE_CLEANUP_MAX_AGE_DAYS"))

    # external collaborators
    openai_api_key: str | None = Field(default=None, validation_alias=AliasChoices("OPENAI_API_KEY", "VIRAL_MACHINE_OPENAI_API_KEY"))
    openai_model: str = Field(default="gpt-4o-mini", validation_alias=AliasChoices("OPENAI_MODEL", "VIRAL_MACHINE_OPENAI_MODEL"))
    yt_client_id: str | None = Field(default=None, validation_alias=AliasChoices("YT_CLIENT_ID", "VIRAL_MACHINE_YT_CLIENT_ID"))
    yt_client_secret: str | None = Field(default=None, validation_alias=AliasChoices("YT_CLIENT_SECRET", "VIRAL_MACHINE_YT_CLIENT_SECRET"))
    yt_privacy_status: str = Field(default="public", validation_alias=AliasChoices("YT_PRIVACY_STATUS", "VIRAL_MACHINE_YT_PRIVACY_STATUS"))
    telegram_bot_token: str | None = Field(default=None, validation_alias=AliasChoices("TELEGRAM_BOT_TOKEN", "VIRAL_MACHINE_TELEGRAM_BOT_TOKEN"))
    telegram_chat_id: str | None = Field(default=None, validation_alias=AliasChoices("TELEGRAM_CHAT_ID", "ADMIN_CHAT_ID", "VIRAL_MACHINE_TELEGRAM_CHAT_ID"))
    ffmpeg_bin: str = Field(default="ffmpeg", validation_alias=AliasChoices("FFMPEG_BIN", "VIRAL_MACHINE_FFMPEG_BIN"))
    ffmpeg_timeout_sec: int = Field(default=1800, validation_alias=AliasChoices("FFMPEG_TIMEOUT_SEC", "VIRAL_MACHINE_FFMPEG_TIMEOUT_SEC"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
