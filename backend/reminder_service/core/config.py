"""Application configuration managed via environment variables."""
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Task Reminder Service"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://reminders@localhost:5432/reminders"
    database_pool_timeout_seconds: float = 10.0

    scheduler_enabled: bool = True
    scheduler_timezone: str = "UTC"
    jobs_run_on_startup: bool = False

    notifications_enabled: bool = True
    notifications_provider: Literal["log", "webhook", "expo"] = "log"
    notifications_webhook_url: str | None = None
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"

    reminder_channel: Literal["email", "push"] = "email"
    reminder_interval_minutes: int = 1
    reminder_lookahead_minutes: int = 0
    reminder_worker_limit: int = 5
    reminder_batch_limit: int = 500
    reminder_job_max_instances: int = 1
    notify_timeout_seconds: float = 10.0
    # "suppress" clears reminder_enabled when the owner disabled the channel;
    # "recheck" leaves the reminder armed and re-evaluates it every cycle.
    disabled_channel_policy: Literal["suppress", "recheck"] = "suppress"
    skip_overlapping_cycles: bool = False

    daily_digest_hour: int = 8
    daily_digest_minute: int = 0
    overdue_alert_hour: int = 9
    overdue_alert_minute: int = 0
    weekly_summary_day: int = 0
    weekly_summary_hour: int = 9
    weekly_summary_minute: int = 0

    upcoming_window_days: int = 7
    upcoming_limit: int = 5

    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "task-reminders"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
