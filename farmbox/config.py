"""Service configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://farmbox:farmbox@db:5432/farmbox"
    TELEGRAM_BOT_TOKEN: str = ""
    SCHEDULER_TOKEN: str = ""
    LOG_LEVEL: str = "INFO"

    # Subscription rules
    MAX_PAUSES_PER_YEAR: int = 4
    MAX_SKIPS_PER_MONTH: int = 2
    MAX_PAUSE_DAYS: int = 28
    SKIP_NOTICE_HOURS: int = 48

    # Trial boxes
    TRIAL_DISCOUNT_PERCENT: int = 25
    TRIAL_VALIDITY_DAYS: int = 7

    # Curation
    DEFAULT_MAX_FARMS_PER_BOX: int = 3

    # Reminders
    REMINDER_DAYS_AHEAD: int = 2

    class Config:
        env_file = ".env"
        extra = "allow"


settings = Settings()
