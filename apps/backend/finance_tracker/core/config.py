from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Finance Tracker Backend"
    ENV: str = "dev"

    # apps/backend/db.sqlite3 as an absolute path so the working directory does not matter
    _default_db_path = Path(__file__).resolve().parents[2] / "db.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    # Calendar day used when comparing "now" against due dates
    TIMEZONE: str = "UTC"
    LOG_LEVEL: str = "INFO"

    # Recurring schedule processing
    RECURRING_BATCH_SIZE: int = 100
    RECURRING_SCHEDULER_ENABLED: bool = False
    RECURRING_SCHEDULER_INTERVAL_SECONDS: int = 3600
    RECURRING_INSERT_RETRIES: int = 1

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="FT_", case_sensitive=False)


settings = Settings()
