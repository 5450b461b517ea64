# backend/slotrelease/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # project root


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/slotrelease.db"
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"

    # Scheduler overrides (see services/slots/config.py)
    generation_days: int = 14
    max_generation_days: int = 90
    promotion_max_retries: int = 3
    promotion_backoff_seconds: float = 0.05
    promotion_backoff_max_seconds: float = 1.0
    pool_ttl_seconds: int = 86400
    reconcile_interval_seconds: int = 60

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # relative sqlite path -> absolute, anchored at the project root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
