import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        environment: str,
        log_level: str,
        auth_secret: str,
        auth_max_age_hours: int,
        pool_size: int,
        parallel_history: bool,
    ) -> None:
        self.database_url = database_url
        self.environment = environment
        self.log_level = log_level
        self.auth_secret = auth_secret
        self.auth_max_age_hours = auth_max_age_hours
        self.pool_size = pool_size
        self.parallel_history = parallel_history

    @property
    def expose_errors(self) -> bool:
        return self.environment == "development"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    environment = os.getenv("FINANCE_ENV", "production").lower()
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    auth_secret = os.getenv(
        "FINANCE_AUTH_SECRET",
        "5f3c1e0b9a7d4c2e8b6f0a1d3e5c7b9f2a4c6e8d0b1f3a5c7e9d1b3f5a7c9e0d",
    )
    auth_max_age_hours = int(os.getenv("FINANCE_AUTH_MAX_AGE_HOURS", "24"))
    pool_size = int(os.getenv("FINANCE_POOL_SIZE", "5"))
    parallel_history = _env_flag("FINANCE_PARALLEL_HISTORY", "1")
    return Settings(
        database_url=database_url,
        environment=environment,
        log_level=log_level,
        auth_secret=auth_secret,
        auth_max_age_hours=auth_max_age_hours,
        pool_size=pool_size,
        parallel_history=parallel_history,
    )
