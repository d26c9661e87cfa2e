import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        access_key: str,
        access_token_max_age: int,
        refresh_token_max_age: int,
        reconcile_interval_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.access_key = access_key
        self.access_token_max_age = access_token_max_age
        self.refresh_token_max_age = refresh_token_max_age
        self.reconcile_interval_minutes = reconcile_interval_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "Europe/Berlin")
    access_key = os.getenv(
        "BUDGET_ACCESS_KEY",
        "5c1f3a0e9b7d42f68e2a4c7d1b0f9e3a8d6c5b4a3f2e1d0c9b8a7f6e5d4c3b2a",
    )
    access_token_max_age = int(os.getenv("BUDGET_ACCESS_TOKEN_MAX_AGE", "3600"))
    refresh_token_max_age = int(
        os.getenv("BUDGET_REFRESH_TOKEN_MAX_AGE", str(7 * 24 * 3600))
    )
    reconcile_interval_minutes = int(
        os.getenv("BUDGET_RECONCILE_INTERVAL_MINUTES", "60")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        access_key=access_key,
        access_token_max_age=access_token_max_age,
        refresh_token_max_age=refresh_token_max_age,
        reconcile_interval_minutes=reconcile_interval_minutes,
    )
