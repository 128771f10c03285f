import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETBOX_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgetbox.db"
    database_url = os.getenv("BUDGETBOX_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGETBOX_TIMEZONE", "Europe/Berlin")
    session_secret = os.getenv(
        "BUDGETBOX_SESSION_SECRET",
        "5c0b7e1d9f2a4e8b91d3a6c47f0e2b8d6a1c9e3f7b2d4a8c0e6f1b3d5a7c9e2f",
    )
    session_max_age_hours = int(os.getenv("BUDGETBOX_SESSION_MAX_AGE_HOURS", "720"))
    log_level = os.getenv("BUDGETBOX_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        log_level=log_level,
    )
