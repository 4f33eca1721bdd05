import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        reports_webhook_url: Optional[str],
        reports_webhook_timeout_secs: float,
        internal_api_key: Optional[str],
        report_timeout_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.reports_webhook_url = reports_webhook_url
        self.reports_webhook_timeout_secs = reports_webhook_timeout_secs
        self.internal_api_key = internal_api_key
        self.report_timeout_minutes = report_timeout_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINCONTROL_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fincontrol.db"
    database_url = os.getenv("FINCONTROL_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINCONTROL_TIMEZONE", "UTC")
    reports_webhook_url = os.getenv("FINCONTROL_REPORTS_WEBHOOK_URL") or None
    reports_webhook_timeout_secs = float(
        os.getenv("FINCONTROL_REPORTS_WEBHOOK_TIMEOUT_SECS", "10")
    )
    internal_api_key = os.getenv("FINCONTROL_INTERNAL_API_KEY") or None
    report_timeout_minutes = int(os.getenv("FINCONTROL_REPORT_TIMEOUT_MINUTES", "30"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        reports_webhook_url=reports_webhook_url,
        reports_webhook_timeout_secs=reports_webhook_timeout_secs,
        internal_api_key=internal_api_key,
        report_timeout_minutes=report_timeout_minutes,
    )
