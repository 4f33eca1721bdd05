from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import get_settings


class ReportDispatchError(RuntimeError):
    pass


@dataclass(frozen=True)
class ReportWebhookPayload:
    report_id: int
    user_id: int
    user_email: str
    display_name: str
    report_type: str
    timestamp: str
    filters: dict[str, Optional[str]]
    kpis: dict[str, float] = field(default_factory=dict)

    def to_json(self) -> dict[str, object]:
        data = asdict(self)
        kpis = data.pop("kpis")
        data["summary"] = {"kpis": kpis}
        return data


class ReportWebhookClient:
    """Hands a report request over to the external e-mail automation."""

    def __init__(self) -> None:
        self.settings = get_settings()

    def dispatch(self, payload: ReportWebhookPayload) -> None:
        url = self.settings.reports_webhook_url
        if not url:
            raise ReportDispatchError("Reports webhook URL is not configured")
        _post_json(
            url,
            payload.to_json(),
            timeout=self.settings.reports_webhook_timeout_secs,
        )


def _post_json(url: str, body: dict[str, object], *, timeout: float) -> None:
    data = json.dumps(body, default=_json_default).encode("utf-8")
    req = Request(
        url,
        data=data,
        method="POST",
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )
    try:
        with urlopen(req, timeout=timeout) as resp:
            status = getattr(resp, "status", 200)
    except (URLError, TimeoutError) as exc:
        raise ReportDispatchError(f"Failed to reach reports webhook: {exc}") from exc
    if status >= 400:
        raise ReportDispatchError(f"Reports webhook answered with HTTP {status}")


def _json_default(value: object) -> object:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
