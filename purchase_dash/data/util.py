from __future__ import annotations

from typing import Literal

from purchase_dash.config import get_config

from .backends.http_backend import HttpDashboardApi
from .interface import DashboardApi


def get_dashboard_api(kind: Literal["http"] = "http") -> DashboardApi:
    if kind == "http":
        # Talks to the configured REST backend
        config = get_config()
        return HttpDashboardApi(
            base_url=config.api_base_url,
            timeout=config.request_timeout_seconds,
        )
    raise ValueError(f"Unknown dashboard api kind: {kind}")
