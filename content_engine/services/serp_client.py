from __future__ import annotations

import requests

from content_engine.config.settings import Settings, get_settings
from content_engine.models.errors import ConfigurationError, ExternalServiceError
from content_engine.models.schemas import SerpResult

DATAFORSEO_BASE = "https://api.dataforseo.com/v3"
SERP_LIVE_PATH = "/serp/google/organic/live/advanced"


class SerpClient:
    """
    DataForSEO live SERP lookups. One HTTP call per query.
    """

    def __init__(self, settings: Settings | None = None, timeout: int = 60) -> None:
        s = settings or get_settings()
        if not s.has_dataforseo:
            raise ConfigurationError("DataForSEO credentials not configured (DATAFORSEO_LOGIN, DATAFORSEO_PASSWORD)")
        self.auth = (s.dataforseo_login, s.dataforseo_password)
        self.location_code = s.dataforseo_location_code
        self.language_code = s.dataforseo_language_code
        self.timeout = timeout

    def search(self, query: str, depth: int = 10) -> list[SerpResult]:
        task = {
            "keyword": query,
            "location_code": self.location_code,
            "language_code": self.language_code,
            "device": "desktop",
            "depth": depth,
        }
        try:
            r = requests.post(
                f"{DATAFORSEO_BASE}{SERP_LIVE_PATH}",
                json=[task],
                auth=self.auth,
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise ExternalServiceError(f"SERP request failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError("SERP response was not JSON") from e

        if data.get("status_code") not in (None, 20000):
            raise ExternalServiceError(f"SERP API error {data.get('status_code')}: {data.get('status_message')}")

        out: list[SerpResult] = []
        for t in data.get("tasks") or []:
            if t.get("status_code") != 20000 or not t.get("result"):
                continue
            for item in t["result"][0].get("items") or []:
                if item.get("type", "organic") != "organic":
                    continue
                out.append(
                    SerpResult(
                        title=item.get("title") or "",
                        description=item.get("description") or "",
                    )
                )
        return out
