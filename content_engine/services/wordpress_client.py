from __future__ import annotations

import logging
import re

import requests

from content_engine.db.models import Site
from content_engine.models.errors import ConfigurationError, ExternalServiceError
from content_engine.models.schemas import RemotePost

logger = logging.getLogger(__name__)


def _api_base(site_url: str) -> str:
    host = re.sub(r"^https?://", "", site_url.strip()).rstrip("/")
    return f"https://{host}/wp-json/wp/v2"


class WordPressClient:
    def __init__(self, site_url: str, username: str, app_password: str, timeout: int = 30) -> None:
        self.base_url = _api_base(site_url)
        self.auth = (username, app_password)
        self.timeout = timeout

    @classmethod
    def for_site(cls, site: Site) -> "WordPressClient":
        if not site.wp_username or not site.wp_app_password:
            raise ConfigurationError(f"WordPress credentials not configured for site {site.id}")
        return cls(site.url, site.wp_username, site.wp_app_password)

    def create_draft_post(
        self,
        title: str,
        html: str,
        status: str = "draft",
        excerpt: str | None = None,
    ) -> RemotePost:
        payload = {"title": title, "content": html, "status": status}
        if excerpt:
            payload["excerpt"] = excerpt

        try:
            r = requests.post(f"{self.base_url}/posts", json=payload, auth=self.auth, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExternalServiceError(f"WordPress request failed: {e}") from e

        if not r.ok:
            try:
                message = r.json().get("message") or r.text
            except ValueError:
                message = r.text
            logger.error("WordPress error %s: %s", r.status_code, message[:500])
            raise ExternalServiceError(f"WordPress create post failed ({r.status_code}): {message[:200]}")

        try:
            data = r.json()
        except ValueError as e:
            raise ExternalServiceError("WordPress returned a non-JSON body for a created post") from e
        if not isinstance(data, dict) or data.get("id") is None:
            raise ExternalServiceError(f"WordPress response has no post id: {r.text[:200]}")
        return RemotePost(remote_id=data["id"], url=data.get("link"))
