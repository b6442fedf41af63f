from __future__ import annotations

import logging
from typing import Callable

from content_engine.db.models import Site, utcnow
from content_engine.db.stores import ItemStore, RunStore, SiteStore
from content_engine.models.errors import InvalidStateError
from content_engine.models.schemas import ItemStatus, RunStatus
from content_engine.services.wordpress_client import WordPressClient

logger = logging.getLogger(__name__)

PUBLISHABLE = frozenset({RunStatus.PUBLISHING, RunStatus.COMPLETED, RunStatus.FAILED})


class Publisher:
    """
    Pushes an assembled run to the site's CMS as a draft.

    The generated-article row is created at most once per run; a retry only
    repeats the CMS push (at-least-once delivery).
    """

    def __init__(
        self,
        runs: RunStore,
        items: ItemStore,
        sites: SiteStore,
        cms_factory: Callable[[Site], WordPressClient] = WordPressClient.for_site,
    ) -> None:
        self.runs = runs
        self.items = items
        self.sites = sites
        self.cms_factory = cms_factory

    def publish(self, run_id: int, site_id: int) -> dict:
        run = self.runs.get(run_id)
        status = RunStatus(run.status)
        if not run.assembled_html:
            raise InvalidStateError(f"run {run_id} has not been assembled yet")
        if status not in PUBLISHABLE:
            raise InvalidStateError(f"run {run_id} is {status.value}, not ready to publish")
        if run.site_id is not None and run.site_id != site_id:
            raise InvalidStateError(f"run {run_id} belongs to site {run.site_id}, not site {site_id}")

        cms = self.cms_factory(self.sites.get(site_id))

        if status == RunStatus.FAILED:
            logger.info("Re-publishing failed run %s", run_id)
            self.runs.transition(run_id, RunStatus.PUBLISHING)

        article_id, created = self.runs.ensure_article(run_id)
        if not created:
            logger.info("Run %s reuses generated article %s", run_id, article_id)

        post = cms.create_draft_post(
            title=run.title or "Generated Article",
            html=run.assembled_html,
            status="draft",
            excerpt=run.seo_description or None,
        )

        run = self.runs.transition(
            run_id,
            RunStatus.COMPLETED,
            remote_post_id=post.remote_id,
            remote_post_url=post.url,
            completed_at=utcnow(),
        )
        used = self.items.mark_used(run.source_item_ids or [])

        return {
            "run_id": run_id,
            "article_id": article_id,
            "article_created": created,
            "remote_post_id": post.remote_id,
            "remote_post_url": post.url,
            "title": run.title,
            "items_used": used,
        }
