"""
Item-level batch stages: ingest, score, extract, verify, embed, cluster.

Every batch stage issues one external call per item, one item at a time,
and never lets a single item's failure escape: failures are logged and
recorded in the returned BatchResult, and the item keeps its status.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable

from content_engine.config.settings import Settings
from content_engine.db.models import utcnow
from content_engine.db.stores import ClusterStore, FeedStore, ItemStore
from content_engine.models.errors import ContentEngineError
from content_engine.models.schemas import (
    BatchResult,
    ExtractedFact,
    FeedEntry,
    ItemStatus,
    VerificationResult,
)
from content_engine.services.clustering import embed_text, label_cluster, plan_clusters
from content_engine.services.events import EngineEvent, EventBus
from content_engine.services.extractor import FactExtractor
from content_engine.services.fact_checker import FactChecker
from content_engine.services.feed_ingest import fetch_and_parse
from content_engine.services.ollama_client import OllamaClient
from content_engine.services.scorer import Scorer
from content_engine.services.serp_client import SerpClient
from content_engine.tools.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class ItemStages:
    def __init__(
        self,
        settings: Settings,
        feeds: FeedStore,
        items: ItemStore,
        clusters: ClusterStore,
        events: EventBus,
        ai: OllamaClient,
        search_factory: Callable[[], SerpClient] | None = None,
        fetch: Callable[[str], list[FeedEntry]] = fetch_and_parse,
    ) -> None:
        self.settings = settings
        self.feeds = feeds
        self.items = items
        self.clusters = clusters
        self.events = events
        self.ai = ai
        self.search_factory = search_factory or (lambda: SerpClient(settings))
        self.fetch = fetch

        self.scorer = Scorer(ai, max_content_chars=settings.score_content_chars)
        self.extractor = FactExtractor(ai, max_content_chars=settings.extract_content_chars)

    # ---------------------------
    # Feed ingestion
    # ---------------------------

    def poll_feed(self, feed_id: int) -> dict:
        feed = self.feeds.get(feed_id)
        entries = self.fetch(feed.url)

        new_items = 0
        for entry in entries:
            if self.items.insert_if_new(feed.id, entry):
                new_items += 1

        self.feeds.mark_polled(feed.id, len(entries))
        logger.info("Polled feed %s (%s): %d entries, %d new", feed.id, feed.name, len(entries), new_items)

        self.events.emit(
            EngineEvent.FEED_POLLED,
            {"feed_id": feed.id, "feed_name": feed.name, "total_items": len(entries), "new_items": new_items},
            site_id=feed.site_id,
        )
        return {"feed_id": feed.id, "total_items": len(entries), "new_items": new_items}

    def poll_all_feeds(self, site_id: int | None = None, token: CancellationToken | None = None) -> dict:
        feeds = self.feeds.list_enabled(site_id)
        total_new = 0
        failures: list[dict] = []

        for feed in feeds:
            if token is not None:
                token.raise_if_cancelled("next feed")
            try:
                total_new += self.poll_feed(feed.id)["new_items"]
            except ContentEngineError as e:
                logger.warning("Feed %s poll failed: %s", feed.id, e)
                failures.append({"feed_id": feed.id, "error": str(e)})

        return {
            "feeds_polled": len(feeds) - len(failures),
            "total_new_items": total_new,
            "failures": failures,
        }

    # ---------------------------
    # Scoring
    # ---------------------------

    def score_item(self, item_id: int) -> dict:
        item = self.items.get(item_id)
        score = self.scorer.score(item.title, item.content)
        self.items.save_score(item.id, score)
        return {"item_id": item.id, **score.model_dump()}

    def score_batch(
        self,
        limit: int | None = None,
        site_id: int | None = None,
        token: CancellationToken | None = None,
    ) -> BatchResult:
        batch = self.items.list_by_status(
            ItemStatus.INGESTED, limit=limit or self.settings.score_batch_limit, site_id=site_id
        )
        result = BatchResult(stage="score")

        for item in batch:
            if token is not None:
                token.raise_if_cancelled("next item")
            try:
                score = self.scorer.score(item.title, item.content)
                self.items.save_score(item.id, score)
                result.record(item.id)
            except ContentEngineError as e:
                logger.warning("Scoring skipped item %s: %s", item.id, e)
                result.record(item.id, e)

        self.events.emit(EngineEvent.ITEMS_SCORED, result.as_dict("scored"), site_id=site_id)
        return result

    # ---------------------------
    # Fact extraction
    # ---------------------------

    def extract_facts(
        self,
        item_ids: Iterable[int] | None = None,
        limit: int | None = None,
        site_id: int | None = None,
        token: CancellationToken | None = None,
    ) -> BatchResult:
        if item_ids is not None:
            batch = self.items.get_many(item_ids)
        else:
            batch = self.items.list_by_status(
                ItemStatus.SCORED,
                limit=limit or self.settings.extract_batch_limit,
                site_id=site_id,
                best_first=True,
            )
        result = BatchResult(stage="extract")

        for item in batch:
            if token is not None:
                token.raise_if_cancelled("next item")
            try:
                extraction = self.extractor.extract(item.title, item.content)
                self.items.save_extraction(item.id, extraction)
                result.record(item.id)
            except ContentEngineError as e:
                logger.warning("Extraction skipped item %s: %s", item.id, e)
                result.record(item.id, e)

        self.events.emit(EngineEvent.FACTS_EXTRACTED, result.as_dict("extracted"), site_id=site_id)
        return result

    # ---------------------------
    # Fact verification
    # ---------------------------

    def fact_check(
        self,
        item_ids: Iterable[int] | None = None,
        limit: int | None = None,
        site_id: int | None = None,
        token: CancellationToken | None = None,
    ) -> BatchResult:
        s = self.settings
        # missing credentials fail here, before any item is touched
        checker = FactChecker(
            self.search_factory(),
            max_facts=s.verify_max_facts,
            query_max_chars=s.verify_query_max_chars,
            evidence_min_chars=s.verify_evidence_min_chars,
            confidence_boost=s.verify_confidence_boost,
        )
        batch = self.items.list_unverified(
            limit=limit or s.verify_batch_limit, item_ids=item_ids, site_id=site_id
        )
        result = BatchResult(stage="fact_check")

        for item in batch:
            if token is not None:
                token.raise_if_cancelled("next item")
            try:
                facts = [ExtractedFact.model_validate(f) for f in item.extracted_facts or []]
                verification = checker.check(facts) if facts else VerificationResult(checked_at=utcnow())
                self.items.save_verification(item.id, verification)
                result.record(item.id)
            except ContentEngineError as e:
                logger.warning("Fact check skipped item %s: %s", item.id, e)
                result.record(item.id, e)

        self.events.emit(EngineEvent.FACTS_CHECKED, result.as_dict("checked"), site_id=site_id)
        return result

    # ---------------------------
    # Embedding + clustering
    # ---------------------------

    def embed_items(
        self,
        limit: int | None = None,
        site_id: int | None = None,
        token: CancellationToken | None = None,
    ) -> BatchResult:
        batch = self.items.list_missing_embedding(
            limit=limit or self.settings.embed_batch_limit, site_id=site_id
        )
        result = BatchResult(stage="embed")

        for item in batch:
            if token is not None:
                token.raise_if_cancelled("next item")
            try:
                vec = self.ai.embed(embed_text(item, self.settings.embed_content_chars))
                self.items.save_embedding(item.id, vec)
                result.record(item.id)
            except ContentEngineError as e:
                logger.warning("Embedding skipped item %s: %s", item.id, e)
                result.record(item.id, e)

        return result

    def _label(self, cluster_id: int, titles: list[str]) -> str | None:
        """Label one cluster; returns the error message on failure."""
        try:
            label = label_cluster(self.ai, titles, sample=self.settings.cluster_label_sample)
        except ContentEngineError as e:
            logger.warning("Cluster %s left unlabeled: %s", cluster_id, e)
            return str(e)
        self.clusters.set_label(cluster_id, label)
        return None

    def cluster_items(self, site_id: int | None = None) -> dict:
        s = self.settings
        candidates = self.items.list_cluster_candidates(site_id)
        titles = {item.id: item.title for item, _ in candidates}

        groups = plan_clusters(
            [(item.id, vec) for item, vec in candidates],
            threshold=s.cluster_sim_threshold,
            cap=s.cluster_candidate_cap,
        )

        created: list[dict] = []
        failures: list[dict] = []
        labeled = 0

        for group in groups:
            try:
                cluster = self.clusters.create_with_members(group, site_id=site_id)
            except ContentEngineError as e:
                # a concurrent pass clustered one of the members first
                logger.warning("Cluster of %s not formed: %s", group, e)
                failures.append({"item_ids": group, "error": str(e)})
                continue

            error = self._label(cluster.id, [titles[i] for i in group])
            if error is None:
                labeled += 1
                cluster = self.clusters.get(cluster.id)
            else:
                failures.append({"cluster_id": cluster.id, "error": error})

            created.append({"id": cluster.id, "label": cluster.label, "item_count": cluster.item_count})

        self.events.emit(
            EngineEvent.ITEMS_CLUSTERED,
            {"clusters_created": len(created), "labeled": labeled},
            site_id=site_id,
        )
        return {
            "clusters_created": len(created),
            "labeled": labeled,
            "clusters": created,
            "failures": failures,
        }

    def label_clusters(self, site_id: int | None = None) -> dict:
        pending = self.clusters.list_all(site_id=site_id, unlabeled_only=True)
        failures: list[dict] = []
        for cluster in pending:
            titles = [m.title for m in self.clusters.members(cluster.id)]
            error = self._label(cluster.id, titles)
            if error is not None:
                failures.append({"cluster_id": cluster.id, "error": error})
        return {"labeled": len(pending) - len(failures), "total": len(pending), "failures": failures}
