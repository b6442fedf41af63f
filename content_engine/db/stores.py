"""
Repository layer over the SQLAlchemy models.

Every pipeline stage reads and writes records through these stores; the
status-gated queries (`status = X`) live here so that stages never reprocess
rows another batch already advanced. Stores open one short session per call
and hand back detached rows.
"""
from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from content_engine.db.models import (
    Cluster, Embedding, EventRecord, Feed, GeneratedArticle, Item, PipelineRun, Site, utcnow
)
from content_engine.models.errors import InvalidStateError, NotFoundError
from content_engine.models.schemas import (
    ClusterLabel,
    ExtractionResult,
    FeedEntry,
    ItemStatus,
    RUN_TRANSITIONS,
    RunStatus,
    ScoreResult,
    TERMINAL_RUN_STATUSES,
    VerificationResult,
    item_status_can_move,
)

logger = logging.getLogger(__name__)


def _pack(vec: Sequence[float]) -> bytes:
    return np.asarray(vec, dtype="float32").tobytes()


def _unpack(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype="float32").tolist()


class _Store:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory


def _get_or_raise(session: Session, model, key: int, kind: str):
    row = session.get(model, key)
    if row is None:
        raise NotFoundError(kind, key)
    return row


class SiteStore(_Store):
    def add(
        self,
        name: str,
        url: str,
        wp_username: str | None = None,
        wp_app_password: str | None = None,
    ) -> Site:
        with self._sessions() as session:
            site = Site(name=name, url=url, wp_username=wp_username, wp_app_password=wp_app_password)
            session.add(site)
            session.commit()
            return site

    def get(self, site_id: int) -> Site:
        with self._sessions() as session:
            return _get_or_raise(session, Site, site_id, "Site")


class FeedStore(_Store):
    def add(
        self,
        url: str,
        name: str | None = None,
        site_id: int | None = None,
        poll_interval_minutes: int = 60,
        enabled: bool = True,
    ) -> Feed:
        with self._sessions() as session:
            feed = Feed(
                url=url,
                name=name or url,
                site_id=site_id,
                poll_interval_minutes=poll_interval_minutes,
                enabled=enabled,
            )
            session.add(feed)
            session.commit()
            return feed

    def get(self, feed_id: int) -> Feed:
        with self._sessions() as session:
            return _get_or_raise(session, Feed, feed_id, "Feed")

    def list_enabled(self, site_id: int | None = None) -> list[Feed]:
        stmt = select(Feed).where(Feed.enabled.is_(True)).order_by(Feed.id)
        if site_id is not None:
            stmt = stmt.where(Feed.site_id == site_id)
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def mark_polled(self, feed_id: int, item_count: int) -> None:
        with self._sessions() as session:
            feed = _get_or_raise(session, Feed, feed_id, "Feed")
            feed.last_polled_at = utcnow()
            feed.last_item_count = item_count
            session.commit()


def _for_site(stmt, site_id: int | None):
    if site_id is None:
        return stmt
    return stmt.join(Feed, Feed.id == Item.feed_id).where(Feed.site_id == site_id)


def _advance(item: Item, target: ItemStatus) -> None:
    current = ItemStatus(item.status)
    if current == target:
        return
    if not item_status_can_move(current, target):
        raise InvalidStateError(
            f"item {item.id} cannot move from {current.value} to {target.value}"
        )
    item.status = target.value


class ItemStore(_Store):
    def insert_if_new(self, feed_id: int, entry: FeedEntry) -> bool:
        """Insert one feed entry; an existing (feed_id, guid) is a silent no-op."""
        with self._sessions() as session:
            session.add(
                Item(
                    feed_id=feed_id,
                    guid=entry.guid,
                    title=entry.title,
                    url=entry.link,
                    content=entry.content,
                    image_url=entry.image_url,
                    published_at=entry.published_at,
                    status=ItemStatus.INGESTED.value,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        return True

    def get(self, item_id: int) -> Item:
        with self._sessions() as session:
            return _get_or_raise(session, Item, item_id, "Item")

    def get_many(self, item_ids: Iterable[int]) -> list[Item]:
        """Rows for the given ids, in the given order. Unknown ids are dropped."""
        ids = list(item_ids)
        if not ids:
            return []
        with self._sessions() as session:
            rows = {it.id: it for it in session.scalars(select(Item).where(Item.id.in_(ids)))}
        return [rows[i] for i in ids if i in rows]

    def count(self, feed_id: int | None = None) -> int:
        stmt = select(func.count(Item.id))
        if feed_id is not None:
            stmt = stmt.where(Item.feed_id == feed_id)
        with self._sessions() as session:
            return session.scalar(stmt) or 0

    def list_by_status(
        self,
        status: ItemStatus,
        limit: int | None = None,
        site_id: int | None = None,
        best_first: bool = False,
    ) -> list[Item]:
        stmt = _for_site(select(Item), site_id).where(Item.status == status.value)
        if best_first:
            stmt = stmt.order_by(Item.combined_score.desc().nullslast(), Item.id)
        else:
            stmt = stmt.order_by(Item.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def list_unverified(
        self,
        limit: int,
        item_ids: Iterable[int] | None = None,
        site_id: int | None = None,
    ) -> list[Item]:
        stmt = (
            _for_site(select(Item), site_id)
            .where(Item.status == ItemStatus.EXTRACTED.value)
            .where(Item.fact_check_results.is_(None))
            .order_by(Item.combined_score.desc().nullslast(), Item.id)
            .limit(limit)
        )
        if item_ids is not None:
            stmt = stmt.where(Item.id.in_(list(item_ids)))
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def select_for_generation(
        self,
        min_score: int,
        limit: int,
        site_id: int | None = None,
        statuses: Iterable[ItemStatus] = (ItemStatus.EXTRACTED,),
    ) -> list[Item]:
        stmt = (
            _for_site(select(Item), site_id)
            .where(Item.status.in_([s.value for s in statuses]))
            .where(Item.combined_score >= min_score)
            .order_by(Item.combined_score.desc(), Item.id)
            .limit(limit)
        )
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def save_score(self, item_id: int, score: ScoreResult) -> None:
        with self._sessions() as session:
            item = _get_or_raise(session, Item, item_id, "Item")
            item.seo_score = score.seo_score
            item.viral_score = score.viral_score
            item.combined_score = score.combined_score
            item.score_reasoning = score.reasoning
            _advance(item, ItemStatus.SCORED)
            session.commit()

    def save_extraction(self, item_id: int, result: ExtractionResult) -> None:
        with self._sessions() as session:
            item = _get_or_raise(session, Item, item_id, "Item")
            item.extracted_facts = [f.model_dump() for f in result.facts]
            item.extracted_keywords = list(result.keywords)
            _advance(item, ItemStatus.EXTRACTED)
            session.commit()

    def save_verification(self, item_id: int, result: VerificationResult) -> None:
        with self._sessions() as session:
            item = _get_or_raise(session, Item, item_id, "Item")
            item.fact_check_results = result.model_dump(mode="json")
            session.commit()

    def set_status(self, item_ids: Iterable[int], target: ItemStatus) -> int:
        ids = list(item_ids)
        if not ids:
            return 0
        with self._sessions() as session:
            items = list(session.scalars(select(Item).where(Item.id.in_(ids))))
            for item in items:
                _advance(item, target)
            session.commit()
            return len(items)

    def mark_used(self, item_ids: Iterable[int]) -> int:
        """Mark source items used; items skipped meanwhile keep their status."""
        ids = list(item_ids)
        if not ids:
            return 0
        moved = 0
        with self._sessions() as session:
            for item in session.scalars(select(Item).where(Item.id.in_(ids))):
                current = ItemStatus(item.status)
                if current == ItemStatus.USED:
                    continue
                if not item_status_can_move(current, ItemStatus.USED):
                    logger.warning("Item %s is %s; not marking used", item.id, current.value)
                    continue
                item.status = ItemStatus.USED.value
                moved += 1
            session.commit()
        return moved

    # ---------------------------
    # embeddings
    # ---------------------------

    def list_missing_embedding(self, limit: int, site_id: int | None = None) -> list[Item]:
        """Extracted items without an embedding; earlier statuses are not yet clusterable."""
        stmt = select(Item).outerjoin(Embedding, Embedding.item_id == Item.id)
        stmt = (
            _for_site(stmt, site_id)
            .where(Item.status == ItemStatus.EXTRACTED.value)
            .where(Embedding.id.is_(None))
            .order_by(Item.id)
            .limit(limit)
        )
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def save_embedding(self, item_id: int, vector: Sequence[float]) -> None:
        with self._sessions() as session:
            exists = session.scalar(select(Embedding).where(Embedding.item_id == item_id))
            if exists:
                return
            session.add(Embedding(item_id=item_id, dim=len(vector), vector=_pack(vector)))
            session.commit()

    def list_cluster_candidates(self, site_id: int | None = None) -> list[tuple[Item, list[float]]]:
        """Unclustered, embedded, extracted items in id order."""
        stmt = select(Item, Embedding).join(Embedding, Embedding.item_id == Item.id)
        stmt = (
            _for_site(stmt, site_id)
            .where(Item.cluster_id.is_(None))
            .where(Item.status == ItemStatus.EXTRACTED.value)
            .order_by(Item.id)
        )
        with self._sessions() as session:
            return [(item, _unpack(emb.vector)) for item, emb in session.execute(stmt)]


class ClusterStore(_Store):
    def create_with_members(self, item_ids: Sequence[int], site_id: int | None = None) -> Cluster:
        """Insert a cluster and assign every member in one transaction."""
        with self._sessions() as session:
            items = list(session.scalars(select(Item).where(Item.id.in_(list(item_ids)))))
            if len(items) != len(set(item_ids)):
                raise NotFoundError("Item", sorted(set(item_ids) - {i.id for i in items}))
            taken = [i.id for i in items if i.cluster_id is not None]
            if taken:
                raise InvalidStateError(f"items already clustered: {taken}")

            scores = [i.combined_score for i in items if i.combined_score is not None]
            cluster = Cluster(
                site_id=site_id,
                item_count=len(items),
                avg_score=(sum(scores) / len(scores)) if scores else None,
            )
            session.add(cluster)
            session.flush()

            for item in items:
                item.cluster_id = cluster.id
                _advance(item, ItemStatus.CLUSTERED)
            session.commit()
            return cluster

    def get(self, cluster_id: int) -> Cluster:
        with self._sessions() as session:
            return _get_or_raise(session, Cluster, cluster_id, "Cluster")

    def set_label(self, cluster_id: int, label: ClusterLabel) -> Cluster:
        with self._sessions() as session:
            cluster = _get_or_raise(session, Cluster, cluster_id, "Cluster")
            cluster.label = label.label
            cluster.summary = label.summary
            session.commit()
            return cluster

    def list_all(self, site_id: int | None = None, unlabeled_only: bool = False) -> list[Cluster]:
        stmt = select(Cluster).order_by(Cluster.id)
        if site_id is not None:
            stmt = stmt.where(Cluster.site_id == site_id)
        if unlabeled_only:
            stmt = stmt.where(Cluster.label.is_(None))
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def members(self, cluster_id: int) -> list[Item]:
        stmt = select(Item).where(Item.cluster_id == cluster_id).order_by(Item.id)
        with self._sessions() as session:
            return list(session.scalars(stmt))


class RunStore(_Store):
    def create(
        self,
        site_id: int | None,
        preset: str,
        item_ids: Sequence[int],
        topic: str,
        persona: str | None = None,
        cluster_id: int | None = None,
    ) -> PipelineRun:
        with self._sessions() as session:
            run = PipelineRun(
                site_id=site_id,
                preset=preset,
                persona=persona,
                topic=topic,
                source_item_ids=list(item_ids),
                cluster_id=cluster_id,
                status=RunStatus.PENDING.value,
                sections={},
            )
            session.add(run)
            session.commit()
            return run

    def get(self, run_id: int) -> PipelineRun:
        with self._sessions() as session:
            return _get_or_raise(session, PipelineRun, run_id, "PipelineRun")

    def count(self) -> int:
        with self._sessions() as session:
            return session.scalar(select(func.count(PipelineRun.id))) or 0

    def list_resumable(self, site_id: int | None = None) -> list[PipelineRun]:
        stmt = (
            select(PipelineRun)
            .where(PipelineRun.status.not_in([s.value for s in TERMINAL_RUN_STATUSES]))
            .order_by(PipelineRun.id)
        )
        if site_id is not None:
            stmt = stmt.where(PipelineRun.site_id == site_id)
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def transition(self, run_id: int, target: RunStatus, **fields) -> PipelineRun:
        """Move a run to `target` (same-status is a no-op) and set extra columns."""
        with self._sessions() as session:
            run = _get_or_raise(session, PipelineRun, run_id, "PipelineRun")
            current = RunStatus(run.status)
            if current != target and target not in RUN_TRANSITIONS[current]:
                raise InvalidStateError(
                    f"run {run_id} cannot move from {current.value} to {target.value}"
                )
            run.status = target.value
            for k, v in fields.items():
                setattr(run, k, v)
            session.commit()
            return run

    def fail(self, run_id: int, error: str) -> None:
        with self._sessions() as session:
            run = _get_or_raise(session, PipelineRun, run_id, "PipelineRun")
            if run.status == RunStatus.COMPLETED.value:
                logger.warning("Run %s already completed; not marking failed (%s)", run_id, error)
                return
            run.status = RunStatus.FAILED.value
            run.error = error
            session.commit()

    def ensure_article(self, run_id: int) -> tuple[int, bool]:
        """
        Returns (generated_article_id, created).
        The article row is created at most once per run.
        """
        with self._sessions() as session:
            run = session.get(PipelineRun, run_id, with_for_update=True)
            if run is None:
                raise NotFoundError("PipelineRun", run_id)
            if run.generated_article_id is not None:
                return run.generated_article_id, False

            article = GeneratedArticle(
                site_id=run.site_id,
                title=run.title or "Generated Article",
                content=run.assembled_html or "",
                focus_keyword=run.focus_keyword or "",
                seo_title=run.seo_title or "",
                seo_description=run.seo_description or "",
                status="draft",
            )
            session.add(article)
            session.flush()
            run.generated_article_id = article.id
            session.commit()
            return article.id, True

    def count_articles(self) -> int:
        with self._sessions() as session:
            return session.scalar(select(func.count(GeneratedArticle.id))) or 0


class EventStore(_Store):
    def add(self, event_type: str, payload: dict, site_id: int | None = None) -> EventRecord:
        with self._sessions() as session:
            rec = EventRecord(event_type=event_type, site_id=site_id, payload_json=payload)
            session.add(rec)
            session.commit()
            return rec

    def list_events(self, event_type: str | None = None) -> list[EventRecord]:
        stmt = select(EventRecord).order_by(EventRecord.id)
        if event_type is not None:
            stmt = stmt.where(EventRecord.event_type == event_type)
        with self._sessions() as session:
            return list(session.scalars(stmt))
