from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from sqlalchemy import Engine

from content_engine.config.settings import Settings, get_settings
from content_engine.db.database import get_engine, init_db, make_session_factory
from content_engine.db.models import Site
from content_engine.db.stores import (
    ClusterStore,
    EventStore,
    FeedStore,
    ItemStore,
    RunStore,
    SiteStore,
)
from content_engine.models.errors import InvalidStateError, PipelineCancelled, PipelineStageError
from content_engine.models.schemas import (
    BatchResult,
    ItemStatus,
    PipelineSections,
    Preset,
    RunStatus,
    SectionType,
    TERMINAL_RUN_STATUSES,
)
from content_engine.services.events import EngineEvent, EventBus
from content_engine.services.feed_ingest import fetch_and_parse
from content_engine.services.ollama_client import OllamaClient
from content_engine.services.publisher import Publisher
from content_engine.services.serp_client import SerpClient
from content_engine.services.wordpress_client import WordPressClient
from content_engine.tools.cancellation import CancellationToken
from content_engine.tools.lock import RunLock
from content_engine.workflows.production import RunStages
from content_engine.workflows.stages import ItemStages

logger = logging.getLogger(__name__)


@dataclass
class _Progress:
    stage: str = "start"
    run_id: int | None = None


# One step per non-terminal run status; each step advances the run.
def _step_generate(p: "ContentPipeline", run_id: int, site_id: int) -> None:
    p.production.generate(run_id)


def _step_assemble(p: "ContentPipeline", run_id: int, site_id: int) -> None:
    p.production.assemble(run_id)


def _step_publish(p: "ContentPipeline", run_id: int, site_id: int) -> None:
    p.production.publish(run_id, site_id)


RUN_STEPS: dict[RunStatus, tuple[str, Callable[["ContentPipeline", int, int], None]]] = {
    RunStatus.PENDING: ("generate", _step_generate),
    RunStatus.GENERATING: ("generate", _step_generate),
    RunStatus.ASSEMBLING: ("assemble", _step_assemble),
    RunStatus.PUBLISHING: ("publish", _step_publish),
}

_unhandled = set(RunStatus) - set(TERMINAL_RUN_STATUSES) - set(RUN_STEPS)
if _unhandled:
    raise RuntimeError(f"run statuses without a step: {sorted(s.value for s in _unhandled)}")


class ContentPipeline:
    """
    Facade over every stage plus the end-to-end run.

    Single stages can be called on their own (CLI, action dispatch); the
    full run chains them under a per-site lock and drives the PipelineRun
    state machine until the article is published.
    """

    def __init__(
        self,
        settings: Settings,
        sites: SiteStore,
        feeds: FeedStore,
        items: ItemStore,
        clusters: ClusterStore,
        runs: RunStore,
        events: EventBus,
        ai: OllamaClient,
        search_factory: Callable[[], SerpClient] | None = None,
        cms_factory: Callable[[Site], WordPressClient] = WordPressClient.for_site,
        fetch: Callable = fetch_and_parse,
        lock_factory: Callable[[int], RunLock] | None = None,
    ) -> None:
        self.settings = settings
        self.sites = sites
        self.feeds = feeds
        self.items = items
        self.clusters = clusters
        self.runs = runs
        self.events = events

        self.stages = ItemStages(
            settings, feeds, items, clusters, events, ai,
            search_factory=search_factory, fetch=fetch,
        )
        self.publisher = Publisher(runs, items, sites, cms_factory=cms_factory)
        self.production = RunStages(items, runs, events, ai, self.publisher)
        self.lock_factory = lock_factory or (
            lambda key: RunLock(key, settings.lock_dir, settings.lock_timeout_seconds)
        )

    # ---------------------------
    # Single stages
    # ---------------------------

    def poll_feed(self, feed_id: int) -> dict:
        return self.stages.poll_feed(feed_id)

    def poll_all_feeds(self, site_id: int | None = None) -> dict:
        return self.stages.poll_all_feeds(site_id)

    def score_item(self, item_id: int) -> dict:
        return self.stages.score_item(item_id)

    def score_batch(self, limit: int | None = None, site_id: int | None = None) -> BatchResult:
        return self.stages.score_batch(limit=limit, site_id=site_id)

    def extract_facts(
        self, item_ids: Iterable[int] | None = None, limit: int | None = None, site_id: int | None = None
    ) -> BatchResult:
        return self.stages.extract_facts(item_ids=item_ids, limit=limit, site_id=site_id)

    def fact_check(
        self, item_ids: Iterable[int] | None = None, limit: int | None = None, site_id: int | None = None
    ) -> BatchResult:
        return self.stages.fact_check(item_ids=item_ids, limit=limit, site_id=site_id)

    def embed_items(self, limit: int | None = None, site_id: int | None = None) -> BatchResult:
        return self.stages.embed_items(limit=limit, site_id=site_id)

    def cluster_items(self, site_id: int | None = None) -> dict:
        return self.stages.cluster_items(site_id)

    def label_clusters(self, site_id: int | None = None) -> dict:
        return self.stages.label_clusters(site_id)

    def skip_items(self, item_ids: Iterable[int]) -> int:
        return self.items.set_status(item_ids, ItemStatus.SKIPPED)

    def generate_section(self, section_type: SectionType, item_ids: Sequence[int], preset: Preset) -> dict:
        return self.production.generate_section(section_type, item_ids, preset)

    def generate_all_sections(
        self,
        item_ids: Sequence[int],
        preset: Preset = Preset.FULL_ARTICLE,
        persona: str | None = None,
        site_id: int | None = None,
    ) -> dict:
        return self.production.generate_all_sections(item_ids, preset, persona=persona, site_id=site_id)

    def assemble_article(self, run_id: int) -> dict:
        return self.production.assemble(run_id)

    def assemble_sections(self, sections: PipelineSections | dict, topic: str, keywords: Sequence[str]) -> dict:
        return self.production.assemble_sections(sections, topic, keywords)

    def publish_to_wp(self, run_id: int, site_id: int) -> dict:
        return self.production.publish(run_id, site_id)

    # ---------------------------
    # Full run
    # ---------------------------

    def run_full_pipeline(
        self,
        site_id: int,
        preset: Preset = Preset.FULL_ARTICLE,
        min_score: int | None = None,
        persona: str | None = None,
        cluster: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> dict:
        threshold = self.settings.selection_min_score if min_score is None else min_score
        token = cancel_token or CancellationToken()
        progress = _Progress()

        with self.lock_factory(site_id):
            logger.info("Pipeline start site=%s preset=%s threshold=%s", site_id, Preset(preset).value, threshold)
            try:
                return self._run(site_id, Preset(preset), threshold, persona, cluster, token, progress)
            except PipelineCancelled as e:
                self._on_failure(site_id, progress, e)
                raise
            except Exception as e:
                self._on_failure(site_id, progress, e)
                raise PipelineStageError(progress.stage, e, progress.run_id) from e

    def resume_run(self, run_id: int, cancel_token: CancellationToken | None = None) -> dict:
        run = self.runs.get(run_id)
        status = RunStatus(run.status)
        if status in TERMINAL_RUN_STATUSES:
            raise InvalidStateError(f"run {run_id} is {status.value}, nothing to resume")
        if run.site_id is None:
            raise InvalidStateError(f"run {run_id} has no site to publish to")

        token = cancel_token or CancellationToken()
        progress = _Progress(stage="resume", run_id=run_id)

        with self.lock_factory(run.site_id):
            logger.info("Resuming run %s from %s", run_id, status.value)
            try:
                return self._drive(run_id, run.site_id, token, progress)
            except PipelineCancelled as e:
                self._on_failure(run.site_id, progress, e)
                raise
            except Exception as e:
                self._on_failure(run.site_id, progress, e)
                raise PipelineStageError(progress.stage, e, progress.run_id) from e

    def _run(
        self,
        site_id: int,
        preset: Preset,
        threshold: int,
        persona: str | None,
        cluster: bool,
        token: CancellationToken,
        progress: _Progress,
    ) -> dict:
        s = self.settings

        # 1) Ingest
        progress.stage = "poll"
        token.raise_if_cancelled(progress.stage)
        results: dict = {"polled": self.stages.poll_all_feeds(site_id, token)}

        # 2) Score
        progress.stage = "score"
        token.raise_if_cancelled(progress.stage)
        results["scored"] = self.stages.score_batch(site_id=site_id, token=token).as_dict("scored")

        # 3) Extract
        progress.stage = "extract"
        token.raise_if_cancelled(progress.stage)
        results["extracted"] = self.stages.extract_facts(site_id=site_id, token=token).as_dict("extracted")

        # 4) Verify
        progress.stage = "fact_check"
        token.raise_if_cancelled(progress.stage)
        results["checked"] = self.stages.fact_check(site_id=site_id, token=token).as_dict("checked")

        # 5) Optional embed + cluster
        statuses: tuple[ItemStatus, ...] = (ItemStatus.EXTRACTED,)
        if cluster:
            progress.stage = "embed"
            token.raise_if_cancelled(progress.stage)
            results["embedded"] = self.stages.embed_items(site_id=site_id, token=token).as_dict("embedded")

            progress.stage = "cluster"
            token.raise_if_cancelled(progress.stage)
            results["clustered"] = self.stages.cluster_items(site_id)
            statuses = (ItemStatus.EXTRACTED, ItemStatus.CLUSTERED)

        # 6) Select
        progress.stage = "select"
        selected = self.items.select_for_generation(threshold, s.selection_limit, site_id=site_id, statuses=statuses)
        if not selected:
            logger.info("Pipeline site=%s: nothing scored above %s", site_id, threshold)
            return {"status": "no_content", "message": f"No items scored above {threshold}", **results}

        # 7) Run state machine
        progress.stage = "create_run"
        token.raise_if_cancelled(progress.stage)
        run = self.production.create_run([it.id for it in selected], preset, persona=persona, site_id=site_id)
        progress.run_id = run.id
        logger.info("Run %s created from items %s", run.id, run.source_item_ids)

        return {**self._drive(run.id, site_id, token, progress), **results}

    def _drive(self, run_id: int, site_id: int, token: CancellationToken, progress: _Progress) -> dict:
        while True:
            run = self.runs.get(run_id)
            status = RunStatus(run.status)
            if status == RunStatus.COMPLETED:
                break
            if status == RunStatus.FAILED:
                raise InvalidStateError(f"run {run_id} failed: {run.error}")

            progress.stage, step = RUN_STEPS[status]
            token.raise_if_cancelled(progress.stage)
            step(self, run_id, site_id)

        summary = {
            "run_id": run.id,
            "remote_post_id": run.remote_post_id,
            "remote_post_url": run.remote_post_url,
            "word_count": run.word_count,
            "title": run.title,
        }
        self.events.emit(EngineEvent.PIPELINE_COMPLETED, summary, site_id=site_id)
        logger.info("Run %s completed: post %s", run.id, run.remote_post_id)
        return {"status": "completed", "generated_article_id": run.generated_article_id, **summary}

    def _on_failure(self, site_id: int, progress: _Progress, error: Exception) -> None:
        message = f"{progress.stage}: {error}"
        if isinstance(error, PipelineCancelled):
            # run keeps its status and can be resumed
            logger.warning("Pipeline site=%s cancelled during %s", site_id, progress.stage)
        else:
            logger.error("Pipeline site=%s failed: %s", site_id, message)
            if progress.run_id is not None:
                self.runs.fail(progress.run_id, message)

        self.events.emit(
            EngineEvent.PIPELINE_FAILED,
            {"site_id": site_id, "error": str(error), "stage": progress.stage, "run_id": progress.run_id},
            site_id=site_id,
        )


def build_pipeline(
    settings: Settings | None = None,
    engine: Engine | None = None,
    ai: OllamaClient | None = None,
    search_factory: Callable[[], SerpClient] | None = None,
    cms_factory: Callable[[Site], WordPressClient] | None = None,
    fetch: Callable | None = None,
    lock_factory: Callable[[int], RunLock] | None = None,
) -> ContentPipeline:
    s = settings or get_settings()
    engine = engine or get_engine()
    init_db(engine)
    factory = make_session_factory(engine)

    return ContentPipeline(
        settings=s,
        sites=SiteStore(factory),
        feeds=FeedStore(factory),
        items=ItemStore(factory),
        clusters=ClusterStore(factory),
        runs=RunStore(factory),
        events=EventBus(EventStore(factory)),
        ai=ai or OllamaClient(s),
        search_factory=search_factory,
        cms_factory=cms_factory or WordPressClient.for_site,
        fetch=fetch or fetch_and_parse,
        lock_factory=lock_factory,
    )
