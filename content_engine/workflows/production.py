from __future__ import annotations

import logging
from typing import Iterable, Sequence

from content_engine.db.models import PipelineRun
from content_engine.db.stores import ItemStore, RunStore
from content_engine.models.errors import InvalidStateError, NotFoundError
from content_engine.models.schemas import (
    PipelineSections,
    Preset,
    RunStatus,
    SectionType,
)
from content_engine.services.assembler import Assembler
from content_engine.services.events import EngineEvent, EventBus
from content_engine.services.ollama_client import OllamaClient
from content_engine.services.publisher import Publisher
from content_engine.services.section_generator import SectionGenerator, SourceData

logger = logging.getLogger(__name__)

ASSEMBLABLE = frozenset({RunStatus.ASSEMBLING, RunStatus.PUBLISHING})


def _keywords(items) -> list[str]:
    out: list[str] = []
    for it in items:
        for kw in it.extracted_keywords or []:
            if kw not in out:
                out.append(kw)
    return out


class RunStages:
    """Generation, assembly and publishing for one PipelineRun."""

    def __init__(
        self,
        items: ItemStore,
        runs: RunStore,
        events: EventBus,
        ai: OllamaClient,
        publisher: Publisher,
    ) -> None:
        self.items = items
        self.runs = runs
        self.events = events
        self.ai = ai
        self.publisher = publisher
        self.assembler = Assembler(ai)

    def _source_items(self, item_ids: Iterable[int]):
        ids = list(item_ids)
        rows = self.items.get_many(ids)
        if not rows:
            raise NotFoundError("Item", ids)
        return rows

    def create_run(
        self,
        item_ids: Sequence[int],
        preset: Preset,
        persona: str | None = None,
        site_id: int | None = None,
    ) -> PipelineRun:
        rows = self._source_items(item_ids)
        clusters = {r.cluster_id for r in rows}
        return self.runs.create(
            site_id=site_id,
            preset=Preset(preset).value,
            item_ids=[r.id for r in rows],
            topic=rows[0].title,
            persona=persona,
            cluster_id=clusters.pop() if len(clusters) == 1 else None,
        )

    # ---------------------------
    # Section generation
    # ---------------------------

    def generate_section(self, section_type: SectionType, item_ids: Sequence[int], preset: Preset) -> dict:
        rows = self._source_items(item_ids)
        data = SourceData.from_items(rows, Preset(preset))
        result = SectionGenerator(self.ai).generate(SectionType(section_type), data)
        return {"section_type": result.section_type.value, "html": result.html, "word_count": result.word_count}

    def generate(self, run_id: int) -> dict:
        run = self.runs.transition(run_id, RunStatus.GENERATING)
        rows = self._source_items(run.source_item_ids)
        data = SourceData.from_items(rows, Preset(run.preset), topic=run.topic)

        try:
            sections, total = SectionGenerator(self.ai, persona=run.persona).generate_all(data)
        except Exception as e:
            self.runs.fail(run_id, f"generate: {e}")
            raise

        self.runs.transition(
            run_id,
            RunStatus.ASSEMBLING,
            sections=sections.model_dump(mode="json"),
            word_count=total,
        )
        logger.info("Run %s: %d words generated", run_id, total)
        self.events.emit(
            EngineEvent.SECTIONS_GENERATED,
            {"run_id": run_id, "word_count": total},
            site_id=run.site_id,
        )
        return {
            "run_id": run_id,
            "sections": sections.model_dump(mode="json"),
            "total_words": total,
            "item_ids": list(run.source_item_ids),
            "topic": data.topic,
            "keywords": data.keywords,
        }

    def generate_all_sections(
        self,
        item_ids: Sequence[int],
        preset: Preset = Preset.FULL_ARTICLE,
        persona: str | None = None,
        site_id: int | None = None,
    ) -> dict:
        run = self.create_run(item_ids, preset, persona=persona, site_id=site_id)
        return self.generate(run.id)

    # ---------------------------
    # Assembly
    # ---------------------------

    def assemble(self, run_id: int) -> dict:
        run = self.runs.get(run_id)
        status = RunStatus(run.status)
        if status not in ASSEMBLABLE:
            raise InvalidStateError(f"run {run_id} is {status.value}, nothing to assemble")

        sections = PipelineSections.model_validate(run.sections or {})
        keywords = _keywords(self.items.get_many(run.source_item_ids or []))
        article = self.assembler.assemble(sections, run.topic or "Article", keywords)

        self.runs.transition(
            run_id,
            RunStatus.PUBLISHING,
            assembled_html=article.html,
            title=article.title,
            seo_title=article.seo_title,
            seo_description=article.seo_description,
            focus_keyword=article.focus_keyword,
            word_count=article.word_count,
        )
        self.events.emit(
            EngineEvent.ARTICLE_ASSEMBLED,
            {"run_id": run_id, "title": article.title, "word_count": article.word_count},
            site_id=run.site_id,
        )
        return {"run_id": run_id, **article.model_dump()}

    def assemble_sections(self, sections: PipelineSections | dict, topic: str, keywords: Sequence[str]) -> dict:
        """Assemble raw sections without a run; nothing is persisted."""
        sections = PipelineSections.model_validate(sections)
        return self.assembler.assemble(sections, topic or "Article", list(keywords)).model_dump()

    # ---------------------------
    # Publishing
    # ---------------------------

    def publish(self, run_id: int, site_id: int) -> dict:
        result = self.publisher.publish(run_id, site_id)
        self.events.emit(
            EngineEvent.ARTICLE_PUBLISHED,
            {"run_id": run_id, "remote_post_id": result["remote_post_id"], "title": result["title"]},
            site_id=site_id,
        )
        return result
