"""
Name-based entry point over the pipeline facade.

Callers that only have an action name and a flat params dict (the CLI
`action` command, schedulers) go through `dispatch()`. Id lists may be
given as a list or as a comma-separated string.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable

from content_engine.models.schemas import Preset, SectionType
from content_engine.workflows.pipeline import ContentPipeline


class Action(str, Enum):
    POLL_FEED = "poll_feed"
    POLL_ALL_FEEDS = "poll_all_feeds"
    SCORE_ITEM = "score_item"
    SCORE_BATCH = "score_batch"
    EXTRACT_FACTS = "extract_facts"
    FACT_CHECK = "fact_check"
    EMBED_ITEMS = "embed_items"
    CLUSTER_ITEMS = "cluster_items"
    LABEL_CLUSTERS = "label_clusters"
    SKIP_ITEMS = "skip_items"
    GENERATE_SECTION = "generate_section"
    GENERATE_ALL_SECTIONS = "generate_all_sections"
    ASSEMBLE_ARTICLE = "assemble_article"
    PUBLISH_TO_WP = "publish_to_wp"
    RUN_FULL_PIPELINE = "run_full_pipeline"
    RESUME_RUN = "resume_run"


def _require(params: dict, key: str) -> Any:
    value = params.get(key)
    if value is None or value == "":
        raise ValueError(f"{key} is required")
    return value


def _ids(value: Any) -> list[int] | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = [v for v in value.split(",") if v.strip()]
    return [int(v) for v in value]


def _int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


def _poll_feed(p: ContentPipeline, params: dict) -> dict:
    return p.poll_feed(int(_require(params, "feed_id")))


def _poll_all_feeds(p: ContentPipeline, params: dict) -> dict:
    return p.poll_all_feeds(site_id=_int(params.get("site_id")))


def _score_item(p: ContentPipeline, params: dict) -> dict:
    return p.score_item(int(_require(params, "item_id")))


def _score_batch(p: ContentPipeline, params: dict) -> dict:
    return p.score_batch(limit=_int(params.get("limit")), site_id=_int(params.get("site_id"))).as_dict("scored")


def _extract_facts(p: ContentPipeline, params: dict) -> dict:
    result = p.extract_facts(
        item_ids=_ids(params.get("item_ids")),
        limit=_int(params.get("limit")),
        site_id=_int(params.get("site_id")),
    )
    return result.as_dict("extracted")


def _fact_check(p: ContentPipeline, params: dict) -> dict:
    result = p.fact_check(
        item_ids=_ids(params.get("item_ids")),
        limit=_int(params.get("limit")),
        site_id=_int(params.get("site_id")),
    )
    return result.as_dict("checked")


def _embed_items(p: ContentPipeline, params: dict) -> dict:
    return p.embed_items(limit=_int(params.get("limit")), site_id=_int(params.get("site_id"))).as_dict("embedded")


def _cluster_items(p: ContentPipeline, params: dict) -> dict:
    return p.cluster_items(site_id=_int(params.get("site_id")))


def _label_clusters(p: ContentPipeline, params: dict) -> dict:
    return p.label_clusters(site_id=_int(params.get("site_id")))


def _skip_items(p: ContentPipeline, params: dict) -> dict:
    return {"skipped": p.skip_items(_ids(_require(params, "item_ids")))}


def _generate_section(p: ContentPipeline, params: dict) -> dict:
    return p.generate_section(
        SectionType(_require(params, "section_type")),
        _ids(_require(params, "item_ids")),
        Preset(params.get("preset") or Preset.FULL_ARTICLE),
    )


def _generate_all_sections(p: ContentPipeline, params: dict) -> dict:
    return p.generate_all_sections(
        _ids(_require(params, "item_ids")),
        Preset(params.get("preset") or Preset.FULL_ARTICLE),
        persona=params.get("persona"),
        site_id=_int(params.get("site_id")),
    )


def _assemble_article(p: ContentPipeline, params: dict) -> dict:
    if params.get("run_id"):
        return p.assemble_article(int(params["run_id"]))
    return p.assemble_sections(
        _require(params, "sections"),
        params.get("topic") or "Article",
        params.get("keywords") or [],
    )


def _publish_to_wp(p: ContentPipeline, params: dict) -> dict:
    return p.publish_to_wp(int(_require(params, "run_id")), int(_require(params, "site_id")))


def _run_full_pipeline(p: ContentPipeline, params: dict) -> dict:
    return p.run_full_pipeline(
        int(_require(params, "site_id")),
        preset=Preset(params.get("preset") or Preset.FULL_ARTICLE),
        min_score=_int(params.get("min_score")),
        persona=params.get("persona"),
        cluster=_flag(params.get("cluster")),
    )


def _resume_run(p: ContentPipeline, params: dict) -> dict:
    return p.resume_run(int(_require(params, "run_id")))


ACTION_HANDLERS: dict[Action, Callable[[ContentPipeline, dict], dict]] = {
    Action.POLL_FEED: _poll_feed,
    Action.POLL_ALL_FEEDS: _poll_all_feeds,
    Action.SCORE_ITEM: _score_item,
    Action.SCORE_BATCH: _score_batch,
    Action.EXTRACT_FACTS: _extract_facts,
    Action.FACT_CHECK: _fact_check,
    Action.EMBED_ITEMS: _embed_items,
    Action.CLUSTER_ITEMS: _cluster_items,
    Action.LABEL_CLUSTERS: _label_clusters,
    Action.SKIP_ITEMS: _skip_items,
    Action.GENERATE_SECTION: _generate_section,
    Action.GENERATE_ALL_SECTIONS: _generate_all_sections,
    Action.ASSEMBLE_ARTICLE: _assemble_article,
    Action.PUBLISH_TO_WP: _publish_to_wp,
    Action.RUN_FULL_PIPELINE: _run_full_pipeline,
    Action.RESUME_RUN: _resume_run,
}

_missing = [a.value for a in Action if a not in ACTION_HANDLERS]
if _missing:
    raise RuntimeError(f"actions without a handler: {_missing}")


def dispatch(pipeline: ContentPipeline, action: Action | str, params: dict | None = None) -> dict:
    try:
        action = Action(action)
    except ValueError:
        raise ValueError(f"Unknown action: {action}") from None
    return ACTION_HANDLERS[action](pipeline, params or {})
