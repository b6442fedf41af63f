from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable

from content_engine.db.stores import EventStore

logger = logging.getLogger(__name__)


class EngineEvent(str, Enum):
    FEED_POLLED = "feed_polled"
    ITEMS_SCORED = "items_scored"
    FACTS_EXTRACTED = "facts_extracted"
    FACTS_CHECKED = "facts_checked"
    ITEMS_CLUSTERED = "items_clustered"
    SECTIONS_GENERATED = "sections_generated"
    ARTICLE_ASSEMBLED = "article_assembled"
    ARTICLE_PUBLISHED = "article_published"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"


Listener = Callable[[EngineEvent, dict, "int | None"], None]


class EventBus:
    """Logs, persists and fans out lifecycle signals."""

    def __init__(self, store: EventStore | None = None) -> None:
        self.store = store
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def emit(self, event: EngineEvent, payload: dict[str, Any], site_id: int | None = None) -> None:
        logger.info("event %s site=%s %s", event.value, site_id, payload)
        if self.store is not None:
            self.store.add(event.value, payload, site_id=site_id)
        for listener in self._listeners:
            listener(event, payload, site_id)
