from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator


class ItemStatus(str, Enum):
    INGESTED = "ingested"
    SCORED = "scored"
    EXTRACTED = "extracted"
    CLUSTERED = "clustered"
    USED = "used"
    SKIPPED = "skipped"


_ITEM_ORDER = {
    ItemStatus.INGESTED: 0,
    ItemStatus.SCORED: 1,
    ItemStatus.EXTRACTED: 2,
    ItemStatus.CLUSTERED: 3,
    ItemStatus.USED: 4,
}


def item_status_can_move(current: ItemStatus, target: ItemStatus) -> bool:
    """Item status only moves forward; `skipped` can be reached from anywhere but never left."""
    if current == ItemStatus.SKIPPED:
        return False
    if target == ItemStatus.SKIPPED:
        return True
    return _ITEM_ORDER[target] > _ITEM_ORDER[current]


class RunStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    ASSEMBLING = "assembling"
    PUBLISHING = "publishing"
    COMPLETED = "completed"
    FAILED = "failed"


RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.GENERATING, RunStatus.FAILED}),
    RunStatus.GENERATING: frozenset({RunStatus.ASSEMBLING, RunStatus.FAILED}),
    RunStatus.ASSEMBLING: frozenset({RunStatus.PUBLISHING, RunStatus.FAILED}),
    RunStatus.PUBLISHING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED}),
    # an assembled run that failed to publish may be pushed again
    RunStatus.FAILED: frozenset({RunStatus.PUBLISHING}),
    RunStatus.COMPLETED: frozenset(),
}

TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED})


class Preset(str, Enum):
    FULL_ARTICLE = "full-article"
    NEWS_POST = "news-post"


class SectionType(str, Enum):
    ZERO_CLICK = "zero_click"
    INTRO = "intro"
    BODY = "body"
    GLOSSARY = "glossary"
    FAQ = "faq"
    CONCLUSION = "conclusion"


# generation order per preset; assembly order is fixed separately
PRESET_SECTIONS: dict[Preset, tuple[SectionType, ...]] = {
    Preset.FULL_ARTICLE: (
        SectionType.ZERO_CLICK,
        SectionType.INTRO,
        SectionType.BODY,
        SectionType.GLOSSARY,
        SectionType.FAQ,
        SectionType.CONCLUSION,
    ),
    Preset.NEWS_POST: (
        SectionType.ZERO_CLICK,
        SectionType.INTRO,
        SectionType.BODY,
        SectionType.CONCLUSION,
    ),
}


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


# ---------------------------
# Ingestion
# ---------------------------

class FeedEntry(BaseModel):
    guid: str
    title: str
    link: str | None = None
    content: str | None = None
    published_at: datetime | None = None
    image_url: str | None = None


# ---------------------------
# AI payloads (validated on receipt)
# ---------------------------

class ScorePayload(BaseModel):
    seo_score: float
    viral_score: float
    reasoning: str = ""


class ScoreResult(BaseModel):
    seo_score: int = Field(ge=0, le=100)
    viral_score: int = Field(ge=0, le=100)
    combined_score: int = Field(ge=0, le=100)
    reasoning: str = ""

    @classmethod
    def from_axes(cls, seo: float, viral: float, reasoning: str = "") -> "ScoreResult":
        seo_i = round_half_up(clamp(seo, 0, 100))
        viral_i = round_half_up(clamp(viral, 0, 100))
        return cls(
            seo_score=seo_i,
            viral_score=viral_i,
            combined_score=combined_score(seo_i, viral_i),
            reasoning=reasoning,
        )


def combined_score(seo: int, viral: int) -> int:
    return round_half_up(seo * 0.6 + viral * 0.4)


class ExtractedFact(BaseModel):
    claim: str = Field(validation_alias=AliasChoices("claim", "fact"))
    confidence: float = 0.5
    source_quote: str = ""

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return clamp(v, 0.0, 1.0)


class ExtractionResult(BaseModel):
    facts: list[ExtractedFact] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)

    @field_validator("keywords")
    @classmethod
    def _dedupe_keywords(cls, v: list[str]) -> list[str]:
        seen: set[str] = set()
        out: list[str] = []
        for kw in v:
            k = kw.strip()
            if k and k.lower() not in seen:
                seen.add(k.lower())
                out.append(k)
        return out


class ClusterLabel(BaseModel):
    label: str = Field(min_length=1)
    summary: str | None = None


class GlossaryTerm(BaseModel):
    term: str
    definition: str


class FaqEntry(BaseModel):
    question: str
    answer: str


class GlossaryPayload(BaseModel):
    terms: list[GlossaryTerm]


class FaqPayload(BaseModel):
    questions: list[FaqEntry]


class SeoMetadata(BaseModel):
    title: str | None = None
    seo_title: str | None = None
    seo_description: str | None = None
    focus_keyword: str | None = None


# ---------------------------
# Verification
# ---------------------------

class SerpResult(BaseModel):
    title: str = ""
    description: str = ""


class VerifiedFact(BaseModel):
    claim: str
    evidence: str
    boosted_confidence: float


class UnverifiedFact(BaseModel):
    claim: str
    reason: str


class VerificationResult(BaseModel):
    verified: list[VerifiedFact] = Field(default_factory=list)
    unverified: list[UnverifiedFact] = Field(default_factory=list)
    checked_at: datetime


# ---------------------------
# Generation / assembly / publishing
# ---------------------------

class PipelineSections(BaseModel):
    zero_click: str | None = None
    intro: str | None = None
    body: list[str] = Field(default_factory=list)
    glossary: list[GlossaryTerm] = Field(default_factory=list)
    faq: list[FaqEntry] = Field(default_factory=list)
    conclusion: str | None = None


class GeneratedSection(BaseModel):
    section_type: SectionType
    html: str
    word_count: int
    glossary: list[GlossaryTerm] | None = None
    faq: list[FaqEntry] | None = None


class AssembledArticle(BaseModel):
    html: str
    title: str
    seo_title: str
    seo_description: str
    focus_keyword: str
    word_count: int


class RemotePost(BaseModel):
    remote_id: int
    url: str | None = None


# ---------------------------
# Batch outcomes
# ---------------------------

@dataclass
class ItemOutcome:
    item_id: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResult:
    stage: str
    outcomes: list[ItemOutcome] = field(default_factory=list)

    def record(self, item_id: int, error: Exception | str | None = None) -> None:
        self.outcomes.append(ItemOutcome(item_id=item_id, error=None if error is None else str(error)))

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failures(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def as_dict(self, count_key: str) -> dict[str, Any]:
        return {
            count_key: self.succeeded,
            "total": self.total,
            "failures": [{"item_id": o.item_id, "error": o.error} for o in self.failures],
        }
