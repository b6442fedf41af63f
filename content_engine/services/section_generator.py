from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass, field
from typing import Callable, Sequence

from content_engine.db.models import Item
from content_engine.models.schemas import (
    ExtractedFact,
    FaqEntry,
    FaqPayload,
    GeneratedSection,
    GlossaryPayload,
    GlossaryTerm,
    PRESET_SECTIONS,
    PipelineSections,
    Preset,
    SectionType,
)
from content_engine.services.ollama_client import OllamaClient


_TAG_RE = re.compile(r"<[^>]*>")

STRUCTURED_SECTIONS = frozenset({SectionType.GLOSSARY, SectionType.FAQ})
STRUCTURED_TEMPERATURE = 0.3
PROSE_TEMPERATURE = 0.7

DEFAULT_SYSTEM = (
    "You are a professional SEO content writer. Write clear, engaging, and "
    "well-structured content optimized for both readers and search engines."
)


def word_count(markup: str) -> int:
    return len(_TAG_RE.sub(" ", markup or "").split())


def render_glossary(terms: Sequence[GlossaryTerm]) -> str:
    esc = html_lib.escape
    return (
        '<div class="glossary"><h2>Glossary</h2><dl>'
        + "".join(f"<dt><strong>{esc(t.term)}</strong></dt><dd>{esc(t.definition)}</dd>" for t in terms)
        + "</dl></div>"
    )


def render_faq(entries: Sequence[FaqEntry]) -> str:
    esc = html_lib.escape
    parts = [
        '<div itemscope itemprop="mainEntity" itemtype="https://schema.org/Question">'
        f'<h3 itemprop="name">{esc(f.question)}</h3>'
        '<div itemscope itemprop="acceptedAnswer" itemtype="https://schema.org/Answer">'
        f'<p itemprop="text">{esc(f.answer)}</p></div></div>'
        for f in entries
    ]
    return (
        '<div class="faq" itemscope itemtype="https://schema.org/FAQPage">'
        "<h2>Frequently Asked Questions</h2>" + "".join(parts) + "</div>"
    )


@dataclass
class SourceData:
    topic: str
    preset: Preset
    facts: list[ExtractedFact] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    verified_claims: set[str] = field(default_factory=set)

    @classmethod
    def from_items(cls, items: Sequence[Item], preset: Preset, topic: str | None = None) -> "SourceData":
        facts: list[ExtractedFact] = []
        keywords: list[str] = []
        verified: set[str] = set()
        for it in items:
            facts.extend(ExtractedFact.model_validate(f) for f in (it.extracted_facts or []))
            for kw in it.extracted_keywords or []:
                if kw not in keywords:
                    keywords.append(kw)
            for v in (it.fact_check_results or {}).get("verified", []):
                verified.add(v.get("claim", ""))
        return cls(
            topic=topic or (items[0].title if items else ""),
            preset=preset,
            facts=facts,
            keywords=keywords,
            verified_claims=verified,
        )

    @property
    def full(self) -> bool:
        return self.preset == Preset.FULL_ARTICLE

    def facts_block(self) -> str:
        lines = []
        for f in self.facts:
            tag = ", verified" if f.claim in self.verified_claims else ""
            lines.append(f"- {f.claim} (confidence: {f.confidence:.2f}{tag})")
        return "\n".join(lines) or "- (no extracted facts)"

    def keywords_line(self) -> str:
        return ", ".join(self.keywords)


def _zero_click(d: SourceData) -> str:
    return f"""Write a featured snippet / zero-click answer (40-60 words) for the topic "{d.topic}".
- Direct, concise answer a search engine can show in position 0
- Use the focus keywords naturally: {d.keywords_line()}
- Format as a short paragraph or bullet list
- Based on these facts:
{d.facts_block()}

Return HTML only (no markdown, no code fences)."""


def _intro(d: SourceData) -> str:
    words = "150-250" if d.full else "80-120"
    return f"""Write an engaging introduction ({words} words) for an article about "{d.topic}".
- Hook the reader in the first sentence
- Establish relevance and urgency
- Preview what the article covers
- Naturally include keywords: {d.keywords_line()}
- Based on facts:
{d.facts_block()}

Return HTML only (use <p> tags)."""


def _body(d: SourceData) -> str:
    words = "1200-1800" if d.full else "300-500"
    parts = "3-5" if d.full else "1-2"
    return f"""Write the main body content ({words} words) about "{d.topic}".
- {parts} clearly defined sections with H2/H3 headings
- Use these facts throughout:
{d.facts_block()}
- Naturally integrate keywords: {d.keywords_line()}
- Include specific examples, data points, and actionable insights
- Use HTML lists where appropriate; short paragraphs, scannable structure

Return HTML only (use <h2>, <h3>, <p>, <ul>, <ol>, <li>, <strong>, <em> tags)."""


def _glossary(d: SourceData) -> str:
    count = "5-8" if d.full else "3-4"
    return f"""Create a glossary of {count} key terms related to "{d.topic}".
Use these keywords as starting points: {d.keywords_line()}
- Clear, concise definitions (1-2 sentences each)
- Terms that help readers understand the topic

Return JSON only: {{"terms": [{{"term": "...", "definition": "..."}}]}}"""


def _faq(d: SourceData) -> str:
    count = "5-7" if d.full else "3-4"
    return f"""Generate {count} FAQ questions and answers about "{d.topic}".
- Questions people actually search for
- Clear, helpful answers (2-4 sentences each)
- Include keywords naturally: {d.keywords_line()}
- Base answers on these facts:
{d.facts_block()}

Return JSON only: {{"questions": [{{"question": "...", "answer": "..."}}]}}"""


def _conclusion(d: SourceData) -> str:
    words = "100-150" if d.full else "60-80"
    return f"""Write a conclusion ({words} words) for an article about "{d.topic}".
- Summarize key takeaways
- Include a call-to-action or forward-looking statement
- Naturally include keywords: {d.keywords_line()}

Return HTML only (use <p> tags)."""


SECTION_PROMPTS: dict[SectionType, Callable[[SourceData], str]] = {
    SectionType.ZERO_CLICK: _zero_click,
    SectionType.INTRO: _intro,
    SectionType.BODY: _body,
    SectionType.GLOSSARY: _glossary,
    SectionType.FAQ: _faq,
    SectionType.CONCLUSION: _conclusion,
}


class SectionGenerator:
    def __init__(self, client: OllamaClient, persona: str | None = None) -> None:
        self.client = client
        self.system = (
            f"You are a professional SEO content writer. {persona}\n\nWrite in the specified voice and style."
            if persona
            else DEFAULT_SYSTEM
        )

    def generate(self, section_type: SectionType, data: SourceData) -> GeneratedSection:
        prompt = SECTION_PROMPTS[section_type](data)

        if section_type == SectionType.GLOSSARY:
            terms = self.client.generate_model(
                self.system, prompt, GlossaryPayload, temperature=STRUCTURED_TEMPERATURE
            ).terms
            markup = render_glossary(terms)
            return GeneratedSection(
                section_type=section_type, html=markup, word_count=word_count(markup), glossary=terms
            )

        if section_type == SectionType.FAQ:
            entries = self.client.generate_model(
                self.system, prompt, FaqPayload, temperature=STRUCTURED_TEMPERATURE
            ).questions
            markup = render_faq(entries)
            return GeneratedSection(
                section_type=section_type, html=markup, word_count=word_count(markup), faq=entries
            )

        markup = self.client.generate_text(self.system, prompt, temperature=PROSE_TEMPERATURE)
        return GeneratedSection(section_type=section_type, html=markup, word_count=word_count(markup))

    def generate_all(self, data: SourceData) -> tuple[PipelineSections, int]:
        """Every section of the preset, in order. The first failure propagates."""
        sections = PipelineSections()
        total = 0
        for section_type in PRESET_SECTIONS[data.preset]:
            result = self.generate(section_type, data)
            total += result.word_count

            if section_type == SectionType.BODY:
                sections.body = [result.html]
            elif section_type == SectionType.GLOSSARY:
                sections.glossary = result.glossary or []
            elif section_type == SectionType.FAQ:
                sections.faq = result.faq or []
            else:
                setattr(sections, section_type.value, result.html)
        return sections, total
