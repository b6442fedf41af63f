from __future__ import annotations

from typing import Sequence

from content_engine.models.schemas import AssembledArticle, PipelineSections, SeoMetadata
from content_engine.services.ollama_client import OllamaClient
from content_engine.services.section_generator import render_faq, render_glossary, word_count


META_SYSTEM = """You are an SEO specialist writing article metadata.
Return ONLY valid JSON matching this schema:
{
  "title": "article title, 50-60 chars, includes the primary keyword",
  "seo_title": "SEO title tag, 50-60 chars, keyword-optimized",
  "seo_description": "meta description, 150-160 chars, compelling and keyword-rich",
  "focus_keyword": "primary focus keyword"
}
"""


def assemble_html(sections: PipelineSections) -> str:
    """
    Concatenate present sections. Order is always
    zero-click, intro, body, glossary, faq, conclusion.
    """
    parts: list[str] = []
    if sections.zero_click:
        parts.append(f'<div class="featured-snippet">{sections.zero_click}</div>')
    if sections.intro:
        parts.append(sections.intro)
    if sections.body:
        parts.append("\n".join(sections.body))
    if sections.glossary:
        parts.append(render_glossary(sections.glossary))
    if sections.faq:
        parts.append(render_faq(sections.faq))
    if sections.conclusion:
        parts.append(sections.conclusion)
    return "\n\n".join(parts)


class Assembler:
    def __init__(self, client: OllamaClient) -> None:
        self.client = client

    def seo_metadata(self, topic: str, keywords: Sequence[str], words: int) -> SeoMetadata:
        prompt = f"""Generate SEO metadata for an article about "{topic}" with keywords: {", ".join(keywords)}

The article is {words} words long.
"""
        return self.client.generate_model(META_SYSTEM, prompt, SeoMetadata, temperature=0.3)

    def assemble(self, sections: PipelineSections, topic: str, keywords: Sequence[str]) -> AssembledArticle:
        markup = assemble_html(sections)
        words = word_count(markup)
        meta = self.seo_metadata(topic, keywords, words)

        title = meta.title or topic
        return AssembledArticle(
            html=markup,
            title=title,
            seo_title=meta.seo_title or title,
            seo_description=meta.seo_description or "",
            focus_keyword=meta.focus_keyword or (keywords[0] if keywords else ""),
            word_count=words,
        )
