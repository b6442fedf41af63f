from __future__ import annotations

from content_engine.models.schemas import ExtractionResult
from content_engine.services.ollama_client import OllamaClient


EXTRACT_SYSTEM = """You are a fact extraction specialist. Extract key facts and SEO keywords from content.
1. Extract 3-8 key factual claims (statistics, events, names, dates, specific data points).
2. Rate your confidence (0-1) that each claim is accurately stated.
3. Quote the source sentence verbatim for each claim.
4. Extract 5-15 SEO-relevant keywords or phrases.

Return ONLY valid JSON matching this schema:
{
  "facts": [
    {"claim": "factual claim", "confidence": 0-1, "source_quote": "verbatim quote"}
  ],
  "keywords": ["keyword1", "keyword2"]
}
"""


class FactExtractor:
    def __init__(self, client: OllamaClient, max_content_chars: int = 4000) -> None:
        self.client = client
        self.max_content_chars = max_content_chars

    def extract(self, title: str, content: str | None) -> ExtractionResult:
        prompt = f"""Extract from this content:

TITLE: {title}
BODY: {(content or "")[: self.max_content_chars]}
"""
        return self.client.generate_model(EXTRACT_SYSTEM, prompt, ExtractionResult, temperature=0.2)
