from __future__ import annotations

from content_engine.models.schemas import ScorePayload, ScoreResult
from content_engine.services.ollama_client import OllamaClient


SCORE_SYSTEM = """You are an expert content analyst. Score content on two dimensions.

SEO score (0-100):
- Search intent match: does this topic address a clear search query?
- Keyword potential: can strong keywords be extracted?
- Informational value: does it answer questions people search for?
- Evergreen vs trending: balance of lasting relevance and current interest
- Featured snippet potential: could it be structured for position 0?

Viral score (0-100):
- Emotional engagement: curiosity, surprise, concern
- Shareability on social media
- Uniqueness: a novel angle or breaking news
- Debate potential
- Timeliness

Return ONLY valid JSON matching this schema:
{
  "seo_score": 0-100,
  "viral_score": 0-100,
  "reasoning": "1-2 sentences explaining the scores"
}
"""


def _score_prompt(title: str, content: str, max_chars: int) -> str:
    return f"""Score this content:

TITLE: {title}
CONTENT: {(content or "")[:max_chars]}
"""


class Scorer:
    def __init__(self, client: OllamaClient, max_content_chars: int = 3000) -> None:
        self.client = client
        self.max_content_chars = max_content_chars

    def score(self, title: str, content: str | None) -> ScoreResult:
        payload = self.client.generate_model(
            SCORE_SYSTEM,
            _score_prompt(title, content or "", self.max_content_chars),
            ScorePayload,
            temperature=0.3,
        )
        return ScoreResult.from_axes(payload.seo_score, payload.viral_score, payload.reasoning)
