from __future__ import annotations

from typing import Sequence

from content_engine.db.models import Item
from content_engine.models.schemas import ClusterLabel
from content_engine.services.ollama_client import OllamaClient
from content_engine.services.vector_index import VectorIndex


LABEL_SYSTEM = """You name clusters of related news articles.
Return ONLY valid JSON matching this schema:
{
  "label": "short 3-6 word topic label",
  "summary": "one sentence summary"
}
"""


def embed_text(item: Item, max_chars: int = 2000) -> str:
    return f"{item.title}\n{(item.content or '')[:max_chars]}"


def plan_clusters(
    candidates: Sequence[tuple[int, list[float]]],
    threshold: float = 0.75,
    cap: int = 20,
) -> list[list[int]]:
    """
    Greedy single pass over (item_id, vector) pairs in the given order.

    Each still-free item looks up at most `cap` neighbours with cosine
    similarity >= threshold. With at least 2 other free neighbours it seeds
    a group of itself plus those neighbours; all of them are taken for the
    rest of the pass, so groups are disjoint.
    """
    if len(candidates) < 3:
        return []

    index = VectorIndex([c[0] for c in candidates], [c[1] for c in candidates])

    taken: set[int] = set()
    groups: list[list[int]] = []

    for item_id, vec in candidates:
        if item_id in taken:
            continue

        # +1: the item finds itself
        hits = index.neighbors(vec, threshold, k=cap + 1)
        others = [i for i, _ in hits if i != item_id and i not in taken][:cap]
        if len(others) < 2:
            continue

        group = [item_id] + others
        taken.update(group)
        groups.append(group)

    return groups


def label_cluster(client: OllamaClient, titles: Sequence[str], sample: int = 10) -> ClusterLabel:
    listing = "\n- ".join(t for t in titles[:sample])
    prompt = f"Generate a short topic label for this cluster of related articles:\n- {listing}\n"
    return client.generate_model(LABEL_SYSTEM, prompt, ClusterLabel, temperature=0.3)
