from __future__ import annotations

from typing import Sequence

import faiss
import numpy as np


def _unit_rows(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    # inner product over unit vectors == cosine similarity
    X = np.asarray(vectors, dtype="float32")
    if X.ndim == 1:
        X = X.reshape(1, -1)
    norms = np.linalg.norm(X, axis=1, keepdims=True) + 1e-12
    return np.ascontiguousarray(X / norms, dtype="float32")


class VectorIndex:
    """
    In-memory cosine-similarity index over item embeddings (faiss IndexFlatIP).
    Built fresh for every clustering pass; nothing is persisted.
    """

    def __init__(self, item_ids: Sequence[int], vectors: Sequence[Sequence[float]]) -> None:
        if len(item_ids) != len(vectors):
            raise ValueError("item_ids and vectors differ in length")
        self.item_ids = np.asarray(item_ids, dtype="int64")
        self.index = None
        if len(vectors):
            X = _unit_rows(vectors)
            self.index = faiss.IndexFlatIP(X.shape[1])
            self.index.add(X)

    def __len__(self) -> int:
        return 0 if self.index is None else self.index.ntotal

    def search(self, query: Sequence[float], k: int) -> list[tuple[int, float]]:
        """(item_id, similarity) pairs, most similar first."""
        if self.index is None or k <= 0:
            return []
        scores, idxs = self.index.search(_unit_rows(query), min(k, len(self)))
        return [
            (int(self.item_ids[i]), float(score))
            for score, i in zip(scores[0], idxs[0])
            if i != -1
        ]

    def neighbors(self, query: Sequence[float], threshold: float, k: int) -> list[tuple[int, float]]:
        return [(i, sim) for i, sim in self.search(query, k) if sim >= threshold]
