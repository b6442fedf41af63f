from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from content_engine.models.errors import ExternalServiceError
from content_engine.models.schemas import (
    ExtractedFact,
    SerpResult,
    UnverifiedFact,
    VerificationResult,
    VerifiedFact,
)
from content_engine.services.serp_client import SerpClient

logger = logging.getLogger(__name__)

NO_RESULTS = "no SERP results"
NO_DESCRIPTION = "no corroborating description"
TOP_RESULTS = 5
MAX_EVIDENCE = 2


class FactChecker:
    """
    Cross-checks extracted claims against live search results.

    Only the first `max_facts` claims of an item are looked up, one search
    call each. A failing search call never escapes: every claim of the item
    is reported unverified with the error as the reason.
    """

    def __init__(
        self,
        search: SerpClient,
        max_facts: int = 5,
        query_max_chars: int = 80,
        evidence_min_chars: int = 20,
        confidence_boost: float = 0.1,
    ) -> None:
        self.search = search
        self.max_facts = max_facts
        self.query_max_chars = query_max_chars
        self.evidence_min_chars = evidence_min_chars
        self.confidence_boost = confidence_boost

    def _evidence(self, results: Sequence[SerpResult]) -> str:
        found = [
            f"{r.title} - {r.description}"
            for r in results[:TOP_RESULTS]
            if r.description and len(r.description) > self.evidence_min_chars
        ]
        return "; ".join(found[:MAX_EVIDENCE])

    def check(self, facts: Sequence[ExtractedFact]) -> VerificationResult:
        to_check = list(facts[: self.max_facts])
        verified: list[VerifiedFact] = []
        unverified: list[UnverifiedFact] = []

        for fact in to_check:
            query = fact.claim[: self.query_max_chars]
            try:
                results = self.search.search(query)
            except ExternalServiceError as e:
                logger.warning("SERP check failed, marking %d claims unverified: %s", len(to_check), e)
                return VerificationResult(
                    verified=[],
                    unverified=[
                        UnverifiedFact(claim=f.claim, reason=f"SERP check failed: {e}") for f in to_check
                    ],
                    checked_at=datetime.now(timezone.utc),
                )

            if not results:
                unverified.append(UnverifiedFact(claim=fact.claim, reason=NO_RESULTS))
                continue

            evidence = self._evidence(results)
            if evidence:
                verified.append(
                    VerifiedFact(
                        claim=fact.claim,
                        evidence=evidence,
                        boosted_confidence=min(fact.confidence + self.confidence_boost, 1.0),
                    )
                )
            else:
                unverified.append(UnverifiedFact(claim=fact.claim, reason=NO_DESCRIPTION))

        return VerificationResult(
            verified=verified,
            unverified=unverified,
            checked_at=datetime.now(timezone.utc),
        )
