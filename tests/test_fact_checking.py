"""
Tests for fact extraction and SERP-based verification.
"""

import pytest

from content_engine.config.settings import Settings
from content_engine.models.errors import ConfigurationError
from content_engine.models.schemas import ExtractedFact, ExtractionResult, ItemStatus, SerpResult
from content_engine.services.fact_checker import NO_DESCRIPTION, NO_RESULTS, FactChecker
from content_engine.services.serp_client import SerpClient

from conftest import FakeSearch, entry


def _facts(n, confidence=0.8):
    return [ExtractedFact(claim=f"Claim number {i} " + "x" * 100, confidence=confidence) for i in range(n)]


class TestExtractionSchema:
    """Validation of the extraction payload."""

    def test_confidence_is_clamped(self):
        """Confidence outside [0, 1] is clamped."""
        assert ExtractedFact(claim="c", confidence=1.7).confidence == 1.0
        assert ExtractedFact(claim="c", confidence=-0.2).confidence == 0.0

    def test_fact_alias(self):
        """`fact` is accepted as the claim key."""
        assert ExtractedFact.model_validate({"fact": "Water is wet"}).claim == "Water is wet"

    def test_keywords_deduplicated_case_insensitively(self):
        """Keywords keep their first spelling and order."""
        result = ExtractionResult(keywords=["AI", "ai", " Robots ", "robots", "ML"])
        assert result.keywords == ["AI", "Robots", "ML"]


class TestFactChecker:
    """Per-item verification against search results."""

    def test_at_most_five_search_calls(self):
        """Only the first five claims are checked, one call each."""
        search = FakeSearch()
        result = FactChecker(search).check(_facts(8))
        assert len(search.queries) == 5
        assert len(result.verified) == 5

    def test_query_is_truncated(self):
        """Search queries are the claim cut to 80 characters."""
        search = FakeSearch()
        FactChecker(search).check(_facts(1))
        assert len(search.queries[0]) == 80

    def test_evidence_and_boost(self):
        """Evidence joins the first two long descriptions; confidence gets +0.1."""
        result = FactChecker(FakeSearch()).check(_facts(1, confidence=0.8))
        (fact,) = result.verified
        assert fact.evidence == (
            "Source one - A long corroborating description of the claim.; "
            "Source two - Another long corroborating description."
        )
        assert fact.boosted_confidence == pytest.approx(0.9)

    def test_boost_capped_at_one(self):
        """Boosted confidence never exceeds 1.0."""
        result = FactChecker(FakeSearch()).check(_facts(1, confidence=0.95))
        assert result.verified[0].boosted_confidence == 1.0

    def test_no_results(self):
        """An empty result list leaves the claim unverified."""
        result = FactChecker(FakeSearch(results=[])).check(_facts(2))
        assert [u.reason for u in result.unverified] == [NO_RESULTS, NO_RESULTS]
        assert result.verified == []

    def test_short_descriptions_do_not_count(self):
        """Descriptions of 20 characters or less are not evidence."""
        search = FakeSearch(results=[SerpResult(title="t", description="exactly twenty chars")])
        result = FactChecker(search).check(_facts(1))
        assert result.unverified[0].reason == NO_DESCRIPTION

    def test_only_top_five_results_considered(self):
        """Evidence beyond the fifth result is ignored."""
        results = [SerpResult(title=f"r{i}", description="short") for i in range(5)]
        results.append(SerpResult(title="late", description="A long description that arrives too late."))
        result = FactChecker(FakeSearch(results=results)).check(_facts(1))
        assert result.unverified[0].reason == NO_DESCRIPTION

    def test_outage_degrades_to_unverified(self):
        """A failing search marks every checked claim unverified and does not raise."""
        search = FakeSearch()
        search.fail = True
        result = FactChecker(search).check(_facts(7))

        assert len(search.queries) == 1
        assert result.verified == []
        assert len(result.unverified) == 5
        assert all(u.reason.startswith("SERP check failed:") for u in result.unverified)


class TestSerpClient:
    """Construction of the DataForSEO client."""

    def test_missing_credentials(self):
        """No login configured is a ConfigurationError."""
        with pytest.raises(ConfigurationError):
            SerpClient(Settings(dataforseo_login=""))

    def test_missing_password(self):
        """A login without a password is just as unusable."""
        s = Settings(dataforseo_login="user", dataforseo_password="")
        assert not s.has_dataforseo
        with pytest.raises(ConfigurationError):
            SerpClient(s)

    def test_full_credentials(self):
        """Login and password together configure basic auth."""
        client = SerpClient(Settings(dataforseo_login="user", dataforseo_password="secret"))
        assert client.auth == ("user", "secret")


class TestExtractAndVerifyStages:
    """extract_facts / fact_check over the store."""

    def _scored(self, pipeline, feed, fetch, ai, titles):
        fetch.entries[feed.url] = [entry(t) for t in titles]
        pipeline.poll_feed(feed.id)
        for score, title in zip(range(90, 0, -10), titles):
            ai.scores[title] = (score, score)
        pipeline.score_batch()

    def test_extract_best_first(self, pipeline, feed, fetch, ai):
        """Extraction takes the highest-scored items first and moves them to extracted."""
        self._scored(pipeline, feed, fetch, ai, ["Top", "Middle", "Low"])

        result = pipeline.extract_facts(limit=2)

        assert result.succeeded == 2
        extracted = pipeline.items.list_by_status(ItemStatus.EXTRACTED, best_first=True)
        assert [it.title for it in extracted] == ["Top", "Middle"]
        assert extracted[0].extracted_keywords == ["top", "ai"]
        assert len(extracted[0].extracted_facts) == 2

    def test_extract_explicit_ids(self, pipeline, feed, fetch, ai):
        """Explicit ids bypass the status queue."""
        self._scored(pipeline, feed, fetch, ai, ["Top", "Low"])
        low = pipeline.items.list_by_status(ItemStatus.SCORED, best_first=True)[-1]

        result = pipeline.extract_facts(item_ids=[low.id])

        assert [o.item_id for o in result.outcomes] == [low.id]

    def test_fact_check_stores_results(self, pipeline, feed, fetch, ai, search, event_store):
        """Verification results are stored and the item is not checked twice."""
        self._scored(pipeline, feed, fetch, ai, ["Top"])
        pipeline.extract_facts()

        first = pipeline.fact_check()
        second = pipeline.fact_check()

        assert first.succeeded == 1
        assert second.total == 0
        (item,) = pipeline.items.list_by_status(ItemStatus.EXTRACTED)
        assert len(item.fact_check_results["verified"]) == 2
        assert len(search.queries) == 2
        assert event_store.list_events("facts_checked")[0].payload_json["checked"] == 1

    def test_item_without_facts_gets_empty_result(self, pipeline, feed, fetch, ai, search):
        """An item with no facts is marked checked without any search call."""
        ai.no_facts.add("Empty")
        self._scored(pipeline, feed, fetch, ai, ["Empty"])
        pipeline.extract_facts()

        assert pipeline.fact_check().succeeded == 1
        (item,) = pipeline.items.list_by_status(ItemStatus.EXTRACTED)
        assert item.fact_check_results["verified"] == []
        assert item.fact_check_results["unverified"] == []
        assert search.queries == []

    def test_missing_search_credentials_is_fatal(self, settings, engine, ai, fetch):
        """Without DataForSEO credentials the stage fails before touching items."""
        from content_engine.workflows.pipeline import build_pipeline

        p = build_pipeline(settings=settings, engine=engine, ai=ai, fetch=fetch)
        with pytest.raises(ConfigurationError):
            p.fact_check()
