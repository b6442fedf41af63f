"""
Tests for publishing assembled runs to the CMS.
"""

import pytest
import requests

from content_engine.db.models import Site
from content_engine.models.errors import ConfigurationError, ExternalServiceError, InvalidStateError
from content_engine.models.schemas import ItemStatus, Preset, RunStatus
from content_engine.services.wordpress_client import WordPressClient

from conftest import entry


@pytest.fixture
def assembled(pipeline, feed, fetch, ai):
    """A run that is assembled and waiting to be published."""
    fetch.entries[feed.url] = [entry("Alpha launch"), entry("Beta update")]
    ai.scores.update({"Alpha launch": (90, 80), "Beta update": (85, 75)})
    pipeline.poll_feed(feed.id)
    pipeline.score_batch()
    pipeline.extract_facts()
    ids = [it.id for it in pipeline.items.list_by_status(ItemStatus.EXTRACTED, best_first=True)]
    run_id = pipeline.generate_all_sections(ids, Preset.NEWS_POST, site_id=feed.site_id)["run_id"]
    pipeline.assemble_article(run_id)
    return pipeline.runs.get(run_id)


class _Response:
    def __init__(self, payload, status_code=201, text=""):
        self.payload = payload
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = text

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class TestWordPressClient:
    """Client construction from site records."""

    def test_missing_credentials(self):
        """A site without an application password cannot be published to."""
        site = Site(id=7, name="No creds", url="https://example.com", wp_username="editor")
        with pytest.raises(ConfigurationError):
            WordPressClient.for_site(site)

    def test_api_base(self):
        """The REST base is derived from the site URL."""
        client = WordPressClient("http://example.com/", "u", "p")
        assert client.base_url == "https://example.com/wp-json/wp/v2"

    def test_created_post(self, monkeypatch):
        """A created post yields its remote id and link."""
        created = _Response({"id": 42, "link": "https://example.com/?p=42"})
        monkeypatch.setattr(requests, "post", lambda url, json, auth, timeout: created)
        post = WordPressClient("https://example.com", "u", "p").create_draft_post("T", "<p>x</p>")
        assert (post.remote_id, post.url) == (42, "https://example.com/?p=42")

    @pytest.mark.parametrize("payload", [
        ["not", "an", "object"],
        {"link": "https://example.com/"},
        ValueError("no json"),
    ])
    def test_unusable_success_body(self, monkeypatch, payload):
        """A 2xx reply without a post id is an ExternalServiceError."""
        monkeypatch.setattr(requests, "post", lambda url, json, auth, timeout: _Response(payload, text="<html>"))
        with pytest.raises(ExternalServiceError):
            WordPressClient("https://example.com", "u", "p").create_draft_post("T", "<p>x</p>")


class TestPublish:
    """publish_to_wp over the store."""

    def test_publish_completes_run(self, pipeline, site, assembled, cms, event_store):
        """The run is completed with the remote post and its items marked used."""
        result = pipeline.publish_to_wp(assembled.id, site.id)

        run = pipeline.runs.get(assembled.id)
        assert run.status == RunStatus.COMPLETED.value
        assert run.remote_post_id == result["remote_post_id"] == 101
        assert run.remote_post_url == "https://example.com/?p=101"
        assert run.completed_at is not None
        assert run.generated_article_id == result["article_id"]
        assert cms.posts[0]["status"] == "draft"
        assert cms.posts[0]["excerpt"] == "Meta description"
        assert all(it.status == ItemStatus.USED.value for it in pipeline.items.get_many(run.source_item_ids))
        assert event_store.list_events("article_published")[0].payload_json["remote_post_id"] == 101

    def test_publishing_twice_keeps_one_article(self, pipeline, site, assembled, cms):
        """A repeated publish reuses the generated article record."""
        first = pipeline.publish_to_wp(assembled.id, site.id)
        second = pipeline.publish_to_wp(assembled.id, site.id)

        assert first["article_created"] is True
        assert second["article_created"] is False
        assert first["article_id"] == second["article_id"]
        assert pipeline.runs.count_articles() == 1
        assert len(cms.posts) == 2

    def test_cms_failure_then_retry(self, pipeline, site, assembled, cms):
        """A failed push leaves the run publishable; the retry reuses the article."""
        cms.failures_left = 1

        with pytest.raises(ExternalServiceError):
            pipeline.publish_to_wp(assembled.id, site.id)
        assert pipeline.runs.get(assembled.id).status == RunStatus.PUBLISHING.value

        result = pipeline.publish_to_wp(assembled.id, site.id)

        assert result["article_created"] is False
        assert pipeline.runs.count_articles() == 1
        assert pipeline.runs.get(assembled.id).status == RunStatus.COMPLETED.value

    def test_failed_run_can_be_republished(self, pipeline, site, assembled):
        """An assembled run that was marked failed can still be published."""
        pipeline.runs.fail(assembled.id, "publish: timeout")

        pipeline.publish_to_wp(assembled.id, site.id)

        assert pipeline.runs.get(assembled.id).status == RunStatus.COMPLETED.value

    def test_unassembled_run(self, pipeline, site, feed, fetch):
        """A run without assembled HTML cannot be published."""
        fetch.entries[feed.url] = [entry("Only")]
        pipeline.poll_feed(feed.id)
        (item,) = pipeline.items.list_by_status(ItemStatus.INGESTED)
        run = pipeline.production.create_run([item.id], Preset.NEWS_POST, site_id=site.id)

        with pytest.raises(InvalidStateError):
            pipeline.publish_to_wp(run.id, site.id)

    def test_other_site_is_rejected(self, pipeline, site, assembled, cms):
        """A run is only pushed to the site it was created for."""
        other = pipeline.sites.add("Other", "https://other.example.com", "u", "p")

        with pytest.raises(InvalidStateError, match="belongs to site"):
            pipeline.publish_to_wp(assembled.id, other.id)

        assert cms.posts == []
        assert pipeline.runs.get(assembled.id).status == RunStatus.PUBLISHING.value
        assert pipeline.runs.count_articles() == 0

    def test_skipped_item_keeps_status(self, pipeline, site, assembled):
        """Items skipped while the run was in flight are not marked used."""
        skipped_id = assembled.source_item_ids[1]
        pipeline.skip_items([skipped_id])

        pipeline.publish_to_wp(assembled.id, site.id)

        assert pipeline.items.get(skipped_id).status == ItemStatus.SKIPPED.value
