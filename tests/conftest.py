"""
Shared fixtures: in-memory store, fake AI service, fake search and CMS.

No test reaches the network. FakeAI subclasses the real Ollama client and
only replaces the HTTP call, so JSON extraction and schema validation run
exactly as in production.
"""
import json
import re

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from content_engine.config.settings import Settings
from content_engine.db.database import init_db, make_session_factory
from content_engine.db.stores import (
    ClusterStore,
    EventStore,
    FeedStore,
    ItemStore,
    RunStore,
    SiteStore,
)
from content_engine.models.errors import ExternalServiceError
from content_engine.models.schemas import FeedEntry, RemotePost, SerpResult
from content_engine.services.assembler import META_SYSTEM
from content_engine.services.clustering import LABEL_SYSTEM
from content_engine.services.extractor import EXTRACT_SYSTEM
from content_engine.services.ollama_client import OllamaClient
from content_engine.services.scorer import SCORE_SYSTEM
from content_engine.tools.lock import RunLock
from content_engine.workflows.pipeline import build_pipeline

_TITLE_RE = re.compile(r"TITLE: (.*)")

SECTION_TEXT = "<p>alpha beta gamma</p>"


class FakeAI(OllamaClient):
    def __init__(self):
        super().__init__(Settings())
        self.calls = []
        self.scores = {}            # title -> (seo, viral)
        self.vectors = {}           # title -> embedding
        self.no_facts = set()       # titles that yield no facts
        self.broken_titles = set()  # titles whose scoring returns prose instead of JSON
        self.fail_prompts = set()   # substrings of section prompts that raise
        self.label_fails = False
        self.on_generate = None

    def _post(self, path, payload):
        self.calls.append((path, payload))
        if path == "/api/embeddings":
            title = payload["prompt"].split("\n", 1)[0]
            return {"embedding": self.vectors.get(title, [])}

        if self.on_generate is not None:
            self.on_generate(payload)
        return {"response": self._respond(payload["system"], payload["prompt"])}

    def _title(self, prompt):
        m = _TITLE_RE.search(prompt)
        return m.group(1).strip() if m else ""

    def _respond(self, system, prompt):
        if system == SCORE_SYSTEM:
            title = self._title(prompt)
            if title in self.broken_titles:
                return "I cannot score this."
            seo, viral = self.scores.get(title, (50, 50))
            return json.dumps({"seo_score": seo, "viral_score": viral, "reasoning": "fake"})

        if system == EXTRACT_SYSTEM:
            title = self._title(prompt)
            facts = [] if title in self.no_facts else [
                {"claim": f"{title} happened in 2024", "confidence": 0.8, "source_quote": title},
                {"claim": f"{title} affects many users", "confidence": 0.6, "source_quote": title},
            ]
            return json.dumps({"facts": facts, "keywords": [title.lower(), "ai", "AI"]})

        if system == LABEL_SYSTEM:
            if self.label_fails:
                return json.dumps({"summary": "no label here"})
            return json.dumps({"label": "Shared topic", "summary": "Items about one story."})

        if system == META_SYSTEM:
            return json.dumps({
                "title": "Meta Title",
                "seo_title": "Meta SEO Title",
                "seo_description": "Meta description",
                "focus_keyword": "meta keyword",
            })

        for needle in self.fail_prompts:
            if needle in prompt:
                raise ExternalServiceError(f"model crashed on '{needle}'")

        if "Create a glossary" in prompt:
            return json.dumps({"terms": [{"term": "LLM", "definition": "Large language model."}]})
        if "FAQ questions" in prompt:
            return json.dumps({"questions": [{"question": "What is it?", "answer": "A test."}]})
        return SECTION_TEXT

    def count(self, system):
        return sum(1 for path, p in self.calls if path == "/api/generate" and p["system"] == system)


class FakeSearch:
    def __init__(self, results=None):
        self.queries = []
        self.results = results
        self.fail = False

    def search(self, query, depth=10):
        self.queries.append(query)
        if self.fail:
            raise ExternalServiceError("SERP API error 40100: quota exceeded")
        if self.results is not None:
            return list(self.results)
        return [
            SerpResult(title="Source one", description="A long corroborating description of the claim."),
            SerpResult(title="Source two", description="Another long corroborating description."),
            SerpResult(title="Source three", description="Third long corroborating description here."),
        ]


class FakeCMS:
    def __init__(self):
        self.posts = []
        self.failures_left = 0

    def create_draft_post(self, title, html, status="draft", excerpt=None):
        if self.failures_left:
            self.failures_left -= 1
            raise ExternalServiceError("WordPress create post failed (502): bad gateway")
        self.posts.append({"title": title, "html": html, "status": status, "excerpt": excerpt})
        post_id = 100 + len(self.posts)
        return RemotePost(remote_id=post_id, url=f"https://example.com/?p={post_id}")


class FakeFeeds:
    """Callable standing in for fetch_and_parse: url -> entries."""

    def __init__(self):
        self.entries = {}
        self.errors = {}

    def __call__(self, url):
        if url in self.errors:
            raise self.errors[url]
        return list(self.entries.get(url, []))


def entry(title, guid=None, content=None):
    return FeedEntry(
        guid=guid or f"guid-{title}",
        title=title,
        link=f"https://news.example.com/{title.replace(' ', '-').lower()}",
        content=content or f"{title} body text.",
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        lock_dir=str(tmp_path / "locks"),
        log_file=str(tmp_path / "run.log"),
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def sites(session_factory):
    return SiteStore(session_factory)


@pytest.fixture
def feeds(session_factory):
    return FeedStore(session_factory)


@pytest.fixture
def items(session_factory):
    return ItemStore(session_factory)


@pytest.fixture
def clusters(session_factory):
    return ClusterStore(session_factory)


@pytest.fixture
def runs(session_factory):
    return RunStore(session_factory)


@pytest.fixture
def event_store(session_factory):
    return EventStore(session_factory)


@pytest.fixture
def ai():
    return FakeAI()


@pytest.fixture
def search():
    return FakeSearch()


@pytest.fixture
def cms():
    return FakeCMS()


@pytest.fixture
def fetch():
    return FakeFeeds()


@pytest.fixture
def pipeline(settings, engine, ai, search, cms, fetch):
    return build_pipeline(
        settings=settings,
        engine=engine,
        ai=ai,
        search_factory=lambda: search,
        cms_factory=lambda site: cms,
        fetch=fetch,
        lock_factory=lambda key: RunLock(key, settings.lock_dir, settings.lock_timeout_seconds),
    )


@pytest.fixture
def site(pipeline):
    return pipeline.sites.add("Example", "https://example.com", wp_username="editor", wp_app_password="app pw")


@pytest.fixture
def feed(pipeline, site, fetch):
    f = pipeline.feeds.add("https://news.example.com/rss", name="Example News", site_id=site.id)
    fetch.entries[f.url] = []
    return f
