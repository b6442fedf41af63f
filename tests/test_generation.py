"""
Tests for section generation and article assembly.
"""

import pytest

from content_engine.models.errors import ExternalServiceError, InvalidStateError, NotFoundError
from content_engine.models.schemas import (
    FaqEntry,
    GlossaryTerm,
    ItemStatus,
    PipelineSections,
    Preset,
    RunStatus,
    SectionType,
)
from content_engine.services.assembler import META_SYSTEM, assemble_html
from content_engine.services.section_generator import (
    SectionGenerator,
    SourceData,
    render_faq,
    word_count,
)

from conftest import SECTION_TEXT, entry


@pytest.fixture
def extracted(pipeline, feed, fetch, ai):
    """Two scored, extracted and fact-checked items, best first."""
    fetch.entries[feed.url] = [entry("Alpha launch"), entry("Beta update")]
    ai.scores.update({"Alpha launch": (90, 80), "Beta update": (70, 60)})
    pipeline.poll_feed(feed.id)
    pipeline.score_batch()
    pipeline.extract_facts()
    pipeline.fact_check()
    return pipeline.items.list_by_status(ItemStatus.EXTRACTED, best_first=True)


class TestWordCount:
    """Word counting over markup."""

    def test_tags_are_not_words(self):
        """Tags are replaced by whitespace before counting."""
        assert word_count("<p>Hello <b>big</b> world</p>") == 3

    def test_adjacent_tags_split_words(self):
        """Words separated only by tags count separately."""
        assert word_count("<li>one</li><li>two</li>") == 2

    def test_empty(self):
        """Empty markup has no words."""
        assert word_count("") == 0


class TestRendering:
    """Structured sections rendered to HTML."""

    def test_faq_markup_is_escaped(self):
        """User text is escaped inside the schema.org markup."""
        markup = render_faq([FaqEntry(question="<script>x</script>?", answer="A & B")])
        assert "https://schema.org/FAQPage" in markup
        assert "&lt;script&gt;" in markup
        assert "A &amp; B" in markup
        assert "<script>" not in markup


class TestSourceData:
    """Source material assembled from items."""

    def test_topic_keywords_and_verified_marks(self, extracted):
        """Topic is the first item's title; keywords keep order without duplicates."""
        data = SourceData.from_items(extracted, Preset.FULL_ARTICLE)
        assert data.topic == "Alpha launch"
        assert data.keywords == ["alpha launch", "ai", "beta update"]
        assert len(data.facts) == 4
        assert "verified" in data.facts_block()


class TestSectionGenerator:
    """Per-section and full-preset generation."""

    def test_prose_section(self, ai, extracted):
        """Prose sections are free-form HTML generated at temperature 0.7."""
        data = SourceData.from_items(extracted, Preset.FULL_ARTICLE)
        section = SectionGenerator(ai).generate(SectionType.INTRO, data)
        assert section.html == SECTION_TEXT
        assert section.word_count == 3
        assert ai.calls[-1][1]["options"]["temperature"] == 0.7

    def test_glossary_is_structured(self, ai, extracted):
        """Glossary is requested as JSON and rendered as a definition list."""
        data = SourceData.from_items(extracted, Preset.FULL_ARTICLE)
        section = SectionGenerator(ai).generate(SectionType.GLOSSARY, data)
        assert section.glossary == [GlossaryTerm(term="LLM", definition="Large language model.")]
        assert "<dl>" in section.html
        assert ai.calls[-1][1]["format"] == "json"

    def test_news_post_sections(self, ai, extracted):
        """news-post generates four sections and no glossary or FAQ."""
        data = SourceData.from_items(extracted, Preset.NEWS_POST)
        before = len(ai.calls)
        sections, total = SectionGenerator(ai).generate_all(data)

        assert len(ai.calls) - before == 4
        assert sections.glossary == []
        assert sections.faq == []
        assert sections.body == [SECTION_TEXT]
        assert total == 12

    def test_persona_in_system_prompt(self, ai, extracted):
        """A persona replaces the default system prompt."""
        data = SourceData.from_items(extracted, Preset.NEWS_POST)
        SectionGenerator(ai, persona="Write like a pirate.").generate(SectionType.CONCLUSION, data)
        assert "Write like a pirate." in ai.calls[-1][1]["system"]


class TestGenerateAllSections:
    """Run-backed generation."""

    def test_creates_run_and_moves_to_assembling(self, pipeline, extracted, event_store):
        """Sections are stored on a new run and sections_generated is emitted."""
        result = pipeline.generate_all_sections([it.id for it in extracted], Preset.FULL_ARTICLE)

        run = pipeline.runs.get(result["run_id"])
        assert run.status == RunStatus.ASSEMBLING.value
        assert run.topic == "Alpha launch"
        assert run.sections["intro"] == SECTION_TEXT
        assert run.sections["faq"] == [{"question": "What is it?", "answer": "A test."}]
        assert result["total_words"] == run.word_count
        assert event_store.list_events("sections_generated")[0].payload_json["run_id"] == run.id

    def test_failure_marks_run_failed(self, pipeline, extracted, ai):
        """A failing section fails the run with the error and re-raises."""
        ai.fail_prompts.add("main body content")

        with pytest.raises(ExternalServiceError):
            pipeline.generate_all_sections([it.id for it in extracted])

        run = pipeline.runs.get(1)
        assert run.status == RunStatus.FAILED.value
        assert run.error.startswith("generate: ")

    def test_unknown_items(self, pipeline):
        """No known source items raises NotFoundError."""
        with pytest.raises(NotFoundError):
            pipeline.generate_all_sections([123, 456])

    def test_single_section_without_run(self, pipeline, extracted):
        """generate_section returns one section and creates no run."""
        result = pipeline.generate_section(SectionType.ZERO_CLICK, [extracted[0].id], Preset.NEWS_POST)
        assert result == {"section_type": "zero_click", "html": SECTION_TEXT, "word_count": 3}
        assert pipeline.runs.count() == 0


class TestAssembly:
    """HTML assembly and run-backed assembly."""

    def _sections(self, **kw):
        return PipelineSections(**kw)

    def test_fixed_order(self):
        """Sections always come out as zero-click, intro, body, glossary, faq, conclusion."""
        html = assemble_html(self._sections(
            conclusion="<p>END</p>",
            faq=[FaqEntry(question="Q?", answer="A.")],
            intro="<p>INTRO</p>",
            glossary=[GlossaryTerm(term="T", definition="D")],
            body=["<h2>BODY</h2>"],
            zero_click="<p>SNIPPET</p>",
        ))
        positions = [html.index(marker) for marker in (
            '<div class="featured-snippet"><p>SNIPPET</p></div>',
            "INTRO", "BODY", 'class="glossary"', 'class="faq"', "END",
        )]
        assert positions == sorted(positions)

    def test_order_independent_of_input(self):
        """Construction order does not change the output."""
        a = assemble_html(self._sections(intro="<p>i</p>", conclusion="<p>c</p>", body=["<p>b</p>"]))
        b = assemble_html(self._sections(body=["<p>b</p>"], conclusion="<p>c</p>", intro="<p>i</p>"))
        assert a == b == "<p>i</p>\n\n<p>b</p>\n\n<p>c</p>"

    def test_missing_sections_are_skipped(self):
        """Absent sections leave no placeholder."""
        assert assemble_html(self._sections(conclusion="<p>c</p>")) == "<p>c</p>"

    def test_assemble_sections_without_run(self, pipeline, ai):
        """Raw sections are assembled with model metadata and nothing is stored."""
        result = pipeline.assemble_sections({"intro": "<p>hi there</p>"}, "Topic", ["kw"])
        assert result["title"] == "Meta Title"
        assert result["focus_keyword"] == "meta keyword"
        assert result["word_count"] == 2
        assert ai.count(META_SYSTEM) == 1

    def test_assemble_run(self, pipeline, extracted, event_store):
        """A generated run is assembled and moved to publishing."""
        run_id = pipeline.generate_all_sections([it.id for it in extracted])["run_id"]

        result = pipeline.assemble_article(run_id)

        run = pipeline.runs.get(run_id)
        assert run.status == RunStatus.PUBLISHING.value
        assert run.assembled_html == result["html"]
        assert run.title == "Meta Title"
        assert run.seo_description == "Meta description"
        assert event_store.list_events("article_assembled")[0].payload_json["run_id"] == run_id

    def test_assemble_requires_generated_run(self, pipeline, extracted):
        """A pending run cannot be assembled."""
        run = pipeline.production.create_run([extracted[0].id], Preset.NEWS_POST)
        with pytest.raises(InvalidStateError):
            pipeline.assemble_article(run.id)
