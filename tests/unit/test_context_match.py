"""Tests for the context priority matcher."""
from vcp.extraction.canonical import canonicalize
from vcp.extraction.context_match import match_context
from vcp.extraction.types import PromptContext, SpanSource


class TestContextMatch:
    """Tests for match_context()."""

    def test_literal_subject(self):
        """Known subject is one user-input span with full confidence."""
        canonical = canonicalize("A lone astronaut explores the station")
        spans = match_context(canonical, PromptContext(subject="lone astronaut"))
        assert len(spans) == 1
        span = spans[0]
        assert span.quote == "lone astronaut"
        assert (span.start, span.end) == (2, 16)
        assert span.source is SpanSource.USER_INPUT
        assert span.confidence == 1.0
        assert span.category == "subject.identity"

    def test_case_insensitive_keeps_original_text(self):
        canonical = canonicalize("Lone Astronaut on Mars")
        spans = match_context(canonical, PromptContext(subject="lone astronaut"))
        assert spans[0].quote == "Lone Astronaut"

    def test_semantic_variant(self):
        """'golden hour' in context matches 'magic hour' in the text at lower confidence."""
        canonical = canonicalize("A beach at magic hour")
        spans = match_context(canonical, PromptContext(time="golden hour"))
        assert len(spans) == 1
        assert spans[0].quote == "magic hour"
        assert spans[0].source is SpanSource.SEMANTIC_MATCH
        assert spans[0].confidence == 0.8
        assert spans[0].category == "lighting.timeOfDay"

    def test_occurrence_selects_nth_hit(self):
        canonical = canonicalize("A dog chases another dog")
        spans = match_context(canonical, PromptContext(subject="dog"), {"subject": 1})
        assert (spans[0].start, spans[0].end) == (21, 24)

    def test_first_hit_by_default(self):
        canonical = canonicalize("A dog chases another dog")
        spans = match_context(canonical, PromptContext(subject="dog"))
        assert spans[0].start == 2

    def test_missing_field_yields_nothing(self):
        canonical = canonicalize("A red car in the rain")
        assert match_context(canonical, PromptContext(location="forest")) == []

    def test_multiple_fields_sorted_by_start(self):
        canonical = canonicalize("At dusk a cyclist rides through the city")
        spans = match_context(canonical, PromptContext.from_mapping(
            {"subject": "cyclist", "time": "dusk", "location": "city"},
        ))
        assert [s.quote for s in spans] == ["dusk", "cyclist", "city"]

    def test_no_context(self):
        assert match_context(canonicalize("anything"), None) == []
