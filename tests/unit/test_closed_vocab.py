"""Tests for the closed-vocabulary matcher."""
from vcp.extraction.canonical import canonicalize
from vcp.extraction.closed_vocab import default_lexicon, load_vocab, match_closed_vocab
from vcp.extraction.types import SpanSource


def _labels(text):
    return [(s.quote, s.category) for s in match_closed_vocab(canonicalize(text))]


class TestTechnicalPatterns:
    """Tests for pattern-based technical specs."""

    def test_film_format_and_frame_rate(self):
        """'35mm' and '24fps' are found without a model call."""
        spans = match_closed_vocab(canonicalize("Shot on 35mm film at 24fps"))
        assert [(s.quote, s.category) for s in spans] == [
            ("35mm", "technical.filmFormat"),
            ("24fps", "technical.frameRate"),
        ]
        assert all(s.confidence == 1.0 for s in spans)
        assert all(s.source is SpanSource.CLOSED_VOCAB for s in spans)
        assert (spans[0].start, spans[0].end) == (8, 12)

    def test_aspect_ratio_and_resolution(self):
        assert _labels("4K, 2.39:1 framing") == [
            ("4K", "technical.resolution"),
            ("2.39:1", "technical.aspectRatio"),
        ]

    def test_focal_length_beats_film_format(self):
        """Longest match wins: the lens phrase swallows '35mm'."""
        assert _labels("through a 35mm anamorphic lens") == [("35mm anamorphic lens", "camera.lens")]

    def test_f_stop(self):
        assert _labels("wide open at f/2.8") == [("f/2.8", "camera.focus")]

    def test_f_stop_uppercase(self):
        assert _labels("wide open at F/2.8") == [("F/2.8", "camera.focus")]

    def test_duration(self):
        assert _labels("a 10 seconds clip") == [("10 seconds", "technical.duration")]


class TestLexicon:
    """Tests for lexicon terms."""

    def test_multiword_term_case_insensitive(self):
        assert _labels("Golden Hour over the bay") == [("Golden Hour", "lighting.timeOfDay")]

    def test_hyphen_and_space_variants(self):
        """'slow push-in' also matches 'slow push in'."""
        assert _labels("a slow push in on her face") == [("slow push in", "camera.movement")]

    def test_frying_pan_is_not_a_camera_move(self):
        """Ambiguous camera words need filming context and no kitchen prefix."""
        spans = match_closed_vocab(canonicalize("She flips eggs in a frying pan on the stove"))
        assert not [s for s in spans if s.category == "camera.movement"]

    def test_pan_with_camera_context(self):
        labels = _labels("The camera does a quick pan to the door")
        assert ("pan", "camera.movement") in labels

    def test_no_overlapping_hits(self):
        spans = match_closed_vocab(canonicalize("extreme close-up, shallow depth of field, golden hour"))
        for a, b in zip(spans, spans[1:]):
            assert a.end <= b.start

    def test_offsets_slice_back(self):
        canonical = canonicalize("Cafe\u0301 at dusk, wide shot, 60fps")
        for span in match_closed_vocab(canonical):
            assert canonical.text[span.start:span.end] == span.quote

    def test_empty_text(self):
        assert match_closed_vocab(canonicalize("")) == []

    def test_custom_vocab_file(self, tmp_path):
        vocab = tmp_path / "vocab.json"
        vocab.write_text('{"version": "t1", "terms": {"style.aesthetic": ["claymation"]}}')
        lexicon = load_vocab(vocab)
        assert lexicon.version == "t1"
        spans = match_closed_vocab(canonicalize("a claymation fox"), lexicon)
        assert [(s.quote, s.category) for s in spans] == [("claymation", "style.aesthetic")]

    def test_default_lexicon_is_cached(self):
        assert default_lexicon() is default_lexicon()
