"""Tests for text canonicalization and grapheme offsets."""
import unicodedata

from vcp.extraction.canonical import canonicalize, grapheme_starts, normalize


class TestNormalize:
    """Tests for normalize()."""

    def test_nfc(self):
        """Decomposed accents are composed."""
        decomposed = "Cafe\u0301"
        assert normalize(decomposed) == "Caf\u00e9"
        assert unicodedata.is_normalized("NFC", normalize(decomposed))

    def test_strips_invisible_characters(self):
        """Zero-width space, BOM and soft hyphen are removed."""
        assert normalize("gol\u200bden\ufeff ho\u00adur") == "golden hour"

    def test_keeps_whitespace_and_newlines(self):
        """Leading/trailing whitespace and line breaks survive."""
        assert normalize("  a\tb\nc  ") == "  a\tb\nc  "

    def test_strips_control_characters(self):
        """C0 controls other than tab/newline/CR are removed."""
        assert normalize("a\x00b\x07c") == "abc"

    def test_idempotent(self):
        """Normalizing twice changes nothing."""
        text = "Cafe\u0301 \u200b at dusk"
        assert normalize(normalize(text)) == normalize(text)

    def test_empty(self):
        assert normalize("") == ""


class TestGraphemes:
    """Tests for the grapheme table."""

    def test_ascii_one_cluster_per_char(self):
        assert grapheme_starts("abc") == [0, 1, 2]

    def test_combining_mark_joins_cluster(self):
        """A base letter and a combining mark that has no precomposed form form one cluster."""
        text = "q\u0307x"
        assert grapheme_starts(text) == [0, 2]

    def test_zwj_emoji_sequence_is_one_cluster(self):
        """Family emoji joined with ZWJ count as one grapheme."""
        family = "\U0001F468\u200d\U0001F469\u200d\U0001F467"
        canonical = canonicalize(f"{family} runs")
        assert canonical.grapheme_at(0) == 0
        assert canonical.grapheme_at(len(family)) == 1
        assert canonical.grapheme_count == len(" runs") + 1

    def test_flag_pairs(self):
        """Regional indicators pair up two by two."""
        flags = "\U0001F1EF\U0001F1F5\U0001F1FA\U0001F1F8"
        assert grapheme_starts(flags) == [0, 2]

    def test_snap_widens_to_cluster_edges(self):
        """A range ending inside a cluster is widened to include it."""
        canonical = canonicalize("aq\u0307b")
        assert canonical.snap(0, 2) == (0, 3)

    def test_offset_round_trip(self):
        canonical = canonicalize("\U0001F680 rocket")
        assert canonical.offset_of(canonical.grapheme_at(2)) == 2
        assert canonical.grapheme_at(len(canonical.text)) == canonical.grapheme_count


class TestFindAll:
    """Tests for CanonicalText.find_all()."""

    def test_case_insensitive_keeps_offsets(self):
        canonical = canonicalize("Golden Hour and golden hour")
        assert canonical.find_all("golden hour", case_insensitive=True) == [(0, 11), (16, 27)]

    def test_word_bounded(self):
        """'pan' does not match inside 'panorama'."""
        canonical = canonicalize("a panorama, then a pan")
        assert canonical.find_all("pan", word_bounded=True) == [(19, 22)]
