"""Tests for the span taxonomy."""
import pytest

from vcp.errors import UnknownCategoryError
from vcp.extraction.taxonomy import (
    LEAF_PARENTS,
    Category,
    Parent,
    get_parent,
    is_technical,
    resolve_category,
)


class TestTaxonomy:
    """Tests for category lookup."""

    def test_every_leaf_has_parent(self):
        assert set(LEAF_PARENTS) == set(Category)
        assert set(LEAF_PARENTS.values()) == set(Parent)

    def test_resolve_current_id(self):
        assert resolve_category("lighting.timeOfDay") == "lighting.timeOfDay"

    def test_resolve_case_insensitive(self):
        assert resolve_category("Lighting.TimeOfDay") == "lighting.timeOfDay"

    def test_resolve_legacy_alias(self):
        assert resolve_category("fps") == "technical.frameRate"
        assert resolve_category("camera.framing") == "shot.type"
        assert resolve_category("time of day") == "lighting.timeOfDay"

    def test_parent_id_is_valid(self):
        assert resolve_category("lighting") == "lighting"

    def test_unknown_falls_back(self):
        """Lenient lookup maps unknown ids to the default parent."""
        assert resolve_category("banana") in {p.value for p in Parent}

    def test_unknown_strict_raises(self):
        with pytest.raises(UnknownCategoryError):
            resolve_category("banana", strict=True)

    def test_get_parent(self):
        assert get_parent("camera.lens") is Parent.CAMERA
        assert get_parent("camera") is Parent.CAMERA

    def test_is_technical(self):
        assert is_technical("technical.frameRate")
        assert not is_technical("subject.identity")
