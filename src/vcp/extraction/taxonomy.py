"""Span taxonomy: parent categories and their attribute leaves.

Every leaf id is ``<parent>.<attribute>``. The mapping is checked when the
module is imported, so a leaf without a parent fails at import time rather
than at lookup time.
"""

from __future__ import annotations

import logging
import re
from enum import Enum

from vcp.errors import UnknownCategoryError

logger = logging.getLogger(__name__)

TAXONOMY_VERSION = "3.0.0"


class Parent(str, Enum):
    SHOT = "shot"
    SUBJECT = "subject"
    ACTION = "action"
    ENVIRONMENT = "environment"
    LIGHTING = "lighting"
    CAMERA = "camera"
    STYLE = "style"
    TECHNICAL = "technical"
    AUDIO = "audio"


DEFAULT_PARENT = Parent.SUBJECT


class Category(str, Enum):
    SHOT_TYPE = "shot.type"

    SUBJECT_IDENTITY = "subject.identity"
    SUBJECT_APPEARANCE = "subject.appearance"
    SUBJECT_WARDROBE = "subject.wardrobe"
    SUBJECT_EMOTION = "subject.emotion"

    ACTION_MOVEMENT = "action.movement"
    ACTION_STATE = "action.state"
    ACTION_GESTURE = "action.gesture"

    ENVIRONMENT_LOCATION = "environment.location"
    ENVIRONMENT_WEATHER = "environment.weather"
    ENVIRONMENT_CONTEXT = "environment.context"

    LIGHTING_SOURCE = "lighting.source"
    LIGHTING_QUALITY = "lighting.quality"
    LIGHTING_TIME_OF_DAY = "lighting.timeOfDay"
    LIGHTING_COLOR_TEMP = "lighting.colorTemp"

    CAMERA_MOVEMENT = "camera.movement"
    CAMERA_LENS = "camera.lens"
    CAMERA_ANGLE = "camera.angle"
    CAMERA_FOCUS = "camera.focus"

    STYLE_AESTHETIC = "style.aesthetic"
    STYLE_FILM_STOCK = "style.filmStock"
    STYLE_COLOR_GRADE = "style.colorGrade"

    TECHNICAL_ASPECT_RATIO = "technical.aspectRatio"
    TECHNICAL_FRAME_RATE = "technical.frameRate"
    TECHNICAL_RESOLUTION = "technical.resolution"
    TECHNICAL_DURATION = "technical.duration"
    TECHNICAL_FILM_FORMAT = "technical.filmFormat"

    AUDIO_SCORE = "audio.score"
    AUDIO_SOUND_EFFECT = "audio.soundEffect"
    AUDIO_AMBIENT = "audio.ambient"

    @property
    def parent(self) -> Parent:
        return LEAF_PARENTS[self]

    @property
    def attribute(self) -> str:
        return self.value.split(".", 1)[1]


def _build_leaf_parents() -> dict[Category, Parent]:
    parents_by_value = {p.value: p for p in Parent}
    mapping: dict[Category, Parent] = {}
    for leaf in Category:
        prefix, _, attribute = leaf.value.partition(".")
        if prefix not in parents_by_value or not attribute:
            raise RuntimeError(f"Taxonomy leaf {leaf.value!r} has no parent category")
        mapping[leaf] = parents_by_value[prefix]
    orphans = set(Parent) - set(mapping.values())
    if orphans:
        raise RuntimeError(f"Parent categories without leaves: {sorted(p.value for p in orphans)}")
    return mapping


LEAF_PARENTS: dict[Category, Parent] = _build_leaf_parents()

VALID_CATEGORIES: frozenset[str] = frozenset(
    [p.value for p in Parent] + [c.value for c in Category]
)

# Aliases emitted by older templates and by models that ignore the id format.
LEGACY_ID_MAP: dict[str, str] = {
    "identity": "subject.identity",
    "appearance": "subject.appearance",
    "wardrobe": "subject.wardrobe",
    "emotion": "subject.emotion",
    "action": "action.movement",
    "subject.action": "action.movement",
    "location": "environment.location",
    "weather": "environment.weather",
    "context": "environment.context",
    "lighting_source": "lighting.source",
    "lightingsource": "lighting.source",
    "lighting_quality": "lighting.quality",
    "lightingquality": "lighting.quality",
    "time_of_day": "lighting.timeOfDay",
    "timeofday": "lighting.timeOfDay",
    "time": "lighting.timeOfDay",
    "colortemp": "lighting.colorTemp",
    "color_temp": "lighting.colorTemp",
    "framing": "shot.type",
    "camera.framing": "shot.type",
    "shot": "shot.type",
    "camera_move": "camera.movement",
    "cameramove": "camera.movement",
    "movement": "camera.movement",
    "lens": "camera.lens",
    "angle": "camera.angle",
    "focus": "camera.focus",
    "aperture": "camera.focus",
    "depth_of_field": "camera.focus",
    "aesthetic": "style.aesthetic",
    "film_stock": "style.filmStock",
    "filmstock": "style.filmStock",
    "colorgrade": "style.colorGrade",
    "color_grade": "style.colorGrade",
    "aspect_ratio": "technical.aspectRatio",
    "aspectratio": "technical.aspectRatio",
    "frame_rate": "technical.frameRate",
    "framerate": "technical.frameRate",
    "fps": "technical.frameRate",
    "resolution": "technical.resolution",
    "specs": "technical.resolution",
    "duration": "technical.duration",
    "film_format": "technical.filmFormat",
    "filmformat": "technical.filmFormat",
    "format": "technical.filmFormat",
    "score": "audio.score",
    "music": "audio.score",
    "sound_effect": "audio.soundEffect",
    "soundeffect": "audio.soundEffect",
    "sfx": "audio.soundEffect",
    "ambient": "audio.ambient",
    "ambience": "audio.ambient",
}

_BY_LOWER: dict[str, str] = {c.value.lower(): c.value for c in Category}


def _lookup(category_id: str) -> str | None:
    raw = category_id.strip()
    if raw in VALID_CATEGORIES:
        return raw
    lowered = raw.lower()
    if lowered in _BY_LOWER:
        return _BY_LOWER[lowered]
    if lowered in LEGACY_ID_MAP:
        return LEGACY_ID_MAP[lowered]
    squashed = re.sub(r"[\s\-]+", "_", lowered)
    return LEGACY_ID_MAP.get(squashed) or LEGACY_ID_MAP.get(squashed.replace("_", ""))


def resolve_category(category_id: str, *, strict: bool = False) -> str:
    """Map any category id (current, legacy or parent) to a valid taxonomy id.

    Unknown ids fall back to the default parent with a warning, or raise
    ``UnknownCategoryError`` when *strict* is set.
    """
    resolved = _lookup(category_id or "")
    if resolved is not None:
        return resolved
    if strict:
        raise UnknownCategoryError(f"Unknown category: {category_id!r}")
    logger.warning("Unknown category %r, falling back to %s", category_id, DEFAULT_PARENT.value)
    return DEFAULT_PARENT.value


def get_parent(category_id: str) -> Parent:
    """Return the parent category for a leaf or parent id."""
    resolved = resolve_category(category_id)
    prefix = resolved.split(".", 1)[0]
    return Parent(prefix)


def is_technical(category_id: str) -> bool:
    return get_parent(category_id) is Parent.TECHNICAL
