"""Shared test fixtures."""
import pytest

from vcp.cache import ResultCache, live_version
from vcp.extraction.open_vocab import StaticSpanExtractor
from vcp.shared.storage import MemoryStorage

from helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def cache(storage, clock):
    c = ResultCache(storage, version=live_version("v3"), max_entries=10, clock=clock)
    c.hydrate()
    return c


@pytest.fixture
def astronaut_text():
    return "A lone astronaut walks across a red desert at golden hour, shot on 35mm film at 24fps."


@pytest.fixture
def static_extractor(astronaut_text):
    return StaticSpanExtractor({
        astronaut_text: [
            {"text": "walks across", "role": "action.movement", "confidence": 0.9},
            {"text": "red desert", "role": "environment.location", "confidence": 0.85},
        ],
    })
