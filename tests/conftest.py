"""Shared fixtures."""

import pytest

from podmix.models.clip import Clip, ClipKind
from podmix.schemas.mixer import MixerSettings
from tests.helpers import TEST_SR


@pytest.fixture
def sample_rate():
    return TEST_SR


@pytest.fixture
def mixer():
    """Default mixer settings."""
    return MixerSettings()


@pytest.fixture
def no_trim_mixer():
    return MixerSettings(trim_silence_enabled=False, normalize_clips=False)


@pytest.fixture
def make_clip():
    """Factory for clips with readable ids."""
    counter = {"n": 0}

    def _make(kind, duration_s, **kwargs):
        counter["n"] += 1
        kwargs.setdefault("id", f"{ClipKind(kind).value}-{counter['n']}")
        return Clip.create(kind, duration_s, **kwargs)

    return _make
