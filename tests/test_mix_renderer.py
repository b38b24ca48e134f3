"""
Unit tests for the envelope mix renderer.

Tests output sizing, scheduling, ducking, crossfades, underlay looping,
output normalization, missing data handling, cancellation and progress.
"""

import asyncio
import threading

import numpy as np
import pytest

from podmix.core.errors import EmptyTimeline, MissingSampleData, RenderCancelled, RenderFailure
from podmix.models.clip import ClipKind
from podmix.models.placement import LayoutResult, PlacementItem
from podmix.models.sample_buffer import SampleBuffer
from podmix.planners.timeline_layout import layout_timeline
from podmix.renderers import mix_renderer
from podmix.renderers.mix_renderer import EnvelopeMixRenderer, render_mix
from podmix.schemas.mixer import MixerSettings
from tests.helpers import TEST_SR, constant

SR = TEST_SR


def at(seconds):
    return int(round(seconds * SR))


@pytest.fixture
def renderer():
    return EnvelopeMixRenderer(enable_timing_logs=True, enable_debug_logs=True)


@pytest.fixture
def raw_mixer():
    """No output normalization so sample values can be checked directly."""
    return MixerSettings(normalize_output=False)


def render(renderer, layout, buffers, settings, **kwargs):
    return asyncio.run(renderer.render(layout, buffers.get, settings, SR, **kwargs))


class TestEmptyTimeline:
    """Rendering nothing fails before any work is done."""

    def test_empty_layout_raises(self, renderer, mixer):
        layout = layout_timeline([], None, mixer)

        with pytest.raises(EmptyTimeline) as exc_info:
            render(renderer, layout, {}, mixer)

        assert isinstance(exc_info.value, RenderFailure)
        assert exc_info.value.stage == "layout"

    def test_fails_before_allocating(self, renderer, mixer, monkeypatch):
        def no_alloc(*_args, **_kwargs):
            raise AssertionError("output buffer allocated")

        monkeypatch.setattr(mix_renderer.np, "zeros", no_alloc)
        layout = LayoutResult(items=(), underlay_items=(), total_duration=0.0)

        with pytest.raises(EmptyTimeline):
            renderer._render_sync(layout, {}.get, mixer, SR)


class TestScheduling:
    """Items land at their start time, read from their play offset."""

    def test_output_length_includes_safety_pad(self, renderer, make_clip, raw_mixer):
        clip = make_clip(ClipKind.SPOKEN, 1.0)
        layout = layout_timeline([clip], None, raw_mixer)

        result = render(renderer, layout, {clip.id: constant(1.0, 0.25)}, raw_mixer)

        assert result.buffer.sample_rate == SR
        assert result.buffer.frame_count == at(3.0)
        assert result.buffer.channel_count == 2
        assert result.length_ms == 3000
        assert result.skipped_clip_ids == ()

    def test_play_offset_and_back_to_back(self, renderer, make_clip, raw_mixer):
        a = make_clip(ClipKind.SPOKEN, 1.0, smart_trim_start=0.5, smart_trim_end=1.0)
        b = make_clip(ClipKind.SPOKEN, 1.0)
        a_samples = np.concatenate([np.zeros((at(0.5), 2)), np.full((at(0.5), 2), 0.5)]).astype(np.float32)
        buffers = {a.id: SampleBuffer(a_samples, SR), b.id: constant(1.0, 0.25)}
        layout = layout_timeline([a, b], None, raw_mixer)

        out = render(renderer, layout, buffers, raw_mixer).buffer.samples

        assert out[at(0.1), 0] == pytest.approx(0.5)
        assert out[at(0.6), 0] == pytest.approx(0.25)
        assert out[at(0.9), 0] == pytest.approx(0.25)
        # Final fade over the last 0.5 s, then silence.
        assert 0.0 < out[at(1.25), 0] < 0.25
        assert np.all(out[at(1.5):] == 0.0)

    def test_mono_source_fills_both_channels(self, renderer, make_clip, raw_mixer):
        clip = make_clip(ClipKind.SPOKEN, 1.0)
        layout = layout_timeline([clip], None, raw_mixer)

        out = render(renderer, layout, {clip.id: constant(1.0, 0.3, channels=1)}, raw_mixer).buffer.samples

        np.testing.assert_array_equal(out[:, 0], out[:, 1])
        assert out[at(0.2), 0] == pytest.approx(0.3)

    def test_normalization_gain_applied(self, renderer, make_clip, raw_mixer):
        clip = make_clip(ClipKind.SPOKEN, 1.0, normalization_gain=2.0)
        layout = layout_timeline([clip], None, raw_mixer)

        out = render(renderer, layout, {clip.id: constant(1.0, 0.2)}, raw_mixer).buffer.samples

        assert out[at(0.2), 0] == pytest.approx(0.4)

    def test_non_positive_playback_is_dropped(self, renderer, raw_mixer):
        looked_up = []
        item = PlacementItem(
            clip_id="empty",
            kind=ClipKind.SPOKEN,
            start_time=0.0,
            end_time=1.0,
            play_offset=0.0,
            playback_duration=0.0,
            positioning_duration=1.0,
        )
        layout = LayoutResult(items=(item,), underlay_items=(), total_duration=1.0)

        def lookup(clip_id):
            looked_up.append(clip_id)
            return None

        result = asyncio.run(renderer.render(layout, lookup, raw_mixer, SR))

        assert looked_up == []
        assert result.skipped_clip_ids == ()


class TestEnvelopes:
    """Ducking, crossfades and underlay levels."""

    def test_talk_up_ducks_then_ramps_back(self, renderer, make_clip):
        settings = MixerSettings(ducking_amount=0.5, ramp_up_duration=1.0, normalize_output=False)
        speech = make_clip(ClipKind.SPOKEN, 2.0)
        music = make_clip(ClipKind.MUSIC, 6.0, vocal_start_time=1.0)
        layout = layout_timeline([speech, music], None, settings)
        buffers = {speech.id: SampleBuffer.silence(2.0, SR), music.id: constant(6.0, 0.5)}

        out = render(renderer, layout, buffers, settings).buffer.samples

        assert out[at(0.5), 0] == 0.0
        assert out[at(1.5), 0] == pytest.approx(0.25)
        assert out[at(2.5), 0] == pytest.approx(0.375)
        assert out[at(4.0), 0] == pytest.approx(0.5)

    def test_music_crossfade_keeps_level(self, renderer, make_clip, raw_mixer):
        a = make_clip(ClipKind.MUSIC, 4.0)
        b = make_clip(ClipKind.MUSIC, 4.0)
        layout = layout_timeline([a, b], None, raw_mixer)
        buffers = {a.id: constant(4.0, 0.5), b.id: constant(4.0, 0.5)}

        out = render(renderer, layout, buffers, raw_mixer).buffer.samples

        assert layout.items[1].start_time == pytest.approx(2.0)
        for t in (1.0, 2.5, 3.0, 3.5, 4.5):
            assert out[at(t), 0] == pytest.approx(0.5, abs=1e-3)

    def test_music_into_jingle_fades_out(self, renderer, make_clip, raw_mixer):
        music = make_clip(ClipKind.MUSIC, 4.0)
        jingle = make_clip(ClipKind.JINGLE, 2.0)
        layout = layout_timeline([music, jingle], None, raw_mixer)
        buffers = {music.id: constant(4.0, 0.5), jingle.id: SampleBuffer.silence(2.0, SR)}

        out = render(renderer, layout, buffers, raw_mixer).buffer.samples

        assert out[at(1.0), 0] == pytest.approx(0.5)
        assert out[at(3.0), 0] == pytest.approx(0.25)
        assert out[at(4.5), 0] == 0.0

    def test_crossfade_out_waits_for_ramp_up(self, renderer, make_clip):
        settings = MixerSettings(ducking_amount=0.5, ramp_up_duration=1.5, normalize_output=False)
        speech = make_clip(ClipKind.SPOKEN, 3.0)
        a = make_clip(ClipKind.MUSIC, 4.0, vocal_start_time=1.0)
        b = make_clip(ClipKind.MUSIC, 4.0)
        layout = layout_timeline([speech, a, b], None, settings)
        buffers = {
            speech.id: SampleBuffer.silence(3.0, SR),
            a.id: constant(4.0, 0.5),
            b.id: SampleBuffer.silence(4.0, SR),
        }

        out = render(renderer, layout, buffers, settings).buffer.samples

        # b starts at 4 s, but a only reaches full level at 4.5 s and fades from there.
        assert layout.items[2].start_time == pytest.approx(4.0)
        assert out[at(2.5), 0] == pytest.approx(0.25)
        assert out[at(3.75), 0] == pytest.approx(0.375, abs=1e-3)
        assert out[at(4.5), 0] == pytest.approx(0.5, abs=1e-3)
        assert out[at(5.25), 0] == pytest.approx(0.25, abs=1e-3)
        assert out[at(6.5), 0] == 0.0

    def test_ramp_up_cut_short_by_playback(self, renderer, make_clip):
        settings = MixerSettings(ducking_amount=0.5, ramp_up_duration=1.5, normalize_output=False)
        speech = make_clip(ClipKind.SPOKEN, 3.0)
        music = make_clip(ClipKind.MUSIC, 2.0, vocal_start_time=1.0)
        layout = layout_timeline([speech, music], None, settings)
        buffers = {speech.id: SampleBuffer.silence(3.0, SR), music.id: constant(2.0, 0.5)}

        out = render(renderer, layout, buffers, settings).buffer.samples

        # One second left after the duck, so the ramp spans 3 s to 4 s.
        assert out[at(2.5), 0] == pytest.approx(0.25)
        assert out[at(3.5), 0] == pytest.approx(0.375, abs=1e-3)
        assert out[at(3.9), 0] == pytest.approx(0.475, abs=1e-3)
        assert out[at(4.1), 0] == 0.0

    def test_short_underlay_ramps_straight_down(self, renderer):
        settings = MixerSettings(mix_duration=2.0, underlay_volume=0.5, normalize_output=False)
        speech = PlacementItem(
            clip_id="speech",
            kind=ClipKind.SPOKEN,
            start_time=0.0,
            end_time=2.0,
            play_offset=0.0,
            playback_duration=2.0,
            positioning_duration=2.0,
        )
        bed = PlacementItem(
            clip_id="underlay-bed",
            kind=ClipKind.MUSIC,
            start_time=0.5,
            end_time=1.0,
            play_offset=0.0,
            playback_duration=0.5,
            positioning_duration=0.5,
            is_underlay=True,
        )
        layout = LayoutResult(items=(speech,), underlay_items=(bed,), total_duration=2.0)
        buffers = {"speech": SampleBuffer.silence(2.0, SR), "underlay-bed": constant(0.5, 0.5)}

        out = render(renderer, layout, buffers, settings).buffer.samples

        assert out[at(0.55), 0] == pytest.approx(0.125, abs=1e-3)
        assert out[at(0.6), 0] == pytest.approx(0.25, abs=1e-3)
        assert out[at(0.8), 0] == pytest.approx(0.125, abs=1e-3)
        assert out[at(1.1), 0] == 0.0

    def test_underlay_loops_under_gap(self, renderer):
        settings = MixerSettings(mix_duration=0.5, underlay_volume=0.5, normalize_output=False)
        speech = PlacementItem(
            clip_id="speech",
            kind=ClipKind.SPOKEN,
            start_time=0.0,
            end_time=3.0,
            play_offset=0.0,
            playback_duration=3.0,
            positioning_duration=3.0,
        )
        bed = PlacementItem(
            clip_id="underlay-bed",
            kind=ClipKind.MUSIC,
            start_time=0.5,
            end_time=2.5,
            play_offset=0.0,
            playback_duration=2.0,
            positioning_duration=1.5,
            is_underlay=True,
        )
        layout = LayoutResult(items=(speech,), underlay_items=(bed,), total_duration=3.0)
        # Half a second of source audio has to cover two seconds.
        buffers = {"speech": SampleBuffer.silence(3.0, SR), "underlay-bed": constant(0.5, 0.5)}

        out = render(renderer, layout, buffers, settings).buffer.samples

        assert out[at(0.4), 0] == 0.0
        assert out[at(1.0), 0] == pytest.approx(0.25)
        assert out[at(1.8), 0] == pytest.approx(0.25)
        assert 0.0 < out[at(2.25), 0] < 0.25
        assert out[at(2.6), 0] == 0.0


class TestOutputNormalization:
    """Peak normalization to just under full scale."""

    @pytest.mark.parametrize("level, gain", [(0.25, 1.0), (0.8, 3.0)])
    def test_peak_is_098(self, renderer, make_clip, mixer, level, gain):
        clip = make_clip(ClipKind.SPOKEN, 1.0, normalization_gain=gain)
        layout = layout_timeline([clip], None, mixer)

        result = render(renderer, layout, {clip.id: constant(1.0, level)}, mixer)

        peak = float(np.max(np.abs(result.buffer.samples)))
        assert peak == pytest.approx(0.98, abs=1e-4)
        assert peak <= 1.0
        assert result.debug["decisions"]["output_gain"] == pytest.approx(0.98 / (level * gain), rel=1e-4)

    def test_silent_output_is_left_alone(self, renderer, make_clip, mixer):
        clip = make_clip(ClipKind.SPOKEN, 1.0)
        layout = layout_timeline([clip], None, mixer)

        result = render(renderer, layout, {clip.id: SampleBuffer.silence(1.0, SR)}, mixer)

        assert not np.any(result.buffer.samples)


class TestMissingSampleData:
    """Clips without usable samples are skipped or rejected."""

    def test_missing_clip_is_skipped(self, renderer, make_clip, raw_mixer):
        a = make_clip(ClipKind.SPOKEN, 1.0)
        b = make_clip(ClipKind.SPOKEN, 1.0)
        layout = layout_timeline([a, b], None, raw_mixer)

        result = render(renderer, layout, {a.id: constant(1.0, 0.25)}, raw_mixer)

        assert result.skipped_clip_ids == (b.id,)
        assert result.buffer.samples[at(0.2), 0] == pytest.approx(0.25)
        assert "skip_missing_sample_data" in result.debug["fallbacks"]

    def test_wrong_sample_rate_is_skipped(self, renderer, make_clip, raw_mixer):
        clip = make_clip(ClipKind.SPOKEN, 1.0)
        layout = layout_timeline([clip], None, raw_mixer)

        result = render(renderer, layout, {clip.id: constant(1.0, 0.25, sample_rate=SR * 2)}, raw_mixer)

        assert result.skipped_clip_ids == (clip.id,)
        assert not np.any(result.buffer.samples)

    def test_strict_mode_raises(self, renderer, make_clip):
        settings = MixerSettings(strict_missing_samples=True)
        clip = make_clip(ClipKind.SPOKEN, 1.0)
        layout = layout_timeline([clip], None, settings)

        with pytest.raises(MissingSampleData) as exc_info:
            render(renderer, layout, {}, settings)

        assert exc_info.value.clip_ids == [clip.id]
        assert exc_info.value.stage == "mix"


class TestProgressAndCancellation:
    """Progress reporting and abort between items."""

    def test_progress_is_monotonic_and_completes(self, renderer, make_clip, raw_mixer):
        clips = [make_clip(ClipKind.SPOKEN, 0.5) for _ in range(3)]
        layout = layout_timeline(clips, None, raw_mixer)
        buffers = {c.id: constant(0.5, 0.1) for c in clips}
        seen = []

        render(renderer, layout, buffers, raw_mixer, progress=seen.append)

        assert seen == sorted(seen)
        assert seen[-1] == 100.0
        assert len(seen) == len(clips) + 1

    def test_cancel_before_first_item(self, renderer, make_clip, raw_mixer):
        clip = make_clip(ClipKind.SPOKEN, 1.0)
        layout = layout_timeline([clip], None, raw_mixer)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RenderCancelled) as exc_info:
            render(renderer, layout, {clip.id: constant(1.0, 0.1)}, raw_mixer, cancel_event=cancel)

        assert exc_info.value.scheduled == 0
        assert exc_info.value.total == 1

    def test_cancel_between_items(self, renderer, make_clip, raw_mixer):
        clips = [make_clip(ClipKind.SPOKEN, 0.5) for _ in range(3)]
        layout = layout_timeline(clips, None, raw_mixer)
        buffers = {c.id: constant(0.5, 0.1) for c in clips}
        cancel = threading.Event()

        def progress(pct):
            if pct >= 25.0:
                cancel.set()

        with pytest.raises(RenderCancelled) as exc_info:
            render(renderer, layout, buffers, raw_mixer, progress=progress, cancel_event=cancel)

        assert exc_info.value.scheduled == 1


def test_render_mix_function(make_clip, mixer):
    clip = make_clip(ClipKind.MUSIC, 1.0)
    layout = layout_timeline([clip], None, mixer)

    result = asyncio.run(render_mix(layout, {clip.id: constant(1.0, 0.5)}.get, mixer, SR))

    assert result.length_ms == 3000
    assert float(np.max(np.abs(result.buffer.samples))) == pytest.approx(0.98, abs=1e-4)
