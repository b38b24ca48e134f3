from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from podmix.core.errors import EmptyTimeline, MissingSampleData, RenderCancelled
from podmix.models.clip import ClipKind
from podmix.models.placement import LayoutResult, PlacementItem
from podmix.models.sample_buffer import SampleBuffer
from podmix.renderers.gain_envelope import GainEnvelope
from podmix.schemas.mixer import MixerSettings

DecodeLookup = Callable[[str], "SampleBuffer | None"]
ProgressSink = Callable[[float], None]


@dataclass(frozen=True)
class RenderResult:
    buffer: SampleBuffer
    length_ms: int
    skipped_clip_ids: tuple[str, ...] = ()
    debug: dict[str, Any] | None = None


class MixRenderer(Protocol):
    async def render(
        self,
        layout: LayoutResult,
        decode_lookup: DecodeLookup,
        settings: MixerSettings,
        sample_rate: int,
        *,
        progress: ProgressSink | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RenderResult:
        ...


class EnvelopeMixRenderer:
    """
    Offline renderer: every placed item is scheduled into one stereo float32
    buffer with its own gain envelope (crossfades, ducking, ramp-up, underlay
    fades), then the result is optionally peak-normalized.
    """
    CHANNELS = 2
    SAFETY_PAD_S = 2.0
    UNDERLAY_FADE_IN_S = 0.1
    FINAL_FADE_OUT_S = 0.5
    MIN_FINAL_FADE_S = 0.01
    OUTPUT_PEAK_TARGET = 0.98

    def __init__(
        self,
        *,
        enable_timing_logs: bool = False,
        enable_debug_logs: bool = False,
    ) -> None:
        self.enable_timing_logs = enable_timing_logs
        self.enable_debug_logs = enable_debug_logs
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def render(
        self,
        layout: LayoutResult,
        decode_lookup: DecodeLookup,
        settings: MixerSettings,
        sample_rate: int,
        *,
        progress: ProgressSink | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RenderResult:
        return await asyncio.to_thread(
            self._render_sync, layout, decode_lookup, settings, sample_rate, progress, cancel_event
        )

    def _render_sync(
        self,
        layout: LayoutResult,
        decode_lookup: DecodeLookup,
        settings: MixerSettings,
        sample_rate: int,
        progress: ProgressSink | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RenderResult:
        total_start = time.perf_counter()
        debug: dict[str, Any] = {
            "timing_s": {},
            "decisions": {
                "total_duration_s": float(layout.total_duration),
                "sample_rate": int(sample_rate),
            },
            "fallbacks": [],
            "errors": [],
        }

        # Fail before allocating anything.
        if layout.total_duration <= 0:
            raise EmptyTimeline(layout.total_duration)

        sr = int(sample_rate)
        step_start = time.perf_counter()
        n_frames = int(math.ceil(sr * (layout.total_duration + self.SAFETY_PAD_S)))
        out = np.zeros((n_frames, self.CHANNELS), dtype=np.float32)
        self._record_timing(debug, "allocate_output", step_start)

        scheduled: list[tuple[PlacementItem, GainEnvelope]] = []
        for i, item in enumerate(layout.items):
            scheduled.append((item, self._item_envelope(layout.items, i, settings)))
        for item in layout.underlay_items:
            scheduled.append((item, self._underlay_envelope(item, settings)))

        skipped: list[str] = []
        dropped: list[str] = []
        n_steps = len(scheduled) + 1
        step_start = time.perf_counter()
        for idx, (item, envelope) in enumerate(scheduled):
            if cancel_event is not None and cancel_event.is_set():
                raise RenderCancelled(idx, len(scheduled))

            if item.playback_duration <= 0:
                dropped.append(item.clip_id)
            else:
                buf = decode_lookup(item.clip_id)
                if buf is None:
                    self.logger.warning("No sample data for clip %s; skipping it in the mix", item.clip_id)
                    skipped.append(item.clip_id)
                elif buf.sample_rate != sr:
                    self.logger.warning(
                        "Clip %s decoded at %d Hz but rendering at %d Hz; skipping it in the mix",
                        item.clip_id,
                        buf.sample_rate,
                        sr,
                    )
                    skipped.append(item.clip_id)
                else:
                    self._schedule(out, buf, item, envelope, sr)

            if progress is not None:
                progress(100.0 * (idx + 1) / n_steps)
        self._record_timing(debug, "schedule_items", step_start)

        debug["decisions"]["scheduled_count"] = len(scheduled) - len(skipped) - len(dropped)
        if dropped:
            debug["decisions"]["dropped_clip_ids"] = dropped
        if skipped:
            debug["decisions"]["skipped_clip_ids"] = skipped
            debug["fallbacks"].append("skip_missing_sample_data")
            if settings.strict_missing_samples:
                raise MissingSampleData(skipped)

        if settings.normalize_output:
            step_start = time.perf_counter()
            peak, applied = self._normalize_peak(out)
            self._record_timing(debug, "normalize_output", step_start)
            debug["decisions"]["peak_before_normalize"] = peak
            debug["decisions"]["output_gain"] = applied

        if progress is not None:
            progress(100.0)

        length_ms = int(round((n_frames / sr) * 1000))
        debug["decisions"]["length_ms"] = length_ms
        self._record_timing(debug, "total", total_start)
        self._emit_render_debug(debug)
        return RenderResult(
            buffer=SampleBuffer(out, sr),
            length_ms=length_ms,
            skipped_clip_ids=tuple(skipped),
            debug=debug,
        )

    # ---------- Envelopes ----------

    def _underlay_envelope(self, item: PlacementItem, settings: MixerSettings) -> GainEnvelope:
        level = settings.underlay_volume * item.normalization_gain
        fade_in_end = min(item.start_time + self.UNDERLAY_FADE_IN_S, item.end_time)
        env = GainEnvelope(initial=0.0).hold(item.start_time, 0.0).ramp_to(fade_in_end, level)
        fade_out_start = item.end_time - settings.mix_duration
        if fade_out_start > fade_in_end:
            env.hold(fade_out_start, level)
        env.ramp_to(item.end_time, 0.0)
        return env

    def _item_envelope(
        self,
        items: Sequence[PlacementItem],
        index: int,
        settings: MixerSettings,
    ) -> GainEnvelope:
        item = items[index]
        prev = items[index - 1] if index > 0 else None
        nxt = items[index + 1] if index + 1 < len(items) else None

        base = item.normalization_gain
        ducked = base * (1.0 - settings.ducking_amount)
        env = GainEnvelope(initial=base)
        fade_in_end = item.start_time

        if item.is_talk_up_intro and prev is not None and prev.end_time > item.start_time:
            duck_end = prev.end_time
            ramp = min(settings.ramp_up_duration, item.playback_end - duck_end)
            ramp_end = duck_end + ramp
            env.hold(item.start_time, ducked).hold(duck_end, ducked)
            if ramp_end > duck_end:
                env.ramp_to(ramp_end, base)
            else:
                env.hold(duck_end, base)
                ramp_end = duck_end
            fade_in_end = ramp_end
        elif prev is not None and prev.kind is ClipKind.MUSIC and item.kind is ClipKind.MUSIC:
            fade_in_end = item.start_time + item.crossfade_duration
            env.hold(item.start_time, 0.0).ramp_to(fade_in_end, base)
        else:
            env.hold(item.start_time, base)

        if item.kind is ClipKind.MUSIC and nxt is not None and nxt.kind in (ClipKind.MUSIC, ClipKind.JINGLE):
            fade_out_start = max(fade_in_end, item.end_time - nxt.crossfade_duration)
            if item.end_time > fade_out_start:
                env.hold(fade_out_start, base).ramp_to(item.end_time, 0.0)
        elif nxt is None:
            fade = min(self.FINAL_FADE_OUT_S, item.playback_duration)
            actual_end = item.playback_end
            fade_out_start = max(fade_in_end, actual_end - fade)
            if fade > self.MIN_FINAL_FADE_S and actual_end > fade_out_start:
                env.hold(fade_out_start, base).ramp_to(actual_end, 0.0)
        return env

    # ---------- Scheduling ----------

    def _schedule(
        self,
        out: np.ndarray,
        buf: SampleBuffer,
        item: PlacementItem,
        envelope: GainEnvelope,
        sample_rate: int,
    ) -> int:
        start_n = int(round(item.start_time * sample_rate))
        stop_n = int(round(item.stop_time * sample_rate))
        offset_n = max(0, int(round(item.play_offset * sample_rate)))
        n = min(stop_n, len(out)) - start_n
        if n <= 0:
            return 0

        src = buf.as_stereo()
        if item.is_underlay:
            if len(src) == 0:
                return 0
            idx = (offset_n + np.arange(n)) % len(src)
            chunk = src[idx]
        else:
            chunk = src[offset_n : offset_n + n]
        if len(chunk) == 0:
            return 0

        gain = envelope.render_frames(start_n / sample_rate, len(chunk), sample_rate)
        out[start_n : start_n + len(chunk)] += chunk * gain[:, None]
        return int(len(chunk))

    def _normalize_peak(self, out: np.ndarray) -> tuple[float, float]:
        peak = float(np.max(np.abs(out))) if out.size else 0.0
        if peak > 0.0 and peak != 1.0:
            gain = self.OUTPUT_PEAK_TARGET / peak
            out *= np.float32(gain)
            return peak, float(gain)
        return peak, 1.0

    # ---------- Debug ----------

    def _record_timing(self, debug: dict[str, Any], label: str, start: float) -> None:
        elapsed = float(time.perf_counter() - start)
        timing = debug.setdefault("timing_s", {})
        timing[label] = elapsed
        if self.enable_timing_logs:
            self.logger.info("Render timing %s: %.3fs", label, elapsed)

    def _emit_render_debug(self, debug: dict[str, Any]) -> None:
        if self.enable_debug_logs:
            self.logger.info("Render debug payload: %s", debug.get("decisions", {}))


async def render_mix(
    layout: LayoutResult,
    decode_lookup: DecodeLookup,
    settings: MixerSettings,
    sample_rate: int,
    progress: ProgressSink | None = None,
    cancel_event: threading.Event | None = None,
) -> RenderResult:
    renderer = EnvelopeMixRenderer()
    return await renderer.render(
        layout,
        decode_lookup,
        settings,
        sample_rate,
        progress=progress,
        cancel_event=cancel_event,
    )
