from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from podmix.analyzers.boundary_detector import detect_boundaries
from podmix.analyzers.loudness_analyzer import normalization_gain
from podmix.models.clip import ClipAnalysis
from podmix.models.sample_buffer import SampleBuffer
from podmix.schemas.mixer import MixerSettings

logger = logging.getLogger(__name__)


def analyze_clip(buffer: SampleBuffer, settings: MixerSettings) -> ClipAnalysis:
    """
    Compute trim points and a normalization gain for one decoded clip.

    Disabled features come back as None. Failures degrade to the full window and unity gain.
    """
    trim_start: float | None = None
    trim_end: float | None = None
    gain: float | None = None

    if settings.trim_silence_enabled:
        trim_start, trim_end = detect_boundaries(buffer, settings.silence_threshold_db)

    if settings.normalize_clips:
        try:
            gain = normalization_gain(buffer, settings.target_loudness_db)
        except Exception as exc:
            logger.warning("Loudness analysis failed; using unity gain: %s", exc)
            gain = 1.0

    return ClipAnalysis(
        smart_trim_start=trim_start,
        smart_trim_end=trim_end,
        normalization_gain=gain,
    )


class ClipAnalyzer:
    """
    Runs analyze_clip off the event loop. Each clip only reads its own buffer,
    so several analyses can run concurrently.
    """

    def __init__(self, *, enable_timing_logs: bool = False) -> None:
        self.enable_timing_logs = enable_timing_logs
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def analyze(self, clip_id: str, buffer: SampleBuffer, settings: MixerSettings) -> ClipAnalysis:
        return await asyncio.to_thread(self._analyze_sync, clip_id, buffer, settings)

    def _analyze_sync(self, clip_id: str, buffer: SampleBuffer, settings: MixerSettings) -> ClipAnalysis:
        debug: dict[str, Any] = {"timing_s": {}}
        step_start = time.perf_counter()
        result = analyze_clip(buffer, settings)
        self._record_timing(debug, "analyze_clip", step_start)
        self.logger.debug(
            "Analyzed clip %s: trim=(%s, %s) gain=%s",
            clip_id,
            result.smart_trim_start,
            result.smart_trim_end,
            result.normalization_gain,
        )
        return result

    def _record_timing(self, debug: dict[str, Any], label: str, start: float) -> None:
        elapsed = float(time.perf_counter() - start)
        timing = debug.setdefault("timing_s", {})
        timing[label] = elapsed
        if self.enable_timing_logs:
            self.logger.info("Analysis timing %s: %.3fs", label, elapsed)
