from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import replace

from podmix.analyzers.clip_analyzer import ClipAnalyzer
from podmix.core.config import settings as app_settings
from podmix.core.errors import DecodeFailure, EmptyTimeline, PodmixError, RenderFailure, RenderInProgress
from podmix.models.clip import Clip, ClipAnalysis, ClipKind
from podmix.models.placement import LayoutResult, PlacementItem
from podmix.models.sample_buffer import SampleBuffer
from podmix.planners.timeline_layout import layout_timeline
from podmix.renderers.mix_renderer import EnvelopeMixRenderer, MixRenderer, ProgressSink, RenderResult
from podmix.schemas.layout import LayoutOut, PlacementOut
from podmix.schemas.mixer import MixerSettings
from podmix.services.decode_cache import DecodeCache
from podmix.services.decoder import AudioDecoder, SoundFileDecoder

UNDERLAY_ID_PREFIX = "underlay-"


def placement_to_schema(item: PlacementItem) -> PlacementOut:
    return PlacementOut(
        clip_id=item.clip_id,
        kind=item.kind.value,
        start_time=item.start_time,
        end_time=item.end_time,
        play_offset=item.play_offset,
        playback_duration=item.playback_duration,
        is_talk_up_intro=item.is_talk_up_intro,
        is_underlay=item.is_underlay,
    )


def layout_to_schema(layout: LayoutResult) -> LayoutOut:
    return LayoutOut(
        total_duration=layout.total_duration,
        items=[placement_to_schema(i) for i in layout.items],
        underlay_items=[placement_to_schema(i) for i in layout.underlay_items],
    )


class MixService:
    """
    One project: the ordered clip list, the optional underlay, their source bytes,
    the decode cache and the render guard.
    """

    def __init__(
        self,
        *,
        decoder: AudioDecoder | None = None,
        renderer: MixRenderer | None = None,
        analyzer: ClipAnalyzer | None = None,
        analysis_sample_rate: int | None = None,
    ):
        self.decoder = decoder or SoundFileDecoder()
        self.renderer = renderer or EnvelopeMixRenderer(
            enable_timing_logs=app_settings.ENABLE_TIMING_LOGS,
            enable_debug_logs=app_settings.ENABLE_DEBUG_LOGS,
        )
        self.analyzer = analyzer or ClipAnalyzer(enable_timing_logs=app_settings.ENABLE_TIMING_LOGS)
        self.analysis_sample_rate = int(analysis_sample_rate or app_settings.RENDER_SAMPLE_RATE)
        self.cache = DecodeCache()

        self._clips: list[Clip] = []
        self._underlay: Clip | None = None
        self._sources: dict[str, bytes] = {}
        # Bumped whenever a clip id's audio is replaced or dropped; stale decodes and analyses are discarded.
        self._generations: dict[str, int] = {}
        self._render_lock = asyncio.Lock()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    # ---------- project state ----------

    @property
    def clips(self) -> tuple[Clip, ...]:
        return tuple(self._clips)

    @property
    def underlay(self) -> Clip | None:
        return self._underlay

    @property
    def is_rendering(self) -> bool:
        return self._render_lock.locked()

    async def add_clip(
        self,
        data: bytes,
        kind: ClipKind | str,
        *,
        name: str = "",
        vocal_start_time: float = 0.0,
        clip_id: str | None = None,
    ) -> Clip:
        """Import a clip. Only the duration is read now; decoding is deferred to analysis/render."""
        clip_id = clip_id or uuid.uuid4().hex
        if clip_id in self._sources or any(c.id == clip_id for c in self._clips):
            raise ValueError(f"clip id already in project: {clip_id}")
        duration = await self._probe(clip_id, data)
        clip = Clip.create(
            kind,
            duration,
            id=clip_id,
            name=name,
            vocal_start_time=self._checked_vocal_start(vocal_start_time, duration),
        )
        self._sources[clip.id] = data
        self._clips.append(clip)
        self.logger.info("Added %s clip %s (%.2fs)", clip.kind.value, clip.id, duration)
        return clip

    def restore_clip(self, clip: Clip) -> Clip:
        """Add a clip from persisted metadata. Without source audio it stays out of the layout until relinked."""
        if any(c.id == clip.id for c in self._clips):
            raise ValueError(f"clip id already in project: {clip.id}")
        restored = replace(clip, file_present=False)
        self._clips.append(restored)
        return restored

    async def relink_clip(self, clip_id: str, data: bytes) -> Clip:
        self._index_of(clip_id)
        duration = await self._probe(clip_id, data)
        self._bump_generation(clip_id)
        self.cache.evict(clip_id)
        self._sources[clip_id] = data
        index = self._index_of(clip_id)
        clip = self._clips[index]
        relinked = replace(
            clip,
            duration_s=duration,
            file_present=True,
            vocal_start_time=min(clip.vocal_start_time, duration),
            smart_trim_start=None,
            smart_trim_end=None,
            normalization_gain=None,
        )
        self._clips[index] = relinked
        return relinked

    async def set_underlay(self, data: bytes, *, name: str = "") -> Clip:
        clip_id = f"{UNDERLAY_ID_PREFIX}{uuid.uuid4().hex}"
        duration = await self._probe(clip_id, data)
        self.remove_underlay()
        self._sources[clip_id] = data
        self._underlay = Clip.create(ClipKind.MUSIC, duration, id=clip_id, name=name)
        return self._underlay

    def remove_underlay(self) -> None:
        if self._underlay is None:
            return
        self._forget(self._underlay.id)
        self._underlay = None

    def remove_clip(self, clip_id: str) -> None:
        index = self._index_of(clip_id)
        del self._clips[index]
        self._forget(clip_id)
        self.logger.info("Removed clip %s", clip_id)

    def move_clip(self, from_index: int, to_index: int) -> None:
        if not (0 <= from_index < len(self._clips)) or not (0 <= to_index < len(self._clips)):
            raise IndexError(f"cannot move clip {from_index} -> {to_index} in a list of {len(self._clips)}")
        clip = self._clips.pop(from_index)
        self._clips.insert(to_index, clip)

    def reorder(self, clip_ids: list[str]) -> None:
        by_id = {c.id: c for c in self._clips}
        if sorted(clip_ids) != sorted(by_id):
            raise ValueError("reorder must list every clip id exactly once")
        self._clips = [by_id[cid] for cid in clip_ids]

    def set_vocal_start_time(self, clip_id: str, seconds: float) -> Clip:
        index = self._index_of(clip_id)
        clip = self._clips[index]
        updated = replace(clip, vocal_start_time=self._checked_vocal_start(seconds, clip.duration_s))
        self._clips[index] = updated
        return updated

    # ---------- analysis / layout ----------

    async def analyze_all(self, settings: MixerSettings) -> list[DecodeFailure]:
        """
        Re-run boundary and loudness analysis for every clip with audio, concurrently.

        Clips that fail to decode keep their previous state and are returned as failures.
        """
        targets = [c for c in self._clips if c.file_present]
        if self._underlay is not None and self._underlay.file_present:
            targets.append(self._underlay)

        outcomes = await asyncio.gather(*(self._analyze_one(c, settings) for c in targets))

        failures: list[DecodeFailure] = []
        updates: dict[str, ClipAnalysis] = {}
        for clip, (generation, outcome) in zip(targets, outcomes):
            if isinstance(outcome, DecodeFailure):
                failures.append(outcome)
            elif generation != self._generation(clip.id):
                self.logger.debug("Dropping analysis of clip %s: audio changed while it ran", clip.id)
            else:
                updates[clip.id] = outcome

        # Clips removed or relinked while analysis was running are not updated.
        self._clips = [c.with_analysis(updates[c.id]) if c.id in updates else c for c in self._clips]
        if self._underlay is not None and self._underlay.id in updates:
            self._underlay = self._underlay.with_analysis(updates[self._underlay.id])
        return failures

    def layout(self, settings: MixerSettings) -> LayoutResult:
        return layout_timeline(self._clips, self._underlay, settings)

    # ---------- render ----------

    async def render(
        self,
        settings: MixerSettings,
        sample_rate: int | None = None,
        *,
        progress: ProgressSink | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RenderResult:
        """Render the whole project. Only one render may run at a time; a second caller gets RenderInProgress."""
        if self._render_lock.locked():
            raise RenderInProgress("a render is already running for this project")

        sr = int(sample_rate or app_settings.RENDER_SAMPLE_RATE)
        async with self._render_lock:
            try:
                layout = self.layout(settings)
            except PodmixError:
                raise
            except Exception as exc:
                raise RenderFailure("layout", str(exc)) from exc
            if layout.total_duration <= 0:
                raise EmptyTimeline(layout.total_duration)

            clip_ids = list(dict.fromkeys(i.clip_id for i in (*layout.items, *layout.underlay_items)))
            try:
                outcomes = await asyncio.gather(*(self._decode_or_failure(cid, sr) for cid in clip_ids))
            except PodmixError:
                raise
            except Exception as exc:
                raise RenderFailure("decode", str(exc)) from exc
            for outcome in outcomes:
                if isinstance(outcome, DecodeFailure):
                    self.logger.warning("Excluding clip from render: %s", outcome)

            try:
                result = await self.renderer.render(
                    layout,
                    self.cache.lookup(sr),
                    settings,
                    sr,
                    progress=progress,
                    cancel_event=cancel_event,
                )
            except PodmixError:
                raise
            except Exception as exc:
                raise RenderFailure("mix", str(exc)) from exc

        self.logger.info(
            "Rendered %d items (%d skipped) into %d ms at %d Hz",
            len(layout.items) + len(layout.underlay_items),
            len(result.skipped_clip_ids),
            result.length_ms,
            sr,
        )
        return result

    # ---------- internals ----------

    async def _analyze_one(
        self, clip: Clip, settings: MixerSettings
    ) -> tuple[int, ClipAnalysis | DecodeFailure]:
        generation = self._generation(clip.id)
        try:
            buffer = await self._decode(clip.id, self.analysis_sample_rate)
        except DecodeFailure as exc:
            self.logger.warning("Skipping analysis of clip %s: %s", clip.id, exc.reason)
            return generation, exc
        except Exception as exc:
            self.logger.warning("Skipping analysis of clip %s: %s", clip.id, exc)
            return generation, DecodeFailure(clip.id, str(exc))
        return generation, await self.analyzer.analyze(clip.id, buffer, settings)

    async def _decode_or_failure(self, clip_id: str, sample_rate: int) -> SampleBuffer | DecodeFailure:
        try:
            return await self._decode(clip_id, sample_rate)
        except DecodeFailure as exc:
            return exc

    async def _decode(self, clip_id: str, sample_rate: int) -> SampleBuffer:
        data = self._sources.get(clip_id)
        if data is None:
            raise DecodeFailure(clip_id, "no source audio attached")
        generation = self._generation(clip_id)
        return await asyncio.to_thread(
            self.cache.get_or_insert,
            clip_id,
            sample_rate,
            lambda: self._decode_source(clip_id, data, sample_rate),
            is_current=lambda: self._generation(clip_id) == generation,
        )

    def _decode_source(self, clip_id: str, data: bytes, sample_rate: int) -> SampleBuffer:
        try:
            return self.decoder.decode(data, sample_rate)
        except DecodeFailure as exc:
            raise DecodeFailure(clip_id, exc.reason) from exc

    async def _probe(self, clip_id: str, data: bytes) -> float:
        try:
            return await asyncio.to_thread(self.decoder.probe_duration, data)
        except DecodeFailure as exc:
            raise DecodeFailure(clip_id, exc.reason) from exc

    def _forget(self, clip_id: str) -> None:
        self._bump_generation(clip_id)
        self._sources.pop(clip_id, None)
        self.cache.evict(clip_id)

    def _generation(self, clip_id: str) -> int:
        return self._generations.get(clip_id, 0)

    def _bump_generation(self, clip_id: str) -> None:
        self._generations[clip_id] = self._generation(clip_id) + 1

    def _index_of(self, clip_id: str) -> int:
        for i, c in enumerate(self._clips):
            if c.id == clip_id:
                return i
        raise KeyError(f"clip not found: {clip_id}")

    def _checked_vocal_start(self, seconds: float, duration: float) -> float:
        if seconds < 0:
            raise ValueError(f"vocal start time must be >= 0, got {seconds}")
        return min(float(seconds), float(duration))
