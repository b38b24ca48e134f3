from __future__ import annotations

from dataclasses import dataclass

from podmix.models.clip import ClipKind


@dataclass(frozen=True)
class PlacementItem:
    """
    One clip's position on the master timeline.

    end_time is the positioning end (where the next slot begins); the audio may keep
    playing past it for playback_duration seconds from start_time.
    """
    clip_id: str
    kind: ClipKind
    start_time: float
    end_time: float
    play_offset: float
    playback_duration: float
    positioning_duration: float
    is_talk_up_intro: bool = False
    is_underlay: bool = False
    normalization_gain: float = 1.0
    crossfade_duration: float = 0.0

    @property
    def playback_end(self) -> float:
        return self.start_time + self.playback_duration

    @property
    def stop_time(self) -> float:
        return self.end_time if self.is_underlay else self.playback_end


@dataclass(frozen=True)
class LayoutResult:
    items: tuple[PlacementItem, ...]
    underlay_items: tuple[PlacementItem, ...]
    total_duration: float

    @property
    def is_empty(self) -> bool:
        return not self.items
