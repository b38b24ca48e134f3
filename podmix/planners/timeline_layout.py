from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from functools import reduce

from podmix.models.clip import Clip, ClipKind
from podmix.models.placement import LayoutResult, PlacementItem
from podmix.schemas.mixer import MixerSettings

logger = logging.getLogger(__name__)


class OverlapRule(enum.Enum):
    NONE = "none"
    TALK_UP = "talk_up"
    CROSSFADE = "crossfade"


TRANSITION_RULES: dict[tuple[ClipKind, ClipKind], OverlapRule] = {
    (ClipKind.SPOKEN, ClipKind.MUSIC): OverlapRule.TALK_UP,
    (ClipKind.JINGLE, ClipKind.MUSIC): OverlapRule.TALK_UP,
    (ClipKind.MUSIC, ClipKind.MUSIC): OverlapRule.CROSSFADE,
}


def transition_rule(prev_kind: ClipKind | None, curr_kind: ClipKind) -> OverlapRule:
    if prev_kind is None:
        return OverlapRule.NONE
    return TRANSITION_RULES.get((prev_kind, curr_kind), OverlapRule.NONE)


def layout_timeline(
    clips: Sequence[Clip],
    underlay: Clip | None,
    settings: MixerSettings,
) -> LayoutResult:
    """
    Place every clip (and underlay segments) on the master timeline.

    Pure function of its inputs: the same clips and settings always give the
    same placements.
    """
    present = [c for c in clips if c.file_present]
    items: tuple[PlacementItem, ...] = reduce(
        lambda placed, clip: placed + (_place_clip(clip, placed[-1] if placed else None, settings),),
        present,
        (),
    )

    underlay_items: tuple[PlacementItem, ...] = ()
    if underlay is not None and underlay.file_present:
        underlay_items = _place_underlay(items, underlay, settings)

    total = 0.0
    if items:
        ends = [it.playback_end for it in items] + [u.end_time for u in underlay_items]
        total = max(0.0, *ends)

    logger.debug(
        "Laid out %d items and %d underlay segments, total %.3fs",
        len(items),
        len(underlay_items),
        total,
    )
    return LayoutResult(items=items, underlay_items=underlay_items, total_duration=float(total))


def _place_clip(clip: Clip, prev: PlacementItem | None, settings: MixerSettings) -> PlacementItem:
    smart_start, smart_end = clip.trim_window(settings.trim_silence_enabled)
    positioning = smart_end - smart_start
    playback = clip.duration_s - smart_start
    crossfade = settings.mix_duration if clip.crossfade_override is None else float(clip.crossfade_override)

    start = prev.end_time if prev is not None else 0.0
    is_talk_up = False

    rule = transition_rule(prev.kind if prev is not None else None, clip.kind)
    if rule is OverlapRule.TALK_UP and prev is not None:
        lead = clip.vocal_start_time if clip.vocal_start_time > 0 else settings.mix_duration
        # Never overlap past the start of the previous slot.
        start -= min(lead, prev.positioning_duration)
        is_talk_up = True
    elif rule is OverlapRule.CROSSFADE:
        start -= crossfade

    start = max(0.0, start)
    return PlacementItem(
        clip_id=clip.id,
        kind=clip.kind,
        start_time=start,
        end_time=start + positioning,
        play_offset=smart_start,
        playback_duration=playback,
        positioning_duration=positioning,
        is_talk_up_intro=is_talk_up,
        normalization_gain=clip.gain,
        crossfade_duration=crossfade,
    )


def _place_underlay(
    items: Sequence[PlacementItem],
    underlay: Clip,
    settings: MixerSettings,
) -> tuple[PlacementItem, ...]:
    music = [it for it in items if it.kind is ClipKind.MUSIC]
    offset, _ = underlay.trim_window(settings.trim_silence_enabled)
    out: list[PlacementItem] = []
    for a, b in zip(music, music[1:]):
        gap_start = a.end_time
        gap_end = b.start_time
        if gap_end <= gap_start:
            continue
        # The extra mix_duration lets the bed fade out under the next music's fade-in.
        end = gap_end + settings.mix_duration
        out.append(
            PlacementItem(
                clip_id=underlay.id,
                kind=ClipKind.MUSIC,
                start_time=gap_start,
                end_time=end,
                play_offset=offset,
                playback_duration=end - gap_start,
                positioning_duration=gap_end - gap_start,
                is_underlay=True,
                normalization_gain=underlay.gain,
                crossfade_duration=settings.mix_duration,
            )
        )
    return tuple(out)
