from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, replace


class ClipKind(str, enum.Enum):
    MUSIC = "music"
    SPOKEN = "spoken"
    JINGLE = "jingle"


@dataclass(frozen=True)
class ClipAnalysis:
    """Result of analyze_clip. A None field means "not computed" and clears any previous value."""

    smart_trim_start: float | None = None
    smart_trim_end: float | None = None
    normalization_gain: float | None = None


@dataclass(frozen=True)
class Clip:
    """
    One imported audio item.

    The decoded samples are owned by the DecodeCache; `id` is the lookup key.
    `crossfade_override` replaces the mixer crossfade window when this clip
    enters after music. It is None unless a caller opts in.
    """
    id: str
    kind: ClipKind
    duration_s: float
    name: str = ""
    vocal_start_time: float = 0.0
    smart_trim_start: float | None = None
    smart_trim_end: float | None = None
    normalization_gain: float | None = None
    file_present: bool = True
    crossfade_override: float | None = None

    @classmethod
    def create(cls, kind: ClipKind | str, duration_s: float, **kwargs) -> "Clip":
        clip_id = kwargs.pop("id", None) or uuid.uuid4().hex
        return cls(id=clip_id, kind=ClipKind(kind), duration_s=float(duration_s), **kwargs)

    @property
    def gain(self) -> float:
        return 1.0 if self.normalization_gain is None else float(self.normalization_gain)

    def trim_window(self, trim_enabled: bool) -> tuple[float, float]:
        if (
            trim_enabled
            and self.smart_trim_start is not None
            and self.smart_trim_end is not None
            and 0.0 <= self.smart_trim_start < self.smart_trim_end <= self.duration_s
        ):
            return float(self.smart_trim_start), float(self.smart_trim_end)
        return 0.0, float(self.duration_s)

    def with_analysis(self, analysis: ClipAnalysis) -> "Clip":
        return replace(
            self,
            smart_trim_start=analysis.smart_trim_start,
            smart_trim_end=analysis.smart_trim_end,
            normalization_gain=analysis.normalization_gain,
        )
