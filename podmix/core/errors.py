from __future__ import annotations


class PodmixError(Exception):
    """Base class for every error raised by the mixing core."""


class DecodeFailure(PodmixError):
    """A single clip could not be decoded. Recoverable: the clip is skipped or flagged."""

    def __init__(self, clip_id: str | None, reason: str):
        self.clip_id = clip_id
        self.reason = reason
        label = clip_id if clip_id is not None else "<unknown clip>"
        super().__init__(f"failed to decode {label}: {reason}")


class RenderFailure(PodmixError):
    """
    A render attempt failed.

    stage: where it failed ("decode", "layout" or "mix"), so callers can show
    a meaningful message. Render failures are never retried automatically.
    """

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"render failed during {stage}: {message}")


class EmptyTimeline(RenderFailure):
    def __init__(self, total_duration: float):
        self.total_duration = total_duration
        super().__init__("layout", f"mix duration is zero or negative ({total_duration:.3f}s)")


class MissingSampleData(RenderFailure):
    def __init__(self, clip_ids: list[str]):
        self.clip_ids = list(clip_ids)
        super().__init__("mix", f"no sample data for clips: {', '.join(self.clip_ids)}")


class RenderCancelled(RenderFailure):
    def __init__(self, scheduled: int, total: int):
        self.scheduled = scheduled
        self.total = total
        super().__init__("mix", f"cancelled after scheduling {scheduled}/{total} items")


class RenderInProgress(PodmixError):
    """A render is already running for this project."""
