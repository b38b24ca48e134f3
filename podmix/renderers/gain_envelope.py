from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True)
class _Breakpoint:
    time: float
    gain: float
    ramp: bool


@dataclass
class GainEnvelope:
    """
    Gain automation for one placed item.

    hold(t, g) steps to g at t and keeps it; ramp_to(t, g) moves linearly from the
    previous breakpoint to g, reaching it at t. Between breakpoints the last value
    is held. Breakpoints must be added in non-decreasing time order.
    """
    initial: float = 0.0
    points: list[_Breakpoint] = field(default_factory=list)

    def hold(self, time: float, gain: float) -> "GainEnvelope":
        self._append(_Breakpoint(float(time), float(gain), ramp=False))
        return self

    def ramp_to(self, time: float, gain: float) -> "GainEnvelope":
        self._append(_Breakpoint(float(time), float(gain), ramp=True))
        return self

    def _append(self, bp: _Breakpoint) -> None:
        if self.points and bp.time < self.points[-1].time:
            raise ValueError(
                f"breakpoint at {bp.time:.6f}s precedes previous breakpoint at {self.points[-1].time:.6f}s"
            )
        self.points.append(bp)

    def value_at(self, time: float) -> float:
        return float(self.render(np.asarray([time], dtype=np.float64))[0])

    def render(self, times: np.ndarray) -> np.ndarray:
        """Evaluate the envelope at each (sorted) time in seconds."""
        t = np.asarray(times, dtype=np.float64)
        out = np.full(t.shape, self.initial, dtype=np.float64)
        prev_time: float | None = None
        prev_gain = float(self.initial)
        for bp in self.points:
            at = int(np.searchsorted(t, bp.time, side="left"))
            if bp.ramp and prev_time is not None and bp.time > prev_time:
                lo = int(np.searchsorted(t, prev_time, side="left"))
                if at > lo:
                    frac = (t[lo:at] - prev_time) / (bp.time - prev_time)
                    out[lo:at] = prev_gain + (bp.gain - prev_gain) * frac
            out[at:] = bp.gain
            prev_time, prev_gain = bp.time, bp.gain
        return out

    def render_frames(self, start_time: float, n_frames: int, sample_rate: int) -> np.ndarray:
        times = start_time + np.arange(n_frames, dtype=np.float64) / float(sample_rate)
        return self.render(times).astype(np.float32)
