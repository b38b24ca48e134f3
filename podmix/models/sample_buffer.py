from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class SampleBuffer:
    """
    Decoded audio.

    samples: float32 array shaped (frames, channels), as soundfile returns it with always_2d=True
    sample_rate: frames per second
    """
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        arr = np.asarray(self.samples, dtype=np.float32)
        if arr.ndim == 1:
            arr = arr[:, None]
        if arr.ndim != 2:
            raise ValueError(f"samples must be 1-D or 2-D, got shape {arr.shape}")
        if int(self.sample_rate) <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        object.__setattr__(self, "samples", arr)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channel_count(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration_s(self) -> float:
        return self.frame_count / float(self.sample_rate)

    def channel(self, index: int) -> np.ndarray:
        return self.samples[:, index]

    def as_stereo(self) -> np.ndarray:
        # Mono is duplicated, anything past two channels is dropped.
        y = self.samples
        if y.shape[1] == 1:
            return np.repeat(y, 2, axis=1)
        if y.shape[1] > 2:
            return y[:, :2]
        return y

    @classmethod
    def silence(cls, duration_s: float, sample_rate: int, channels: int = 2) -> "SampleBuffer":
        frames = max(0, int(round(duration_s * sample_rate)))
        return cls(np.zeros((frames, channels), dtype=np.float32), sample_rate)
