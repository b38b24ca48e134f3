from __future__ import annotations

import math

import numpy as np

from podmix.models.sample_buffer import SampleBuffer

DEFAULT_TARGET_DB = -16.0


def rms_dbfs(buffer: SampleBuffer) -> float:
    """Average power across all channels in dBFS; -inf for true silence or an empty buffer."""
    y = buffer.samples
    if y.size == 0:
        return -math.inf
    sum_squares = float(np.sum(np.square(y, dtype=np.float64)))
    rms = math.sqrt(sum_squares / (buffer.frame_count * buffer.channel_count))
    if rms == 0.0 or not math.isfinite(rms):
        return -math.inf
    return 20.0 * math.log10(rms)


def normalization_gain(buffer: SampleBuffer, target_db: float = DEFAULT_TARGET_DB) -> float:
    # No ceiling: very quiet clips may receive large boosts.
    level_db = rms_dbfs(buffer)
    if not math.isfinite(level_db):
        return 1.0
    gain = 10.0 ** ((target_db - level_db) / 20.0)
    if not math.isfinite(gain):
        return 1.0
    return float(gain)
