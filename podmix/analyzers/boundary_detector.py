from __future__ import annotations

import logging
import math

import numpy as np

from podmix.models.sample_buffer import SampleBuffer

logger = logging.getLogger(__name__)

SILENCE_WINDOW_S = 0.1
MIN_THRESHOLD_DB = -80.0
MAX_THRESHOLD_DB = -6.0
TIME_PRECISION = 4


def db_to_amplitude(db: float) -> float:
    return float(10.0 ** (db / 20.0))


def detect_boundaries(buffer: SampleBuffer, threshold_db: float) -> tuple[float, float]:
    """
    Find where audible content starts and ends in a clip.

    Scans channel 0 in 100 ms blocks from the front and from the back. The first
    block that is not entirely below the threshold is searched sample by sample.

    Returns (smart_trim_start, smart_trim_end) in seconds. Never raises; a silent,
    empty or unreadable clip yields the full window (0, duration).
    """
    duration_s = buffer.duration_s
    try:
        bounds = _scan(buffer, threshold_db)
    except Exception as exc:
        logger.warning("Boundary scan failed; using full clip window: %s", exc)
        return 0.0, duration_s

    if bounds is None:
        return 0.0, duration_s

    start_s = min(max(0.0, round(bounds[0], TIME_PRECISION)), duration_s)
    end_s = min(max(0.0, round(bounds[1], TIME_PRECISION)), duration_s)
    if not (end_s > start_s):
        return 0.0, duration_s
    return start_s, end_s


def _scan(buffer: SampleBuffer, threshold_db: float) -> tuple[float, float] | None:
    if buffer.frame_count == 0 or buffer.channel_count == 0:
        return None

    threshold_db = float(np.clip(threshold_db, MIN_THRESHOLD_DB, MAX_THRESHOLD_DB))
    amp = db_to_amplitude(threshold_db)
    sr = buffer.sample_rate
    block = max(1, int(round(SILENCE_WINDOW_S * sr)))

    loud = np.abs(buffer.channel(0)) >= amp
    n = len(loud)
    n_blocks = int(math.ceil(n / block))

    first_sample: int | None = None
    for b in range(n_blocks):
        lo = b * block
        seg = loud[lo : min(n, lo + block)]
        if seg.any():
            first_sample = lo + int(np.argmax(seg))
            break
    if first_sample is None:
        return None

    last_sample: int | None = None
    for b in range(n_blocks - 1, -1, -1):
        lo = b * block
        seg = loud[lo : min(n, lo + block)]
        if seg.any():
            last_sample = lo + (len(seg) - 1 - int(np.argmax(seg[::-1])))
            break
    if last_sample is None:
        return None

    return first_sample / sr, (last_sample + 1) / sr
