from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from podmix.models.sample_buffer import SampleBuffer

CacheKey = tuple[str, int]


class DecodeCache:
    """
    Decoded sample buffers keyed by (clip_id, sample_rate).

    A buffer decoded at one rate is never handed out for another rate. Entries
    live until evicted; the owning service evicts a clip when it is deleted.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, SampleBuffer] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def get(self, clip_id: str, sample_rate: int) -> SampleBuffer | None:
        with self._lock:
            return self._entries.get((clip_id, int(sample_rate)))

    def get_or_insert(
        self,
        clip_id: str,
        sample_rate: int,
        factory: Callable[[], SampleBuffer],
        *,
        is_current: Callable[[], bool] | None = None,
    ) -> SampleBuffer:
        """
        Return the cached buffer, or decode it with `factory` and cache it.

        When `is_current` returns False after decoding, the source changed meanwhile:
        the buffer is returned to the caller but not cached.
        """
        key = (clip_id, int(sample_rate))
        with self._lock:
            cached = self._entries.get(key)
        if cached is not None:
            return cached

        # Decode outside the lock; concurrent misses for the same key keep the first insert.
        buffer = factory()
        if buffer.sample_rate != key[1]:
            raise ValueError(
                f"decoder returned {buffer.sample_rate} Hz for clip {clip_id}, expected {key[1]} Hz"
            )
        with self._lock:
            if is_current is not None and not is_current():
                self.logger.debug("Not caching clip %s at %d Hz: source replaced during decode", clip_id, key[1])
                return buffer
            existing = self._entries.setdefault(key, buffer)
        self.logger.debug("Cached clip %s at %d Hz (%d frames)", clip_id, key[1], existing.frame_count)
        return existing

    def evict(self, clip_id: str, sample_rate: int | None = None) -> int:
        """Drop one rate, or every rate when sample_rate is None. Returns the number of entries removed."""
        with self._lock:
            if sample_rate is not None:
                return 1 if self._entries.pop((clip_id, int(sample_rate)), None) is not None else 0
            keys = [k for k in self._entries if k[0] == clip_id]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def lookup(self, sample_rate: int) -> Callable[[str], SampleBuffer | None]:
        rate = int(sample_rate)
        return lambda clip_id: self.get(clip_id, rate)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
