from __future__ import annotations

import importlib.util
import io
import logging
import math
from typing import Protocol, cast

import librosa
import numpy as np
import soundfile as sf
from scipy.signal import resample_poly

from podmix.core.errors import DecodeFailure
from podmix.models.sample_buffer import SampleBuffer


class AudioDecoder(Protocol):
    def decode(self, data: bytes, sample_rate: int) -> SampleBuffer:
        ...

    def probe_duration(self, data: bytes) -> float:
        ...


class SoundFileDecoder:
    """
    Decodes encoded audio bytes with soundfile and resamples to the requested rate with librosa.

    Raises DecodeFailure when the bytes cannot be read.
    """

    def __init__(self, *, resample_res_type: str | None = None) -> None:
        # Prefer SoXR (C-accelerated) when available; fallback to resampy (kaiser_fast).
        if resample_res_type:
            self.resample_res_type = str(resample_res_type)
        else:
            self.resample_res_type = (
                "soxr_hq" if importlib.util.find_spec("soxr") is not None else "kaiser_fast"
            )
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def probe_duration(self, data: bytes) -> float:
        try:
            info = sf.info(io.BytesIO(data))
        except Exception as exc:
            raise DecodeFailure(None, str(exc)) from exc
        if info.samplerate <= 0:
            raise DecodeFailure(None, "stream reports no sample rate")
        return float(info.frames) / float(info.samplerate)

    def decode(self, data: bytes, sample_rate: int) -> SampleBuffer:
        try:
            y, sr = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
        except Exception as exc:
            raise DecodeFailure(None, str(exc)) from exc

        y = cast(np.ndarray, y)
        sr = int(sr)
        if sr == int(sample_rate) or y.size == 0:
            return SampleBuffer(y, int(sample_rate))

        try:
            # Channels-first for librosa; all channels in one call stay aligned.
            resampled = self._resample_channels(y.T, orig_sr=sr, target_sr=int(sample_rate))
        except Exception as exc:
            raise DecodeFailure(None, f"resample {sr} -> {sample_rate} Hz failed: {exc}") from exc
        return SampleBuffer(resampled.T, int(sample_rate))

    def _resample_channels(self, channels: np.ndarray, *, orig_sr: int, target_sr: int) -> np.ndarray:
        """Resample a (channels, frames) array. Tries librosa backends in order, then scipy."""
        backends = list(dict.fromkeys([self.resample_res_type, "soxr_hq", "kaiser_fast"]))
        missing: ModuleNotFoundError | None = None
        for res_type in backends:
            try:
                out = librosa.resample(channels, orig_sr=orig_sr, target_sr=target_sr, res_type=res_type)
            except ModuleNotFoundError as exc:
                # soxr / resampy are optional extras of librosa.
                if "soxr" not in str(exc) and "resampy" not in str(exc):
                    raise
                missing = exc
                continue
            return np.asarray(out, dtype=np.float32)

        self.logger.warning("No librosa resampler available (%s); using scipy resample_poly", missing)
        g = math.gcd(orig_sr, target_sr)
        out = resample_poly(channels, target_sr // g, orig_sr // g, axis=-1)
        return np.asarray(out, dtype=np.float32)
