"""Synthetic audio for tests."""

import io

import numpy as np
import soundfile as sf

from podmix.models.sample_buffer import SampleBuffer

TEST_SR = 8000


def tone(duration_s, sample_rate=TEST_SR, amplitude=0.5, freq=440.0, channels=2):
    n = int(round(duration_s * sample_rate))
    t = np.arange(n, dtype=np.float64) / sample_rate
    y = (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)
    return SampleBuffer(np.repeat(y[:, None], channels, axis=1), sample_rate)


def constant(duration_s, value, sample_rate=TEST_SR, channels=2):
    n = int(round(duration_s * sample_rate))
    return SampleBuffer(np.full((n, channels), value, dtype=np.float32), sample_rate)


def padded_tone(lead_s, body_s, tail_s, sample_rate=TEST_SR, amplitude=0.5):
    """Silence, then a tone, then silence."""
    body = tone(body_s, sample_rate, amplitude).samples
    lead = np.zeros((int(round(lead_s * sample_rate)), 2), dtype=np.float32)
    tail = np.zeros((int(round(tail_s * sample_rate)), 2), dtype=np.float32)
    return SampleBuffer(np.concatenate([lead, body, tail]), sample_rate)


def wav_bytes(buffer):
    bio = io.BytesIO()
    sf.write(bio, buffer.samples, buffer.sample_rate, format="WAV", subtype="FLOAT")
    return bio.getvalue()
