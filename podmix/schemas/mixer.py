from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from podmix.core.config import Settings


class MixerSettings(BaseModel):
    """Mixer parameters, passed by value into every layout / analysis / render call."""

    model_config = ConfigDict(frozen=True)

    mix_duration: float = Field(2.0, ge=0.0, le=30.0)
    ducking_amount: float = Field(0.7, ge=0.0, le=1.0)
    ramp_up_duration: float = Field(1.5, ge=0.0, le=30.0)
    underlay_volume: float = Field(0.5, ge=0.0, le=1.0)
    trim_silence_enabled: bool = True
    silence_threshold_db: float = Field(-45.0, ge=-120.0, le=0.0)
    normalize_clips: bool = True
    normalize_output: bool = True
    target_loudness_db: float = Field(-16.0, ge=-60.0, le=0.0)
    strict_missing_samples: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "MixerSettings":
        return cls(
            mix_duration=s.MIX_DURATION_S,
            ducking_amount=s.DUCKING_AMOUNT,
            ramp_up_duration=s.RAMP_UP_DURATION_S,
            underlay_volume=s.UNDERLAY_VOLUME,
            trim_silence_enabled=s.TRIM_SILENCE_ENABLED,
            silence_threshold_db=s.SILENCE_THRESHOLD_DB,
            normalize_clips=s.NORMALIZE_CLIPS,
            normalize_output=s.NORMALIZE_OUTPUT,
            target_loudness_db=s.TARGET_LOUDNESS_DB,
        )
