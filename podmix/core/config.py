from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    RENDER_SAMPLE_RATE: int = 44100

    # Mixer defaults; every entry point still takes an explicit MixerSettings.
    MIX_DURATION_S: float = 2.0
    DUCKING_AMOUNT: float = 0.7
    RAMP_UP_DURATION_S: float = 1.5
    UNDERLAY_VOLUME: float = 0.5
    TRIM_SILENCE_ENABLED: bool = True
    SILENCE_THRESHOLD_DB: float = -45.0
    NORMALIZE_CLIPS: bool = True
    NORMALIZE_OUTPUT: bool = True
    TARGET_LOUDNESS_DB: float = -16.0

    ENABLE_TIMING_LOGS: bool = False
    ENABLE_DEBUG_LOGS: bool = False


settings = Settings()
