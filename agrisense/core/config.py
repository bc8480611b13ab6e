"""
Application configuration via pydantic-settings.

Loads values from .env file with sensible defaults for local development.
Use ``get_settings()`` to obtain the cached singleton instance.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """AgriSense acquisition-core settings loaded from environment / .env file.

    All settings can be overridden via environment variables or a `.env` file.
    Field names map directly to env var names (case-insensitive).

    Attributes:
        geocoding_base_url: Root URL of the Nominatim-compatible geocoding API.
        geocoding_user_agent: Client label sent with every geocoding request.
        whisper_model: faster-whisper model size used by the offline backend.
        audio_flush_interval: Seconds of audio per buffered recording chunk.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore unrecognized env vars
    )

    # --- Geocoding ---
    # Public Nominatim instance; its usage policy requires an identifying User-Agent
    geocoding_base_url: str = "https://nominatim.openstreetmap.org"
    geocoding_user_agent: str = "IFC-Farmers-Club/1.0"
    geocoding_country_code: str = "in"
    geocoding_limit: int = 5
    geocoding_timeout: float = 10.0  # Seconds per request, no retries

    # --- Map ---
    # Default viewport is centred on Kerala, India
    map_default_latitude: float = 10.8505
    map_default_longitude: float = 76.2711
    map_default_zoom: int = 10
    map_tile_url: str = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
    map_tile_attribution: str = (
        '&copy; <a href="https://www.openstreetmap.org/copyright">OpenStreetMap</a> contributors'
    )
    map_min_zoom: int = 3
    map_max_zoom: int = 19
    map_fit_padding: float = 0.1  # Fraction of the marker span added on each side
    map_search_zoom: int = 13
    map_focus_zoom: int = 15

    # --- Geolocation ---
    geolocation_high_accuracy: bool = True
    geolocation_timeout: float = 10.0
    geolocation_maximum_age: float = 600.0  # Reuse a cached fix younger than this

    # --- Offline Whisper STT ---
    whisper_model: str = "small"  # Model size: tiny, base, small, medium, large-v3
    whisper_device: str = "cpu"
    whisper_compute_type: str = "int8"
    whisper_window_seconds: float = 30.0
    whisper_overlap_seconds: float = 5.0
    whisper_beam_size: int = 5
    whisper_preload: bool = True  # Start loading the model when the controller is created

    # --- Audio capture ---
    audio_sample_rate: int = 16000
    audio_channels: int = 1
    audio_flush_interval: float = 1.0
    audio_echo_cancellation: bool = True
    audio_noise_suppression: bool = True
    audio_device: str | None = None  # sounddevice device name or index; None = default input

    # --- Streaming recognition ---
    streaming_max_alternatives: int = 3
    streaming_interim_confidence: float = 0.7
    streaming_final_confidence: float = 0.8  # Used when the engine reports no confidence
    streaming_listen_timeout: float = 5.0
    streaming_phrase_time_limit: float = 15.0
    streaming_stop_timeout: float = 30.0  # Wait for the engine to release the microphone after stop


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.
    Subsequent calls return the same ``Settings`` instance.

    Returns:
        Settings: The application-wide configuration object.
    """
    return Settings()
