"""
Runtime settings for the relay.

Settings are read from environment variables (a ``.env`` file is loaded by the
entry points when present) into a pydantic model so that every component receives
validated values instead of reading ``os.environ`` on its own.
"""

import os
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field

from voice_relay.config.constants import (
    DEEPGRAM_STT_URL,
    DEEPGRAM_TTS_URL,
    DEFAULT_HF_API_URL,
    DEFAULT_HF_MODEL,
    DEFAULT_MAX_SESSIONS,
    DEFAULT_STT_LANGUAGE,
    DEFAULT_STT_MODEL,
    TTS_SAMPLE_RATE,
)


@dataclass(frozen=True)
class SessionTimings:
    """Fixed delays used by a voice session, in seconds."""

    greeting_delay: float = 0.5
    speak_retry_delay: float = 1.0
    flush_delay: float = 0.1
    end_call_delay: float = 3.0


DEFAULT_TIMINGS = SessionTimings()


class SttOptions(BaseModel):
    """Query parameters sent when opening the transcription stream."""

    model: str = DEFAULT_STT_MODEL
    language: str = DEFAULT_STT_LANGUAGE
    smart_format: bool = True
    interim_results: bool = True
    endpointing: int = Field(default=300, ge=0, description="Silence endpointing (ms)")
    utterance_end_ms: int = Field(default=1000, ge=0, description="Utterance end timeout (ms)")
    vad_events: bool = True
    punctuate: bool = True
    # Raw (containerless) client audio needs both; containerized audio needs neither
    encoding: Optional[str] = None
    sample_rate: Optional[int] = Field(default=None, gt=0)

    def query_params(self) -> dict:
        """Render the options as Deepgram query parameters."""
        params = {}
        for key, value in self.model_dump(exclude_none=True).items():
            params[key] = str(value).lower() if isinstance(value, bool) else str(value)
        return params


class RelaySettings(BaseModel):
    """Complete runtime configuration for the relay."""

    deepgram_api_key: Optional[str] = None
    stt_url: str = DEEPGRAM_STT_URL
    tts_url: str = DEEPGRAM_TTS_URL
    stt: SttOptions = Field(default_factory=SttOptions)
    tts_sample_rate: int = Field(default=TTS_SAMPLE_RATE, gt=0)

    huggingface_api_key: Optional[str] = None
    hf_api_url: str = DEFAULT_HF_API_URL
    hf_model: str = DEFAULT_HF_MODEL

    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None

    max_sessions: int = Field(default=DEFAULT_MAX_SESSIONS, ge=1)
    host: str = "0.0.0.0"
    port: int = 8000

    @property
    def language_model_configured(self) -> bool:
        return bool(self.huggingface_api_key)

    @property
    def profile_store_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    @classmethod
    def from_env(cls) -> "RelaySettings":
        """Build settings from environment variables."""
        return cls(
            deepgram_api_key=os.getenv("DEEPGRAM_API_KEY"),
            stt=SttOptions(
                model=os.getenv("DEEPGRAM_STT_MODEL", DEFAULT_STT_MODEL),
                language=os.getenv("DEEPGRAM_LANGUAGE", DEFAULT_STT_LANGUAGE),
                encoding=os.getenv("DEEPGRAM_INPUT_ENCODING") or None,
                sample_rate=int(os.environ["DEEPGRAM_INPUT_SAMPLE_RATE"])
                if os.getenv("DEEPGRAM_INPUT_SAMPLE_RATE")
                else None,
            ),
            tts_sample_rate=int(os.getenv("TTS_SAMPLE_RATE", str(TTS_SAMPLE_RATE))),
            huggingface_api_key=os.getenv("HUGGING_FACE_API"),
            hf_api_url=os.getenv("HF_API_URL", DEFAULT_HF_API_URL),
            hf_model=os.getenv("HF_MODEL", DEFAULT_HF_MODEL),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
            max_sessions=int(os.getenv("MAX_SESSIONS", str(DEFAULT_MAX_SESSIONS))),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
        )
