"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/relay.db",
        description="SQLAlchemy connection string.",
    )
    auto_create_db_schema: bool = Field(
        default=True,
        description="If true, creates tables automatically on startup (useful for local/dev).",
    )

    # Conversational engine (OpenAI Realtime)
    openai_api_key: str | None = Field(default=None)
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-4o-mini-realtime-preview")
    realtime_voice: str = Field(default="coral")
    realtime_server_vad: bool = Field(
        default=False,
        description="Let the engine run its own speech detection. Turns still end and responses are still requested locally.",
    )
    principal_name: str = Field(
        default="Oscar",
        description="Name of the person on whose behalf the agent delivers messages.",
    )

    # Turn taking
    debounce_ms: int = Field(default=700, ge=50, description="Silence needed to end a caller turn.")
    min_turn_ms: int = Field(default=250, ge=0, description="Shorter caller bursts are treated as noise.")
    response_grace_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="How long call end waits for an in-flight agent response to finish.",
    )

    # Transcript
    transcript_mode: Literal["live", "post_call", "hybrid"] = Field(default="hybrid")
    live_text_max_chars: int = Field(default=200, ge=20)
    transcription_provider: Literal["openai", "faster_whisper"] = Field(default="openai")
    transcription_model: str = Field(default="whisper-1")
    whisper_model_size: str = Field(default="Systran/faster-whisper-small.en")
    whisper_compute_type: str = Field(default="auto")  # e.g. float16, int8_float16
    whisper_device: str = Field(default="auto")
    no_speech_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    logprob_floor: float = Field(default=-1.0)
    min_segment_seconds: float = Field(default=0.45, ge=0.0)
    turn_transcription_timeout_seconds: float = Field(default=15.0, gt=0.0)
    boilerplate_phrases: list[str] = Field(
        default_factory=lambda: [
            "thanks for watching",
            "thank you for watching",
            "please subscribe",
            "subtitles by the amara.org community",
            "[blank_audio]",
            "(silence)",
        ],
        description="Recognizer hallucinations stripped from speech-to-text output.",
    )

    # Summary
    summary_enabled: bool = Field(default=True)
    llm_provider: Literal["openai", "self_hosted_vllm"] = Field(default="openai")
    llm_endpoint: str | None = Field(
        default=None, description="HTTP endpoint for the self-hosted inference server."
    )
    llm_api_key: str | None = Field(default=None, description="Falls back to OPENAI_API_KEY.")
    llm_model: str = Field(default="gpt-4o-mini")

    # Call end
    call_end_timeout_seconds: float = Field(
        default=40.0,
        gt=0.0,
        description="Upper bound for the transcript + summary pipeline after a call ends.",
    )

    # Notifications (GroupMe bot)
    groupme_bot_id: str | None = Field(default=None)
    groupme_api_url: str = Field(default="https://api.groupme.com/v3/bots/post")
    groupme_shared_secret: str | None = Field(
        default=None,
        description="Optional x-shared-secret header required on the command webhook.",
    )

    # Twilio (Voice)
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_from_number: str | None = Field(default=None, description="E.164, e.g. +1435...")
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio callbacks (e.g. https://<ngrok>.ngrok-free.app).",
    )

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
