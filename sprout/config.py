"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Sprout configuration. All values come from environment variables."""

    # Anthropic (text replies, mood and topic analysis)
    anthropic_api_key: str = Field(default="")
    default_chat_model: str = Field(default="sonnet")
    default_analysis_model: str = Field(default="haiku")

    # OpenAI (embeddings, speech, realtime voice)
    openai_api_key: str = Field(default="")
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dimensions: int = Field(default=1536)
    transcription_model: str = Field(default="whisper-1")
    speech_model: str = Field(default="tts-1")
    voice_name: str = Field(default="alloy")
    realtime_model: str = Field(default="gpt-4o-realtime-preview-2024-12-17")

    # Qdrant (therapeutic memory + per-child documents share one collection)
    qdrant_url: str = Field(default="")
    qdrant_api_key: str = Field(default="")
    qdrant_collection: str = Field(default="sprout")

    # Database
    database_path: Path = Field(default=Path("data/sprout.db"))

    # Turso (hosted libSQL); when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # HTTP server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8080)

    # External calls
    external_timeout_seconds: float = Field(default=30.0)

    # Conversation
    history_window: int = Field(default=8)
    chat_max_tokens: int = Field(default=500)
    voice_max_tokens: int = Field(default=200)
    min_audio_bytes: int = Field(default=2048)

    # Mood analysis cache
    mood_cache_ttl_seconds: float = Field(default=300.0)
    mood_cache_max_entries: int = Field(default=100)

    # Idle session completion
    idle_completion_enabled: bool = Field(default=True)
    session_idle_minutes: int = Field(default=30)
    idle_sweep_interval_minutes: int = Field(default=5)
    scheduler_timezone: str = Field(default="UTC")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def vector_store_enabled(self) -> bool:
        return bool(self.qdrant_url and self.openai_api_key)


settings = Settings()
