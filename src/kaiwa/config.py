"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

LLMProvider = Literal["openai", "openrouter", "deepseek", "ollama"]
TTSProvider = Literal["google", "openai"]
AudioStorage = Literal["inline", "gcs"]

_PROVIDER_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "deepseek": "https://api.deepseek.com/v1",
}

_PROVIDER_DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4o-mini",
    "openrouter": "openai/gpt-4o-mini",
    "deepseek": "deepseek-chat",
    "ollama": "llama3.2:latest",
}


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Text generation
    llm_provider: LLMProvider = Field(
        default="openai",
        validation_alias=AliasChoices("LLM_PROVIDER", "llm_provider"),
    )
    llm_model: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("LLM_MODEL", "llm_model"),
    )
    llm_temperature: float = Field(
        default=0.7,
        ge=0,
        le=2,
        validation_alias=AliasChoices("LLM_TEMPERATURE", "llm_temperature"),
    )
    request_timeout: float = Field(
        default=120.0,
        ge=1,
        validation_alias=AliasChoices("LLM_TIMEOUT", "request_timeout"),
    )
    openai_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    openrouter_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_API_KEY", "openrouter_api_key"),
    )
    openrouter_app_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENROUTER_APP_URL", "HTTP_REFERER", "openrouter_app_url"
        ),
    )
    openrouter_app_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENROUTER_APP_TITLE", "X_TITLE", "openrouter_app_name"
        ),
    )
    deepseek_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("DEEPSEEK_API_KEY", "deepseek_api_key"),
    )
    ollama_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("http://localhost:11434/v1"),
        validation_alias=AliasChoices("OLLAMA_BASE_URL", "ollama_base_url"),
    )

    # Speech synthesis
    tts_provider: TTSProvider = Field(
        default="openai",
        validation_alias=AliasChoices("TTS_PROVIDER", "tts_provider"),
    )
    google_application_credentials: Path = Field(
        default_factory=lambda: Path("credentials/googlecloud/sa.json"),
        validation_alias=AliasChoices(
            "GOOGLE_APPLICATION_CREDENTIALS",
            "google_application_credentials",
        ),
    )
    google_tts_voice_a: str = Field(
        default="ja-JP-Neural2-B",
        validation_alias=AliasChoices("GOOGLE_TTS_VOICE_A", "google_tts_voice_a"),
    )
    google_tts_voice_b: str = Field(
        default="ja-JP-Neural2-C",
        validation_alias=AliasChoices("GOOGLE_TTS_VOICE_B", "google_tts_voice_b"),
    )
    google_tts_shared_voice: str = Field(
        default="ja-JP-Neural2-B",
        validation_alias=AliasChoices(
            "GOOGLE_TTS_SHARED_VOICE", "google_tts_shared_voice"
        ),
    )
    openai_tts_model: str = Field(
        default="tts-1",
        validation_alias=AliasChoices("OPENAI_TTS_MODEL", "openai_tts_model"),
    )
    openai_tts_voice: str = Field(
        default="nova",
        validation_alias=AliasChoices("OPENAI_TTS_VOICE", "openai_tts_voice"),
    )
    parallel_synthesis: bool = Field(
        default=False,
        validation_alias=AliasChoices("PARALLEL_SYNTHESIS", "parallel_synthesis"),
    )

    # Audio storage
    audio_storage: AudioStorage = Field(
        default="inline",
        validation_alias=AliasChoices("AUDIO_STORAGE", "audio_storage"),
    )
    gcs_bucket_name: str = Field(
        default="kaiwa-practice-audio",
        validation_alias=AliasChoices("GCS_BUCKET_NAME", "gcs_bucket_name"),
    )
    gcp_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GCP_PROJECT_ID", "gcp_project_id"),
    )
    audio_url_ttl_minutes: int = Field(
        default=60,
        ge=1,
        le=7 * 24 * 60,
        validation_alias=AliasChoices(
            "AUDIO_URL_TTL_MINUTES", "audio_url_ttl_minutes"
        ),
    )

    # Persistence
    practice_database_path: Path = Field(
        default_factory=lambda: Path("data/practice.db"),
        validation_alias=AliasChoices(
            "PRACTICE_DATABASE_PATH", "practice_database_path"
        ),
    )

    # Prompting
    prior_context_window: int = Field(
        default=3,
        ge=0,
        validation_alias=AliasChoices("PRIOR_CONTEXT_WINDOW", "prior_context_window"),
    )
    translation_language: str = Field(
        default="繁體中文",
        validation_alias=AliasChoices("TRANSLATION_LANGUAGE", "translation_language"),
    )

    # Logging
    generation_log_dir: Path = Field(
        default_factory=lambda: Path("logs/generations"),
        validation_alias=AliasChoices("GENERATION_LOG_DIR", "generation_log_dir"),
    )
    app_log_dir: Path = Field(
        default_factory=lambda: Path("logs/app"),
        validation_alias=AliasChoices("APP_LOG_DIR", "app_log_dir"),
    )

    @property
    def llm_base_url(self) -> str:
        """Return the OpenAI-compatible base URL for the selected provider."""

        if self.llm_provider == "ollama":
            return str(self.ollama_base_url).rstrip("/")
        return _PROVIDER_BASE_URLS[self.llm_provider]

    @property
    def resolved_llm_model(self) -> str:
        return self.llm_model or _PROVIDER_DEFAULT_MODELS[self.llm_provider]

    @property
    def llm_api_key(self) -> SecretStr | None:
        """Return the credential for the selected text-generation provider."""

        if self.llm_provider == "openrouter":
            return self.openrouter_api_key
        if self.llm_provider == "deepseek":
            return self.deepseek_api_key
        if self.llm_provider == "ollama":
            # Ollama ignores the key but the OpenAI-compatible route expects one.
            return SecretStr("ollama")
        return self.openai_api_key

    @property
    def supports_json_schema(self) -> bool:
        """Whether the provider honours `response_format.type=json_schema`."""

        return self.llm_provider in {"openai", "openrouter"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
