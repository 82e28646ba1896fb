"""Speech synthesis backends producing MP3 audio for dialogue lines."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import openai
from google.cloud import texttospeech

from ..config import Settings
from ..schemas.conversation import Role, VoiceMode
from .gcs import load_credentials

logger = logging.getLogger(__name__)

JAPANESE_LANGUAGE_CODE = "ja-JP"


class SpeechSynthesisError(Exception):
    """Raised when a backend fails to synthesize a line."""


class SpeechSynthesizer(Protocol):
    name: str

    async def synthesize(self, text: str, role: Role, voice_mode: VoiceMode) -> bytes:
        ...

    async def aclose(self) -> None:
        ...


class GoogleSpeechSynthesizer:
    """Google Cloud Text-to-Speech with per-role voices."""

    name = "google"

    def __init__(
        self,
        settings: Settings,
        client: Optional[texttospeech.TextToSpeechAsyncClient] = None,
    ) -> None:
        self._settings = settings
        self._client = client

    def voice_for(self, role: Role, voice_mode: VoiceMode) -> str:
        if voice_mode == "same":
            return self._settings.google_tts_shared_voice
        if role == "B":
            return self._settings.google_tts_voice_b
        return self._settings.google_tts_voice_a

    def _get_client(self) -> texttospeech.TextToSpeechAsyncClient:
        if self._client is None:
            # Falls back to application default credentials when no key file exists.
            credentials = load_credentials(self._settings)
            self._client = texttospeech.TextToSpeechAsyncClient(
                credentials=credentials
            )
        return self._client

    async def synthesize(self, text: str, role: Role, voice_mode: VoiceMode) -> bytes:
        voice_name = self.voice_for(role, voice_mode)
        try:
            response = await self._get_client().synthesize_speech(
                input=texttospeech.SynthesisInput(text=text),
                voice=texttospeech.VoiceSelectionParams(
                    language_code=JAPANESE_LANGUAGE_CODE,
                    name=voice_name,
                ),
                audio_config=texttospeech.AudioConfig(
                    audio_encoding=texttospeech.AudioEncoding.MP3,
                ),
            )
        except Exception as exc:
            raise SpeechSynthesisError(
                f"Google TTS failed for voice {voice_name}: {exc}"
            ) from exc

        audio = bytes(response.audio_content or b"")
        if not audio:
            raise SpeechSynthesisError("Google TTS returned empty audio")
        return audio

    async def aclose(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            await client.transport.close()


class OpenAISpeechSynthesizer:
    """OpenAI speech API with a single fixed voice."""

    name = "openai"

    def __init__(
        self,
        settings: Settings,
        client: Optional[openai.AsyncOpenAI] = None,
    ) -> None:
        self._settings = settings
        self._client = client

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            api_key = self._settings.openai_api_key
            if api_key is None:
                raise SpeechSynthesisError("OPENAI_API_KEY is not configured")
            self._client = openai.AsyncOpenAI(api_key=api_key.get_secret_value())
        return self._client

    async def synthesize(self, text: str, role: Role, voice_mode: VoiceMode) -> bytes:
        client = self._get_client()
        try:
            response = await client.audio.speech.create(
                model=self._settings.openai_tts_model,
                voice=self._settings.openai_tts_voice,
                input=text,
                response_format="mp3",
            )
        except openai.OpenAIError as exc:
            raise SpeechSynthesisError(f"OpenAI TTS failed: {exc}") from exc

        audio = response.content
        if not audio:
            raise SpeechSynthesisError("OpenAI TTS returned empty audio")
        return audio

    async def aclose(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            await client.close()


def create_speech_synthesizer(settings: Settings) -> SpeechSynthesizer:
    """Return the backend selected by TTS_PROVIDER."""

    if settings.tts_provider == "google":
        logger.info(
            "Using Google TTS (voices A=%s, B=%s, shared=%s)",
            settings.google_tts_voice_a,
            settings.google_tts_voice_b,
            settings.google_tts_shared_voice,
        )
        return GoogleSpeechSynthesizer(settings)
    logger.info(
        "Using OpenAI TTS (model=%s, voice=%s)",
        settings.openai_tts_model,
        settings.openai_tts_voice,
    )
    return OpenAISpeechSynthesizer(settings)


__all__ = [
    "GoogleSpeechSynthesizer",
    "OpenAISpeechSynthesizer",
    "SpeechSynthesisError",
    "SpeechSynthesizer",
    "create_speech_synthesizer",
]
