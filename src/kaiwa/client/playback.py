"""Single-flight audio playback for the terminal client."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import shutil
import tempfile
from contextlib import suppress
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

SLOW_PLAYBACK_RATE = 0.75


class AudioPlayer(Protocol):
    async def play(self, audio_url: str, *, rate: float = 1.0) -> None:
        """Play one clip to completion; cancellation must stop the sound."""
        ...


class PlaybackController:
    """Own the one clip that may be playing at any time.

    Starting a clip first cancels and awaits the current one, so two clips
    never overlap.
    """

    def __init__(self, player: AudioPlayer, *, slow: bool = False) -> None:
        self._player = player
        self._task: Optional[asyncio.Task[None]] = None
        self._lock = asyncio.Lock()
        self.slow = slow

    @property
    def rate(self) -> float:
        return SLOW_PLAYBACK_RATE if self.slow else 1.0

    @property
    def is_playing(self) -> bool:
        return self._task is not None and not self._task.done()

    async def play(self, audio_url: str) -> asyncio.Task[None]:
        async with self._lock:
            await self._cancel_current()
            self._task = asyncio.create_task(
                self._player.play(audio_url, rate=self.rate)
            )
            return self._task

    async def stop(self) -> None:
        async with self._lock:
            await self._cancel_current()

    async def wait(self) -> None:
        """Block until the current clip finishes or is stopped."""

        task = self._task
        if task is None:
            return
        with suppress(asyncio.CancelledError):
            await task

    async def _cancel_current(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.warning("Audio playback failed: %s", exc)


def decode_data_uri(url: str) -> bytes:
    header, sep, payload = url.partition(",")
    if not sep or not header.startswith("data:"):
        raise ValueError("Not a data URI")
    if header.endswith(";base64"):
        return base64.b64decode(payload)
    return payload.encode("utf-8")


class FfplayAudioPlayer:
    """Play clips with `ffplay`, fetching hosted audio through httpx."""

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:8000",
        http_client: Optional[httpx.AsyncClient] = None,
        executable: str = "ffplay",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_client
        self._executable = executable

    @staticmethod
    def available(executable: str = "ffplay") -> bool:
        return shutil.which(executable) is not None

    async def _load(self, audio_url: str) -> bytes:
        if audio_url.startswith("data:"):
            return decode_data_uri(audio_url)
        url = audio_url
        if url.startswith("/"):
            url = f"{self._base_url}{url}"
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=5.0), follow_redirects=True
            )
        response = await self._http.get(url)
        response.raise_for_status()
        return response.content

    def _command(self, path: str, rate: float) -> list[str]:
        args = [self._executable, "-nodisp", "-autoexit", "-loglevel", "quiet"]
        if rate != 1.0:
            args.extend(["-af", f"atempo={rate}"])
        args.append(path)
        return args

    async def play(self, audio_url: str, *, rate: float = 1.0) -> None:
        audio = await self._load(audio_url)
        fd, path = tempfile.mkstemp(suffix=".mp3", prefix="kaiwa_")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(audio)
            process = await asyncio.create_subprocess_exec(
                *self._command(path, rate),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            try:
                await process.wait()
            except asyncio.CancelledError:
                with suppress(ProcessLookupError):
                    process.terminate()
                await process.wait()
                raise
        finally:
            with suppress(OSError):
                os.unlink(path)

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None


__all__ = [
    "AudioPlayer",
    "FfplayAudioPlayer",
    "PlaybackController",
    "SLOW_PLAYBACK_RATE",
    "decode_data_uri",
]
