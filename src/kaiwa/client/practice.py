"""Line-by-line practice state for one conversation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence

from ..schemas.conversation import Sentence
from .playback import PlaybackController

PracticeRole = Literal["A", "B", "All"]


@dataclass
class DisplayOptions:
    blur: bool = False
    show_reading: bool = True
    show_translation: bool = True


@dataclass
class PracticeSession:
    """Step through a dialogue, auto-playing the lines the learner does not speak."""

    sentences: Sequence[Sentence]
    playback: PlaybackController
    role: PracticeRole = "All"
    current_index: int = -1
    practicing: bool = False
    display: DisplayOptions = field(default_factory=DisplayOptions)

    @property
    def current(self) -> Optional[Sentence]:
        if 0 <= self.current_index < len(self.sentences):
            return self.sentences[self.current_index]
        return None

    @property
    def is_first_line(self) -> bool:
        return self.current_index == 0

    @property
    def is_last_line(self) -> bool:
        return self.current_index == len(self.sentences) - 1

    def is_learner_line(self, sentence: Sentence) -> bool:
        return self.role != "All" and sentence.role == self.role

    def should_autoplay(self, sentence: Sentence) -> bool:
        return bool(sentence.audio_url) and not self.is_learner_line(sentence)

    async def _move_to(self, index: int) -> None:
        self.current_index = index
        sentence = self.sentences[index]
        if self.should_autoplay(sentence):
            assert sentence.audio_url is not None
            await self.playback.play(sentence.audio_url)

    async def start(self) -> None:
        await self.playback.stop()
        self.practicing = True
        self.current_index = 0
        if self.sentences:
            await self._move_to(0)

    async def next(self) -> bool:
        if self.current_index >= len(self.sentences) - 1:
            return False
        await self._move_to(self.current_index + 1)
        return True

    async def previous(self) -> bool:
        if self.current_index <= 0:
            return False
        await self._move_to(self.current_index - 1)
        return True

    async def replay(self) -> bool:
        sentence = self.current
        if sentence is None or not sentence.audio_url:
            return False
        await self.playback.play(sentence.audio_url)
        return True

    async def reset(self) -> None:
        await self.playback.stop()
        self.practicing = False
        self.current_index = -1

    def toggle_slow(self) -> bool:
        self.playback.slow = not self.playback.slow
        return self.playback.slow


__all__ = ["DisplayOptions", "PracticeRole", "PracticeSession"]
