"""Terminal-side practice helpers: API access, practice state and playback."""

from .api import ApiError, PracticeApiClient
from .playback import FfplayAudioPlayer, PlaybackController
from .practice import PracticeSession

__all__ = [
    "ApiError",
    "FfplayAudioPlayer",
    "PlaybackController",
    "PracticeApiClient",
    "PracticeSession",
]
