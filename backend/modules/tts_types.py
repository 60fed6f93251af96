from __future__ import annotations

from dataclasses import dataclass
from typing import Callable


# (current, total, speaker, emotion); current is 1-based.
ProgressCallback = Callable[[int, int, str, str], None]


@dataclass(frozen=True)
class SpeechRequest:
    text: str
    voice: str
    speed: float = 1.0
    response_format: str = "mp3"


@dataclass
class AudioSegment:
    speaker_name: str
    audio_buffer: bytes
    duration: float | None = None
