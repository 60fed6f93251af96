from __future__ import annotations

from abc import ABC, abstractmethod

from modules.tts_types import SpeechRequest


class SpeechBackend(ABC):
    name: str

    @abstractmethod
    def synthesize(self, request: SpeechRequest) -> bytes:
        """Return compressed audio bytes for one utterance."""
        raise NotImplementedError
