from __future__ import annotations

import time

from modules.audio import probe_duration
from modules.tts_base import SpeechBackend
from modules.tts_types import AudioSegment, ProgressCallback, SpeechRequest
from schemas import PodcastScript

DEFAULT_VOICE_KEY = "voice1"
DEFAULT_EMOTION = "thoughtful"

# Logical voice key -> backend voice. Host aliases first, then pass-through names.
VOICE_MAP: dict[str, str] = {
    "voice1": "onyx",
    "voice2": "nova",
    "alloy": "alloy",
    "echo": "echo",
    "fable": "fable",
    "onyx": "onyx",
    "nova": "nova",
    "shimmer": "shimmer",
}

EMOTION_SPEEDS: dict[str, float] = {
    "curious": 1.0,
    "enthusiastic": 1.1,
    "thoughtful": 0.95,
    "surprised": 1.05,
    "amused": 1.05,
    "serious": 0.9,
    "excited": 1.15,
    "contemplative": 0.9,
    "informative": 1.0,
    "encouraging": 1.05,
    "amazed": 1.1,
    "grateful": 0.95,
}

AVAILABLE_VOICES: list[dict[str, str]] = [
    {"id": "voice1", "name": "Host 1 (Onyx)", "description": "Deep, authoritative male voice"},
    {"id": "voice2", "name": "Host 2 (Nova)", "description": "Warm, engaging female voice"},
    {"id": "alloy", "name": "Alloy", "description": "Neutral voice"},
    {"id": "echo", "name": "Echo", "description": "Male voice"},
    {"id": "fable", "name": "Fable", "description": "British accent"},
    {"id": "shimmer", "name": "Shimmer", "description": "Soft female voice"},
]


def _normalize_key(value: str | None) -> str:
    return (value or "").strip().lower()


def resolve_voice(voice_key: str | None) -> str:
    return VOICE_MAP.get(_normalize_key(voice_key), VOICE_MAP[DEFAULT_VOICE_KEY])


def resolve_speed(emotion: str | None) -> float:
    return EMOTION_SPEEDS.get(_normalize_key(emotion), EMOTION_SPEEDS[DEFAULT_EMOTION])


def available_voices() -> list[dict[str, str]]:
    return [dict(v) for v in AVAILABLE_VOICES]


def build_speaker_voice_map(script: PodcastScript) -> dict[str, str]:
    voice_map: dict[str, str] = {}
    for idx, speaker in enumerate(script.speakers, start=1):
        voice_map[speaker.name] = speaker.voice_id.strip() or f"voice{idx}"
    return voice_map


class SpeechSynthesizer:
    def __init__(self, backend: SpeechBackend) -> None:
        self.backend = backend

    def synthesize(self, text: str, voice_key: str | None, emotion: str | None) -> bytes:
        request = SpeechRequest(
            text=text,
            voice=resolve_voice(voice_key),
            speed=resolve_speed(emotion),
        )
        return self.backend.synthesize(request)

    def synthesize_script(
        self,
        script: PodcastScript,
        on_progress: ProgressCallback | None = None,
    ) -> list[AudioSegment]:
        """
        Synthesize every line of `script` in order, one backend call at a time.

        `on_progress` fires once per line, before that line's call. The first
        failure propagates and no segments are returned.
        """
        voice_map = build_speaker_voice_map(script)
        total = len(script.lines)
        segments: list[AudioSegment] = []
        t0 = time.perf_counter()

        for idx, line in enumerate(script.lines, start=1):
            voice_key = voice_map.get(line.speaker, DEFAULT_VOICE_KEY)
            print(f"[synthesizer] line={idx}/{total} speaker={line.speaker} emotion={line.emotion}")
            if on_progress:
                on_progress(idx, total, line.speaker, line.emotion)
            try:
                audio = self.synthesize(line.text, voice_key, line.emotion)
            except Exception as exc:
                print(f"[synthesizer] line_failed line={idx} error={exc}")
                raise
            segments.append(
                AudioSegment(
                    speaker_name=line.speaker,
                    audio_buffer=audio,
                    duration=probe_duration(audio),
                )
            )

        print(
            f"[synthesizer] done segments={len(segments)} "
            f"seconds={round(time.perf_counter() - t0, 3)}"
        )
        return segments
