"""
Merging of per-line mp3 segments into one episode buffer.

Two strategies:

- remux: ffmpeg's concat demuxer with stream copy, which rewrites the
  container cleanly at segment boundaries.
- concat: plain byte concatenation. Only correct because mp3 is a stream of
  self-delimiting frames; do not reuse it for other codecs.

The remux tool's availability is a process-wide two-state machine. Once it is
found missing, fails, or times out, every later merge in the process goes
straight to concat.
"""
from __future__ import annotations

import enum
import io
import os
import shutil
import subprocess
import tempfile
import threading
import time
from typing import Any, Callable, Sequence

import soundfile as sf

from modules.errors import NoSegmentsError
from modules.tts_types import AudioSegment

DEFAULT_MERGE_TIMEOUT_SECONDS = 30.0


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def probe_duration(buffer: bytes) -> float | None:
    # libsndfile decodes mp3 from 1.1.0 on; older builds just yield None.
    try:
        info = sf.info(io.BytesIO(buffer))
    except (RuntimeError, TypeError, ValueError):
        return None
    duration = float(getattr(info, "duration", 0.0) or 0.0)
    return round(duration, 3) if duration > 0 else None


class RemuxState(enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class AudioMerger:
    def __init__(
        self,
        *,
        ffmpeg_binary: str = "ffmpeg",
        timeout_seconds: float = DEFAULT_MERGE_TIMEOUT_SECONDS,
        runner: Callable[..., Any] = subprocess.run,
        which: Callable[[str], str | None] = shutil.which,
        force_concat: bool = False,
    ) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.timeout_seconds = timeout_seconds
        self._runner = runner
        self._which = which
        self._lock = threading.Lock()
        self._state: RemuxState | None = RemuxState.UNAVAILABLE if force_concat else None
        self._ffmpeg_path: str | None = None
        self.last_strategy: str | None = None

    @classmethod
    def from_env(cls) -> "AudioMerger":
        strategy = os.environ.get("AUDIO_MERGE_STRATEGY", "auto").strip().lower()
        return cls(
            ffmpeg_binary=os.environ.get("FFMPEG_BINARY", "").strip() or "ffmpeg",
            timeout_seconds=_env_float("AUDIO_MERGE_TIMEOUT_SECONDS", DEFAULT_MERGE_TIMEOUT_SECONDS),
            force_concat=strategy == "concat",
        )

    @property
    def state(self) -> RemuxState | None:
        return self._state

    def probe(self) -> RemuxState:
        """Resolve the remux tool once; later calls return the cached state."""
        with self._lock:
            if self._state is None:
                self._ffmpeg_path = self._which(self.ffmpeg_binary)
                if self._ffmpeg_path:
                    self._state = RemuxState.AVAILABLE
                    print(f"[audio] remux_available path={self._ffmpeg_path}")
                else:
                    self._state = RemuxState.UNAVAILABLE
                    print(f"[audio] remux_unavailable reason=not_found binary={self.ffmpeg_binary}")
            return self._state

    def _mark_unavailable(self, reason: str) -> None:
        with self._lock:
            self._state = RemuxState.UNAVAILABLE
        print(f"[audio] remux_unavailable reason={reason}")

    def merge(self, segments: Sequence[AudioSegment]) -> bytes:
        if not segments:
            raise NoSegmentsError("No audio segments to merge.")
        if len(segments) == 1:
            self.last_strategy = "single"
            return segments[0].audio_buffer

        total_size = sum(len(seg.audio_buffer) for seg in segments)
        print(f"[audio] merging segments={len(segments)} bytes={total_size}")
        t0 = time.perf_counter()

        if self.probe() is RemuxState.AVAILABLE:
            try:
                merged = self._remux(segments)
                self.last_strategy = "remux"
                print(
                    f"[audio] merged strategy=remux bytes={len(merged)} "
                    f"seconds={round(time.perf_counter() - t0, 3)}"
                )
                return merged
            except subprocess.TimeoutExpired:
                self._mark_unavailable(f"timeout_after_{self.timeout_seconds}s")
            except (subprocess.CalledProcessError, OSError) as exc:
                self._mark_unavailable(f"tool_error {exc}")

        merged = concat_segments(segments)
        self.last_strategy = "concat"
        print(f"[audio] merged strategy=concat bytes={len(merged)}")
        return merged

    def _remux(self, segments: Sequence[AudioSegment]) -> bytes:
        binary = self._ffmpeg_path or self.ffmpeg_binary
        with tempfile.TemporaryDirectory(
            prefix="podcast_merge_", ignore_cleanup_errors=True
        ) as work_dir:
            list_path = os.path.join(work_dir, "segments.txt")
            output_path = os.path.join(work_dir, "output.mp3")
            entries: list[str] = []
            for idx, seg in enumerate(segments):
                path = os.path.join(work_dir, f"segment-{idx:04d}.mp3")
                with open(path, "wb") as fh:
                    fh.write(seg.audio_buffer)
                entries.append(f"file '{path}'\n")
            with open(list_path, "w", encoding="utf-8") as fh:
                fh.writelines(entries)

            self._runner(
                [
                    binary,
                    "-hide_banner",
                    "-loglevel", "error",
                    "-y",
                    "-f", "concat",
                    "-safe", "0",
                    "-i", list_path,
                    "-c", "copy",
                    output_path,
                ],
                check=True,
                capture_output=True,
                timeout=self.timeout_seconds,
            )
            with open(output_path, "rb") as fh:
                return fh.read()


def concat_segments(segments: Sequence[AudioSegment]) -> bytes:
    return b"".join(seg.audio_buffer for seg in segments)
