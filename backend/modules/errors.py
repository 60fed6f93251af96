from __future__ import annotations

from typing import Any


class PodcastError(RuntimeError):
    """Base error for the generation pipeline. `code` is the wire-level error key."""

    code = "generation_failed"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InvalidRequestError(PodcastError):
    code = "missing_fields"

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.code == "missing_fields":
            payload["required"] = ["topic", "tone", "duration"]
        return payload


class ScriptGenerationError(PodcastError):
    code = "invalid_script"


class NoSegmentsError(PodcastError):
    code = "no_segments"


class StorageNotConfiguredError(PodcastError):
    code = "storage_not_configured"


class PipelineCancelled(PodcastError):
    code = "cancelled"
