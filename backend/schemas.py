from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


Tone = Literal["casual", "educational", "humorous"]
Duration = Literal["short", "medium"]

TONES: tuple[str, ...] = ("casual", "educational", "humorous")
DURATIONS: tuple[str, ...] = ("short", "medium")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationRequest(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    topic: str = Field(min_length=1)
    tone: Tone
    duration: Duration


class TopicValidation(CamelModel):
    is_valid: bool
    cleaned_topic: str = ""
    reason: str | None = None


class ResearchNotes(CamelModel):
    topic: str
    key_points: list[str] = Field(default_factory=list)
    facts: list[str] = Field(default_factory=list)
    context: str = ""


def _strip_text(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _text_or_none(value: Any) -> str | None:
    # Model output: null or non-string hints fall back to the field default.
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class Speaker(CamelModel):
    name: str = Field(min_length=1)
    personality: str = ""
    voice_id: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: Any) -> Any:
        return _strip_text(value)

    @field_validator("personality", "voice_id", mode="before")
    @classmethod
    def optional_text(cls, value: Any) -> str:
        return _text_or_none(value) or ""


class ScriptLine(CamelModel):
    speaker: str = Field(min_length=1)
    text: str = Field(min_length=1)
    emotion: str = "thoughtful"

    @field_validator("speaker", mode="before")
    @classmethod
    def strip_speaker(cls, value: Any) -> Any:
        return _strip_text(value)

    @field_validator("emotion", mode="before")
    @classmethod
    def emotion_or_default(cls, value: Any) -> str:
        return _text_or_none(value) or "thoughtful"


class PodcastScript(CamelModel):
    title: str = Field(min_length=1)
    speakers: list[Speaker] = Field(min_length=1)
    lines: list[ScriptLine] = Field(min_length=1)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value: Any) -> Any:
        return _strip_text(value)


class SpeakerSummary(CamelModel):
    name: str
    personality: str


class StoredPodcast(CamelModel):
    url: str
    pathname: str
    size: int
    uploaded_at: datetime


class VoiceOption(CamelModel):
    id: str
    name: str
    description: str


class VoicesResponse(CamelModel):
    voices: list[VoiceOption]


class PodcastListResponse(CamelModel):
    podcasts: list[StoredPodcast]
    message: str | None = None


class StorageHealth(CamelModel):
    configured: bool
    type: str


class HealthResponse(CamelModel):
    status: Literal["healthy"]
    service: str
    version: str
    timestamp: str
    environment: str
    storage: StorageHealth
