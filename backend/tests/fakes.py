"""In-memory stand-ins for the language, speech and blob backends."""
from __future__ import annotations

import json
from typing import Any

from modules.audio import AudioMerger
from modules.generator import TextGenerator
from modules.storage import PodcastStorage
from modules.synthesizer import SpeechSynthesizer
from modules.tts_base import SpeechBackend
from modules.tts_types import SpeechRequest
from pipeline import PipelineServices


class _FakeResponse:
    def __init__(self, text: str) -> None:
        self.text = text


class _FakeModels:
    def __init__(self, replies: list[str]) -> None:
        self._replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    def generate_content(self, *, model: str, contents: str, max_tokens: int) -> _FakeResponse:
        self.calls.append({"model": model, "contents": contents, "max_tokens": max_tokens})
        if not self._replies:
            raise AssertionError("Unexpected LLM call")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return _FakeResponse(reply)


class FakeLLMClient:
    """Stands in for OpenRouterClient; replies are consumed in call order."""

    def __init__(self, replies: list[Any]) -> None:
        self.models = _FakeModels(replies)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self.models.calls


class FakeSpeechBackend(SpeechBackend):
    name = "fake"

    def __init__(self, fail_on_call: int | None = None) -> None:
        self.requests: list[SpeechRequest] = []
        self.fail_on_call = fail_on_call

    def synthesize(self, request: SpeechRequest) -> bytes:
        self.requests.append(request)
        if self.fail_on_call is not None and len(self.requests) == self.fail_on_call:
            raise RuntimeError("TTS generation failed: 500 Internal Server Error")
        return f"<mp3:{request.text}>".encode("utf-8")


class FakeBlobBackend:
    def __init__(self, fail_put: bool = False) -> None:
        self.fail_put = fail_put
        self.blobs: dict[str, dict[str, Any]] = {}
        self.deleted: list[str] = []

    def put(self, pathname: str, data: bytes, content_type: str) -> dict[str, Any]:
        if self.fail_put:
            raise RuntimeError("Blob upload failed: HTTP 503")
        url = f"https://blob.example.test/{pathname}"
        self.blobs[url] = {
            "url": url,
            "pathname": pathname,
            "size": len(data),
            "contentType": content_type,
            "uploadedAt": "2026-01-02T03:04:05.000Z",
        }
        return {"url": url, "pathname": pathname}

    def list(self, prefix: str, limit: int) -> list[dict[str, Any]]:
        items = [b for b in self.blobs.values() if b["pathname"].startswith(prefix)]
        return items[:limit]

    def delete(self, url: str) -> None:
        self.deleted.append(url)
        self.blobs.pop(url, None)


def validation_reply(is_valid: bool = True, cleaned: str = "Black Holes", reason: str | None = None) -> str:
    payload: dict[str, Any] = {"isValid": is_valid, "cleanedTopic": cleaned}
    if reason is not None:
        payload["reason"] = reason
    return json.dumps(payload)


def research_reply(topic: str = "Black Holes", key_points: int = 5) -> str:
    return "```json\n" + json.dumps(
        {
            "topic": topic,
            "keyPoints": [f"Point {i}" for i in range(1, key_points + 1)],
            "facts": ["Fact A", "Fact B", "Fact C"],
            "context": "Regions of spacetime where gravity prevents escape.",
        }
    ) + "\n```"


def script_payload(lines: int = 18, title: str = "Into the Event Horizon") -> dict[str, Any]:
    speakers = [
        {"name": "Alex", "personality": "Curious questioner", "voiceId": "voice1"},
        {"name": "Sam", "personality": "Knowledgeable explainer", "voiceId": "voice2"},
    ]
    emotions = ["curious", "enthusiastic", "thoughtful", "surprised"]
    return {
        "title": title,
        "speakers": speakers,
        "lines": [
            {
                "speaker": speakers[i % 2]["name"],
                "text": f"Line {i + 1} about black holes.",
                "emotion": emotions[i % len(emotions)],
            }
            for i in range(lines)
        ],
    }


def script_reply(lines: int = 18) -> str:
    return json.dumps(script_payload(lines))


def make_services(
    replies: list[Any],
    *,
    storage: PodcastStorage | None = None,
    speech: FakeSpeechBackend | None = None,
) -> tuple[PipelineServices, FakeLLMClient, FakeSpeechBackend]:
    client = FakeLLMClient(replies)
    backend = speech or FakeSpeechBackend()
    services = PipelineServices(
        generator=TextGenerator(client, "anthropic/claude-sonnet-4"),
        synthesizer=SpeechSynthesizer(backend),
        merger=AudioMerger(force_concat=True),
        storage=storage or PodcastStorage(None),
    )
    return services, client, backend
