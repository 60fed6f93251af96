from __future__ import annotations

import base64
import json
import time

import pytest
from fastapi.testclient import TestClient

import main
from fakes import FakeBlobBackend, FakeSpeechBackend, make_services, validation_reply
from modules.storage import PodcastStorage

REQUEST = {"topic": "black holes", "tone": "educational", "duration": "short"}


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.split("\n\n"):
        if not block.strip() or block.startswith(":"):
            continue
        lines = block.split("\n")
        event = lines[0][len("event: "):]
        data = json.loads(lines[1][len("data: "):])
        events.append((event, data))
    return events


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def use_services(monkeypatch):
    def _install(services):
        monkeypatch.setattr(main, "get_services", lambda: services)
        return services

    return _install


class _SlowSpeechBackend(FakeSpeechBackend):
    def synthesize(self, request):
        time.sleep(0.1)
        return super().synthesize(request)


class TestInfoRoutes:
    def test_health(self, client, monkeypatch):
        monkeypatch.setattr(main, "storage", PodcastStorage(None))
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["version"] == "1.0.0"
        assert body["storage"] == {"configured": False, "type": "none"}

    def test_voices(self, client):
        voices = client.get("/api/voices").json()["voices"]
        assert voices[0] == {"id": "voice1", "name": "Host 1 (Onyx)", "description": "Deep, authoritative male voice"}
        assert len(voices) == 6


class TestPodcastRoutes:
    def test_list_without_storage(self, client, monkeypatch):
        monkeypatch.setattr(main, "storage", PodcastStorage(None))
        response = client.get("/api/podcasts")
        assert response.status_code == 200
        assert response.json()["podcasts"] == []
        assert "BLOB_READ_WRITE_TOKEN" in response.json()["message"]

    def test_list_with_storage(self, client, monkeypatch):
        storage = PodcastStorage(FakeBlobBackend(), clock=lambda: 1700000000.0)
        storage.upload(b"abc", "Tides")
        monkeypatch.setattr(main, "storage", storage)

        body = client.get("/api/podcasts", params={"limit": 5}).json()
        assert "message" not in body
        (item,) = body["podcasts"]
        assert item["pathname"] == "podcasts/tides-1700000000000.mp3"
        assert item["size"] == 3
        assert "uploadedAt" in item

    def test_list_limit_bounds(self, client):
        assert client.get("/api/podcasts", params={"limit": 0}).status_code == 422

    def test_list_failure(self, client, monkeypatch):
        class Broken(FakeBlobBackend):
            def list(self, prefix, limit):
                raise RuntimeError("Blob list failed: HTTP 500")

        monkeypatch.setattr(main, "storage", PodcastStorage(Broken()))
        response = client.get("/api/podcasts")
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to list podcasts"}

    def test_delete(self, client, monkeypatch):
        blob = FakeBlobBackend()
        monkeypatch.setattr(main, "storage", PodcastStorage(blob))
        response = client.delete("/api/podcasts", params={"url": "https://blob.example.test/podcasts/a.mp3"})
        assert response.status_code == 200
        assert blob.deleted == ["https://blob.example.test/podcasts/a.mp3"]

    def test_delete_without_storage(self, client, monkeypatch):
        monkeypatch.setattr(main, "storage", PodcastStorage(None))
        response = client.delete("/api/podcasts", params={"url": "https://x"})
        assert response.status_code == 400
        assert response.json()["error"] == "storage_not_configured"


class TestBufferedGenerate:
    def test_invalid_tone(self, client, use_services):
        services, llm, _ = make_services([])
        use_services(services)
        response = client.post("/api/generate", json={**REQUEST, "tone": "angry"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_tone"
        assert llm.calls == []

    def test_missing_fields(self, client):
        response = client.post("/api/generate", json={"topic": "tides"})
        assert response.status_code == 400
        assert response.json() == {
            "error": "missing_fields",
            "message": "Missing required fields",
            "required": ["topic", "tone", "duration"],
        }

    def test_non_json_body(self, client):
        response = client.post("/api/generate", content=b"not json", headers={"content-type": "application/json"})
        assert response.status_code == 400
        assert response.json()["error"] == "missing_fields"

    def test_returns_audio(self, client, use_services, happy_replies):
        services, _, _ = make_services(happy_replies)
        use_services(services)
        response = client.post("/api/generate", json=REQUEST)
        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/mpeg"
        assert response.headers["content-disposition"].startswith('attachment; filename="kotomo-')
        assert response.content.startswith(b"<mp3:Line 1 about black holes.>")
        assert "x-podcast-url" not in response.headers

    def test_uploaded_audio_carries_url(self, client, use_services, happy_replies):
        blob = FakeBlobBackend()
        services, _, _ = make_services(happy_replies, storage=PodcastStorage(blob))
        use_services(services)
        response = client.post("/api/generate", json=REQUEST)
        assert response.status_code == 200
        assert response.headers["x-podcast-url"] in blob.blobs

    def test_rejected_topic(self, client, use_services):
        services, _, _ = make_services([validation_reply(is_valid=False, reason="Not appropriate")])
        use_services(services)
        response = client.post("/api/generate", json=REQUEST)
        assert response.status_code == 400
        assert response.json() == {"error": "invalid_topic", "message": "Invalid topic", "reason": "Not appropriate"}

    def test_pipeline_failure(self, client, use_services, happy_replies):
        services, _, _ = make_services(happy_replies, speech=FakeSpeechBackend(fail_on_call=1))
        use_services(services)
        response = client.post("/api/generate", json=REQUEST)
        assert response.status_code == 500
        assert response.json()["error"] == "generation_failed"

    def test_missing_api_key(self, client, monkeypatch):
        def broken():
            raise RuntimeError("OPENROUTER_API_KEY is not set.")

        monkeypatch.setattr(main, "get_services", broken)
        response = client.post("/api/generate", json=REQUEST)
        assert response.status_code == 500
        assert "OPENROUTER_API_KEY" in response.json()["message"]

    def test_timeout(self, client, use_services, happy_replies, monkeypatch):
        monkeypatch.setenv("PIPELINE_TIMEOUT_SECONDS", "0.05")
        speech = _SlowSpeechBackend()
        services, _, _ = make_services(happy_replies, speech=speech)
        use_services(services)
        response = client.post("/api/generate", json=REQUEST)
        assert response.status_code == 504
        assert response.json()["error"] == "timeout"
        time.sleep(0.3)
        assert len(speech.requests) < 18


class TestStreamedGenerate:
    def test_event_sequence(self, client, use_services, happy_replies):
        services, _, _ = make_services(happy_replies)
        use_services(services)
        response = client.post("/api/generate/stream", json=REQUEST)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        events = _parse_sse(response.text)
        names = [name for name, _ in events]

        assert names[0] == "status"
        assert names[-1] == "complete"
        assert names.count("audio_progress") == 18
        assert sum(1 for n in names if n in ("complete", "error")) == 1
        for expected in ("validated", "researched", "scripted", "audio_complete", "merged"):
            assert expected in names

        done = events[-1][1]
        assert "audioUrl" not in done
        assert base64.b64decode(done["audioBase64"]).startswith(b"<mp3:")

    def test_invalid_request_is_single_error_event(self, client, use_services):
        services, llm, _ = make_services([])
        use_services(services)
        response = client.post("/api/generate/stream", json={**REQUEST, "duration": "long"})
        events = _parse_sse(response.text)
        assert events == [
            ("error", {"step": "error", "error": "invalid_duration", "message": "Invalid duration. Must be: short or medium"})
        ]
        assert llm.calls == []

    def test_rejection_ends_stream(self, client, use_services):
        services, _, speech = make_services([validation_reply(is_valid=False, reason="Nope")])
        use_services(services)
        events = _parse_sse(client.post("/api/generate/stream", json=REQUEST).text)
        name, data = events[-1]
        assert name == "error"
        assert data["error"] == "invalid_topic"
        assert data["reason"] == "Nope"
        assert speech.requests == []
