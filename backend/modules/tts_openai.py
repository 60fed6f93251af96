from __future__ import annotations

import os

import requests

from modules.tts_base import SpeechBackend
from modules.tts_types import SpeechRequest

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TTS_MODEL = "tts-1"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class OpenAISpeechBackend(SpeechBackend):
    name = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        model: str = DEFAULT_TTS_MODEL,
        connect_timeout: float = 5.0,
        request_timeout: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls) -> "OpenAISpeechBackend":
        api_key = os.environ.get("OPENAI_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set.")
        backend = cls(
            api_key,
            base_url=os.environ.get("OPENAI_BASE_URL", "").strip() or DEFAULT_OPENAI_BASE_URL,
            model=os.environ.get("OPENAI_TTS_MODEL", "").strip() or DEFAULT_TTS_MODEL,
            connect_timeout=_env_float("TTS_CONNECT_TIMEOUT_SECONDS", 5.0),
            request_timeout=_env_float("TTS_REQUEST_TIMEOUT_SECONDS", 60.0),
        )
        print(f"[tts_openai] initialized model={backend.model}")
        return backend

    def synthesize(self, request: SpeechRequest) -> bytes:
        text = request.text.strip()
        if not text:
            raise RuntimeError("TTS text is empty.")
        try:
            response = self._session.post(
                f"{self.base_url}/audio/speech",
                json={
                    "model": self.model,
                    "input": text,
                    "voice": request.voice,
                    "response_format": request.response_format,
                    "speed": request.speed,
                },
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=(self.connect_timeout, self.request_timeout),
            )
        except requests.RequestException as exc:
            raise RuntimeError(f"TTS request failed: {exc}") from exc

        if response.status_code != 200:
            print(f"[tts_openai] error status={response.status_code} body={response.text[:300]!r}")
            raise RuntimeError(
                f"TTS generation failed: {response.status_code} {response.reason}"
            )
        if not response.content:
            raise RuntimeError("TTS generation returned no audio.")
        return response.content
