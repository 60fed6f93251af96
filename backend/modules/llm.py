from __future__ import annotations

import os
from functools import lru_cache
from typing import Any

import requests

DEFAULT_OPENROUTER_MODEL = "anthropic/claude-sonnet-4"
DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_APP_NAME = "Kotomo"
DEFAULT_SITE_URL = "https://kotomo.vercel.app"

# Older dated ids that OpenRouter no longer accepts.
_LEGACY_MODEL_IDS = {
    "anthropic/claude-sonnet-4-20250514": "anthropic/claude-sonnet-4",
}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _first_choice(payload: Any) -> dict[str, Any]:
    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not choices or not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise RuntimeError("OpenRouter response missing choices.")
    return choices[0]


def _choice_text(choice: dict[str, Any]) -> str:
    message = choice.get("message")
    if not isinstance(message, dict):
        raise RuntimeError("OpenRouter response missing message.")

    content = message.get("content")
    if isinstance(content, list):
        # Multi-part content: keep only the text parts.
        content = "\n".join(
            part["text"].strip()
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip()
        )
    if isinstance(content, str) and content.strip():
        return content.strip()
    raise RuntimeError("OpenRouter response does not contain text content.")


class CompletionResponse:
    def __init__(self, text: str, finish_reason: str | None = None) -> None:
        self.text = text
        self.finish_reason = finish_reason


class _ChatCompletions:
    """One-shot, single user message chat completions against OpenRouter."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        app_name: str = DEFAULT_APP_NAME,
        site_url: str = DEFAULT_SITE_URL,
        temperature: float = 0.7,
        timeout: float = 90.0,
        session: requests.Session | None = None,
    ) -> None:
        self.endpoint = base_url.rstrip("/") + "/chat/completions"
        self.temperature = temperature
        self.timeout = timeout
        self._session = session
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            # OpenRouter attribution headers.
            "HTTP-Referer": site_url,
            "X-Title": app_name,
        }

    def _post(self, body: dict[str, Any]) -> requests.Response:
        sender = self._session.post if self._session is not None else requests.post
        try:
            return sender(self.endpoint, json=body, headers=self._headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RuntimeError(f"OpenRouter request failed: {exc}") from exc

    def generate_content(self, *, model: str, contents: str, max_tokens: int) -> CompletionResponse:
        response = self._post(
            {
                "model": model,
                "messages": [{"role": "user", "content": contents}],
                "max_tokens": max_tokens,
                "temperature": self.temperature,
            }
        )
        if response.status_code != 200:
            raise RuntimeError(f"OpenRouter HTTP {response.status_code}: {response.text}")
        try:
            data = response.json()
        except ValueError as exc:
            raise RuntimeError("OpenRouter response is not valid JSON.") from exc

        choice = _first_choice(data)
        text = _choice_text(choice)
        finish_reason = choice.get("finish_reason")
        if finish_reason == "length":
            print(f"[llm] truncated model={model} max_tokens={max_tokens}")
        return CompletionResponse(text=text, finish_reason=finish_reason)


class OpenRouterClient:
    def __init__(self, api_key: str, base_url: str, **options: Any) -> None:
        self.models = _ChatCompletions(api_key, base_url, **options)


def get_client() -> OpenRouterClient:
    api_key = os.environ.get("OPENROUTER_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError("OPENROUTER_API_KEY is not set.")
    return OpenRouterClient(
        api_key,
        os.environ.get("OPENROUTER_BASE_URL", "").strip() or DEFAULT_OPENROUTER_BASE_URL,
        app_name=os.environ.get("APP_NAME", "").strip() or DEFAULT_APP_NAME,
        site_url=os.environ.get("SITE_URL", "").strip() or DEFAULT_SITE_URL,
        temperature=_env_float("LLM_TEMPERATURE", 0.7),
        timeout=_env_float("LLM_REQUEST_TIMEOUT_SECONDS", 90.0),
        session=requests.Session(),
    )


@lru_cache(maxsize=1)
def resolve_model_name() -> str:
    preferred = os.environ.get("LLM_MODEL", "").strip()
    return _LEGACY_MODEL_IDS.get(preferred, preferred) or DEFAULT_OPENROUTER_MODEL


def split_model_name(model: str) -> dict[str, str]:
    """'anthropic/claude-sonnet-4' -> {'model': 'claude-sonnet-4', 'provider': 'anthropic'}"""
    provider, sep, name = model.partition("/")
    if not sep or not name:
        return {"model": model, "provider": "unknown"}
    return {"model": name, "provider": provider or "unknown"}
