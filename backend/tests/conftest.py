from __future__ import annotations

import pytest

from fakes import research_reply, script_reply, validation_reply


@pytest.fixture
def happy_replies() -> list[str]:
    return [validation_reply(), research_reply(), script_reply(18)]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "BLOB_READ_WRITE_TOKEN",
        "LLM_MODEL",
        "AUDIO_MERGE_STRATEGY",
        "PIPELINE_TIMEOUT_SECONDS",
        "SSE_HEARTBEAT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
