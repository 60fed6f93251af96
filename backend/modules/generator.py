from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from modules.errors import ScriptGenerationError
from modules.extraction import extract_json_object
from modules.llm import get_client, resolve_model_name, split_model_name
from modules.prompts import (
    RESEARCH_PROMPT,
    SCRIPT_PROMPT,
    TONE_DESCRIPTIONS,
    TOPIC_VALIDATION_PROMPT,
    duration_hint,
    render_prompt,
)
from schemas import PodcastScript, ResearchNotes, TopicValidation

VALIDATION_MAX_TOKENS = 500
RESEARCH_MAX_TOKENS = 2000
SCRIPT_MAX_TOKENS = 4000


def _preview(text: str, max_len: int = 200) -> str:
    value = " ".join((text or "").split())
    if len(value) <= max_len:
        return value
    return value[:max_len].rstrip() + "..."


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return not value


def placeholder_research(topic: str) -> ResearchNotes:
    return ResearchNotes(
        topic=topic,
        key_points=[f"Overview of {topic}"],
        facts=["This is an interesting topic"],
        context=f"A discussion about {topic}",
    )


def check_script_structure(script: PodcastScript) -> None:
    names = [speaker.name for speaker in script.speakers]
    if len(set(names)) != len(names):
        raise ScriptGenerationError("Script declares duplicate speaker names.")
    known = set(names)
    for idx, line in enumerate(script.lines, start=1):
        if line.speaker not in known:
            raise ScriptGenerationError(
                f"Script line {idx} references unknown speaker '{line.speaker}'."
            )
        if not line.text.strip():
            raise ScriptGenerationError(f"Script line {idx} has no text.")


class TextGenerator:
    """
    Topic validation, research and script generation on top of a
    chat-completions client.

    Parsing problems are recovered locally for validation and research;
    a script that cannot be parsed or is incomplete raises
    ScriptGenerationError. Transport errors always propagate.
    """

    def __init__(self, client: Any, model: str) -> None:
        self._client = client
        self.model = model

    @classmethod
    def from_env(cls) -> "TextGenerator":
        return cls(get_client(), resolve_model_name())

    def model_info(self) -> dict[str, str]:
        return split_model_name(self.model)

    def _complete(self, prompt: str, max_tokens: int) -> str:
        response = self._client.models.generate_content(
            model=self.model,
            contents=prompt,
            max_tokens=max_tokens,
        )
        return response.text or ""

    def validate_topic(self, topic: str) -> TopicValidation:
        prompt = render_prompt(TOPIC_VALIDATION_PROMPT, topic=topic)
        text = self._complete(prompt, VALIDATION_MAX_TOKENS)
        try:
            result = TopicValidation.model_validate(extract_json_object(text))
        except (ValueError, ValidationError) as exc:
            print(f"[generator] validation_parse_failed error={exc} text={_preview(text)!r}")
            return TopicValidation(is_valid=True, cleaned_topic=topic)

        if not result.cleaned_topic.strip():
            result.cleaned_topic = topic
        else:
            result.cleaned_topic = result.cleaned_topic.strip()
        if result.is_valid:
            result.reason = None
        elif not result.reason:
            result.reason = "Topic was rejected."
        return result

    def generate_research(self, topic: str, tone: str, duration: str) -> ResearchNotes:
        prompt = render_prompt(
            RESEARCH_PROMPT,
            topic=topic,
            tone=TONE_DESCRIPTIONS.get(tone, tone),
            duration=duration,
        )
        text = self._complete(prompt, RESEARCH_MAX_TOKENS)
        try:
            data = extract_json_object(text)
            data.setdefault("topic", topic)
            research = ResearchNotes.model_validate(data)
        except (ValueError, ValidationError) as exc:
            print(f"[generator] research_parse_failed error={exc} text={_preview(text)!r}")
            return placeholder_research(topic)

        research.key_points = [p.strip() for p in research.key_points if p and p.strip()]
        if not research.key_points:
            research.key_points = [f"Overview of {topic}"]
        return research

    def generate_script(
        self, research: ResearchNotes, tone: str, duration: str
    ) -> PodcastScript:
        prompt = render_prompt(
            SCRIPT_PROMPT,
            research=json.dumps(research.model_dump(by_alias=True), indent=2, ensure_ascii=False),
            tone=TONE_DESCRIPTIONS.get(tone, tone),
            duration=duration_hint(duration),
        )
        text = self._complete(prompt, SCRIPT_MAX_TOKENS)
        try:
            data = extract_json_object(text)
        except ValueError as exc:
            print(f"[generator] script_parse_failed error={exc} text={_preview(text)!r}")
            raise ScriptGenerationError("Failed to parse podcast script from model response.") from exc

        missing = [key for key in ("title", "speakers", "lines") if _is_blank(data.get(key))]
        if missing:
            raise ScriptGenerationError(
                f"Invalid script structure: missing {', '.join(missing)}."
            )
        try:
            script = PodcastScript.model_validate(data)
        except ValidationError as exc:
            raise ScriptGenerationError(f"Invalid script structure: {exc.error_count()} errors.") from exc
        check_script_structure(script)
        return script
