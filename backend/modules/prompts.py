from __future__ import annotations

import re

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

TOPIC_VALIDATION_PROMPT = """You are a content validator for a podcast generation system.

Analyze the given topic and determine if it's appropriate for an educational podcast.

Rules:
- Accept topics that are educational, informative, or intellectually interesting
- Reject topics that are harmful, illegal, hateful, or inappropriate
- Clean up the topic by fixing typos and clarifying vague requests
- If the topic is too broad, suggest a more focused angle

Respond with a JSON object containing:
- isValid: boolean
- cleanedTopic: string (the cleaned/improved topic)
- reason: string (only if invalid, explain why)

Topic to validate: "{topic}"

Respond with valid JSON only."""

RESEARCH_PROMPT = """You are a research assistant preparing notes for a podcast episode.

Topic: {topic}
Tone: {tone}
Duration: {duration}

Generate comprehensive research notes that will help podcast hosts discuss this topic naturally.

Include:
- 5-8 key points that should be covered
- 3-5 interesting facts or statistics
- Background context that provides foundation for the discussion

Keep the research factual and well-organized. The hosts will use these notes to have an engaging conversation.

Respond with a JSON object containing: topic, keyPoints (array), facts (array), context (string). JSON only, no markdown."""

SCRIPT_PROMPT = """You are a podcast script writer creating a two-person dialogue.

Research Notes:
{research}

Podcast Settings:
- Tone: {tone}
- Duration: {duration} (short = ~2 minutes / 15-20 exchanges, medium = ~5 minutes / 30-40 exchanges)

Create a natural, engaging podcast script with two hosts who have distinct personalities.

Speaker Guidelines:
- Host 1: The curious questioner who drives the conversation forward
- Host 2: The knowledgeable explainer who provides insights and answers

Emotion Tags (use one per line):
- curious, enthusiastic, thoughtful, surprised, amused, serious, excited, contemplative

Script Requirements:
- Start with a brief intro that hooks the listener
- Flow naturally like a real conversation
- Include moments of discovery and "aha" moments
- End with a satisfying conclusion or call-to-action
- Each line should feel speakable (not too long, natural phrasing)

Return a JSON object with:
- title: string (catchy episode title)
- speakers: array of {name, personality, voiceId} (use "voice1" and "voice2" as voiceId placeholders)
- lines: array of {speaker, text, emotion}

Respond with valid JSON only."""

# Advisory targets, not enforced on the generated script.
DURATION_LINE_COUNTS: dict[str, tuple[int, int]] = {
    "short": (15, 20),
    "medium": (30, 40),
}

TONE_DESCRIPTIONS: dict[str, str] = {
    "casual": "relaxed, friendly, conversational with humor",
    "educational": "informative, clear, focused on learning",
    "humorous": "playful, witty, entertaining while still informative",
}


def render_prompt(template: str, **values: str) -> str:
    # Single pass over named placeholders only; the JSON hints keep their braces
    # and substituted values are never rescanned.
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def duration_hint(duration: str) -> str:
    low, high = DURATION_LINE_COUNTS.get(duration, DURATION_LINE_COUNTS["short"])
    return f"{duration} (target {low}-{high} lines)"
