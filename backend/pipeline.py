from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from modules.audio import AudioMerger
from modules.errors import InvalidRequestError, PipelineCancelled, PodcastError
from modules.generator import TextGenerator
from modules.storage import PodcastStorage
from modules.synthesizer import SpeechSynthesizer
from modules.tts_openai import OpenAISpeechBackend
from schemas import DURATIONS, TONES, GenerationRequest

EventCallback = Callable[[str, dict[str, Any]], None]


@dataclass
class PipelineServices:
    generator: TextGenerator
    synthesizer: SpeechSynthesizer
    merger: AudioMerger
    storage: PodcastStorage


def build_services(*, merger: AudioMerger, storage: PodcastStorage) -> PipelineServices:
    """Construct the backend clients once; raises if an API key is missing."""
    return PipelineServices(
        generator=TextGenerator.from_env(),
        synthesizer=SpeechSynthesizer(OpenAISpeechBackend.from_env()),
        merger=merger,
        storage=storage,
    )


@dataclass
class PipelineOutcome:
    status: str  # "complete" | "rejected" | "failed"
    title: str | None = None
    speakers: list[dict[str, str]] = field(default_factory=list)
    line_count: int = 0
    audio: bytes | None = None
    audio_url: str | None = None
    error_code: str | None = None
    message: str | None = None
    reason: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "complete"


def validate_request(payload: Any) -> GenerationRequest:
    data = payload if isinstance(payload, Mapping) else {}
    topic = data.get("topic")
    tone = data.get("tone")
    duration = data.get("duration")

    if not isinstance(topic, str) or not topic.strip() or not tone or not duration:
        raise InvalidRequestError("Missing required fields", code="missing_fields")
    if tone not in TONES:
        raise InvalidRequestError(
            "Invalid tone. Must be: casual, educational, or humorous",
            code="invalid_tone",
        )
    if duration not in DURATIONS:
        raise InvalidRequestError(
            "Invalid duration. Must be: short or medium",
            code="invalid_duration",
        )
    return GenerationRequest(topic=topic.strip(), tone=tone, duration=duration)


def error_payload(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, PodcastError):
        payload = exc.to_payload()
    else:
        payload = {"error": PodcastError.code, "message": str(exc) or exc.__class__.__name__}
    return {"step": "error", **payload}


def complete_payload(outcome: PipelineOutcome) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "step": "complete",
        "title": outcome.title,
        "speakers": outcome.speakers,
        "lineCount": outcome.line_count,
        "audioSize": len(outcome.audio or b""),
        "message": "Podcast generation complete!",
    }
    if outcome.audio_url:
        payload["audioUrl"] = outcome.audio_url
    else:
        payload["audioBase64"] = base64.b64encode(outcome.audio or b"").decode("ascii")
    return payload


def run_pipeline(
    request: GenerationRequest | Mapping[str, Any],
    *,
    services: PipelineServices,
    on_event: EventCallback | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> PipelineOutcome:
    """
    Run one generation request end to end.

    Never raises: every run ends in exactly one terminal event ("complete" or
    "error") and a matching PipelineOutcome. Events are broadcast-only; a
    failing `on_event` is logged and ignored.
    """
    metrics: dict[str, Any] = {}
    t0 = time.perf_counter()

    def emit(event: str, data: dict[str, Any]) -> None:
        if on_event is None:
            return
        try:
            on_event(event, data)
        except Exception as exc:
            print(f"[pipeline] emit_failed event={event} error={exc}")

    def set_stage(step: str, message: str, **extra: Any) -> None:
        print(f"[pipeline] stage={step}")
        emit("status", {"step": step, "message": message, **extra})

    def check_cancelled(stage: str) -> None:
        if should_stop is not None and should_stop():
            raise PipelineCancelled(f"Generation cancelled before {stage}.")

    def fail(exc: BaseException) -> PipelineOutcome:
        payload = error_payload(exc)
        metrics["total_seconds"] = round(time.perf_counter() - t0, 3)
        print(f"[pipeline] stage=failed code={payload['error']} error={payload['message']}")
        emit("error", payload)
        return PipelineOutcome(
            status="failed",
            error_code=payload["error"],
            message=payload["message"],
            metrics=metrics,
        )

    try:
        req = request if isinstance(request, GenerationRequest) else validate_request(request)
    except InvalidRequestError as exc:
        return fail(exc)

    generator = services.generator
    storage = services.storage

    try:
        print(f"[pipeline] start topic={req.topic!r} tone={req.tone} duration={req.duration}")
        set_stage("started", "Starting podcast generation", **generator.model_info())

        # 1) Topic validation
        check_cancelled("validation")
        set_stage("validating", "Analyzing topic...")
        t_step = time.perf_counter()
        validation = generator.validate_topic(req.topic)
        metrics["validate_seconds"] = round(time.perf_counter() - t_step, 3)
        if not validation.is_valid:
            reason = validation.reason or "Topic was rejected."
            metrics["total_seconds"] = round(time.perf_counter() - t0, 3)
            print(f"[pipeline] stage=rejected reason={reason!r}")
            emit(
                "error",
                {"step": "error", "error": "invalid_topic", "message": "Invalid topic", "reason": reason},
            )
            return PipelineOutcome(
                status="rejected",
                error_code="invalid_topic",
                message="Invalid topic",
                reason=reason,
                metrics=metrics,
            )
        topic = validation.cleaned_topic
        emit(
            "validated",
            {"step": "validated", "cleanedTopic": topic, "message": f'Topic validated: "{topic}"'},
        )

        # 2) Research
        check_cancelled("research")
        set_stage("researching", "Generating research...")
        t_step = time.perf_counter()
        research = generator.generate_research(topic, req.tone, req.duration)
        metrics["research_seconds"] = round(time.perf_counter() - t_step, 3)
        metrics["key_points"] = len(research.key_points)
        emit(
            "researched",
            {
                "step": "researched",
                "keyPointsCount": len(research.key_points),
                "factsCount": len(research.facts),
                "message": f"Research complete: {len(research.key_points)} key points",
            },
        )

        # 3) Script
        check_cancelled("scripting")
        set_stage("scripting", "Writing script...")
        t_step = time.perf_counter()
        script = generator.generate_script(research, req.tone, req.duration)
        metrics["script_seconds"] = round(time.perf_counter() - t_step, 3)
        metrics["line_count"] = len(script.lines)
        speakers = [{"name": s.name, "personality": s.personality} for s in script.speakers]
        emit(
            "scripted",
            {
                "step": "scripted",
                "title": script.title,
                "speakers": speakers,
                "lineCount": len(script.lines),
                "message": f'Script complete: "{script.title}" with {len(script.lines)} lines',
            },
        )

        # 4) Speech synthesis, one line at a time
        set_stage("generating_audio", "Generating audio...", totalLines=len(script.lines))

        def on_progress(current: int, total: int, speaker: str, emotion: str) -> None:
            check_cancelled(f"line {current}")
            emit(
                "audio_progress",
                {
                    "step": "generating_audio",
                    "current": current,
                    "total": total,
                    "speaker": speaker,
                    "emotion": emotion,
                    "message": f"Generating line {current}/{total}: {speaker} ({emotion})",
                },
            )

        t_step = time.perf_counter()
        segments = services.synthesizer.synthesize_script(script, on_progress=on_progress)
        metrics["tts_seconds"] = round(time.perf_counter() - t_step, 3)
        emit(
            "audio_complete",
            {
                "step": "audio_complete",
                "segmentCount": len(segments),
                "message": f"Audio generated: {len(segments)} segments",
            },
        )

        # 5) Merge
        check_cancelled("merging")
        set_stage("merging", "Merging audio segments...")
        t_step = time.perf_counter()
        final_audio = services.merger.merge(segments)
        metrics["merge_seconds"] = round(time.perf_counter() - t_step, 3)
        durations = [seg.duration for seg in segments]
        merged_event: dict[str, Any] = {
            "step": "merged",
            "audioSize": len(final_audio),
            "strategy": services.merger.last_strategy,
            "message": f"Final audio ready: {len(final_audio) / 1024:.1f} KB",
        }
        if durations and all(d is not None for d in durations):
            merged_event["durationSeconds"] = round(sum(durations), 3)
        emit("merged", merged_event)

        # 6) Optional upload; failure degrades to inline delivery
        audio_url: str | None = None
        if storage.is_enabled():
            check_cancelled("upload")
            set_stage("uploading", "Uploading to cloud storage...")
            t_step = time.perf_counter()
            try:
                stored = storage.upload(
                    final_audio,
                    script.title,
                    {
                        "topic": topic,
                        "tone": req.tone,
                        "duration": req.duration,
                        "lineCount": len(script.lines),
                    },
                )
                audio_url = stored.url
            except Exception as exc:
                print(f"[pipeline] upload_failed error={exc}")
                set_stage("upload_failed", "Upload failed, delivering audio inline.")
            metrics["upload_seconds"] = round(time.perf_counter() - t_step, 3)

        # 7) Finalize
        metrics["total_seconds"] = round(time.perf_counter() - t0, 3)
        outcome = PipelineOutcome(
            status="complete",
            title=script.title,
            speakers=speakers,
            line_count=len(script.lines),
            audio=final_audio,
            audio_url=audio_url,
            metrics=metrics,
        )
        print(
            f"[pipeline] stage=complete bytes={len(final_audio)} "
            f"delivery={'url' if audio_url else 'inline'} metrics={metrics}"
        )
        emit("complete", complete_payload(outcome))
        return outcome
    except Exception as exc:
        return fail(exc)
