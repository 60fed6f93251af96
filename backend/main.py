from __future__ import annotations

import asyncio
import os
import threading
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

load_dotenv()

from modules.audio import AudioMerger
from modules.errors import InvalidRequestError, StorageNotConfiguredError
from modules.storage import PodcastStorage
from modules.synthesizer import available_voices
from pipeline import (
    PipelineServices,
    build_services,
    error_payload,
    run_pipeline,
    validate_request,
)
from schemas import HealthResponse, PodcastListResponse, StorageHealth, VoicesResponse
from streaming import SSE_HEADERS, EventStream

SERVICE_NAME = "kotomo"
SERVICE_VERSION = "1.0.0"

app = FastAPI(
    title="Kotomo API",
    description="Backend for Kotomo: turning a topic into a two-host podcast episode",
    version=SERVICE_VERSION,
)

cors_origins_raw = os.environ.get("CORS_ALLOW_ORIGINS", "*").strip()
if cors_origins_raw == "*":
    allow_origins = ["*"]
else:
    allow_origins = [o.strip() for o in cors_origins_raw.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

storage = PodcastStorage.from_env()
merger = AudioMerger.from_env()

_background_tasks: set[asyncio.Task[Any]] = set()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_services() -> PipelineServices:
    # Built on first use so that /health and /api/voices work without API keys.
    return build_services(merger=merger, storage=storage)


async def _read_payload(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _public_error(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k != "step"}


@app.on_event("startup")
async def _probe_audio_tools() -> None:
    state = await asyncio.to_thread(merger.probe)
    print(f"[{_utc_now_iso()}] startup remux={state.value}")


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        timestamp=_utc_now_iso(),
        environment=os.environ.get("APP_ENV", "development"),
        storage=StorageHealth(configured=storage.is_enabled(), type=storage.backend_name),
    )


@app.get("/api/voices", response_model=VoicesResponse)
async def list_voices() -> VoicesResponse:
    return VoicesResponse.model_validate({"voices": available_voices()})


@app.get("/api/podcasts", response_model=None)
async def list_podcasts(limit: int = Query(default=100, ge=1, le=1000)) -> Any:
    if not storage.is_enabled():
        return {
            "podcasts": [],
            "message": "Storage not configured. Set BLOB_READ_WRITE_TOKEN to enable.",
        }
    try:
        podcasts = await asyncio.to_thread(storage.list, limit)
    except Exception as exc:
        print(f"[{_utc_now_iso()}] podcasts=list_failed error={exc}")
        return JSONResponse(status_code=500, content={"error": "Failed to list podcasts"})
    return PodcastListResponse(podcasts=podcasts).model_dump(
        mode="json", by_alias=True, exclude_none=True
    )


@app.delete("/api/podcasts", response_model=None)
async def delete_podcast(url: str = Query(min_length=1)) -> Any:
    try:
        await asyncio.to_thread(storage.delete, url)
    except StorageNotConfiguredError as exc:
        return JSONResponse(status_code=400, content=exc.to_payload())
    except Exception as exc:
        print(f"[{_utc_now_iso()}] podcasts=delete_failed url={url} error={exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to delete podcast", "message": str(exc)},
        )
    return {"deleted": url}


@app.post("/api/generate", response_model=None)
async def generate(request: Request) -> Response:
    payload = await _read_payload(request)
    try:
        req = validate_request(payload)
    except InvalidRequestError as exc:
        return JSONResponse(status_code=400, content=exc.to_payload())

    try:
        services = get_services()
    except Exception as exc:
        print(f"[{_utc_now_iso()}] generate=init_failed error={exc}")
        return JSONResponse(status_code=500, content=_public_error(error_payload(exc)))

    timeout_seconds = _env_float("PIPELINE_TIMEOUT_SECONDS", 300.0)
    cancel = threading.Event()
    print(f"[{_utc_now_iso()}] generate=started mode=buffered topic={req.topic!r}")
    try:
        outcome = await asyncio.wait_for(
            asyncio.to_thread(
                run_pipeline,
                req,
                services=services,
                should_stop=cancel.is_set,
            ),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        cancel.set()
        msg = f"Generation timed out after {timeout_seconds:g}s"
        print(f"[{_utc_now_iso()}] generate=failed error={msg}")
        return JSONResponse(status_code=504, content={"error": "timeout", "message": msg})

    if outcome.status == "rejected":
        return JSONResponse(
            status_code=400,
            content={"error": outcome.error_code, "message": outcome.message, "reason": outcome.reason},
        )
    if not outcome.ok or outcome.audio is None:
        return JSONResponse(
            status_code=500,
            content={"error": outcome.error_code, "message": outcome.message},
        )

    print(f"[{_utc_now_iso()}] generate=completed bytes={len(outcome.audio)}")
    headers = {
        "Content-Disposition": f'attachment; filename="kotomo-{int(time.time() * 1000)}.mp3"',
    }
    if outcome.audio_url:
        headers["X-Podcast-Url"] = outcome.audio_url
    return Response(content=outcome.audio, media_type="audio/mpeg", headers=headers)


@app.post("/api/generate/stream")
async def generate_stream(request: Request) -> StreamingResponse:
    payload = await _read_payload(request)
    loop = asyncio.get_running_loop()
    stream = EventStream(loop, heartbeat_seconds=_env_float("SSE_HEARTBEAT_SECONDS", 15.0))
    cancel = threading.Event()
    timeout_seconds = _env_float("PIPELINE_TIMEOUT_SECONDS", 300.0)

    def _on_timeout() -> None:
        cancel.set()
        stream.publish(
            "error",
            {
                "step": "error",
                "error": "timeout",
                "message": f"Generation timed out after {timeout_seconds:g}s",
            },
        )

    async def _event_source():
        timeout_handle: asyncio.TimerHandle | None = None
        try:
            try:
                req = validate_request(payload)
                services = get_services()
            except Exception as exc:
                print(f"[{_utc_now_iso()}] stream=rejected error={exc}")
                stream.publish("error", error_payload(exc))
            else:
                print(f"[{_utc_now_iso()}] stream=started topic={req.topic!r}")
                timeout_handle = loop.call_later(timeout_seconds, _on_timeout)
                task = asyncio.create_task(
                    asyncio.to_thread(
                        run_pipeline,
                        req,
                        services=services,
                        on_event=stream.publish,
                        should_stop=cancel.is_set,
                    )
                )
                _background_tasks.add(task)
                task.add_done_callback(_background_tasks.discard)

            async for chunk in stream.iter_sse(request.is_disconnected):
                yield chunk
        finally:
            # Client gone or terminal event sent: stop chaining backend calls.
            cancel.set()
            if timeout_handle is not None:
                timeout_handle.cancel()
            print(f"[{_utc_now_iso()}] stream=closed")

    return StreamingResponse(
        _event_source(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
