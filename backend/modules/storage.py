from __future__ import annotations

import os
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable

import requests

from modules.errors import StorageNotConfiguredError
from schemas import StoredPodcast

DEFAULT_BLOB_API_URL = "https://blob.vercel-storage.com"
BLOB_API_VERSION = "7"
PODCAST_PREFIX = "podcasts/"
MAX_SLUG_CHARS = 50


def safe_slug(title: str, max_len: int = MAX_SLUG_CHARS) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (title or "").lower()).strip("-")
    slug = slug[:max_len].strip("-")
    return slug or "podcast"


def podcast_pathname(title: str, timestamp_ms: int) -> str:
    return f"{PODCAST_PREFIX}{safe_slug(title)}-{timestamp_ms}.mp3"


def _parse_uploaded_at(value: Any) -> datetime:
    parsed: datetime | None = value if isinstance(value, datetime) else None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
    if parsed is None:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class VercelBlobBackend:
    """Minimal client for the Vercel Blob REST API."""

    def __init__(
        self,
        token: str,
        *,
        api_url: str = DEFAULT_BLOB_API_URL,
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        self._token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "authorization": f"Bearer {self._token}",
            "x-api-version": BLOB_API_VERSION,
        }
        if extra:
            headers.update(extra)
        return headers

    def _check(self, response: requests.Response, action: str) -> None:
        if response.status_code >= 400:
            raise RuntimeError(
                f"Blob {action} failed: HTTP {response.status_code}: {response.text[:300]}"
            )

    def put(self, pathname: str, data: bytes, content_type: str) -> dict[str, Any]:
        response = self._session.put(
            f"{self.api_url}/{pathname}",
            data=data,
            headers=self._headers(
                {
                    "x-content-type": content_type,
                    "x-add-random-suffix": "0",
                    "x-vercel-blob-access": "public",
                }
            ),
            timeout=self.timeout,
        )
        self._check(response, "upload")
        body = response.json()
        return {"url": body["url"], "pathname": body.get("pathname", pathname)}

    def list(self, prefix: str, limit: int) -> list[dict[str, Any]]:
        response = self._session.get(
            self.api_url,
            params={"prefix": prefix, "limit": limit},
            headers=self._headers(),
            timeout=self.timeout,
        )
        self._check(response, "list")
        return list(response.json().get("blobs", []))

    def delete(self, url: str) -> None:
        response = self._session.post(
            f"{self.api_url}/delete",
            json={"urls": [url]},
            headers=self._headers(),
            timeout=self.timeout,
        )
        self._check(response, "delete")


class PodcastStorage:
    """
    Optional persistence of finished episodes.

    Disabled when no write token is configured; every operation other than
    is_enabled() then raises StorageNotConfiguredError.
    """

    def __init__(
        self,
        backend: Any | None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._clock = clock

    @classmethod
    def from_env(cls) -> "PodcastStorage":
        token = os.environ.get("BLOB_READ_WRITE_TOKEN", "").strip()
        if not token:
            print("[storage] BLOB_READ_WRITE_TOKEN not set, storage disabled.")
            return cls(None)
        api_url = os.environ.get("VERCEL_BLOB_API_URL", "").strip() or DEFAULT_BLOB_API_URL
        return cls(VercelBlobBackend(token, api_url=api_url))

    def is_enabled(self) -> bool:
        return self._backend is not None

    @property
    def backend_name(self) -> str:
        return "vercel-blob" if self.is_enabled() else "none"

    def _require_backend(self) -> Any:
        if self._backend is None:
            raise StorageNotConfiguredError(
                "Storage is not configured. Set BLOB_READ_WRITE_TOKEN environment variable."
            )
        return self._backend

    def upload(
        self,
        buffer: bytes,
        title: str,
        metadata: dict[str, Any] | None = None,
    ) -> StoredPodcast:
        backend = self._require_backend()
        pathname = podcast_pathname(title, int(self._clock() * 1000))
        print(f"[storage] uploading pathname={pathname} bytes={len(buffer)} metadata={metadata or {}}")
        blob = backend.put(pathname, buffer, "audio/mpeg")
        stored = StoredPodcast(
            url=blob["url"],
            pathname=blob.get("pathname") or pathname,
            size=len(buffer),
            uploaded_at=datetime.now(timezone.utc),
        )
        print(f"[storage] uploaded url={stored.url}")
        return stored

    def list(self, limit: int = 100) -> list[StoredPodcast]:
        backend = self._require_backend()
        blobs = backend.list(PODCAST_PREFIX, limit)
        items = [
            StoredPodcast(
                url=str(blob.get("url", "")),
                pathname=str(blob.get("pathname", "")),
                size=int(blob.get("size") or 0),
                uploaded_at=_parse_uploaded_at(blob.get("uploadedAt")),
            )
            for blob in blobs
        ]
        items.sort(key=lambda item: item.uploaded_at, reverse=True)
        return items[:limit]

    def delete(self, url: str) -> None:
        backend = self._require_backend()
        backend.delete(url)
        print(f"[storage] deleted url={url}")
