"""Fetch catalog artifacts (manifest, tool scripts, shared modules) over HTTP."""

from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import quote

import httpx
import structlog

from bepoz_toolkit.cache.artifact_cache import normalize_key

DEFAULT_TIMEOUT_SECONDS = 30.0


class FetchError(RuntimeError):
    """Raised when an artifact cannot be downloaded from the catalog."""

    def __init__(self, relative_path: str, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(f"failed to fetch {relative_path}: {detail}")
        self.relative_path = relative_path
        self.status_code = status_code


class ArtifactFetcher(Protocol):
    def fetch(self, relative_path: str) -> bytes: ...


class HttpArtifactFetcher:
    """Reads artifacts from ``<base_url>/<relative_path>`` with a bounded timeout."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        token: str | None = None,
        transport: httpx.BaseTransport | None = None,
        logger: Any | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("base_url must not be empty")
        headers = {"User-Agent": "bepoz-toolkit"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._base_url = base_url.rstrip("/") + "/"
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout_seconds,
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def base_url(self) -> str:
        return self._base_url

    def fetch(self, relative_path: str) -> bytes:
        key = normalize_key(relative_path)
        url = quote(key, safe="/")
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            self._logger.warning("catalog_fetch_failed", path=key, status_code=status)
            raise FetchError(key, f"HTTP {status}", status_code=status) from exc
        except httpx.HTTPError as exc:
            self._logger.warning("catalog_fetch_failed", path=key, error=str(exc))
            raise FetchError(key, str(exc) or type(exc).__name__) from exc

        self._logger.info("catalog_fetch_completed", path=key, size_bytes=len(response.content))
        return response.content

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpArtifactFetcher:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = [
    "ArtifactFetcher",
    "DEFAULT_TIMEOUT_SECONDS",
    "FetchError",
    "HttpArtifactFetcher",
]
