"""Object storage download client for uploaded recordings.

Storage is an external collaborator: the pipeline only needs the bytes of
one object. Transient transport errors and 5xx/429 responses are retried;
anything else surfaces as DownloadFailure.
"""

from __future__ import annotations

from urllib.parse import quote

import httpx
import structlog

from src.insights.pipeline.errors import DownloadFailure
from src.insights.pipeline.retry import stage_retrying

logger = structlog.get_logger(__name__)


def is_transient_http_error(exc: BaseException) -> bool:
    """Transport errors, rate limiting and server errors are worth retrying."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return status_code == 429 or status_code >= 500
    return False


class StorageClient:
    """Download recordings from a storage bucket over HTTP.

    Args:
        base_url: Storage service root URL.
        service_key: Service credential sent as bearer token and apikey.
        bucket: Bucket holding the recordings.
        timeout: Per-request timeout in seconds.
        max_attempts: Attempts for transient failures.
        retry_min_wait: Backoff lower bound in seconds.
        retry_max_wait: Backoff upper bound in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket
        self._timeout = timeout
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }
        self._max_attempts = max_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait
        self._transport = transport

    def object_url(self, audio_path: str) -> str:
        return (
            f"{self._base_url}/storage/v1/object/{self._bucket}/"
            f"{quote(audio_path.lstrip('/'), safe='/')}"
        )

    async def download(self, audio_path: str) -> bytes:
        """Fetch the recording bytes.

        Raises:
            DownloadFailure: If the object cannot be fetched.
        """
        if not self._base_url:
            raise DownloadFailure("Failed to download audio: storage is not configured")

        retrying = stage_retrying(
            "download",
            is_transient_http_error,
            max_attempts=self._max_attempts,
            min_wait=self._retry_min_wait,
            max_wait=self._retry_max_wait,
        )
        try:
            content = await retrying(self._download_once, audio_path)
        except httpx.HTTPStatusError as exc:
            raise DownloadFailure(
                f"Failed to download audio: HTTP {exc.response.status_code} "
                f"for {audio_path}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DownloadFailure(f"Failed to download audio: {exc}") from exc

        logger.info("audio_downloaded", audio_path=audio_path, size_bytes=len(content))
        return content

    async def _download_once(self, audio_path: str) -> bytes:
        async with httpx.AsyncClient(
            headers=self._headers, timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.get(self.object_url(audio_path))
            response.raise_for_status()
            return response.content
