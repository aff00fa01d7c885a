"""HTTP transport for the upload client: streamed multipart POST with progress."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional, Protocol

import httpx

from config import settings
from uploader.errors import UploadError, UploadErrorKind
from uploader.sources import UploadSource

ProgressCallback = Callable[[int], None]


class UploadTarget(str, Enum):
    SITE_LOGO = "site-logo"
    ANIME_COVER = "anime-cover"
    EPISODE_THUMBNAIL = "episode-thumbnail"
    EPISODE_VIDEO = "episode-video"

    @property
    def field_name(self) -> str:
        return _FIELD_NAMES[self]

    @property
    def path(self) -> str:
        return f"/api/upload/{self.value}"


_FIELD_NAMES: Dict[UploadTarget, str] = {
    UploadTarget.SITE_LOGO: "logo",
    UploadTarget.ANIME_COVER: "cover",
    UploadTarget.EPISODE_THUMBNAIL: "thumbnail",
    UploadTarget.EPISODE_VIDEO: "video",
}


@dataclass(frozen=True)
class UploadResult:
    url: str
    filename: str
    message: str = ""


class UploadTransport(Protocol):
    async def send(self, source: UploadSource, on_progress: ProgressCallback) -> UploadResult:
        ...


def _quote_param(value: str) -> str:
    return value.replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")


def _parse_upload_response(response: httpx.Response) -> UploadResult:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if response.is_success:
        if not isinstance(payload, dict) or not payload.get("url"):
            raise UploadError(
                UploadErrorKind.UNKNOWN,
                "Invalid response from server",
                status_code=response.status_code,
            )
        return UploadResult(
            url=str(payload["url"]),
            filename=str(payload.get("filename") or ""),
            message=str(payload.get("message") or ""),
        )

    message = payload.get("message") if isinstance(payload, dict) else None
    if response.status_code == 413:
        raise UploadError(UploadErrorKind.FILE_TOO_LARGE, message, status_code=413)
    raise UploadError(
        UploadErrorKind.SERVER_REJECTED,
        message or f"Upload failed with status {response.status_code}",
        status_code=response.status_code,
    )


class HttpUploadTransport:
    """
    Sends one file as `multipart/form-data` through an `httpx.AsyncClient`.

    The body is framed by hand and streamed from the source so that progress
    can be reported as the transport consumes it, and so a declared
    Content-Length lets the server refuse oversized files up front.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        target: UploadTarget,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        chunk_size: Optional[int] = None,
    ):
        self.client = client
        self.target = target
        self.token = token
        self.timeout_seconds = float(timeout_seconds or settings.UPLOAD_CLIENT_TIMEOUT_SECONDS)
        self.chunk_size = int(chunk_size or settings.UPLOAD_CHUNK_BYTES)

    async def send(self, source: UploadSource, on_progress: ProgressCallback) -> UploadResult:
        boundary = secrets.token_hex(16)
        preamble = (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{self.target.field_name}"; '
            f'filename="{_quote_param(source.name)}"\r\n'
            f"Content-Type: {source.content_type}\r\n\r\n"
        ).encode("utf-8")
        epilogue = f"\r\n--{boundary}--\r\n".encode("ascii")
        total = len(preamble) + source.size + len(epilogue)
        sent = 0

        def report() -> None:
            on_progress(min(100, (sent * 100) // total) if total else 100)

        async def body() -> AsyncIterator[bytes]:
            nonlocal sent
            report()
            yield preamble
            sent += len(preamble)
            async for chunk in source.iter_chunks(self.chunk_size):
                yield chunk
                sent += len(chunk)
                report()
            yield epilogue
            sent += len(epilogue)
            report()

        headers = {
            "Content-Type": f"multipart/form-data; boundary={boundary}",
            "Content-Length": str(total),
            "Accept": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = await self.client.post(
                self.target.path,
                content=body(),
                headers=headers,
                timeout=httpx.Timeout(self.timeout_seconds),
            )
        except httpx.TimeoutException as exc:
            raise UploadError(UploadErrorKind.TIMEOUT) from exc
        except httpx.TransportError as exc:
            raise UploadError(UploadErrorKind.NETWORK) from exc
        except httpx.HTTPError as exc:
            raise UploadError(UploadErrorKind.UNKNOWN, str(exc) or None) from exc

        return _parse_upload_response(response)
