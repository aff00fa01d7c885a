"""Streaming multipart receiver and on-disk storage for uploaded media."""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, BinaryIO, Dict, Iterable, List, Optional

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from config import settings

logger = logging.getLogger(__name__)

ALLOWED_MIME_PREFIXES = ("image/", "video/")
# Room for boundaries and part headers on top of the file payload itself.
MULTIPART_ENVELOPE_BYTES = 64 * 1024
TEMP_PREFIX = "."
TEMP_SUFFIX = ".part"


class UploadRejected(Exception):
    """Upload refused for a client-side reason (type, size, missing file, bad framing)."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass(frozen=True)
class StoredAsset:
    filename: str
    url: str
    path: Path
    size_bytes: int
    mime_type: str
    original_filename: str


def upload_root() -> Path:
    root = Path(settings.UPLOAD_DIR)
    root.mkdir(parents=True, exist_ok=True)
    return root


def asset_url(filename: str) -> str:
    prefix = (settings.UPLOAD_URL_PREFIX or "/uploads").rstrip("/")
    return f"{prefix}/{filename}"


def is_allowed_mime(mime_type: str) -> bool:
    return (mime_type or "").lower().startswith(ALLOWED_MIME_PREFIXES)


def _sanitize_filename(filename: str) -> str:
    base = os.path.basename((filename or "").replace("\\", "/"))
    safe = "".join(ch if ch.isalnum() or ch in ("-", "_", ".") else "_" for ch in base)
    return safe or "upload"


def generate_stored_filename(field_name: str, original_filename: str) -> str:
    """`<field>-<epoch millis>-<random>` plus the original extension."""
    suffix = Path(_sanitize_filename(original_filename)).suffix.lower()
    return f"{field_name}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{suffix}"


def too_large_message(limit_bytes: int) -> str:
    if limit_bytes >= 1024 * 1024:
        return f"File too large. Max upload size is {limit_bytes // (1024 * 1024)}MB."
    return f"File too large. Max upload size is {limit_bytes} bytes."


def resolve_asset_path(filename: str) -> Optional[Path]:
    """Return the stored file for a public filename, refusing traversal and temp files."""
    if not filename or filename != os.path.basename(filename) or filename.startswith(TEMP_PREFIX):
        return None
    path = upload_root() / filename
    if not path.is_file():
        return None
    return path


def filename_from_url(url: Optional[str]) -> Optional[str]:
    prefix = (settings.UPLOAD_URL_PREFIX or "/uploads").rstrip("/") + "/"
    if not url or not url.startswith(prefix):
        return None
    name = url[len(prefix):]
    return name if name and "/" not in name else None


def log_orphaned_assets(urls: Iterable[Optional[str]], reason: str) -> List[str]:
    """Uploaded files are never deleted with their records; record which ones were left behind."""
    orphaned = [name for name in (filename_from_url(url) for url in urls) if name]
    if orphaned:
        logger.info("Assets left on disk after %s: %s", reason, ", ".join(orphaned))
    return orphaned


class _MultipartFileReceiver:
    """Feeds a multipart body through python-multipart and spools one file part to disk."""

    def __init__(self, boundary: bytes, field_name: str, max_bytes: int, directory: Path):
        self.field_name = field_name
        self.max_bytes = max_bytes
        self.directory = directory

        self._headers: Dict[bytes, bytes] = {}
        self._header_name = b""
        self._header_value = b""
        self._in_target = False

        self._file: Optional[BinaryIO] = None
        self._temp_path: Optional[Path] = None
        self._final_name: Optional[str] = None
        self._size = 0
        self._mime = ""
        self._original_filename = ""
        self._received = False

        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
            },
        )

    def feed(self, chunk: bytes) -> None:
        self._parser.write(chunk)

    def finalize(self) -> None:
        self._parser.finalize()

    def _on_part_begin(self) -> None:
        self._headers = {}
        self._in_target = False

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_name += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._header_name.lower()] = self._header_value
        self._header_name = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        name = options.get(b"name", b"").decode("latin-1")
        filename = options.get(b"filename")
        # Only the first non-empty file part for the expected field counts.
        if name != self.field_name or not filename or self._received or self._file is not None:
            return

        mime_type = parse_options_header(self._headers.get(b"content-type", b""))[0].decode("latin-1").lower()
        if not is_allowed_mime(mime_type):
            raise UploadRejected(400, "Only image and video files are allowed")

        self._original_filename = filename.decode("utf-8", errors="replace")
        self._mime = mime_type
        self._final_name = generate_stored_filename(self.field_name, self._original_filename)
        self._temp_path = self.directory / f"{TEMP_PREFIX}{self._final_name}{TEMP_SUFFIX}"
        self._file = self._temp_path.open("wb")
        self._in_target = True

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if not self._in_target or self._file is None:
            return
        self._size += end - start
        if self._size > self.max_bytes:
            raise UploadRejected(413, too_large_message(self.max_bytes))
        self._file.write(data[start:end])

    def _on_part_end(self) -> None:
        if not self._in_target or self._file is None:
            return
        self._file.close()
        self._file = None
        self._in_target = False
        self._received = True

    def commit(self) -> StoredAsset:
        if self._in_target:
            raise UploadRejected(400, "Incomplete multipart body")
        if not self._received or self._temp_path is None or self._final_name is None:
            raise UploadRejected(400, "No file uploaded")
        final_path = self.directory / self._final_name
        os.replace(self._temp_path, final_path)
        self._temp_path = None
        return StoredAsset(
            filename=self._final_name,
            url=asset_url(self._final_name),
            path=final_path,
            size_bytes=self._size,
            mime_type=self._mime,
            original_filename=self._original_filename,
        )

    def discard(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        if self._temp_path is not None:
            try:
                self._temp_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not cleanup partial upload %s: %s", self._temp_path, exc)
            self._temp_path = None


def _multipart_boundary(content_type: str) -> bytes:
    media_type, params = parse_options_header(content_type or "")
    if media_type != b"multipart/form-data":
        raise UploadRejected(400, "Expected a multipart/form-data request")
    boundary = params.get(b"boundary")
    if not boundary:
        raise UploadRejected(400, "Missing multipart boundary")
    return boundary


async def receive_single_file(
    body: AsyncIterable[bytes],
    *,
    content_type: str,
    field_name: str,
    content_length: Optional[int] = None,
    max_bytes: Optional[int] = None,
    directory: Optional[Path] = None,
) -> StoredAsset:
    """
    Stream one file field of a multipart body into the upload directory.

    Nothing is left on disk unless the whole part was received and accepted:
    bytes go to a hidden temp file that is renamed into place at the end.
    """
    limit = int(max_bytes if max_bytes is not None else settings.MAX_UPLOAD_BYTES)
    boundary = _multipart_boundary(content_type)
    if content_length is not None and content_length > limit + MULTIPART_ENVELOPE_BYTES:
        raise UploadRejected(413, too_large_message(limit))

    receiver = _MultipartFileReceiver(boundary, field_name, limit, directory or upload_root())
    try:
        async for chunk in body:
            if chunk:
                # Parsing and disk writes run off the event loop.
                await asyncio.to_thread(receiver.feed, chunk)
        receiver.finalize()
        return receiver.commit()
    except MultipartParseError as exc:
        raise UploadRejected(400, "Malformed multipart body") from exc
    finally:
        receiver.discard()


def parse_content_length(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None
