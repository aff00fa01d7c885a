"""Selected-file abstraction for the upload client."""

from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Union

DEFAULT_CHUNK_BYTES = 256 * 1024


@dataclass(frozen=True)
class UploadSource:
    """A file chosen for upload, read either from disk or from memory."""

    name: str
    size: int
    content_type: str
    path: Optional[Path] = None
    data: Optional[bytes] = None

    @classmethod
    def from_path(cls, path: Union[str, Path], content_type: Optional[str] = None) -> "UploadSource":
        file_path = Path(path)
        return cls(
            name=file_path.name,
            size=file_path.stat().st_size,
            content_type=content_type or _guess_type(file_path.name),
            path=file_path,
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: Optional[str] = None) -> "UploadSource":
        return cls(
            name=name,
            size=len(data),
            content_type=content_type or _guess_type(name),
            data=bytes(data),
        )

    async def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_BYTES) -> AsyncIterator[bytes]:
        chunk_size = max(int(chunk_size), 1)
        if self.data is not None:
            for offset in range(0, len(self.data), chunk_size):
                yield self.data[offset:offset + chunk_size]
            return
        if self.path is None:
            raise ValueError("UploadSource has neither a path nor in-memory data")
        handle = await asyncio.to_thread(self.path.open, "rb")
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await asyncio.to_thread(handle.close)


def _guess_type(name: str) -> str:
    return mimetypes.guess_type(name)[0] or "application/octet-stream"
