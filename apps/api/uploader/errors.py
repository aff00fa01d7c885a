"""Upload error taxonomy surfaced to the user."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class UploadErrorKind(str, Enum):
    CANCELLED = "cancelled"
    NETWORK = "network"
    TIMEOUT = "timeout"
    FILE_TOO_LARGE = "file_too_large"
    SERVER_REJECTED = "server_rejected"
    UNKNOWN = "unknown"


DEFAULT_MESSAGES = {
    UploadErrorKind.CANCELLED: "Upload was cancelled.",
    UploadErrorKind.NETWORK: "Network error. Check your connection and try again.",
    UploadErrorKind.TIMEOUT: "Upload timed out. File may be too large.",
    UploadErrorKind.FILE_TOO_LARGE: "File too large. Please choose a smaller file.",
    UploadErrorKind.SERVER_REJECTED: "The server rejected the upload.",
    UploadErrorKind.UNKNOWN: "Upload failed. Please try again.",
}


class UploadError(Exception):
    """A failed upload attempt, classified for display."""

    def __init__(
        self,
        kind: UploadErrorKind,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
    ):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Text shown next to the retry affordance."""
        if self.kind is UploadErrorKind.SERVER_REJECTED:
            return self.message
        return DEFAULT_MESSAGES[self.kind]

    def __repr__(self) -> str:
        return f"UploadError(kind={self.kind.value!r}, message={self.message!r}, status_code={self.status_code!r})"
