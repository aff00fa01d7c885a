"""Client-side upload lifecycle: select, transfer with progress, retry, cancel."""

from .controller import UploadController, UploadEvent, UploadState
from .errors import UploadError, UploadErrorKind
from .sources import UploadSource
from .transport import HttpUploadTransport, UploadResult, UploadTarget, UploadTransport
