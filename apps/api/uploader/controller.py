"""
Upload lifecycle controller.

One controller drives one file field: `idle -> uploading -> completed | error`,
with `retry()` from `error`, `cancel()` from any non-idle state, and at most one
transfer in flight. Each transfer runs as its own asyncio task; aborting it
cancels the task (which tears down the HTTP request) and bumps an attempt
counter so no late progress or completion from that attempt is ever published.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Set

from uploader.errors import UploadError, UploadErrorKind
from uploader.sources import UploadSource
from uploader.transport import UploadResult, UploadTransport

logger = logging.getLogger(__name__)


class UploadState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class UploadEvent:
    state: UploadState
    progress: int
    result: Optional[UploadResult] = None
    error: Optional[UploadError] = None


UploadListener = Callable[[UploadEvent], None]


class UploadController:
    def __init__(self, transport: UploadTransport, *, max_bytes: Optional[int] = None):
        self._transport = transport
        self._max_bytes = max_bytes

        self._state = UploadState.IDLE
        self._progress = 0
        self._source: Optional[UploadSource] = None
        self._result: Optional[UploadResult] = None
        self._error: Optional[UploadError] = None

        self._task: Optional[asyncio.Task] = None
        self._attempt = 0
        # Serializes select/retry/cancel so an abort and the next transition never interleave.
        self._transition_lock = asyncio.Lock()
        self._listeners: List[UploadListener] = []
        self._queues: Set[asyncio.Queue] = set()

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def selected_file(self) -> Optional[UploadSource]:
        return self._source

    @property
    def result(self) -> Optional[UploadResult]:
        return self._result

    @property
    def error(self) -> Optional[UploadError]:
        return self._error

    def add_listener(self, listener: UploadListener) -> Callable[[], None]:
        """Register a callback for every event; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def events(self) -> AsyncIterator[UploadEvent]:
        """Async stream of events published after subscription."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)

    async def select(self, source: UploadSource) -> None:
        """Start uploading a newly chosen file, aborting any transfer still running."""
        async with self._transition_lock:
            await self._abort_active()
            self._source = source
            self._start(source)

    async def retry(self) -> None:
        """Re-send the previously selected file after a failure."""
        async with self._transition_lock:
            source = self._source
            if source is None or self._state is not UploadState.ERROR:
                return
            await self._abort_active()
            self._start(source)

    async def cancel(self) -> None:
        """Abort the transfer, forget the file and go back to idle."""
        async with self._transition_lock:
            if self._state in (UploadState.IDLE, UploadState.COMPLETED):
                return
            await self._abort_active()
            self._source = None
            self._result = None
            self._error = None
            self._progress = 0
            self._publish(UploadState.IDLE)

    async def wait(self) -> Optional[UploadResult]:
        """Wait for the current transfer (if any) and return its result."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(task)
        return self._result

    async def aclose(self) -> None:
        async with self._transition_lock:
            await self._abort_active()

    def _start(self, source: UploadSource) -> None:
        self._attempt += 1
        attempt = self._attempt
        self._progress = 0
        self._result = None
        self._error = None
        self._publish(UploadState.UPLOADING)
        self._task = asyncio.create_task(self._run(attempt, source), name=f"upload:{source.name}:{attempt}")

    async def _abort_active(self) -> None:
        task = self._task
        self._task = None
        # Invalidate first so anything the task emits while unwinding is dropped.
        self._attempt += 1
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self, attempt: int, source: UploadSource) -> None:
        def on_progress(value: int) -> None:
            if attempt != self._attempt:
                return
            value = max(0, min(int(value), 100))
            if value < self._progress:
                return
            self._progress = value
            self._publish(UploadState.UPLOADING)

        try:
            if self._max_bytes is not None and source.size > self._max_bytes:
                raise UploadError(UploadErrorKind.FILE_TOO_LARGE)
            result = await self._transport.send(source, on_progress)
        except asyncio.CancelledError:
            if attempt == self._attempt:
                # Cancelled by something other than this controller: still surface it.
                self._fail(attempt, UploadError(UploadErrorKind.CANCELLED))
            raise
        except UploadError as exc:
            self._fail(attempt, exc)
        except Exception as exc:
            logger.exception("Upload of %s failed unexpectedly", source.name)
            self._fail(attempt, UploadError(UploadErrorKind.UNKNOWN, str(exc) or None))
        else:
            if attempt != self._attempt:
                return
            self._result = result
            self._progress = 100
            self._source = None
            self._publish(UploadState.COMPLETED)

    def _fail(self, attempt: int, error: UploadError) -> None:
        if attempt != self._attempt:
            return
        logger.info("Upload failed (%s): %s", error.kind.value, error.message)
        self._error = error
        self._progress = 0
        self._publish(UploadState.ERROR)

    def _publish(self, state: UploadState) -> None:
        self._state = state
        event = UploadEvent(state=state, progress=self._progress, result=self._result, error=self._error)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Upload listener failed")
        for queue in list(self._queues):
            queue.put_nowait(event)
