"""Sync error types and the timeout guard.

Every sync task runs inside run_with_timeout(), which races the task against
a deadline and normalizes whatever goes wrong into a SyncError. Callers that
prefer branching over callbacks use run_guarded(), which returns a
SyncOutcome instead of raising.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_MS = 10_000
SYNC_TIMEOUT_MESSAGE = "Sync timeout"
UNKNOWN_SYNC_ERROR = "Unknown sync error"
OFFLINE_MESSAGE = "You are offline. Connect to the network and try again."


class SyncError(Exception):
    """Base error for everything that fails in the sync layer."""

    def __init__(self, message: str = UNKNOWN_SYNC_ERROR) -> None:
        self.message = message or UNKNOWN_SYNC_ERROR
        super().__init__(self.message)


class SyncTimeoutError(SyncError):
    """A sync task did not finish before its deadline."""

    def __init__(self, timeout_ms: Optional[int] = None) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(SYNC_TIMEOUT_MESSAGE)


class OfflineError(SyncError):
    """The device is offline; no sync was attempted."""

    def __init__(self, message: str = OFFLINE_MESSAGE) -> None:
        super().__init__(message)


class InvalidScopeError(SyncError):
    """The organization/tournament scope of a sync request is unusable."""


class RemoteStoreError(SyncError):
    """Transport or server failure talking to the remote store."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RecordNotFoundError(RemoteStoreError):
    """An update targeted a remote document that does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Document not found: {path}", status_code=404)


def to_sync_error(error: BaseException) -> SyncError:
    """Normalize any failure into a SyncError.

    SyncErrors pass through unchanged. Anything else is wrapped, keeping its
    message when it has one and falling back to UNKNOWN_SYNC_ERROR.
    """
    if isinstance(error, SyncError):
        return error
    message = str(error) if isinstance(error, Exception) else ""
    wrapped = SyncError(message or UNKNOWN_SYNC_ERROR)
    wrapped.__cause__ = error
    return wrapped


def _consume_result(task: "asyncio.Future[Any]") -> None:
    # Abandoned tasks may still fail later; retrieve the exception so asyncio
    # does not report it as never retrieved.
    if not task.cancelled():
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Abandoned sync task finished with error: {exc}")


async def run_with_timeout(
    task: Union[Callable[[], Awaitable[T]], Awaitable[T]],
    timeout_ms: Optional[int] = None,
    on_success: Optional[Callable[[], None]] = None,
    on_error: Optional[Callable[[SyncError], None]] = None,
) -> T:
    """Run a sync task against a deadline.

    Args:
        task: Coroutine function (called with no arguments) or awaitable
        timeout_ms: Deadline in milliseconds (default 10000)
        on_success: Called once when the task finishes in time
        on_error: Called once with the normalized error on any failure

    Returns:
        The task's result

    Raises:
        SyncTimeoutError: If the deadline passes first. The task is abandoned,
            not cancelled, and may still complete in the background.
        SyncError: If the task fails (non-SyncError failures are wrapped)
    """
    if timeout_ms is None:
        timeout_ms = DEFAULT_TIMEOUT_MS

    try:
        awaitable = task() if callable(task) else task
        future = asyncio.ensure_future(awaitable)
    except Exception as e:
        error = to_sync_error(e)
        logger.error(f"Sync task could not start: {error}")
        if on_error is not None:
            on_error(error)
        raise error from e

    # asyncio.wait leaves the task running on timeout and has no timer to
    # clean up once it returns
    done, _ = await asyncio.wait({future}, timeout=timeout_ms / 1000)

    if not done:
        future.add_done_callback(_consume_result)
        error = SyncTimeoutError(timeout_ms)
        logger.warning(f"Sync task timed out after {timeout_ms} ms")
        if on_error is not None:
            on_error(error)
        raise error

    try:
        result = future.result()
    except asyncio.CancelledError:
        error = SyncError(UNKNOWN_SYNC_ERROR)
        if on_error is not None:
            on_error(error)
        raise error
    except Exception as e:
        error = to_sync_error(e)
        logger.error(f"Sync task failed: {error}")
        if on_error is not None:
            on_error(error)
        if error is e:
            raise
        raise error from e

    if on_success is not None:
        on_success()
    return result


@dataclass(frozen=True)
class SyncOutcome(Generic[T]):
    """Result of a guarded sync task: either a value or a SyncError."""

    value: Optional[T] = None
    error: Optional[SyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, SyncTimeoutError)

    def unwrap(self) -> T:
        """Return the value or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


async def run_guarded(
    task: Union[Callable[[], Awaitable[T]], Awaitable[T]],
    timeout_ms: Optional[int] = None,
) -> SyncOutcome[T]:
    """Like run_with_timeout(), but return a SyncOutcome instead of raising."""
    try:
        value = await run_with_timeout(task, timeout_ms=timeout_ms)
    except SyncError as e:
        return SyncOutcome(error=e)
    return SyncOutcome(value=value)


__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "InvalidScopeError",
    "OFFLINE_MESSAGE",
    "OfflineError",
    "RecordNotFoundError",
    "RemoteStoreError",
    "SYNC_TIMEOUT_MESSAGE",
    "SyncError",
    "SyncOutcome",
    "SyncTimeoutError",
    "UNKNOWN_SYNC_ERROR",
    "run_guarded",
    "run_with_timeout",
    "to_sync_error",
]
