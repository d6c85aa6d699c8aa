"""Change notification for the local store.

The local store publishes a LocalChange after every write. Display code
subscribes to refresh its views; AutoUploader subscribes to start a
background upload pass after user edits.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from .models import EntityKind, SyncScope
from .sync_utils import SyncError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalChange:
    """Something in the local store changed.

    Attributes:
        kind: Entity kind of the changed record
        scope: Where the record sits (organization/tournament/group)
        entity_id: Changed record id, or None for bulk changes
        action: "create", "update", "delete", "synced", "purge", "bulk_upsert" or "clear"
        from_sync: True when the write was made by the sync layer itself
    """

    kind: Optional[EntityKind]
    scope: Optional[SyncScope]
    entity_id: Optional[str]
    action: str
    from_sync: bool = False


ChangeCallback = Callable[[LocalChange], None]


def _scope_matches(filter_scope: Optional[SyncScope], change: LocalChange) -> bool:
    if filter_scope is None or change.scope is None:
        return True
    if filter_scope.organization_id != change.scope.organization_id:
        return False
    if (
        filter_scope.tournament_id is not None
        and change.scope.tournament_id is not None
        and filter_scope.tournament_id != change.scope.tournament_id
    ):
        return False
    return True


class ChangeNotifier:
    """Publish/subscribe channel for local store changes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_token = 0
        self._subscribers: Dict[int, tuple] = {}

    def subscribe(
        self, callback: ChangeCallback, scope: Optional[SyncScope] = None
    ) -> Callable[[], None]:
        """Register a callback, optionally limited to one scope.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = (callback, scope)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, change: LocalChange) -> None:
        """Deliver a change to every matching subscriber."""
        with self._lock:
            subscribers = list(self._subscribers.values())
        for callback, scope in subscribers:
            if not _scope_matches(scope, change):
                continue
            try:
                callback(change)
            except Exception as e:
                logger.error(f"Change subscriber {callback!r} failed: {e}")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


class AutoUploader:
    """Run an upload pass shortly after local edits.

    Changes are debounced: a burst of edits produces one upload. Only one
    pass runs at a time; edits that arrive during a pass schedule exactly one
    more pass afterwards. Writes made by the sync layer itself are ignored.
    """

    def __init__(
        self,
        notifier: ChangeNotifier,
        upload: Callable[[SyncScope], Awaitable[object]],
        scope: SyncScope,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        delay_seconds: float = 0.5,
    ) -> None:
        self.notifier = notifier
        self.upload = upload
        self.scope = scope
        self.delay_seconds = delay_seconds
        self._loop = loop
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._dirty = False
        self.passes = 0

    def start(self) -> None:
        """Subscribe to the change channel. Must be called with a loop available."""
        if self._unsubscribe is not None:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._unsubscribe = self.notifier.subscribe(self._on_change, self.scope)
        logger.info(f"Auto upload enabled for scope {self.scope}")

    def stop(self) -> None:
        """Unsubscribe and drop any pending (not yet started) pass."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait_idle(self) -> None:
        """Wait until no pass is scheduled or running."""
        # Let callbacks queued by call_soon_threadsafe run first
        await asyncio.sleep(0)
        while self._timer is not None or self.running:
            if self._task is not None and not self._task.done():
                await asyncio.wait({self._task})
            else:
                await asyncio.sleep(self.delay_seconds / 2 or 0.01)

    def _on_change(self, change: LocalChange) -> None:
        if change.from_sync or self._loop is None:
            return
        # Local writes may come from any thread
        self._loop.call_soon_threadsafe(self._schedule)

    def _schedule(self) -> None:
        if self._unsubscribe is None:
            return
        if self.running:
            self._dirty = True
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self.delay_seconds, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self._task = self._loop.create_task(self._run())

    async def _run(self) -> None:
        while True:
            self._dirty = False
            self.passes += 1
            try:
                await self.upload(self.scope)
            except SyncError as e:
                logger.warning(f"Background upload failed: {e}")
            if not self._dirty or self._unsubscribe is None:
                break


__all__ = ["AutoUploader", "ChangeNotifier", "LocalChange"]
