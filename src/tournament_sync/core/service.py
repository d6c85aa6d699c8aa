"""Sync service: the process-wide entry point to the sync engine.

SyncService is constructed once at startup with the local database and a
remote store, and closed on shutdown. It owns the five entity sync modules,
the conflict queue, the remote listeners and the optional auto uploader,
and exposes the user-facing actions (send to cloud, fetch from cloud).

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .config import Config
from .conflicts import Conflict, ConflictManager, ResolutionChoice
from .database import Database
from .entity_sync import EntitySync
from .events import AutoUploader
from .models import UPLOAD_ORDER, ChangeType, EntityKind, RemoteChange, SyncScope
from .reconciler import ReconcileResult, RemoteListener
from .remote import RemoteStore
from .sync import BatchResult
from .sync_match import MatchSync
from .sync_match_group import MatchGroupSync
from .sync_team import TeamSync
from .sync_team_match import TeamMatchSync
from .sync_tournament import TournamentSync
from .sync_utils import (
    DEFAULT_TIMEOUT_MS,
    OFFLINE_MESSAGE,
    InvalidScopeError,
    OfflineError,
    SyncError,
    run_with_timeout,
)
from .validation import ValidationError, validate_entity_id, validate_optional_id

logger = logging.getLogger(__name__)

# notify(level, message) with level "success", "info" or "error"
Notifier = Callable[[str, str], None]


def _log_notification(level: str, message: str) -> None:
    if level == "error":
        logger.error(message)
    else:
        logger.info(message)


def validate_scope(scope: Optional[SyncScope], require_tournament: bool = False) -> SyncScope:
    """Check a scope before any sync task runs.

    Raises:
        InvalidScopeError: If the organization (or required tournament) is
            missing or not a usable id
    """
    if scope is None:
        raise InvalidScopeError("No organization selected")
    try:
        validate_entity_id(scope.organization_id, "organization_id")
        validate_optional_id(scope.tournament_id, "tournament_id")
        validate_optional_id(scope.match_group_id, "match_group_id")
    except ValidationError as e:
        raise InvalidScopeError(f"Invalid sync scope: {e}") from e
    if require_tournament and scope.tournament_id is None:
        raise InvalidScopeError("No tournament selected")
    return scope


@dataclass
class UploadSummary:
    """Per-kind results of one upload pass."""

    results: Dict[EntityKind, BatchResult] = field(default_factory=dict)

    @property
    def total(self) -> BatchResult:
        total = BatchResult()
        for result in self.results.values():
            total = total + result
        return total

    @property
    def success_count(self) -> int:
        return self.total.success_count

    @property
    def fail_count(self) -> int:
        return self.total.fail_count

    def to_dict(self) -> Dict[str, Any]:
        return {kind.value: result.to_dict() for kind, result in self.results.items()}


@dataclass
class DownloadSummary:
    """Per-kind results of one download."""

    results: Dict[EntityKind, ReconcileResult] = field(default_factory=dict)

    @property
    def written(self) -> int:
        return sum(r.written for r in self.results.values())

    @property
    def conflicts(self) -> List[Conflict]:
        return [c for r in self.results.values() for c in r.conflicts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            kind.value: {"written": r.written, "kept_local": list(r.skipped)}
            for kind, r in self.results.items()
        }


class SyncService:
    """Process-wide sync engine.

    Attributes:
        db: Local store
        remote: Remote store adapter
        entities: Entity sync module per kind
        conflicts: Queue of detected conflicts
    """

    def __init__(
        self,
        db: Database,
        remote: RemoteStore,
        config: Optional[Config] = None,
        is_online: Optional[Callable[[], bool]] = None,
        notify: Optional[Notifier] = None,
    ) -> None:
        self.db = db
        self.remote = remote
        self.config = config
        self.is_online = is_online or (lambda: True)
        self.notify = notify or _log_notification
        self.notifier = db.notifier
        self.timeout_ms = config.get_sync_timeout_ms() if config else DEFAULT_TIMEOUT_MS
        max_concurrency = config.get_max_concurrency() if config else None

        self.entities: Dict[EntityKind, EntitySync] = {
            EntityKind.TOURNAMENT: TournamentSync(db.tournaments, remote, max_concurrency),
            EntityKind.TEAM: TeamSync(db.teams, remote, max_concurrency),
            EntityKind.MATCH: MatchSync(db.matches, remote, max_concurrency),
            EntityKind.MATCH_GROUP: MatchGroupSync(db.match_groups, remote, max_concurrency),
            EntityKind.TEAM_MATCH: TeamMatchSync(db.team_matches, remote, max_concurrency),
        }
        self.conflicts = ConflictManager(self.entities)
        self._listeners: Dict[str, RemoteListener] = {}
        self._auto_uploader: Optional[AutoUploader] = None

    def _kind_scope(self, kind: EntityKind, scope: SyncScope) -> Optional[SyncScope]:
        # Tournaments are listed per organization; everything else needs a tournament
        if kind is EntityKind.TOURNAMENT:
            return SyncScope(scope.organization_id)
        if scope.tournament_id is None:
            return None
        return SyncScope(scope.organization_id, scope.tournament_id)

    # ===== Upload =====

    async def _upload(self, scope: SyncScope) -> UploadSummary:
        summary = UploadSummary()
        # Parents before children, so a child never lands under a missing parent
        for kind in UPLOAD_ORDER:
            kind_scope = self._kind_scope(kind, scope)
            if kind_scope is None:
                continue
            summary.results[kind] = await self.entities[kind].upload(kind_scope)
        return summary

    async def upload_all(
        self,
        scope: SyncScope,
        timeout_ms: Optional[int] = None,
        on_success: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[SyncError], None]] = None,
    ) -> UploadSummary:
        """Upload every unsynced record in scope, within the deadline.

        Raises:
            InvalidScopeError: If the scope is unusable
            SyncTimeoutError: If the whole pass exceeds the deadline
        """
        validate_scope(scope)
        summary = await run_with_timeout(
            lambda: self._upload(scope),
            timeout_ms=timeout_ms or self.timeout_ms,
            on_success=on_success,
            on_error=on_error,
        )
        self.conflicts.prune()
        return summary

    # ===== Download =====

    async def _download(self, scope: SyncScope) -> DownloadSummary:
        summary = DownloadSummary()
        tournaments = self.entities[EntityKind.TOURNAMENT]
        summary.results[EntityKind.TOURNAMENT] = await tournaments.download_tournaments(
            scope.organization_id, self.conflicts
        )
        if scope.tournament_id is None:
            return summary

        tournament_scope = SyncScope(scope.organization_id, scope.tournament_id)
        for kind in (EntityKind.TEAM, EntityKind.MATCH, EntityKind.MATCH_GROUP):
            summary.results[kind] = await self.entities[kind].download(
                tournament_scope, self.conflicts
            )

        team_matches = ReconcileResult()
        for group in self.db.match_groups.list_active(tournament_scope):
            group_scope = tournament_scope.with_group(group["match_group_id"])
            result = await self.entities[EntityKind.TEAM_MATCH].download(
                group_scope, self.conflicts
            )
            team_matches.written += result.written
            team_matches.skipped.extend(result.skipped)
            team_matches.conflicts.extend(result.conflicts)
        summary.results[EntityKind.TEAM_MATCH] = team_matches
        return summary

    async def download(
        self,
        scope: SyncScope,
        timeout_ms: Optional[int] = None,
        on_success: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[SyncError], None]] = None,
    ) -> DownloadSummary:
        """Pull the scope's remote records into the local store.

        Records unsynced locally are kept; conflicts among them are queued.
        """
        validate_scope(scope)
        summary = await run_with_timeout(
            lambda: self._download(scope),
            timeout_ms=timeout_ms or self.timeout_ms,
            on_success=on_success,
            on_error=on_error,
        )
        logger.info(
            f"Downloaded {summary.written} records for {scope} "
            f"({len(summary.conflicts)} conflicts)"
        )
        return summary

    # ===== User actions =====

    def _check_online(self) -> None:
        if not self.is_online():
            self.notify("info", OFFLINE_MESSAGE)
            raise OfflineError()

    def _notify_error(self, error: SyncError) -> None:
        self.notify("error", f"Sync failed: {error.message}")

    async def send_to_cloud(self, scope: SyncScope) -> UploadSummary:
        """User action: upload pending changes.

        Raises:
            OfflineError: Before touching any store, when offline
            SyncError: When the upload fails as a whole (after notifying)
        """
        self._check_online()
        summary = await self.upload_all(scope, on_error=self._notify_error)
        if summary.fail_count:
            self.notify(
                "error",
                f"{summary.fail_count} changes could not be sent and will be retried",
            )
        elif summary.success_count:
            self.notify("success", f"Sent {summary.success_count} changes to the cloud")
        else:
            self.notify("info", "No changes to send")
        return summary

    async def fetch_from_cloud(self, scope: SyncScope) -> DownloadSummary:
        """User action: download the latest remote data.

        Raises:
            OfflineError: Before touching any store, when offline
            SyncError: When the download fails (after notifying)
        """
        self._check_online()
        summary = await self.download(scope, on_error=self._notify_error)
        conflicts = len(self.conflicts)
        if conflicts:
            self.notify("info", f"Fetched latest data; {conflicts} conflicts need your decision")
        else:
            self.notify("success", f"Fetched {summary.written} records from the cloud")
        return summary

    def resolve_conflict(self, choice: ResolutionChoice) -> Conflict:
        """Resolve the presented conflict."""
        return self.conflicts.resolve(choice)

    # ===== Pending changes =====

    def get_unsynced_data(self, scope: SyncScope) -> Dict[EntityKind, List[Dict[str, Any]]]:
        """All unsynced records in scope, per kind (kinds with none omitted)."""
        validate_scope(scope)
        data: Dict[EntityKind, List[Dict[str, Any]]] = {}
        for kind in UPLOAD_ORDER:
            kind_scope = self._kind_scope(kind, scope)
            if kind_scope is None:
                continue
            records = self.entities[kind].local.list_unsynced(kind_scope)
            if records:
                data[kind] = records
        return data

    def get_unsynced_count(self, scope: SyncScope) -> int:
        """Total number of unsynced records in scope."""
        validate_scope(scope)
        total = 0
        for kind in UPLOAD_ORDER:
            kind_scope = self._kind_scope(kind, scope)
            if kind_scope is not None:
                total += self.entities[kind].local.count_unsynced(kind_scope)
        return total

    # ===== Listening =====

    def _listen(self, kind: EntityKind, scope: SyncScope, on_applied=None) -> None:
        entity = self.entities[kind]
        path = entity.collection_path(scope)
        if path in self._listeners:
            return
        listener = RemoteListener(entity, scope, self.conflicts, on_applied)
        listener.start()
        self._listeners[path] = listener

    def _unlisten(self, path: str) -> None:
        listener = self._listeners.pop(path, None)
        if listener is not None:
            listener.stop()

    def start_listening(self, scope: SyncScope) -> None:
        """Subscribe to the scope's remote collections.

        Must be called from a running event loop. Team match collections are
        followed as match groups appear and disappear.
        """
        validate_scope(scope)
        self._listen(EntityKind.TOURNAMENT, SyncScope(scope.organization_id))
        if scope.tournament_id is None:
            return
        tournament_scope = SyncScope(scope.organization_id, scope.tournament_id)
        self._listen(EntityKind.TEAM, tournament_scope)
        self._listen(EntityKind.MATCH, tournament_scope)

        team_match_entity = self.entities[EntityKind.TEAM_MATCH]

        def on_group_change(change: RemoteChange) -> None:
            group_scope = tournament_scope.with_group(change.doc_id)
            if change.type is ChangeType.REMOVED:
                self._unlisten(team_match_entity.collection_path(group_scope))
            else:
                self._listen(EntityKind.TEAM_MATCH, group_scope)

        self._listen(EntityKind.MATCH_GROUP, tournament_scope, on_group_change)
        for group in self.db.match_groups.list_active(tournament_scope):
            self._listen(
                EntityKind.TEAM_MATCH, tournament_scope.with_group(group["match_group_id"])
            )
        logger.info(f"Listening for remote changes in {scope}")

    def stop_listening(self) -> None:
        """Unsubscribe from every remote collection."""
        for path in list(self._listeners):
            self._unlisten(path)

    @property
    def listening_paths(self) -> List[str]:
        return sorted(self._listeners)

    # ===== Auto upload =====

    def enable_auto_upload(self, scope: SyncScope, delay_seconds: float = 0.5) -> AutoUploader:
        """Upload automatically shortly after local edits (needs a running loop)."""
        validate_scope(scope)
        self.disable_auto_upload()

        async def upload(upload_scope: SyncScope) -> Optional[UploadSummary]:
            if not self.is_online():
                logger.info("Offline, background upload postponed")
                return None
            return await self.upload_all(upload_scope)

        self._auto_uploader = AutoUploader(self.notifier, upload, scope, delay_seconds=delay_seconds)
        self._auto_uploader.start()
        return self._auto_uploader

    def disable_auto_upload(self) -> None:
        if self._auto_uploader is not None:
            self._auto_uploader.stop()
            self._auto_uploader = None

    # ===== Lifecycle =====

    def clear_local_data(self) -> int:
        """Wipe the local store. Unsynced changes are lost."""
        count = self.db.clear()
        self.conflicts.clear()
        return count

    async def close(self) -> None:
        """Stop background work and release the remote adapter."""
        self.disable_auto_upload()
        self.stop_listening()
        await self.remote.close()


__all__ = [
    "DownloadSummary",
    "SyncService",
    "UploadSummary",
    "validate_scope",
]
