"""Remote document store adapters.

The remote store is a hierarchy of collections and documents addressed by
slash-separated paths (organizations/{org}/tournaments/{id}/...). Documents
get server-assigned created_at/updated_at timestamps on every write.

- RemoteStore: the async interface the sync layer talks to
- DocumentTree: in-process authoritative store (backs the web server)
- InMemoryRemoteStore: async adapter over a DocumentTree, with failure
  injection and artificial latency for tests
- HttpRemoteStore: async adapter over the HTTP document API

Every adapter is at-least-once: creates accept a client-supplied id, and
creating an existing id overwrites instead of duplicating.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from .models import CREATED_AT_FIELD, UPDATED_AT_FIELD, ChangeType, RemoteChange
from .sync_utils import RecordNotFoundError, RemoteStoreError
from .timestamp_utils import to_local_datetime, to_wire, utc_now
from .validation import (
    ValidationError,
    new_entity_id,
    validate_collection_path,
    validate_document_path,
    validate_entity_id,
)

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[List[RemoteChange]], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class RemoteDocument:
    """A document returned from a collection listing."""

    id: str
    path: str
    data: Dict[str, Any]


def _normalize(path: str) -> str:
    return path.strip("/")


def _parent_collection(doc_path: str) -> str:
    return doc_path.rsplit("/", 1)[0]


def _doc_id(doc_path: str) -> str:
    return doc_path.rsplit("/", 1)[1]


def _sort_key(value: Any) -> Tuple[int, Any]:
    # None sorts first; mixed types fall back to their string form
    if value is None:
        return (0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    if isinstance(value, datetime):
        return (2, value.timestamp())
    return (3, str(value))


class RemoteStore(ABC):
    """Async interface to the authoritative document store."""

    @abstractmethod
    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        """Get a document's data, or None if it does not exist."""

    @abstractmethod
    async def list(
        self, collection_path: str, order_by: Optional[str] = None
    ) -> List[RemoteDocument]:
        """List the documents of a collection."""

    @abstractmethod
    async def create(
        self,
        collection_path: str,
        payload: Dict[str, Any],
        doc_id: Optional[str] = None,
    ) -> str:
        """Create a document, reusing doc_id when given. Returns the id."""

    @abstractmethod
    async def update(self, path: str, payload: Dict[str, Any]) -> None:
        """Merge fields into an existing document.

        Raises:
            RecordNotFoundError: If the document does not exist
        """

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""

    @abstractmethod
    def subscribe(self, collection_path: str, on_change: ChangeHandler) -> Unsubscribe:
        """Watch a collection. Existing documents arrive first as ADDED."""

    async def close(self) -> None:
        """Release adapter resources."""


class DocumentTree:
    """Thread-safe in-process hierarchical document store.

    Deleting a document does not delete its subcollections; callers remove
    children first.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._subscribers: Dict[str, Dict[int, ChangeHandler]] = {}
        self._next_token = 0

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        validate_document_path(path)
        with self._lock:
            data = self._docs.get(_normalize(path))
            return copy.deepcopy(data) if data is not None else None

    def list(self, collection_path: str, order_by: Optional[str] = None) -> List[RemoteDocument]:
        validate_collection_path(collection_path)
        collection = _normalize(collection_path)
        with self._lock:
            docs = [
                RemoteDocument(_doc_id(p), p, copy.deepcopy(d))
                for p, d in self._docs.items()
                if _parent_collection(p) == collection
            ]
        if order_by:
            docs.sort(key=lambda d: _sort_key(d.data.get(order_by)))
        return docs

    def create(
        self,
        collection_path: str,
        payload: Dict[str, Any],
        doc_id: Optional[str] = None,
    ) -> str:
        validate_collection_path(collection_path)
        doc_id = validate_entity_id(doc_id, "doc_id") if doc_id else new_entity_id()
        path = f"{_normalize(collection_path)}/{doc_id}"
        self.set(path, payload)
        return doc_id

    def set(self, path: str, payload: Dict[str, Any]) -> None:
        """Create or fully replace a document."""
        validate_document_path(path)
        path = _normalize(path)
        now = utc_now()
        with self._lock:
            existing = self._docs.get(path)
            data = copy.deepcopy(payload)
            data[CREATED_AT_FIELD] = existing[CREATED_AT_FIELD] if existing else now
            data[UPDATED_AT_FIELD] = now
            self._docs[path] = data
            change_type = ChangeType.MODIFIED if existing else ChangeType.ADDED
        self._emit(path, change_type, data)

    def update(self, path: str, payload: Dict[str, Any]) -> None:
        validate_document_path(path)
        path = _normalize(path)
        with self._lock:
            existing = self._docs.get(path)
            if existing is None:
                raise RecordNotFoundError(path)
            data = dict(existing)
            data.update(copy.deepcopy(payload))
            data[CREATED_AT_FIELD] = existing.get(CREATED_AT_FIELD)
            data[UPDATED_AT_FIELD] = utc_now()
            self._docs[path] = data
        self._emit(path, ChangeType.MODIFIED, data)

    def delete(self, path: str) -> bool:
        validate_document_path(path)
        path = _normalize(path)
        with self._lock:
            removed = self._docs.pop(path, None)
        if removed is not None:
            self._emit(path, ChangeType.REMOVED, None)
        return removed is not None

    def count(self) -> int:
        with self._lock:
            return len(self._docs)

    def subscribe(self, collection_path: str, on_change: ChangeHandler) -> Unsubscribe:
        validate_collection_path(collection_path)
        collection = _normalize(collection_path)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers.setdefault(collection, {})[token] = on_change
            initial = [
                RemoteChange(ChangeType.ADDED, _doc_id(p), p, copy.deepcopy(d))
                for p, d in self._docs.items()
                if _parent_collection(p) == collection
            ]
        if initial:
            self._deliver(on_change, initial)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(collection, {})
                handlers.pop(token, None)
                if not handlers:
                    self._subscribers.pop(collection, None)

        return unsubscribe

    def _emit(self, path: str, change_type: ChangeType, data: Optional[Dict[str, Any]]) -> None:
        collection = _parent_collection(path)
        with self._lock:
            handlers = list(self._subscribers.get(collection, {}).values())
        for handler in handlers:
            change = RemoteChange(
                change_type, _doc_id(path), path, copy.deepcopy(data) if data else None
            )
            self._deliver(handler, [change])

    def _deliver(self, handler: ChangeHandler, changes: List[RemoteChange]) -> None:
        try:
            handler(changes)
        except Exception as e:
            logger.error(f"Remote change handler failed: {e}")


class InMemoryRemoteStore(RemoteStore):
    """Async RemoteStore over a DocumentTree.

    Attributes:
        tree: Backing document tree (shareable between several stores to
            simulate several devices)
        latency_seconds: Delay added to every call
        calls: Log of (operation, path) for every call, in order
    """

    def __init__(self, tree: Optional[DocumentTree] = None, latency_seconds: float = 0.0) -> None:
        self.tree = tree or DocumentTree()
        self.latency_seconds = latency_seconds
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[str, Tuple[Exception, Optional[int]]] = {}

    def fail_on(
        self,
        path: str,
        error: Optional[Exception] = None,
        times: Optional[int] = None,
    ) -> None:
        """Make calls touching path (or anything below it) fail.

        Args:
            path: Document or collection path
            error: Exception to raise (default RemoteStoreError)
            times: Fail only this many times (default: until cleared)
        """
        path = _normalize(path)
        self._failures[path] = (error or RemoteStoreError(f"Injected failure for {path}"), times)

    def clear_failures(self) -> None:
        self._failures.clear()

    async def _enter(self, op: str, path: str) -> None:
        path = _normalize(path)
        self.calls.append((op, path))
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        for prefix, (error, times) in list(self._failures.items()):
            if path == prefix or path.startswith(prefix + "/"):
                if times is not None:
                    if times <= 1:
                        del self._failures[prefix]
                    else:
                        self._failures[prefix] = (error, times - 1)
                raise error

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        await self._enter("get", path)
        return self.tree.get(path)

    async def list(
        self, collection_path: str, order_by: Optional[str] = None
    ) -> List[RemoteDocument]:
        await self._enter("list", collection_path)
        return self.tree.list(collection_path, order_by)

    async def create(
        self,
        collection_path: str,
        payload: Dict[str, Any],
        doc_id: Optional[str] = None,
    ) -> str:
        await self._enter("create", f"{_normalize(collection_path)}/{doc_id or ''}".rstrip("/"))
        return self.tree.create(collection_path, payload, doc_id)

    async def update(self, path: str, payload: Dict[str, Any]) -> None:
        await self._enter("update", path)
        self.tree.update(path, payload)

    async def delete(self, path: str) -> None:
        await self._enter("delete", path)
        self.tree.delete(path)

    def subscribe(self, collection_path: str, on_change: ChangeHandler) -> Unsubscribe:
        """Watch a collection; changes are delivered on the calling event loop."""
        loop = asyncio.get_running_loop()

        def dispatch(changes: List[RemoteChange]) -> None:
            loop.call_soon_threadsafe(on_change, changes)

        return self.tree.subscribe(collection_path, dispatch)


def to_jsonable(value: Any) -> Any:
    """Replace datetimes (at any depth) with ISO-8601 strings."""
    if isinstance(value, datetime):
        return to_wire(value)
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def _from_wire(data: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(data)
    for key in (CREATED_AT_FIELD, UPDATED_AT_FIELD):
        if result.get(key) is not None:
            result[key] = to_local_datetime(result[key])
    return result


class HttpRemoteStore(RemoteStore):
    """Async RemoteStore over the HTTP document API.

    Blocking requests calls run in worker threads. subscribe() polls the
    collection and reports what changed between polls.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        poll_interval_seconds: float = 5.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.poll_interval_seconds = poll_interval_seconds
        self._poll_tasks: List[asyncio.Task] = []

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/docs/{_normalize(path)}"

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Optional[Dict[str, Any]]:
        try:
            response = self.session.request(
                method,
                self._url(path),
                json=to_jsonable(body) if body is not None else None,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            if allow_404:
                return None
            raise RecordNotFoundError(_normalize(path))
        if response.status_code >= 400:
            try:
                message = response.json().get("error", "")
            except (ValueError, AttributeError):
                message = ""
            raise RemoteStoreError(
                f"{method} {path} failed with HTTP {response.status_code}: {message}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise RemoteStoreError(f"{method} {path} returned invalid JSON") from e

    async def _call(self, *args: Any, **kwargs: Any) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._request, *args, **kwargs)

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        validate_document_path(path)
        result = await self._call("GET", path, allow_404=True)
        if result is None:
            return None
        return _from_wire(result["data"])

    async def list(
        self, collection_path: str, order_by: Optional[str] = None
    ) -> List[RemoteDocument]:
        validate_collection_path(collection_path)
        params = {"order_by": order_by} if order_by else None
        result = await self._call("GET", collection_path, params=params)
        return [
            RemoteDocument(d["id"], d["path"], _from_wire(d["data"]))
            for d in result.get("documents", [])
        ]

    async def create(
        self,
        collection_path: str,
        payload: Dict[str, Any],
        doc_id: Optional[str] = None,
    ) -> str:
        validate_collection_path(collection_path)
        body: Dict[str, Any] = {"data": payload}
        if doc_id:
            body["id"] = validate_entity_id(doc_id, "doc_id")
        result = await self._call("POST", collection_path, body=body)
        return result["id"]

    async def update(self, path: str, payload: Dict[str, Any]) -> None:
        validate_document_path(path)
        await self._call("PATCH", path, body={"data": payload})

    async def delete(self, path: str) -> None:
        validate_document_path(path)
        await self._call("DELETE", path, allow_404=True)

    def subscribe(self, collection_path: str, on_change: ChangeHandler) -> Unsubscribe:
        validate_collection_path(collection_path)
        task = asyncio.get_running_loop().create_task(
            self._poll(collection_path, on_change)
        )
        self._poll_tasks.append(task)

        def unsubscribe() -> None:
            task.cancel()
            if task in self._poll_tasks:
                self._poll_tasks.remove(task)

        return unsubscribe

    async def _poll(self, collection_path: str, on_change: ChangeHandler) -> None:
        known: Dict[str, Tuple[Any, Dict[str, Any]]] = {}
        while True:
            try:
                docs = await self.list(collection_path)
            except (RemoteStoreError, ValidationError) as e:
                logger.warning(f"Polling {collection_path} failed: {e}")
            else:
                changes: List[RemoteChange] = []
                current = {d.id: d for d in docs}
                for doc_id, doc in current.items():
                    stamp = doc.data.get(UPDATED_AT_FIELD)
                    if doc_id not in known:
                        changes.append(RemoteChange(ChangeType.ADDED, doc_id, doc.path, doc.data))
                    elif known[doc_id][0] != stamp:
                        changes.append(RemoteChange(ChangeType.MODIFIED, doc_id, doc.path, doc.data))
                for doc_id in set(known) - set(current):
                    path = f"{_normalize(collection_path)}/{doc_id}"
                    changes.append(RemoteChange(ChangeType.REMOVED, doc_id, path, None))
                known = {i: (d.data.get(UPDATED_AT_FIELD), d.data) for i, d in current.items()}
                if changes:
                    try:
                        on_change(changes)
                    except Exception as e:
                        logger.error(f"Remote change handler failed: {e}")
            await asyncio.sleep(self.poll_interval_seconds)

    async def close(self) -> None:
        for task in self._poll_tasks:
            task.cancel()
        self._poll_tasks.clear()
        self.session.close()


__all__ = [
    "DocumentTree",
    "HttpRemoteStore",
    "InMemoryRemoteStore",
    "RemoteDocument",
    "RemoteStore",
    "to_jsonable",
]
