"""Keeps the in-memory snapshot and the remote document in step.

:class:`SyncEngine` owns the one authoritative snapshot of a client process.
Local edits replace it immediately and are written to the store after a
quiet period; remote change notifications replace it wholesale.  There is no
merging: the last full-document write wins, so a remote change can discard a
local edit that has not been written yet.

All methods must be called from the event loop the engine was started on.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from .config import ECHO_GUARD_SECONDS, PERSIST_DEBOUNCE_SECONDS, TOTAL_BOXES
from .document_store import (
    Document,
    DocumentExistsError,
    DocumentStore,
    DocumentStoreError,
    Subscription,
    make_document,
)
from .seed import initial_snapshot, is_valid_snapshot

logger = logging.getLogger(__name__)

Snapshot = dict[str, Any]
Listener = Callable[[Snapshot], None]


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    SEEDING = "seeding"
    READY = "ready"
    FAILED = "failed"


class BootstrapError(Exception):
    """Raised when the initial load or the seed write fails."""


class EngineNotReadyError(RuntimeError):
    """Raised when editing before a successful start or after closing."""


class SyncEngine:
    """State machine mediating between local edits and the document store.

    ``UNINITIALIZED`` -> (``SEEDING``) -> ``READY``, or ``FAILED`` when the
    store cannot be read or seeded.  ``FAILED`` is final for the engine.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        debounce: float = PERSIST_DEBOUNCE_SECONDS,
        echo_guard: float = ECHO_GUARD_SECONDS,
        total_boxes: int = TOTAL_BOXES,
    ) -> None:
        self.store = store
        self.debounce = debounce
        self.echo_guard = echo_guard
        self.total_boxes = total_boxes
        self.state = EngineState.UNINITIALIZED
        self.error: Optional[BaseException] = None
        self.last_persist_error: Optional[BaseException] = None
        self.updated_at: Optional[str] = None
        self.closed = False
        self._snapshot: Optional[Snapshot] = None
        self._start_task: Optional[asyncio.Task] = None
        self._subscription: Optional[Subscription] = None
        self._persist_handle: Optional[asyncio.TimerHandle] = None
        self._guard_handle: Optional[asyncio.TimerHandle] = None
        self._echo_guard_armed = False
        # stamps of our own writes whose echo has not been seen yet
        self._own_stamps: set[str] = set()
        self._writes: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []

    # -----------------------------
    # Read access
    # -----------------------------

    @property
    def snapshot(self) -> Snapshot:
        """Current snapshot.  Treat it as read-only; edit through :meth:`apply`."""
        if self._snapshot is None:
            raise EngineNotReadyError(f"engine is {self.state.value}")
        return self._snapshot

    @property
    def ready(self) -> bool:
        return self.state is EngineState.READY and not self.closed

    @property
    def persist_pending(self) -> bool:
        return self._persist_handle is not None

    def add_listener(self, listener: Listener) -> None:
        """Call ``listener`` with the new snapshot after every replacement."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -----------------------------
    # Bootstrap
    # -----------------------------

    async def start(self) -> Snapshot:
        """Load the document, seeding it first if it does not exist.

        Concurrent callers share one bootstrap, so at most one seed write
        happens per engine.  Raises :class:`BootstrapError` on failure and
        on every later call.
        """

        if self.state is EngineState.FAILED:
            raise BootstrapError(str(self.error)) from self.error
        if self._start_task is None:
            self._start_task = asyncio.get_running_loop().create_task(self._bootstrap())
        return await asyncio.shield(self._start_task)

    async def _bootstrap(self) -> Snapshot:
        document_id = self.store.document_id
        logger.info("Loading document %s", document_id)
        try:
            document = await self._load_or_seed()
            data = document.get("data")
            if not is_valid_snapshot(data):
                raise BootstrapError(f"document {document_id} does not hold a valid snapshot")
        except (DocumentStoreError, BootstrapError) as exc:
            self.state = EngineState.FAILED
            self.error = exc
            logger.error("Initialization of document %s failed: %s", document_id, exc)
            if isinstance(exc, BootstrapError):
                raise
            raise BootstrapError(f"Database error: {exc}") from exc

        self.updated_at = document.get("updated_at")
        self.state = EngineState.READY
        self._arm_echo_guard()
        try:
            self._subscription = self.store.subscribe(self._on_remote_update, since=self.updated_at)
        except DocumentStoreError as exc:
            logger.warning("Live updates for document %s unavailable: %s", document_id, exc)
        logger.info("Document %s loaded with %d boxes", document_id, len(data["boxes"]))
        self._install(data)
        return data

    async def _load_or_seed(self) -> Document:
        document_id = self.store.document_id
        document = await self.store.get()
        if document is not None and document.get("data") is not None:
            return document

        self.state = EngineState.SEEDING
        logger.info("No data found for document %s, initializing with default data", document_id)
        seeded = make_document(document_id, initial_snapshot(self.total_boxes))
        if document is not None:
            # the row exists but carries no data
            await self.store.replace(seeded)
            return seeded
        try:
            await self.store.insert(seeded)
        except DocumentExistsError:
            logger.info("Document %s was created by another client, loading it", document_id)
            document = await self.store.get()
            if document is None or document.get("data") is None:
                raise BootstrapError(f"document {document_id} disappeared during initialization")
            return document
        return seeded

    # -----------------------------
    # Local edits
    # -----------------------------

    def _require_ready(self) -> None:
        if not self.ready:
            state = "closed" if self.closed else self.state.value
            raise EngineNotReadyError(f"engine is {state}")

    def apply(self, mutation: Callable[..., Snapshot], *args: Any, **kwargs: Any) -> Snapshot:
        """Run ``mutation(snapshot, *args, **kwargs)`` and adopt its result.

        ``mutation`` is one of the pure functions of
        :mod:`kistenlager.vocabulary`.  A result identical to the current
        snapshot is a no-op and schedules no write.
        """

        self._require_ready()
        updated = mutation(self._snapshot, *args, **kwargs)
        if updated is self._snapshot:
            return updated
        self._install(updated)
        self._schedule_persist()
        return updated

    def replace_snapshot(self, snapshot: Snapshot) -> Snapshot:
        """Adopt a whole replacement snapshot produced elsewhere."""

        self._require_ready()
        if not is_valid_snapshot(snapshot):
            raise ValueError("snapshot is missing required keys")
        self._install(snapshot)
        self._schedule_persist()
        return snapshot

    def _install(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)

    # -----------------------------
    # Debounced persistence
    # -----------------------------

    def _schedule_persist(self) -> None:
        if self._persist_handle is not None:
            self._persist_handle.cancel()
        loop = asyncio.get_running_loop()
        self._persist_handle = loop.call_later(self.debounce, self._fire_persist)
        logger.debug("Save of document %s scheduled in %.2fs", self.store.document_id, self.debounce)

    def _fire_persist(self) -> None:
        self._persist_handle = None
        # whatever is current when the timer expires gets written
        task = asyncio.get_running_loop().create_task(self._persist(self._snapshot))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _persist(self, snapshot: Snapshot) -> None:
        document = make_document(self.store.document_id, snapshot)
        stamp = document["updated_at"]
        self._own_stamps.add(stamp)
        logger.info("Saving document %s", document["id"])
        try:
            await self.store.replace(document)
        except DocumentStoreError as exc:
            self._own_stamps.discard(stamp)
            self.last_persist_error = exc
            logger.error("Error saving document %s: %s", document["id"], exc)
            return
        self.last_persist_error = None
        self.updated_at = document["updated_at"]

    async def flush(self) -> None:
        """Write a pending change now and wait for writes in flight."""

        if self._persist_handle is not None:
            self._persist_handle.cancel()
            self._persist_handle = None
            await self._persist(self._snapshot)
        if self._writes:
            await asyncio.gather(*list(self._writes))

    # -----------------------------
    # Remote changes
    # -----------------------------

    def _arm_echo_guard(self) -> None:
        self._echo_guard_armed = True
        loop = asyncio.get_running_loop()
        self._guard_handle = loop.call_later(self.echo_guard, self._disarm_echo_guard)

    def _disarm_echo_guard(self) -> None:
        self._echo_guard_armed = False
        if self._guard_handle is not None:
            self._guard_handle.cancel()
            self._guard_handle = None

    def _on_remote_update(self, document: Document) -> None:
        document_id = document.get("id")
        if not self.ready:
            logger.debug("Dropping update of document %s, engine is %s", document_id, self.state.value)
            return
        if self._echo_guard_armed:
            self._disarm_echo_guard()
            logger.info("Ignoring first update of document %s after load", document_id)
            return
        stamp = document.get("updated_at")
        if stamp is not None and stamp in self._own_stamps:
            # older writes are superseded, their echoes can no longer arrive
            self._own_stamps = {s for s in self._own_stamps if s > stamp}
            logger.debug("Ignoring echo of our own save of document %s", document_id)
            return
        data = document.get("data")
        if not is_valid_snapshot(data):
            logger.warning("Ignoring update of document %s without a valid snapshot", document_id)
            return
        self.updated_at = stamp
        if data == self._snapshot:
            return
        logger.info("Real-time change received for document %s", document_id)
        self._install(data)

    # -----------------------------
    # Teardown
    # -----------------------------

    async def close(self, flush: bool = True) -> None:
        """Release the subscription and timers, saving pending edits first."""

        if self.closed:
            return
        if flush and self.state is EngineState.READY:
            await self.flush()
        elif self._persist_handle is not None:
            self._persist_handle.cancel()
            self._persist_handle = None
        self._disarm_echo_guard()
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self.closed = True
        logger.info("Sync engine for document %s closed", self.store.document_id)
