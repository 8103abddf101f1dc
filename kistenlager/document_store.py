"""Contract of the remote single-document store and an in-memory version.

The whole application state lives in one document addressed by a fixed id::

    {"id": 1, "data": <snapshot>, "updated_at": "2024-05-01T12:00:00+00:00"}

Stores are asynchronous and deliver change notifications back into the
running event loop through :meth:`DocumentStore.subscribe`.
"""

from __future__ import annotations

import asyncio
import copy
import datetime as dt
import logging
from typing import Any, Callable, Optional

from .config import DOCUMENT_ID, POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

Document = dict[str, Any]
UpdateCallback = Callable[[Document], None]


class DocumentStoreError(Exception):
    """Raised when the store cannot be reached or rejects a request."""


class DocumentExistsError(DocumentStoreError):
    """Raised when inserting a document whose id is already taken."""


class DocumentNotFoundError(DocumentStoreError):
    """Raised when replacing a document that does not exist."""


def utc_now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="microseconds")


def make_document(document_id: int, data: dict, updated_at: Optional[str] = None) -> Document:
    return {"id": document_id, "data": data, "updated_at": updated_at or utc_now()}


class Subscription:
    """Handle returned by :meth:`DocumentStore.subscribe`."""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None) -> None:
        self._on_cancel = on_cancel
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()


def _deliver(subscription: Subscription, on_update: UpdateCallback, document: Document) -> None:
    if subscription.cancelled:
        return
    try:
        on_update(document)
    except Exception:  # pragma: no cover - callback bugs must not stop the feed
        logger.exception("Update callback failed for document %s", document.get("id"))


class DocumentStore:
    """Base class for stores holding the singleton document."""

    document_id: int = DOCUMENT_ID

    async def get(self) -> Optional[Document]:
        """Return the document or ``None`` when it does not exist yet."""
        raise NotImplementedError

    async def insert(self, document: Document) -> None:
        raise NotImplementedError

    async def replace(self, document: Document) -> None:
        raise NotImplementedError

    def subscribe(self, on_update: UpdateCallback, since: Optional[str] = None) -> Subscription:
        """Call ``on_update`` with the new document after every change.

        ``since`` is the ``updated_at`` value the caller already knows about.
        """
        raise NotImplementedError


class PollingSubscription(Subscription):
    """Change feed for stores without push notifications.

    Reads the document every ``interval`` seconds and reports it whenever its
    ``updated_at`` differs from the last value seen.  Failed reads are logged
    and polling carries on.
    """

    def __init__(
        self,
        store: DocumentStore,
        on_update: UpdateCallback,
        since: Optional[str] = None,
        interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        super().__init__()
        self.store = store
        self.on_update = on_update
        self.interval = interval
        self.last_seen = since
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                document = await self.store.get()
            except DocumentStoreError as exc:
                logger.warning("Polling document %s failed: %s", self.store.document_id, exc)
                continue
            if document is None:
                continue
            stamp = document.get("updated_at")
            if self.last_seen is None:
                self.last_seen = stamp
                continue
            if stamp != self.last_seen:
                self.last_seen = stamp
                _deliver(self, self.on_update, document)

    def cancel(self) -> None:
        if not self.cancelled:
            self._task.cancel()
        super().cancel()


class InMemoryDocumentStore(DocumentStore):
    """Process-local store used by tests and single-user setups.

    Documents are deep-copied on the way in and out.  Replacing the document
    notifies every subscriber on the next loop iteration; inserts do not
    notify.  ``fail_reads`` and ``fail_writes`` make the next calls raise
    :class:`DocumentStoreError`.
    """

    def __init__(self, document_id: int = DOCUMENT_ID, document: Optional[Document] = None) -> None:
        self.document_id = document_id
        self._document = copy.deepcopy(document)
        self._subscribers: list[tuple[Subscription, UpdateCallback]] = []
        self.fail_reads = False
        self.fail_writes = False
        self.reads = 0
        self.inserts: list[Document] = []
        self.replacements: list[Document] = []

    @property
    def document(self) -> Optional[Document]:
        return copy.deepcopy(self._document)

    async def get(self) -> Optional[Document]:
        await asyncio.sleep(0)
        self.reads += 1
        if self.fail_reads:
            raise DocumentStoreError("read failed")
        return copy.deepcopy(self._document)

    async def insert(self, document: Document) -> None:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise DocumentStoreError("insert failed")
        if self._document is not None:
            raise DocumentExistsError(f"document {document['id']} already exists")
        self._document = copy.deepcopy(document)
        self.inserts.append(copy.deepcopy(document))

    async def replace(self, document: Document) -> None:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise DocumentStoreError("replace failed")
        if self._document is None:
            raise DocumentNotFoundError(f"document {document['id']} does not exist")
        self._document = copy.deepcopy(document)
        self.replacements.append(copy.deepcopy(document))
        loop = asyncio.get_running_loop()
        for subscription, on_update in list(self._subscribers):
            loop.call_soon(_deliver, subscription, on_update, copy.deepcopy(document))

    def subscribe(self, on_update: UpdateCallback, since: Optional[str] = None) -> Subscription:
        subscription = Subscription(on_cancel=lambda: self._unsubscribe(subscription))
        self._subscribers.append((subscription, on_update))
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers = [
            entry for entry in self._subscribers if entry[0] is not subscription
        ]
