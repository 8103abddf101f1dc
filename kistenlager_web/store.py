"""Document store backed by the ``app_storage`` table."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from kistenlager.config import DOCUMENT_ID, POLL_INTERVAL_SECONDS
from kistenlager.document_store import (
    Document,
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    PollingSubscription,
    Subscription,
    UpdateCallback,
)

from . import models
from .database import session_scope

logger = logging.getLogger(__name__)


def row_to_document(row: models.AppStorage) -> Document:
    return {"id": row.id, "data": row.data, "updated_at": row.updated_at}


def read_document(session: Session, document_id: int) -> Optional[Document]:
    row = session.get(models.AppStorage, document_id)
    if row is None:
        return None
    return row_to_document(row)


def insert_document(session: Session, document: Document) -> None:
    """Add ``document`` to ``session``; the caller commits."""

    if session.get(models.AppStorage, document["id"]) is not None:
        raise DocumentExistsError(f"document {document['id']} already exists")
    session.add(
        models.AppStorage(
            id=document["id"],
            data=document.get("data"),
            updated_at=document.get("updated_at"),
        )
    )


def replace_document(session: Session, document: Document) -> None:
    """Overwrite data and timestamp of an existing row; the caller commits."""

    row = session.get(models.AppStorage, document["id"])
    if row is None:
        raise DocumentNotFoundError(f"document {document['id']} does not exist")
    row.data = document.get("data")
    row.updated_at = document.get("updated_at")
    session.add(row)


class SqlDocumentStore(DocumentStore):
    """Store for deployments sharing one database.

    Blocking database work runs in a worker thread.  Other processes only
    learn about changes through polling.
    """

    def __init__(
        self, document_id: int = DOCUMENT_ID, poll_interval: float = POLL_INTERVAL_SECONDS
    ) -> None:
        self.document_id = document_id
        self.poll_interval = poll_interval

    def _run(self, operation, *args):
        try:
            with session_scope() as session:
                return operation(session, *args)
        except IntegrityError as exc:
            raise DocumentExistsError(f"document {self.document_id} already exists") from exc
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"Database error: {exc}") from exc

    async def get(self) -> Optional[Document]:
        return await asyncio.to_thread(self._run, read_document, self.document_id)

    async def insert(self, document: Document) -> None:
        await asyncio.to_thread(self._run, insert_document, document)

    async def replace(self, document: Document) -> None:
        await asyncio.to_thread(self._run, replace_document, document)

    def subscribe(self, on_update: UpdateCallback, since: Optional[str] = None) -> Subscription:
        logger.info("Polling app_storage row %s every %.1fs", self.document_id, self.poll_interval)
        return PollingSubscription(self, on_update, since=since, interval=self.poll_interval)
