"""Process-wide sync engine used by the API routes."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status

from kistenlager import config
from kistenlager.document_store import DocumentStore
from kistenlager.sync import SyncEngine

logger = logging.getLogger(__name__)


def build_store() -> DocumentStore:
    """Return the document store selected by ``KISTENLAGER_STORE``."""

    backend = config.STORE_BACKEND
    if backend == "http":
        from kistenlager.remote_store import HttpDocumentStore

        logger.info("Using remote storage at %s", config.REMOTE_STORE_URL)
        return HttpDocumentStore(config.REMOTE_STORE_URL, document_id=config.DOCUMENT_ID)
    if backend != "sql":
        raise ValueError(f"Unknown storage backend: {backend!r}")

    from .store import SqlDocumentStore

    return SqlDocumentStore(config.DOCUMENT_ID)


def get_engine(request: Request) -> SyncEngine:
    """FastAPI dependency returning the started engine.

    Answers ``503`` while the engine is not ready, including after a failed
    initialization.
    """

    engine: SyncEngine | None = getattr(request.app.state, "engine", None)
    if engine is None or not engine.ready:
        error = getattr(request.app.state, "bootstrap_error", None)
        detail = f"Initialisierungsfehler: {error}" if error else "Datenbank nicht bereit"
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
    return engine
