import asyncio
import logging
import os
from typing import Optional

import requests

from .config import DOCUMENT_ID, POLL_INTERVAL_SECONDS
from .document_store import (
    Document,
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    PollingSubscription,
    Subscription,
    UpdateCallback,
)

logger = logging.getLogger(__name__)


class HttpDocumentStore(DocumentStore):
    """Document store backed by another server's ``/storage`` endpoints."""

    def __init__(
        self,
        base_url=None,
        document_id: int = DOCUMENT_ID,
        session: Optional[requests.Session] = None,
        timeout: float = 15,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ):
        env_url = os.getenv("KISTENLAGER_REMOTE_URL", "").strip()
        self.base_url = (base_url or env_url).strip().rstrip("/")
        if not self.base_url:
            raise ValueError("KISTENLAGER_REMOTE_URL not set")
        self.document_id = document_id
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _request(self, method, endpoint, **kwargs):
        """Send a request and return the response.

        Responses with status ``404`` and ``409`` are returned to the caller
        so it can map them to store errors.  Any other HTTP or network error
        results in a :class:`DocumentStoreError` being raised.
        """

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            if resp.status_code in (404, 409):
                return resp
            resp.raise_for_status()
            return resp
        except requests.RequestException as exc:
            raise DocumentStoreError(f"Storage request failed: {exc}") from exc

    def _get(self) -> Optional[Document]:
        resp = self._request("GET", f"storage/{self.document_id}")
        if resp.status_code == 404:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise DocumentStoreError(f"Invalid storage response: {exc}") from exc

    def _insert(self, document: Document) -> None:
        resp = self._request("POST", "storage", json=document)
        if resp.status_code == 409:
            raise DocumentExistsError(f"document {document['id']} already exists")
        if resp.status_code == 404:
            raise DocumentStoreError(f"Storage endpoint not found at {self.base_url}")

    def _replace(self, document: Document) -> None:
        resp = self._request("PUT", f"storage/{document['id']}", json=document)
        if resp.status_code == 404:
            raise DocumentNotFoundError(f"document {document['id']} does not exist")
        if resp.status_code == 409:
            raise DocumentStoreError(f"document {document['id']} was rejected")

    async def get(self) -> Optional[Document]:
        return await asyncio.to_thread(self._get)

    async def insert(self, document: Document) -> None:
        await asyncio.to_thread(self._insert, document)

    async def replace(self, document: Document) -> None:
        await asyncio.to_thread(self._replace, document)

    def subscribe(self, on_update: UpdateCallback, since: Optional[str] = None) -> Subscription:
        logger.info("Polling %s every %.1fs for changes", self.base_url, self.poll_interval)
        return PollingSubscription(self, on_update, since=since, interval=self.poll_interval)
