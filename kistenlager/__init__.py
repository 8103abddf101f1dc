from . import csv_utils, views, vocabulary
from .document_store import DocumentStoreError, InMemoryDocumentStore
from .seed import initial_snapshot
from .sync import BootstrapError, EngineState, SyncEngine

__all__ = [
    "BootstrapError",
    "DocumentStoreError",
    "EngineState",
    "HttpDocumentStore",
    "InMemoryDocumentStore",
    "SyncEngine",
    "csv_utils",
    "initial_snapshot",
    "views",
    "vocabulary",
]


def __getattr__(name: str):
    if name == "HttpDocumentStore":
        from .remote_store import HttpDocumentStore

        return HttpDocumentStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
