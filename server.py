"""FastAPI entry point for the Kistenlager web API."""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

load_dotenv(Path(__file__).resolve().with_name(".env"))

from kistenlager.sync import BootstrapError, SyncEngine
from kistenlager_web.database import init_db
from kistenlager_web.engine import build_store
from kistenlager_web.routes import boxes, storage, vocabulary

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    engine = SyncEngine(build_store())
    app.state.engine = engine
    app.state.bootstrap_error = None
    try:
        await engine.start()
    except BootstrapError as exc:
        # keep serving so clients see the error instead of a dead socket
        logger.error("Die Anwendung konnte nicht initialisiert werden: %s", exc)
        app.state.bootstrap_error = str(exc)
    try:
        yield
    finally:
        await engine.close()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Inject strict security headers for every HTTP response."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Cache-Control", "no-store")
        return response


app = FastAPI(title="Kistenlager", version="1.0.0", lifespan=lifespan)
app.add_middleware(SecurityHeadersMiddleware)
app.include_router(storage.router)
app.include_router(boxes.router)
app.include_router(vocabulary.router)


@app.get("/health")
async def health(request: Request) -> dict:
    engine: SyncEngine | None = getattr(request.app.state, "engine", None)
    return {
        "state": engine.state.value if engine else "uninitialized",
        "error": getattr(request.app.state, "bootstrap_error", None),
        "last_persist_error": (
            str(engine.last_persist_error) if engine and engine.last_persist_error else None
        ),
    }


def run() -> None:
    """Helper to run the development server."""

    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
