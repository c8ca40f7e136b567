# bakeledger/main.py
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bakeledger import __version__
from bakeledger.config import settings
from bakeledger.db import make_engine, make_session_factory
from bakeledger.middleware import RequestIdMiddleware
from bakeledger.services.docstore import DocumentStore
from bakeledger.services.mirror import LocalMirrorStore
from bakeledger.services.workspace import WorkspaceRegistry

from bakeledger.routers import transactions, rates, inventory, production, history, sync

logger = logging.getLogger(__name__)


def create_app(
    remote_db_url: str | None = None,
    local_db_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the API. ``transport`` replaces the network for the rate service client."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.LOG_LEVEL.upper())
        remote = make_engine(remote_db_url or settings.REMOTE_DB_URL)
        local = make_engine(local_db_url or settings.LOCAL_DB_URL)
        http = httpx.AsyncClient(transport=transport, timeout=settings.RATE_HTTP_TIMEOUT)
        app.state.registry = WorkspaceRegistry(
            DocumentStore(make_session_factory(remote)),
            LocalMirrorStore(make_session_factory(local)),
            http,
        )
        logger.info("bakeledger %s started (env=%s)", __version__, settings.APP_ENV)
        try:
            yield
        finally:
            await app.state.registry.close()
            await http.aclose()
            remote.dispose()
            local.dispose()

    app = FastAPI(title="Bakeledger API", version=__version__, lifespan=lifespan)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(transactions.router)
    app.include_router(rates.router)
    app.include_router(inventory.router)
    app.include_router(production.router)
    app.include_router(history.router)
    app.include_router(sync.router)

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    return app


app = create_app()
