from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .. import __version__
from ..graph.storage import PagedGraphStorage
from ..settings import settings
from .graph_api import build_graph_router, install_error_handlers

_UNSET = object()


def create_app(storage: PagedGraphStorage, *, api_key: str | None | object = _UNSET) -> FastAPI:
    """HTTP app over ``storage``; the storage is connected and closed with the app."""
    if api_key is _UNSET:
        api_key = settings.api_key

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await storage.connect()
        try:
            yield
        finally:
            await storage.close()

    app = FastAPI(title="Paged Graph", version=__version__, lifespan=lifespan)
    install_error_handlers(app)

    @app.get("/health")
    async def health():
        return {"ok": True, "host": os.uname().nodename}

    app.include_router(build_graph_router(storage, api_key=api_key))  # type: ignore[arg-type]
    return app
