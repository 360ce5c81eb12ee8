from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from sessionguard.api.error_handling import register_exception_handlers
from sessionguard.api.routes import router
from sessionguard.api.schemas import Envelope
from sessionguard.logging import get_logger, set_correlation_id
from sessionguard.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the API application.

    The runtime is opened when the app starts and closed when it stops. A
    prebuilt runtime (e.g. one wired with in-memory stores) may be passed in.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = runtime or Runtime()
        await active.open()
        app.state.runtime = active
        logger.info("app_started", version=__version__)
        try:
            yield
        finally:
            try:
                await active.close()
            except Exception as exc:
                logger.error("shutdown_failed", error_type=type(exc).__name__, error=str(exc))

    app = FastAPI(title="sessionguard", version=__version__, lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(router)

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        if request.url.path.startswith("/v1/"):
            response.headers.setdefault("Cache-Control", "no-store")
        return response

    @app.get("/healthz", response_model=Envelope, tags=["health"])
    async def healthz(request: Request):
        active: Runtime = request.app.state.runtime
        return Envelope(
            status="ok",
            data={
                "status": "healthy",
                "version": __version__,
                "cache": type(active.cache).__name__,
            },
        )

    return app
