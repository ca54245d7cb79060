"""Application factory for the founder-flow FastAPI backend."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .errors import DOMAIN_ERRORS
from .logging_config import configure_logging
from .ordering import OrderingEngine
from .progress import ProgressLedger
from .routers import customers, roadmaps, sessions, stages
from .store import DurableStore, build_store
from .subscription import SubscriptionLedger

logger = logging.getLogger(__name__)


async def _domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = getattr(exc, "status_code", 500)
    code = getattr(exc, "code", "error")
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, extra={"error_code": code})
        detail = "Internal persistence failure"
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc, extra={"error_code": code})
        detail = str(exc)
    body = {"detail": detail, "error": code}
    if status_code < 500:
        body.update({key: value for key, value in getattr(exc, "details", {}).items() if key not in body})
    return JSONResponse(status_code=status_code, content=body)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Request validation failed",
            "error": "validation_error",
            "errors": [
                {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
                for error in exc.errors()
            ],
        },
    )


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error": "internal"})


def create_app(store: DurableStore | None = None, settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    The durable store is injected into each component here; pass one
    explicitly to share state between apps or to use a test double.
    """

    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="founder-flow",
        version="0.1.0",
        description="Progress, subscription and roadmap ordering backend for the founder workflow.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_origin_regex=r"http://localhost:\d+$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = store or build_store(settings)
    app.state.settings = settings
    app.state.store = store
    app.state.progress = ProgressLedger(store)
    app.state.subscriptions = SubscriptionLedger(store)
    app.state.ordering = OrderingEngine(store)

    for error_type in DOMAIN_ERRORS:
        app.add_exception_handler(error_type, _domain_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)

    app.include_router(stages.router)
    app.include_router(sessions.router)
    app.include_router(customers.router)
    app.include_router(roadmaps.router)
    return app


app = create_app()
