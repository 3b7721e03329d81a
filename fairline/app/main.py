from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from fairline.app.api.admin import router as admin_router
from fairline.app.api.live import router as live_router
from fairline.app.api.pow import router as pow_router
from fairline.app.api.queue import router as queue_router
from fairline.app.core.config import Settings, settings as default_settings
from fairline.app.core.logging import get_logger, setup_logging
from fairline.app.exceptions import BadRequest, FairlineException
from fairline.app.middleware.request_id import RequestIdMiddleware, get_request_id
from fairline.app.services.room import WaitingRoom


def create_app(
    settings: Optional[Settings] = None,
    room: Optional[WaitingRoom] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use; defaults to the environment-loaded ones
        room: Prebuilt waiting room (tests inject one with a fake clock)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or default_settings
    setup_logging()
    logger = get_logger(__name__)

    room = room or WaitingRoom(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the outbound event pipeline and the admission scheduler."""
        await room.start()
        logger.info("Application startup complete")
        yield
        await room.stop()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="FairLine Waiting Room",
        description="Fair virtual waiting room with proof-of-work gated joins and budgeted admission",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.room = room

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(pow_router)
    app.include_router(queue_router)
    app.include_router(live_router)
    app.include_router(admin_router)

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> str:
        return "ok"

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Component status for monitoring."""
        stats = room.engine.get_stats()
        return {
            "status": "ok",
            "components": {
                "scheduler": {"running": room.scheduler.running, "ticks": room.scheduler.ticks},
                "queues": stats.queues,
                "challenges": {"pending": room.gate.pending_count},
                "events": {"running": room.outbox.running, "dropped": room.outbox.dropped},
                "audit": room.audit.status(),
            },
        }

    @app.exception_handler(FairlineException)
    async def fairline_exception_handler(request: Request, exc: FairlineException) -> JSONResponse:
        """Render domain errors as structured results."""
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = BadRequest()
        content = error.to_response()
        content["details"] = [
            {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg", "")}
            for e in exc.errors()
        ]
        return JSONResponse(status_code=error.status_code, content=content)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Never return a raw traceback to the client."""
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={"request_id": request_id, "exception_type": type(exc).__name__},
        )
        content = {"ok": False, "error": "internal error", "code": "internal_error", "request_id": request_id}
        if settings.debug:
            content["exception_type"] = type(exc).__name__
            content["message"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
