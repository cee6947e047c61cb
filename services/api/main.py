import os
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from takeoff.exceptions import TakeoffError
from takeoff.logging_config import setup_logging
from takeoff.settings import get_settings
from takeoff.workspace import Workspace
from services.api.exception_handlers import takeoff_exception_handler
from services.api.middleware import RateLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from services.api.routes import router as v1_router


def create_app(workspace: Optional[Workspace] = None) -> FastAPI:
    settings = workspace.settings if workspace is not None else get_settings()

    # Environment overrides the configured logging section
    json_logging = os.getenv("JSON_LOGGING", str(settings.logging.json_format)).lower() in {"true", "1", "yes"}
    log_level = os.getenv("LOG_LEVEL", settings.logging.level)
    log_file = os.getenv("LOG_FILE", settings.logging.file or "")
    setup_logging(
        level=log_level,
        json_format=json_logging,
        log_file=Path(log_file) if log_file else None,
    )

    app = FastAPI(
        title="Takeoff API",
        version="0.1.0",
        description="Markup annotation, measurement and quantity takeoff over PDF drawings",
    )
    app.state.workspace = workspace or Workspace(settings)

    ui_origin = os.getenv("UI_ORIGIN", "http://localhost:3000")
    allowed_origins = sorted(
        {
            ui_origin,
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
    )
    logger.info("CORS allowed origins: {}", allowed_origins)

    rate_limit_enabled = os.getenv("RATE_LIMIT_ENABLED", "false").lower() in {"true", "1", "yes"}
    if rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            requests_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "120")),
            requests_per_hour=int(os.getenv("RATE_LIMIT_PER_HOUR", "5000")),
        )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    # CORS is added last so it runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz", tags=["meta"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    app.add_exception_handler(TakeoffError, takeoff_exception_handler)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": type(exc).__name__,
                "message": str(exc),
            },
        )

    app.include_router(v1_router)
    return app


app = create_app()


__all__ = ["app", "create_app"]
