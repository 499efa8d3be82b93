"""FastAPI application for the scoreboard ingest API."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scoreboard_ingest.api.routes.admin import router as admin_router
from scoreboard_ingest.api.routes.devices import router as devices_router
from scoreboard_ingest.api.routes.health import router as health_router
from scoreboard_ingest.api.routes.ingest import router as ingest_router
from scoreboard_ingest.config.settings import get_settings
from scoreboard_ingest.errors import ScoreboardError
from scoreboard_ingest.logging_config import configure_logging
from scoreboard_ingest.ratelimit.cooldown import CooldownCache

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(json_output=settings.log_json, log_level=settings.log_level)
    logger.info("api_started", cooldown_seconds=settings.upload_cooldown_seconds)
    yield


app = FastAPI(title="Scoreboard Ingest API", version="0.1.0", lifespan=lifespan)

# Process-wide; one cooldown window per device
app.state.cooldown = CooldownCache(get_settings().upload_cooldown_seconds)

# CORS for the admin dashboard dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:5174"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ScoreboardError)
async def scoreboard_error_handler(request: Request, exc: ScoreboardError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


app.include_router(health_router)
app.include_router(devices_router)
app.include_router(ingest_router)
app.include_router(admin_router)
