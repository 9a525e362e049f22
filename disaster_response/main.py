import asyncio
import logging
import os
import signal
import sys
import traceback
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.router import router
from .cache import run_cache_sweeper
from .config import Settings, load_settings
from .database import init_database
from .dependencies import Services, build_services

logger = logging.getLogger("disaster_response")

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _log_uncaught(exc_type, exc, tb):
    logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))
    sys.__excepthook__(exc_type, exc, tb)


def _supervise(task: asyncio.Task):
    # Background loops never return; one that dies takes the process down
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.critical("Background task %s crashed, shutting down", task.get_name(), exc_info=exc)
        os.kill(os.getpid(), signal.SIGTERM)


def _start(coro, name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_supervise)
    return task


# --- LIFESPAN (The Startup Manager) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services = app.state.services
    settings = services.settings

    # 1. Startup: models, database, background loops
    services.ai.load_model()
    if settings.use_database:
        ready = await run_in_threadpool(init_database, services.session_factory)
        if not ready:
            logger.warning("Database not reachable; requests will be served from mock data")

    services.bus.start()
    tasks = [
        _start(services.bus.dispatch_forever(), "event-dispatcher"),
        _start(run_cache_sweeper(services.cache, settings.cache_sweep_interval_seconds), "cache-sweeper"),
    ]
    if settings.realtime_polling_enabled:
        tasks.append(_start(services.poller.run_forever(), "realtime-poller"))

    logger.info("Disaster Response API ready (%s, %s backend)", settings.environment, services.store.mode)
    yield

    # 2. Shutdown: stop the loops
    logger.info("Server shutting down...")
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


def _error(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


def _install_error_handlers(app: FastAPI, settings: Settings):
    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request data", details=jsonable_encoder(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return _error(404, "Route not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        if settings.is_production:
            return _error(500, "Internal server error")
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return _error(500, "Internal server error", message=str(exc), stack=stack)


def _install_middleware(app: FastAPI, settings: Settings):
    limiter = MovingWindowRateLimiter(MemoryStorage())
    window = RateLimitItemPerSecond(settings.rate_limit_max_requests, max(1, settings.rate_limit_window_ms // 1000))

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if request.url.path.startswith("/api/"):
            client_ip = request.client.host if request.client else "unknown"
            if not limiter.hit(window, "api", client_ip):
                logger.warning("Rate limit exceeded for %s", client_ip)
                return _error(429, RATE_LIMIT_MESSAGE)
        return await call_next(request)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(
            "%s %s from %s (%s)",
            request.method,
            request.url.path,
            request.client.host if request.client else "unknown",
            request.headers.get("user-agent", "-"),
        )
        return await call_next(request)

    # Added last so it wraps everything, including 429s
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or load_settings()
    services = services or build_services(settings)

    app = FastAPI(title="Disaster Response Coordination Platform", version="1.0.0", lifespan=lifespan)
    app.state.services = services

    _install_error_handlers(app, settings)
    _install_middleware(app, settings)
    app.include_router(router)
    return app


_settings = load_settings()
configure_logging(_settings.log_level)
sys.excepthook = _log_uncaught

app = create_app(_settings)


def run():
    uvicorn.run("disaster_response.main:app", host="0.0.0.0", port=_settings.port)


if __name__ == "__main__":
    run()
