import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from jwks_server.core.config import Settings, settings
from jwks_server.core.exceptions import TokenIssueError
from jwks_server.core.keys import KeyManager
from jwks_server.api.v1 import auth, wellknown
from jwks_server.schemas.auth import HealthResponse
from jwks_server.utils.logging import setup_logging

setup_logging()

logger = logging.getLogger(__name__)

def internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error"}
    )

def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Builds the application around its own KeyManager instance.
    """
    app_settings = app_settings or settings
    key_manager = KeyManager.from_settings(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup generates the initial active and expired keys and begins
        the sweep. A key generation failure aborts startup.
        """
        await key_manager.start()
        logger.info(
            "Key manager started",
            extra={
                "active_ttl_seconds": key_manager.active_ttl_seconds,
                "sweep_interval_ms": key_manager.sweep_interval_ms
            }
        )

        try:
            yield
        finally:
            await key_manager.stop()
            logger.info("Key manager stopped")

    app = FastAPI(title=app_settings.APP_NAME, lifespan=lifespan)
    app.state.settings = app_settings
    app.state.key_manager = key_manager

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={"duration_ms": round((time.perf_counter() - started) * 1000, 2)}
        )
        return response

    # Exception Handlers
    @app.exception_handler(TokenIssueError)
    async def token_issue_handler(request: Request, exc: TokenIssueError):
        logger.error("Token issuance failed", exc_info=exc.__cause__ or exc)
        return internal_error()

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", exc_info=exc)
        return internal_error()

    # Include Routers
    app.include_router(wellknown.router, tags=["Discovery"])
    app.include_router(auth.router, tags=["Auth"])

    @app.get("/healthz", response_model=HealthResponse)
    async def health_check():
        return {"status": "ok"}

    return app

app = create_app()

def run():
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)

if __name__ == "__main__":
    run()
