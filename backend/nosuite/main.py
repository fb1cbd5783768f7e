"""
FastAPI main application module for Nosuite Vault
"""

import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nosuite import __version__
from nosuite.api.api_v1.api import api_router
from nosuite.core.config import Settings, get_settings
from nosuite.core.errors import NosuiteError
from nosuite.services import build_services

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build an application with its own services and connection registry"""
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Nosuite Vault API",
        description="Encrypted per-app file storage with realtime change notification",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
    )
    app.state.services = build_services(settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request timing middleware
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    # Include API routes
    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.exception_handler(NosuiteError)
    async def nosuite_exception_handler(request: Request, exc: NosuiteError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Operation failed"},
        )

    # Startup event
    @app.on_event("startup")
    async def startup_event():
        """Prepare the users root and sweep stale uploads"""
        logger.info("Starting Nosuite Vault API...")
        services = app.state.services

        await run_in_threadpool(settings.USERS_ROOT.mkdir, parents=True, exist_ok=True)

        max_age = settings.TEMP_FILE_MAX_AGE_HOURS * 3600
        await run_in_threadpool(services.storage.engine.reap_temp_files, max_age)

        if settings.MASTER_KEY:
            services.bootstrap.unlock_with_master_key(settings.MASTER_KEY)
        else:
            logger.info("Waiting for the admin to start the service")

    # Shutdown event
    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down Nosuite Vault API...")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "nosuite.main:app",
        host="0.0.0.0",
        port=8003,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
