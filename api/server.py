"""FastAPI server for the separation service.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import (
    health,
    separations,
    reports,
)
from config import get_settings
from core.observability.logging import configure_logging, get_logger
from reports.db import init_reports_db
from separation_engine.db import init_db
from separation_engine.errors import SeparationError

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging()
    init_db(settings.db_path)
    init_reports_db(settings.db_path)
    logger.info("Separation API starting up...", extra_fields={"db_path": str(settings.db_path)})

    yield

    logger.info("Separation API shutting down...")


async def separation_error_handler(request: Request, exc: SeparationError) -> JSONResponse:
    """Map engine errors to their HTTP status."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Separation API",
        description="Quantity reconciliation for warehouse order separation",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SeparationError, separation_error_handler)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(separations.router, prefix="/separations", tags=["Separations"])
    app.include_router(reports.router, prefix="/reports", tags=["Reports"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
