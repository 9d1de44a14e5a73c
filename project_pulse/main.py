"""Project Pulse: Main FastAPI Application.

Receives CRM project events, keeps an AI-written project summary, and
proposes follow-up actions that operators approve before they are sent.
"""

import logging
import traceback
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import api_router
from .core import build_engine, build_session_factory, close_db, get_settings, init_db
from .core.config import Settings
from .schemas import ErrorResponse
from .services import ExternalClients

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application with its own engine, session factory and clients."""
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown."""
        logger.info(f"Starting {settings.app_name} ({settings.environment})")
        # Skip init_db in production (schema is managed by migrations)
        if settings.environment != "production":
            await init_db(app.state.engine)
        yield
        await app.state.http_client.aclose()
        await close_db(app.state.engine)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="""
        ## Project Pulse API

        AI-assisted follow-up for projects tracked in a CRM.

        ### Key Features

        - **Webhook ingestion**: CRM changes update the project and its AI summary.
        - **Action detection**: the AI proposes messages, data updates, reminders or human review.
        - **Approval gate**: proposed actions wait for an operator unless auto-approved.
        - **Reliable delivery**: outbound work goes through a retrying job queue.
        - **Audit trail**: every AI call is recorded as a prompt run.
        """,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=lifespan,
    )

    engine = build_engine(settings)
    http_client = httpx.AsyncClient(timeout=settings.integration_timeout_seconds)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.http_client = http_client
    app.state.clients = ExternalClients.from_settings(settings, http_client)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
        allow_headers=["*"],
        max_age=86400,
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=str(exc.detail)).model_dump(exclude_none=True),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(error="Validation failed", details=details).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
        if settings.debug or settings.environment != "production":
            logger.error(traceback.format_exc())

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error=f"An unexpected error occurred: {str(exc)[:200]}",
            ).model_dump(exclude_none=True),
        )

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": settings.app_version}

    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "project_pulse.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().debug,
    )
