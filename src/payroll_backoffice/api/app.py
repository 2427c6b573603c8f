"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_backoffice.api.routes import (
    health_router,
    leave_requests_router,
    overtime_requests_router,
    payroll_runs_router,
)
from payroll_backoffice.database import dispose_db, init_db
from payroll_backoffice.errors import (
    SUPPORT_MESSAGE,
    BusinessRuleError,
    InvariantViolation,
    NotAuthorized,
    NotFound,
)
from payroll_backoffice.events import AuditEmitter, create_default_emitter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    init_db()
    yield
    await dispose_db()


def business_error_status(exc: BusinessRuleError) -> int:
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, NotAuthorized):
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_409_CONFLICT


def create_app(emitter: AuditEmitter | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Payroll Back Office API",
        description="Leave ledger, request workflows and the payroll run pipeline",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.emitter = emitter or create_default_emitter()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(BusinessRuleError)
    async def business_rule_handler(request: Request, exc: BusinessRuleError) -> JSONResponse:
        logger.info("%s %s refused: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=business_error_status(exc),
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(InvariantViolation)
    async def invariant_handler(request: Request, exc: InvariantViolation) -> JSONResponse:
        logger.error(
            "Invariant violation on %s %s: [%s] %s",
            request.method,
            request.url.path,
            exc.code,
            exc.detail,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": SUPPORT_MESSAGE, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(payroll_runs_router, prefix="/api/v1")
    app.include_router(leave_requests_router, prefix="/api/v1")
    app.include_router(overtime_requests_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
