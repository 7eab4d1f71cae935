"""
Prescription Issuance Gateway (rxgate) - FastAPI Application

This is the main entry point for the rxgate API.

Security Hardening:
- JWT-based authentication required for all prescription endpoints
- Roles and status resolved from the identity store on every request
- Custom exception handling so 5xx bodies never carry internal detail
- Request validation errors report field names only, never values
- Database security validation on startup
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rxgate.app import config
from rxgate.app.db.migrate import check_db_security, ensure_schema
from rxgate.app.db.records import SqliteIdentityStore
from rxgate.app.errors import RenderError, RxGateError
from rxgate.app.logging_config import configure_logging
from rxgate.app.routes import auth, health, keys, prescriptions
from rxgate.app.security.auth import AuthGateway, IdentityStore
from rxgate.app.services.audit_log import AuditLog
from rxgate.app.services.delivery import DeliveryService, MailTransport, SmtpTransport
from rxgate.app.services.interactions import (
    InteractionChecker,
    InteractionSource,
    NullInteractionSource,
    StaticInteractionSource,
)
from rxgate.app.services.key_registry import KeyRegistry
from rxgate.app.services.prescription_pdf import DocumentGenerator
from rxgate.app.services.signer import PrescriptionSigner
from rxgate.app.services.workflow import PrescriptionWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Collaborators shared by all requests, held on app.state.services."""

    auth: AuthGateway
    audit: AuditLog
    keys: KeyRegistry
    workflow: PrescriptionWorkflow


def build_services(
    identity_store: Optional[IdentityStore] = None,
    interaction_source: Optional[InteractionSource] = None,
    transport: Optional[MailTransport] = None,
    document_dir: Optional[str] = None,
) -> Services:
    """
    Wire the pipeline from configuration.

    Every argument overrides the configured default (tests pass an in-memory
    transport and a static interaction table).
    """
    if interaction_source is None:
        if config.INTERACTIONS_PATH:
            interaction_source = StaticInteractionSource.from_file(config.INTERACTIONS_PATH)
        else:
            logger.warning(
                "RXGATE_INTERACTIONS_PATH not set; interaction checks will find nothing"
            )
            interaction_source = NullInteractionSource()

    gateway = AuthGateway(identity_store or SqliteIdentityStore())
    audit = AuditLog()
    registry = KeyRegistry()
    workflow = PrescriptionWorkflow(
        auth=gateway,
        checker=InteractionChecker(interaction_source),
        documents=DocumentGenerator(document_dir),
        signer=PrescriptionSigner(registry),
        delivery=DeliveryService(transport or SmtpTransport()),
        audit=audit,
    )
    return Services(auth=gateway, audit=audit, keys=registry, workflow=workflow)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifecycle management for the FastAPI app.

    On startup:
    - Ensure database schema exists
    - Enable database security hardening (WAL mode, permissions)
    - Configure the audit and error log streams
    - Validate database security configuration
    """
    ensure_schema()
    configure_logging()

    security_status = check_db_security()

    # Warn if security is not optimal (but don't fail startup)
    if not security_status.get("wal_enabled"):
        logger.warning("Database WAL mode not enabled")

    if not security_status.get("permissions_secure"):
        logger.warning("Database file permissions may not be secure")

    yield


def sanitize_error_detail(detail) -> dict:
    """
    Return a client-safe error body.

    Dict details are produced by our own code and pass through; anything
    else is replaced with a generic message.
    """
    if isinstance(detail, dict):
        return detail

    return {
        "error": "internal_error",
        "message": "An error occurred processing your request",
    }


async def rxgate_error_handler(request: Request, exc: RxGateError):
    # RenderError is already on the error stream from the workflow
    if exc.status_code >= 500 and not isinstance(exc, RenderError):
        request.app.state.services.audit.record_error(
            exc,
            {"method": request.method, "path": request.url.path, **exc.context},
        )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_detail(),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions without leaking internal detail."""
    return JSONResponse(
        status_code=exc.status_code,
        content=sanitize_error_detail(exc.detail),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle validation errors without echoing the request body.

    Pydantic errors can include submitted values (patient data, SSNs); only
    field paths and error types are returned.
    """
    errors = []
    for error in exc.errors():
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field_path,
            "type": error["type"],
            "message": error["msg"],
        })

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": errors,
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Catch-all so unhandled exceptions never leak request data or state."""
    request.app.state.services.audit.record_error(
        exc, {"method": request.method, "path": request.url.path}
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
        },
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="Prescription Issuance Gateway (rxgate)",
        description="Authenticated, interaction-checked, signed and audited prescriptions",
        version="0.1.0",
        lifespan=lifespan,
        debug=False,
    )
    app.state.services = services or build_services()

    app.add_exception_handler(RxGateError, rxgate_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health.router)
    app.include_router(keys.router)
    app.include_router(auth.router)
    app.include_router(prescriptions.router)

    @app.get("/")
    async def root():
        return {
            "service": "Prescription Issuance Gateway (rxgate)",
            "version": "0.1.0",
            "status": "operational",
        }

    return app


app = create_app()
