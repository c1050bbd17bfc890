"""
ID Card Accounts API

FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from idcard_api.api.middleware.request_id import RequestIdMiddleware
from idcard_api.api.middleware.security_headers import SecurityHeadersMiddleware
from idcard_api.api.v1 import router as api_router
from idcard_api.config import get_settings
from idcard_api.database import close_db, init_db
from idcard_api.kernel.identity.errors import CredentialError, RateLimited, Unconfigured
from idcard_api.logging_config import configure_logging, get_logger
from idcard_api.schemas.common import HealthResponse

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Runs startup and shutdown tasks.
    """
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    logger.info("Starting %s v%s", settings.project_name, settings.version)
    if not settings.secret_key:
        logger.error("SECRET_KEY is not set; signed credentials will be refused")
    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down...")
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.project_name,
    description="""
    ID Card Accounts API

    Account credentials and single-use tokens for a digital ID card service.

    ## Flows

    - **Login**: password check, signed session credential
    - **Email verification**: signed, self-expiring link
    - **Password reset**: hashed single-use token
    - **ID card QR**: short-lived single-use token redeemed by a verifier
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# add_middleware stacks innermost-first: CORS is added last so it wraps
# every response, including errors.
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-Request-ID",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
    ],
)


def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


def _error_headers(request: Request) -> dict:
    headers = dict(getattr(request.state, "rate_limit_headers", {}))
    req_id = _request_id(request)
    if req_id:
        headers["X-Request-ID"] = req_id
    return headers


@app.exception_handler(CredentialError)
async def credential_error_handler(request: Request, exc: CredentialError):
    """Map the credential failure taxonomy onto HTTP statuses."""
    headers = _error_headers(request)
    if isinstance(exc, RateLimited):
        headers.update(exc.headers)

    detail = exc.message
    if isinstance(exc, Unconfigured):
        logger.error("Credential service misconfigured: %s", exc.message)
        if not settings.debug:
            detail = "Internal server error"

    content = {"detail": detail}
    if exc.status_code >= 500:
        content["request_id"] = _request_id(request)
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Attach the request id to 4xx/5xx responses."""
    headers = _error_headers(request)
    if exc.headers:
        headers.update(exc.headers)
    content = {"detail": exc.detail}
    req_id = _request_id(request)
    if req_id and exc.status_code >= 500:
        content["request_id"] = req_id
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
):
    """Handle request validation errors without echoing submitted values."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    content = {"detail": "Validation error", "errors": errors}
    req_id = _request_id(request)
    if req_id:
        content["request_id"] = req_id
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=content,
        headers=_error_headers(request),
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request,
    exc: Exception,
):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)
    req_id = _request_id(request)
    if settings.debug:
        content = {
            "detail": str(exc),
            "type": type(exc).__name__,
            "request_id": req_id,
        }
    else:
        content = {"detail": "Internal server error", "request_id": req_id}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
        headers=_error_headers(request),
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check application health."""
    return HealthResponse(
        status="ok",
        version=settings.version,
        environment=settings.environment,
    )


app.include_router(
    api_router,
    prefix=settings.api_prefix,
)


# Main entry point for development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "idcard_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
