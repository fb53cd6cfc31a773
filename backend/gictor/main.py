import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gictor.api import billing, credits, generations, pipelines, webhooks
from gictor.config import get_settings
from gictor.constants.error_codes import get_error_spec
from gictor.exceptions import GictorError, InternalError
from gictor.middleware.request_context import get_request_id, request_context_middleware
from gictor.models.database import engine, init_db
from gictor.schemas.envelope import ErrorInfo, ErrorResponse, FieldIssue

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(request_context_middleware)


def _http_error_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        401: "UNAUTHENTICATED",
        404: "NOT_FOUND",
        429: "RATE_LIMITED",
        500: "INTERNAL_ERROR",
    }
    return mapping.get(status_code, "BAD_REQUEST" if status_code < 500 else "INTERNAL_ERROR")


def _error_response(
    request: Request,
    status_code: int,
    info: ErrorInfo,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse.from_error_info(info, request_id=get_request_id(request))
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump(exclude_none=True)),
        headers=headers,
    )


@app.exception_handler(GictorError)
async def gictor_exception_handler(request: Request, exc: GictorError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return _error_response(request, exc.status_code, exc.to_error_info(), exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI body/query validation errors as INVALID_INPUT with field issues."""
    spec = get_error_spec("INVALID_INPUT")
    issues = [
        FieldIssue(
            field=".".join(str(x) for x in error.get("loc", []) if x != "body") or "body",
            message=error.get("msg", "Validation error"),
        )
        for error in exc.errors()
    ]
    info = ErrorInfo(
        code="INVALID_INPUT",
        message="Invalid request. Please check your input and try again.",
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
        issues=issues,
    )
    return _error_response(request, 400, info)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_code = _http_error_code(exc.status_code)
    spec = get_error_spec(error_code)
    info = ErrorInfo(
        code=error_code,
        message=str(exc.detail),
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(request, exc.status_code, info, getattr(exc, "headers", None))


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    return _error_response(request, 500, InternalError("Internal server error").to_error_info())


# Routers
app.include_router(generations.router, prefix="/api/generations", tags=["generations"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
app.include_router(pipelines.router, prefix="/api/pipelines", tags=["pipelines"])
app.include_router(credits.router, prefix="/api/credits", tags=["credits"])
app.include_router(billing.router, prefix="/api/billing", tags=["billing"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version, "git_hash": settings.git_hash}
