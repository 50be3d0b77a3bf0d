from collections.abc import Sequence
from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from thcplus.api.v1 import api_router
from thcplus.core.config import settings
from thcplus.core.logging_config import configure_logging
from thcplus.core.redis_client import close_redis
from thcplus.core.sentry import capture_exception, init_sentry
from thcplus.middleware import AgeGateMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from thcplus.schemas.common import ActionResponse
from thcplus.schemas.error import ErrorResponse

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR = "An unexpected error occurred. Please try again."
INVALID_REQUEST = "Invalid request data"


def validation_message(errors: Sequence[Any]) -> str:
    """Name the first offending field without echoing the submitted value."""
    for error in errors:
        loc = error.get("loc") if isinstance(error, dict) else None
        fields = [str(part) for part in (loc or ()) if isinstance(part, str) and part not in ("body", "query", "path")]
        if fields:
            return f"{INVALID_REQUEST}: {fields[-1]}"
    return INVALID_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_redis()


def get_application() -> FastAPI:
    configure_logging(settings.log_json or settings.is_production, settings.log_level)
    init_sentry()
    tags_metadata = [
        {"name": "coupons", "description": "Coupon validation and redemption"},
        {"name": "admin-coupons", "description": "Coupon administration and Square sync"},
        {"name": "age-verification", "description": "Age gate sessions"},
        {"name": "compliance", "description": "Age verification audit log"},
        {"name": "contact", "description": "Contact form"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(AgeGateMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(payload.model_dump()),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        payload = ActionResponse[None](success=False, error=validation_message(exc.errors()))
        return JSONResponse(status_code=422, content=payload.model_dump())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_exception", extra={"path": request.url.path, "method": request.method})
        capture_exception(exc, tags={"path": request.url.path, "method": request.method})
        payload = ActionResponse[None](success=False, error=UNEXPECTED_ERROR)
        return JSONResponse(status_code=500, content=payload.model_dump())

    return app


app = get_application()
