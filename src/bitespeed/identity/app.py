from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.logging import get_logger, setup_logging

from . import __version__
from .config import get_settings
from .errors import IdentityError, InternalInconsistencyError, ObservationValidationError
from .models import HealthResponse
from .routes import contacts, identify

logger = get_logger("identity.api")


def _server_error(exc: Exception) -> JSONResponse:
    payload: dict[str, str] = {"error": "Internal Server Error"}
    if get_settings().is_development:
        payload["detail"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ObservationValidationError)
    async def observation_invalid(request: Request, exc: ObservationValidationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = errors[0].get("msg", "invalid value") if errors else "invalid value"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid request body", "detail": str(detail)},
        )

    @app.exception_handler(IdentityError)
    async def identity_failed(request: Request, exc: IdentityError) -> JSONResponse:
        extra = {}
        if isinstance(exc, InternalInconsistencyError):
            extra["contact_ids"] = exc.contact_ids
        logger.error(
            "identify_failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
            **extra,
        )
        return _server_error(exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return JSONResponse(status_code=exc.status_code, content={"message": "Not Found"})
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path, error=str(exc))
        return _server_error(exc)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Identity Reconciliation Service", version=__version__)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def on_startup() -> None:
        setup_logging(settings.log_level)
        logger.info(
            "identity_service_ready",
            service=settings.service_name,
            store_backend=settings.store_backend,
            environment=settings.environment,
        )

    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health() -> HealthResponse:
        return HealthResponse(status="OK", timestamp=datetime.now(timezone.utc))

    app.include_router(identify.router)
    app.include_router(contacts.router)
    _install_error_handlers(app)

    return app


__all__ = ["create_app"]
