"""Application factory for the ConceptCraft FastAPI backend."""

import os
from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import AuthSession
from .config import Settings, get_settings
from .errors import (
    GenerationInProgress,
    IllegalTransition,
    NotAuthenticated,
    StorageUnavailable,
    ValidationFailed,
)
from .llm import GenerationGateway
from .logging import configure_logging
from .routers import steps, wizard
from .storage import ConceptStore, JsonFileStore, KeyValueStore
from .subscriptions import UsageTracker
from .wizard import Wizard

logger = structlog.get_logger(__name__)


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3001",
]


def _resolve_allowed_origins() -> list[str]:
    """Return allowed origins, optionally sourced from an env override."""

    raw = os.getenv("CONCEPTCRAFT_ALLOWED_ORIGINS")
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return DEFAULT_ALLOWED_ORIGINS


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationFailed)
    async def validation_failed(request: Request, exc: ValidationFailed) -> JSONResponse:
        return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)

    @app.exception_handler(IllegalTransition)
    async def illegal_transition(request: Request, exc: IllegalTransition) -> JSONResponse:
        return _error_response(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(GenerationInProgress)
    async def generation_in_progress(request: Request, exc: GenerationInProgress) -> JSONResponse:
        return _error_response(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(NotAuthenticated)
    async def not_authenticated(request: Request, exc: NotAuthenticated) -> JSONResponse:
        return _error_response(status.HTTP_401_UNAUTHORIZED, exc)

    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable(request: Request, exc: StorageUnavailable) -> JSONResponse:
        logger.error("storage_unavailable", path=request.url.path, error=str(exc))
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[KeyValueStore] = None,
    gateway: Optional[GenerationGateway] = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance."""

    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.json_logs)

    app = FastAPI(
        title="ConceptCraft Backend",
        version="0.1.0",
        description="AI-assisted business ideation wizard for ConceptCraft.",
    )
    allowed_origins = _resolve_allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_origin_regex=r"http://localhost:\d+$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    kv = store if store is not None else JsonFileStore(settings.storage_path)
    auth = AuthSession(kv, latency=settings.auth_latency)
    auth.load()
    concepts = ConceptStore(kv)
    concepts.load()
    app.state.settings = settings
    app.state.wizard = Wizard(
        auth,
        concepts,
        gateway or GenerationGateway.from_settings(settings),
        usage=UsageTracker(kv),
    )
    if not settings.has_api_key:
        logger.warning("inference_disabled", reason="no API key configured; every generation uses fallbacks")

    app.include_router(wizard.auth_router)
    app.include_router(wizard.router)
    app.include_router(steps.router)
    _register_error_handlers(app)
    return app


_app: Optional[FastAPI] = None


def __getattr__(name: str) -> FastAPI:
    # `uvicorn conceptcraft.app:app` builds the default app on first access.
    global _app
    if name != "app":
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    if _app is None:
        _app = create_app()
    return _app
