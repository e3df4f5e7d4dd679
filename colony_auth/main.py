"""FastAPI application wiring for the colony authentication service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .api.routes import router as v1_router
from .config import Settings, get_settings
from .directory import AccountDirectory
from .domain.service import AuthService


def build_services(settings: Settings) -> tuple[AccountDirectory, AuthService]:
    """Create the account directory and the auth service that shares its mapping."""
    directory = AccountDirectory()
    if settings.seed_samples:
        directory.seed_samples()
    service = AuthService(
        directory.accounts,
        settings.max_attempts,
        settings.session_timeout,
    )
    return directory, service


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application with in-process auth state."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialise the directory and auth service for the app lifecycle."""
        directory, service = build_services(settings)
        app.state.account_directory = directory
        app.state.auth_service = service
        yield

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.settings = settings

    # CORS for the colony console frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(v1_router)
    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("colony_auth.main:app", host=settings.http_host, port=settings.http_port)
