from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
import os


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Runtime configuration values exposed to FastAPI components."""

    app_name: str = os.getenv("APP_NAME", "colony-auth")
    version: str = "0.1.0"
    http_host: str = os.getenv("HTTP_HOST", "0.0.0.0")
    http_port: int = int(os.getenv("HTTP_PORT", "8000"))
    max_attempts: int = int(os.getenv("AUTH_MAX_ATTEMPTS", "5"))
    session_timeout_seconds: int = int(os.getenv("AUTH_SESSION_TIMEOUT_SECONDS", "900"))
    seed_samples: bool = _env_flag("AUTH_SEED_SAMPLES", "true")
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_issuer: str = os.getenv("JWT_ISSUER", "colony.auth")
    jwt_ttl_seconds: int = int(os.getenv("JWT_TTL_SECONDS", "43200"))
    cors_origins: tuple[str, ...] = field(
        default_factory=lambda: tuple(
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
            if origin.strip()
        )
    )

    @property
    def session_timeout(self) -> timedelta:
        return timedelta(seconds=self.session_timeout_seconds)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached Settings instance for the running process."""
    return Settings()
