"""FastAPI application wiring for the storefront identity service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import install_boundary, router as v1_router
from .audit import AuditSink
from .config import Settings, get_settings
from .domain.lockout import LockoutPolicy
from .domain.service import FailureDelay, LoginService
from .repository import AccountRepository
from .security.passwords import Pbkdf2PasswordVerifier
from .security.tokens import JwtTokenIssuer

settings = get_settings()


def build_login_service(repository: AccountRepository, settings: Settings) -> LoginService:
    """Assemble a :class:`LoginService` from runtime settings."""
    return LoginService(
        repository,
        Pbkdf2PasswordVerifier(iterations=settings.password_hash_iterations),
        JwtTokenIssuer(),
        AuditSink(writer=repository),
        policy=LockoutPolicy(
            max_failed_attempts=settings.lockout_max_failed_attempts,
            lockout_duration=timedelta(minutes=settings.lockout_duration_minutes),
        ),
        failure_delay=FailureDelay(
            min_ms=settings.login_failure_delay_min_ms,
            max_ms=settings.login_failure_delay_max_ms,
        ),
        conflict_retries=settings.login_conflict_retries,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    app.state.login_service = build_login_service(AccountRepository(pool), settings)
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
install_boundary(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
