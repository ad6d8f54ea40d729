"""HTTP route definitions for the storefront login endpoint."""

from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..config import get_settings
from ..domain.contracts import (
    InvalidRequest,
    LoginOutcome,
    LoginSuccess,
    TransientError,
    Unauthorized,
    UnauthorizedReason,
)
from ..domain.service import LoginService
from ..security.rate_limiter import RateLimitDecision, SlidingWindowRateLimiter
from ..security.redis_rate_limiter import RedisSlidingWindowRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
TRANSIENT_ERROR_MESSAGE = "Login is temporarily unavailable. Please try again later."
RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-XSS-Protection": "1; mode=block",
}


class LoginRequest(BaseModel):
    """JSON body accepted by ``POST /v1/login``.

    Both fields are optional at the schema level so that blank and missing
    values are rejected by the service with the uniform 400 body.
    """

    email: str | None = None
    password: str | None = Field(default=None, repr=False)


class LoginResponse(BaseModel):
    """Successful login body containing the bearer token and account summary."""

    model_config = ConfigDict(populate_by_name=True)

    token: str
    token_type: str = Field(default="Bearer", alias="tokenType")
    expires_in: int = Field(..., alias="expiresIn")
    user_id: str = Field(..., alias="userId")
    email: str
    access_level: str = Field(..., alias="accessLevel")

    @classmethod
    def from_outcome(cls, outcome: LoginSuccess) -> "LoginResponse":
        """Build a response model from the service outcome."""
        return cls(
            token=outcome.token,
            token_type=outcome.token_type,
            expires_in=outcome.expires_in,
            user_id=outcome.account_id,
            email=outcome.email,
            access_level=outcome.access_level.value,
        )


class MessageResponse(BaseModel):
    message: str


settings = get_settings()


def _build_rate_limiter() -> SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter configured for redis backend")
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
                key_prefix="storefront-rate",
            )
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


rate_limiter = _build_rate_limiter()


def get_service(request: Request) -> LoginService:
    """Resolve the `LoginService` stored on the FastAPI application state."""
    service: LoginService = request.app.state.login_service
    return service


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after)
    return headers


def outcome_response(outcome: LoginOutcome) -> JSONResponse:
    """Translate a service outcome into the public HTTP response."""
    if isinstance(outcome, LoginSuccess):
        body = LoginResponse.from_outcome(outcome).model_dump(by_alias=True)
        return JSONResponse(status_code=status.HTTP_200_OK, content=body)
    if isinstance(outcome, InvalidRequest):
        return _message(status.HTTP_400_BAD_REQUEST, outcome.message)
    if isinstance(outcome, Unauthorized):
        if outcome.reason is UnauthorizedReason.locked and outcome.retry_after is not None:
            minutes = max(1, math.ceil(outcome.retry_after.total_seconds() / 60))
            return _message(
                status.HTTP_401_UNAUTHORIZED,
                f"Account temporarily locked. Try again in {minutes} minutes.",
            )
        return _message(status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIALS_MESSAGE)
    if isinstance(outcome, TransientError):
        return _message(status.HTTP_500_INTERNAL_SERVER_ERROR, TRANSIENT_ERROR_MESSAGE)
    raise TypeError(f"unexpected login outcome {type(outcome).__name__}")


def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=MessageResponse(message=message).model_dump())


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        400: {"model": MessageResponse},
        401: {"model": MessageResponse},
        429: {"model": MessageResponse},
        500: {"model": MessageResponse},
    },
)
def login(
    request: Request,
    payload: LoginRequest,
    service: LoginService = Depends(get_service),
) -> JSONResponse:
    """Authenticate an email/password pair and issue a bearer token."""
    ip = client_ip(request)
    decision = rate_limiter.check(f"login:{ip}")
    if not decision.allowed:
        logger.warning("login rate limit exceeded for client %s", ip)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"message": RATE_LIMITED_MESSAGE, "retryAfter": decision.retry_after},
            headers=_rate_limit_headers(decision),
        )

    response = outcome_response(service.login(payload.email, payload.password, ip))
    response.headers.update(_rate_limit_headers(decision))
    return response


@router.get("/endpoints")
def list_endpoints() -> list[dict[str, str]]:
    """Describe the public endpoints exposed by this service."""
    return [
        {"method": "POST", "path": "/v1/login"},
        {"method": "GET", "path": "/v1/endpoints"},
    ]


@router.options("/login", status_code=status.HTTP_204_NO_CONTENT)
def login_options() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers={"Allow": "POST, GET, OPTIONS"})


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _message(status.HTTP_400_BAD_REQUEST, "Login request is required")


def install_boundary(app: FastAPI) -> None:
    """Attach the security headers and the uniform 400 handler to ``app``."""

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.add_exception_handler(RequestValidationError, _validation_error_handler)
