"""Password login and the token check guarding the API."""

import threading
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from workbench.core.auth import SessionRegistry, check_password
from workbench.core.config import settings
from workbench.core.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)

AUTH_HEADER = "x-auth-token"
PUBLIC_PATHS = {"/api/auth", "/api/health"}

# Global session registry (lazy loaded, thread-safe)
_registry: SessionRegistry | None = None
_registry_lock = threading.Lock()


def get_session_registry() -> SessionRegistry:
    """Get or create the global session registry (thread-safe)."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = SessionRegistry(ttl_seconds=settings.session_ttl_seconds)
    return _registry


class AuthRequest(BaseModel):
    """Login request body."""

    password: str = ""
    username: str | None = None


class AuthResponse(BaseModel):
    """Login response body."""

    success: bool
    token: str | None = None
    username: str | None = None
    error: str | None = None


def normalize_username(username: str | None) -> str:
    """Trim and lower-case a username, falling back to the configured default."""
    cleaned = (username or "").strip().lower()
    return cleaned or settings.default_username


@router.post("/api/auth", response_model=AuthResponse, response_model_exclude_none=True)
async def authenticate(body: AuthRequest) -> AuthResponse | JSONResponse:
    """Exchange the shared password for a session token.

    Returns:
        The issued token and normalized username, or 401 on a wrong password.
    """
    if not check_password(body.password, settings.app_password):
        logger.warning("auth_failed", username=body.username)
        return JSONResponse(
            status_code=401,
            content=AuthResponse(success=False, error="Invalid password").model_dump(
                exclude_none=True
            ),
        )

    username = normalize_username(body.username)
    session = get_session_registry().issue(username)
    logger.info("auth_succeeded", username=username)
    return AuthResponse(success=True, token=session.token, username=username)


async def auth_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Reject API requests without a live session token.

    The session's username is stored on ``request.state.username``.
    """
    path = request.url.path
    if (
        not path.startswith("/api")
        or path in PUBLIC_PATHS
        or request.method == "OPTIONS"
    ):
        return await call_next(request)

    session = get_session_registry().resolve(request.headers.get(AUTH_HEADER))
    if session is None:
        logger.info("auth_rejected", path=path, method=request.method)
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    request.state.username = session.username
    return await call_next(request)


def current_username(request: Request) -> str:
    """Dependency returning the username bound to the request's token."""
    return request.state.username
