"""Login and the per-user context shared by client components."""

from dataclasses import dataclass

import httpx

from workbench.client.errors import AuthenticationError
from workbench.core.logging import get_logger

logger = get_logger(__name__)

AUTH_HEADER = "x-auth-token"


@dataclass(frozen=True)
class ClientContext:
    """Server location and credentials for one logged-in user."""

    base_url: str
    token: str
    username: str

    @property
    def headers(self) -> dict[str, str]:
        return {AUTH_HEADER: self.token}

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"


async def login(
    http_client: httpx.AsyncClient,
    base_url: str,
    password: str,
    username: str | None = None,
) -> ClientContext:
    """Exchange the shared password for a session token.

    Args:
        http_client: Client used for the request.
        base_url: Server root, e.g. ``http://localhost:3001``.
        password: Shared password.
        username: Optional username; the server applies a default.

    Returns:
        A context carrying the issued token.

    Raises:
        AuthenticationError: If the password is rejected.
        httpx.HTTPError: If the server cannot be reached.
    """
    payload: dict[str, str] = {"password": password}
    if username is not None:
        payload["username"] = username

    response = await http_client.post(f"{base_url.rstrip('/')}/api/auth", json=payload)
    data = response.json() if response.content else {}
    if response.status_code != 200 or not data.get("success"):
        logger.warning("login_failed", status_code=response.status_code)
        raise AuthenticationError(data.get("error") or "Invalid password")

    logger.info("login_succeeded", username=data["username"])
    return ClientContext(base_url=base_url, token=data["token"], username=data["username"])
