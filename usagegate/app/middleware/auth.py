"""Session token extraction for protected endpoints."""

from typing import Annotated, Optional

from fastapi import Depends, Request

from usagegate.app.core.config import settings


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip() or None


def get_session_token(request: Request) -> Optional[str]:
    """Return the session token carried by the request.

    The session cookie wins; an Authorization: Bearer header is accepted for
    clients that do not keep cookies. Validation happens in the session gate.
    """
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return token
    return get_bearer_token(request)


SessionTokenDep = Annotated[Optional[str], Depends(get_session_token)]
