"""Middleware package for usagegate."""

from usagegate.app.middleware.auth import SessionTokenDep, get_session_token
from usagegate.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "SessionTokenDep",
    "get_session_token",
    "RequestIdMiddleware",
    "get_request_id",
]
