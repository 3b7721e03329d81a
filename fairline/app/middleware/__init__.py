"""Middleware package for the waiting room."""

from fairline.app.middleware.auth import get_bearer_token, require_admin, require_proof
from fairline.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "get_bearer_token",
    "require_admin",
    "require_proof",
    "RequestIdMiddleware",
    "get_request_id",
]
