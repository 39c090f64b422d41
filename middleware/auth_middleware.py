"""
Authentication middleware.
Logs requests to protected paths that carry no bearer token; the token itself
is validated by the FastAPI dependencies, which return the 401.
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import List

from core.logger import logger

# Paths served without authentication (matched exactly)
PUBLIC_ROUTES: List[str] = [
    "/",
    "/health",
    "/api/auth/login",
    "/api/auth/register",
    "/api/streams/public",
]

# Path prefixes served without authentication
PUBLIC_PREFIXES: List[str] = [
    "/docs",
    "/openapi.json",
    "/redoc",
]


def is_public_path(path: str, public_routes: List[str] = None, public_prefixes: List[str] = None) -> bool:
    routes = PUBLIC_ROUTES if public_routes is None else public_routes
    prefixes = PUBLIC_PREFIXES if public_prefixes is None else public_prefixes
    normalized = path.rstrip("/") or "/"
    return normalized in routes or any(path.startswith(prefix) for prefix in prefixes)


class AuthRequiredMiddleware(BaseHTTPMiddleware):
    """
    Early authentication check.

    Never blocks: FastAPI dependencies produce the proper error response.
    """

    def __init__(self, app, public_routes: List[str] = None, public_prefixes: List[str] = None):
        """
        Initialize authentication middleware.

        Args:
            app: FastAPI application
            public_routes: Paths that don't require auth
            public_prefixes: Path prefixes that don't require auth
        """
        super().__init__(app)
        self.public_routes = public_routes
        self.public_prefixes = public_prefixes

    async def dispatch(self, request: Request, call_next):
        """Process request with authentication check."""
        path = request.url.path

        if request.method == "OPTIONS" or is_public_path(path, self.public_routes, self.public_prefixes):
            return await call_next(request)

        if not request.headers.get("authorization"):
            logger.warning(f"Request without authentication headers: {request.method} {path} from {request.client.host if request.client else 'unknown'}")

        return await call_next(request)
