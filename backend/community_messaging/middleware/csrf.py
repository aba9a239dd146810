"""
CSRF middleware: state-changing requests outside /auth/ must carry a valid
X-CSRF-Token header.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from community_messaging.core.config import settings
from community_messaging.security.csrf import verify_csrf_token

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class CSRFMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        if not settings.csrf_enabled or request.method in SAFE_METHODS:
            return await call_next(request)

        if request.url.path.startswith("/auth/"):
            return await call_next(request)

        csrf_token = request.headers.get("X-CSRF-Token")

        # Exceptions raised here bypass FastAPI's handlers, so answer directly
        if not csrf_token:
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "CSRF token missing. Include X-CSRF-Token header.", "code": "CSRF_MISSING"},
            )

        if not verify_csrf_token(csrf_token):
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "CSRF token invalid or expired.", "code": "CSRF_INVALID"},
            )

        return await call_next(request)
