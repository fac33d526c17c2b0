"""
API middleware
"""
import time
import uuid
import logging
from typing import Callable

import jwt
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .state import get_app_state


logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request and tags the response with X-Request-ID"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.perf_counter()

        logger.info(
            f"Request started: {request.method} {request.url.path} "
            f"[request_id={request_id}]"
        )

        response = await call_next(request)

        duration = time.perf_counter() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration:.6f}"

        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"[request_id={request_id}] "
            f"[status={response.status_code}] "
            f"[duration={duration:.3f}s]"
        )

        return response


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Bearer JWT check for the API.

    Only active when the runtime settings carry a ``jwt_secret_key``; the
    health endpoint and the docs stay open.
    """

    EXCLUDE_PATHS = [
        "/",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/api/v1/health",
    ]

    algorithm = "HS256"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        secret_key = self._secret_key()
        if not secret_key or request.url.path in self.EXCLUDE_PATHS:
            return await call_next(request)

        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": "unauthorized",
                    "message": "Missing or invalid authorization header"
                }
            )

        token = authorization.split(" ", 1)[1]
        try:
            payload = jwt.decode(token, secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "token_expired", "message": "Token has expired"}
            )
        except jwt.InvalidTokenError:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "invalid_token", "message": "Invalid token"}
            )

        request.state.user = {"id": payload.get("sub"), "role": payload.get("role", "user")}
        return await call_next(request)

    def _secret_key(self):
        runtime = get_app_state().get("runtime")
        return runtime.settings.jwt_secret_key if runtime else None
