"""CORS, request-id, logging, and bearer authentication middleware."""

import uuid
import time
import logging

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from dyncrud.core.config import settings
from dyncrud.core.exceptions import AuthenticationError
from dyncrud.core.gate import GateContext
from dyncrud.core.security import ANONYMOUS, verify_access_token

logger = logging.getLogger("dyncrud")
security_logger = logging.getLogger("dyncrud.security")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Add a unique request ID to every request/response."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        response: Response = await call_next(request)

        duration = round((time.time() - start_time) * 1000, 2)
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time-Ms"] = str(duration)

        logger.info(
            "%s %s %s %sms",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response


def is_public_path(path: str) -> bool:
    for public in settings.PUBLIC_PATHS:
        if path == public or (public != "/" and path.startswith(public.rstrip("/") + "/")):
            return True
    return False


def _reject(error: AuthenticationError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Stage A of the security gate.

    A bearer token, when present, must verify, whatever the path. Without one
    the request is rejected unless the path is public, in which case the
    anonymous identity is attached and the request proceeds.
    """

    async def dispatch(self, request: Request, call_next):
        gate = GateContext()
        request.state.gate = gate
        request.state.identity = None

        header = request.headers.get("Authorization")
        if header:
            scheme, _, token = header.partition(" ")
            try:
                if scheme.lower() != "bearer" or not token.strip():
                    raise AuthenticationError("Malformed authorization header")
                identity = verify_access_token(token.strip())
            except AuthenticationError as e:
                gate.reject(e.message)
                security_logger.info("Rejected %s %s: %s", request.method, request.url.path, e.message)
                return _reject(e)
            request.state.identity = identity
            gate.authenticate()
        elif is_public_path(request.url.path):
            request.state.identity = ANONYMOUS
        else:
            gate.reject("missing credential")
            security_logger.info("Rejected %s %s: missing credential", request.method, request.url.path)
            return _reject(AuthenticationError("Not authenticated"))

        return await call_next(request)


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware for the application."""
    # Bearer authentication (innermost, runs after CORS preflight handling)
    app.add_middleware(AuthenticationMiddleware)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID + timing
    app.add_middleware(RequestIdMiddleware)
