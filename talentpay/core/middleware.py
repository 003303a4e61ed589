import json
import re
import time
import uuid
from typing import Callable

import jwt
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from talentpay.config import settings
from talentpay.core.logging import api_logger
from talentpay.core.security import decode_access_token

REQUEST_ID_HEADER = "X-Request-ID"

# Mobile-money numbers that end up in query strings
_PHONE_RE = re.compile(r"\+?\d{9,15}")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log every API request with its request id, caller, status
    code and response time.

    Bodies are never logged: they carry payer phone numbers, emails and
    verification codes. Phone-like digits in the query string are masked.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process the request and log details.

        Args:
            request: The incoming request
            call_next: The next middleware or route handler

        Returns:
            Response: The response from the route handler, carrying X-Request-ID
        """
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        request.state.request_id = request_id

        if request.url.path in settings.LOG_EXCLUDED_PATHS:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        start_time = time.time()
        summary = (
            f"[{request_id}] {request.method} {request.url.path} - "
            f"IP: {_client_ip(request)}"
        )

        try:
            response = await call_next(request)
        except Exception as e:
            api_logger.error(
                f"{summary} - Status: 500 - User: {_caller(request)} - "
                f"Query: {_masked_query(request)} - Error: {e}"
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        try:
            api_logger.info(
                f"{summary} - Status: {response.status_code} - User: {_caller(request)} - "
                f"UserAgent: {request.headers.get('User-Agent', 'Unknown')} - "
                f"Query: {_masked_query(request)} - Duration: {duration_ms}ms"
            )
        except Exception as e:
            # Don't let logging errors break the API
            print(f"Error logging request: {e}", flush=True)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ClaimsInjectionMiddleware(BaseHTTPMiddleware):
    """
    Middleware to decode the bearer JWT and inject its claims into request state.

    This middleware:
    - Extracts and validates JWT tokens from the Authorization header
    - Stores the decoded claims in request.state.claims for downstream use
    - Fails gracefully (sets claims=None) for missing or invalid tokens
    - Skips public paths that never need a caller identity
    """

    PUBLIC_PATHS = {
        "/health",
        "/docs",
        "/redoc",
        "/openapi.json",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.claims = None

        if request.url.path in self.PUBLIC_PATHS:
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header.replace("Bearer ", "", 1)
            try:
                request.state.claims = decode_access_token(token)
            except jwt.PyJWTError:
                # Invalid or expired: route dependencies decide whether that matters
                request.state.claims = None

        return await call_next(request)


def _client_ip(request: Request) -> str:
    # Behind a proxy the first X-Forwarded-For hop is the client
    forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if forwarded:
        return forwarded
    if request.headers.get("X-Real-IP"):
        return request.headers["X-Real-IP"]
    return request.client.host if request.client else "unknown"


def _masked_query(request: Request) -> str:
    params = {
        key: _PHONE_RE.sub(lambda m: "*" * (len(m.group()) - 3) + m.group()[-3:], value)
        for key, value in request.query_params.items()
    }
    return json.dumps(params)


def _caller(request: Request) -> str:
    claims = getattr(request.state, "claims", None)
    if not claims:
        return "Anonymous"
    return str(claims.get("email") or claims.get("sub") or "Anonymous")
