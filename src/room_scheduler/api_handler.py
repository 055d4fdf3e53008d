from __future__ import annotations

from typing import Any

from aws_lambda_powertools import Logger
from mangum import Mangum
from mangum.types import LambdaContext

from room_scheduler.api import app

logger = Logger()
handler = Mangum(app)

IDENTITY_HEADER = "x-acting-identity"


def _authorizer_identity(request_context: dict[str, Any]) -> str | None:
    authorizer = request_context.get("authorizer") or {}
    claims = (authorizer.get("jwt") or {}).get("claims") or authorizer.get("claims") or {}
    identity = claims.get("sub") or claims.get("username") or claims.get("email")
    return str(identity) if identity else None


def lambda_handler(event: dict[str, Any], context: LambdaContext) -> Any:
    if isinstance(event, dict) and event.get("version") == "2.0":
        request_context = event.setdefault("requestContext", {})
        # Normalize minimal API Gateway HTTP API v2.0 events for local/tests
        http_ctx = request_context.setdefault("http", {})
        http_ctx.setdefault("sourceIp", "127.0.0.1")
        http_ctx.setdefault("userAgent", "pytest")
        request_context.setdefault("stage", "$default")

        # Attribution comes from the authorizer, never from the caller
        headers = event.setdefault("headers", {})
        for name in [h for h in headers if h.lower() == IDENTITY_HEADER]:
            del headers[name]
        identity = _authorizer_identity(request_context)
        if identity:
            headers[IDENTITY_HEADER] = identity
            logger.append_keys(acting_identity=identity)

    return handler(event, context)
