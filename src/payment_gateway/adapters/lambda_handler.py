"""
One-shot invocation adapter (AWS Lambda behind API Gateway).

Supports REST API (payload v1) and HTTP API (payload v2) proxy events. Each
invocation opens its own network clients because every call runs in a fresh
event loop; settings and the strict-mode consumed-settlement set live for the
whole warm process.
"""

import asyncio
import base64
import binascii
from functools import lru_cache
from typing import Any
from urllib.parse import urlencode

import httpx

from ..config import Settings, get_settings
from ..gateway import open_gateway
from ..health import health_payload
from ..ledger.interfaces import LedgerClient
from ..logging_config import (
    bind_request_id,
    clear_request_context,
    configure_logging,
    get_logger,
)
from ..messages import GatewayRequest, GatewayResponse
from ..payments.replay import ConsumedSettlements
from ..payments.types import VerificationMode

logger = get_logger("lambda")

TEXT_CONTENT_TYPES = ("application/json", "text/", "application/xml")


def event_to_request(event: dict[str, Any]) -> GatewayRequest:
    """Translates an API Gateway proxy event into a GatewayRequest."""
    http_context = (event.get("requestContext") or {}).get("http") or {}

    method = event.get("httpMethod") or http_context.get("method") or "GET"

    path = event.get("rawPath") or event.get("path")
    if not path:
        proxy = (event.get("pathParameters") or {}).get("proxy")
        path = f"/{proxy}" if proxy else "/"

    query = event.get("rawQueryString")
    if query is None:
        multi = event.get("multiValueQueryStringParameters")
        single = event.get("queryStringParameters")
        if multi:
            query = urlencode(
                [(key, value) for key, values in multi.items() for value in values or []]
            )
        elif single:
            query = urlencode(single)
        else:
            query = ""

    headers = httpx.Headers(
        {key: value for key, value in (event.get("headers") or {}).items() if value is not None}
    )

    raw_body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        try:
            body = base64.b64decode(raw_body)
        except binascii.Error as e:
            raise ValueError("Invalid base64 body") from e
    elif isinstance(raw_body, str):
        body = raw_body.encode("utf-8")
    else:
        body = bytes(raw_body)

    return GatewayRequest(
        method=method.upper(), path=path, query=query, headers=headers, body=body
    )


def response_to_result(
    response: GatewayResponse, payload_version: str = "1.0"
) -> dict[str, Any]:
    """Translates a GatewayResponse into the proxy integration result format."""
    headers = httpx.Headers(response.headers)
    result: dict[str, Any] = {
        "statusCode": response.status_code,
        "headers": {
            key: value
            for key, value in headers.items()
            if key not in ("content-length", "set-cookie")
        },
    }

    # Repeated Set-Cookie values cannot share one header entry
    cookies = headers.get_list("set-cookie")
    if cookies and payload_version == "2.0":
        result["cookies"] = cookies
    elif cookies:
        result["multiValueHeaders"] = {"set-cookie": cookies}

    content_type = headers.get("content-type", "")
    if not response.content or content_type.startswith(TEXT_CONTENT_TYPES):
        try:
            result["body"] = response.content.decode("utf-8")
            result["isBase64Encoded"] = False
            return result
        except UnicodeDecodeError:
            pass

    result["body"] = base64.b64encode(response.content).decode("ascii")
    result["isBase64Encoded"] = True
    return result


@lru_cache
def _consumed_settlements(ttl_seconds: float) -> ConsumedSettlements:
    """Settlements accepted by this warm process, shared across invocations."""
    return ConsumedSettlements(ttl_seconds=ttl_seconds)


async def dispatch(
    event: dict[str, Any],
    settings: Settings,
    ledger: LedgerClient | None = None,
    upstream_client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    payload_version = event.get("version", "1.0")
    try:
        request = event_to_request(event)
    except ValueError as e:
        logger.warning("lambda_event_rejected", error=str(e))
        return response_to_result(
            GatewayResponse.from_json(400, {"error": "Bad Request", "message": str(e)}),
            payload_version,
        )

    if request.method == "GET" and request.path == "/health":
        return response_to_result(
            GatewayResponse.from_json(200, health_payload()), payload_version
        )

    consumed = None
    if settings.verification_mode is VerificationMode.STRICT:
        consumed = _consumed_settlements(settings.payment_recency_window_seconds)

    async with open_gateway(
        settings, ledger=ledger, upstream_client=upstream_client, consumed=consumed
    ) as gateway:
        response = await gateway.handle(request)
    return response_to_result(response, payload_version)


@lru_cache
def _load_settings() -> Settings:
    settings = get_settings()
    configure_logging(settings.log_level)
    return settings


def handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    """AWS Lambda entry point."""
    request_id = getattr(context, "aws_request_id", None)
    if request_id:
        bind_request_id(request_id)
    try:
        return asyncio.run(dispatch(event, _load_settings()))
    finally:
        clear_request_context()
