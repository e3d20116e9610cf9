"""
Translation between Starlette/FastAPI objects and the canonical gateway types.
"""

import asyncio

import httpx
from fastapi import Request
from fastapi.responses import Response

from ..messages import GatewayRequest, GatewayResponse

DISCONNECT_POLL_SECONDS = 0.5

# Framing headers the ASGI server recomputes for the relayed body
REFRAMED_HEADERS = frozenset({"content-length"})


async def to_gateway_request(request: Request) -> GatewayRequest:
    return GatewayRequest(
        method=request.method,
        path=request.url.path,
        query=request.url.query,
        headers=httpx.Headers(request.headers.raw),
        body=await request.body(),
    )


def to_response(result: GatewayResponse) -> Response:
    response = Response(content=result.content, status_code=result.status_code)
    for key, value in httpx.Headers(result.headers).multi_items():
        if key not in REFRAMED_HEADERS:
            response.headers.append(key, value)
    return response


async def watch_disconnect(
    request: Request,
    cancelled: asyncio.Event,
    interval: float = DISCONNECT_POLL_SECONDS,
) -> None:
    """Sets ``cancelled`` once the client connection is gone."""
    while not cancelled.is_set():
        if await request.is_disconnected():
            cancelled.set()
            return
        await asyncio.sleep(interval)
