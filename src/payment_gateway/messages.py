"""
Canonical request and response values shared by every invocation environment.

The HTTP listener and the one-shot adapter both translate to and from these
types; the gateway itself never sees a framework object.
"""

import json
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class GatewayRequest:
    """An inbound request, and the shape forwarded upstream once authorized."""

    method: str
    path: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    query: str = ""

    def without_headers(self, names: Iterable[str]) -> "GatewayRequest":
        headers = httpx.Headers(self.headers)
        for name in names:
            if name in headers:
                del headers[name]
        return replace(self, headers=headers)


@dataclass(frozen=True)
class ForwardedResponse:
    """Upstream response with hop-by-hop headers already removed."""

    status_code: int
    headers: httpx.Headers
    content: bytes

    @property
    def body(self) -> Any:
        """Decoded JSON document, or raw text when the body is not JSON."""
        try:
            return json.loads(self.content)
        except ValueError:
            return self.content.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class GatewayResponse:
    """
    Outbound response handed back to the invocation environment.

    Headers may repeat (``Set-Cookie``); adapters read them with multi_items().
    """

    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    content: bytes = b""

    @classmethod
    def from_json(cls, status_code: int, payload: dict[str, Any]) -> "GatewayResponse":
        return cls(
            status_code=status_code,
            headers=httpx.Headers({"content-type": JSON_CONTENT_TYPE}),
            content=json.dumps(payload, separators=(",", ":")).encode("utf-8"),
        )

    @classmethod
    def from_upstream(cls, upstream: ForwardedResponse) -> "GatewayResponse":
        return cls(
            status_code=upstream.status_code,
            headers=httpx.Headers(upstream.headers),
            content=upstream.content,
        )

    def json(self) -> Any:
        return json.loads(self.content)
