"""
Upstream forwarding for requests that passed payment verification.
"""

import httpx
import structlog

from .errors import UpstreamForwardingError
from .messages import ForwardedResponse, GatewayRequest

logger = structlog.get_logger(__name__)

# Connection-management headers that must not reach the upstream
REQUEST_HEADERS_TO_SKIP = frozenset(
    {
        "host",
        "connection",
        "content-length",
        "transfer-encoding",
        "x-forwarded-for",
        "x-forwarded-proto",
        "x-forwarded-host",
    }
)

# The relaying transport re-frames and re-encodes the body itself
RESPONSE_HEADERS_TO_SKIP = frozenset({"content-encoding", "transfer-encoding"})


def filter_headers(
    headers: httpx.Headers, skip: frozenset[str]
) -> list[tuple[str, str]]:
    return [(key, value) for key, value in headers.multi_items() if key.lower() not in skip]


class UpstreamForwarder:
    """Forwards authorized requests to the protected API and relays the answer."""

    def __init__(self, target_api_url: str, client: httpx.AsyncClient):
        self.target_api_url = target_api_url.rstrip("/")
        self.client = client

    def target_url(self, request: GatewayRequest) -> str:
        url = f"{self.target_api_url}{request.path}"
        if request.query:
            url = f"{url}?{request.query}"
        return url

    async def forward(self, request: GatewayRequest) -> ForwardedResponse:
        """
        Proxy a request to the target API.

        Raises:
            UpstreamForwardingError: The upstream could not be reached or the
                transfer failed midway
        """
        url = self.target_url(request)
        headers = filter_headers(request.headers, REQUEST_HEADERS_TO_SKIP)

        try:
            response = await self.client.request(
                request.method,
                url,
                headers=headers,
                content=request.body or None,
            )
        except httpx.HTTPError as e:
            logger.error(
                "upstream_request_failed",
                method=request.method,
                url=url,
                error=str(e),
            )
            raise UpstreamForwardingError(f"Proxy request failed: {e}") from e

        logger.info(
            "upstream_request_completed",
            method=request.method,
            url=url,
            status_code=response.status_code,
        )

        return ForwardedResponse(
            status_code=response.status_code,
            headers=httpx.Headers(
                filter_headers(response.headers, RESPONSE_HEADERS_TO_SKIP)
            ),
            content=response.content,
        )
