import asyncio
import contextlib
import uuid
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from . import __version__
from .adapters.asgi import to_gateway_request, to_response, watch_disconnect
from .config import Settings, load_settings
from .errors import ConfigurationError
from .gateway import GatewayProtocol, open_gateway
from .health import register_health_endpoints
from .ledger.interfaces import LedgerClient
from .logging_config import (
    bind_request_id,
    clear_request_context,
    configure_logging,
    get_logger,
)

logger = get_logger("payment-gateway")

GATEWAY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIdMiddleware:
    """
    Generates and binds a request_id for every HTTP request.

    Plain ASGI middleware: the endpoint keeps the server's own ``receive``, so
    client disconnects stay observable while a payment is being verified.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        method = scope["method"]
        path = scope["path"]
        status_code = None

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                MutableHeaders(scope=message).append(REQUEST_ID_HEADER, request_id)
            await send(message)

        bind_request_id(request_id)
        logger.info("request_started", method=method, path=path)
        try:
            await self.app(scope, receive, send_with_request_id)
            logger.info(
                "request_completed",
                method=method,
                path=path,
                status_code=status_code,
            )
        except Exception as e:
            logger.error("request_failed", method=method, path=path, error=str(e))
            raise
        finally:
            clear_request_context()


def create_app(
    settings: Settings,
    ledger: LedgerClient | None = None,
    upstream_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Validated process configuration
        ledger: Ledger client override (defaults to Solana JSON-RPC)
        upstream_client: HTTP client override for the protected API
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage ledger and upstream client lifecycle (startup and shutdown)."""
        logger.info("startup_begin", service="payment-gateway")
        async with open_gateway(
            settings, ledger=ledger, upstream_client=upstream_client
        ) as gateway:
            app.state.gateway = gateway
            logger.info(
                "startup_complete",
                target_api=settings.target_api_url,
                fee_amount=str(settings.fee_amount),
                cluster=settings.solana_cluster,
                receiver=gateway.challenges.recipient,
                verification_mode=settings.verification_mode.value,
            )
            try:
                yield
            finally:
                logger.info("shutdown_begin", service="payment-gateway")
        logger.info("shutdown_complete", clients_closed=True)

    app = FastAPI(
        title="x402 Payment Gateway",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    if settings.otel_enabled:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        from .telemetry import init_telemetry

        init_telemetry(settings.otel_service_name, settings.otel_exporter_otlp_endpoint)
        FastAPIInstrumentor.instrument_app(app)
        logger.info(
            "telemetry_initialized",
            service_name=settings.otel_service_name,
            endpoint=settings.otel_exporter_otlp_endpoint,
        )

    app.add_middleware(RequestIdMiddleware)

    # Health routes go first so the catch-all below never shadows them.
    register_health_endpoints(app, lambda: app.state.gateway.verifier.ledger)

    @app.api_route("/{path:path}", methods=GATEWAY_METHODS)
    async def gateway_entry(request: Request) -> Response:
        gateway: GatewayProtocol = request.app.state.gateway
        gateway_request = await to_gateway_request(request)

        cancelled = asyncio.Event()
        watcher = asyncio.create_task(watch_disconnect(request, cancelled))
        try:
            result = await gateway.handle(gateway_request, cancelled=cancelled)
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

        return to_response(result)

    return app


def run() -> None:
    """Console entry point: validate configuration and serve."""
    configure_logging()
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error("configuration_invalid", error=str(e))
        raise SystemExit(1) from e

    configure_logging(settings.log_level)
    app = create_app(settings)
    logger.info("server_starting", host=settings.host, port=settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
