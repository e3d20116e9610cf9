"""Health check endpoints for the payment gateway.

- /health: Service identity, always 200 and never payment-gated
- /healthz: Liveness check (process is alive)
- /readyz: Readiness check (settlement ledger reachable)
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import SERVICE_NAME, __version__
from .ledger.interfaces import LedgerClient
from .logging_config import get_logger

logger = get_logger("health")


class HealthStatus(str, Enum):
    """Health check status values."""

    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass
class HealthCheckResult:
    """Result of a health check operation."""

    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


class HealthResponse(BaseModel):
    """Response model for /health endpoint."""

    status: str = Field(..., description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Response model for /readyz endpoint."""

    status: str = Field(..., description="Readiness status")
    dependencies: dict[str, str] = Field(..., description="Dependency statuses")


def health_payload() -> dict[str, str]:
    return {"status": "ok", "service": SERVICE_NAME, "version": __version__}


async def check_ledger_health(ledger: LedgerClient, timeout: float) -> HealthCheckResult:
    """Check that the ledger RPC endpoint answers and reports itself healthy.

    Args:
        ledger: Ledger client used by the verifier
        timeout: Maximum time to wait for response in seconds

    Returns:
        HealthCheckResult: status, optional error message and latency
    """
    start_time = time.perf_counter()

    try:
        healthy = await asyncio.wait_for(ledger.check_health(), timeout=timeout)
    except TimeoutError:
        latency_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.warning(
            "ledger_health_check_timeout", timeout_seconds=timeout, latency_ms=latency_ms
        )
        return HealthCheckResult(
            status=HealthStatus.TIMEOUT,
            message=f"Timeout after {timeout}s",
            latency_ms=latency_ms,
        )
    except Exception as e:
        latency_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.error(
            "ledger_health_check_error",
            error=str(e),
            latency_ms=latency_ms,
            exc_info=True,
        )
        return HealthCheckResult(
            status=HealthStatus.ERROR,
            message="Ledger unreachable",
            latency_ms=latency_ms,
        )

    latency_ms = round((time.perf_counter() - start_time) * 1000, 2)
    if not healthy:
        logger.warning("ledger_not_healthy", latency_ms=latency_ms)
        return HealthCheckResult(
            status=HealthStatus.ERROR,
            message="Ledger reports unhealthy",
            latency_ms=latency_ms,
        )

    logger.debug("ledger_health_check_ok", latency_ms=latency_ms)
    return HealthCheckResult(status=HealthStatus.OK, latency_ms=latency_ms)


def register_health_endpoints(
    app: FastAPI,
    ledger_provider: Callable[[], LedgerClient],
    health_check_timeout: float = 2.0,
) -> None:
    """Register health check endpoints on FastAPI application.

    Must run before the catch-all gateway route is added, otherwise the gateway
    would claim these paths.

    Args:
        app: FastAPI application instance
        ledger_provider: Returns the ledger client of the running gateway
        health_check_timeout: Timeout for the readiness check in seconds
    """

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(**health_payload())

    @app.get("/healthz")
    async def liveness() -> dict[str, str]:
        """Liveness endpoint. Always {"status": "ok"} while the process runs."""
        return {"status": "ok"}

    @app.get("/readyz", response_model=ReadinessResponse)
    async def readiness() -> ReadinessResponse:
        """Readiness endpoint.

        Returns 503 while the ledger cannot be queried: no payment could be
        verified, so traffic should go elsewhere.
        """
        ledger_status = await check_ledger_health(ledger_provider(), health_check_timeout)

        if ledger_status.status != HealthStatus.OK:
            logger.info(
                "readiness_check_not_ready",
                ledger_status=ledger_status.status.value,
                ledger_message=ledger_status.message,
            )
            raise HTTPException(
                status_code=503,
                detail={
                    "status": "not_ready",
                    "dependencies": {"ledger": ledger_status.status.value},
                },
            )

        return ReadinessResponse(
            status="ready", dependencies={"ledger": HealthStatus.OK.value}
        )
