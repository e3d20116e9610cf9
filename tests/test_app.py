"""End-to-end tests through the HTTP listener."""

import asyncio

import httpx
import pytest
import uvicorn
from conftest import make_settlement
from fastapi.testclient import TestClient

from payment_gateway import SERVICE_NAME, __version__
from payment_gateway.adapters.asgi import to_response
from payment_gateway.main import create_app
from payment_gateway.messages import GatewayResponse
from payment_gateway.payments.types import VerificationState


@pytest.fixture
def client(settings, ledger, upstream_client):
    app = create_app(settings, ledger=ledger, upstream_client=upstream_client)
    with TestClient(app) as test_client:
        yield test_client


def test_health_is_never_payment_gated(client, ledger):
    response = client.get("/health", headers={"X-Payment-Memo": "anything"})

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": __version__,
    }
    assert ledger.recent_calls == 0


def test_liveness(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readiness_reflects_ledger_health(client, ledger):
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "dependencies": {"ledger": "ok"}}

    ledger.healthy = False
    response = client.get("/readyz")
    assert response.status_code == 503
    assert response.json()["detail"]["status"] == "not_ready"


def test_unpaid_request_gets_402(client, settings, upstream):
    response = client.get("/api/data?x=1")

    assert response.status_code == 402
    assert response.headers["content-type"] == "application/json"
    assert response.headers["x-request-id"]
    body = response.json()
    assert body["error"] == "Payment Required"
    assert body["payment"]["recipient"] == settings.receiver_address
    assert upstream.requests == []


def test_challenge_then_paid_retry_reaches_upstream(client, ledger, upstream, receiver_address):
    challenge = client.post("/api/items", content=b'{"name":"x"}')
    memo = challenge.json()["payment"]["memo"]
    ledger.add(make_settlement("sig-1", receiver_address, memos=(memo,)))

    response = client.post(
        "/api/items?verbose=true",
        content=b'{"name":"x"}',
        headers={"X-Payment-Memo": memo, "X-Payment-Signature": "sig-1"},
    )

    assert response.status_code == 200
    assert response.headers["x-upstream"] == "yes"
    assert response.json() == {
        "method": "POST",
        "path": "/api/items",
        "query": "verbose=true",
        "body": '{"name":"x"}',
    }
    assert int(response.headers["content-length"]) == len(response.content)
    assert "x-payment-memo" not in upstream.last.headers


def test_paid_request_without_settlement_times_out(client, upstream):
    response = client.get("/api/data", headers={"X-Payment-Memo": "x402-spg-1-abc"})

    assert response.status_code == 402
    body = response.json()
    assert body["error"] == "Payment Verification Failed"
    assert body["failureReason"] == "timeout"
    assert upstream.requests == []


def test_upstream_unreachable_returns_500(client, ledger, upstream, receiver_address):
    ledger.add(make_settlement("sig-1", receiver_address))
    upstream.error = httpx.ConnectError("connection refused")

    response = client.delete("/api/items/1", headers={"X-Payment-Memo": "m"})

    assert response.status_code == 500
    assert response.json()["message"] == "Upstream service unavailable"


def test_shutdown_keeps_injected_clients(settings, ledger, upstream_client):
    app = create_app(settings, ledger=ledger, upstream_client=upstream_client)
    with TestClient(app) as test_client:
        test_client.get("/healthz")

    assert ledger.closed is False


async def wait_for(condition, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_client_disconnect_cancels_verification(
    mocker, make_settings, ledger, upstream, upstream_client
):
    settings = make_settings(payment_timeout_ms=5_000, payment_poll_interval_ms=50)
    app = create_app(settings, ledger=ledger, upstream_client=upstream_client)
    server = uvicorn.Server(
        uvicorn.Config(app, host="127.0.0.1", port=0, log_config=None, lifespan="on")
    )
    serve_task = asyncio.create_task(server.serve())
    try:
        await wait_for(lambda: server.started)
        port = server.servers[0].sockets[0].getsockname()[1]

        verifier = app.state.gateway.verifier
        verify = verifier.verify
        outcomes = []

        async def recording_verify(*args, **kwargs):
            outcome = await verify(*args, **kwargs)
            outcomes.append(outcome)
            return outcome

        mocker.patch.object(verifier, "verify", side_effect=recording_verify)

        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(
            b"GET /data HTTP/1.1\r\n"
            b"Host: gateway.test\r\n"
            b"X-Payment-Memo: x402-spg-1-unpaid\r\n"
            b"\r\n"
        )
        await writer.drain()
        await wait_for(lambda: ledger.recent_calls > 0)

        writer.close()
        await writer.wait_closed()
        await wait_for(lambda: outcomes)

        assert outcomes[0].state is VerificationState.CANCELLED
        polls = ledger.recent_calls
        await asyncio.sleep(0.3)
        assert ledger.recent_calls == polls
        assert upstream.requests == []
    finally:
        server.should_exit = True
        await serve_task


def test_repeated_response_headers_reach_the_client():
    result = GatewayResponse(
        status_code=200,
        headers=httpx.Headers(
            [
                ("set-cookie", "session=abc"),
                ("set-cookie", "theme=dark"),
                ("content-length", "999"),
            ]
        ),
        content=b"ok",
    )

    response = to_response(result)

    cookies = [value for key, value in response.raw_headers if key == b"set-cookie"]
    assert cookies == [b"session=abc", b"theme=dark"]
    assert response.headers["content-length"] == "2"
