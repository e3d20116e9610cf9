import base64

import httpx
import pytest
from conftest import make_settlement

from payment_gateway.adapters import lambda_handler
from payment_gateway.adapters.lambda_handler import (
    dispatch,
    event_to_request,
    response_to_result,
)
from payment_gateway.messages import GatewayResponse

REST_EVENT = {
    "httpMethod": "POST",
    "path": "/api/items",
    "headers": {"Content-Type": "application/json", "X-Payment-Memo": "tok"},
    "multiValueQueryStringParameters": {"tag": ["a", "b"], "page": ["2"]},
    "queryStringParameters": {"tag": "b", "page": "2"},
    "body": '{"name":"x"}',
    "isBase64Encoded": False,
}

HTTP_API_EVENT = {
    "version": "2.0",
    "rawPath": "/api/items",
    "rawQueryString": "tag=a&tag=b",
    "headers": {"content-type": "application/octet-stream"},
    "requestContext": {"http": {"method": "put", "path": "/api/items"}},
    "body": base64.b64encode(b"\x00\x01binary").decode(),
    "isBase64Encoded": True,
}


def test_rest_api_event_translation():
    request = event_to_request(REST_EVENT)

    assert request.method == "POST"
    assert request.path == "/api/items"
    assert request.query == "tag=a&tag=b&page=2"
    assert request.headers["x-payment-memo"] == "tok"
    assert request.body == b'{"name":"x"}'


def test_http_api_event_translation():
    request = event_to_request(HTTP_API_EVENT)

    assert request.method == "PUT"
    assert request.path == "/api/items"
    assert request.query == "tag=a&tag=b"
    assert request.body == b"\x00\x01binary"


def test_minimal_event_defaults():
    request = event_to_request({"pathParameters": {"proxy": "v1/status"}})

    assert request.method == "GET"
    assert request.path == "/v1/status"
    assert request.query == ""
    assert request.body == b""


def test_invalid_base64_body_is_rejected():
    with pytest.raises(ValueError, match="Invalid base64 body"):
        event_to_request(dict(HTTP_API_EVENT, body="abc"))


def test_binary_response_is_base64_encoded():
    response = GatewayResponse(
        status_code=200,
        headers={"content-type": "image/png", "content-length": "4"},
        content=b"\x89PNG",
    )

    result = response_to_result(response)

    assert result["isBase64Encoded"] is True
    assert base64.b64decode(result["body"]) == b"\x89PNG"
    assert "content-length" not in result["headers"]


def test_json_response_is_plain_text():
    result = response_to_result(GatewayResponse.from_json(402, {"error": "Payment Required"}))

    assert result == {
        "statusCode": 402,
        "headers": {"content-type": "application/json"},
        "body": '{"error":"Payment Required"}',
        "isBase64Encoded": False,
    }


@pytest.mark.asyncio
async def test_dispatch_health_bypasses_gateway(settings, ledger):
    result = await dispatch(
        {"httpMethod": "GET", "path": "/health", "headers": {"X-Payment-Memo": "x"}},
        settings,
        ledger=ledger,
    )

    assert result["statusCode"] == 200
    assert '"status":"ok"' in result["body"]
    assert ledger.recent_calls == 0


@pytest.mark.asyncio
async def test_dispatch_unpaid_request(settings, ledger, upstream_client):
    result = await dispatch(
        {"httpMethod": "GET", "path": "/api/data"},
        settings,
        ledger=ledger,
        upstream_client=upstream_client,
    )

    assert result["statusCode"] == 402
    assert '"error":"Payment Required"' in result["body"]


@pytest.mark.asyncio
async def test_dispatch_paid_request(settings, ledger, upstream, upstream_client, receiver_address):
    ledger.add(make_settlement("sig-1", receiver_address))

    result = await dispatch(REST_EVENT, settings, ledger=ledger, upstream_client=upstream_client)

    assert result["statusCode"] == 200
    assert result["isBase64Encoded"] is False
    assert str(upstream.last.url) == "http://upstream.test/api/items?tag=a&tag=b&page=2"
    assert "x-payment-memo" not in upstream.last.headers


@pytest.mark.asyncio
async def test_dispatch_bad_event_returns_400(settings, ledger):
    result = await dispatch(dict(HTTP_API_EVENT, body="abc"), settings, ledger=ledger)

    assert result["statusCode"] == 400
    assert "Invalid base64 body" in result["body"]


def test_handler_binds_request_context(mocker, settings):
    mocker.patch.object(lambda_handler, "_load_settings", return_value=settings)
    context = mocker.Mock(aws_request_id="req-123")

    result = lambda_handler.handler({"httpMethod": "GET", "path": "/health"}, context)

    assert result["statusCode"] == 200


@pytest.fixture
def fresh_consumed_settlements():
    lambda_handler._consumed_settlements.cache_clear()
    yield
    lambda_handler._consumed_settlements.cache_clear()


@pytest.mark.asyncio
async def test_strict_settlement_unlocks_one_invocation_per_process(
    fresh_consumed_settlements,
    make_settings,
    ledger,
    upstream,
    upstream_client,
    receiver_address,
):
    settings = make_settings(verification_mode="strict")
    ledger.add(make_settlement("sig-1", receiver_address, memos=("tok",)))

    first = await dispatch(REST_EVENT, settings, ledger=ledger, upstream_client=upstream_client)
    second = await dispatch(REST_EVENT, settings, ledger=ledger, upstream_client=upstream_client)

    assert first["statusCode"] == 200
    assert second["statusCode"] == 402
    assert '"failureReason":"timeout"' in second["body"]
    assert len(upstream.requests) == 1


def test_repeated_cookies_use_multi_value_headers():
    response = GatewayResponse(
        status_code=200,
        headers=httpx.Headers(
            [
                ("content-type", "text/plain"),
                ("set-cookie", "session=abc"),
                ("set-cookie", "theme=dark"),
            ]
        ),
        content=b"ok",
    )

    rest = response_to_result(response)
    http_api = response_to_result(response, payload_version="2.0")

    assert rest["headers"] == {"content-type": "text/plain"}
    assert rest["multiValueHeaders"] == {"set-cookie": ["session=abc", "theme=dark"]}
    assert http_api["cookies"] == ["session=abc", "theme=dark"]
    assert "multiValueHeaders" not in http_api
