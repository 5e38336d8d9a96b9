import httpx
import pytest

from services.checkin.services.decode_client import (
    MESSAGE_NO_CODE,
    MESSAGE_NO_DATA,
    MESSAGE_NO_SYMBOL,
    QRDecodeClient,
    parse_decode_response,
)
from shared.errors import DecodeServiceUnavailableError
from shared.utils.circuit_breaker import CircuitBreaker, CircuitState

READ_URL = "https://qr.example.test/v1/read-qr-code/"


def _symbol(data=None, error=None):
    return [{"type": "qrcode", "symbol": [{"seq": 0, "data": data, "error": error}]}]


@pytest.mark.parametrize(
    "body, data, error",
    [
        (_symbol(data="T1"), "T1", None),
        (_symbol(error="could not find/read QR Code"), None, "Error leyendo el código QR: could not find/read QR Code"),
        (_symbol(), None, MESSAGE_NO_DATA),
        ([{"type": "qrcode", "symbol": []}], None, MESSAGE_NO_SYMBOL),
        ([], None, MESSAGE_NO_CODE),
        ({"unexpected": True}, None, MESSAGE_NO_CODE),
    ],
)
def test_parse_decode_response(body, data, error):
    result = parse_decode_response(body)
    assert result.data == data
    assert result.error == error


def test_only_first_symbol_is_used():
    body = [{"type": "qrcode", "symbol": [{"data": "first"}, {"data": "second"}]}, {"symbol": [{"data": "x"}]}]
    assert parse_decode_response(body).data == "first"


async def test_decode_image_posts_multipart():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["body"] = request.read()
        return httpx.Response(200, json=_symbol(data='{"ticketId":"T1","eventName":"Expo"}'))

    async with QRDecodeClient(read_url=READ_URL, transport=httpx.MockTransport(handler)) as client:
        result = await client.decode_image(b"\x89PNG fake", "frame.png")

    assert result.has_data
    assert result.data == '{"ticketId":"T1","eventName":"Expo"}'
    assert seen["method"] == "POST"
    assert seen["url"] == READ_URL
    assert b'name="outputformat"' in seen["body"]
    assert b'name="file"; filename="frame.png"' in seen["body"]


async def test_decode_url_uses_fileurl_param():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=_symbol(data="RAW-1"))

    async with QRDecodeClient(read_url=READ_URL, transport=httpx.MockTransport(handler)) as client:
        result = await client.decode_url("https://img.example.test/qr.png")

    assert result.data == "RAW-1"
    assert seen["params"] == {"fileurl": "https://img.example.test/qr.png", "outputformat": "json"}


async def test_http_error_is_decode_service_unavailable():
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))
    async with QRDecodeClient(read_url=READ_URL, transport=transport) as client:
        with pytest.raises(DecodeServiceUnavailableError):
            await client.decode_url("https://img.example.test/qr.png")


async def test_invalid_json_is_decode_service_unavailable():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
    async with QRDecodeClient(read_url=READ_URL, transport=transport) as client:
        with pytest.raises(DecodeServiceUnavailableError):
            await client.decode_image(b"img")


async def test_circuit_opens_after_repeated_failures():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    breaker = CircuitBreaker(
        name="test", failure_threshold=2, recovery_timeout=60,
        expected_exception=(httpx.HTTPError, ValueError),
    )
    async with QRDecodeClient(read_url=READ_URL, transport=httpx.MockTransport(handler), breaker=breaker) as client:
        for _ in range(2):
            with pytest.raises(DecodeServiceUnavailableError):
                await client.decode_image(b"img")
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(DecodeServiceUnavailableError) as exc:
            await client.decode_image(b"img")

    assert "circuito abierto" in exc.value.message
    assert calls["n"] == 2
