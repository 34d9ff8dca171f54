import httpx
import pytest

from lib.alby import AlbyClient, AlbyError

from conftest import BOLT11, PAYMENT_HASH


@pytest.mark.asyncio
async def test_create_invoice_posts_json_with_bearer_token(alby_client, alby_api):
    created = await alby_client.create_invoice({"amount": 21, "description": "hi"})

    assert created["payment_hash"] == PAYMENT_HASH
    request = alby_api.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://api.getalby.com/invoices"
    assert request.headers["Authorization"] == "Bearer test-token"
    assert request.headers["Accept"] == "application/json"
    assert alby_api.created == [{"amount": 21, "description": "hi"}]


@pytest.mark.asyncio
async def test_decode_and_lookup_paths(alby_client, alby_api):
    await alby_client.create_invoice({"amount": 21})

    await alby_client.decode_invoice(f" {BOLT11} ")
    await alby_client.get_invoice(PAYMENT_HASH)

    paths = [request.url.path for request in alby_api.requests[1:]]
    assert paths == [f"/decode/bolt11/{BOLT11}", f"/invoices/{PAYMENT_HASH}"]


@pytest.mark.asyncio
async def test_error_body_raises_with_message(alby_client, alby_api):
    alby_api.error = (200, {"error": True, "message": "Invalid amount"})

    with pytest.raises(AlbyError, match="Invalid amount"):
        await alby_client.create_invoice({"amount": -1})


@pytest.mark.asyncio
async def test_http_error_status_raises(alby_client, alby_api):
    alby_api.error = (401, {"reason": "unauthorized"})

    with pytest.raises(AlbyError, match="401"):
        await alby_client.get_invoice(PAYMENT_HASH)


@pytest.mark.asyncio
async def test_non_json_response_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
    client = AlbyClient("token", transport=transport)

    with pytest.raises(AlbyError, match="non-json"):
        await client.get_invoice(PAYMENT_HASH)


@pytest.mark.asyncio
async def test_transport_failure_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = AlbyClient("token", base_url="https://alby.test/", transport=httpx.MockTransport(handler))

    with pytest.raises(AlbyError, match="alby request failed"):
        await client.decode_invoice(BOLT11)


@pytest.mark.asyncio
async def test_rejection_keeps_status_code(alby_client, alby_api):
    alby_api.error = (400, {"error": True, "message": "invalid bolt11 invoice"})

    with pytest.raises(AlbyError) as excinfo:
        await alby_client.decode_invoice("garbage")

    assert excinfo.value.status_code == 400
    assert excinfo.value.unavailable is False


@pytest.mark.asyncio
async def test_server_error_is_unavailable(alby_client, alby_api):
    alby_api.error = (502, {"error": True, "message": "bad gateway"})

    with pytest.raises(AlbyError) as excinfo:
        await alby_client.get_invoice(PAYMENT_HASH)

    assert excinfo.value.status_code == 502
    assert excinfo.value.unavailable is True


@pytest.mark.asyncio
async def test_transport_failure_has_no_status_code():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = AlbyClient("token", transport=httpx.MockTransport(handler))

    with pytest.raises(AlbyError) as excinfo:
        await client.get_invoice(PAYMENT_HASH)

    assert excinfo.value.status_code is None
    assert excinfo.value.unavailable is True


@pytest.mark.asyncio
async def test_path_segments_are_escaped(alby_client, alby_api):
    await alby_client.decode_invoice("lnbc1/../invoices?x=1")
    await alby_client.get_invoice("ab/cd")

    raw_paths = [request.url.raw_path for request in alby_api.requests]
    assert raw_paths == [
        b"/decode/bolt11/lnbc1%2F..%2Finvoices%3Fx%3D1",
        b"/invoices/ab%2Fcd",
    ]
