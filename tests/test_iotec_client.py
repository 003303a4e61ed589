"""Tests for the ioTec token provider and collections client."""
import json

import httpx
import pytest
import respx

from talentpay.core.exceptions import AuthError, ProviderError
from talentpay.services.iotec import IotecCollectionsClient, TokenProvider

TOKEN_URL = "https://id.example.test/connect/token"
BASE_URL = "https://pay.example.test/api"


@pytest.fixture
def token_provider():
    return TokenProvider(
        client_id="client", client_secret="secret", token_url=TOKEN_URL, timeout_seconds=5
    )


@pytest.fixture
def collections():
    return IotecCollectionsClient(base_url=BASE_URL + "/", wallet_id="wallet-1", timeout_seconds=5)


@pytest.mark.asyncio
@respx.mock
async def test_get_access_token_posts_client_credentials(token_provider: TokenProvider):
    """Test that the client-credentials grant is form-encoded and the token returned."""
    route = respx.post(TOKEN_URL).mock(
        return_value=httpx.Response(200, json={"access_token": "abc-token"})
    )

    token = await token_provider.get_access_token()

    assert token == "abc-token"
    body = route.calls.last.request.content.decode()
    assert "grant_type=client_credentials" in body
    assert "client_id=client" in body
    assert "client_secret=secret" in body


@pytest.mark.asyncio
@respx.mock
async def test_get_access_token_not_cached(token_provider: TokenProvider):
    """Test that every call makes a fresh round trip."""
    route = respx.post(TOKEN_URL).mock(
        return_value=httpx.Response(200, json={"access_token": "abc-token"})
    )

    await token_provider.get_access_token()
    await token_provider.get_access_token()

    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_get_access_token_error_carries_status_and_body(token_provider: TokenProvider):
    """Test that a non-2xx answer becomes an AuthError with status and body."""
    respx.post(TOKEN_URL).mock(return_value=httpx.Response(401, text="invalid_client"))

    with pytest.raises(AuthError) as exc_info:
        await token_provider.get_access_token()

    assert exc_info.value.http_status == 401
    assert exc_info.value.body == "invalid_client"


@pytest.mark.asyncio
@respx.mock
async def test_get_access_token_network_error(token_provider: TokenProvider):
    """Test handling of connection failures."""
    respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("Connection failed"))

    with pytest.raises(AuthError) as exc_info:
        await token_provider.get_access_token()

    assert exc_info.value.http_status is None


@pytest.mark.asyncio
async def test_get_access_token_requires_credentials():
    """Test that missing credentials fail before any request."""
    provider = TokenProvider(client_id="", client_secret="", token_url=TOKEN_URL, timeout_seconds=5)

    with pytest.raises(AuthError):
        await provider.get_access_token()


@pytest.mark.asyncio
@respx.mock
async def test_collect_sends_payload(collections: IotecCollectionsClient):
    """Test the collection request payload and bearer header."""
    route = respx.post(f"{BASE_URL}/collections/collect").mock(
        return_value=httpx.Response(200, json={"id": "abc", "status": "Pending"})
    )

    data = await collections.collect(
        "tok",
        amount=10000.0,
        currency="UGX",
        external_id="TXN_1_x",
        payer="0700000000",
        payer_note="Entry fee",
        payee_note="Payment for firstRound entry. Email: a@b.com",
    )

    assert data == {"id": "abc", "status": "Pending"}
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer tok"
    payload = json.loads(request.content)
    assert payload == {
        "walletId": "wallet-1",
        "amount": 10000.0,
        "currency": "UGX",
        "externalId": "TXN_1_x",
        "payer": "0700000000",
        "payerNote": "Entry fee",
        "payeeNote": "Payment for firstRound entry. Email: a@b.com",
    }


@pytest.mark.asyncio
@respx.mock
async def test_collect_rejection_surfaces_provider_body(collections: IotecCollectionsClient):
    """Test that a rejected collection raises ProviderError with the raw body."""
    respx.post(f"{BASE_URL}/collections/collect").mock(
        return_value=httpx.Response(400, json={"message": "Insufficient balance"})
    )

    with pytest.raises(ProviderError) as exc_info:
        await collections.collect(
            "tok", amount=1, currency="UGX", external_id="x", payer="1",
            payer_note="", payee_note="",
        )

    assert exc_info.value.provider_status == 400
    assert exc_info.value.body == {"message": "Insufficient balance"}
    assert exc_info.value.message == "Insufficient balance"


@pytest.mark.asyncio
@respx.mock
async def test_collect_timeout(collections: IotecCollectionsClient):
    """Test that a timeout is reported as an unreachable provider."""
    respx.post(f"{BASE_URL}/collections/collect").mock(
        side_effect=httpx.TimeoutException("Request timed out")
    )

    with pytest.raises(ProviderError) as exc_info:
        await collections.collect(
            "tok", amount=1, currency="UGX", external_id="x", payer="1",
            payer_note="", payee_note="",
        )

    assert exc_info.value.provider_status is None


@pytest.mark.asyncio
@respx.mock
async def test_get_collection_status(collections: IotecCollectionsClient):
    """Test the status query URL and response."""
    respx.get(f"{BASE_URL}/collections/abc").mock(
        return_value=httpx.Response(200, json={"id": "abc", "status": "Success"})
    )

    data = await collections.get_collection_status("tok", "abc")

    assert data["status"] == "Success"
    request = respx.calls.last.request
    assert str(request.url) == "https://pay.example.test/api/collections/abc"
    assert request.headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
@respx.mock
async def test_get_collection_status_not_found(collections: IotecCollectionsClient):
    """Test that an unknown id surfaces provider_status 404."""
    respx.get(f"{BASE_URL}/collections/missing").mock(
        return_value=httpx.Response(404, text="Not Found")
    )

    with pytest.raises(ProviderError) as exc_info:
        await collections.get_collection_status("tok", "missing")

    assert exc_info.value.provider_status == 404
    assert exc_info.value.body == "Not Found"


@pytest.mark.asyncio
@respx.mock
async def test_get_collection_status_invalid_json(collections: IotecCollectionsClient):
    """Test handling of a 2xx answer that is not a JSON object."""
    respx.get(f"{BASE_URL}/collections/abc").mock(
        return_value=httpx.Response(200, text="<html>oops</html>")
    )

    with pytest.raises(ProviderError):
        await collections.get_collection_status("tok", "abc")


@pytest.mark.asyncio
@respx.mock
async def test_get_collection_status_retries_with_backoff():
    """Test that 404 and 5xx answers are retried with a doubling delay."""
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    client = IotecCollectionsClient(
        base_url=BASE_URL,
        wallet_id="wallet-1",
        timeout_seconds=5,
        status_attempts=3,
        retry_delay_seconds=1,
        sleep=fake_sleep,
    )
    route = respx.get(f"{BASE_URL}/collections/abc").mock(
        side_effect=[
            httpx.Response(404, text="Not Found"),
            httpx.Response(502, text="Bad Gateway"),
            httpx.Response(200, json={"id": "abc", "status": "Pending"}),
        ]
    )

    data = await client.get_collection_status("tok", "abc")

    assert data["status"] == "Pending"
    assert route.call_count == 3
    assert sleeps == [1, 2]


@pytest.mark.asyncio
@respx.mock
async def test_get_collection_status_gives_up_after_attempts():
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    client = IotecCollectionsClient(
        base_url=BASE_URL,
        wallet_id="wallet-1",
        timeout_seconds=5,
        status_attempts=3,
        retry_delay_seconds=20,
        max_retry_delay_seconds=30,
        sleep=fake_sleep,
    )
    route = respx.get(f"{BASE_URL}/collections/missing").mock(
        return_value=httpx.Response(404, text="Not Found")
    )

    with pytest.raises(ProviderError) as exc_info:
        await client.get_collection_status("tok", "missing")

    assert exc_info.value.provider_status == 404
    assert route.call_count == 3
    assert sleeps == [20, 30]


@pytest.mark.asyncio
@respx.mock
async def test_get_collection_status_does_not_retry_client_errors():
    client = IotecCollectionsClient(
        base_url=BASE_URL, wallet_id="wallet-1", timeout_seconds=5, status_attempts=3
    )
    route = respx.get(f"{BASE_URL}/collections/abc").mock(
        return_value=httpx.Response(401, json={"message": "Unauthorized"})
    )

    with pytest.raises(ProviderError):
        await client.get_collection_status("tok", "abc")

    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_check_balance_sends_payload(collections: IotecCollectionsClient):
    route = respx.post(f"{BASE_URL}/v2/customers/balance").mock(
        return_value=httpx.Response(200, json={"balance": 50000, "currency": "UGX"})
    )

    data = await collections.check_balance("tok", "0700000000", "UGX")

    assert data["balance"] == 50000
    assert json.loads(route.calls.last.request.content) == {
        "phone": "0700000000",
        "walletId": "wallet-1",
        "currency": "UGX",
    }
