"""Tests for PaymentInitiator."""
import json
import math
import re

import httpx
import pytest

from talentpay.config import settings
from talentpay.core.constants import TRANSACTION_ID_PATTERN, PaymentStatus
from talentpay.core.exceptions import AuthError, ProviderError, StoreError, ValidationError
from talentpay.services.idempotency import request_key
from talentpay.services.payment_initiator import PaymentInitiator, generate_transaction_id
from talentpay.services.payment_store import PaymentStore

from conftest import COLLECT_URL, TOKEN_URL


def test_generate_transaction_id_pattern():
    """Test the TXN_<millis>_<base36> format and that ids differ."""
    ids = {generate_transaction_id() for _ in range(50)}

    assert len(ids) == 50
    for transaction_id in ids:
        assert re.match(TRANSACTION_ID_PATTERN, transaction_id)


@pytest.mark.asyncio
async def test_initiate_scenario_pending_with_provider_id(
    initiator: PaymentInitiator, store: PaymentStore, iotec
):
    """Test a accepted collection is stored as PENDING with ioTec's id."""
    collect = iotec.post(COLLECT_URL).mock(
        return_value=httpx.Response(200, json={"status": "PENDING", "id": "abc"})
    )

    result = await initiator.initiate(
        amount=10000,
        phone="0700000000",
        email="a@b.com",
        name="Ann",
        competition_id="firstRound",
    )

    assert re.match(TRANSACTION_ID_PATTERN, result.transaction_id)
    assert result.provider_response == {"status": "PENDING", "id": "abc"}
    assert result.status == PaymentStatus.PENDING

    payload = json.loads(collect.calls.last.request.content)
    assert payload["externalId"] == result.transaction_id
    assert payload["amount"] == 10000
    assert payload["payer"] == "0700000000"
    assert payload["walletId"] == "wallet-123"
    assert "a@b.com" in payload["payeeNote"]

    payment = await store.get(result.transaction_id)
    assert payment.status == "PENDING"
    assert payment.provider_transaction_id == "abc"
    assert payment.amount_value == 10000.0
    assert payment.payer_email == "a@b.com"
    assert payment.competition_id == "firstRound"


@pytest.mark.asyncio
async def test_initiate_normalizes_provider_status(
    initiator: PaymentInitiator, store: PaymentStore, iotec
):
    """Test that ioTec's 'Pending' casing and a missing status both store PENDING."""
    iotec.post(COLLECT_URL).mock(
        return_value=httpx.Response(200, json={"transactionId": "io-1"})
    )

    result = await initiator.initiate(10000, "0700000000", "a@b.com")

    payment = await store.get(result.transaction_id)
    assert payment.status == "PENDING"
    assert payment.provider_transaction_id == "io-1"
    assert payment.competition_id == "firstRound"


@pytest.mark.parametrize("amount", [0, -5, None, math.nan, math.inf, "100", True])
@pytest.mark.asyncio
async def test_initiate_invalid_amount_makes_no_calls(
    initiator: PaymentInitiator, store: PaymentStore, iotec, amount
):
    """Test that bad amounts fail before any network call or store write."""
    collect = iotec.post(COLLECT_URL).mock(return_value=httpx.Response(200, json={}))

    with pytest.raises(ValidationError) as exc_info:
        await initiator.initiate(amount, "0700000000", "a@b.com")

    assert exc_info.value.field == "amount"
    assert iotec["token"].call_count == 0
    assert collect.call_count == 0
    assert await store.list_recent() == []


@pytest.mark.parametrize(
    "phone,email,field",
    [
        ("", "a@b.com", "phone"),
        ("   ", "a@b.com", "phone"),
        (None, "a@b.com", "phone"),
        ("0700000000", "not-an-email", "email"),
        ("0700000000", "", "email"),
    ],
)
@pytest.mark.asyncio
async def test_initiate_invalid_contact_details(
    initiator: PaymentInitiator, iotec, phone, email, field
):
    with pytest.raises(ValidationError) as exc_info:
        await initiator.initiate(10000, phone, email)

    assert exc_info.value.field == field
    assert iotec["token"].call_count == 0


@pytest.mark.asyncio
async def test_initiate_rejects_other_methods(initiator: PaymentInitiator, iotec):
    with pytest.raises(ValidationError) as exc_info:
        await initiator.initiate(10000, "0700000000", "a@b.com", method="Card")

    assert exc_info.value.field == "method"


@pytest.mark.asyncio
async def test_initiate_provider_rejection_stores_failed(
    initiator: PaymentInitiator, store: PaymentStore, iotec
):
    """Test that a rejected collection records FAILED and surfaces the raw body."""
    iotec.post(COLLECT_URL).mock(
        return_value=httpx.Response(400, json={"message": "Insufficient balance"})
    )

    with pytest.raises(ProviderError) as exc_info:
        await initiator.initiate(10000, "0700000000", "a@b.com")

    error = exc_info.value
    assert error.body == {"message": "Insufficient balance"}
    assert re.match(TRANSACTION_ID_PATTERN, error.transaction_id)

    payment = await store.get(error.transaction_id)
    assert payment.status == "FAILED"
    assert payment.status_message == "Insufficient balance"


@pytest.mark.asyncio
async def test_initiate_token_failure_stores_nothing(
    initiator: PaymentInitiator, store: PaymentStore, iotec
):
    iotec["token"].mock(return_value=httpx.Response(500, text="boom"))
    collect = iotec.post(COLLECT_URL).mock(return_value=httpx.Response(200, json={}))

    with pytest.raises(AuthError):
        await initiator.initiate(10000, "0700000000", "a@b.com")

    assert collect.call_count == 0
    assert await store.list_recent() == []


class BrokenStore(PaymentStore):
    def __init__(self):
        pass

    async def put(self, payment):
        raise StoreError("database offline")


@pytest.mark.asyncio
async def test_initiate_store_failure_is_not_fatal(token_provider, collections, iotec):
    """Test that the provider's answer is returned even if persistence fails."""
    iotec.post(COLLECT_URL).mock(
        return_value=httpx.Response(200, json={"status": "Pending", "id": "abc"})
    )
    initiator = PaymentInitiator(BrokenStore(), token_provider, collections, settings)

    result = await initiator.initiate(10000, "0700000000", "a@b.com")

    assert result.provider_response["id"] == "abc"
    assert result.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_token_url_is_requested(initiator: PaymentInitiator, iotec):
    iotec.post(COLLECT_URL).mock(return_value=httpx.Response(200, json={"id": "abc"}))

    await initiator.initiate(10000, "0700000000", "a@b.com")

    assert iotec["token"].call_count == 1
    assert str(iotec["token"].calls.last.request.url) == TOKEN_URL


@pytest.mark.parametrize(
    "kwargs,field",
    [
        ({"amount": 10_000_001}, "amount"),
        ({"phone": "070-000"}, "phone"),
        ({"phone": "+1 234 567 890 123 456"}, "phone"),
        ({"phone": "phone"}, "phone"),
        ({"name": "n" * 101}, "name"),
        ({"competition_id": "c" * 51}, "competitionId"),
    ],
)
@pytest.mark.asyncio
async def test_initiate_input_limits(initiator: PaymentInitiator, iotec, kwargs, field):
    request = {"amount": 10000, "phone": "0700000000", "email": "a@b.com", **kwargs}

    with pytest.raises(ValidationError) as exc_info:
        await initiator.initiate(**request)

    assert exc_info.value.field == field
    assert iotec["token"].call_count == 0


@pytest.mark.asyncio
async def test_initiate_accepts_limits_and_sends_phone_digits(
    initiator: PaymentInitiator, store: PaymentStore, iotec
):
    """Test the boundary values pass and the phone is sent as digits only."""
    collect = iotec.post(COLLECT_URL).mock(
        return_value=httpx.Response(200, json={"id": "abc", "status": "Pending"})
    )

    result = await initiator.initiate(
        amount=10_000_000,
        phone="+256 (700) 000-000",
        email="a@b.com",
        name="n" * 100,
        competition_id="c" * 50,
    )

    payload = json.loads(collect.calls.last.request.content)
    assert payload["payer"] == "256700000000"
    payment = await store.get(result.transaction_id)
    assert payment.payer_phone == "256700000000"


@pytest.mark.asyncio
async def test_initiate_duplicate_request_reuses_transaction(
    initiator: PaymentInitiator, iotec
):
    """Test that an identical pending request returns the first transaction."""
    collect = iotec.post(COLLECT_URL).mock(
        return_value=httpx.Response(200, json={"id": "abc", "status": "Pending"})
    )

    first = await initiator.initiate(10000, "0700000000", "a@b.com")
    second = await initiator.initiate(10000.0, "0700000000", "A@B.com")

    assert first.duplicate is False
    assert second.duplicate is True
    assert second.transaction_id == first.transaction_id
    assert second.status == PaymentStatus.PENDING
    assert collect.call_count == 1
    assert iotec["token"].call_count == 1


@pytest.mark.asyncio
async def test_initiate_different_amount_is_not_duplicate(initiator: PaymentInitiator, iotec):
    collect = iotec.post(COLLECT_URL).mock(
        return_value=httpx.Response(200, json={"id": "abc", "status": "Pending"})
    )

    first = await initiator.initiate(10000, "0700000000", "a@b.com")
    second = await initiator.initiate(20000, "0700000000", "a@b.com")

    assert second.duplicate is False
    assert second.transaction_id != first.transaction_id
    assert collect.call_count == 2


@pytest.mark.asyncio
async def test_initiate_expired_key_starts_new_collection(
    initiator: PaymentInitiator, idempotency, iotec
):
    """Test that a request key older than the window no longer matches."""
    collect = iotec.post(COLLECT_URL).mock(
        return_value=httpx.Response(200, json={"id": "abc", "status": "Pending"})
    )
    first = await initiator.initiate(10000, "0700000000", "a@b.com")
    idempotency.window_hours = 0
    await idempotency.remember(
        request_key("0700000000", "a@b.com", 10000, "MobileMoney"), first.transaction_id
    )

    second = await initiator.initiate(10000, "0700000000", "a@b.com")

    assert second.duplicate is False
    assert collect.call_count == 2


def test_request_key_ignores_amount_formatting():
    assert request_key("0700000000", "a@b.com", 10000, "MobileMoney") == request_key(
        "0700000000", "a@b.com", 10000.0, "MobileMoney"
    )
    assert request_key("0700000000", "a@b.com", 10000, "MobileMoney") != request_key(
        "0700000001", "a@b.com", 10000, "MobileMoney"
    )
