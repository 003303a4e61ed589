"""Starts mobile-money collections and records the first state of each payment."""
import math
import re
import secrets
import string
import time
from dataclasses import dataclass
from typing import Any

from talentpay.config import Settings
from talentpay.core.constants import (
    EMAIL_PATTERN,
    MAX_COMPETITION_ID_LENGTH,
    MAX_NAME_LENGTH,
    PHONE_MAX_DIGITS,
    PHONE_MIN_DIGITS,
    TRANSACTION_ID_PREFIX,
    PaymentStatus,
)
from talentpay.core.exceptions import ProviderError, StoreError, ValidationError
from talentpay.core.logging import app_logger
from talentpay.models.payment import Payment
from talentpay.services.idempotency import IdempotencyRegistry, request_key
from talentpay.services.iotec import IotecCollectionsClient, TokenProvider
from talentpay.services.payment_store import PaymentStore

BASE36_ALPHABET = string.digits + string.ascii_lowercase


def generate_transaction_id() -> str:
    """``TXN_<epoch millis>_<9 random base36 chars>``."""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(9))
    return f"{TRANSACTION_ID_PREFIX}{millis}_{suffix}"


@dataclass
class InitiationResult:
    transaction_id: str
    provider_response: dict[str, Any]
    status: PaymentStatus
    duplicate: bool = False


class PaymentInitiator:
    def __init__(
        self,
        store: PaymentStore,
        token_provider: TokenProvider,
        collections: IotecCollectionsClient,
        settings: Settings,
        idempotency: IdempotencyRegistry | None = None,
    ):
        self.store = store
        self.token_provider = token_provider
        self.collections = collections
        self.settings = settings
        self.idempotency = idempotency

    async def initiate(
        self,
        amount: Any,
        phone: str | None,
        email: str | None,
        name: str | None = None,
        competition_id: str | None = None,
        method: str | None = None,
    ) -> InitiationResult:
        """
        Validate the request, submit a collection to ioTec and record the payment.

        An identical request (same phone, email, amount and method) made while
        the earlier payment is still pending or has succeeded returns that
        payment instead of asking the payer's wallet a second time.

        Raises:
            ValidationError: bad input; nothing is sent or stored
            AuthError: no access token; nothing is stored
            ProviderError: ioTec rejected the collection; a FAILED record is stored
        """
        method = self.settings.PAYMENT_METHOD if method is None else method
        amount = self._validate(amount, phone, email, name, competition_id, method)
        phone = re.sub(r"\D", "", phone)
        email = email.strip().lower()
        competition_id = competition_id or self.settings.DEFAULT_COMPETITION_ID

        key = request_key(phone, email, amount, method)
        duplicate = await self._find_duplicate(key)
        if duplicate is not None:
            return duplicate

        access_token = await self.token_provider.get_access_token()
        transaction_id = generate_transaction_id()
        app_logger.info(
            f"Initiating {method} payment {transaction_id}: "
            f"{amount} {self.settings.PAYMENT_CURRENCY} from {phone}"
        )

        payment = Payment(
            transaction_id=transaction_id,
            amount=int(round(amount * 100)),
            currency=self.settings.PAYMENT_CURRENCY,
            method=method,
            payer_phone=phone,
            payer_email=email,
            payer_name=name or "Customer",
            competition_id=competition_id,
        )

        try:
            data = await self.collections.collect(
                access_token,
                amount=amount,
                currency=self.settings.PAYMENT_CURRENCY,
                external_id=transaction_id,
                payer=phone,
                payer_note=self.settings.PAYER_NOTE,
                payee_note=f"Payment for {competition_id} entry. Email: {email}",
            )
        except ProviderError as e:
            app_logger.error(
                f"ioTec rejected payment {transaction_id} "
                f"({e.provider_status}): {e.body}"
            )
            payment.status = PaymentStatus.FAILED.value
            payment.status_message = e.message
            await self._record(payment)
            e.transaction_id = transaction_id
            raise

        status = PaymentStatus.normalize(data.get("status"))
        if status == PaymentStatus.UNKNOWN:
            status = PaymentStatus.PENDING
        payment.provider_transaction_id = data.get("id") or data.get("transactionId")
        payment.status = status.value
        payment.status_message = data.get("statusMessage") or "Payment initiated"
        await self._record(payment)
        await self._remember(key, transaction_id)

        return InitiationResult(
            transaction_id=transaction_id,
            provider_response=data,
            status=status,
        )

    async def _find_duplicate(self, key: str) -> InitiationResult | None:
        if self.idempotency is None:
            return None
        try:
            transaction_id = await self.idempotency.find(key)
            payment = await self.store.get(transaction_id) if transaction_id else None
        except StoreError as e:
            app_logger.error(f"Duplicate check failed: {e}")
            return None

        # A failed or cancelled attempt may be retried with the same details
        if payment is None or payment.payment_status not in (
            PaymentStatus.PENDING,
            PaymentStatus.SUCCESS,
        ):
            return None

        app_logger.info(f"Duplicate payment request, returning {payment.transaction_id}")
        return InitiationResult(
            transaction_id=payment.transaction_id,
            provider_response={
                "id": payment.provider_transaction_id,
                "status": payment.status,
                "statusMessage": payment.status_message,
                "message": "Duplicate payment request. Returning the existing transaction.",
            },
            status=payment.payment_status,
            duplicate=True,
        )

    async def _remember(self, key: str, transaction_id: str) -> None:
        if self.idempotency is None:
            return
        try:
            await self.idempotency.remember(key, transaction_id)
        except StoreError as e:
            app_logger.error(f"Could not record request key for {transaction_id}: {e}")

    async def _record(self, payment: Payment) -> None:
        # Durability is best effort: the caller still gets the provider's answer
        try:
            await self.store.put(payment)
        except StoreError as e:
            app_logger.error(f"Error storing payment {payment.transaction_id}: {e}")

    def _validate(
        self,
        amount: Any,
        phone: str | None,
        email: str | None,
        name: str | None,
        competition_id: str | None,
        method: str,
    ) -> float:
        if method != self.settings.PAYMENT_METHOD:
            raise ValidationError(
                "method", f"Unsupported payment method. Expected {self.settings.PAYMENT_METHOD}."
            )

        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValidationError("amount", "Amount must be a number.")
        if not math.isfinite(amount) or amount <= 0:
            raise ValidationError("amount", "Amount must be a positive number.")
        if amount > self.settings.PAYMENT_MAX_AMOUNT:
            raise ValidationError(
                "amount",
                f"Amount exceeds the maximum of {self.settings.PAYMENT_MAX_AMOUNT:,.0f}.",
            )

        if not phone or not phone.strip():
            raise ValidationError("phone", "Phone number is required for Mobile Money payments.")
        digits = re.sub(r"\D", "", phone)
        if not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
            raise ValidationError("phone", "Invalid phone number format.")

        if not email or not re.match(EMAIL_PATTERN, email.strip()):
            raise ValidationError("email", "A valid email address is required.")

        if name and len(name) > MAX_NAME_LENGTH:
            raise ValidationError("name", f"Name must be at most {MAX_NAME_LENGTH} characters.")
        if competition_id and len(competition_id) > MAX_COMPETITION_ID_LENGTH:
            raise ValidationError(
                "competitionId",
                f"Competition ID must be at most {MAX_COMPETITION_ID_LENGTH} characters.",
            )

        return float(amount)
