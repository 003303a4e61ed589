from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from talentpay.core.constants import PaymentStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentCreate(CamelModel):
    """Body of POST /pay. Field rules are enforced by PaymentInitiator."""

    amount: float | None = None
    method: str | None = None
    phone: str | None = None
    email: str | None = None
    name: str | None = None
    competition_id: str | None = None


class PaymentResponse(CamelModel):
    """Stored payment as returned to clients."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    transaction_id: str
    provider_transaction_id: str | None = None
    amount: float
    currency: str
    method: str
    payer_phone: str
    payer_email: str
    payer_name: str | None = None
    competition_id: str
    status: PaymentStatus
    status_message: str | None = None
    email_verified: bool = False
    verified_at: datetime | None = None
    manually_updated_by: str | None = None
    manually_updated_at: datetime | None = None
    webhook_received_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("status", mode="before")
    def normalize_status(cls, v):
        return PaymentStatus.normalize(v)

    @field_serializer("amount")
    def serialize_amount(self, amount: int) -> float:
        """Convert amount from cents (integer) to float."""
        return amount / 100.0


class TransactionLookup(CamelModel):
    transaction_id: str | None = None


class StatusOverride(CamelModel):
    transaction_id: str | None = None
    status: str | None = None
    status_message: str | None = None


class ProviderStatusUpdate(CamelModel):
    """ioTec webhook payload."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    transaction_id: str | None = None
    external_id: str | None = None
    status: str | None = None
    status_message: str | None = None


class EmailLookup(CamelModel):
    email: str | None = None


class BalanceCheck(CamelModel):
    phone: str | None = None


def dump_payment(payment: Any) -> dict[str, Any]:
    """Serialize a Payment row into its JSON representation."""
    return PaymentResponse.model_validate(payment).model_dump(mode="json", by_alias=True)
