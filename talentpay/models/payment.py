from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, String

from talentpay.core.constants import PaymentStatus
from talentpay.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(Base):
    __tablename__ = "payments"

    transaction_id = Column(String(64), primary_key=True)
    provider_transaction_id = Column(String(128), nullable=True)
    amount = Column(BigInteger, nullable=False)  # Stored as cents
    currency = Column(String(3), nullable=False)
    method = Column(String(32), nullable=False)
    payer_phone = Column(String(32), nullable=False, index=True)
    payer_email = Column(String(255), nullable=False, index=True)
    payer_name = Column(String(255), nullable=True)
    competition_id = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    status_message = Column(String(500), nullable=True)

    email_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    manually_updated_by = Column(String(255), nullable=True)
    manually_updated_at = Column(DateTime(timezone=True), nullable=True)
    webhook_received_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus.normalize(self.status)

    @property
    def amount_value(self) -> float:
        return self.amount / 100.0

    def __repr__(self) -> str:
        return f"<Payment {self.transaction_id} {self.status}>"
