from sqlalchemy import Column, DateTime, String

from talentpay.database import Base
from talentpay.models.payment import utcnow


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    key = Column(String(64), primary_key=True)  # sha256 hex of the request fingerprint
    transaction_id = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
