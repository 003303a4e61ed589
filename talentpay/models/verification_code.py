from sqlalchemy import Boolean, Column, DateTime, Integer, String

from talentpay.database import Base
from talentpay.models.payment import utcnow


class VerificationCode(Base):
    __tablename__ = "verification_codes"

    email = Column(String(255), primary_key=True)
    code_hash = Column(String(255), nullable=False)  # Argon2 hash, never the code itself
    transaction_id = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    used = Column(Boolean, nullable=False, default=False)
    locked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
