from sqlalchemy import Boolean, Column, DateTime, Integer, String

from talentpay.database import Base
from talentpay.models.payment import utcnow


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)  # Payer email
    title = Column(String(200), nullable=False)
    message = Column(String(1000), nullable=False)
    type = Column(String(32), nullable=False)  # success | error | info
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
