from talentpay.database import Base

# Import all models here so create_all picks them up
from talentpay.models.idempotency_key import IdempotencyKey
from talentpay.models.notification import Notification
from talentpay.models.payment import Payment
from talentpay.models.verification_code import VerificationCode

__all__ = ["Base", "IdempotencyKey", "Notification", "Payment", "VerificationCode"]
