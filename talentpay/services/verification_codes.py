"""Email verification codes issued after a payment."""
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from talentpay.config import Settings
from talentpay.core.exceptions import RateLimitError, StoreError, ValidationError
from talentpay.core.logging import app_logger
from talentpay.core.security import hash_secret, verify_secret
from talentpay.models.payment import utcnow
from talentpay.models.verification_code import VerificationCode
from talentpay.services.payment_store import PaymentStore


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class VerificationCodeService:
    def __init__(self, session: AsyncSession, settings: Settings):
        self.session = session
        self.settings = settings

    async def issue(self, email: str, transaction_id: str | None = None) -> str:
        """Create (or replace) the code for ``email`` and return it."""
        code = generate_code()
        now = utcnow()
        try:
            entry = await self.session.get(VerificationCode, email)
            if entry is None:
                entry = VerificationCode(email=email)
                self.session.add(entry)
            entry.code_hash = hash_secret(code)
            entry.transaction_id = transaction_id
            entry.attempts = 0
            entry.used = False
            entry.locked = False
            entry.used_at = None
            entry.created_at = now
            entry.expires_at = now + timedelta(minutes=self.settings.VERIFICATION_CODE_TTL_MINUTES)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError(f"Could not store verification code: {e}") from e

        app_logger.info(f"Verification code issued for {email}")
        return code

    async def verify(self, email: str, code: str, transaction_id: str | None = None) -> None:
        """
        Check ``code`` for ``email`` and mark it used.

        Raises:
            ValidationError: no code, wrong code, already used or expired
            RateLimitError: too many wrong attempts; a new code is needed
        """
        entry = await self.session.get(VerificationCode, email)
        if entry is None:
            raise ValidationError("email", "No verification code found for this email")
        if entry.locked:
            raise RateLimitError("Too many attempts. Please request a new code.")

        if not verify_secret(code.strip(), entry.code_hash):
            entry.attempts += 1
            if entry.attempts >= self.settings.VERIFICATION_MAX_ATTEMPTS:
                entry.locked = True
            await self._commit()
            if entry.locked:
                raise RateLimitError("Too many attempts. Please request a new code.")
            raise ValidationError("verificationCode", "Invalid verification code")

        if entry.used:
            raise ValidationError("verificationCode", "This code has already been used")
        if _aware(entry.expires_at) < utcnow():
            raise ValidationError("verificationCode", "This code has expired")

        entry.used = True
        entry.used_at = utcnow()
        await self._commit()

        transaction_id = transaction_id or entry.transaction_id
        if transaction_id:
            try:
                await PaymentStore(self.session).update(
                    transaction_id, {"email_verified": True, "verified_at": utcnow()}
                )
            except StoreError as e:
                app_logger.warning(f"Could not update payment record {transaction_id}: {e}")

        app_logger.info(f"Email verified for {email}")

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError(f"Could not update verification code: {e}") from e
