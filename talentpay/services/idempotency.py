"""Duplicate detection for payment requests."""
import hashlib
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from talentpay.core.exceptions import StoreError
from talentpay.models.idempotency_key import IdempotencyKey
from talentpay.models.payment import utcnow


def request_key(phone: str, email: str, amount: float, method: str) -> str:
    """sha256 over ``phone|email|amount|method``; amount is fixed to two decimals."""
    fingerprint = f"{phone}|{email}|{amount:.2f}|{method}"
    return hashlib.sha256(fingerprint.encode()).hexdigest()


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class IdempotencyRegistry:
    """
    Remembers which transaction a payment request started.

    A key lives for ``window_hours``; after that an identical request starts
    a new collection.
    """

    def __init__(self, session: AsyncSession, window_hours: int):
        self.session = session
        self.window_hours = window_hours

    async def find(self, key: str) -> str | None:
        """Transaction id recorded for ``key``, or None if absent or expired."""
        try:
            entry = await self.session.get(IdempotencyKey, key, populate_existing=True)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not read idempotency key: {e}") from e

        if entry is None or _aware(entry.expires_at) <= utcnow():
            return None
        return entry.transaction_id

    async def remember(self, key: str, transaction_id: str) -> None:
        """Point ``key`` at ``transaction_id`` and restart its window."""
        now = utcnow()
        try:
            entry = await self.session.get(IdempotencyKey, key)
            if entry is None:
                entry = IdempotencyKey(key=key)
                self.session.add(entry)
            entry.transaction_id = transaction_id
            entry.created_at = now
            entry.expires_at = now + timedelta(hours=self.window_hours)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError(f"Could not store idempotency key: {e}") from e
