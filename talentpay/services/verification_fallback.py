"""Direct store lookup used when the status service cannot be reached."""
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from talentpay.core.exceptions import StoreError
from talentpay.core.logging import app_logger
from talentpay.schemas.payment import dump_payment
from talentpay.services.payment_store import PaymentStore

FALLBACK_SOURCE = "fallback"
FALLBACK_NOTE = "from client-side cache (may be stale)"


@dataclass
class FallbackResult:
    """A best-effort payment snapshot. Not authoritative."""

    payment: dict[str, Any]
    source: str = FALLBACK_SOURCE
    note: str = FALLBACK_NOTE
    authoritative: bool = field(default=False, init=False)

    @property
    def status(self) -> str:
        return self.payment.get("status") or "UNKNOWN"


class VerificationFallback:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def lookup_latest_by_phone(self, phone: str) -> FallbackResult | None:
        """Most recent payment made from ``phone``, or None."""
        if not phone:
            return None
        try:
            async with self.session_factory() as session:
                payments = await PaymentStore(session).query_by_phone(phone, limit=1)
                if not payments:
                    return None
                snapshot = dump_payment(payments[0])
        except StoreError as e:
            app_logger.error(f"Fallback lookup failed for {phone}: {e}")
            return None

        app_logger.info(
            f"Fallback lookup for {phone} found {snapshot['transactionId']} ({snapshot['status']})"
        )
        return FallbackResult(payment=snapshot)
