"""Notification sink: user-facing records about payment outcomes."""
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from talentpay.core.constants import PaymentStatus
from talentpay.core.logging import app_logger
from talentpay.models.notification import Notification
from talentpay.models.payment import Payment


@dataclass(frozen=True)
class NotificationRecord:
    title: str
    message: str
    type: str
    user_id: str


class NotificationSink:
    """Writes notification records in their own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def send(self, record: NotificationRecord) -> None:
        async with self.session_factory() as session:
            session.add(
                Notification(
                    user_id=record.user_id,
                    title=record.title,
                    message=record.message,
                    type=record.type,
                )
            )
            await session.commit()
        app_logger.info(f"Notification '{record.title}' stored for {record.user_id}")


def payment_outcome_notification(payment: Payment) -> NotificationRecord | None:
    """Build the notification for a payment that reached SUCCESS or FAILED."""
    amount = f"{payment.amount_value:,.0f} {payment.currency}"
    status = payment.payment_status

    if status == PaymentStatus.SUCCESS:
        return NotificationRecord(
            title="Payment Successful",
            message=(
                f"Your payment of {amount} (transaction {payment.transaction_id}) "
                "was received. Your competition entry is confirmed."
            ),
            type="success",
            user_id=payment.payer_email,
        )
    if status == PaymentStatus.FAILED:
        reason = payment.status_message or "Transaction could not be completed."
        return NotificationRecord(
            title="Payment Failed",
            message=(
                f"Your payment of {amount} (transaction {payment.transaction_id}) "
                f"failed: {reason} Please check your mobile money balance and try again."
            ),
            type="error",
            user_id=payment.payer_email,
        )
    return None
