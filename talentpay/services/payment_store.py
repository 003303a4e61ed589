"""Durable record of payment transactions."""
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from talentpay.core.constants import TERMINAL_STATUSES, PaymentStatus
from talentpay.core.exceptions import StoreError
from talentpay.core.logging import app_logger
from talentpay.models.payment import Payment, utcnow

# Columns put() is allowed to replace on an existing row
MUTABLE_FIELDS = (
    "provider_transaction_id",
    "amount",
    "currency",
    "method",
    "payer_phone",
    "payer_email",
    "payer_name",
    "competition_id",
    "status",
    "status_message",
)

TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


class PaymentStore:
    """
    Payment persistence on top of an async SQLAlchemy session.

    Status writes are guarded so that a terminal status is never replaced by
    a different one unless the caller forces it (admin override).
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, transaction_id: str) -> Payment | None:
        """Read the current row, bypassing any stale copy in the identity map."""
        query = (
            select(Payment)
            .where(Payment.transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Could not read payment {transaction_id}: {e}") from e

    async def put(self, payment: Payment) -> None:
        """
        Insert the payment, or replace the mutable fields of an existing row.

        The existing row is locked for the duration of the write. A write that
        would move a terminal status to a different status is skipped.
        """
        payment.status = PaymentStatus.normalize(payment.status).value
        try:
            result = await self.session.execute(
                select(Payment)
                .where(Payment.transaction_id == payment.transaction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            existing = result.scalar_one_or_none()

            if existing is None:
                payment.created_at = payment.created_at or utcnow()
                payment.updated_at = utcnow()
                self.session.add(payment)
            elif existing is payment:
                payment.updated_at = utcnow()
            elif not _may_transition(existing.status, payment.status):
                app_logger.warning(
                    f"Skipped write for {payment.transaction_id}: "
                    f"{existing.status} is final, refusing {payment.status}"
                )
                # Release the row lock without touching the row
                await self.session.commit()
                return
            else:
                for field in MUTABLE_FIELDS:
                    setattr(existing, field, getattr(payment, field))
                existing.updated_at = utcnow()

            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError(
                f"Could not store payment {payment.transaction_id}: {e}"
            ) from e

    async def update(
        self,
        transaction_id: str,
        changes: dict[str, Any],
        expected_status: PaymentStatus | None = None,
        force: bool = False,
    ) -> bool:
        """
        Merge ``changes`` into the stored row as one conditional UPDATE.

        Args:
            transaction_id: Row to update
            changes: Column values to set; other columns are left untouched
            expected_status: Only apply if the row currently has this status
            force: Skip the terminal-status guard

        Returns:
            True if a row was changed, False if it is missing or a guard failed
        """
        values = dict(changes)
        values["updated_at"] = utcnow()

        stmt = update(Payment).where(Payment.transaction_id == transaction_id)
        if expected_status is not None:
            stmt = stmt.where(Payment.status == PaymentStatus.normalize(expected_status).value)
        if "status" in values:
            values["status"] = PaymentStatus.normalize(values["status"]).value
            if not force:
                stmt = stmt.where(
                    or_(
                        Payment.status.not_in(TERMINAL_VALUES),
                        Payment.status == values["status"],
                    )
                )

        try:
            result = await self.session.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError(f"Could not update payment {transaction_id}: {e}") from e

        return result.rowcount > 0

    async def query_by_phone(self, phone: str, limit: int = 1) -> list[Payment]:
        """Payments made from ``phone``, newest first."""
        query = (
            select(Payment)
            .where(Payment.payer_phone == phone)
            .order_by(Payment.created_at.desc())
            .limit(limit)
        )
        return await self._all(query)

    async def query_by_email(self, email: str) -> list[Payment]:
        """Payments made by ``email``, newest first."""
        query = (
            select(Payment)
            .where(Payment.payer_email == email)
            .order_by(Payment.created_at.desc())
        )
        return await self._all(query)

    async def list_recent(self, limit: int = 100) -> list[Payment]:
        query = select(Payment).order_by(Payment.created_at.desc()).limit(limit)
        return await self._all(query)

    async def _all(self, query) -> list[Payment]:
        try:
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Could not query payments: {e}") from e


def _may_transition(current: str, new: str) -> bool:
    current_status = PaymentStatus.normalize(current)
    return not current_status.is_terminal or current_status == PaymentStatus.normalize(new)
