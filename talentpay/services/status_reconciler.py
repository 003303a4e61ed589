"""Resolves the current status of a payment from the store and ioTec."""
import asyncio
from typing import Any, Awaitable, Callable

from talentpay.config import Settings
from talentpay.core.constants import ADMIN_SETTABLE_STATUSES, PaymentStatus
from talentpay.core.exceptions import (
    AuthError,
    NotFoundError,
    ProviderError,
    StoreError,
    ValidationError,
)
from talentpay.core.logging import app_logger
from talentpay.models.payment import Payment, utcnow
from talentpay.services.iotec import IotecCollectionsClient, TokenProvider
from talentpay.services.notifications import NotificationSink, payment_outcome_notification
from talentpay.services.payment_store import MUTABLE_FIELDS, PaymentStore
from talentpay.services.side_effects import SideEffectQueue


class StatusReconciler:
    """
    The store is authoritative once a payment is terminal; until then ioTec is
    asked and its answer written back.
    """

    def __init__(
        self,
        store: PaymentStore,
        token_provider: TokenProvider,
        collections: IotecCollectionsClient,
        settings: Settings,
        side_effects: SideEffectQueue | None = None,
        notifications: NotificationSink | None = None,
    ):
        self.store = store
        self.token_provider = token_provider
        self.collections = collections
        self.settings = settings
        self.side_effects = side_effects
        self.notifications = notifications

    async def resolve_status(self, transaction_id: str) -> Payment:
        """
        Current state of a payment, consulting ioTec only while it is not terminal.

        Raises:
            NotFoundError: neither the store nor ioTec know the id
            ProviderError / AuthError: ioTec unavailable and nothing stored
        """
        try:
            record = await self.store.get(transaction_id)
        except StoreError as e:
            app_logger.error(f"Store check failed for {transaction_id}: {e}")
            record = None

        if record is not None and record.payment_status.is_terminal:
            return record

        lookup_id = transaction_id
        if record is not None and record.provider_transaction_id:
            lookup_id = record.provider_transaction_id

        try:
            access_token = await self.token_provider.get_access_token()
            data = await self.collections.get_collection_status(access_token, lookup_id)
        except (AuthError, ProviderError) as e:
            app_logger.error(f"ioTec status query failed for {transaction_id}: {e.message}")
            if record is not None:
                return record
            if isinstance(e, ProviderError) and e.provider_status == 404:
                raise NotFoundError(transaction_id) from e
            raise

        status = PaymentStatus.normalize(data.get("status"))
        changes: dict[str, Any] = {
            "status": status.value,
            "status_message": data.get("statusMessage") or "Status checked",
        }
        provider_id = data.get("id") or data.get("transactionId")
        if provider_id:
            changes["provider_transaction_id"] = provider_id

        if record is None:
            return await self._recover(transaction_id, data, changes)

        previous = record.payment_status
        snapshot = _copy(record, **changes)
        try:
            applied = await self.store.update(transaction_id, changes)
            refreshed = await self.store.get(transaction_id)
        except StoreError as e:
            app_logger.error(f"Could not update status for {transaction_id}: {e}")
            return snapshot

        if not applied:
            app_logger.info(
                f"Status write for {transaction_id} lost to a newer final status"
            )
        elif status != previous:
            app_logger.info(f"Payment {transaction_id}: {previous.value} -> {status.value}")
            self._notify(refreshed)
        return refreshed if refreshed is not None else snapshot

    async def resolve_status_store_only(self, transaction_id: str) -> Payment:
        """Store lookup only; used once webhook updates are trusted to have landed."""
        record = await self.store.get(transaction_id)
        if record is None:
            raise NotFoundError(transaction_id, "Transaction not found")
        return record

    async def force_status(
        self,
        transaction_id: str,
        status: str,
        message: str | None,
        actor: str,
    ) -> PaymentStatus:
        """
        Administrative override; ignores the terminal-status guard.

        Only the exact status names are accepted (any case). Provider aliases
        such as ``Successful`` or ``canceled`` are rejected.
        """
        allowed = [s.value for s in ADMIN_SETTABLE_STATUSES]
        requested = (status or "").strip().upper()
        if requested not in allowed:
            raise ValidationError(
                "status", f"Invalid status. Must be one of: {', '.join(allowed)}"
            )
        new_status = PaymentStatus(requested)

        now = utcnow()
        applied = await self.store.update(
            transaction_id,
            {
                "status": new_status.value,
                "status_message": message or f"Status updated to {new_status.value}",
                "manually_updated_by": actor,
                "manually_updated_at": now,
            },
            force=True,
        )
        if not applied:
            raise NotFoundError(transaction_id)

        app_logger.info(f"Admin {actor} set payment {transaction_id} to {new_status.value}")
        return new_status

    async def apply_provider_update(
        self, transaction_id: str, status: str | None, message: str | None
    ) -> Payment:
        """Record a status pushed by ioTec (webhook)."""
        record = await self.store.get(transaction_id)
        if record is None:
            raise NotFoundError(transaction_id)

        previous = record.payment_status
        new_status = PaymentStatus.normalize(status)
        if new_status == PaymentStatus.UNKNOWN:
            app_logger.warning(f"Unknown status received from ioTec for {transaction_id}: {status}")

        applied = await self.store.update(
            transaction_id,
            {
                "status": new_status.value,
                "status_message": message or f"Status updated by ioTec: {status}",
                "webhook_received_at": utcnow(),
            },
        )
        refreshed = await self.store.get(transaction_id)
        if applied and new_status != previous:
            self._notify(refreshed)
        elif not applied:
            app_logger.info(
                f"Ignored ioTec update {new_status.value} for {transaction_id}: "
                f"already {previous.value}"
            )
        return refreshed

    async def poll(
        self,
        transaction_id: str,
        interval_seconds: float | None = None,
        max_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> Payment | None:
        """
        Re-check a payment until it is terminal or the attempt ceiling is hit.

        Provider errors are transient here: the loop carries on to the next
        attempt. Returns the last record seen.
        """
        interval = self.settings.POLL_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        attempts = self.settings.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts

        record = None
        for attempt in range(1, attempts + 1):
            try:
                record = await self.resolve_status(transaction_id)
            except (AuthError, ProviderError) as e:
                app_logger.warning(
                    f"Poll {attempt}/{attempts} for {transaction_id} failed: {e.message}"
                )
            else:
                if record.payment_status.is_terminal:
                    return record
            if attempt < attempts:
                await sleep(interval)
        return record

    async def _recover(
        self, transaction_id: str, data: dict[str, Any], changes: dict[str, Any]
    ) -> Payment:
        # The initiator's best-effort write was lost; rebuild it from ioTec's view
        app_logger.warning(f"Rebuilding missing store record for {transaction_id}")
        amount = data.get("amount") or 0
        payment = Payment(
            transaction_id=transaction_id,
            amount=int(round(float(amount) * 100)),
            currency=data.get("currency") or self.settings.PAYMENT_CURRENCY,
            method=self.settings.PAYMENT_METHOD,
            payer_phone=data.get("payer") or "",
            payer_email="",
            payer_name=None,
            competition_id=self.settings.DEFAULT_COMPETITION_ID,
            email_verified=False,
            created_at=utcnow(),
            updated_at=utcnow(),
            **changes,
        )
        try:
            await self.store.put(payment)
        except StoreError as e:
            app_logger.error(f"Could not store recovered payment {transaction_id}: {e}")
        return payment

    def _notify(self, payment: Payment | None) -> None:
        if payment is None or self.side_effects is None or self.notifications is None:
            return
        record = payment_outcome_notification(payment)
        if record is None or not record.user_id:
            return
        sink = self.notifications
        self.side_effects.enqueue(
            f"notify:{payment.transaction_id}:{payment.status}",
            lambda: sink.send(record),
        )


def _copy(payment: Payment, **overrides: Any) -> Payment:
    """Detached copy of a payment with ``overrides`` applied."""
    fields = {name: getattr(payment, name) for name in MUTABLE_FIELDS}
    for name in (
        "transaction_id",
        "email_verified",
        "verified_at",
        "manually_updated_by",
        "manually_updated_at",
        "webhook_received_at",
        "created_at",
        "updated_at",
    ):
        fields[name] = getattr(payment, name)
    fields.update(overrides)
    fields["updated_at"] = utcnow()
    return Payment(**fields)
