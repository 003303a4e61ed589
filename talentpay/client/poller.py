"""Client-side payment status poller.

Mirrors what a browser tab does after ``POST /pay``: ask
``GET /payment-status/{id}`` on a fixed schedule until the payment settles or
the attempt ceiling is reached. Ticks run one after another on the event
loop, so two checks never overlap.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from talentpay.core.constants import PaymentStatus
from talentpay.core.logging import app_logger
from talentpay.services.verification_fallback import FallbackResult, VerificationFallback


class PollState(str, Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    UNKNOWN = "UNKNOWN"


RETRYABLE_STATES = {PollState.TIMED_OUT, PollState.UNKNOWN}


@dataclass
class PollOutcome:
    state: PollState
    attempts: int
    message: str
    payment: dict[str, Any] | None = None
    source: str = "server"

    @property
    def retry_available(self) -> bool:
        return self.state in RETRYABLE_STATES


class ClientPoller:
    def __init__(
        self,
        base_url: str,
        interval_seconds: float = 5.0,
        max_attempts: int = 24,
        timeout_seconds: float = 10.0,
        fallback: VerificationFallback | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            base_url: Root URL of the payments service
            interval_seconds: Delay before each status check
            max_attempts: Checks made before giving up
            timeout_seconds: Per-request timeout
            fallback: Direct store lookup used when the service is unreachable
            sleep: Awaitable used to wait between ticks
        """
        self.base_url = base_url.rstrip("/")
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.timeout_seconds = timeout_seconds
        self.fallback = fallback
        self.sleep = sleep

        self.state = PollState.IDLE
        self.transaction_id: str | None = None
        self.phone: str | None = None
        self.outcome: PollOutcome | None = None

    async def handle_initiation(
        self, response: dict[str, Any], phone: str | None = None
    ) -> PollOutcome:
        """Act on the body returned by ``POST /pay``."""
        self.transaction_id = response.get("transactionId")
        self.phone = phone
        status = _read_status(response)

        if status == PaymentStatus.PENDING and self.transaction_id:
            self._set(PollState.PROCESSING, 0, processing_message(), response)
            return await self.run()
        return self._settle(response, attempts=0, source="server")

    async def run(self) -> PollOutcome:
        """Poll until a terminal state, an unknown status, or the ceiling."""
        if not self.transaction_id:
            raise ValueError("No transaction to poll")

        self.state = PollState.PROCESSING
        last_payment = self.outcome.payment if self.outcome else None

        for attempt in range(1, self.max_attempts + 1):
            await self.sleep(self.interval_seconds)
            payment, source = await self._check()
            if payment is None:
                continue

            last_payment = payment
            status = _read_status(payment)
            if status == PaymentStatus.PENDING:
                self._set(PollState.PROCESSING, attempt, processing_message(), payment, source)
                continue
            return self._settle(payment, attempts=attempt, source=source)

        return self._set(
            PollState.TIMED_OUT,
            self.max_attempts,
            "Payment confirmation timed out. Check status again to retry.",
            last_payment,
        )

    async def check_again(self) -> PollOutcome:
        """
        One manual status check after a timeout or unknown status.

        The automatic loop is not resumed; a still-pending payment stays
        retryable.
        """
        if self.state not in RETRYABLE_STATES:
            raise RuntimeError(f"Manual check not available in state {self.state.value}")

        attempts = self.outcome.attempts + 1 if self.outcome else 1
        payment, source = await self._check()
        if payment is None:
            return self._set(
                self.state,
                attempts,
                "Could not reach the payment service. Check status again to retry.",
                self.outcome.payment if self.outcome else None,
            )

        if _read_status(payment) == PaymentStatus.PENDING:
            return self._set(
                PollState.TIMED_OUT,
                attempts,
                "Payment is still pending. Check status again to retry.",
                payment,
                source,
            )
        return self._settle(payment, attempts=attempts, source=source)

    async def _check(self) -> tuple[dict[str, Any] | None, str]:
        """One status request. Returns (payment, source) or (None, ...) on a transient error."""
        url = f"{self.base_url}/payment-status/{self.transaction_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url)
        except httpx.RequestError as e:
            app_logger.warning(f"Status check for {self.transaction_id} failed: {e}")
            return await self._fallback()

        if response.status_code == 503:
            app_logger.warning(f"Status service unavailable for {self.transaction_id}")
            return await self._fallback()
        if not response.is_success:
            app_logger.warning(
                f"Status check for {self.transaction_id} returned {response.status_code}"
            )
            return None, "server"

        try:
            return response.json(), "server"
        except ValueError:
            app_logger.warning(f"Status check for {self.transaction_id} returned invalid JSON")
            return None, "server"

    async def _fallback(self) -> tuple[dict[str, Any] | None, str]:
        if self.fallback is None or not self.phone:
            return None, "server"

        result: FallbackResult | None = await self.fallback.lookup_latest_by_phone(self.phone)
        if result is None:
            return None, "server"
        if result.payment.get("transactionId") != self.transaction_id:
            # Latest payment for this phone is a different one; it says nothing about ours
            app_logger.warning(
                f"Fallback record {result.payment.get('transactionId')} "
                f"is not {self.transaction_id}; ignoring it"
            )
            return None, "server"
        # A stale pending snapshot tells us nothing new; only settled records are adopted
        if not PaymentStatus.normalize(result.status).is_terminal:
            return None, result.source
        return result.payment, result.source

    def _settle(self, payment: dict[str, Any], attempts: int, source: str) -> PollOutcome:
        status = _read_status(payment)
        transaction_id = payment.get("transactionId") or self.transaction_id or ""

        if status == PaymentStatus.SUCCESS:
            message = f"Payment confirmed. Transaction ID: {transaction_id}"
            if source != "server":
                message += " (from client-side cache)"
            return self._set(PollState.CONFIRMED, attempts, message, payment, source)
        if status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            reason = payment.get("statusMessage") or "Transaction could not be completed."
            return self._set(PollState.FAILED, attempts, f"Payment failed: {reason}", payment, source)
        return self._set(
            PollState.UNKNOWN,
            attempts,
            "Payment status unknown. Check status again to retry.",
            payment,
            source,
        )

    def _set(
        self,
        state: PollState,
        attempts: int,
        message: str,
        payment: dict[str, Any] | None,
        source: str = "server",
    ) -> PollOutcome:
        self.state = state
        self.outcome = PollOutcome(
            state=state, attempts=attempts, message=message, payment=payment, source=source
        )
        return self.outcome


def processing_message() -> str:
    return "Payment initiated. Please check your phone to approve. Waiting for confirmation..."


def _read_status(payment: dict[str, Any]) -> PaymentStatus:
    # Anything outside the known statuses is UNKNOWN
    return PaymentStatus.normalize(payment.get("paymentStatus") or payment.get("status"))
