from typing import Any

from fastapi import APIRouter, Depends, Query

from talentpay.core.dependencies import (
    get_current_admin,
    get_payment_store,
    get_status_reconciler,
)
from talentpay.core.exceptions import ValidationError
from talentpay.schemas.payment import StatusOverride, dump_payment
from talentpay.services.payment_store import PaymentStore
from talentpay.services.status_reconciler import StatusReconciler

router = APIRouter()


@router.post("/update-payment-status")
async def update_payment_status(
    override: StatusOverride,
    admin: dict[str, Any] = Depends(get_current_admin),
    reconciler: StatusReconciler = Depends(get_status_reconciler),
):
    """
    Manually set a payment's status (support use).

    - **status**: One of SUCCESS, FAILED, PENDING, CANCELLED
    """
    if not override.transaction_id or not override.status:
        raise ValidationError("status", "Transaction ID and status are required.")

    actor = admin.get("email") or admin.get("sub") or "admin"
    new_status = await reconciler.force_status(
        override.transaction_id, override.status, override.status_message, actor
    )
    return {
        "success": True,
        "message": "Payment status updated successfully",
        "transactionId": override.transaction_id,
        "newStatus": new_status.value,
    }


@router.get("/payments")
async def list_payments(
    limit: int = Query(100, ge=1, le=500, description="Maximum payments returned"),
    admin: dict[str, Any] = Depends(get_current_admin),
    store: PaymentStore = Depends(get_payment_store),
):
    """Most recent payments, newest first."""
    payments = [dump_payment(p) for p in await store.list_recent(limit)]
    return {"success": True, "count": len(payments), "payments": payments}
