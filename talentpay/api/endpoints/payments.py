import re

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from talentpay.config import Settings
from talentpay.core.constants import EMAIL_PATTERN
from talentpay.core.dependencies import (
    get_collections_client,
    get_payment_initiator,
    get_payment_store,
    get_settings,
    get_status_reconciler,
    get_token_provider,
)
from talentpay.core.exceptions import AuthError, NotFoundError, ProviderError, ValidationError
from talentpay.core.logging import app_logger
from talentpay.core.security import verify_webhook
from talentpay.schemas.payment import (
    BalanceCheck,
    EmailLookup,
    PaymentCreate,
    PaymentResponse,
    ProviderStatusUpdate,
    TransactionLookup,
    dump_payment,
)
from talentpay.services.iotec import IotecCollectionsClient, TokenProvider
from talentpay.services.payment_initiator import PaymentInitiator
from talentpay.services.payment_store import PaymentStore
from talentpay.services.status_reconciler import StatusReconciler

router = APIRouter()


@router.post("/pay")
async def pay(
    payment_data: PaymentCreate,
    initiator: PaymentInitiator = Depends(get_payment_initiator),
):
    """
    Start a mobile-money collection for a competition entry fee.

    - **amount**: Amount to collect (positive)
    - **method**: Must be `MobileMoney`
    - **phone**: Payer's mobile-money number
    - **email**: Payer's email address
    - **competitionId**: Competition the entry is for (default `firstRound`)

    Returns ioTec's response plus our `transactionId`. ioTec's own `status`
    is passed through untouched; `paymentStatus` carries the normalized one.
    A repeat of a pending or successful request returns the existing
    transaction with `isDuplicate: true`.
    """
    result = await initiator.initiate(
        amount=payment_data.amount,
        phone=payment_data.phone,
        email=payment_data.email,
        name=payment_data.name,
        competition_id=payment_data.competition_id,
        method=payment_data.method,
    )
    return {
        **result.provider_response,
        "paymentStatus": result.status.value,
        "transactionId": result.transaction_id,
        "isDuplicate": result.duplicate,
    }


@router.get("/payment-status/{transaction_id}", response_model=PaymentResponse)
async def payment_status(
    transaction_id: str,
    reconciler: StatusReconciler = Depends(get_status_reconciler),
):
    """Current payment status: the store first, ioTec while still pending."""
    return await reconciler.resolve_status(transaction_id)


@router.post("/check-payment-status-firebase")
async def check_payment_status_store(
    lookup: TransactionLookup,
    reconciler: StatusReconciler = Depends(get_status_reconciler),
):
    """Store-only status lookup; never calls ioTec."""
    if not lookup.transaction_id:
        raise ValidationError("transactionId", "Transaction ID is required.")

    try:
        payment = await reconciler.resolve_status_store_only(lookup.transaction_id)
    except NotFoundError as e:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "success": False,
                "paymentStatus": "NOT_FOUND",
                "message": e.message,
                "transactionId": lookup.transaction_id,
            },
        )

    data = dump_payment(payment)
    return {"success": True, "paymentStatus": data["status"], **data, "source": "store"}


@router.post("/user-payments")
async def user_payments(
    lookup: EmailLookup,
    store: PaymentStore = Depends(get_payment_store),
):
    """Payment history for an email address, newest first."""
    if not lookup.email or not re.match(EMAIL_PATTERN, lookup.email.strip()):
        raise ValidationError("email", "Email is required.")

    email = lookup.email.strip().lower()
    payments = [dump_payment(p) for p in await store.query_by_email(email)]
    return {
        "success": True,
        "email": email,
        "paymentCount": len(payments),
        "payments": payments,
    }


@router.post("/check-balance")
async def check_balance(
    balance_check: BalanceCheck,
    token_provider: TokenProvider = Depends(get_token_provider),
    collections: IotecCollectionsClient = Depends(get_collections_client),
    config: Settings = Depends(get_settings),
):
    """
    Ask ioTec for the payer's mobile-money balance before paying.

    `accountStatus` is one of VERIFIED, NO_BALANCE_DATA, ERROR, AUTH_ERROR
    or CONNECTION_ERROR.
    """
    phone = (balance_check.phone or "").strip()
    if not phone:
        raise ValidationError("phone", "Phone number is required.")

    currency = config.PAYMENT_CURRENCY
    answer = {"availableBalance": None, "currency": currency, "phone": phone}

    try:
        access_token = await token_provider.get_access_token()
    except AuthError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                **answer,
                "accountStatus": "AUTH_ERROR",
                "message": "Failed to authenticate with ioTec payment provider",
                "error": e.message,
            },
        )

    try:
        data = await collections.check_balance(access_token, phone, currency)
    except ProviderError as e:
        app_logger.error(f"ioTec balance query failed ({e.provider_status}): {e.body}")
        if e.provider_status is None:
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    **answer,
                    "accountStatus": "CONNECTION_ERROR",
                    "message": "Unable to connect to mobile money provider",
                    "error": e.message,
                },
            )
        reason = e.body.get("message") if isinstance(e.body, dict) else None
        return JSONResponse(
            status_code=e.provider_status,
            content={
                "success": False,
                **answer,
                "accountStatus": "ERROR",
                "message": reason or "Failed to query balance from mobile money provider",
            },
        )

    balance = data.get("balance")
    if balance is None:
        balance = data.get("availableBalance")
    if balance is None:
        return {
            "success": True,
            **answer,
            "accountStatus": "NO_BALANCE_DATA",
            "message": "Could not retrieve balance from mobile money provider",
        }

    return {
        "success": True,
        **answer,
        "availableBalance": balance,
        "currency": data.get("currency") or currency,
        "accountStatus": "VERIFIED",
        "message": "Balance retrieved successfully from mobile money provider",
        "provider": data.get("provider") or "Mobile Money",
    }


@router.post("/webhook/iotec-payment-status")
async def iotec_webhook(
    request: Request,
    update: ProviderStatusUpdate,
    reconciler: StatusReconciler = Depends(get_status_reconciler),
    config: Settings = Depends(get_settings),
    x_iotec_signature: str | None = Header(default=None),
    x_webhook_secret: str | None = Header(default=None),
):
    """
    Status push from ioTec. Configure this URL in the ioTec dashboard.

    When IOTEC_WEBHOOK_SECRET is set, the delivery must carry either
    `X-Iotec-Signature` (hex HMAC-SHA256 of the raw body) or the secret
    itself in `X-Webhook-Secret`.
    """
    if config.IOTEC_WEBHOOK_SECRET:
        body = await request.body()
        if not verify_webhook(
            body,
            config.IOTEC_WEBHOOK_SECRET,
            signature=x_iotec_signature,
            shared_secret=x_webhook_secret,
        ):
            app_logger.warning("Rejected ioTec webhook with a bad or missing signature")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature",
            )

    transaction_id = update.transaction_id or update.external_id
    if not transaction_id:
        raise ValidationError("transactionId", "Transaction ID is required in webhook")

    app_logger.info(f"ioTec webhook for {transaction_id}: {update.status}")
    payment = await reconciler.apply_provider_update(
        transaction_id, update.status, update.status_message
    )
    return {
        "success": True,
        "message": "Webhook processed successfully",
        "transactionId": transaction_id,
        "status": payment.status,
    }
