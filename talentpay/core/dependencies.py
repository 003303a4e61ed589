from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from talentpay.config import Settings, settings
from talentpay.core.security import is_admin
from talentpay.database import get_db, get_session_factory
from talentpay.services.idempotency import IdempotencyRegistry
from talentpay.services.iotec import IotecCollectionsClient, TokenProvider
from talentpay.services.notifications import NotificationSink
from talentpay.services.payment_initiator import PaymentInitiator
from talentpay.services.payment_store import PaymentStore
from talentpay.services.side_effects import SideEffectQueue
from talentpay.services.status_reconciler import StatusReconciler
from talentpay.services.verification_codes import VerificationCodeService


def get_settings() -> Settings:
    return settings


async def get_current_admin(request: Request) -> dict[str, Any]:
    """
    Get the claims of the authenticated administrator.

    ClaimsInjectionMiddleware has already decoded the bearer token.

    Raises:
        HTTPException: 401 if no valid token, 403 if the token is not an admin's
    """
    claims = getattr(request.state, "claims", None)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not is_admin(claims):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return claims


def get_side_effects(request: Request) -> SideEffectQueue:
    queue = getattr(request.app.state, "side_effects", None)
    if queue is None:
        queue = SideEffectQueue.from_settings(settings)
        request.app.state.side_effects = queue
    return queue


def get_token_provider(config: Settings = Depends(get_settings)) -> TokenProvider:
    return TokenProvider.from_settings(config)


def get_collections_client(
    config: Settings = Depends(get_settings),
) -> IotecCollectionsClient:
    return IotecCollectionsClient.from_settings(config)


def get_payment_store(db: AsyncSession = Depends(get_db)) -> PaymentStore:
    return PaymentStore(db)


def get_payment_initiator(
    db: AsyncSession = Depends(get_db),
    store: PaymentStore = Depends(get_payment_store),
    token_provider: TokenProvider = Depends(get_token_provider),
    collections: IotecCollectionsClient = Depends(get_collections_client),
    config: Settings = Depends(get_settings),
) -> PaymentInitiator:
    return PaymentInitiator(
        store,
        token_provider,
        collections,
        config,
        idempotency=IdempotencyRegistry(db, config.IDEMPOTENCY_WINDOW_HOURS),
    )


def get_status_reconciler(
    store: PaymentStore = Depends(get_payment_store),
    token_provider: TokenProvider = Depends(get_token_provider),
    collections: IotecCollectionsClient = Depends(get_collections_client),
    config: Settings = Depends(get_settings),
    side_effects: SideEffectQueue = Depends(get_side_effects),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> StatusReconciler:
    return StatusReconciler(
        store,
        token_provider,
        collections,
        config,
        side_effects=side_effects,
        notifications=NotificationSink(session_factory),
    )


def get_verification_codes(
    db: AsyncSession = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> VerificationCodeService:
    return VerificationCodeService(db, config)
