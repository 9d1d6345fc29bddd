from typing import Any

from fastapi import APIRouter, Request

from orderflow.core.logging import get_logger
from orderflow.deps import CurrentUser, GatewaysDep, RedisDep, SessionDep
from orderflow.errors import NotFoundError
from orderflow.models import (
    OrderPublic,
    PaymentConfirmPublic,
    PaymentConfirmRequest,
    PaymentInitiatePublic,
    PaymentInitiateRequest,
)
from orderflow.services import ReconciliationService

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)


@router.get("/config")
def read_payment_config(registry: GatewaysDep) -> dict[str, dict]:
    """Public (non-secret) parameters the checkout page needs per gateway"""
    return registry.public_config()


@router.post("/{gateway}/initiate", response_model=PaymentInitiatePublic)
async def initiate_payment(
    gateway: str,
    body: PaymentInitiateRequest,
    session: SessionDep,
    user: CurrentUser,
    registry: GatewaysDep,
) -> Any:
    adapter = registry.get(gateway)
    intent = await ReconciliationService.initiate(
        session, adapter, body.order_id, user, amount=body.amount
    )
    return PaymentInitiatePublic(
        order_id=body.order_id,
        gateway=adapter.name,
        intent_id=intent.intent_id,
        client_data=intent.client_data,
    )


@router.post("/{gateway}/confirm", response_model=PaymentConfirmPublic)
async def confirm_payment(
    gateway: str,
    body: PaymentConfirmRequest,
    session: SessionDep,
    user: CurrentUser,
    registry: GatewaysDep,
) -> Any:
    adapter = registry.get(gateway)
    order = await ReconciliationService.confirm(
        session, adapter, body.order_id, user, body.proof
    )
    return PaymentConfirmPublic(
        success=True,
        message="Payment verified successfully",
        order=OrderPublic.model_validate(order),
    )


@router.post("/{gateway}/webhook")
async def payment_webhook(
    gateway: str,
    request: Request,
    session: SessionDep,
    redis: RedisDep,
    registry: GatewaysDep,
) -> dict[str, str]:
    """
    Gateway-initiated status callback

    Duplicates and unknown orders are acknowledged with 200 so the gateway
    stops redelivering; a GatewayError answers 502 so it tries again.
    """
    adapter = registry.get(gateway)
    if not adapter.supports_webhook:
        raise NotFoundError("Payment webhook", gateway)

    raw_body = await request.body()
    result = await ReconciliationService.handle_webhook(
        session, redis, adapter, raw_body, request.headers
    )
    return {"status": result}
