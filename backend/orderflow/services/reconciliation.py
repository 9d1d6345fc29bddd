"""
Payment reconciliation

Merges gateway outcomes, whichever way they arrive (client confirmation,
webhook or the background sweeper), into the order's payment fields.

Rules enforced by apply_outcome, under a row lock:
    - SUCCEEDED sets PAID once; paid_at is never rewritten
    - FAILED sets FAILED and cancels the order, unless it is already PAID
    - PENDING changes nothing
    - payment success never touches the fulfillment status

Gateway calls are made outside any row lock and outside the transaction.
"""

import hashlib
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Mapping

from sqlmodel import Session, select

from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.core.metrics import payment_outcomes_total, payment_webhooks_total
from orderflow.core.redis import RedisClient
from orderflow.errors import (
    AuthorizationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    PaymentPendingError,
    PaymentRejectedError,
    ValidationError,
)
from orderflow.events.order_events import ORDER_PAYMENT_UPDATED, OrderPaymentUpdatedData
from orderflow.gateways.base import (
    GatewayIntentRef,
    OrderRef,
    OutcomeState,
    PaymentGateway,
    PaymentOutcome,
)
from orderflow.models import (
    AuthenticatedUser,
    Order,
    OrderStatus,
    OrderTrackingEvent,
    PaymentIntent,
    PaymentMethod,
    PaymentStatus,
    get_datetime_utc,
    quantize_money,
)
from orderflow.services.fulfillment import TERMINAL_STATUSES, lock_order
from orderflow.services.outbox_service import OutboxService

logger = get_logger(__name__)


def _owned_order(session: Session, order_id: uuid.UUID, user: AuthenticatedUser) -> Order:
    order = session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order", str(order_id))
    if order.user_id != user.user_id:
        raise AuthorizationError()
    return order


def _check_payable(order: Order) -> None:
    if order.payment_method == PaymentMethod.COD.value:
        raise ConflictError("Order is paid on delivery")
    if order.payment_status == PaymentStatus.PAID.value:
        raise ConflictError("Order is already paid")
    if (
        order.payment_status == PaymentStatus.FAILED.value
        or order.status == OrderStatus.CANCELLED.value
    ):
        raise ConflictError("Order is cancelled; place a new order to pay again")


def _issued_intents(session: Session, order_id: uuid.UUID) -> list[tuple[str, str]]:
    """(gateway, intent id) pairs the order has issued, newest first"""
    rows = session.exec(
        select(PaymentIntent.gateway, PaymentIntent.intent_id)
        .where(PaymentIntent.order_id == order_id)
        .order_by(PaymentIntent.created_at.desc())  # type: ignore[attr-defined]
    ).all()
    return [(gateway_name, intent_id) for gateway_name, intent_id in rows]


def _intent_for_proof(
    session: Session, order: Order, gateway: PaymentGateway, proof: Mapping[str, Any]
) -> str:
    """
    Pick the intent a confirmation is checked against.

    The proof may name an earlier checkout of the same order; that intent is
    used as long as this order issued it on this gateway. Anything else is
    checked against the order's latest intent, so a foreign intent id still
    fails verification.
    """
    issued = [
        intent_id
        for gateway_name, intent_id in _issued_intents(session, order.id)
        if gateway_name == gateway.name
    ]
    if not issued:
        raise ValidationError(f"No {gateway.name} payment was initiated for this order")

    claimed = gateway.claimed_intent(proof)
    if claimed in issued:
        return claimed  # type: ignore[return-value]
    if order.payment_gateway == gateway.name and order.payment_intent_id:
        return order.payment_intent_id
    return issued[0]


class ReconciliationService:
    @staticmethod
    async def initiate(
        session: Session,
        gateway: PaymentGateway,
        order_id: uuid.UUID,
        user: AuthenticatedUser,
        amount: Decimal | None = None,
    ) -> GatewayIntentRef:
        """
        Open a payment attempt for an order owned by `user`.

        The stored total is what gets charged; a client-supplied amount is
        only checked against it.

        Raises:
            NotFoundError / AuthorizationError
            ConflictError: COD order, already paid, or cancelled
            ValidationError: amount differs from the order total
            GatewayError
        """
        order = _owned_order(session, order_id, user)
        _check_payable(order)
        if amount is not None and quantize_money(amount) != order.total_amount:
            raise ValidationError(
                f"Amount {quantize_money(amount)} does not match order total {order.total_amount}"
            )

        order_ref = OrderRef(
            order_id=str(order.id),
            order_number=order.order_number,
            user_id=order.user_id,
            currency=order.currency,
        )
        total = order.total_amount
        session.rollback()

        intent = await gateway.create_intent(order_ref, total)

        order = lock_order(session, order_id)
        _check_payable(order)
        previous_intent = order.payment_intent_id
        order.payment_intent_id = intent.intent_id
        order.payment_gateway = gateway.name
        order.payment_initiated_at = get_datetime_utc()
        order.updated_at = get_datetime_utc()
        session.add(order)
        session.add(
            PaymentIntent(order_id=order.id, gateway=gateway.name, intent_id=intent.intent_id)
        )
        session.commit()

        logger.info(
            "payment_initiated",
            order_id=str(order_id),
            gateway=gateway.name,
            intent_id=intent.intent_id,
            replaced_intent_id=previous_intent,
            amount=str(total),
        )
        return intent

    @staticmethod
    async def confirm(
        session: Session,
        gateway: PaymentGateway,
        order_id: uuid.UUID,
        user: AuthenticatedUser,
        proof: Mapping[str, Any],
    ) -> Order:
        """
        Verify the caller's proof with the gateway and apply the result.

        Raises:
            NotFoundError / AuthorizationError
            ValidationError: no intent on this gateway, or missing/malformed proof
            PaymentPendingError: gateway has not settled yet (nothing changed)
            PaymentRejectedError: decline or verification mismatch (order cancelled)
            GatewayError: gateway unreachable (nothing changed)
        """
        order = _owned_order(session, order_id, user)
        if order.payment_status == PaymentStatus.PAID.value:
            logger.info("payment_confirm_already_paid", order_id=str(order_id))
            return order
        intent_id = _intent_for_proof(session, order, gateway, proof)
        session.rollback()

        outcome = await gateway.verify(intent_id, proof)
        order = ReconciliationService.apply_outcome(
            session, order_id, gateway, intent_id, outcome, source="confirm"
        )

        if order.payment_status == PaymentStatus.PAID.value:
            return order
        if outcome.state is OutcomeState.FAILED:
            raise PaymentRejectedError(gateway.name, outcome.reason or "declined", str(order_id))
        raise PaymentPendingError(gateway.name, outcome.gateway_state)

    @staticmethod
    def apply_outcome(
        session: Session,
        order_id: uuid.UUID,
        gateway: PaymentGateway,
        intent_id: str,
        outcome: PaymentOutcome,
        source: str,
    ) -> Order:
        """Idempotently merge one gateway outcome into the order and commit"""
        order = lock_order(session, order_id)
        previous_payment_status = order.payment_status
        now = get_datetime_utc()
        changed = False

        if outcome.state is OutcomeState.SUCCEEDED:
            if previous_payment_status != PaymentStatus.PAID.value:
                if previous_payment_status == PaymentStatus.FAILED.value:
                    # Money moved after the attempt was declared failed
                    logger.error(
                        "payment_succeeded_after_failure",
                        order_id=str(order_id),
                        gateway=gateway.name,
                        payment_id=outcome.payment_id,
                    )
                order.payment_status = PaymentStatus.PAID.value
                order.payment_method = gateway.method.value
                order.payment_type = outcome.payment_type
                order.payment_id = outcome.payment_id
                order.failure_reason = None
                if order.paid_at is None:
                    order.paid_at = now
                changed = True

        elif outcome.state is OutcomeState.FAILED:
            if previous_payment_status == PaymentStatus.PAID.value:
                logger.warning(
                    "payment_failure_ignored_for_paid_order",
                    order_id=str(order_id),
                    gateway=gateway.name,
                    reason=outcome.reason,
                )
            elif order.payment_intent_id != intent_id:
                logger.info(
                    "payment_failure_for_superseded_intent",
                    order_id=str(order_id),
                    intent_id=intent_id,
                    current_intent_id=order.payment_intent_id,
                )
            elif previous_payment_status != PaymentStatus.FAILED.value:
                order.payment_status = PaymentStatus.FAILED.value
                order.payment_method = gateway.method.value
                order.failure_reason = outcome.reason or "Payment failed"
                if OrderStatus(order.status) not in TERMINAL_STATUSES:
                    order.status = OrderStatus.CANCELLED.value
                session.add(
                    OrderTrackingEvent(
                        order_id=order.id,
                        status="Payment Failed",
                        description=order.failure_reason,
                    )
                )
                changed = True

        payment_outcomes_total.labels(
            gateway=gateway.name, outcome=outcome.state.value, source=source
        ).inc()

        if not changed:
            session.rollback()
            logger.info(
                "payment_outcome_no_change",
                order_id=str(order_id),
                gateway=gateway.name,
                outcome=outcome.state.value,
                gateway_state=outcome.gateway_state,
                payment_status=previous_payment_status,
                source=source,
            )
            return session.get(Order, order_id)  # type: ignore[return-value]

        order.updated_at = now
        session.add(order)
        OutboxService.create_event(
            session=session,
            event_type=ORDER_PAYMENT_UPDATED,
            topic=settings.KAFKA_TOPIC_ORDER_PAYMENT_UPDATED,
            event_data=OrderPaymentUpdatedData.from_order(
                order,
                previous_payment_status=previous_payment_status,
                gateway=gateway.name,
                source=source,
            ),
            partition_key=str(order.id),
        )
        session.commit()
        session.refresh(order)

        logger.info(
            "payment_outcome_applied",
            order_id=str(order_id),
            gateway=gateway.name,
            outcome=outcome.state.value,
            payment_status=order.payment_status,
            status=order.status,
            payment_id=order.payment_id,
            source=source,
        )
        return order

    @staticmethod
    async def handle_webhook(
        session: Session,
        redis: RedisClient,
        gateway: PaymentGateway,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> str:
        """
        Process one webhook delivery.

        The body only tells us which intent to look at; the outcome comes from
        a fresh status query. A Redis processed-key drops concurrent and
        repeated deliveries; it is released again whenever nothing was
        applied, so the gateway's redelivery gets another chance.

        Returns:
            "processed", "duplicate" or "unknown_order"

        Raises:
            AuthorizationError / ValidationError: rejected delivery
            GatewayError: status query failed; the gateway should redeliver
        """
        try:
            intent_id = await gateway.parse_webhook(raw_body, headers)
        except (AuthorizationError, ValidationError):
            payment_webhooks_total.labels(gateway=gateway.name, result="rejected").inc()
            raise

        processed_key: str | None = (
            f"processed_webhook:{hashlib.sha256(raw_body).hexdigest()}"
        )
        try:
            first_delivery = await redis.set_if_absent(
                processed_key, intent_id, ttl=settings.PROCESSED_WEBHOOK_TTL
            )
        except Exception as e:
            logger.warning(
                "webhook_dedup_unavailable",
                gateway=gateway.name,
                error_type=type(e).__name__,
            )
            first_delivery = True
            processed_key = None

        if not first_delivery:
            payment_webhooks_total.labels(gateway=gateway.name, result="duplicate").inc()
            logger.info("webhook_duplicate_skipped", gateway=gateway.name, intent_id=intent_id)
            return "duplicate"

        try:
            order_id = session.exec(
                select(PaymentIntent.order_id).where(
                    PaymentIntent.gateway == gateway.name,
                    PaymentIntent.intent_id == intent_id,
                )
            ).first()
            session.rollback()

            if order_id is None:
                # Possibly ahead of the initiate commit; the redelivery may find it
                await _release_webhook_key(redis, processed_key)
                payment_webhooks_total.labels(gateway=gateway.name, result="unknown_order").inc()
                logger.warning("webhook_unknown_intent", gateway=gateway.name, intent_id=intent_id)
                return "unknown_order"

            outcome = await gateway.query_status(intent_id)
            ReconciliationService.apply_outcome(
                session, order_id, gateway, intent_id, outcome, source="webhook"
            )
        except Exception:
            await _release_webhook_key(redis, processed_key)
            raise

        payment_webhooks_total.labels(gateway=gateway.name, result="processed").inc()
        return "processed"

    @staticmethod
    async def sweep_pending(session: Session, gateways: Mapping[str, PaymentGateway]) -> int:
        """
        Query the gateway for stale PENDING orders whose client never came back.

        Every intent the order issued is asked about, since the shopper may
        have paid an earlier checkout. A success on any of them wins over a
        failure of the latest one.

        Returns:
            Number of orders whose payment status changed
        """
        cutoff = get_datetime_utc() - timedelta(seconds=settings.PAYMENT_SWEEP_MIN_AGE_SECONDS)
        candidates = session.exec(
            select(Order.id)
            .where(
                Order.payment_status == PaymentStatus.PENDING.value,
                Order.payment_intent_id.is_not(None),  # type: ignore[union-attr]
                Order.payment_initiated_at < cutoff,  # type: ignore[operator]
            )
            .order_by(Order.payment_initiated_at)  # type: ignore[arg-type]
            .limit(settings.PAYMENT_SWEEP_BATCH_SIZE)
        ).all()
        intents_by_order = {order_id: _issued_intents(session, order_id) for order_id in candidates}
        session.rollback()

        changed = 0
        for order_id, intents in intents_by_order.items():
            settled = await _query_intents(order_id, intents, gateways)
            succeeded = [item for item in settled if item[2].state is OutcomeState.SUCCEEDED]
            failed = [item for item in settled if item[2].state is OutcomeState.FAILED]

            for gateway, intent_id, outcome in succeeded or failed:
                order = ReconciliationService.apply_outcome(
                    session, order_id, gateway, intent_id, outcome, source="sweeper"
                )
                if order.payment_status != PaymentStatus.PENDING.value:
                    changed += 1
                    break

        logger.info("payment_sweep_completed", candidates=len(candidates), changed=changed)
        return changed


async def _release_webhook_key(redis: RedisClient, processed_key: str | None) -> None:
    if not processed_key:
        return
    try:
        await redis.delete(processed_key)
    except Exception as e:
        logger.warning("webhook_dedup_release_failed", error_type=type(e).__name__)


async def _query_intents(
    order_id: uuid.UUID,
    intents: list[tuple[str, str]],
    gateways: Mapping[str, PaymentGateway],
) -> list[tuple[PaymentGateway, str, PaymentOutcome]]:
    """Status of each intent; pending answers and unreachable gateways are skipped"""
    settled = []
    for gateway_name, intent_id in intents:
        gateway = gateways.get(gateway_name)
        if gateway is None:
            logger.warning(
                "payment_sweep_unknown_gateway", order_id=str(order_id), gateway=gateway_name
            )
            continue
        try:
            outcome = await gateway.query_status(intent_id)
        except GatewayError as e:
            logger.warning(
                "payment_sweep_query_failed",
                order_id=str(order_id),
                gateway=gateway_name,
                intent_id=intent_id,
                reason=e.reason,
            )
            continue
        if outcome.state is not OutcomeState.PENDING:
            settled.append((gateway, intent_id, outcome))
    return settled
