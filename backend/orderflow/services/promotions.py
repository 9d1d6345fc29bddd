"""
Promotions ledger: coupon rules, discount arithmetic and usage counting
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import or_, update
from sqlmodel import Session, select

from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.core.metrics import coupon_applications_total
from orderflow.errors import NotFoundError, ValidationError
from orderflow.models import (
    Coupon,
    CouponValidation,
    DiscountType,
    get_datetime_utc,
    quantize_money,
)

logger = get_logger(__name__)


@dataclass
class AppliedCoupon:
    coupon: Coupon
    discount: Decimal


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_discount(discount_type: str, value: Decimal, subtotal: Decimal) -> Decimal:
    """
    Discount for a subtotal; never more than the subtotal itself.

    percentage: subtotal * value / 100, rounded half-up to 2 places
    fixed: min(value, subtotal)
    """
    if discount_type == DiscountType.PERCENTAGE.value:
        discount = quantize_money(subtotal * value / Decimal(100))
    else:
        discount = quantize_money(value)
    return min(discount, quantize_money(subtotal))


def rejection_reason(
    coupon: Coupon, subtotal: Decimal, now: datetime | None = None
) -> str | None:
    """Why a coupon cannot be applied to this subtotal, or None if it can"""
    now = now or get_datetime_utc()
    if not coupon.active:
        return "This coupon is no longer active"
    if coupon.expires_at is not None and _as_utc(coupon.expires_at) < now:
        return "This coupon has expired"
    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        return "This coupon has reached its usage limit"
    if coupon.min_order_value is not None and subtotal < coupon.min_order_value:
        return (
            f"Minimum order value is {quantize_money(coupon.min_order_value)} "
            f"{settings.DEFAULT_CURRENCY}"
        )
    return None


class PromotionsService:
    @staticmethod
    def get_coupon(session: Session, code: str) -> Coupon | None:
        return session.exec(select(Coupon).where(Coupon.code == normalize_code(code))).first()

    @staticmethod
    def evaluate(session: Session, code: str, subtotal: Decimal) -> AppliedCoupon | None:
        """
        Coupon evaluation at checkout.

        An unknown or inapplicable coupon does not fail the order; it is
        dropped and the drop is logged with its reason.
        """
        coupon = PromotionsService.get_coupon(session, code)
        if coupon is None:
            reason = "Invalid coupon code"
        else:
            reason = rejection_reason(coupon, subtotal)

        if reason:
            coupon_applications_total.labels(result="ignored").inc()
            logger.info("coupon_ignored", coupon_code=normalize_code(code), reason=reason)
            return None

        return AppliedCoupon(
            coupon=coupon,
            discount=compute_discount(coupon.discount_type, coupon.discount_value, subtotal),
        )

    @staticmethod
    def validate(session: Session, code: str, subtotal: Decimal) -> CouponValidation:
        """
        Validate-only path: same rules as checkout, but every rejection is an error.

        Raises:
            NotFoundError: unknown code
            ValidationError: inactive, expired, exhausted or below minimum order value
        """
        coupon = PromotionsService.get_coupon(session, code)
        if coupon is None:
            raise NotFoundError("Coupon", normalize_code(code))

        reason = rejection_reason(coupon, subtotal)
        if reason:
            raise ValidationError(reason)

        return CouponValidation(
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            discount=compute_discount(coupon.discount_type, coupon.discount_value, subtotal),
            description=coupon.description,
        )

    @staticmethod
    def redeem(session: Session, coupon: Coupon) -> bool:
        """
        Count one use of the coupon, in the caller's transaction.

        Conditional on uses remaining, so concurrent checkouts can never push
        used_count past max_uses.

        Returns:
            False if the last use was taken concurrently (nothing changed)
        """
        result = session.exec(  # type: ignore[call-overload]
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                Coupon.active == True,  # noqa: E712
                or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
            )
            .values(used_count=Coupon.used_count + 1)
        )
        redeemed = result.rowcount == 1
        coupon_applications_total.labels(result="applied" if redeemed else "exhausted").inc()
        return redeemed
