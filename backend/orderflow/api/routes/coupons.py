from fastapi import APIRouter

from orderflow.deps import CurrentUser, SessionDep
from orderflow.models import CouponValidateRequest, CouponValidation
from orderflow.services import PromotionsService

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=CouponValidation)
def validate_coupon(
    session: SessionDep, user: CurrentUser, body: CouponValidateRequest
) -> CouponValidation:
    return PromotionsService.validate(session, body.code, body.subtotal)
