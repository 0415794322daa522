import logging

from fastapi import APIRouter, HTTPException

from dongnegage.api.schemas.billing import BillingEventOut, BillingOverview, CheckoutResponse
from dongnegage.api.services import billing_service
from dongnegage.core.config import config
from dongnegage.core.database import GetDBDep
from dongnegage.core.dependencies import GetShopDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.get("", response_model=BillingOverview)
def get_billing(db: GetDBDep, shop: GetShopDep):
    """Billing state is open to locked shops so they can pay."""
    snapshot = billing_service.get_shop_billing_snapshot(db, shop)
    events = billing_service.list_billing_events(db, shop.id)
    return BillingOverview(
        snapshot=snapshot,
        monthly_amount=config.BILLING_MONTHLY_AMOUNT,
        events=[BillingEventOut.model_validate(e) for e in events],
    )


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(db: GetDBDep, shop: GetShopDep):
    try:
        return billing_service.prepare_checkout(db, shop)
    except billing_service.BillingConfigurationError as e:
        logger.error(f"❌ Checkout unavailable: {e}")
        raise HTTPException(status_code=500, detail="결제 설정이 아직 완료되지 않았습니다.")
