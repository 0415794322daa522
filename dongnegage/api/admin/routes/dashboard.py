from fastapi import APIRouter

from dongnegage.api.schemas.dashboard import ShopDashboard, SystemDashboard
from dongnegage.api.services import dashboard_service
from dongnegage.api.services.billing_service import get_shop_billing_snapshot
from dongnegage.core.database import GetDBDep
from dongnegage.core.dependencies import GetShopDep, GetSystemOwnerShopDep

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("", response_model=ShopDashboard)
def get_dashboard(db: GetDBDep, shop: GetShopDep):
    dashboard = dashboard_service.get_shop_dashboard(db, shop.id)
    dashboard.billing = get_shop_billing_snapshot(db, shop)
    return dashboard


@router.get("/system", response_model=SystemDashboard)
def get_system_dashboard(db: GetDBDep, _shop: GetSystemOwnerShopDep):
    return dashboard_service.get_system_dashboard(db)
