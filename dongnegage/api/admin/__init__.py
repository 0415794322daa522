from fastapi import APIRouter

from dongnegage.api.admin.routes.auth import router as auth_router
from dongnegage.api.admin.routes.shop import router as shop_router
from dongnegage.api.admin.routes.products import router as products_router
from dongnegage.api.admin.routes.reservations import router as reservations_router
from dongnegage.api.admin.routes.inventory import router as inventory_router
from dongnegage.api.admin.routes.billing import router as billing_router
from dongnegage.api.admin.routes.dashboard import router as dashboard_router
from dongnegage.api.admin.routes.push import router as push_router

router = APIRouter(prefix="/admin")
router.include_router(auth_router)
router.include_router(shop_router)
router.include_router(products_router)
router.include_router(reservations_router)
router.include_router(inventory_router)
router.include_router(billing_router)
router.include_router(dashboard_router)
router.include_router(push_router)
