from fastapi import APIRouter

from dongnegage.api.app.routes.storefront import router as storefront_router
from dongnegage.api.app.routes.reservations import router as reservations_router
from dongnegage.api.app.routes.push import router as push_router
from dongnegage.api.app.routes.usage_events import router as usage_events_router

router = APIRouter(prefix="/app")

router.include_router(storefront_router)
router.include_router(reservations_router)
router.include_router(push_router)
router.include_router(usage_events_router)
