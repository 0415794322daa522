from datetime import datetime
from typing import Optional

from pydantic import Field

from dongnegage.api.schemas.billing import BillingSnapshot
from dongnegage.api.schemas.shared.base import AppBaseModel
from dongnegage.core.utils.enums import ReservationStatus


class RecentReservation(AppBaseModel):
    id: int
    customer_name: str
    customer_phone: str
    quantity: int
    status: ReservationStatus
    created_at: datetime


class ShopDashboard(AppBaseModel):
    today_count: int
    recent_reservations: list[RecentReservation] = Field(default_factory=list)
    billing: Optional[BillingSnapshot] = None


class SystemReservationRow(AppBaseModel):
    id: int
    customer_name: str
    customer_phone: str
    status: ReservationStatus
    created_at: datetime
    product_title: Optional[str] = None
    shop_name: Optional[str] = None


class SystemDashboard(AppBaseModel):
    active_shop_count: int
    shop_count: int
    product_count: int
    reservation_count: int
    unique_customer_count: int
    status_counts: dict[str, int] = Field(default_factory=dict)
    latest_reservations: list[SystemReservationRow] = Field(default_factory=list)
