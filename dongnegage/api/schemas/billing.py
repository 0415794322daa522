from datetime import datetime
from typing import Optional

from pydantic import Field

from dongnegage.api.schemas.shared.base import AppBaseModel
from dongnegage.core.utils.enums import BillingStatus


class BillingSnapshot(AppBaseModel):
    shop_id: int
    is_system_owner: bool
    trial_started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    billing_status: BillingStatus
    read_only_mode: bool
    plan_code: str
    next_billing_at: Optional[datetime] = None
    days_until_trial_end: int
    should_show_reminder: bool
    reminder_day: Optional[int] = None
    paid_scheduled_after_trial: bool


class PaymentParams(AppBaseModel):
    amount: int
    orderId: str
    orderName: str
    customerName: str
    successUrl: str
    failUrl: str


class CheckoutResponse(AppBaseModel):
    clientKey: str
    method: str = "카드"
    paymentParams: PaymentParams


class BillingEventOut(AppBaseModel):
    id: int
    event_type: str
    event_status: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[int] = None
    currency: str
    created_at: datetime


class BillingOverview(AppBaseModel):
    snapshot: BillingSnapshot
    monthly_amount: int
    events: list[BillingEventOut] = Field(default_factory=list)
