from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from dongnegage.api.schemas.shared.base import AppBaseModel
from dongnegage.core.utils.enums import ReservationStatus


class ReservationCreate(AppBaseModel):
    """
    Storefront reservation payload.

    Fields are loose on purpose: missing or blank values are reported by the
    intake validation with fixed Korean messages instead of a 422.
    """
    product_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    quantity: Optional[int] = None
    pickup_date: Optional[str] = None
    memo: Optional[str] = None
    privacy_agreed: bool = False
    selected_options: dict[str, str] = Field(default_factory=dict)

    @field_validator("customer_name", "customer_phone", "pickup_date", "memo")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("selected_options", mode="before")
    @classmethod
    def coerce_options(cls, value):
        if not value:
            return {}
        if not isinstance(value, dict):
            raise ValueError("selected_options must be an object")
        return {str(k): str(v) for k, v in value.items() if v is not None}


class ReservationCreatedOut(AppBaseModel):
    id: int
    customer_name: str
    quantity: int
    pickup_date: Optional[str] = None
    status: ReservationStatus


class ReservationCreatedResponse(AppBaseModel):
    reservation: ReservationCreatedOut


class ReservationOut(AppBaseModel):
    id: int
    product_id: int
    product_title: Optional[str] = None
    customer_name: str
    customer_phone: str
    quantity: int
    status: ReservationStatus
    status_label: Optional[str] = None
    pickup_date: Optional[str] = None
    memo: Optional[str] = None
    selected_options: dict = Field(default_factory=dict)
    created_at: datetime


class ReservationStatusUpdate(AppBaseModel):
    status: ReservationStatus


class BulkStatusUpdate(AppBaseModel):
    reservation_ids: list[int] = Field(default_factory=list)
    status: ReservationStatus


class BulkStatusResult(AppBaseModel):
    requested: int
    succeeded: int
    failed: int
    message: str


class ReservationLookupRequest(AppBaseModel):
    ids: list[int] = Field(default_factory=list, max_length=50)


class ReservationLookupItem(AppBaseModel):
    id: int
    status: ReservationStatus
    quantity: int
    product_title: Optional[str] = None
    shop_slug: Optional[str] = None
    created_at: datetime
