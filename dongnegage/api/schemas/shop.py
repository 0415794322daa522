from datetime import datetime
from typing import Optional

from pydantic import EmailStr

from dongnegage.api.schemas.shared.base import AppBaseModel
from dongnegage.core.utils.enums import BillingStatus


class SignupRequest(AppBaseModel):
    email: EmailStr
    password: str
    shop_name: str
    slug: str
    phone: Optional[str] = None


class TokenResponse(AppBaseModel):
    access_token: str
    token_type: str = "bearer"


class ShopSettingsUpdate(AppBaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    kakao_channel_url: Optional[str] = None


class ShopOut(AppBaseModel):
    id: int
    slug: str
    name: str
    description: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    logo_url: Optional[str] = None
    kakao_channel_url: Optional[str] = None
    is_active: bool
    is_system_owner: bool
    billing_status: BillingStatus
    read_only_mode: bool
    trial_ends_at: Optional[datetime] = None
    created_at: datetime
