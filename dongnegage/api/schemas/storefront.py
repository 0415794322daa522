from datetime import datetime
from typing import Optional

from pydantic import Field

from dongnegage.api.schemas.shared.base import AppBaseModel


class StorefrontShop(AppBaseModel):
    id: int
    slug: str
    name: str
    description: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    logo_url: Optional[str] = None
    kakao_channel_url: Optional[str] = None


class StorefrontProduct(AppBaseModel):
    id: int
    title: str
    description: Optional[str] = None
    price: int
    image_url: Optional[str] = None
    max_quantity: Optional[int] = None
    reserved_count: int
    deadline: Optional[datetime] = None
    remaining: Optional[int] = None
    sold_out: bool
    expired: bool


class StorefrontPage(AppBaseModel):
    shop: StorefrontShop
    products: list[StorefrontProduct] = Field(default_factory=list)


class ProductDetail(StorefrontProduct):
    max_quantity_per_customer: Optional[int] = None
    option_groups: list = Field(default_factory=list)
    gallery: list[str] = Field(default_factory=list)
    reserved_quantity: int
    max_selectable: int


class ProductDetailPage(AppBaseModel):
    shop: StorefrontShop
    product: ProductDetail
