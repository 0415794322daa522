from datetime import datetime
from typing import Optional

from pydantic import Field

from dongnegage.api.schemas.inventory import OptionGroup
from dongnegage.api.schemas.shared.base import AppBaseModel


class ProductBase(AppBaseModel):
    title: str = ""
    description: Optional[str] = None
    price: int = 0
    max_quantity: Optional[int] = None
    max_quantity_per_customer: Optional[int] = None
    # Local KST wall clock from the admin form, e.g. "2026-10-20T18:00"
    deadline: Optional[datetime] = None
    option_groups: list[OptionGroup] = Field(default_factory=list)

    inventory_link_enabled: bool = False
    inventory_item_id: Optional[int] = None
    consume_per_sale: Optional[int] = None


class ProductCreate(ProductBase):
    pass


class ProductUpdate(ProductBase):
    is_active: Optional[bool] = None
    remove_image: bool = False


class ProductImageOut(AppBaseModel):
    id: int
    image_url: str
    sort_order: int


class ProductOut(AppBaseModel):
    id: int
    shop_id: int
    title: str
    description: Optional[str] = None
    price: int
    image_url: Optional[str] = None
    max_quantity: Optional[int] = None
    max_quantity_per_customer: Optional[int] = None
    deadline: Optional[datetime] = None
    is_active: bool
    option_groups: list = Field(default_factory=list)
    reserved_count: int
    images: list[ProductImageOut] = Field(default_factory=list)
    created_at: datetime


class ProductActiveToggle(AppBaseModel):
    is_active: bool


class BulkDeletePayload(AppBaseModel):
    product_ids: list[int] = Field(default_factory=list)
