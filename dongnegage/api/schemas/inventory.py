from datetime import datetime
from typing import Optional

from pydantic import Field

from dongnegage.api.schemas.shared.base import AppBaseModel
from dongnegage.core.utils.enums import ImportJobStatus, ImportRowType, ImportSourceType


class OptionGroup(AppBaseModel):
    name: str
    values: list[str]
    required: bool = True


class InventoryItemCreate(AppBaseModel):
    name: str
    sku: Optional[str] = None
    unit: Optional[str] = None
    current_quantity: int = Field(default=0, ge=0)
    minimum_quantity: int = Field(default=0, ge=0)
    is_active: bool = True
    option_groups_raw: Optional[str] = None
    stock_option_name: Optional[str] = None
    option_stocks_raw: Optional[str] = None


class InventoryItemUpdate(AppBaseModel):
    name: Optional[str] = None
    unit: Optional[str] = None
    current_quantity: Optional[int] = Field(default=None, ge=0)
    minimum_quantity: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    option_groups_raw: Optional[str] = None
    stock_option_name: Optional[str] = None
    option_stocks_raw: Optional[str] = None


class InventoryItemOut(AppBaseModel):
    id: int
    sku: str
    name: str
    unit: Optional[str] = None
    current_quantity: int
    minimum_quantity: int
    is_active: bool
    is_low: bool
    option_groups: list = Field(default_factory=list)
    stock_option_name: Optional[str] = None
    option_stocks: dict = Field(default_factory=dict)
    linked_count: int = 0
    updated_at: Optional[datetime] = None


class ImportResult(AppBaseModel):
    job_id: Optional[int] = None
    message: str
    total_rows: int = 0
    success_rows: int = 0
    failed_rows: int = 0


class ImportRowOut(AppBaseModel):
    id: int
    row_type: ImportRowType
    row_number: int
    raw_data: dict = Field(default_factory=dict)
    error_message: str


class ImportJobOut(AppBaseModel):
    id: int
    source_type: ImportSourceType
    dry_run: bool
    status: ImportJobStatus
    total_rows: int
    success_rows: int
    failed_rows: int
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class ImportJobDetail(ImportJobOut):
    rows: list[ImportRowOut] = Field(default_factory=list)
