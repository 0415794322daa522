"""
Inventory Service
=================
Inventory items, their option templates and product links.
"""

import logging
import re
import uuid
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from dongnegage.api.schemas.inventory import InventoryItemCreate, InventoryItemUpdate
from dongnegage.core import models

logger = logging.getLogger(__name__)

_OPTIONAL_SUFFIX = re.compile(r"\(선택\)\s*$")
_TEMPLATE_SEPARATORS = re.compile(r"\r\n|\n|\||;")


class InventoryInputError(ValueError):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ═══════════════════════════════════════════════════════════
# TEXT FORMATS
# ═══════════════════════════════════════════════════════════

def parse_option_template(raw: Optional[str]) -> list[dict]:
    """
    "한우: 1kg, 2kg | 컬러(선택): 노랑, 파랑" -> option groups.

    Lines may be separated by newlines, ``|`` or ``;``. A trailing "(선택)"
    marks the group optional; duplicate values collapse.
    """
    text = (raw or "").strip()
    if not text:
        return []

    groups = []
    for line in _TEMPLATE_SEPARATORS.split(text):
        line = line.strip()
        if ":" not in line:
            continue
        left, right = line.split(":", 1)
        optional = bool(_OPTIONAL_SUFFIX.search(left))
        name = _OPTIONAL_SUFFIX.sub("", left).strip()
        values = list(dict.fromkeys(v.strip() for v in right.split(",") if v.strip()))
        if not name or not values:
            continue
        groups.append({"name": name, "values": values, "required": not optional})
    return groups


def parse_option_stocks(raw: Optional[str]) -> dict[str, int]:
    """"노랑=10, 파랑=3" -> {"노랑": 10, "파랑": 3}; malformed or negative parts are skipped."""
    stocks: dict[str, int] = {}
    for part in (raw or "").split(","):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip()
        try:
            number = int(value.strip())
        except ValueError:
            continue
        if key and number >= 0:
            stocks[key] = number
    return stocks


def generate_sku() -> str:
    return f"INV-{uuid.uuid4().hex[:8].upper()}"


# ═══════════════════════════════════════════════════════════
# ITEMS
# ═══════════════════════════════════════════════════════════

def _apply_option_fields(item: models.InventoryItem, option_groups_raw, stock_option_name, option_stocks_raw):
    if option_groups_raw is not None:
        item.option_groups = parse_option_template(option_groups_raw)

    if stock_option_name is not None:
        item.stock_option_name = stock_option_name.strip() or None

    if option_stocks_raw is not None:
        stocks = parse_option_stocks(option_stocks_raw)
        if item.stock_option_name:
            group = next((g for g in item.option_groups or [] if g["name"] == item.stock_option_name), None)
            if group:
                stocks = {value: stocks.get(value, 0) for value in group["values"]}
        item.option_stocks = stocks

    if not item.stock_option_name:
        item.option_stocks = {}

    # Per-option stock is authoritative for the total
    if item.option_stocks:
        item.current_quantity = sum(item.option_stocks.values())


def register_inventory_item(db: Session, shop_id: int, data: InventoryItemCreate) -> models.InventoryItem:
    """Creates an item, or updates the one with the same SKU"""
    name = (data.name or "").strip()
    if not name:
        raise InventoryInputError("재고 항목명을 입력해주세요")

    sku = (data.sku or "").strip()
    item = None
    if sku:
        item = db.query(models.InventoryItem).filter(
            models.InventoryItem.shop_id == shop_id,
            models.InventoryItem.sku == sku,
        ).first()
    else:
        sku = generate_sku()

    if not item:
        item = models.InventoryItem(shop_id=shop_id, sku=sku, option_groups=[], option_stocks={})
        db.add(item)

    item.name = name
    item.unit = (data.unit or "").strip() or "ea"
    item.current_quantity = data.current_quantity
    item.minimum_quantity = data.minimum_quantity
    item.is_active = data.is_active
    _apply_option_fields(item, data.option_groups_raw, data.stock_option_name, data.option_stocks_raw)

    db.commit()
    db.refresh(item)
    logger.info(f"📦 Inventory item {item.sku} saved for shop {shop_id}")
    return item


def get_inventory_item(db: Session, shop_id: int, item_id: int) -> Optional[models.InventoryItem]:
    return db.query(models.InventoryItem).filter(
        models.InventoryItem.id == item_id,
        models.InventoryItem.shop_id == shop_id,
    ).first()


def update_inventory_item(db: Session, item: models.InventoryItem, data: InventoryItemUpdate) -> models.InventoryItem:
    payload = data.model_dump(exclude_unset=True)

    if "name" in payload:
        name = (payload["name"] or "").strip()
        if not name:
            raise InventoryInputError("재고 항목명을 입력해주세요")
        item.name = name
    if "unit" in payload:
        item.unit = (payload["unit"] or "").strip() or "ea"
    for field in ("current_quantity", "minimum_quantity", "is_active"):
        if payload.get(field) is not None:
            setattr(item, field, payload[field])

    _apply_option_fields(
        item,
        payload.get("option_groups_raw"),
        payload.get("stock_option_name"),
        payload.get("option_stocks_raw"),
    )

    db.commit()
    db.refresh(item)
    return item


def list_inventory(db: Session, shop_id: int) -> list[dict]:
    """Items newest-updated first, with the number of enabled product links"""
    counts = dict(
        db.query(
            models.ProductInventoryLink.inventory_item_id,
            func.count(models.ProductInventoryLink.id),
        ).filter(
            models.ProductInventoryLink.is_enabled.is_(True)
        ).group_by(models.ProductInventoryLink.inventory_item_id).all()
    )

    items = db.query(models.InventoryItem).filter(
        models.InventoryItem.shop_id == shop_id
    ).order_by(models.InventoryItem.updated_at.desc(), models.InventoryItem.id.desc()).all()

    return [
        {
            "id": item.id,
            "sku": item.sku,
            "name": item.name,
            "unit": item.unit,
            "current_quantity": item.current_quantity,
            "minimum_quantity": item.minimum_quantity,
            "is_active": item.is_active,
            "is_low": item.is_low,
            "option_groups": item.option_groups or [],
            "stock_option_name": item.stock_option_name,
            "option_stocks": item.option_stocks or {},
            "linked_count": counts.get(item.id, 0),
            "updated_at": item.updated_at,
        }
        for item in items
    ]


# ═══════════════════════════════════════════════════════════
# PRODUCT LINKS
# ═══════════════════════════════════════════════════════════

def resolve_inventory_link_input(
        db: Session,
        shop_id: int,
        enabled: bool,
        inventory_item_id: Optional[int],
        consume_per_sale: Optional[int],
) -> tuple[Optional[models.InventoryItem], int]:
    """
    Validates the inventory section of the product form.

    Returns:
        (item or None when linking is off, consume_per_sale >= 1)
    """
    consume = consume_per_sale if consume_per_sale and consume_per_sale > 0 else 1

    if not enabled:
        return None, consume

    if not inventory_item_id:
        raise InventoryInputError("재고 연동을 사용하려면 재고 항목을 선택해주세요")

    item = get_inventory_item(db, shop_id, inventory_item_id)
    if not item:
        raise InventoryInputError("선택한 재고 항목을 찾을 수 없습니다")
    if not item.is_active:
        raise InventoryInputError("비활성 재고 항목은 연동할 수 없습니다")

    return item, consume


def set_product_link(
        db: Session,
        product: models.Product,
        item: Optional[models.InventoryItem],
        consume_per_sale: int = 1,
        commit: bool = True,
) -> Optional[models.ProductInventoryLink]:
    """
    Keeps at most one enabled link per product: the chosen item is upserted
    and enabled, every other link is disabled. ``item=None`` disables all.
    """
    links = db.query(models.ProductInventoryLink).filter(
        models.ProductInventoryLink.product_id == product.id
    ).all()

    chosen = None
    for link in links:
        if item is not None and link.inventory_item_id == item.id:
            chosen = link
        else:
            link.is_enabled = False

    if item is not None:
        if chosen is None:
            chosen = models.ProductInventoryLink(product_id=product.id, inventory_item_id=item.id)
            db.add(chosen)
        chosen.consume_per_sale = consume_per_sale
        chosen.is_enabled = True

        # Products without their own options inherit the item's template
        if not product.option_groups and item.option_groups:
            product.option_groups = [dict(group) for group in item.option_groups]

    if commit:
        db.commit()
    return chosen
