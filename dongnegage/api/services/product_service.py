"""
Product Service
===============
Catalogue management for the admin console.
"""

import logging
from typing import Optional

from fastapi import UploadFile
from sqlalchemy.orm import Session

from dongnegage.api.schemas.product import ProductCreate, ProductUpdate
from dongnegage.api.services import push_service
from dongnegage.api.services.inventory_service import (
    InventoryInputError,
    resolve_inventory_link_input,
    set_product_link,
)
from dongnegage.api.services.reservation_service import normalize_option_groups
from dongnegage.core import models
from dongnegage.core.aws import (
    MAX_IMAGE_BYTES,
    delete_file,
    file_size,
    key_from_url,
    public_url,
    upload_single_file,
)
from dongnegage.core.utils.kst import from_kst_to_utc

logger = logging.getLogger(__name__)

MAX_PRICE = 10_000_000


class ProductInputError(ValueError):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def _validate_basics(data: ProductCreate | ProductUpdate) -> str:
    title = (data.title or "").strip()
    if not title:
        raise ProductInputError("상품명을 입력해주세요")
    if not data.price or data.price <= 0:
        raise ProductInputError("가격은 0원보다 커야 합니다")
    if data.price > MAX_PRICE:
        raise ProductInputError("상품 금액은 1,000만원을 초과할 수 없습니다")
    return title


def _limits(data: ProductCreate | ProductUpdate) -> tuple[Optional[int], Optional[int]]:
    """Non-positive caps mean "no cap"."""
    max_quantity = data.max_quantity if data.max_quantity and data.max_quantity > 0 else None
    per_customer = (
        data.max_quantity_per_customer
        if data.max_quantity_per_customer and data.max_quantity_per_customer >= 1
        else None
    )
    return max_quantity, per_customer


def _resolve_link(db: Session, shop_id: int, data: ProductCreate | ProductUpdate):
    try:
        return resolve_inventory_link_input(
            db, shop_id, data.inventory_link_enabled, data.inventory_item_id, data.consume_per_sale
        )
    except InventoryInputError as e:
        raise ProductInputError(e.message)


def store_product_image(shop_id: int, image: Optional[UploadFile]) -> Optional[str]:
    """Uploads the main image; None when no file was sent."""
    if image is None or not image.filename or file_size(image) == 0:
        return None
    if file_size(image) > MAX_IMAGE_BYTES:
        raise ProductInputError("이미지는 5MB 이하만 가능합니다")

    key = upload_single_file(image, folder=f"products/{shop_id}")
    if not key:
        raise ProductInputError("이미지 업로드에 실패했습니다")
    return public_url(key)


# ═══════════════════════════════════════════════════════════
# QUERIES
# ═══════════════════════════════════════════════════════════

def list_products(db: Session, shop_id: int) -> list[models.Product]:
    return db.query(models.Product).filter(
        models.Product.shop_id == shop_id
    ).order_by(models.Product.created_at.desc(), models.Product.id.desc()).all()


def get_product(db: Session, shop_id: int, product_id: int) -> Optional[models.Product]:
    return db.query(models.Product).filter(
        models.Product.id == product_id,
        models.Product.shop_id == shop_id,
    ).first()


# ═══════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════

def create_product(
        db: Session,
        shop: models.Shop,
        data: ProductCreate,
        image_url: Optional[str] = None,
) -> models.Product:
    title = _validate_basics(data)
    max_quantity, per_customer = _limits(data)
    item, consume = _resolve_link(db, shop.id, data)

    product = models.Product(
        shop_id=shop.id,
        title=title,
        description=(data.description or "").strip() or None,
        price=data.price,
        image_url=image_url,
        max_quantity=max_quantity,
        max_quantity_per_customer=per_customer,
        deadline=from_kst_to_utc(data.deadline),
        is_active=True,
        option_groups=normalize_option_groups([g.model_dump() for g in data.option_groups]),
        reserved_count=0,
    )
    db.add(product)
    db.flush()

    if image_url:
        db.add(models.ProductImage(product_id=product.id, image_url=image_url, sort_order=0))

    # Product row and link land in the same commit
    set_product_link(db, product, item, consume, commit=False)
    db.commit()
    db.refresh(product)
    logger.info(f"🛒 Product {product.id} '{product.title}' created for shop {shop.id}")

    try:
        push_service.send_push_to_shop(db, shop.id, {
            "title": f"{shop.name} 새 상품",
            "body": f"{product.title} - 지금 예약하세요!",
            "url": f"/{shop.slug}",
        })
    except Exception as e:
        # The product is already committed
        logger.error(f"❌ New product push failed for product {product.id}: {e}")
    return product


def update_product(
        db: Session,
        shop: models.Shop,
        product: models.Product,
        data: ProductUpdate,
        image_url: Optional[str] = None,
) -> models.Product:
    title = _validate_basics(data)
    max_quantity, per_customer = _limits(data)

    if max_quantity is not None and max_quantity < (product.reserved_count or 0):
        raise ProductInputError(
            f"이미 {product.reserved_count}건 예약되어 있어 수량을 {max_quantity}로 줄일 수 없습니다"
        )

    item, consume = _resolve_link(db, shop.id, data)

    product.title = title
    product.description = (data.description or "").strip() or None
    product.price = data.price
    product.max_quantity = max_quantity
    product.max_quantity_per_customer = per_customer
    product.deadline = from_kst_to_utc(data.deadline)
    product.option_groups = normalize_option_groups([g.model_dump() for g in data.option_groups])
    if data.is_active is not None:
        product.is_active = data.is_active

    if image_url:
        product.image_url = image_url
        for image in product.images:
            image.sort_order += 1
        db.add(models.ProductImage(product_id=product.id, image_url=image_url, sort_order=0))
    elif data.remove_image:
        product.image_url = None

    set_product_link(db, product, item, consume, commit=False)
    db.commit()
    db.refresh(product)
    logger.info(f"✏️ Product {product.id} updated")
    return product


def set_product_active(db: Session, product: models.Product, is_active: bool) -> models.Product:
    product.is_active = is_active
    db.commit()
    db.refresh(product)
    return product


def delete_products(db: Session, shop_id: int, product_ids: list[int]) -> int:
    """Deletes the shop's products among the ids; returns how many were removed."""
    if not product_ids:
        raise ProductInputError("삭제할 상품을 선택해주세요")

    products = db.query(models.Product).filter(
        models.Product.shop_id == shop_id,
        models.Product.id.in_(product_ids),
    ).all()

    stored_keys = []
    for product in products:
        urls = {product.image_url, *(image.image_url for image in product.images)}
        stored_keys.extend(key for key in map(key_from_url, urls) if key)
        db.delete(product)
    db.commit()

    for key in stored_keys:
        delete_file(key)

    logger.info(f"🗑️ Deleted {len(products)} products from shop {shop_id}")
    return len(products)
