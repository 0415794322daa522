"""
Storefront Service
==================
Public shop pages read by customers.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from dongnegage.api.schemas.storefront import (
    ProductDetail,
    ProductDetailPage,
    StorefrontPage,
    StorefrontProduct,
    StorefrontShop,
)
from dongnegage.api.services.reservation_service import (
    MAX_QUANTITY,
    get_product_reserved_quantity,
    normalize_option_groups,
    remaining_stock,
)
from dongnegage.api.services.shop_service import get_active_shop_by_slug
from dongnegage.core import models
from dongnegage.core.config import config
from dongnegage.core.utils.kst import as_utc, utcnow

DEFAULT_SHOP_NAME = "동네 가게"
DEFAULT_SHOP_DESCRIPTION = "우리 동네 예약 서비스"


def is_expired(product: models.Product, now: datetime) -> bool:
    deadline = as_utc(product.deadline)
    return bool(deadline and deadline < now)


def is_sold_out(product: models.Product) -> bool:
    if product.max_quantity is None:
        return False
    return (product.reserved_count or 0) >= product.max_quantity


def _product_fields(product: models.Product, now: datetime) -> dict:
    return {
        "id": product.id,
        "title": product.title,
        "description": product.description,
        "price": product.price,
        "image_url": product.image_url,
        "max_quantity": product.max_quantity,
        "reserved_count": product.reserved_count or 0,
        "deadline": product.deadline,
        "remaining": remaining_stock(product),
        "sold_out": is_sold_out(product),
        "expired": is_expired(product, now),
    }


def get_storefront(db: Session, slug: str, now: Optional[datetime] = None) -> Optional[StorefrontPage]:
    shop = get_active_shop_by_slug(db, slug)
    if not shop:
        return None

    now = now or utcnow()
    products = db.query(models.Product).filter(
        models.Product.shop_id == shop.id,
        models.Product.is_active.is_(True),
    ).order_by(models.Product.created_at.desc(), models.Product.id.desc()).all()

    return StorefrontPage(
        shop=StorefrontShop.model_validate(shop),
        products=[StorefrontProduct(**_product_fields(p, now)) for p in products],
    )


def max_selectable(product: models.Product) -> int:
    """Largest quantity the reservation form offers: stock, per-customer cap and 99."""
    limits = [MAX_QUANTITY]
    remaining = remaining_stock(product)
    if remaining is not None:
        limits.append(remaining)
    if product.max_quantity_per_customer:
        limits.append(product.max_quantity_per_customer)
    return max(min(limits), 0)


def get_product_detail(db: Session, slug: str, product_id: int,
                       now: Optional[datetime] = None) -> Optional[ProductDetailPage]:
    shop = get_active_shop_by_slug(db, slug)
    if not shop:
        return None

    product = db.query(models.Product).filter(
        models.Product.id == product_id,
        models.Product.shop_id == shop.id,
        models.Product.is_active.is_(True),
    ).first()
    if not product:
        return None

    now = now or utcnow()

    gallery = [product.image_url] if product.image_url else []
    for image in product.images:
        if image.image_url not in gallery:
            gallery.append(image.image_url)

    detail = ProductDetail(
        **_product_fields(product, now),
        max_quantity_per_customer=product.max_quantity_per_customer,
        option_groups=normalize_option_groups(product.option_groups),
        gallery=gallery,
        reserved_quantity=get_product_reserved_quantity(db, product.id),
        max_selectable=max_selectable(product),
    )
    return ProductDetailPage(shop=StorefrontShop.model_validate(shop), product=detail)


def build_manifest(slug: Optional[str]) -> dict:
    origin = f"/{slug}" if slug else "/"
    base_url = config.site_url
    return {
        "name": DEFAULT_SHOP_NAME,
        "short_name": "동네가게",
        "description": DEFAULT_SHOP_DESCRIPTION,
        "start_url": origin,
        "scope": origin,
        "display": "standalone",
        "background_color": "#fafaf9",
        "theme_color": "#1c1917",
        "orientation": "portrait",
        "lang": "ko",
        "icons": [
            {"src": f"{base_url}/icon-192.svg", "sizes": "192x192",
             "type": "image/svg+xml", "purpose": "any maskable"},
            {"src": f"{base_url}/icon-512.svg", "sizes": "512x512",
             "type": "image/svg+xml", "purpose": "any maskable"},
        ],
    }
