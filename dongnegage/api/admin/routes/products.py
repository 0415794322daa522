# dongnegage/api/admin/routes/products.py
import logging
from typing import List

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import ValidationError

from dongnegage.api.schemas.product import (
    BulkDeletePayload,
    ProductActiveToggle,
    ProductCreate,
    ProductOut,
    ProductUpdate,
)
from dongnegage.api.services import product_service
from dongnegage.api.services.product_service import ProductInputError
from dongnegage.core.database import GetDBDep
from dongnegage.core.dependencies import GetShopDep, GetWritableShopDep

log = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])


def _get_owned_product(db, shop, product_id: int):
    product = product_service.get_product(db, shop.id, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="상품을 찾을 수 없습니다")
    return product


@router.get("", response_model=List[ProductOut])
def list_products(db: GetDBDep, shop: GetShopDep):
    return product_service.list_products(db, shop.id)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: GetDBDep, shop: GetShopDep):
    return _get_owned_product(db, shop, product_id)


@router.post("", response_model=ProductOut, status_code=201)
def create_product(
        db: GetDBDep,
        shop: GetWritableShopDep,
        payload_str: str = Form(..., alias="payload"),
        image: UploadFile | None = File(None, alias="image"),
):
    """Creates a product and notifies the shop's push subscribers."""
    try:
        payload = ProductCreate.model_validate_json(payload_str)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid JSON: {e}")

    try:
        image_url = product_service.store_product_image(shop.id, image)
        return product_service.create_product(db, shop, payload, image_url=image_url)
    except ProductInputError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(
        product_id: int,
        db: GetDBDep,
        shop: GetWritableShopDep,
        payload_str: str = Form(..., alias="payload"),
        image: UploadFile | None = File(None, alias="image"),
):
    product = _get_owned_product(db, shop, product_id)

    try:
        payload = ProductUpdate.model_validate_json(payload_str)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid JSON: {e}")

    try:
        image_url = product_service.store_product_image(shop.id, image)
        return product_service.update_product(db, shop, product, payload, image_url=image_url)
    except ProductInputError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.patch("/{product_id}/active", response_model=ProductOut)
def toggle_product_active(
        product_id: int,
        payload: ProductActiveToggle,
        db: GetDBDep,
        shop: GetWritableShopDep,
):
    product = _get_owned_product(db, shop, product_id)
    return product_service.set_product_active(db, product, payload.is_active)


@router.post("/bulk-delete")
def bulk_delete_products(payload: BulkDeletePayload, db: GetDBDep, shop: GetWritableShopDep):
    try:
        deleted = product_service.delete_products(db, shop.id, payload.product_ids)
    except ProductInputError as e:
        raise HTTPException(status_code=400, detail=e.message)

    log.info(f"🗑️ Shop {shop.id} bulk-deleted {deleted} products")
    return {"deleted": deleted}
