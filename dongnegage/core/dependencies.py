# dongnegage/core/dependencies.py

from typing import Annotated

from fastapi import Depends, HTTPException

from dongnegage.api.services.billing_service import ShopReadOnlyError, assert_shop_writable
from dongnegage.api.services.shop_service import get_shop_by_owner
from dongnegage.core import models
from dongnegage.core.database import GetDBDep
from dongnegage.core.security.security import oauth2_scheme, verify_access_token

SHOP_NOT_FOUND_MESSAGE = "가게를 찾을 수 없습니다"
FORBIDDEN_MESSAGE = "권한이 없습니다"


def get_current_user(
        db: GetDBDep,
        token: Annotated[str, Depends(oauth2_scheme)]
) -> models.User:
    payload = verify_access_token(token)

    if not payload:
        raise HTTPException(
            status_code=401,
            detail="인증이 필요합니다",
            headers={"WWW-Authenticate": "Bearer"},
        )

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = db.query(models.User).filter(models.User.email == email).first()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.is_active:
        raise HTTPException(status_code=401, detail="Inactive user")

    return user


GetCurrentUserDep = Annotated[models.User, Depends(get_current_user)]


def get_current_shop(db: GetDBDep, current_user: GetCurrentUserDep) -> models.Shop:
    """The shop owned by the signed-in user"""
    shop = get_shop_by_owner(db, current_user.id)

    if not shop:
        raise HTTPException(status_code=404, detail=SHOP_NOT_FOUND_MESSAGE)

    return shop


GetShopDep = Annotated[models.Shop, Depends(get_current_shop)]


def get_writable_shop(db: GetDBDep, shop: GetShopDep) -> models.Shop:
    """Same as get_current_shop, but rejects shops locked by billing"""
    try:
        assert_shop_writable(db, shop)
    except ShopReadOnlyError as e:
        raise HTTPException(status_code=403, detail=e.message)

    return shop


GetWritableShopDep = Annotated[models.Shop, Depends(get_writable_shop)]


def get_system_owner_shop(shop: GetShopDep) -> models.Shop:
    if not shop.is_system_owner:
        raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)
    return shop


GetSystemOwnerShopDep = Annotated[models.Shop, Depends(get_system_owner_shop)]
