"""
Shop Service
============
Owner accounts, shop signup and shop settings.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from dongnegage.api.schemas.shop import ShopSettingsUpdate, SignupRequest
from dongnegage.api.services.billing_service import start_trial
from dongnegage.core import models
from dongnegage.core.security.security import get_password_hash, verify_password
from dongnegage.core.utils.validators import validate_slug

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
SLUG_TAKEN_MESSAGE = "이미 사용중인 주소입니다. 다른 주소를 입력해주세요."
INVALID_CREDENTIALS_MESSAGE = "이메일 또는 비밀번호가 올바르지 않습니다."


class SignupError(ValueError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def signup(db: Session, data: SignupRequest) -> tuple[models.User, models.Shop]:
    """Creates the owner account and its shop, with the free trial started."""
    shop_name = (data.shop_name or "").strip()
    slug = (data.slug or "").strip().lower()
    phone = (data.phone or "").strip() or None

    if not data.password or not shop_name or not slug:
        raise SignupError("필수 항목을 입력해주세요")
    if len(data.password) < MIN_PASSWORD_LENGTH:
        raise SignupError("비밀번호는 최소 8자 이상이어야 합니다")
    if not validate_slug(slug):
        raise SignupError("가게 주소는 영문 소문자, 숫자, 하이픈(-)으로 3~40자여야 합니다")

    if db.query(models.Shop).filter(models.Shop.slug == slug).first():
        raise SignupError(SLUG_TAKEN_MESSAGE, status_code=409)
    if db.query(models.User).filter(models.User.email == data.email).first():
        raise SignupError("이미 가입된 이메일입니다", status_code=409)

    user = models.User(email=data.email, hashed_password=get_password_hash(data.password))
    db.add(user)
    db.flush()

    shop = models.Shop(owner_id=user.id, slug=slug, name=shop_name, phone=phone, is_active=True)
    start_trial(shop)
    db.add(shop)
    db.commit()
    db.refresh(user)
    db.refresh(shop)

    logger.info(f"🎉 New shop '{shop.slug}' (id={shop.id}) signed up")
    return user, shop


def authenticate_user(db: Session, email: str, password: str) -> Optional[models.User]:
    user = db.query(models.User).filter(models.User.email == email).first()
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


def get_shop_by_owner(db: Session, owner_id: int) -> Optional[models.Shop]:
    return db.query(models.Shop).filter(models.Shop.owner_id == owner_id).first()


def get_active_shop_by_slug(db: Session, slug: str) -> Optional[models.Shop]:
    return db.query(models.Shop).filter(
        models.Shop.slug == slug,
        models.Shop.is_active.is_(True),
    ).first()


def update_settings(
        db: Session,
        shop: models.Shop,
        data: ShopSettingsUpdate,
        logo_url: Optional[str] = None,
) -> models.Shop:
    for field, value in data.model_dump(exclude_unset=True).items():
        if field == "name":
            value = (value or "").strip()
            if not value:
                raise SignupError("가게 이름을 입력해주세요")
        elif isinstance(value, str):
            value = value.strip() or None
        setattr(shop, field, value)

    if logo_url:
        shop.logo_url = logo_url

    db.commit()
    db.refresh(shop)
    return shop
