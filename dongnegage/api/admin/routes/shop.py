from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import ValidationError

from dongnegage.api.schemas.shop import ShopOut, ShopSettingsUpdate
from dongnegage.api.services import shop_service
from dongnegage.core.aws import MAX_IMAGE_BYTES, file_size, public_url, upload_single_file
from dongnegage.core.database import GetDBDep
from dongnegage.core.dependencies import GetShopDep, GetWritableShopDep

router = APIRouter(prefix="/shop", tags=["Shop"])


@router.get("", response_model=ShopOut)
def get_my_shop(shop: GetShopDep):
    return shop


@router.patch("", response_model=ShopOut)
def update_my_shop(
        db: GetDBDep,
        shop: GetWritableShopDep,
        payload_str: str = Form(..., alias="payload"),
        logo: UploadFile | None = File(None, alias="logo"),
):
    try:
        payload = ShopSettingsUpdate.model_validate_json(payload_str)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid JSON: {e}")

    logo_url = None
    if logo and logo.filename and file_size(logo) > 0:
        if file_size(logo) > MAX_IMAGE_BYTES:
            raise HTTPException(status_code=400, detail="이미지는 5MB 이하만 가능합니다")
        key = upload_single_file(logo, folder=f"logos/{shop.id}")
        if not key:
            raise HTTPException(status_code=500, detail="이미지 업로드에 실패했습니다")
        logo_url = public_url(key)

    try:
        return shop_service.update_settings(db, shop, payload, logo_url=logo_url)
    except shop_service.SignupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
