import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from starlette.requests import Request

from dongnegage.api.schemas.shop import ShopOut, SignupRequest, TokenResponse
from dongnegage.api.services import shop_service
from dongnegage.core.database import GetDBDep
from dongnegage.core.rate_limit.rate_limit import RATE_LIMITS, limiter
from dongnegage.core.security.security import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/signup", response_model=ShopOut, status_code=201)
@limiter.limit(RATE_LIMITS["signup"])
def signup(request: Request, payload: SignupRequest, db: GetDBDep):
    """Owner account + shop, with the free trial started."""
    try:
        _, shop = shop_service.signup(db, payload)
    except shop_service.SignupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return shop


@router.post("/login", response_model=TokenResponse)
@limiter.limit(RATE_LIMITS["login"])
def login_for_access_token(
        request: Request,
        db: GetDBDep,
        form_data: OAuth2PasswordRequestForm = Depends(),
):
    user = shop_service.authenticate_user(db, form_data.username, form_data.password)

    if not user:
        logger.warning(f"⚠️ Failed login for {form_data.username}")
        raise HTTPException(status_code=401, detail=shop_service.INVALID_CREDENTIALS_MESSAGE)

    if not user.is_active:
        raise HTTPException(status_code=401, detail="Inactive account")

    access_token = create_access_token(data={"sub": user.email})
    logger.info(f"🔑 Login: {user.email}")
    return TokenResponse(access_token=access_token)
