# dongnegage/api/app/routes/reservations.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from dongnegage.api.schemas.reservation import (
    ReservationCreate,
    ReservationCreatedOut,
    ReservationCreatedResponse,
    ReservationLookupItem,
    ReservationLookupRequest,
)
from dongnegage.api.services.reservation_service import (
    SERVER_ERROR_MESSAGE,
    ReservationError,
    ReservationInputError,
    create_reservation,
    translate_raw_error_message,
    translate_reservation_error,
    validate_reservation_fields,
    validate_selected_options,
)
from dongnegage.core import models
from dongnegage.core.database import GetDBDep
from dongnegage.core.rate_limit.rate_limit import RateLimitDependency

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reservations", tags=["Reservations"])

INVALID_REQUEST_MESSAGE = "잘못된 요청입니다"


@router.post("", response_model=ReservationCreatedResponse, status_code=201)
async def create_reservation_endpoint(
        request: Request,
        db: GetDBDep,
        _rate_limit: None = Depends(RateLimitDependency("reservation")),
):
    """
    Storefront reservation.

    Body is parsed by hand so malformed input gets the fixed Korean message
    instead of a 422.
    """
    try:
        payload = ReservationCreate.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail=INVALID_REQUEST_MESSAGE)

    try:
        phone = validate_reservation_fields(
            payload.product_id,
            payload.customer_name,
            payload.customer_phone,
            payload.quantity,
            payload.privacy_agreed,
        )

        product = db.get(models.Product, payload.product_id)
        if not product:
            raise ReservationInputError("상품을 찾을 수 없습니다", status_code=404)

        selected_options = validate_selected_options(product.option_groups, payload.selected_options)
    except ReservationInputError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    try:
        reservation = create_reservation(
            db,
            product_id=product.id,
            customer_name=payload.customer_name,
            customer_phone=phone,
            quantity=payload.quantity,
            pickup_date=payload.pickup_date,
            memo=payload.memo,
            privacy_agreed=payload.privacy_agreed,
            selected_options=selected_options,
        )
    except ReservationError as e:
        status_code, message = translate_reservation_error(e)
        logger.info(f"🚫 Reservation rejected for product {product.id}: {e.code.value}")
        raise HTTPException(status_code=status_code, detail=message)
    except SQLAlchemyError as e:
        logger.error(f"❌ Reservation insert failed: {e}", exc_info=True)
        status_code, message = translate_raw_error_message(str(e))
        raise HTTPException(status_code=status_code, detail=message)
    except Exception as e:
        logger.error(f"❌ Unexpected reservation error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=SERVER_ERROR_MESSAGE)

    return ReservationCreatedResponse(reservation=ReservationCreatedOut.model_validate(reservation))


@router.post("/status", response_model=list[ReservationLookupItem])
async def lookup_reservation_status(
        payload: ReservationLookupRequest,
        db: GetDBDep,
):
    """Current status of reservations a device remembers (my orders page)."""
    if not payload.ids:
        return []

    reservations = db.query(models.Reservation).filter(
        models.Reservation.id.in_(payload.ids)
    ).order_by(models.Reservation.created_at.desc()).all()

    return [
        ReservationLookupItem(
            id=r.id,
            status=r.status,
            quantity=r.quantity,
            product_title=r.product.title if r.product else None,
            shop_slug=r.shop.slug if r.shop else None,
            created_at=r.created_at,
        )
        for r in reservations
    ]
