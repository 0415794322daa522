# dongnegage/api/admin/routes/reservations.py
import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from dongnegage.api.schemas.reservation import (
    BulkStatusResult,
    BulkStatusUpdate,
    ReservationOut,
    ReservationStatusUpdate,
)
from dongnegage.api.services import push_service
from dongnegage.api.services.reservation_service import (
    STATUS_CHANGE_FAILED_MESSAGE,
    STATUS_CHANGE_MESSAGES,
    STATUS_PUSH_MESSAGES,
    ReservationError,
    bulk_transition,
    transition_reservation_status,
)
from dongnegage.core import models
from dongnegage.core.database import GetDBDep
from dongnegage.core.dependencies import GetShopDep, GetWritableShopDep
from dongnegage.core.utils.enums import RESERVATION_STATUS_LABELS, ReservationStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reservations", tags=["Reservations"])


def _to_out(reservation: models.Reservation) -> ReservationOut:
    return ReservationOut(
        id=reservation.id,
        product_id=reservation.product_id,
        product_title=reservation.product.title if reservation.product else None,
        customer_name=reservation.customer_name,
        customer_phone=reservation.customer_phone,
        quantity=reservation.quantity,
        status=reservation.status,
        status_label=RESERVATION_STATUS_LABELS.get(reservation.status),
        pickup_date=reservation.pickup_date,
        memo=reservation.memo,
        selected_options=reservation.selected_options or {},
        created_at=reservation.created_at,
    )


@router.get("", response_model=List[ReservationOut])
def list_reservations(
        db: GetDBDep,
        shop: GetShopDep,
        status: Optional[ReservationStatus] = None,
):
    query = db.query(models.Reservation).options(
        joinedload(models.Reservation.product)
    ).filter(models.Reservation.shop_id == shop.id)

    if status:
        query = query.filter(models.Reservation.status == status)

    reservations = query.order_by(models.Reservation.created_at.desc(), models.Reservation.id.desc()).all()
    return [_to_out(r) for r in reservations]


@router.patch("/{reservation_id}/status", response_model=ReservationOut)
def update_reservation_status(
        reservation_id: int,
        payload: ReservationStatusUpdate,
        db: GetDBDep,
        shop: GetWritableShopDep,
):
    try:
        reservation = transition_reservation_status(db, reservation_id, shop.id, payload.status)
    except ReservationError as e:
        message = STATUS_CHANGE_MESSAGES.get(e.code, STATUS_CHANGE_FAILED_MESSAGE)
        status_code = {"NOT_FOUND": 404, "FORBIDDEN": 403}.get(e.code.value, 400)
        raise HTTPException(status_code=status_code, detail=message)
    except SQLAlchemyError as e:
        logger.error(f"❌ Status change failed for reservation {reservation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=STATUS_CHANGE_FAILED_MESSAGE)

    push_message = STATUS_PUSH_MESSAGES.get(payload.status)
    if push_message:
        try:
            push_service.notify_customer(db, shop.id, reservation.customer_phone, {
                "title": shop.name,
                "body": f"{push_message} - {reservation.product.title}",
                "url": f"/{shop.slug}",
            })
        except Exception as e:
            # The status change is already committed
            logger.error(f"❌ Status push failed for reservation {reservation_id}: {e}")

    return _to_out(reservation)


@router.post("/bulk-status", response_model=BulkStatusResult)
def bulk_update_reservation_status(
        payload: BulkStatusUpdate,
        db: GetDBDep,
        shop: GetWritableShopDep,
):
    if not payload.reservation_ids:
        raise HTTPException(status_code=400, detail="선택된 예약이 없습니다")

    result = bulk_transition(db, shop.id, payload.reservation_ids, payload.status)
    logger.info(f"📋 Bulk status for shop {shop.id}: {result['message']}")
    return BulkStatusResult(**result)
