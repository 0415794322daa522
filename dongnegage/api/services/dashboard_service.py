from collections import Counter
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from dongnegage.api.schemas.dashboard import (
    RecentReservation,
    ShopDashboard,
    SystemDashboard,
    SystemReservationRow,
)
from dongnegage.core import models
from dongnegage.core.utils.kst import kst_day_bounds


def get_shop_dashboard(db: Session, shop_id: int, now: Optional[datetime] = None) -> ShopDashboard:
    """Reservations created today (KST) and the five most recent ones."""
    start, _ = kst_day_bounds(now)

    today_count = db.query(func.count(models.Reservation.id)).filter(
        models.Reservation.shop_id == shop_id,
        models.Reservation.created_at >= start,
    ).scalar() or 0

    recent = db.query(models.Reservation).filter(
        models.Reservation.shop_id == shop_id
    ).order_by(models.Reservation.created_at.desc(), models.Reservation.id.desc()).limit(5).all()

    return ShopDashboard(
        today_count=today_count,
        recent_reservations=[RecentReservation.model_validate(r) for r in recent],
    )


def get_system_dashboard(db: Session) -> SystemDashboard:
    """Platform-wide counters for the system owner."""
    def count(model, *criteria) -> int:
        return db.query(func.count(model.id)).filter(*criteria).scalar() or 0

    latest = db.query(models.Reservation).options(
        joinedload(models.Reservation.product),
        joinedload(models.Reservation.shop),
    ).order_by(models.Reservation.created_at.desc(), models.Reservation.id.desc()).limit(20).all()

    # Unique customers and status counts are over the latest rows only
    phones = {r.customer_phone for r in latest if r.customer_phone}
    status_counts = Counter(r.status.value for r in latest)

    return SystemDashboard(
        active_shop_count=count(models.Shop, models.Shop.is_active.is_(True)),
        shop_count=count(models.Shop),
        product_count=count(models.Product),
        reservation_count=count(models.Reservation),
        unique_customer_count=len(phones),
        status_counts=dict(status_counts),
        latest_reservations=[
            SystemReservationRow(
                id=r.id,
                customer_name=r.customer_name,
                customer_phone=r.customer_phone,
                status=r.status,
                created_at=r.created_at,
                product_title=r.product.title if r.product else None,
                shop_name=r.shop.name if r.shop else None,
            )
            for r in latest
        ],
    )
