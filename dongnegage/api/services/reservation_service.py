# dongnegage/api/services/reservation_service.py
"""
Reservation Service
===================

Intake validation, stock-safe reservation creation and status transitions.

Creation and transitions run inside one transaction with the product row
(and the linked inventory item) locked, so concurrent reservations cannot
oversell. Failures are raised as ``ReservationError`` carrying a
``ReservationErrorCode``; routes translate codes into user-facing messages.
"""

import enum
import logging
import re
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dongnegage.core import models
from dongnegage.core.utils.enums import ReservationStatus
from dongnegage.core.utils.kst import as_utc, utcnow
from dongnegage.core.utils.validators import normalize_phone, PHONE_REGEX

logger = logging.getLogger(__name__)

MIN_QUANTITY = 1
MAX_QUANTITY = 99


# ═══════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════

class ReservationErrorCode(str, enum.Enum):
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    PRODUCT_UNAVAILABLE = "PRODUCT_UNAVAILABLE"
    STOCK_EXCEEDED = "STOCK_EXCEEDED"
    PER_CUSTOMER_LIMIT = "PER_CUSTOMER_LIMIT"
    INVENTORY_INACTIVE = "INVENTORY_INACTIVE"
    INVENTORY_SHORTAGE = "INVENTORY_SHORTAGE"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INVALID_TRANSITION = "INVALID_TRANSITION"


class ReservationError(Exception):
    def __init__(self, code: ReservationErrorCode, detail: str = "", max_allowed: Optional[int] = None):
        self.code = code
        self.detail = detail
        self.max_allowed = max_allowed
        super().__init__(f"{code.value}: {detail}" if detail else code.value)


class ReservationInputError(ValueError):
    """Intake validation failure; the message is shown to the customer as-is."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


STOCK_SHORTAGE_MESSAGE = "재고가 부족합니다. 수량을 확인해주세요."
RESERVATION_FAILED_MESSAGE = "예약에 실패했습니다. 잠시 후 다시 시도해주세요."
SERVER_ERROR_MESSAGE = "서버 오류가 발생했습니다. 잠시 후 다시 시도해주세요."

STATUS_CHANGE_MESSAGES = {
    ReservationErrorCode.NOT_FOUND: "예약을 찾을 수 없습니다",
    ReservationErrorCode.FORBIDDEN: "권한이 없습니다",
    ReservationErrorCode.INVALID_TRANSITION: "현재 상태에서는 변경할 수 없습니다",
}
STATUS_CHANGE_FAILED_MESSAGE = "상태 변경에 실패했습니다"

# Customer-facing push text per new status
STATUS_PUSH_MESSAGES = {
    ReservationStatus.CONFIRMED: "예약이 확인되었습니다",
    ReservationStatus.CANCELLED: "예약이 취소되었습니다",
    ReservationStatus.COMPLETED: "예약이 완료되었습니다",
}


def _per_customer_message(max_allowed) -> str:
    if max_allowed:
        return f"1인당 최대 {max_allowed}개까지 예약할 수 있습니다."
    return "1인당 구매 수량 제한을 초과했습니다."


def translate_reservation_error(error: ReservationError) -> tuple[int, str]:
    """(HTTP status, message) for a failed reservation attempt"""
    code = error.code

    if code == ReservationErrorCode.PER_CUSTOMER_LIMIT:
        return 409, _per_customer_message(error.max_allowed)
    if code in (
        ReservationErrorCode.STOCK_EXCEEDED,
        ReservationErrorCode.INVENTORY_SHORTAGE,
        ReservationErrorCode.INVENTORY_INACTIVE,
    ):
        return 409, STOCK_SHORTAGE_MESSAGE
    if code == ReservationErrorCode.PRODUCT_UNAVAILABLE:
        return 409, "예약이 마감된 상품입니다."
    if code == ReservationErrorCode.PRODUCT_NOT_FOUND:
        return 404, "상품을 찾을 수 없습니다"
    return 500, RESERVATION_FAILED_MESSAGE


_MAX_PATTERN = re.compile(r"Max (\d+)", re.IGNORECASE)


def translate_raw_error_message(message: Optional[str]) -> tuple[int, str]:
    """
    Fallback for errors that only carry free text (e.g. raised by a
    database trigger). Recognises the historical substrings.
    """
    text = message or ""

    if "PER_CUSTOMER_LIMIT" in text or "Per customer limit" in text or "per person" in text:
        match = _MAX_PATTERN.search(text)
        return 409, _per_customer_message(match.group(1) if match else None)

    if any(token in text for token in (
        "STOCK_EXCEEDED", "INVENTORY_SHORTAGE", "INVENTORY_INACTIVE", "수량", "quantity", "sold out",
    )):
        return 409, STOCK_SHORTAGE_MESSAGE

    return 500, RESERVATION_FAILED_MESSAGE


# ═══════════════════════════════════════════════════════════
# INTAKE VALIDATION
# ═══════════════════════════════════════════════════════════

def normalize_option_groups(raw) -> list[dict]:
    """
    Usable option groups of a product.

    ``required`` defaults to True; groups without a name or without values
    are dropped.
    """
    groups = []
    for group in raw if isinstance(raw, list) else []:
        if not isinstance(group, dict):
            continue
        name = str(group.get("name") or "").strip()
        values = group.get("values") if isinstance(group.get("values"), list) else []
        values = [str(v) for v in values]
        if not name or not values:
            continue
        groups.append({
            "name": name,
            "values": values,
            "required": group.get("required") is not False,
        })
    return groups


def validate_reservation_fields(
        product_id: Optional[int],
        customer_name: Optional[str],
        customer_phone: Optional[str],
        quantity: Optional[int],
        privacy_agreed: bool,
) -> str:
    """
    Checks the payload in the order customers see the errors.

    Returns:
        The phone number without hyphens.
    """
    if not product_id or not (customer_name or "").strip() or not customer_phone or not quantity:
        raise ReservationInputError("필수 항목을 입력해주세요")

    phone = normalize_phone(customer_phone)
    if not PHONE_REGEX.match(phone):
        raise ReservationInputError("전화번호 형식이 올바르지 않습니다")

    if quantity < MIN_QUANTITY or quantity > MAX_QUANTITY:
        raise ReservationInputError("수량이 올바르지 않습니다")

    if not privacy_agreed:
        raise ReservationInputError("개인정보 동의가 필요합니다")

    return phone


def validate_selected_options(option_groups, selected: dict[str, str]) -> dict[str, str]:
    """Required groups need a value, every value must be one the group offers."""
    cleaned = {}
    for group in normalize_option_groups(option_groups):
        name = group["name"]
        value = (selected or {}).get(name)

        if group["required"] and not value:
            raise ReservationInputError(f"{name} 옵션을 선택해주세요")
        if value and value not in group["values"]:
            raise ReservationInputError(f"{name} 옵션 값이 올바르지 않습니다")
        if value:
            cleaned[name] = value
    return cleaned


# ═══════════════════════════════════════════════════════════
# QUERIES
# ═══════════════════════════════════════════════════════════

def get_product_reserved_quantity(db: Session, product_id: int) -> int:
    """Total quantity held by non-cancelled reservations of a product"""
    total = db.query(func.coalesce(func.sum(models.Reservation.quantity), 0)).filter(
        models.Reservation.product_id == product_id,
        models.Reservation.status != ReservationStatus.CANCELLED,
    ).scalar()
    return int(total or 0)


def get_customer_reserved_quantity(db: Session, product_id: int, customer_phone: str) -> int:
    total = db.query(func.coalesce(func.sum(models.Reservation.quantity), 0)).filter(
        models.Reservation.product_id == product_id,
        models.Reservation.customer_phone == customer_phone,
        models.Reservation.status != ReservationStatus.CANCELLED,
    ).scalar()
    return int(total or 0)


def get_enabled_link(db: Session, product_id: int) -> Optional[models.ProductInventoryLink]:
    return db.query(models.ProductInventoryLink).filter(
        models.ProductInventoryLink.product_id == product_id,
        models.ProductInventoryLink.is_enabled.is_(True),
    ).order_by(models.ProductInventoryLink.updated_at.desc()).first()


def remaining_stock(product: models.Product) -> Optional[int]:
    """None when the product has no quantity cap"""
    if product.max_quantity is None:
        return None
    return max(product.max_quantity - (product.reserved_count or 0), 0)


# ═══════════════════════════════════════════════════════════
# CREATE
# ═══════════════════════════════════════════════════════════

def _consume_inventory(
        db: Session,
        product: models.Product,
        reservation: models.Reservation,
        quantity: int,
        selected_options: dict[str, str],
):
    link = get_enabled_link(db, product.id)
    if not link:
        return

    item = db.query(models.InventoryItem).filter(
        models.InventoryItem.id == link.inventory_item_id
    ).with_for_update().first()

    if not item or not item.is_active:
        raise ReservationError(ReservationErrorCode.INVENTORY_INACTIVE, f"inventory item {link.inventory_item_id}")

    needed = (link.consume_per_sale or 1) * quantity
    stocks = dict(item.option_stocks or {})
    option_value = selected_options.get(item.stock_option_name) if item.stock_option_name else None

    if option_value is not None and option_value in stocks:
        available = int(stocks[option_value] or 0)
        if available < needed:
            raise ReservationError(
                ReservationErrorCode.INVENTORY_SHORTAGE,
                f"{item.sku}[{option_value}] has {available}, needs {needed}",
            )
        stocks[option_value] = available - needed
        item.option_stocks = stocks
        item.current_quantity = max((item.current_quantity or 0) - needed, 0)
        reservation.inventory_option_value = option_value
    else:
        if (item.current_quantity or 0) < needed:
            raise ReservationError(
                ReservationErrorCode.INVENTORY_SHORTAGE,
                f"{item.sku} has {item.current_quantity}, needs {needed}",
            )
        item.current_quantity -= needed

    reservation.inventory_item_id = item.id
    reservation.inventory_consumed = needed


def create_reservation(
        db: Session,
        *,
        product_id: int,
        customer_name: str,
        customer_phone: str,
        quantity: int,
        pickup_date: Optional[str] = None,
        memo: Optional[str] = None,
        privacy_agreed: bool = True,
        selected_options: Optional[dict[str, str]] = None,
        now: Optional[datetime] = None,
) -> models.Reservation:
    """
    Creates a pending reservation atomically.

    Order of checks: product availability, remaining stock, per-customer
    cap, linked inventory. Nothing is written unless every check passes.

    Raises:
        ReservationError: with the code of the first failing check
    """
    now = now or utcnow()
    selected_options = selected_options or {}

    try:
        product = db.query(models.Product).filter(
            models.Product.id == product_id
        ).with_for_update().first()

        if not product:
            raise ReservationError(ReservationErrorCode.PRODUCT_NOT_FOUND, f"product {product_id}")

        deadline = as_utc(product.deadline)
        if not product.is_active or (deadline is not None and deadline < now):
            raise ReservationError(ReservationErrorCode.PRODUCT_UNAVAILABLE, f"product {product_id}")

        remaining = remaining_stock(product)
        if remaining is not None and quantity > remaining:
            raise ReservationError(
                ReservationErrorCode.STOCK_EXCEEDED,
                f"requested {quantity}, remaining {remaining}",
            )

        cap = product.max_quantity_per_customer
        if cap:
            already = get_customer_reserved_quantity(db, product.id, customer_phone)
            if already + quantity > cap:
                raise ReservationError(
                    ReservationErrorCode.PER_CUSTOMER_LIMIT,
                    f"Max {cap} per person, already {already}",
                    max_allowed=cap,
                )

        reservation = models.Reservation(
            product_id=product.id,
            shop_id=product.shop_id,
            customer_name=customer_name.strip(),
            customer_phone=customer_phone,
            quantity=quantity,
            status=ReservationStatus.PENDING,
            pickup_date=pickup_date or None,
            memo=(memo or "").strip() or None,
            privacy_agreed=privacy_agreed,
            selected_options=selected_options,
        )

        _consume_inventory(db, product, reservation, quantity, selected_options)

        product.reserved_count = (product.reserved_count or 0) + quantity
        db.add(reservation)
        db.commit()
    except ReservationError as e:
        db.rollback()
        logger.info(f"⚠️ Reservation rejected for product {product_id}: {e}")
        raise
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(reservation)
    logger.info(f"✅ Reservation {reservation.id} created (product {product_id}, qty {quantity})")
    return reservation


# ═══════════════════════════════════════════════════════════
# STATUS TRANSITIONS
# ═══════════════════════════════════════════════════════════

# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.CONFIRMED: frozenset({ReservationStatus.PENDING}),
    ReservationStatus.CANCELLED: frozenset({
        ReservationStatus.PENDING,
        ReservationStatus.CONFIRMED,
        ReservationStatus.COMPLETED,
    }),
    ReservationStatus.COMPLETED: frozenset({ReservationStatus.CONFIRMED}),
}


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return current in ALLOWED_TRANSITIONS.get(target, frozenset())


def _release_stock(db: Session, reservation: models.Reservation):
    product = db.query(models.Product).filter(
        models.Product.id == reservation.product_id
    ).with_for_update().first()
    if product:
        product.reserved_count = max((product.reserved_count or 0) - reservation.quantity, 0)

    if reservation.inventory_item_id and reservation.inventory_consumed:
        item = db.query(models.InventoryItem).filter(
            models.InventoryItem.id == reservation.inventory_item_id
        ).with_for_update().first()
        if item:
            item.current_quantity = (item.current_quantity or 0) + reservation.inventory_consumed
            option_value = reservation.inventory_option_value
            if option_value is not None:
                stocks = dict(item.option_stocks or {})
                stocks[option_value] = int(stocks.get(option_value) or 0) + reservation.inventory_consumed
                item.option_stocks = stocks
        reservation.inventory_consumed = 0


def transition_reservation_status(
        db: Session,
        reservation_id: int,
        shop_id: int,
        new_status: ReservationStatus,
) -> models.Reservation:
    """
    Moves a reservation to ``new_status`` if the transition table allows it.

    Cancelling gives the quantity back to the product and restocks exactly
    what the reservation took from inventory.
    """
    try:
        reservation = db.query(models.Reservation).filter(
            models.Reservation.id == reservation_id
        ).with_for_update().first()

        if not reservation:
            raise ReservationError(ReservationErrorCode.NOT_FOUND, f"reservation {reservation_id}")
        if reservation.shop_id != shop_id:
            raise ReservationError(ReservationErrorCode.FORBIDDEN, f"reservation {reservation_id}")

        current = ReservationStatus(reservation.status)
        if not can_transition(current, new_status):
            raise ReservationError(
                ReservationErrorCode.INVALID_TRANSITION,
                f"{current.value} -> {new_status.value}",
            )

        if new_status == ReservationStatus.CANCELLED:
            _release_stock(db, reservation)

        reservation.status = new_status
        db.commit()
    except ReservationError:
        db.rollback()
        raise
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(f"🔄 Reservation {reservation_id}: {current.value} -> {new_status.value}")
    return reservation


def bulk_transition(
        db: Session,
        shop_id: int,
        reservation_ids: list[int],
        new_status: ReservationStatus,
) -> dict:
    """
    Transitions each owned reservation in its own transaction.

    Partial success is expected; the summary lists each distinct failure once.
    """
    requested = list(dict.fromkeys(reservation_ids))
    owned_ids = [
        row.id for row in db.query(models.Reservation.id).filter(
            models.Reservation.shop_id == shop_id,
            models.Reservation.id.in_(requested),
        ).all()
    ]
    owned = set(owned_ids)

    succeeded = 0
    failures: list[str] = []

    for reservation_id in requested:
        if reservation_id not in owned:
            failures.append(STATUS_CHANGE_MESSAGES[ReservationErrorCode.NOT_FOUND])
            continue
        try:
            transition_reservation_status(db, reservation_id, shop_id, new_status)
            succeeded += 1
        except ReservationError as e:
            failures.append(STATUS_CHANGE_MESSAGES.get(e.code, STATUS_CHANGE_FAILED_MESSAGE))
        except SQLAlchemyError as e:
            logger.error(f"❌ Bulk transition failed for reservation {reservation_id}: {e}", exc_info=True)
            failures.append(STATUS_CHANGE_FAILED_MESSAGE)

    failed = len(failures)
    if failed == 0:
        message = f"{succeeded}건의 상태를 변경했습니다"
    else:
        reasons = ", ".join(dict.fromkeys(failures))
        message = f"{succeeded}건 성공, {failed}건 실패 ({reasons})"

    return {
        "requested": len(requested),
        "succeeded": succeeded,
        "failed": failed,
        "message": message,
    }
