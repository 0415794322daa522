"""
Reservation service tests
=========================
Intake validation, stock-safe creation, inventory consumption and status
transitions.
"""

from datetime import timedelta

import pytest

from dongnegage.api.services.reservation_service import (
    STOCK_SHORTAGE_MESSAGE,
    ReservationError,
    ReservationErrorCode,
    ReservationInputError,
    bulk_transition,
    can_transition,
    create_reservation,
    normalize_option_groups,
    translate_raw_error_message,
    translate_reservation_error,
    transition_reservation_status,
    validate_reservation_fields,
    validate_selected_options,
)
from dongnegage.core import models
from dongnegage.core.utils.enums import ReservationStatus


def reserve(db, product, quantity=1, phone="01012345678", **kwargs):
    return create_reservation(
        db,
        product_id=product.id,
        customer_name="김손님",
        customer_phone=phone,
        quantity=quantity,
        **kwargs,
    )


def link_inventory(db, product, item, consume_per_sale=1):
    link = models.ProductInventoryLink(
        product_id=product.id,
        inventory_item_id=item.id,
        consume_per_sale=consume_per_sale,
        is_enabled=True,
    )
    db.add(link)
    db.commit()
    return link


# ═══════════════════════════════════════════════════════════
# INTAKE VALIDATION
# ═══════════════════════════════════════════════════════════

class TestIntakeValidation:

    def test_returns_phone_without_hyphens(self):
        assert validate_reservation_fields(1, "김손님", "010-1234-5678", 2, True) == "01012345678"

    @pytest.mark.parametrize("args,message", [
        ((None, "김손님", "01012345678", 1, True), "필수 항목을 입력해주세요"),
        ((1, "  ", "01012345678", 1, True), "필수 항목을 입력해주세요"),
        ((1, "김손님", "02-123-4567", 1, True), "전화번호 형식이 올바르지 않습니다"),
        ((1, "김손님", "01012345678", 100, True), "수량이 올바르지 않습니다"),
        ((1, "김손님", "01012345678", 1, False), "개인정보 동의가 필요합니다"),
    ])
    def test_messages_in_display_order(self, args, message):
        with pytest.raises(ReservationInputError) as exc:
            validate_reservation_fields(*args)
        assert exc.value.message == message

    def test_option_groups_default_to_required(self):
        groups = normalize_option_groups([
            {"name": "사이즈", "values": ["S", "M"]},
            {"name": "포장", "values": ["선물"], "required": False},
            {"name": "", "values": ["x"]},
            {"name": "빈 그룹", "values": []},
        ])
        assert groups == [
            {"name": "사이즈", "values": ["S", "M"], "required": True},
            {"name": "포장", "values": ["선물"], "required": False},
        ]

    def test_required_option_must_be_selected(self):
        groups = [{"name": "사이즈", "values": ["S", "M"], "required": True}]
        with pytest.raises(ReservationInputError) as exc:
            validate_selected_options(groups, {})
        assert exc.value.message == "사이즈 옵션을 선택해주세요"

    def test_unknown_option_value_is_rejected(self):
        groups = [{"name": "사이즈", "values": ["S", "M"]}]
        with pytest.raises(ReservationInputError):
            validate_selected_options(groups, {"사이즈": "XL"})

    def test_optional_group_may_be_skipped(self):
        groups = [{"name": "포장", "values": ["선물"], "required": False}]
        assert validate_selected_options(groups, {"기타": "무시"}) == {}


# ═══════════════════════════════════════════════════════════
# CREATE
# ═══════════════════════════════════════════════════════════

class TestCreateReservation:

    def test_creates_pending_reservation_and_counts_stock(self, db, product):
        reservation = reserve(db, product, quantity=2, memo="  문 앞에 두세요 ")

        assert reservation.status == ReservationStatus.PENDING
        assert reservation.memo == "문 앞에 두세요"
        assert reservation.shop_id == product.shop_id
        db.refresh(product)
        assert product.reserved_count == 2

    def test_stock_shortage_beats_per_customer_cap(self, db, product):
        """10 max, 8 reserved, 5 per person: 3 more fails on stock, 2 more succeeds."""
        product.reserved_count = 8
        db.commit()

        with pytest.raises(ReservationError) as exc:
            reserve(db, product, quantity=3)
        assert exc.value.code == ReservationErrorCode.STOCK_EXCEEDED
        assert translate_reservation_error(exc.value) == (409, STOCK_SHORTAGE_MESSAGE)

        reserve(db, product, quantity=2)
        db.refresh(product)
        assert product.reserved_count == 10

    def test_per_customer_cap_counts_earlier_reservations(self, db, product):
        reserve(db, product, quantity=4)

        with pytest.raises(ReservationError) as exc:
            reserve(db, product, quantity=2)

        assert exc.value.code == ReservationErrorCode.PER_CUSTOMER_LIMIT
        assert translate_reservation_error(exc.value) == (409, "1인당 최대 5개까지 예약할 수 있습니다.")

        # A different customer is not affected
        reserve(db, product, quantity=2, phone="01099998888")

    def test_cancelled_reservations_do_not_count_toward_cap(self, db, product):
        first = reserve(db, product, quantity=5)
        transition_reservation_status(db, first.id, product.shop_id, ReservationStatus.CANCELLED)

        assert reserve(db, product, quantity=5).quantity == 5

    def test_expired_product_is_unavailable(self, db, product, now):
        product.deadline = now - timedelta(minutes=1)
        db.commit()

        with pytest.raises(ReservationError) as exc:
            reserve(db, product)
        assert exc.value.code == ReservationErrorCode.PRODUCT_UNAVAILABLE
        assert translate_reservation_error(exc.value)[0] == 409

    def test_inactive_product_is_unavailable(self, db, product):
        product.is_active = False
        db.commit()

        with pytest.raises(ReservationError) as exc:
            reserve(db, product)
        assert exc.value.code == ReservationErrorCode.PRODUCT_UNAVAILABLE

    def test_missing_product(self, db, shop):
        with pytest.raises(ReservationError) as exc:
            create_reservation(db, product_id=999, customer_name="김손님",
                               customer_phone="01012345678", quantity=1)
        assert exc.value.code == ReservationErrorCode.PRODUCT_NOT_FOUND

    def test_unlimited_product_has_no_stock_check(self, db, product):
        product.max_quantity = None
        product.max_quantity_per_customer = None
        db.commit()

        assert reserve(db, product, quantity=99).quantity == 99


class TestInventoryConsumption:

    def test_consumes_per_sale_multiple(self, db, product, inventory_item):
        link_inventory(db, product, inventory_item, consume_per_sale=2)

        reservation = reserve(db, product, quantity=2)

        db.refresh(inventory_item)
        assert inventory_item.current_quantity == 1
        assert reservation.inventory_consumed == 4
        assert reservation.inventory_item_id == inventory_item.id

    def test_shortage_leaves_everything_untouched(self, db, product, inventory_item):
        link_inventory(db, product, inventory_item, consume_per_sale=2)

        with pytest.raises(ReservationError) as exc:
            reserve(db, product, quantity=3)

        assert exc.value.code == ReservationErrorCode.INVENTORY_SHORTAGE
        db.refresh(inventory_item)
        db.refresh(product)
        assert inventory_item.current_quantity == 5
        assert product.reserved_count == 0
        assert db.query(models.Reservation).count() == 0

    def test_inactive_item_blocks_reservation(self, db, product, inventory_item):
        link_inventory(db, product, inventory_item)
        inventory_item.is_active = False
        db.commit()

        with pytest.raises(ReservationError) as exc:
            reserve(db, product)
        assert exc.value.code == ReservationErrorCode.INVENTORY_INACTIVE

    def test_option_stock_bucket_is_consumed_and_restored(self, db, product, inventory_item):
        inventory_item.option_groups = [{"name": "컬러", "values": ["노랑", "파랑"], "required": True}]
        inventory_item.stock_option_name = "컬러"
        inventory_item.option_stocks = {"노랑": 3, "파랑": 1}
        inventory_item.current_quantity = 4
        db.commit()
        link_inventory(db, product, inventory_item)

        with pytest.raises(ReservationError):
            reserve(db, product, quantity=2, selected_options={"컬러": "파랑"})

        reservation = reserve(db, product, quantity=1, selected_options={"컬러": "파랑"})
        db.refresh(inventory_item)
        assert inventory_item.option_stocks == {"노랑": 3, "파랑": 0}
        assert inventory_item.current_quantity == 3
        assert reservation.inventory_option_value == "파랑"

        transition_reservation_status(db, reservation.id, product.shop_id, ReservationStatus.CANCELLED)
        db.refresh(inventory_item)
        assert inventory_item.option_stocks == {"노랑": 3, "파랑": 1}
        assert inventory_item.current_quantity == 4


# ═══════════════════════════════════════════════════════════
# TRANSITIONS
# ═══════════════════════════════════════════════════════════

class TestTransitions:

    @pytest.mark.parametrize("current,target,allowed", [
        (ReservationStatus.PENDING, ReservationStatus.CONFIRMED, True),
        (ReservationStatus.PENDING, ReservationStatus.CANCELLED, True),
        (ReservationStatus.PENDING, ReservationStatus.COMPLETED, False),
        (ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED, True),
        (ReservationStatus.COMPLETED, ReservationStatus.CANCELLED, True),
        (ReservationStatus.CANCELLED, ReservationStatus.CONFIRMED, False),
        (ReservationStatus.CANCELLED, ReservationStatus.PENDING, False),
    ])
    def test_transition_table(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_cancel_returns_stock_and_inventory(self, db, product, inventory_item):
        link_inventory(db, product, inventory_item)
        reservation = reserve(db, product, quantity=3)

        transition_reservation_status(db, reservation.id, product.shop_id, ReservationStatus.CANCELLED)

        db.refresh(product)
        db.refresh(inventory_item)
        assert product.reserved_count == 0
        assert inventory_item.current_quantity == 5
        assert reservation.inventory_consumed == 0

    def test_other_shop_is_forbidden(self, db, product, other_shop):
        reservation = reserve(db, product)

        with pytest.raises(ReservationError) as exc:
            transition_reservation_status(db, reservation.id, other_shop.id, ReservationStatus.CONFIRMED)
        assert exc.value.code == ReservationErrorCode.FORBIDDEN

    def test_invalid_transition_is_rejected(self, db, product):
        reservation = reserve(db, product)

        with pytest.raises(ReservationError) as exc:
            transition_reservation_status(db, reservation.id, product.shop_id, ReservationStatus.COMPLETED)
        assert exc.value.code == ReservationErrorCode.INVALID_TRANSITION

    def test_bulk_reports_partial_failures(self, db, product):
        first = reserve(db, product)
        second = reserve(db, product, phone="01099998888")
        transition_reservation_status(db, second.id, product.shop_id, ReservationStatus.CONFIRMED)

        result = bulk_transition(db, product.shop_id, [first.id, second.id, 999], ReservationStatus.CONFIRMED)

        assert result["requested"] == 3
        assert result["succeeded"] == 1
        assert result["failed"] == 2
        assert result["message"] == "1건 성공, 2건 실패 (현재 상태에서는 변경할 수 없습니다, 예약을 찾을 수 없습니다)"

    def test_bulk_all_succeeded(self, db, product):
        ids = [reserve(db, product).id, reserve(db, product, phone="01099998888").id]

        result = bulk_transition(db, product.shop_id, ids, ReservationStatus.CANCELLED)

        assert result["message"] == "2건의 상태를 변경했습니다"


class TestRawErrorTranslation:

    def test_per_person_text(self):
        assert translate_raw_error_message("Per customer limit exceeded (Max 3 per person)") == (
            409, "1인당 최대 3개까지 예약할 수 있습니다.")

    def test_stock_text(self):
        assert translate_raw_error_message("STOCK_EXCEEDED: sold out") == (409, STOCK_SHORTAGE_MESSAGE)

    def test_unknown_text(self):
        assert translate_raw_error_message(None)[0] == 500
