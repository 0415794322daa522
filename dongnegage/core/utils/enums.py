import enum


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BillingStatus(str, enum.Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class ImportJobStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportSourceType(str, enum.Enum):
    XLSX = "xlsx"
    CSV = "csv"
    SHEET = "sheet"  # single-sheet upload from the inventory form


class ImportRowType(str, enum.Enum):
    INVENTORY_ITEM = "inventory_item"
    PRODUCT_MAPPING = "product_mapping"


class BillingEventStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    RECEIVED = "received"


# Korean labels shown on the admin console
RESERVATION_STATUS_LABELS = {
    ReservationStatus.PENDING: "대기",
    ReservationStatus.CONFIRMED: "확인",
    ReservationStatus.CANCELLED: "취소",
    ReservationStatus.COMPLETED: "완료",
}
