from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from dongnegage.core.utils.enums import (
    BillingStatus,
    ImportJobStatus,
    ImportRowType,
    ImportSourceType,
    ReservationStatus,
    SubscriptionStatus,
)


def _enum_column(enum_cls):
    """Stores the enum *value* as a plain string."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda obj: [e.value for e in obj],
    )


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )


# ═══════════════════════════════════════════════════════════
# ACCOUNTS & SHOPS
# ═══════════════════════════════════════════════════════════

class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(default=True)

    shop: Mapped[Optional["Shop"]] = relationship(back_populates="owner", uselist=False)


class Shop(Base, TimestampMixin):
    __tablename__ = "shops"

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, index=True)

    # --- Identity ---
    slug: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    kakao_channel_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # --- Platform ---
    is_active: Mapped[bool] = mapped_column(default=True)
    is_system_owner: Mapped[bool] = mapped_column(default=False)

    # --- Billing (mirrored from the snapshot) ---
    billing_status: Mapped[BillingStatus] = mapped_column(
        _enum_column(BillingStatus), default=BillingStatus.TRIALING
    )
    trial_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read_only_mode: Mapped[bool] = mapped_column(default=False)
    plan_code: Mapped[str] = mapped_column(String(50), default="starter_monthly")
    next_billing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    billing_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    owner: Mapped["User"] = relationship(back_populates="shop")
    products: Mapped[List["Product"]] = relationship(back_populates="shop")
    subscription: Mapped[Optional["ShopSubscription"]] = relationship(back_populates="shop", uselist=False)


# ═══════════════════════════════════════════════════════════
# CATALOGUE
# ═══════════════════════════════════════════════════════════

class Product(Base, TimestampMixin):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price > 0", name="ck_products_price_positive"),
        CheckConstraint("reserved_count >= 0", name="ck_products_reserved_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), index=True)

    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[int] = mapped_column(Integer)  # KRW
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    max_quantity: Mapped[int | None] = mapped_column(nullable=True)  # None = unlimited
    max_quantity_per_customer: Mapped[int | None] = mapped_column(nullable=True)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)

    # [{"name": "사이즈", "values": ["S", "M"], "required": true}]
    option_groups: Mapped[list] = mapped_column(JSON, default=list)

    reserved_count: Mapped[int] = mapped_column(default=0)

    shop: Mapped["Shop"] = relationship(back_populates="products")
    images: Mapped[List["ProductImage"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.sort_order",
    )
    inventory_links: Mapped[List["ProductInventoryLink"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
    )
    reservations: Mapped[List["Reservation"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
    )


class ProductImage(Base, TimestampMixin):
    __tablename__ = "product_images"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    image_url: Mapped[str] = mapped_column(String(500))
    sort_order: Mapped[int] = mapped_column(default=0)

    product: Mapped["Product"] = relationship(back_populates="images")


# ═══════════════════════════════════════════════════════════
# RESERVATIONS
# ═══════════════════════════════════════════════════════════

class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("quantity >= 1 AND quantity <= 99", name="ck_reservations_quantity_range"),
        Index("ix_reservations_product_phone", "product_id", "customer_phone"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), index=True)

    customer_name: Mapped[str] = mapped_column(String(100))
    customer_phone: Mapped[str] = mapped_column(String(20), index=True)
    quantity: Mapped[int] = mapped_column(Integer)
    status: Mapped[ReservationStatus] = mapped_column(
        _enum_column(ReservationStatus), default=ReservationStatus.PENDING, index=True
    )
    pickup_date: Mapped[str | None] = mapped_column(String(30), nullable=True)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    privacy_agreed: Mapped[bool] = mapped_column(default=False)
    selected_options: Mapped[dict] = mapped_column(JSON, default=dict)

    # What the reservation took from inventory, restored on cancellation
    inventory_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="SET NULL"), nullable=True
    )
    inventory_consumed: Mapped[int] = mapped_column(default=0)
    inventory_option_value: Mapped[str | None] = mapped_column(String(100), nullable=True)

    product: Mapped["Product"] = relationship(back_populates="reservations")
    shop: Mapped["Shop"] = relationship()


# ═══════════════════════════════════════════════════════════
# INVENTORY
# ═══════════════════════════════════════════════════════════

class InventoryItem(Base, TimestampMixin):
    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("shop_id", "sku", name="uq_inventory_items_shop_sku"),
        CheckConstraint("current_quantity >= 0", name="ck_inventory_items_quantity_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), index=True)

    sku: Mapped[str] = mapped_column(String(100))
    name: Mapped[str] = mapped_column(String(200))
    unit: Mapped[str] = mapped_column(String(30), default="ea")
    current_quantity: Mapped[int] = mapped_column(default=0)
    minimum_quantity: Mapped[int] = mapped_column(default=0)
    is_active: Mapped[bool] = mapped_column(default=True)

    # Option template copied to linked products
    option_groups: Mapped[list] = mapped_column(JSON, default=list)
    # Per-option stock for one of the groups: {"S": 10, "M": 3}
    stock_option_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    option_stocks: Mapped[dict] = mapped_column(JSON, default=dict)

    links: Mapped[List["ProductInventoryLink"]] = relationship(back_populates="inventory_item")

    @property
    def is_low(self) -> bool:
        return self.current_quantity <= self.minimum_quantity


class ProductInventoryLink(Base, TimestampMixin):
    __tablename__ = "product_inventory_links"
    __table_args__ = (
        UniqueConstraint("product_id", "inventory_item_id", name="uq_product_inventory_link"),
        CheckConstraint("consume_per_sale >= 1", name="ck_links_consume_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    inventory_item_id: Mapped[int] = mapped_column(ForeignKey("inventory_items.id", ondelete="CASCADE"), index=True)
    consume_per_sale: Mapped[int] = mapped_column(default=1)
    is_enabled: Mapped[bool] = mapped_column(default=True)

    product: Mapped["Product"] = relationship(back_populates="inventory_links")
    inventory_item: Mapped["InventoryItem"] = relationship(back_populates="links")


class InventoryImportJob(Base, TimestampMixin):
    __tablename__ = "inventory_import_jobs"

    id: Mapped[int] = mapped_column(primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), index=True)
    source_type: Mapped[ImportSourceType] = mapped_column(_enum_column(ImportSourceType))
    dry_run: Mapped[bool] = mapped_column(default=False)
    status: Mapped[ImportJobStatus] = mapped_column(
        _enum_column(ImportJobStatus), default=ImportJobStatus.PROCESSING
    )
    total_rows: Mapped[int] = mapped_column(default=0)
    success_rows: Mapped[int] = mapped_column(default=0)
    failed_rows: Mapped[int] = mapped_column(default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rows: Mapped[List["InventoryImportRow"]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="InventoryImportRow.id",
    )


class InventoryImportRow(Base, TimestampMixin):
    __tablename__ = "inventory_import_rows"

    id: Mapped[int] = mapped_column(primary_key=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("inventory_import_jobs.id", ondelete="CASCADE"), index=True)
    row_type: Mapped[ImportRowType] = mapped_column(_enum_column(ImportRowType))
    row_number: Mapped[int] = mapped_column()
    raw_data: Mapped[dict] = mapped_column(JSON, default=dict)
    error_message: Mapped[str] = mapped_column(Text)

    job: Mapped["InventoryImportJob"] = relationship(back_populates="rows")


# ═══════════════════════════════════════════════════════════
# BILLING
# ═══════════════════════════════════════════════════════════

class ShopSubscription(Base, TimestampMixin):
    __tablename__ = "shop_subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), unique=True, index=True)
    provider: Mapped[str] = mapped_column(String(30), default="toss")
    plan_code: Mapped[str] = mapped_column(String(50), default="starter_monthly")
    status: Mapped[SubscriptionStatus] = mapped_column(
        _enum_column(SubscriptionStatus), default=SubscriptionStatus.ACTIVE
    )
    billing_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    customer_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_payment_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_billing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # `metadata` is reserved on declarative classes
    extra_data: Mapped[dict] = mapped_column("metadata", JSON, default=dict)

    shop: Mapped["Shop"] = relationship(back_populates="subscription")


class ShopBillingEvent(Base, TimestampMixin):
    __tablename__ = "shop_billing_events"
    __table_args__ = (
        Index("ix_billing_events_order", "order_id", "event_type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    shop_id: Mapped[int | None] = mapped_column(ForeignKey("shops.id"), nullable=True, index=True)
    provider: Mapped[str] = mapped_column(String(30), default="toss")
    event_type: Mapped[str] = mapped_column(String(100))
    # pending/success/failed for our own events, the raw provider status for webhooks
    event_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    amount: Mapped[int | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="KRW")
    raw_payload: Mapped[dict] = mapped_column(JSON, default=dict)


# ═══════════════════════════════════════════════════════════
# PUSH & ANALYTICS
# ═══════════════════════════════════════════════════════════

class PushSubscription(Base, TimestampMixin):
    __tablename__ = "push_subscriptions"
    __table_args__ = (
        UniqueConstraint("shop_id", "endpoint", name="uq_push_subscriptions_shop_endpoint"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), index=True)
    endpoint: Mapped[str] = mapped_column(String(1000))
    p256dh: Mapped[str] = mapped_column(String(255))
    auth: Mapped[str] = mapped_column(String(255))
    customer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)


class UsageEvent(Base, TimestampMixin):
    __tablename__ = "usage_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    shop_id: Mapped[int | None] = mapped_column(ForeignKey("shops.id"), nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(100), index=True)
    path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    visitor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    extra_data: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
