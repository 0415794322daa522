"""
Shared fixtures
===============
In-memory SQLite database, FastAPI TestClient and a signed-in shop owner.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-0123456789"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "true"
os.environ.pop("REDIS_URL", None)
os.environ.pop("TOSS_WEBHOOK_SECRET", None)

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dongnegage.core import models
from dongnegage.core.database import get_db
from dongnegage.core.rate_limit.rate_limit import limiter, rate_limit_storage
from dongnegage.core.security.security import create_access_token, get_password_hash
from dongnegage.core.utils.enums import BillingStatus
from dongnegage.main import app

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

OWNER_PASSWORD = "password123"


# ═══════════════════════════════════════════════════════════
# DATABASE
# ═══════════════════════════════════════════════════════════

@pytest.fixture
def db():
    models.Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        models.Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    rate_limit_storage.reset()
    limiter.reset()
    yield


# ═══════════════════════════════════════════════════════════
# DOMAIN FIXTURES
# ═══════════════════════════════════════════════════════════

@pytest.fixture
def now():
    return datetime.now(timezone.utc)


def make_shop(db, email: str, slug: str, now: datetime, trial_days: int = 30, **overrides) -> models.Shop:
    user = models.User(email=email, hashed_password=get_password_hash(OWNER_PASSWORD))
    db.add(user)
    db.flush()

    shop = models.Shop(
        owner_id=user.id,
        slug=slug,
        name=overrides.pop("name", "궁구 정육점"),
        is_active=True,
        billing_status=BillingStatus.TRIALING,
        trial_started_at=now - timedelta(days=1),
        trial_ends_at=now + timedelta(days=trial_days),
        **overrides,
    )
    db.add(shop)
    db.commit()
    return shop


@pytest.fixture
def shop(db, now):
    return make_shop(db, "owner@example.com", "gunggu", now)


@pytest.fixture
def other_shop(db, now):
    return make_shop(db, "other@example.com", "other-shop", now, name="다른 가게")


@pytest.fixture
def auth_headers(shop):
    token = create_access_token({"sub": shop.owner.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def product(db, shop):
    product = models.Product(
        shop_id=shop.id,
        title="한우 선물세트",
        description="1++ 등심",
        price=50000,
        max_quantity=10,
        max_quantity_per_customer=5,
        option_groups=[],
        reserved_count=0,
        is_active=True,
    )
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def inventory_item(db, shop):
    item = models.InventoryItem(
        shop_id=shop.id,
        sku="ING-001",
        name="한우 원재료",
        unit="kg",
        current_quantity=5,
        minimum_quantity=1,
        option_groups=[],
        option_stocks={},
    )
    db.add(item)
    db.commit()
    return item
