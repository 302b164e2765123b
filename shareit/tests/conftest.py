import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shareit.common.enums import OrderStatus, TransactionType, UserRole
from shareit.common.security import create_access_token
from shareit.config import settings
from shareit.db.base import Base
from shareit.db.models import *  # noqa: F401,F403 - ensure all models loaded
from shareit.db.models.order import Order, OrderItem
from shareit.db.models.product import Product
from shareit.db.models.user import User
from shareit.integrations.storage import EvidenceStorageClient

# One in-memory SQLite database per test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


# Make JSONB render as JSON for SQLite
@event.listens_for(Base.metadata, "before_create")
def _remap_jsonb(target, connection, **kw):
    if connection.dialect.name == "sqlite":
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, JSONB):
                    column.type = JSON()


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs behave as on PostgreSQL
    @event.listens_for(engine.sync_engine, "connect")
    def _no_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def storage(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "STORAGE_BACKEND", "local")
    monkeypatch.setattr(settings, "STORAGE_LOCAL_PATH", str(tmp_path / "storage"))
    return EvidenceStorageClient()


@pytest.fixture
async def client(db_session, storage):
    from shareit.api.deps import get_db, get_storage
    from shareit.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _make_user(db: AsyncSession, role: UserRole, name: str) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"{role.value}_{uuid.uuid4().hex[:8]}@test.com",
        full_name=name,
        role=role.value,
    )
    db.add(user)
    await db.flush()
    return user


@pytest.fixture
async def customer_user(db_session):
    return await _make_user(db_session, UserRole.CUSTOMER, "Test Customer")


@pytest.fixture
async def other_customer(db_session):
    return await _make_user(db_session, UserRole.CUSTOMER, "Other Customer")


@pytest.fixture
async def provider_user(db_session):
    return await _make_user(db_session, UserRole.PROVIDER, "Test Provider")


@pytest.fixture
async def admin_user(db_session):
    return await _make_user(db_session, UserRole.ADMIN, "Test Admin")


def _headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture
def customer_headers(customer_user):
    return _headers(customer_user)


@pytest.fixture
def provider_headers(provider_user):
    return _headers(provider_user)


@pytest.fixture
def admin_headers(admin_user):
    return _headers(admin_user)


@pytest.fixture
def make_order(db_session, customer_user, provider_user):
    """Build an order with one line per entry in ``lines``.

    Each line is ``(transaction_type, quantity, deposit_per_unit)``.
    Returns ``(order_id, [order_item_id, ...])``.
    """

    async def _make(
        status: OrderStatus = OrderStatus.RETURNING,
        lines: list[tuple[TransactionType, int, str]] | None = None,
        rental_start: datetime | None = None,
        delivered_at: datetime | None = None,
    ) -> tuple[uuid.UUID, list[uuid.UUID]]:
        lines = lines or [(TransactionType.RENTAL, 1, "500000")]
        now = datetime.now(timezone.utc)
        order = Order(
            id=uuid.uuid4(),
            customer_id=customer_user.id,
            provider_id=provider_user.id,
            status=status.value,
            rental_start=rental_start if rental_start is not None else now - timedelta(days=3),
            rental_end=now + timedelta(days=2),
            delivered_at=delivered_at,
        )
        db_session.add(order)

        item_ids = []
        for index, (tx_type, quantity, deposit) in enumerate(lines):
            product = Product(
                id=uuid.uuid4(),
                provider_id=provider_user.id,
                name=f"Silk Ao Dai #{index + 1}",
                image_url=f"/images/ao-dai-{index + 1}.jpg",
                value=Decimal("2000000"),
            )
            item = OrderItem(
                id=uuid.uuid4(),
                order_id=order.id,
                product_id=product.id,
                transaction_type=tx_type.value,
                quantity=quantity,
                deposit_per_unit=Decimal(deposit),
            )
            db_session.add_all([product, item])
            item_ids.append(item.id)

        await db_session.flush()
        return order.id, item_ids

    return _make


@pytest.fixture(autouse=True)
def mock_celery_tasks():
    """Mock Celery task.delay() calls to prevent actual task execution in tests."""
    with patch("shareit.tasks.settlement_tasks.settle_violation.delay") as settle_delay:
        yield settle_delay
