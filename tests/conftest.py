import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timezone  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import store.models  # noqa: E402,F401
from store.core.config import settings  # noqa: E402
from store.core.db import Base, get_db  # noqa: E402
from store.core.security import create_access_token, hash_password  # noqa: E402
from store.models.coupon import Coupon  # noqa: E402
from store.models.user import User  # noqa: E402
from store.services.container import build_services  # noqa: E402
from store.services.coupons import CouponValidator  # noqa: E402
from store.services.orders import OrderService  # noqa: E402
from store.core.tasks import DetachedTaskRunner  # noqa: E402


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_order_confirmation(self, user_id, order):
        self.sent.append((user_id, order))
        if self.fail:
            raise RuntimeError("mail server down")


async def _sqlite_engine(url: str, **kwargs):
    eng = create_async_engine(url, **kwargs)

    @event.listens_for(eng.sync_engine, "connect")
    def _foreign_keys_on(dbapi_conn, _record):
        # SQLite ignores ON DELETE rules unless asked
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return eng


@pytest.fixture
async def engine():
    eng = await _sqlite_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield eng
    await eng.dispose()


@pytest.fixture
async def file_session_factory(tmp_path):
    """Sessions on their own connections, for tests that race real transactions."""
    eng = await _sqlite_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'store.db'}",
        # writers queue on the database lock instead of failing
        connect_args={"timeout": 30},
    )
    yield async_sessionmaker(eng, expire_on_commit=False)
    await eng.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(balance: int = 0, role: str = "user", email: str | None = None) -> User:
        counter["n"] += 1
        user = User(
            username=f"user{counter['n']}",
            password_hash=hash_password("secret123"),
            role=role,
            full_name=f"User {counter['n']}",
            email=email,
            wallet_balance=balance,
            is_active=True,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_coupon(db):
    async def _make(
        code: str = "SAVE10",
        type_: str = "PERCENTAGE",
        value: int = 10,
        min_amount: int = 0,
        max_discount: int | None = None,
        usage_limit: int | None = None,
        used_count: int = 0,
        is_active: bool = True,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
    ) -> Coupon:
        coupon = Coupon(
            code=code,
            type=type_,
            value=value,
            min_amount=min_amount,
            max_discount=max_discount,
            usage_limit=usage_limit,
            used_count=used_count,
            is_active=is_active,
            valid_from=valid_from,
            valid_until=valid_until,
        )
        db.add(coupon)
        await db.commit()
        await db.refresh(coupon)
        return coupon

    return _make


@pytest.fixture
def fixed_now():
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def validator(fixed_now):
    return CouponValidator(min_order_amount=1_000, clock=lambda: fixed_now)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def tasks():
    return DetachedTaskRunner()


@pytest.fixture
def order_service(validator, notifier, tasks):
    return OrderService(
        validator=validator,
        notifier=notifier,
        tasks=tasks,
        min_amount=1_000,
        max_amount=50_000_000,
        max_quantity=100,
    )


@pytest.fixture
def services(notifier):
    return build_services(settings, notifier=notifier)


@pytest.fixture
async def client(session_factory, services):
    from store.main import create_app

    app = create_app(settings, services=services)

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await services.tasks.drain(timeout=1)


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id=user.id, role=user.role)}"}

    return _headers
