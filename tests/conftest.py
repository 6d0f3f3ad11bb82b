"""
Shared fixtures.

The environment is pinned before ``orderdesk`` is imported: development mode
(mock adapters), a throwaway SQLite database and a temporary report folder.
Tables are created and dropped around every test.
"""

import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="orderdesk-tests-")
os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'orderdesk.db')}"
os.environ["DATA_DIRECTORY"] = os.path.join(_TMP, "data")
os.environ["ADMIN_API_KEY"] = "test-admin-key"

import httpx  # noqa: E402
import pytest  # noqa: E402

from orderdesk.core.config import get_settings  # noqa: E402

get_settings.cache_clear()

from orderdesk.database import Base, async_session_maker, engine  # noqa: E402
from orderdesk.main import app  # noqa: E402
from orderdesk.models import CompanyStatus  # noqa: E402
from orderdesk.schemas import CategoryIn, CompanyRegister, DriverCreate, ProductIn  # noqa: E402
from orderdesk.services import companies, dispatch, menu  # noqa: E402
from orderdesk.services.notifications import MockNotificationService, get_notification_service  # noqa: E402
from orderdesk.services.payment import MockPaymentService, get_payment_service  # noqa: E402
from orderdesk.services.realtime import ChangeFeed, get_change_feed  # noqa: E402

@pytest.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db(database):
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def payments():
    return MockPaymentService(failure_rate=0.0, min_latency=0, max_latency=0)


@pytest.fixture
def notifier():
    return MockNotificationService(failure_rate=0.0, latency=0)


@pytest.fixture
def feed():
    return ChangeFeed(queue_size=10)


@pytest.fixture
async def client(database, payments, notifier, feed):
    app.dependency_overrides[get_payment_service] = lambda: payments
    app.dependency_overrides[get_notification_service] = lambda: notifier
    app.dependency_overrides[get_change_feed] = lambda: feed
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
async def company(db):
    """Approved, open store with a published menu and a 5.00 delivery fee."""
    company = await companies.register_company(
        db, CompanyRegister(name="Pizzaria Bella", owner_email="dono@bella.com.br")
    )
    company = await companies.set_status(db, company.id, CompanyStatus.APPROVED)
    company.menu_published = True
    company.delivery_fee = 5.0
    await db.commit()
    return company


@pytest.fixture
def store_headers(company):
    return {"X-Store-Token": company.api_token}


@pytest.fixture
async def products(db, company):
    """A kitchen item (pizza, 40.00) and a ready-made item (soda, 6.00)."""
    category = await menu.create_category(db, company.id, CategoryIn(name="Pizzas"))
    pizza = await menu.create_product(
        db, company.id, ProductIn(category_id=category.id, name="Pizza Margherita", price=40.0)
    )
    soda = await menu.create_product(
        db,
        company.id,
        ProductIn(category_id=category.id, name="Refrigerante", price=6.0, requires_preparation=False),
    )
    return pizza, soda


@pytest.fixture
async def driver(db, company, feed):
    """Available driver earning 7.50 per delivery."""
    driver = await dispatch.create_driver(
        db,
        company.id,
        DriverCreate(driver_name="Carlos Moto", driver_phone="(11) 91234-5678", per_delivery_fee=7.5),
    )
    return await dispatch.set_availability(db, driver, True, feed)

