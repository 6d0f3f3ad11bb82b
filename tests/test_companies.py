from datetime import timedelta

import pytest

from orderdesk.core.exceptions import ConflictError
from orderdesk.models import CompanyStatus, utcnow
from orderdesk.schemas import CategoryIn, CompanyRegister
from orderdesk.services import companies, menu
from factories import ADMIN_HEADERS


def test_slugify():
    assert companies.slugify("Pizzaria São João") == "pizzaria-sao-joao"
    assert companies.slugify("  Bar & Grill!! ") == "bar-grill"
    assert companies.slugify("???") == "loja"


async def test_slugs_are_unique(db):
    first = await companies.register_company(db, CompanyRegister(name="Sushi Zen", owner_email="a@zen.com"))
    second = await companies.register_company(db, CompanyRegister(name="Sushi Zen", owner_email="b@zen.com"))
    assert (first.slug, second.slug) == ("sushi-zen", "sushi-zen-2")
    assert first.status == CompanyStatus.PENDING
    assert first.api_token != second.api_token

    with pytest.raises(ConflictError) as exc:
        await companies.register_company(
            db, CompanyRegister(name="Outro Zen", owner_email="c@zen.com", slug="sushi-zen")
        )
    assert exc.value.code == "SLUG_TAKEN"


async def test_register_endpoint_returns_credentials(client):
    response = await client.post(
        "/api/companies/register",
        json={"name": "Hamburgueria do Zé", "owner_email": "ze@burger.com", "phone": "(21) 3333-4444"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["slug"] == "hamburgueria-do-ze"
    assert body["status"] == "pending"
    assert body["api_token"] and body["kds_token"]

    response = await client.get("/api/store/me", headers={"X-Store-Token": body["api_token"]})
    assert response.json()["name"] == "Hamburgueria do Zé"
    assert "api_token" not in response.json()


async def test_admin_requires_token(client):
    response = await client.get("/api/admin/companies")
    assert response.status_code == 401

    response = await client.get("/api/admin/companies", headers={"X-Admin-Token": "wrong"})
    assert response.status_code == 401


async def test_admin_approve_and_suspend(client, db, store_headers, company):
    pending = await companies.register_company(db, CompanyRegister(name="Padaria Sol", owner_email="sol@padaria.com"))

    response = await client.get("/api/admin/companies?status=pending", headers=ADMIN_HEADERS)
    assert [c["slug"] for c in response.json()] == ["padaria-sol"]

    response = await client.post(f"/api/admin/companies/{pending.id}/approve", headers=ADMIN_HEADERS)
    assert response.json()["status"] == "approved"

    response = await client.post(f"/api/admin/companies/{company.id}/suspend", headers=ADMIN_HEADERS)
    assert response.json()["status"] == "suspended"

    # suspended stores lose staff access
    response = await client.get("/api/store/me", headers=store_headers)
    assert response.status_code == 403

    response = await client.post("/api/admin/companies/missing/approve", headers=ADMIN_HEADERS)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "COMPANY_NOT_FOUND"


async def test_admin_revenue_bonus(client, company):
    response = await client.put(
        f"/api/admin/companies/{company.id}/revenue-bonus", json={"amount": 1000}, headers=ADMIN_HEADERS
    )
    assert response.json()["revenue_limit_bonus"] == 1000.0

    response = await client.get(f"/api/admin/companies/{company.id}/subscription", headers=ADMIN_HEADERS)
    assert response.json()["revenue_limit"] == 3000


async def test_settings_and_token_rotation(client, store_headers):
    response = await client.patch(
        "/api/store/settings", json={"is_open": False, "min_order_value": 30}, headers=store_headers
    )
    assert response.json()["is_open"] is False
    assert response.json()["min_order_value"] == 30.0

    response = await client.post("/api/store/token/rotate", headers=store_headers)
    new_token = response.json()["api_token"]
    assert new_token != store_headers["X-Store-Token"]

    assert (await client.get("/api/store/me", headers=store_headers)).status_code == 401
    assert (await client.get("/api/store/me", headers={"X-Store-Token": new_token})).status_code == 200


async def test_suspend_inactive_companies(db, notifier):
    idle = await companies.register_company(db, CompanyRegister(name="Loja Parada", owner_email="dono@parada.com"))
    busy = await companies.register_company(db, CompanyRegister(name="Loja Ativa", owner_email="dono@ativa.com"))
    fresh = await companies.register_company(db, CompanyRegister(name="Loja Nova", owner_email="dono@nova.com"))
    for store in (idle, busy, fresh):
        await companies.set_status(db, store.id, CompanyStatus.APPROVED)
    await menu.create_category(db, busy.id, CategoryIn(name="Cafés"))

    later = utcnow() + timedelta(days=20)
    fresh.updated_at = later - timedelta(days=1)
    await db.commit()

    suspended = await companies.suspend_inactive_companies(db, notifier, now=later)
    assert suspended == ["loja-parada"]
    assert idle.status == CompanyStatus.SUSPENDED
    assert busy.status == CompanyStatus.APPROVED

    assert len(notifier.outbox) == 1
    email = notifier.outbox[0]
    assert email["channel"] == "email"
    assert email["to"] == "dono@parada.com"
    assert "15 dias" in email["body"]
