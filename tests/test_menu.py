from orderdesk.models import CompanyStatus
from orderdesk.schemas import CategoryIn, CompanyRegister, ProductIn
from orderdesk.services import companies, menu
from factories import checkout_body


async def test_public_menu_groups_active_products(client, db, company, products):
    drinks = await menu.create_category(db, company.id, CategoryIn(name="Bebidas", sort_order=-1))
    await menu.create_product(db, company.id, ProductIn(category_id=drinks.id, name="Suco", price=8.0, is_active=False))
    await menu.create_category(db, company.id, CategoryIn(name="Sobremesas"))

    response = await client.get(f"/api/public/{company.slug}/menu")
    assert response.status_code == 200
    body = response.json()
    assert body["company_name"] == "Pizzaria Bella"
    assert body["delivery_fee"] == 5.0
    # categories without active products are left out
    assert [c["category"]["name"] for c in body["categories"]] == ["Pizzas"]
    assert [p["name"] for p in body["categories"][0]["products"]] == ["Pizza Margherita", "Refrigerante"]


async def test_menu_hidden_until_approved_and_published(client, db):
    pending = await companies.register_company(db, CompanyRegister(name="Cantina Nova", owner_email="ola@cantina.com"))
    response = await client.get(f"/api/public/{pending.slug}/menu")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "MENU_NOT_FOUND"

    await companies.set_status(db, pending.id, CompanyStatus.APPROVED)
    response = await client.get(f"/api/public/{pending.slug}/menu")
    assert response.status_code == 404


async def test_promotional_price_used_at_checkout(client, company, products, store_headers):
    pizza, _ = products
    await client.patch(
        f"/api/store/products/{pizza.id}",
        json={"promotional_price": 35.0},
        headers=store_headers,
    )
    response = await client.post(f"/api/public/{company.slug}/orders", json=checkout_body(products))
    assert response.json()["order"]["subtotal"] == 35.0


async def test_product_in_foreign_category_rejected(client, db, company, store_headers):
    other = await companies.register_company(db, CompanyRegister(name="Outra Loja", owner_email="x@outra.com"))
    foreign = await menu.create_category(db, other.id, CategoryIn(name="Deles"))

    response = await client.post(
        "/api/store/products",
        json={"category_id": foreign.id, "name": "Intruso", "price": 1.0},
        headers=store_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_CATEGORY"


async def test_category_crud_endpoints(client, store_headers):
    response = await client.post("/api/store/categories", json={"name": "Lanches"}, headers=store_headers)
    assert response.status_code == 201
    category = response.json()

    response = await client.patch(
        f"/api/store/categories/{category['id']}", json={"sort_order": 3}, headers=store_headers
    )
    assert response.json()["sort_order"] == 3

    response = await client.delete(f"/api/store/categories/{category['id']}", headers=store_headers)
    assert response.status_code == 204
    assert (await client.get("/api/store/categories", headers=store_headers)).json() == []
