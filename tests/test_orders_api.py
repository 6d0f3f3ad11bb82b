from datetime import timedelta

from orderdesk.models import (
    ActivityLog,
    Coupon,
    Order,
    OrderSource,
    OrderStatus,
    PaymentStatus,
    SessionStatus,
    TableSession,
    utcnow,
)
from orderdesk.schemas import CouponCreate, TableIn
from orderdesk.services import coupons, tables
from orderdesk.services.payment import RefundResult
from orderdesk.services.realtime import company_channel
from sqlalchemy import select
from factories import address_body, checkout_body


async def place(client, company, products, **kwargs):
    response = await client.post(f"/api/public/{company.slug}/orders", json=checkout_body(products, **kwargs))
    assert response.status_code == 201, response.text
    return response.json()["order"]


async def pos_order(client, store_headers, products, **extra):
    pizza, soda = products
    body = {
        "customer_name": "Balcão",
        "items": [{"product_id": pizza.id, "quantity": 1}, {"product_id": soda.id, "quantity": 2}],
        **extra,
    }
    response = await client.post("/api/store/orders", json=body, headers=store_headers)
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# CHECKOUT
# =============================================================================

async def test_delivery_checkout(client, company, products, feed):
    queue = feed.subscribe(company_channel(company.id))
    response = await client.post(f"/api/public/{company.slug}/orders", json=checkout_body(products, quantity=2))

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Pedido realizado com sucesso!"
    assert body["client_secret"] is None

    order = body["order"]
    assert order["status"] == "pending"
    assert order["source"] == "online"
    assert order["subtotal"] == 80.0
    assert order["delivery_fee"] == 5.0
    assert order["total"] == 85.0
    assert order["delivery_address_id"] is not None
    assert order["items"][0]["product_name"] == "Pizza Margherita"
    assert order["items"][0]["total_price"] == 80.0

    event = queue.get_nowait()
    assert (event["table"], event["event"]) == ("orders", "INSERT")
    assert event["new"]["id"] == order["id"]


async def test_pickup_has_no_delivery_fee(client, company, products):
    order = await place(client, company, products, source="pickup")
    assert order["delivery_fee"] == 0.0
    assert order["total"] == 40.0


async def test_option_modifiers_priced(client, company, products):
    pizza, _ = products
    body = checkout_body(products)
    body["items"] = [{
        "product_id": pizza.id,
        "quantity": 2,
        "options": [{"name": "Borda recheada", "price_modifier": 8.0}],
    }]
    response = await client.post(f"/api/public/{company.slug}/orders", json=body)
    item = response.json()["order"]["items"][0]
    assert item["unit_price"] == 48.0
    assert item["total_price"] == 96.0


async def test_checkout_rejections(client, db, company, products):
    response = await client.post("/api/public/nao-existe/orders", json=checkout_body(products))
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "COMPANY_NOT_FOUND"

    body = checkout_body(products)
    body["items"] = [{"product_id": "missing", "quantity": 1}]
    response = await client.post(f"/api/public/{company.slug}/orders", json=body)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "PRODUCT_UNAVAILABLE"

    body = checkout_body(products)
    del body["address"]
    response = await client.post(f"/api/public/{company.slug}/orders", json=body)
    assert response.status_code == 422

    company.min_order_value = 50.0
    await db.commit()
    response = await client.post(f"/api/public/{company.slug}/orders", json=checkout_body(products))
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "MIN_ORDER_VALUE"

    company.is_open = False
    await db.commit()
    response = await client.post(f"/api/public/{company.slug}/orders", json=checkout_body(products, quantity=2))
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "STORE_CLOSED"


async def test_coupon_is_applied_and_consumed(client, db, company, products):
    await coupons.create_coupon(
        db, company.id,
        CouponCreate(code="DEZ", discount_type="percentage", discount_value=10, max_uses=1),
    )

    order = await place(client, company, products, coupon_code="dez")
    assert order["discount_amount"] == 4.0
    assert order["total"] == 41.0
    assert order["coupon_id"] is not None

    response = await client.post(
        f"/api/public/{company.slug}/orders", json=checkout_body(products, coupon_code="DEZ")
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "COUPON_EXHAUSTED"


async def test_coupon_taken_concurrently_opens_no_payment(client, db, company, products, payments, monkeypatch):
    coupon = await coupons.create_coupon(
        db, company.id,
        CouponCreate(code="ULTIMO", discount_type="fixed", discount_value=5, max_uses=1),
    )
    coupon.current_uses = 1
    await db.commit()

    # validated by a checkout that ran just before the last use was taken
    async def validated_earlier(session, company_id, code, subtotal):
        return await session.get(Coupon, coupon.id), 5.0

    monkeypatch.setattr(coupons, "validate_coupon", validated_earlier)
    response = await client.post(
        f"/api/public/{company.slug}/orders",
        json=checkout_body(products, coupon_code="ULTIMO", payment_method="online"),
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "COUPON_EXHAUSTED"
    assert payments.intents == {}


async def test_declined_payment_releases_coupon_use(client, db, company, products, payments):
    coupon = await coupons.create_coupon(
        db, company.id,
        CouponCreate(code="UNICO", discount_type="fixed", discount_value=5, max_uses=1),
    )

    payments.failure_rate = 1.0
    response = await client.post(
        f"/api/public/{company.slug}/orders",
        json=checkout_body(products, coupon_code="UNICO", payment_method="online"),
    )
    assert response.status_code == 402
    await db.refresh(coupon)
    assert coupon.current_uses == 0

    payments.failure_rate = 0.0
    order = await place(client, company, products, coupon_code="UNICO", payment_method="online")
    assert order["discount_amount"] == 5.0


async def test_online_payment_and_webhook(client, db, company, products):
    response = await client.post(
        f"/api/public/{company.slug}/orders", json=checkout_body(products, payment_method="online")
    )
    assert response.status_code == 201
    placed = response.json()
    assert placed["client_secret"].endswith("_secret_mock")
    order_id = placed["order"]["id"]

    intent_id = (await db.get(Order, order_id)).payment_intent_id
    assert intent_id.startswith("pi_mock_")

    response = await client.post(
        "/webhook/payments",
        json={"type": "payment_intent.succeeded", "data": {"object": {"id": intent_id}}},
    )
    assert response.status_code == 200
    assert response.json()["payment_status"] == "paid"

    store = {"X-Store-Token": company.api_token}
    response = await client.post(f"/api/store/orders/{order_id}/cancel", json={"reason": "Cliente desistiu"}, headers=store)
    assert response.status_code == 200
    assert response.json()["order"]["payment_status"] == PaymentStatus.REFUNDED.value


async def paid_online_order(client, db, company, products) -> tuple[str, str]:
    response = await client.post(
        f"/api/public/{company.slug}/orders", json=checkout_body(products, payment_method="online")
    )
    order_id = response.json()["order"]["id"]
    intent_id = (await db.get(Order, order_id)).payment_intent_id
    await client.post(
        "/webhook/payments",
        json={"type": "payment_intent.succeeded", "data": {"object": {"id": intent_id}}},
    )
    return order_id, intent_id


async def test_cancel_refunds_paid_online_order(client, db, company, products, payments, store_headers, monkeypatch):
    order_id, intent_id = await paid_online_order(client, db, company, products)
    refunded = []
    original_refund = payments.refund_payment

    async def tracking_refund(payment_intent_id, amount=None, reason=None):
        refunded.append((payment_intent_id, reason))
        return await original_refund(payment_intent_id, amount=amount, reason=reason)

    monkeypatch.setattr(payments, "refund_payment", tracking_refund)
    response = await client.post(
        f"/api/store/orders/{order_id}/cancel", json={"reason": "Sem entregador"}, headers=store_headers
    )
    assert response.json()["order"]["payment_status"] == "refunded"
    assert refunded == [(intent_id, "Sem entregador")]


async def test_failed_refund_keeps_order_paid(client, db, company, products, payments, store_headers, monkeypatch):
    order_id, _ = await paid_online_order(client, db, company, products)

    async def declined_refund(payment_intent_id, amount=None, reason=None):
        return RefundResult(success=False, error_message="charge already disputed")

    monkeypatch.setattr(payments, "refund_payment", declined_refund)
    response = await client.post(
        f"/api/store/orders/{order_id}/cancel", json={"reason": "Cliente desistiu"}, headers=store_headers
    )
    assert response.status_code == 200
    cancelled = response.json()["order"]
    assert cancelled["status"] == "cancelled"
    assert cancelled["payment_status"] == "paid"


async def test_declined_online_payment_stores_nothing(client, company, products, payments, store_headers):
    payments.failure_rate = 1.0
    response = await client.post(
        f"/api/public/{company.slug}/orders", json=checkout_body(products, payment_method="online")
    )
    assert response.status_code == 402
    assert response.json()["error"]["code"] == "PAYMENT_FAILED"

    response = await client.get("/api/store/orders?filter=all", headers=store_headers)
    assert response.json()["total"] == 0


async def test_webhook_rejects_garbage(client):
    response = await client.post("/webhook/payments", content=b"not json")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_WEBHOOK"

    response = await client.post("/webhook/payments", json={"type": "charge.refunded"})
    assert response.status_code == 200
    assert response.json()["order_id"] is None


async def test_track_order(client, company, products):
    order = await place(client, company, products)
    response = await client.get(f"/api/track/{order['id']}")
    assert response.status_code == 200
    tracking = response.json()
    assert tracking["ref"] == order["id"][:8]
    assert tracking["status_label"] == "Pendente"
    assert tracking["driver_name"] is None

    assert (await client.get("/api/track/unknown")).status_code == 404


# =============================================================================
# STAFF ORDER MANAGEMENT
# =============================================================================

async def test_store_requires_valid_token(client, db, company):
    response = await client.get("/api/store/orders")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"

    response = await client.get("/api/store/orders", headers={"X-Store-Token": "wrong"})
    assert response.status_code == 401


async def test_pos_order_starts_confirmed(client, company, products, store_headers):
    order = await pos_order(client, store_headers, products)
    assert order["status"] == "confirmed"
    assert order["source"] == "pickup"
    assert order["total"] == 52.0

    delivery = await pos_order(client, store_headers, products, delivery_type="delivery", address=address_body())
    assert delivery["source"] == "pos"
    assert delivery["total"] == 57.0


async def test_advance_through_pickup_flow(client, db, company, products, store_headers):
    order = await pos_order(client, store_headers, products)
    url = f"/api/store/orders/{order['id']}"

    response = await client.post(f"{url}/advance", headers=store_headers)
    assert response.json()["order"]["status"] == "preparing"

    response = await client.patch(f"{url}/status", json={"status": "ready"}, headers=store_headers)
    assert response.json()["order"]["status"] == "ready"

    response = await client.post(f"{url}/advance", headers=store_headers)
    delivered = response.json()["order"]
    assert delivered["status"] == "delivered"
    assert delivered["delivered_at"] is not None

    response = await client.post(f"{url}/advance", headers=store_headers)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "NO_NEXT_STATUS"

    response = await client.patch(f"{url}/status", json={"status": "pending"}, headers=store_headers)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_TRANSITION"

    logged = (
        await db.execute(select(ActivityLog).where(ActivityLog.entity_id == order["id"]))
    ).scalars().all()
    assert len(logged) == 3
    assert {entry.action_type for entry in logged} == {"status_change"}


async def test_status_change_notifies_customer(client, db, company, products, store_headers, notifier):
    company.notifications_enabled = True
    company.whatsapp_notifications_enabled = True
    await db.commit()

    order = await place(client, company, products)
    response = await client.post(f"/api/store/orders/{order['id']}/advance", headers=store_headers)
    assert response.status_code == 200
    assert response.json()["whatsapp_link"].startswith("https://wa.me/5511987654321?text=")

    assert len(notifier.outbox) == 1
    sms = notifier.outbox[0]
    assert sms["channel"] == "sms"
    assert "confirmado" in sms["body"]


async def test_cancel_through_status_update(client, company, products, store_headers):
    order = await place(client, company, products)
    response = await client.patch(
        f"/api/store/orders/{order['id']}/status", json={"status": "cancelled"}, headers=store_headers
    )
    cancelled = response.json()["order"]
    assert cancelled["status"] == "cancelled"
    assert cancelled["cancellation_reason"] == "Cancelado pelo estabelecimento"

    response = await client.post(
        f"/api/store/orders/{order['id']}/cancel", json={"reason": "de novo"}, headers=store_headers
    )
    assert response.status_code == 409


async def test_cancel_order_without_items_deletes_it(client, db, company, store_headers, feed):
    orphan = Order(company_id=company.id, customer_name="Fantasma", total=0.0)
    db.add(orphan)
    await db.commit()
    queue = feed.subscribe(company_channel(company.id))

    response = await client.post(
        f"/api/store/orders/{orphan.id}/cancel", json={"reason": "vazio"}, headers=store_headers
    )
    assert response.json() == {"order": None, "deleted": True, "whatsapp_link": None}
    assert (await client.get(f"/api/store/orders/{orphan.id}", headers=store_headers)).status_code == 404

    event = queue.get_nowait()
    assert event["event"] == "DELETE"
    assert event["old"]["id"] == orphan.id


async def test_cancelling_last_table_order_closes_session(client, db, company, products, store_headers):
    await tables.create_table(db, company.id, TableIn(table_number=4))
    response = await client.post(
        f"/api/public/{company.slug}/tables/check-in",
        json={"table_number": 4, "customer_name": "João", "customer_phone": "(11) 99999-0000"},
    )
    session = response.json()["session"]

    company.min_order_value = 100.0
    await db.commit()
    order = await place(client, company, products, source="table", table_session_token=session["session_token"])
    assert order["table_session_id"] == session["id"]
    assert order["delivery_fee"] == 0.0

    await client.post(f"/api/store/orders/{order['id']}/cancel", json={"reason": "erro"}, headers=store_headers)

    closed = await db.get(TableSession, session["id"])
    await db.refresh(closed)
    assert closed.status == SessionStatus.CLOSED
    assert closed.closed_at is not None

    response = await client.post(
        f"/api/public/{company.slug}/orders",
        json=checkout_body(products, source="table", table_session_token=session["session_token"]),
    )
    assert response.json()["error"]["code"] == "TABLE_SESSION_INVALID"


async def test_convert_pickup_to_delivery(client, company, products, store_headers):
    order = await place(client, company, products, source="pickup")
    url = f"/api/store/orders/{order['id']}/convert-to-delivery"

    response = await client.post(url, json={"address": address_body()}, headers=store_headers)
    assert response.status_code == 200
    converted = response.json()
    assert converted["source"] == "pos"
    assert converted["delivery_fee"] == 5.0
    assert converted["total"] == 45.0

    response = await client.post(url, json={"address": address_body()}, headers=store_headers)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "NOT_PICKUP"


async def test_list_orders_filters_and_period(client, db, company, store_headers):
    now = utcnow()
    db.add_all([
        Order(company_id=company.id, customer_name="A", source=OrderSource.ONLINE, status=OrderStatus.PENDING),
        Order(company_id=company.id, customer_name="B", source=OrderSource.PICKUP, status=OrderStatus.PREPARING),
        Order(company_id=company.id, customer_name="C", source=OrderSource.TABLE, status=OrderStatus.READY),
        Order(company_id=company.id, customer_name="D", status=OrderStatus.DELIVERED),
        Order(company_id=company.id, customer_name="E", status=OrderStatus.DELIVERED, created_at=now - timedelta(days=10)),
        Order(company_id=company.id, customer_name="F", source=OrderSource.PICKUP, status=OrderStatus.CANCELLED),
    ])
    await db.commit()

    async def count(query: str) -> int:
        response = await client.get(f"/api/store/orders?{query}", headers=store_headers)
        assert response.status_code == 200
        return response.json()["total"]

    assert await count("") == 3
    assert await count("filter=pickup") == 1
    assert await count("filter=table") == 1
    assert await count("filter=completed") == 2
    assert await count("filter=completed&period=week") == 1
    assert await count("filter=completed&period=month") == 2
    assert await count("filter=cancelled") == 1
    assert await count("filter=all") == 6
    assert await count("filter=all&period=today") == 5

    response = await client.get("/api/store/orders?filter=all&limit=2&skip=0", headers=store_headers)
    body = response.json()
    assert body["total"] == 6
    assert len(body["orders"]) == 2
    # newest first: the ten day old order is never on the first page
    assert "E" not in [o["customer_name"] for o in body["orders"]]
