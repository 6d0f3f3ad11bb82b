from orderdesk.models import DriverStatus, Order, OrderItem, OrderSource, OrderStatus
from orderdesk.services.realtime import driver_channel


async def ready_order(db, company, name="Cliente") -> Order:
    order = Order(
        company_id=company.id,
        customer_name=name,
        customer_phone="(11) 98765-4321",
        source=OrderSource.ONLINE,
        status=OrderStatus.READY,
        subtotal=40.0,
        delivery_fee=5.0,
        total=45.0,
        items=[OrderItem(product_name="Pizza Margherita", quantity=1, unit_price=40.0, total_price=40.0)],
    )
    db.add(order)
    await db.commit()
    return order


async def second_driver(client, store_headers) -> dict:
    response = await client.post(
        "/api/store/drivers",
        json={"driver_name": "Ana Bike", "driver_phone": "(11) 95555-1234", "per_delivery_fee": 6.0},
        headers=store_headers,
    )
    assert response.status_code == 201
    created = response.json()
    response = await client.post(
        "/api/driver/availability?available=true", headers={"X-Driver-Token": created["access_token"]}
    )
    assert response.json()["driver_status"] == "available"
    return created


async def test_driver_login(client, driver):
    response = await client.post("/api/driver/login", json={"access_token": driver.access_token})
    assert response.status_code == 200
    assert response.json()["driver_name"] == "Carlos Moto"
    assert "access_token" not in response.json()

    response = await client.post("/api/driver/login", json={"access_token": "not-a-real-token"})
    assert response.status_code == 401


async def test_assign_to_available_driver(client, db, company, driver, store_headers, feed):
    order = await ready_order(db, company)
    queue = feed.subscribe(driver_channel(driver.id))

    response = await client.post(
        f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers
    )
    assert response.status_code == 200
    result = response.json()
    assert result["queued"] is False
    assert result["queue_position"] is None
    assert result["driver_name"] == "Carlos Moto"

    await db.refresh(order)
    await db.refresh(driver)
    assert order.status == OrderStatus.AWAITING_DRIVER
    assert order.delivery_driver_id == driver.id
    assert driver.driver_status == DriverStatus.PENDING_ACCEPTANCE
    assert driver.is_available is False
    assert queue.get_nowait()["table"] == "orders"

    # same driver again is a no-op
    response = await client.post(
        f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers
    )
    assert response.json()["message"] == "Pedido já atribuído a este entregador"


async def test_assign_rejects_orders_not_ready(client, db, company, driver, store_headers):
    order = await ready_order(db, company)
    order.status = OrderStatus.PREPARING
    await db.commit()

    response = await client.post(
        f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_STATUS"

    response = await client.post(
        f"/api/store/orders/{order.id}/assign", json={"driver_id": "missing"}, headers=store_headers
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "DRIVER_NOT_FOUND"


async def test_busy_driver_queue_advances_on_completion(client, db, company, driver, store_headers):
    first = await ready_order(db, company, "Primeiro")
    second = await ready_order(db, company, "Segundo")
    third = await ready_order(db, company, "Terceiro")
    driver_headers = {"X-Driver-Token": driver.access_token}

    for order in (first, second, third):
        response = await client.post(
            f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers
        )
        assert response.status_code == 200
    assert response.json()["queued"] is True
    assert response.json()["queue_position"] == 2

    response = await client.get("/api/driver/orders", headers=driver_headers)
    assert [o["id"] for o in response.json()] == [first.id, second.id, third.id]

    response = await client.post(f"/api/driver/orders/{first.id}/accept", headers=driver_headers)
    assert response.json()["status"] == "ready"
    response = await client.post(f"/api/driver/orders/{first.id}/start", headers=driver_headers)
    assert response.json()["status"] == "out_for_delivery"

    response = await client.post(f"/api/driver/orders/{first.id}/complete", headers=driver_headers)
    assert response.status_code == 200
    completed = response.json()
    assert completed["order"]["status"] == "delivered"
    assert completed["next_order"]["id"] == second.id
    assert completed["next_order"]["status"] == "awaiting_driver"

    await db.refresh(third)
    assert third.queue_position == 1

    response = await client.get("/api/driver/financials", headers=driver_headers)
    financials = response.json()
    assert financials["pending_earnings"] == 7.5
    assert financials["delivery_count"] == 1

    response = await client.post(f"/api/driver/orders/{first.id}/complete", headers=driver_headers)
    assert response.status_code == 409


async def test_driver_becomes_available_after_last_delivery(client, db, company, driver, store_headers):
    order = await ready_order(db, company)
    driver_headers = {"X-Driver-Token": driver.access_token}
    await client.post(f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers)
    await client.post(f"/api/driver/orders/{order.id}/start", headers=driver_headers)

    response = await client.post(f"/api/driver/orders/{order.id}/complete", headers=driver_headers)
    assert response.json()["next_order"] is None

    response = await client.get("/api/driver/me", headers=driver_headers)
    assert response.json()["driver_status"] == "available"
    assert response.json()["is_available"] is True


async def test_broadcast_first_acceptance_wins(client, db, company, driver, store_headers):
    other = await second_driver(client, store_headers)
    order = await ready_order(db, company)

    response = await client.post(f"/api/store/orders/{order.id}/broadcast", headers=store_headers)
    assert response.status_code == 200
    assert response.json()["offers_created"] == 2
    assert sorted(response.json()["driver_names"]) == ["Ana Bike", "Carlos Moto"]

    carlos = {"X-Driver-Token": driver.access_token}
    ana = {"X-Driver-Token": other["access_token"]}
    carlos_offer = (await client.get("/api/driver/offers", headers=carlos)).json()[0]["offer"]
    ana_offer = (await client.get("/api/driver/offers", headers=ana)).json()[0]["offer"]

    response = await client.post(f"/api/driver/offers/{ana_offer['id']}/accept", headers=ana)
    assert response.status_code == 200
    assert response.json()["status"] == "out_for_delivery"
    assert response.json()["delivery_driver_id"] == other["id"]

    # the losing offer was expired when the order was taken
    response = await client.post(f"/api/driver/offers/{carlos_offer['id']}/accept", headers=carlos)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "OFFER_UNAVAILABLE"
    assert (await client.get("/api/driver/offers", headers=carlos)).json() == []


async def test_broadcast_needs_ready_order(client, db, company, driver, store_headers):
    order = await ready_order(db, company)
    order.status = OrderStatus.PENDING
    await db.commit()
    response = await client.post(f"/api/store/orders/{order.id}/broadcast", headers=store_headers)
    assert response.status_code == 409


async def test_reassign_frees_previous_driver(client, db, company, driver, store_headers):
    other = await second_driver(client, store_headers)
    order = await ready_order(db, company)
    await client.post(f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers)

    response = await client.post(
        f"/api/store/orders/{order.id}/reassign", json={"driver_id": other["id"]}, headers=store_headers
    )
    assert response.status_code == 200
    assert response.json()["driver_name"] == "Ana Bike"

    response = await client.get("/api/driver/me", headers={"X-Driver-Token": driver.access_token})
    assert response.json()["is_available"] is True

    response = await client.post(
        f"/api/store/orders/{order.id}/reassign", json={"driver_id": other["id"]}, headers=store_headers
    )
    assert response.json()["error"]["code"] == "SAME_DRIVER"


async def test_pay_driver_settles_pending_earnings(client, db, company, driver, store_headers):
    order = await ready_order(db, company)
    driver_headers = {"X-Driver-Token": driver.access_token}
    await client.post(f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers)
    await client.post(f"/api/driver/orders/{order.id}/start", headers=driver_headers)
    await client.post(f"/api/driver/orders/{order.id}/complete", headers=driver_headers)

    response = await client.post(f"/api/store/drivers/{driver.id}/pay", headers=store_headers)
    assert response.json() == {"driver_id": driver.id, "deliveries_paid": 1, "amount": 7.5}

    response = await client.get(f"/api/store/drivers/{driver.id}/financials", headers=store_headers)
    financials = response.json()
    assert financials["pending_earnings"] == 0.0
    assert financials["total_paid"] == 7.5
    assert financials["deliveries"][0]["status"] == "paid"


async def test_driver_notifications(client, db, company, driver, store_headers):
    order = await ready_order(db, company)
    driver_headers = {"X-Driver-Token": driver.access_token}
    await client.post(f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers)

    response = await client.get("/api/driver/notifications?unread_only=true", headers=driver_headers)
    notes = response.json()
    assert len(notes) == 1
    assert notes[0]["title"] == "Nova entrega disponível"

    await client.post(f"/api/driver/notifications/{notes[0]['id']}/read", headers=driver_headers)
    response = await client.get("/api/driver/notifications?unread_only=true", headers=driver_headers)
    assert response.json() == []


async def test_inactive_driver_rejected(client, driver, store_headers):
    response = await client.patch(f"/api/store/drivers/{driver.id}", json={"is_active": False}, headers=store_headers)
    assert response.json()["is_available"] is False

    response = await client.get("/api/driver/me", headers={"X-Driver-Token": driver.access_token})
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


async def test_repeat_assignment_after_driver_accepted(client, db, company, driver, store_headers):
    order = await ready_order(db, company)
    driver_headers = {"X-Driver-Token": driver.access_token}
    await client.post(f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers)
    response = await client.post(f"/api/driver/orders/{order.id}/accept", headers=driver_headers)
    assert response.json()["status"] == "ready"

    response = await client.post(
        f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers
    )
    result = response.json()
    assert result["queued"] is False
    assert result["queue_position"] is None
    assert result["message"] == "Pedido já atribuído a este entregador"

    await db.refresh(order)
    assert order.status == OrderStatus.READY
    assert order.queue_position is None

    response = await client.post(f"/api/driver/orders/{order.id}/start", headers=driver_headers)
    assert response.json()["status"] == "out_for_delivery"


async def test_cancel_queued_order_while_driver_delivers(client, db, company, driver, store_headers):
    on_route = await ready_order(db, company, "Em rota")
    waiting = await ready_order(db, company, "Na fila")
    later = await ready_order(db, company, "Depois")
    driver_headers = {"X-Driver-Token": driver.access_token}

    await client.post(f"/api/store/orders/{on_route.id}/assign", json={"driver_id": driver.id}, headers=store_headers)
    await client.post(f"/api/driver/orders/{on_route.id}/start", headers=driver_headers)
    response = await client.post(
        f"/api/store/orders/{waiting.id}/assign", json={"driver_id": driver.id}, headers=store_headers
    )
    assert response.json()["queue_position"] == 1

    response = await client.post(
        f"/api/store/orders/{waiting.id}/cancel", json={"reason": "Cliente desistiu"}, headers=store_headers
    )
    assert response.status_code == 200

    # still on the road with the first order
    response = await client.get("/api/driver/me", headers=driver_headers)
    assert response.json()["driver_status"] == "in_delivery"
    assert response.json()["is_available"] is False

    response = await client.post(
        f"/api/store/orders/{later.id}/assign", json={"driver_id": driver.id}, headers=store_headers
    )
    assert response.json()["queued"] is True
    assert response.json()["queue_position"] == 1

    response = await client.post(f"/api/driver/orders/{on_route.id}/complete", headers=driver_headers)
    assert response.json()["next_order"]["id"] == later.id


async def test_cancel_head_order_promotes_queue(client, db, company, driver, store_headers):
    head = await ready_order(db, company, "Primeiro")
    second = await ready_order(db, company, "Segundo")
    third = await ready_order(db, company, "Terceiro")
    for order in (head, second, third):
        await client.post(f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers)

    response = await client.post(
        f"/api/store/orders/{head.id}/cancel", json={"reason": "Sem estoque"}, headers=store_headers
    )
    assert response.status_code == 200

    await db.refresh(second)
    await db.refresh(third)
    await db.refresh(driver)
    assert second.status == OrderStatus.AWAITING_DRIVER
    assert second.queue_position is None
    assert third.status == OrderStatus.QUEUED
    assert third.queue_position == 1
    assert driver.driver_status == DriverStatus.PENDING_ACCEPTANCE


async def test_staff_marking_delivered_frees_driver(client, db, company, driver, store_headers):
    order = await ready_order(db, company)
    driver_headers = {"X-Driver-Token": driver.access_token}
    await client.post(f"/api/store/orders/{order.id}/assign", json={"driver_id": driver.id}, headers=store_headers)
    await client.post(f"/api/driver/orders/{order.id}/start", headers=driver_headers)

    response = await client.patch(
        f"/api/store/orders/{order.id}/status", json={"status": "delivered"}, headers=store_headers
    )
    assert response.json()["order"]["status"] == "delivered"

    response = await client.get("/api/driver/me", headers=driver_headers)
    assert response.json()["driver_status"] == "available"
