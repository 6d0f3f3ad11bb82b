import pytest

from orderdesk.core.exceptions import ConflictError, NotFoundError, ValidationError
from orderdesk.models import ComandaPayment, ComandaStatus
from orderdesk.schemas import CheckInRequest, ComandaClose, ComandaOpen, CompanyRegister, OrderItemIn, TableIn
from orderdesk.services import comandas, companies, tables


async def test_numbers_follow_highest_open_or_closed(db, company, feed):
    first = await comandas.open_comanda(db, company.id, ComandaOpen(), feed)
    second = await comandas.open_comanda(db, company.id, ComandaOpen(customer_name="Mesa do fundo"), feed)
    assert (first.number, second.number) == (1, 2)
    assert not first.is_manual_number

    await comandas.cancel_comanda(db, company.id, second.id, feed)
    third = await comandas.open_comanda(db, company.id, ComandaOpen(), feed)
    # cancelled tabs do not hold their number
    assert third.number == 2

    manual = await comandas.open_comanda(db, company.id, ComandaOpen(manual_number=40), feed)
    assert manual.is_manual_number
    with pytest.raises(ConflictError) as exc:
        await comandas.open_comanda(db, company.id, ComandaOpen(manual_number=40), feed)
    assert exc.value.code == "COMANDA_IN_USE"


async def test_items_and_cash_close(db, company, products, feed):
    pizza, soda = products
    comanda = await comandas.open_comanda(db, company.id, ComandaOpen(), feed)
    comanda = await comandas.add_items(
        db, company.id, comanda.id,
        [OrderItemIn(product_id=pizza.id, quantity=1), OrderItemIn(product_id=soda.id, quantity=2)],
        feed,
    )
    assert comanda.total == 52.0

    soda_line = next(i for i in comanda.items if i.product_id == soda.id)
    comanda = await comandas.remove_item(db, company.id, comanda.id, soda_line.id, feed)
    assert comanda.total == 40.0

    with pytest.raises(ValidationError) as exc:
        await comandas.close_comanda(
            db, company.id, comanda.id, ComandaClose(payment_method=ComandaPayment.DINHEIRO, amount_received=30), feed
        )
    assert exc.value.code == "INSUFFICIENT_AMOUNT"

    closed = await comandas.close_comanda(
        db, company.id, comanda.id, ComandaClose(payment_method=ComandaPayment.DINHEIRO, amount_received=50), feed
    )
    assert closed.status == ComandaStatus.CLOSED
    assert closed.change_amount == 10.0
    assert closed.closed_at is not None

    with pytest.raises(ConflictError) as exc:
        await comandas.add_items(db, company.id, closed.id, [OrderItemIn(product_id=pizza.id, quantity=1)], feed)
    assert exc.value.code == "COMANDA_NOT_OPEN"


async def test_card_payment_receives_exact_total(db, company, products, feed):
    pizza, _ = products
    comanda = await comandas.open_comanda(db, company.id, ComandaOpen(), feed)
    await comandas.add_items(db, company.id, comanda.id, [OrderItemIn(product_id=pizza.id, quantity=2)], feed)

    closed = await comandas.close_comanda(
        db, company.id, comanda.id, ComandaClose(payment_method=ComandaPayment.CARTAO, amount_received=500), feed
    )
    assert closed.amount_received == 80.0
    assert closed.change_amount == 0.0


async def test_generated_cards_are_reused(db, company, feed):
    cards = await comandas.generate_comandas(db, company.id, start=100, count=3)
    assert [c.number for c in cards] == [100, 101, 102]
    assert len(await comandas.generate_comandas(db, company.id, start=101, count=3)) == 1

    comanda = await comandas.open_comanda(db, company.id, ComandaOpen(generated_comanda_id=cards[0].id), feed)
    assert comanda.number == 100
    assert comanda.is_manual_number
    assert [c.number for c in await comandas.available_generated(db, company.id)] == [101, 102, 103]

    await comandas.cancel_comanda(db, company.id, comanda.id, feed)
    assert [c.number for c in await comandas.available_generated(db, company.id)] == [100, 101, 102, 103]


async def test_history_of_a_number(db, company, products, feed):
    pizza, _ = products
    for quantity in (1, 2):
        comanda = await comandas.open_comanda(db, company.id, ComandaOpen(manual_number=7), feed)
        await comandas.add_items(db, company.id, comanda.id, [OrderItemIn(product_id=pizza.id, quantity=quantity)], feed)
        await comandas.close_comanda(db, company.id, comanda.id, ComandaClose(payment_method=ComandaPayment.PIX), feed)

    history = await comandas.comanda_history(db, company.id, 7)
    assert history.total_uses == 2
    assert history.total_value == 120.0
    assert history.last_value == 80.0
    assert [entry.total for entry in history.history] == [80.0, 40.0]


async def test_comanda_endpoints(client, company, products, store_headers):
    pizza, _ = products
    response = await client.post("/api/store/comandas", json={"customer_name": "Pedro"}, headers=store_headers)
    assert response.status_code == 201
    comanda = response.json()

    response = await client.post(
        f"/api/store/comandas/{comanda['id']}/items",
        json={"items": [{"product_id": pizza.id, "quantity": 1}]},
        headers=store_headers,
    )
    assert response.json()["total"] == 40.0

    response = await client.get("/api/store/comandas", headers=store_headers)
    assert [c["number"] for c in response.json()] == [1]

    response = await client.post(
        f"/api/store/comandas/{comanda['id']}/close",
        json={"payment_method": "dinheiro"},
        headers=store_headers,
    )
    closed = response.json()
    assert closed["status"] == "closed"
    assert closed["amount_received"] == 40.0

    response = await client.get("/api/store/comandas?status=closed", headers=store_headers)
    assert len(response.json()) == 1

    response = await client.post(
        "/api/store/comandas", json={"manual_number": 3, "generated_comanda_id": "x"}, headers=store_headers
    )
    assert response.status_code == 422


async def seated_session(db, company, number=1) -> str:
    await tables.create_table(db, company.id, TableIn(table_number=number))
    result = await tables.check_in(
        db, company.slug, CheckInRequest(table_number=number, customer_name="Nina", customer_phone="(11) 94444-0000")
    )
    return result.session.id


async def test_tab_links_only_own_table_sessions(db, company, feed):
    other = await companies.register_company(db, CompanyRegister(name="Bar Vizinho", owner_email="bar@vizinho.com"))
    foreign_session = await seated_session(db, other)

    with pytest.raises(NotFoundError):
        await comandas.open_comanda(db, company.id, ComandaOpen(table_session_id=foreign_session), feed)

    own_session = await seated_session(db, company)
    comanda = await comandas.open_comanda(db, company.id, ComandaOpen(table_session_id=own_session), feed)
    assert comanda.table_session_id == own_session
