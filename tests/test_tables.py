from orderdesk.models import SessionStatus
from orderdesk.schemas import CheckInRequest, TableIn
from orderdesk.services import tables
from orderdesk.services.realtime import company_channel


async def test_check_in_unknown_store_or_table(db, company):
    result = await tables.check_in(db, "nao-existe", CheckInRequest(table_number=1))
    assert (result.success, result.reason) == (False, "company_not_found")

    result = await tables.check_in(db, company.slug, CheckInRequest(table_number=9))
    assert (result.success, result.reason) == (False, "table_not_found")

    await tables.create_table(db, company.id, TableIn(table_number=9, is_active=False))
    result = await tables.check_in(db, company.slug, CheckInRequest(table_number=9))
    assert result.reason == "table_not_found"


async def test_check_in_opens_then_joins_session(db, company):
    await tables.create_table(db, company.id, TableIn(table_number=2, name="Varanda"))

    result = await tables.check_in(db, company.slug, CheckInRequest(table_number=2))
    assert result.success is False
    assert result.needs_customer_data is True
    assert result.table.name == "Varanda"

    opened = await tables.check_in(
        db, company.slug,
        CheckInRequest(table_number=2, customer_name="Lucas", customer_phone="(11) 97777-0000", customer_count=3),
    )
    assert opened.success and opened.new_session
    assert opened.session.status == SessionStatus.OPEN

    joined = await tables.check_in(db, company.slug, CheckInRequest(table_number=2))
    assert joined.success and not joined.new_session
    assert joined.session.session_token == opened.session.session_token


async def test_close_session(db, company):
    table = await tables.create_table(db, company.id, TableIn(table_number=5))
    opened = await tables.check_in(
        db, company.slug, CheckInRequest(table_number=5, customer_name="Bia", customer_phone="(11) 96666-0000")
    )
    assert [s.id for s in await tables.list_open_sessions(db, company.id)] == [opened.session.id]

    closed = await tables.close_session(db, company.id, opened.session.id)
    assert closed.status == SessionStatus.CLOSED
    assert await tables.open_session_for(db, table.id) is None
    assert await tables.get_open_session_by_token(db, company.id, opened.session.session_token) is None


async def test_table_endpoints(client, store_headers):
    response = await client.post("/api/store/tables", json={"table_number": 1}, headers=store_headers)
    assert response.status_code == 201
    table = response.json()

    response = await client.post("/api/store/tables", json={"table_number": 1}, headers=store_headers)
    assert response.status_code == 409

    response = await client.put(
        f"/api/store/tables/{table['id']}", json={"table_number": 1, "name": "Janela"}, headers=store_headers
    )
    assert response.json()["name"] == "Janela"

    response = await client.get("/api/store/tables", headers=store_headers)
    assert [t["name"] for t in response.json()] == ["Janela"]

    response = await client.delete(f"/api/store/tables/{table['id']}", headers=store_headers)
    assert response.status_code == 204


async def open_table(db, company, number=3) -> str:
    await tables.create_table(db, company.id, TableIn(table_number=number))
    result = await tables.check_in(
        db, company.slug, CheckInRequest(table_number=number, customer_name="Rafa", customer_phone="(11) 95555-0000")
    )
    return result.session.session_token


async def test_waiter_call_reaches_staff(client, db, company, store_headers, feed):
    token = await open_table(db, company)
    queue = feed.subscribe(company_channel(company.id))

    response = await client.post(
        f"/api/public/{company.slug}/tables/calls", json={"session_token": token, "call_type": "bill"}
    )
    assert response.status_code == 201
    call = response.json()
    assert call["table_name"] == "Mesa 3"
    assert call["label"] == "Pediu a conta"
    assert call["status"] == "pending"

    event = queue.get_nowait()
    assert (event["table"], event["event"]) == ("waiter_calls", "INSERT")
    assert event["new"]["call_type"] == "bill"

    # a second tap while pending does not page staff again
    response = await client.post(
        f"/api/public/{company.slug}/tables/calls", json={"session_token": token, "call_type": "bill"}
    )
    assert response.json()["id"] == call["id"]
    assert queue.empty()

    response = await client.get("/api/store/waiter-calls", headers=store_headers)
    assert [c["id"] for c in response.json()] == [call["id"]]

    response = await client.post(f"/api/store/waiter-calls/{call['id']}/resolve", headers=store_headers)
    assert response.json()["status"] == "resolved"
    assert response.json()["resolved_at"] is not None

    assert (await client.get("/api/store/waiter-calls", headers=store_headers)).json() == []
    response = await client.get("/api/store/waiter-calls?pending_only=false", headers=store_headers)
    assert len(response.json()) == 1

    response = await client.post(f"/api/store/waiter-calls/{call['id']}/resolve", headers=store_headers)
    assert response.status_code == 409


async def test_waiter_call_needs_open_session(client, db, company):
    token = await open_table(db, company, number=4)
    session = await tables.get_open_session_by_token(db, company.id, token)
    await tables.close_session(db, company.id, session.id)

    response = await client.post(f"/api/public/{company.slug}/tables/calls", json={"session_token": token})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "TABLE_SESSION_INVALID"

    response = await client.post("/api/public/nao-existe/tables/calls", json={"session_token": token})
    assert response.json()["error"]["code"] == "COMPANY_NOT_FOUND"
