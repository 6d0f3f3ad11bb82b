from datetime import timedelta
from pathlib import Path

from orderdesk.models import Order, OrderItem, OrderSource, OrderStatus, PaymentMethod, utcnow
from orderdesk.services.reports import ReportManager, export_orders_report


def make_order(company, status, total, name, minutes_ago) -> Order:
    return Order(
        created_at=utcnow() - timedelta(minutes=minutes_ago),
        company_id=company.id,
        customer_name=name,
        source=OrderSource.PICKUP,
        status=status,
        payment_method=PaymentMethod.PIX,
        subtotal=total,
        total=total,
        items=[OrderItem(product_name="Pizza", quantity=1, unit_price=total, total_price=total)],
    )


async def test_export_writes_workbook_with_totals(db, company):
    db.add_all([
        make_order(company, OrderStatus.DELIVERED, 40.0, "Ana", 30),
        make_order(company, OrderStatus.PREPARING, 25.5, "Beto", 20),
        make_order(company, OrderStatus.CANCELLED, 99.0, "Caio", 10),
    ])
    await db.commit()

    result = await export_orders_report(db, company.id)
    assert result["success"] is True
    assert result["rows"] == 3
    assert Path(result["path"]).name == "orders_pizzaria-bella.xlsx"

    rows = ReportManager.read_orders(company.slug)
    assert len(rows) == 4
    assert [r["customer_name"] for r in rows[:3]] == ["Ana", "Beto", "Caio"]
    assert rows[0]["items"] == "1x Pizza"
    assert rows[0]["payment_method"] == "PIX"

    totals = rows[-1]
    assert totals["ref"] == "TOTAL"
    # cancelled orders are not billed
    assert totals["total"] == 65.5


def test_empty_export_has_no_totals_row():
    result = ReportManager.write_orders("loja-vazia", [])
    assert result["success"] is True
    assert ReportManager.read_orders("loja-vazia") == []
    assert ReportManager.read_orders("nunca-exportada") == []
