from orderdesk.models import OrderSource, OrderStatus, PaymentMethod
from orderdesk.services import order_flow


def test_delivery_flow_passes_through_driver_states():
    seen = [OrderStatus.PENDING]
    while order_flow.next_status(seen[-1], OrderSource.ONLINE) is not None:
        seen.append(order_flow.next_status(seen[-1], OrderSource.ONLINE))
    assert seen == order_flow.DELIVERY_FLOW
    assert OrderStatus.AWAITING_DRIVER in seen
    assert seen[-1] == OrderStatus.DELIVERED


def test_table_and_pickup_go_from_ready_to_delivered():
    for source in (OrderSource.TABLE, OrderSource.PICKUP):
        assert order_flow.next_status(OrderStatus.READY, source) == OrderStatus.DELIVERED


def test_pos_orders_use_delivery_flow():
    assert order_flow.next_status(OrderStatus.READY, OrderSource.POS) == OrderStatus.AWAITING_DRIVER
    assert order_flow.next_status(OrderStatus.READY, None) == OrderStatus.AWAITING_DRIVER


def test_no_next_status_outside_flow_or_at_end():
    assert order_flow.next_status(OrderStatus.DELIVERED, OrderSource.ONLINE) is None
    assert order_flow.next_status(OrderStatus.CANCELLED, OrderSource.ONLINE) is None
    assert order_flow.next_status(OrderStatus.QUEUED, OrderSource.ONLINE) is None
    assert order_flow.next_status(OrderStatus.AWAITING_DRIVER, OrderSource.TABLE) is None


def test_delivered_label_depends_on_source():
    assert order_flow.status_label(OrderStatus.DELIVERED, OrderSource.TABLE) == "Servido"
    assert order_flow.status_label(OrderStatus.DELIVERED, OrderSource.PICKUP) == "Retirado"
    assert order_flow.status_label(OrderStatus.DELIVERED, OrderSource.ONLINE) == "Entregue"
    assert order_flow.status_label(OrderStatus.QUEUED) == "Na Fila"


def test_can_transition():
    assert order_flow.can_transition(OrderStatus.PENDING, OrderStatus.PREPARING, OrderSource.ONLINE)
    # staff may correct backwards
    assert order_flow.can_transition(OrderStatus.READY, OrderStatus.CONFIRMED, OrderSource.ONLINE)
    assert order_flow.can_transition(OrderStatus.READY, OrderStatus.CANCELLED, OrderSource.TABLE)

    assert not order_flow.can_transition(OrderStatus.PENDING, OrderStatus.PENDING, OrderSource.ONLINE)
    assert not order_flow.can_transition(OrderStatus.DELIVERED, OrderStatus.PENDING, OrderSource.ONLINE)
    assert not order_flow.can_transition(OrderStatus.CANCELLED, OrderStatus.CONFIRMED, OrderSource.ONLINE)
    assert not order_flow.can_transition(OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY, OrderSource.TABLE)


def test_terminal_and_labels():
    assert not order_flow.is_active(OrderStatus.DELIVERED)
    assert not order_flow.is_active(OrderStatus.CANCELLED)
    assert order_flow.is_active(OrderStatus.QUEUED)
    assert order_flow.payment_label(PaymentMethod.CASH) == "Dinheiro"
    assert "fila" in order_flow.customer_message(OrderStatus.QUEUED)
