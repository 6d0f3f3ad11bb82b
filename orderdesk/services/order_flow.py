"""
Order status tables.

Each order source walks a fixed, ordered list of statuses. Delivery orders
(online storefront and POS delivery) pass through the driver states; table
and pickup orders go straight from ``ready`` to ``delivered`` (served or
picked up at the counter).
"""

from typing import Optional

from orderdesk.models import OrderSource, OrderStatus, PaymentMethod

DELIVERY_FLOW: list[OrderStatus] = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.AWAITING_DRIVER,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]

TABLE_FLOW: list[OrderStatus] = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.DELIVERED,
]

PICKUP_FLOW: list[OrderStatus] = list(TABLE_FLOW)

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Pendente",
    OrderStatus.CONFIRMED: "Confirmado",
    OrderStatus.PREPARING: "Preparando",
    OrderStatus.READY: "Pronto",
    OrderStatus.AWAITING_DRIVER: "Aguardando Entregador",
    OrderStatus.QUEUED: "Na Fila",
    OrderStatus.OUT_FOR_DELIVERY: "A caminho",
    OrderStatus.DELIVERED: "Entregue",
    OrderStatus.CANCELLED: "Cancelado",
}

CUSTOMER_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Seu pedido foi recebido e está aguardando confirmação.",
    OrderStatus.CONFIRMED: "Seu pedido foi confirmado! Em breve começaremos a preparar.",
    OrderStatus.PREPARING: "Seu pedido está sendo preparado com carinho! 👨‍🍳",
    OrderStatus.READY: "Seu pedido está pronto! Aguardando entregador.",
    OrderStatus.AWAITING_DRIVER: "Seu pedido está pronto! Estamos aguardando um entregador.",
    OrderStatus.QUEUED: "Seu pedido está na fila do entregador e será entregue assim que possível.",
    OrderStatus.OUT_FOR_DELIVERY: "Seu pedido saiu para entrega! 🛵 Em breve chegará até você.",
    OrderStatus.DELIVERED: "Pedido entregue! Obrigado pela preferência! 😊",
    OrderStatus.CANCELLED: "Seu pedido foi cancelado.",
}

PAYMENT_METHOD_LABELS: dict[PaymentMethod, str] = {
    PaymentMethod.PIX: "PIX",
    PaymentMethod.CASH: "Dinheiro",
    PaymentMethod.CARD_ON_DELIVERY: "Cartão na entrega",
    PaymentMethod.ONLINE: "Cartão online",
    PaymentMethod.PAY_AT_COUNTER: "Pagar no balcão",
}


def flow_for(source: Optional[OrderSource]) -> list[OrderStatus]:
    """Status flow for an order source; unknown sources use the delivery flow."""
    if source == OrderSource.TABLE:
        return TABLE_FLOW
    if source == OrderSource.PICKUP:
        return PICKUP_FLOW
    return DELIVERY_FLOW


def next_status(status: OrderStatus, source: Optional[OrderSource] = None) -> Optional[OrderStatus]:
    """
    Following status in the flow of ``source``.

    Returns None when ``status`` is not part of the flow (``queued``,
    ``cancelled``) or is already the last one.
    """
    flow = flow_for(source)
    if status not in flow:
        return None
    index = flow.index(status)
    if index == len(flow) - 1:
        return None
    return flow[index + 1]


def status_label(status: OrderStatus, source: Optional[OrderSource] = None) -> str:
    if status == OrderStatus.DELIVERED:
        if source == OrderSource.TABLE:
            return "Servido"
        if source == OrderSource.PICKUP:
            return "Retirado"
    return STATUS_LABELS[status]


def customer_message(status: OrderStatus) -> str:
    return CUSTOMER_MESSAGES[status]


def payment_label(method: PaymentMethod) -> str:
    return PAYMENT_METHOD_LABELS.get(method, str(method))


def is_active(status: OrderStatus) -> bool:
    return status not in TERMINAL_STATUSES


def can_transition(current: OrderStatus, target: OrderStatus, source: Optional[OrderSource] = None) -> bool:
    """
    Whether staff may set ``target`` explicitly.

    Terminal orders never change; otherwise any member of the source's flow
    (or ``cancelled``) is allowed, which lets staff correct a status backwards.
    """
    if current in TERMINAL_STATUSES or current == target:
        return False
    return target == OrderStatus.CANCELLED or target in flow_for(source)
