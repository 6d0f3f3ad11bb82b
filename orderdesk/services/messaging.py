"""
WhatsApp share links.

Staff send status updates to customers and order summaries to drivers through
``wa.me`` links opened on their own device; nothing here talks to WhatsApp.
"""

import re
from typing import Iterable, Optional
from urllib.parse import quote

from orderdesk.core.config import get_settings
from orderdesk.models import CustomerAddress, DeliveryDriver, Order, OrderStatus
from orderdesk.services import order_flow


def normalize_phone(raw: str, country_code: Optional[str] = None) -> str:
    """Digits only, prefixed with the country code when missing."""
    country_code = country_code or get_settings().default_phone_country_code
    digits = re.sub(r"\D", "", raw or "")
    if not digits.startswith(country_code):
        digits = f"{country_code}{digits}"
    return digits


def whatsapp_link(phone: str, text: str) -> str:
    return f"https://wa.me/{normalize_phone(phone)}?text={quote(text, safe='')}"


def format_brl(amount: float) -> str:
    """1234.5 -> 'R$ 1.234,50'"""
    formatted = f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"R$ {formatted}"


def tracking_url(order: Order) -> str:
    return f"{get_settings().app_base_url.rstrip('/')}/api/track/{order.id}"


def customer_status_text(order: Order, status: OrderStatus) -> str:
    lines = [
        f"Ola, {order.customer_name}!",
        "",
        f"*Atualizacao do pedido #{order.ref}*",
        "",
        f"*Status:* {order_flow.status_label(status, order.source)}",
        "",
        order_flow.customer_message(status),
        "",
        f"*Total:* {format_brl(order.total)}",
        "",
        f"Acompanhe: {tracking_url(order)}",
    ]
    if status == OrderStatus.OUT_FOR_DELIVERY:
        lines += ["", "Fique atento! O entregador esta a caminho."]
    if status == OrderStatus.DELIVERED:
        lines += ["", "Esperamos que tenha gostado! Volte sempre!"]
    return "\n".join(lines)


def customer_status_link(order: Order, status: OrderStatus) -> Optional[str]:
    if not order.customer_phone:
        return None
    return whatsapp_link(order.customer_phone, customer_status_text(order, status))


def _address_text(address: Optional[CustomerAddress]) -> str:
    if address is None:
        return "Endereço não informado"
    parts: Iterable[Optional[str]] = [
        f"{address.street}, {address.number}",
        f"({address.complement})" if address.complement else None,
        address.neighborhood,
        f"{address.city} - {address.state}",
        f"Referência: {address.reference}" if address.reference else None,
    ]
    return ", ".join(p for p in parts if p)


def route_url(address: CustomerAddress) -> str:
    destination = f"{address.street}, {address.number}, {address.neighborhood}, {address.city} - {address.state}"
    return f"https://www.google.com/maps/dir/?api=1&destination={quote(destination, safe='')}"


def driver_order_text(order: Order, address: Optional[CustomerAddress]) -> str:
    lines = [
        f"*Novo pedido #{order.ref}*",
        "",
        f"*Cliente:* {order.customer_name}",
        f"*Telefone:* {order.customer_phone or '-'}",
        f"*Endereço:* {_address_text(address)}",
        "",
    ]

    if order.items:
        lines.append("*Itens do pedido:*")
        for item in order.items:
            line = f"- {item.quantity}x {item.product_name}"
            if item.options:
                line += f" ({', '.join(o['name'] for o in item.options)})"
            if item.notes:
                line += f" - Obs: {item.notes}"
            lines.append(line)
        lines.append("")

    lines.append(f"*Pagamento:* {order_flow.payment_label(order.payment_method)}")
    if order.needs_change and order.change_for:
        lines.append(f"*Troco para:* {format_brl(order.change_for)}")
    lines.append(f"*Total:* {format_brl(order.total)}")

    if order.notes:
        lines += ["", f"*Observações:* {order.notes}"]
    if address is not None:
        lines += ["", f"Rota no mapa: {route_url(address)}"]

    return "\n".join(lines)


def driver_order_link(driver: DeliveryDriver, order: Order, address: Optional[CustomerAddress]) -> Optional[str]:
    if not driver.driver_phone:
        return None
    return whatsapp_link(driver.driver_phone, driver_order_text(order, address))
