"""
                        Services Module

Business logic for OrderDesk. Each module works on an ``AsyncSession`` and
raises ``orderdesk.core.exceptions`` errors; routers stay thin.

External integrations follow the hybrid pattern: a Mock implementation in
development and a Real one in staging/production.

Services:
    - order_flow / orders: status tables, checkout, POS and order lifecycle
    - coupons, menu, tables, comandas, kitchen
    - dispatch: drivers, assignment, offers and delivery queue
    - billing / companies: plans, subscriptions and tenant back-office
    - payment / notifications: external adapters
    - realtime / messaging / activity: change feed, WhatsApp links, audit
    - reports: Excel export
"""
