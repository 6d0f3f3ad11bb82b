"""
                OrderDesk

Multi-tenant restaurant ordering backend: digital menus, order intake,
driver dispatch, kitchen display and subscription billing, with a hybrid
Mock/Real adapter architecture for payments and notifications.
"""

__version__ = "1.0.0"
