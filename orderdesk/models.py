"""
SQLAlchemy Database Models

Multi-tenant store data: every tenant-owned row carries ``company_id`` and
all queries in the service layer are scoped by it.

Covers:
- Companies, plans and subscriptions
- Menu (categories, products) and coupons
- Orders, items, drivers, offers and delivery earnings
- Table service, comandas (tabs) and pre-printed tab numbers
- Activity log and driver notifications

Author: OrderDesk Team
Version: 1.0.0
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from orderdesk.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_column(enum_cls: type[enum.Enum], **kwargs) -> Column:
    """String column storing the enum *value* on every backend."""
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            length=32,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        **kwargs,
    )


# =============================================================================
# ENUMS
# =============================================================================

class CompanyStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"


class SubscriptionStatus(str, enum.Enum):
    FREE = "free"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    EXPIRED = "expired"


class OrderSource(str, enum.Enum):
    """Where an order came from; decides its status flow."""
    ONLINE = "online"
    POS = "pos"
    PICKUP = "pickup"
    TABLE = "table"


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    AWAITING_DRIVER = "awaiting_driver"
    QUEUED = "queued"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    PIX = "pix"
    CASH = "cash"
    CARD_ON_DELIVERY = "card_on_delivery"
    ONLINE = "online"
    PAY_AT_COUNTER = "pay_at_counter"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class DriverStatus(str, enum.Enum):
    OFFLINE = "offline"
    AVAILABLE = "available"
    PENDING_ACCEPTANCE = "pending_acceptance"
    IN_DELIVERY = "in_delivery"


class OfferStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class EarningStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class WaiterCallType(str, enum.Enum):
    WAITER = "waiter"
    BILL = "bill"


class WaiterCallStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class ComandaStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class ComandaPayment(str, enum.Enum):
    DINHEIRO = "dinheiro"
    CARTAO = "cartao"
    PIX = "pix"


# =============================================================================
# MIXINS
# =============================================================================

class RecordMixin:
    """UUID primary key plus created/updated timestamps."""
    id = Column(String(36), primary_key=True, default=new_id)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


# =============================================================================
# TENANTS & BILLING
# =============================================================================

class Company(RecordMixin, Base):
    """A store (tenant)."""
    __tablename__ = "companies"

    name = Column(String(120), nullable=False)
    slug = Column(String(120), nullable=False, unique=True, index=True)
    owner_email = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=True)
    status = enum_column(CompanyStatus, default=CompanyStatus.PENDING, nullable=False, index=True)

    # Store configuration
    delivery_fee = Column(Float, nullable=False, default=0.0)
    min_order_value = Column(Float, nullable=False, default=0.0)
    is_open = Column(Boolean, nullable=False, default=True)
    menu_published = Column(Boolean, nullable=False, default=False)
    auto_print_kitchen = Column(Boolean, nullable=False, default=False)
    notifications_enabled = Column(Boolean, nullable=False, default=False)
    whatsapp_notifications_enabled = Column(Boolean, nullable=False, default=False)
    whatsapp_driver_share_enabled = Column(Boolean, nullable=False, default=False)

    # Credentials
    api_token = Column(String(64), nullable=False, unique=True, index=True)
    kds_token = Column(String(64), nullable=False, unique=True, index=True)

    # Subscription
    subscription_status = enum_column(SubscriptionStatus, default=SubscriptionStatus.FREE, nullable=False)
    subscription_plan = Column(String(40), nullable=False, default="free")
    subscription_end_date = Column(DateTime, nullable=True)
    subscription_grace_end_date = Column(DateTime, nullable=True)
    revenue_limit_bonus = Column(Float, nullable=False, default=0.0)
    monthly_revenue = Column(Float, nullable=False, default=0.0)
    approved_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Company {self.slug} - {self.status.value}>"


class SubscriptionPlan(RecordMixin, Base):
    __tablename__ = "subscription_plans"

    key = Column(String(40), nullable=False, unique=True)
    name = Column(String(80), nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    revenue_limit = Column(Float, nullable=False)  # -1 = unlimited
    is_active = Column(Boolean, nullable=False, default=True)
    stripe_price_id = Column(String(100), nullable=True)


# =============================================================================
# MENU
# =============================================================================

class Category(RecordMixin, Base):
    __tablename__ = "categories"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class Product(RecordMixin, Base):
    __tablename__ = "products"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(160), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    promotional_price = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    requires_preparation = Column(Boolean, nullable=False, default=True)
    image_url = Column(String(500), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    @property
    def effective_price(self) -> float:
        if self.promotional_price is not None and self.promotional_price > 0:
            return self.promotional_price
        return self.price


class Coupon(RecordMixin, Base):
    __tablename__ = "coupons"
    __table_args__ = (UniqueConstraint("company_id", "code"),)

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(40), nullable=False)
    discount_type = enum_column(DiscountType, nullable=False)
    discount_value = Column(Float, nullable=False)
    min_order_value = Column(Float, nullable=True)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


# =============================================================================
# CUSTOMERS
# =============================================================================

class Customer(RecordMixin, Base):
    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("company_id", "email"),)

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(30), nullable=True)
    email = Column(String(255), nullable=True)


class CustomerAddress(RecordMixin, Base):
    __tablename__ = "customer_addresses"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=True, index=True)
    street = Column(String(200), nullable=False)
    number = Column(String(20), nullable=False)
    complement = Column(String(100), nullable=True)
    neighborhood = Column(String(100), nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(40), nullable=False)
    zip_code = Column(String(20), nullable=True)
    reference = Column(String(200), nullable=True)


# =============================================================================
# ORDERS
# =============================================================================

class Order(RecordMixin, Base):
    """
    Customer order.

    ``status`` walks the flow of its ``source`` (see services.order_flow).
    """
    __tablename__ = "orders"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    # Customer
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    customer_name = Column(String(120), nullable=False)
    customer_phone = Column(String(30), nullable=True)
    customer_email = Column(String(255), nullable=True)
    delivery_address_id = Column(String(36), ForeignKey("customer_addresses.id", ondelete="SET NULL"), nullable=True)

    # Lifecycle
    source = enum_column(OrderSource, default=OrderSource.ONLINE, nullable=False, index=True)
    status = enum_column(OrderStatus, default=OrderStatus.PENDING, nullable=False, index=True)
    cancellation_reason = Column(Text, nullable=True)
    estimated_delivery_time = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    # Payment
    payment_method = enum_column(PaymentMethod, default=PaymentMethod.CASH, nullable=False)
    payment_status = enum_column(PaymentStatus, default=PaymentStatus.PENDING, nullable=False)
    payment_intent_id = Column(String(100), nullable=True, index=True)
    needs_change = Column(Boolean, nullable=False, default=False)
    change_for = Column(Float, nullable=True)

    # Pricing
    subtotal = Column(Float, nullable=False, default=0.0)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)
    coupon_id = Column(String(36), ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)

    # Dispatch
    delivery_driver_id = Column(String(36), ForeignKey("delivery_drivers.id", ondelete="SET NULL"), nullable=True, index=True)
    queue_position = Column(Integer, nullable=True)

    # Table service
    table_session_id = Column(String(36), ForeignKey("table_sessions.id", ondelete="SET NULL"), nullable=True, index=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.created_at",
    )

    @property
    def ref(self) -> str:
        """Short reference shown to customers and staff."""
        return self.id[:8]

    def __repr__(self):
        return f"<Order {self.ref} - {self.source.value} - {self.status.value}>"


class OrderItem(RecordMixin, Base):
    __tablename__ = "order_items"

    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(String(160), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    options = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    requires_preparation = Column(Boolean, nullable=False, default=True)

    order = relationship("Order", back_populates="items")


# =============================================================================
# DISPATCH
# =============================================================================

class DeliveryDriver(RecordMixin, Base):
    __tablename__ = "delivery_drivers"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    driver_name = Column(String(120), nullable=False)
    driver_phone = Column(String(30), nullable=True)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_available = Column(Boolean, nullable=False, default=False)
    driver_status = enum_column(DriverStatus, default=DriverStatus.OFFLINE, nullable=False)
    per_delivery_fee = Column(Float, nullable=False, default=0.0)
    access_token = Column(String(64), nullable=False, unique=True, index=True)


class OrderOffer(RecordMixin, Base):
    """A broadcast offer of an order to one driver."""
    __tablename__ = "order_offers"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    driver_id = Column(String(36), ForeignKey("delivery_drivers.id", ondelete="CASCADE"), nullable=False, index=True)
    status = enum_column(OfferStatus, default=OfferStatus.PENDING, nullable=False)
    responded_at = Column(DateTime, nullable=True)


class DriverDelivery(RecordMixin, Base):
    """Earnings row written when a driver completes a delivery."""
    __tablename__ = "driver_deliveries"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    driver_id = Column(String(36), ForeignKey("delivery_drivers.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    delivery_fee_earned = Column(Float, nullable=False, default=0.0)
    status = enum_column(EarningStatus, default=EarningStatus.PENDING, nullable=False)
    delivered_at = Column(DateTime, nullable=False, default=utcnow)
    paid_at = Column(DateTime, nullable=True)


class Notification(RecordMixin, Base):
    """In-app notification for a driver."""
    __tablename__ = "notifications"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    driver_id = Column(String(36), ForeignKey("delivery_drivers.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(160), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)


# =============================================================================
# TABLE SERVICE
# =============================================================================

class DiningTable(RecordMixin, Base):
    __tablename__ = "dining_tables"
    __table_args__ = (UniqueConstraint("company_id", "table_number"),)

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    table_number = Column(Integer, nullable=False)
    name = Column(String(80), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class TableSession(RecordMixin, Base):
    __tablename__ = "table_sessions"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    table_id = Column(String(36), ForeignKey("dining_tables.id", ondelete="CASCADE"), nullable=False, index=True)
    session_token = Column(String(64), nullable=False, unique=True, index=True)
    status = enum_column(SessionStatus, default=SessionStatus.OPEN, nullable=False)
    customer_name = Column(String(120), nullable=True)
    customer_phone = Column(String(30), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_count = Column(Integer, nullable=True)
    opened_at = Column(DateTime, nullable=False, default=utcnow)
    closed_at = Column(DateTime, nullable=True)


class WaiterCall(RecordMixin, Base):
    """A customer at a table calling the waiter or asking for the bill."""

    __tablename__ = "waiter_calls"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    table_id = Column(String(36), ForeignKey("dining_tables.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(String(36), ForeignKey("table_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    call_type = enum_column(WaiterCallType, default=WaiterCallType.WAITER, nullable=False)
    status = enum_column(WaiterCallStatus, default=WaiterCallStatus.PENDING, nullable=False, index=True)
    resolved_at = Column(DateTime, nullable=True)


# =============================================================================
# COMANDAS
# =============================================================================

class Comanda(RecordMixin, Base):
    """An open tab for counter or table service."""
    __tablename__ = "comandas"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(Integer, nullable=False, index=True)
    customer_name = Column(String(120), nullable=True)
    customer_phone = Column(String(30), nullable=True)
    status = enum_column(ComandaStatus, default=ComandaStatus.OPEN, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    is_manual_number = Column(Boolean, nullable=False, default=False)
    total = Column(Float, nullable=False, default=0.0)
    payment_method = enum_column(ComandaPayment, nullable=True)
    amount_received = Column(Float, nullable=True)
    change_amount = Column(Float, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    table_session_id = Column(String(36), ForeignKey("table_sessions.id", ondelete="SET NULL"), nullable=True)

    items = relationship(
        "ComandaItem",
        back_populates="comanda",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ComandaItem.created_at",
    )


class ComandaItem(RecordMixin, Base):
    __tablename__ = "comanda_items"

    comanda_id = Column(String(36), ForeignKey("comandas.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(String(160), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    options = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    comanda = relationship("Comanda", back_populates="items")


class GeneratedComanda(RecordMixin, Base):
    """Pre-printed tab number."""
    __tablename__ = "generated_comandas"
    __table_args__ = (UniqueConstraint("company_id", "number"),)

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    used_at = Column(DateTime, nullable=True)
    comanda_id = Column(String(36), ForeignKey("comandas.id", ondelete="SET NULL"), nullable=True)


# =============================================================================
# AUDIT
# =============================================================================

class ActivityLog(RecordMixin, Base):
    __tablename__ = "activity_logs"

    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    action_type = Column(String(40), nullable=False)
    entity_type = Column(String(40), nullable=False)
    entity_id = Column(String(36), nullable=True)
    entity_name = Column(String(160), nullable=True)
    description = Column(Text, nullable=True)
    old_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)
