"""
Pydantic Schemas for Request/Response Validation

Covers public checkout, staff back-office, driver app, kitchen display and
platform administration payloads.

Author: OrderDesk Team
Version: 1.0.0
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from orderdesk.models import (
    CompanyStatus,
    ComandaPayment,
    ComandaStatus,
    DiscountType,
    DriverStatus,
    EarningStatus,
    OfferStatus,
    OrderSource,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    SessionStatus,
    SubscriptionStatus,
    WaiterCallStatus,
    WaiterCallType,
)


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class InputModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


def _validate_phone(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    cleaned = re.sub(r"[^\d]", "", v)
    if len(cleaned) < 10:
        raise ValueError("Phone number must have at least 10 digits")
    return v


# =============================================================================
# ENUMS (request-only)
# =============================================================================

class CheckoutSource(str, Enum):
    """Sources a customer may place from the public storefront."""
    ONLINE = "online"
    PICKUP = "pickup"
    TABLE = "table"


class DeliveryType(str, Enum):
    """Point-of-sale order type, mapped onto an order source."""
    DELIVERY = "delivery"
    PICKUP = "pickup"
    TABLE = "table"


class OrderFilter(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PICKUP = "pickup"
    POS = "pos"
    TABLE = "table"
    ALL = "all"


class Period(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


# =============================================================================
# SHARED
# =============================================================================

class AddressIn(InputModel):
    street: str = Field(..., min_length=1, max_length=200)
    number: str = Field(..., min_length=1, max_length=20)
    complement: Optional[str] = Field(None, max_length=100)
    neighborhood: str = Field(..., min_length=1, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=40)
    zip_code: Optional[str] = Field(None, max_length=20)
    reference: Optional[str] = Field(None, max_length=200)


class ItemOption(InputModel):
    name: str = Field(..., min_length=1, max_length=120)
    group_name: Optional[str] = Field(None, max_length=120)
    price_modifier: float = Field(default=0.0, ge=0)


class OrderItemIn(InputModel):
    """Single cart line."""
    product_id: str
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    options: List[ItemOption] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=300)


# =============================================================================
# COMPANIES
# =============================================================================

class CompanyRegister(InputModel):
    name: str = Field(..., min_length=2, max_length=120, examples=["Pizzaria Bella"])
    owner_email: EmailStr
    phone: Optional[str] = Field(None, max_length=30)
    slug: Optional[str] = Field(None, max_length=120, pattern=r"^[a-z0-9-]+$")

    check_phone = field_validator("phone")(_validate_phone)


class CompanySettingsUpdate(InputModel):
    name: Optional[str] = Field(None, min_length=2, max_length=120)
    phone: Optional[str] = Field(None, max_length=30)
    delivery_fee: Optional[float] = Field(None, ge=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    is_open: Optional[bool] = None
    menu_published: Optional[bool] = None
    auto_print_kitchen: Optional[bool] = None
    notifications_enabled: Optional[bool] = None
    whatsapp_notifications_enabled: Optional[bool] = None
    whatsapp_driver_share_enabled: Optional[bool] = None


class CompanyOut(OrmModel):
    id: str
    name: str
    slug: str
    owner_email: str
    phone: Optional[str] = None
    status: CompanyStatus
    delivery_fee: float
    min_order_value: float
    is_open: bool
    menu_published: bool
    auto_print_kitchen: bool
    notifications_enabled: bool
    whatsapp_notifications_enabled: bool
    whatsapp_driver_share_enabled: bool
    subscription_status: SubscriptionStatus
    subscription_plan: str
    subscription_end_date: Optional[datetime] = None
    revenue_limit_bonus: float
    created_at: datetime


class CompanyCredentials(CompanyOut):
    """Returned once on registration and token rotation."""
    api_token: str
    kds_token: str


# =============================================================================
# ORDERS
# =============================================================================

class CheckoutRequest(InputModel):
    """Public storefront checkout."""
    customer_name: str = Field(..., min_length=2, max_length=120, examples=["Maria Souza"])
    customer_phone: str = Field(..., max_length=30, examples=["(11) 98765-4321"])
    customer_email: Optional[EmailStr] = None
    source: CheckoutSource = CheckoutSource.ONLINE
    payment_method: PaymentMethod = PaymentMethod.PIX
    address: Optional[AddressIn] = None
    table_session_token: Optional[str] = None
    coupon_code: Optional[str] = Field(None, max_length=40)
    notes: Optional[str] = Field(None, max_length=500)
    needs_change: bool = False
    change_for: Optional[float] = Field(None, ge=0)
    items: List[OrderItemIn] = Field(..., min_length=1)

    check_phone = field_validator("customer_phone")(_validate_phone)

    @model_validator(mode="after")
    def check_source_requirements(self) -> "CheckoutRequest":
        if self.source == CheckoutSource.ONLINE and self.address is None:
            raise ValueError("Delivery orders require an address")
        if self.source == CheckoutSource.TABLE and not self.table_session_token:
            raise ValueError("Table orders require a table_session_token")
        return self


class PosOrderRequest(InputModel):
    """Order keyed in by staff at the counter."""
    delivery_type: DeliveryType = DeliveryType.PICKUP
    customer_name: str = Field(..., min_length=1, max_length=120)
    customer_phone: Optional[str] = Field(None, max_length=30)
    customer_email: Optional[EmailStr] = None
    address: Optional[AddressIn] = None
    table_session_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=500)
    needs_change: bool = False
    change_for: Optional[float] = Field(None, ge=0)
    items: List[OrderItemIn] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_address(self) -> "PosOrderRequest":
        if self.delivery_type == DeliveryType.DELIVERY and self.address is None:
            raise ValueError("Delivery orders require an address")
        return self


class StatusUpdate(BaseModel):
    status: OrderStatus


class CancelRequest(InputModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ConvertToDeliveryRequest(BaseModel):
    address: AddressIn


class OrderItemOut(OrmModel):
    id: str
    product_id: Optional[str] = None
    product_name: str
    quantity: int
    unit_price: float
    total_price: float
    options: List[dict] = Field(default_factory=list)
    notes: Optional[str] = None
    requires_preparation: bool


class OrderOut(OrmModel):
    id: str
    company_id: str
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    delivery_address_id: Optional[str] = None
    source: OrderSource
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    subtotal: float
    delivery_fee: float
    discount_amount: float
    total: float
    notes: Optional[str] = None
    needs_change: bool
    change_for: Optional[float] = None
    coupon_id: Optional[str] = None
    delivery_driver_id: Optional[str] = None
    queue_position: Optional[int] = None
    table_session_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    estimated_delivery_time: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    items: List[OrderItemOut] = Field(default_factory=list)


class OrderListResponse(BaseModel):
    total: int
    orders: List[OrderOut]


class OrderPlaced(BaseModel):
    success: bool = True
    message: str
    order: OrderOut
    client_secret: Optional[str] = None


class StatusChangeResponse(BaseModel):
    order: Optional[OrderOut] = None
    deleted: bool = False
    whatsapp_link: Optional[str] = None


class TrackingResponse(BaseModel):
    id: str
    ref: str
    status: OrderStatus
    status_label: str
    message: str
    source: OrderSource
    items: List[OrderItemOut]
    subtotal: float
    delivery_fee: float
    discount_amount: float
    total: float
    driver_name: Optional[str] = None
    queue_position: Optional[int] = None
    estimated_delivery_time: Optional[datetime] = None
    created_at: datetime


# =============================================================================
# COUPONS
# =============================================================================

class CouponCreate(InputModel):
    code: str = Field(..., min_length=2, max_length=40)
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    expires_at: Optional[datetime] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_percentage(self) -> "CouponCreate":
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class CouponUpdate(InputModel):
    discount_value: Optional[float] = Field(None, gt=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class CouponOut(OrmModel):
    id: str
    code: str
    discount_type: DiscountType
    discount_value: float
    min_order_value: Optional[float] = None
    max_uses: Optional[int] = None
    current_uses: int
    expires_at: Optional[datetime] = None
    is_active: bool


class CouponValidateRequest(InputModel):
    code: str = Field(..., min_length=1, max_length=40)
    subtotal: float = Field(..., ge=0)


class CouponValidation(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: float
    discount_amount: float


# =============================================================================
# DISPATCH
# =============================================================================

class DriverCreate(InputModel):
    driver_name: str = Field(..., min_length=2, max_length=120)
    driver_phone: Optional[str] = Field(None, max_length=30)
    email: Optional[EmailStr] = None
    per_delivery_fee: float = Field(default=0.0, ge=0)

    check_phone = field_validator("driver_phone")(_validate_phone)


class DriverUpdate(InputModel):
    driver_name: Optional[str] = Field(None, min_length=2, max_length=120)
    driver_phone: Optional[str] = Field(None, max_length=30)
    email: Optional[EmailStr] = None
    per_delivery_fee: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = None


class DriverOut(OrmModel):
    id: str
    company_id: str
    driver_name: str
    driver_phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool
    is_available: bool
    driver_status: DriverStatus
    per_delivery_fee: float


class DriverWithToken(DriverOut):
    access_token: str


class DriverLogin(BaseModel):
    access_token: str = Field(..., min_length=8)


class AssignDriverRequest(BaseModel):
    driver_id: str


class AssignResult(BaseModel):
    driver_name: str
    queued: bool
    queue_position: Optional[int] = None
    message: str
    whatsapp_link: Optional[str] = None


class BroadcastResult(BaseModel):
    offers_created: int
    driver_names: List[str]


class OfferOut(OrmModel):
    id: str
    order_id: str
    driver_id: str
    status: OfferStatus
    responded_at: Optional[datetime] = None
    created_at: datetime


class DriverOfferOut(BaseModel):
    offer: OfferOut
    order: OrderOut


class StartDeliveriesRequest(BaseModel):
    order_ids: List[str] = Field(..., min_length=1)


class DriverDeliveryOut(OrmModel):
    id: str
    order_id: Optional[str] = None
    delivery_fee_earned: float
    status: EarningStatus
    delivered_at: datetime
    paid_at: Optional[datetime] = None


class DriverFinancials(BaseModel):
    pending_earnings: float
    total_paid: float
    delivery_count: int
    deliveries: List[DriverDeliveryOut]


class NotificationOut(OrmModel):
    id: str
    title: str
    message: str
    data: Optional[dict] = None
    is_read: bool
    created_at: datetime


# =============================================================================
# MENU
# =============================================================================

class CategoryIn(InputModel):
    name: str = Field(..., min_length=1, max_length=120)
    sort_order: int = 0
    is_active: bool = True


class CategoryUpdate(InputModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryOut(OrmModel):
    id: str
    name: str
    sort_order: int
    is_active: bool


class ProductIn(InputModel):
    category_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=160)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    promotional_price: Optional[float] = Field(None, ge=0)
    is_active: bool = True
    requires_preparation: bool = True
    image_url: Optional[str] = Field(None, max_length=500)
    sort_order: int = 0


class ProductUpdate(InputModel):
    category_id: Optional[str] = None
    name: Optional[str] = Field(None, min_length=1, max_length=160)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    promotional_price: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = None
    requires_preparation: Optional[bool] = None
    image_url: Optional[str] = Field(None, max_length=500)
    sort_order: Optional[int] = None


class ProductOut(OrmModel):
    id: str
    category_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    price: float
    promotional_price: Optional[float] = None
    is_active: bool
    requires_preparation: bool
    image_url: Optional[str] = None


class MenuCategory(BaseModel):
    category: CategoryOut
    products: List[ProductOut]


class PublicMenu(BaseModel):
    company_name: str
    slug: str
    is_open: bool
    delivery_fee: float
    min_order_value: float
    categories: List[MenuCategory]


# =============================================================================
# TABLES
# =============================================================================

class TableIn(InputModel):
    table_number: int = Field(..., ge=1)
    name: Optional[str] = Field(None, max_length=80)
    is_active: bool = True


class TableOut(OrmModel):
    id: str
    table_number: int
    name: Optional[str] = None
    is_active: bool


class CheckInRequest(InputModel):
    table_number: int = Field(..., ge=1)
    customer_name: Optional[str] = Field(None, min_length=2, max_length=120)
    customer_phone: Optional[str] = Field(None, max_length=30)
    customer_email: Optional[EmailStr] = None
    customer_count: Optional[int] = Field(None, ge=1, le=50)


class TableSessionOut(OrmModel):
    id: str
    table_id: str
    session_token: str
    status: SessionStatus
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_count: Optional[int] = None
    opened_at: datetime
    closed_at: Optional[datetime] = None


class CheckInResult(BaseModel):
    success: bool
    reason: Optional[str] = None
    needs_customer_data: bool = False
    new_session: bool = False
    message: Optional[str] = None
    table: Optional[TableOut] = None
    session: Optional[TableSessionOut] = None


class WaiterCallRequest(InputModel):
    session_token: str = Field(..., min_length=1)
    call_type: WaiterCallType = WaiterCallType.WAITER


class WaiterCallOut(BaseModel):
    id: str
    table_id: str
    session_id: str
    table_name: str
    call_type: WaiterCallType
    label: str
    status: WaiterCallStatus
    created_at: datetime
    resolved_at: Optional[datetime] = None


# =============================================================================
# COMANDAS
# =============================================================================

class ComandaOpen(InputModel):
    generated_comanda_id: Optional[str] = None
    manual_number: Optional[int] = Field(None, ge=1)
    customer_name: Optional[str] = Field(None, max_length=120)
    customer_phone: Optional[str] = Field(None, max_length=30)
    notes: Optional[str] = Field(None, max_length=500)
    table_session_id: Optional[str] = None

    @model_validator(mode="after")
    def one_number_source(self) -> "ComandaOpen":
        if self.generated_comanda_id and self.manual_number is not None:
            raise ValueError("Choose either a generated comanda or a manual number")
        return self


class ComandaItemsIn(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)


class ComandaClose(BaseModel):
    payment_method: ComandaPayment
    amount_received: Optional[float] = Field(None, ge=0)


class ComandaItemOut(OrmModel):
    id: str
    product_id: Optional[str] = None
    product_name: str
    quantity: int
    unit_price: float
    total_price: float
    options: List[dict] = Field(default_factory=list)
    notes: Optional[str] = None


class ComandaOut(OrmModel):
    id: str
    number: int
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    status: ComandaStatus
    notes: Optional[str] = None
    is_manual_number: bool
    total: float
    payment_method: Optional[ComandaPayment] = None
    amount_received: Optional[float] = None
    change_amount: Optional[float] = None
    closed_at: Optional[datetime] = None
    table_session_id: Optional[str] = None
    created_at: datetime
    items: List[ComandaItemOut] = Field(default_factory=list)


class ComandaHistoryEntry(BaseModel):
    date: datetime
    total: float
    status: ComandaStatus


class ComandaHistory(BaseModel):
    number: int
    total_uses: int
    total_value: float
    last_value: float
    history: List[ComandaHistoryEntry]


class GenerateComandasRequest(BaseModel):
    start: int = Field(..., ge=1)
    count: int = Field(..., ge=1, le=500)


class GeneratedComandaOut(OrmModel):
    id: str
    number: int
    used_at: Optional[datetime] = None
    comanda_id: Optional[str] = None


# =============================================================================
# BILLING
# =============================================================================

class PlanIn(InputModel):
    key: str = Field(..., min_length=2, max_length=40, pattern=r"^[a-z0-9_-]+$")
    name: str = Field(..., min_length=1, max_length=80)
    price: float = Field(..., ge=0)
    revenue_limit: float = Field(..., description="-1 for unlimited")
    is_active: bool = True
    stripe_price_id: Optional[str] = None

    @field_validator("revenue_limit")
    @classmethod
    def validate_limit(cls, v: float) -> float:
        if v != -1 and v <= 0:
            raise ValueError("revenue_limit must be positive or -1 (unlimited)")
        return v


class PlanUpdate(InputModel):
    name: Optional[str] = Field(None, min_length=1, max_length=80)
    price: Optional[float] = Field(None, ge=0)
    revenue_limit: Optional[float] = None
    is_active: Optional[bool] = None
    stripe_price_id: Optional[str] = None


class PlanOut(OrmModel):
    id: str
    key: str
    name: str
    price: float
    revenue_limit: float
    is_active: bool


class SubscribeRequest(BaseModel):
    plan_key: str


class SubscriptionStatusOut(BaseModel):
    status: SubscriptionStatus
    plan_key: str
    plan_name: str
    revenue_limit: float
    monthly_revenue: float
    usage_percentage: float
    is_near_limit: bool
    is_at_limit: bool
    is_unlimited: bool
    subscription_end_date: Optional[datetime] = None
    recommended_plan: Optional[PlanOut] = None


class RevenueBonusRequest(BaseModel):
    amount: float = Field(..., ge=0)


# =============================================================================
# ACTIVITY / SYSTEM
# =============================================================================

class ActivityOut(OrmModel):
    id: str
    action_type: str
    entity_type: str
    entity_id: Optional[str] = None
    entity_name: Optional[str] = None
    description: Optional[str] = None
    old_data: Optional[Any] = None
    new_data: Optional[Any] = None
    created_at: datetime


class ReportQueued(BaseModel):
    task_id: str
    message: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., examples=["operational"])
    database: str
    redis: str
    payments: str
    notifications: str
    timestamp: datetime
