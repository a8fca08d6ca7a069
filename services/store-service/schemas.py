"""Pydantic schemas for request/response validation."""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class VariantCreate(BaseModel):
    """Schema for creating a variant."""
    sku: str = Field(..., min_length=1)
    type: str
    size: str
    fragrance: str
    price_adjustment: Decimal = Decimal("0")
    stock: int = Field(0, ge=0)


class ProductCreate(BaseModel):
    """Schema for creating a product."""
    name: str = Field(..., min_length=1)
    description: str = ""
    category: str = "General"
    base_price: Decimal = Field(..., ge=0)
    variants: List[VariantCreate] = Field(..., min_length=1)


class VariantResponse(BaseModel):
    """Schema for variant response."""
    id: int
    sku: str
    type: str
    size: str
    fragrance: str
    price: Decimal
    price_adjustment: Decimal
    stock: int
    sales_count: int
    last_restocked_at: Optional[datetime] = None


class ProductResponse(BaseModel):
    """Schema for product response."""
    id: int
    name: str
    description: str
    category: str
    base_price: Decimal
    total_stock: int
    variants: List[VariantResponse]


class RestockRequest(BaseModel):
    """Schema for restock request."""
    quantity: int = Field(..., ge=1)


class OrderItemRequest(BaseModel):
    """Schema for one requested order line."""
    product_id: int
    variant_id: int
    quantity: int = Field(..., ge=1)


class ShippingAddress(BaseModel):
    """Schema for shipping address."""
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)


class CreateOrderRequest(BaseModel):
    """Schema for create order request."""
    items: List[OrderItemRequest] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    email: str = Field(..., min_length=3)


class OrderItemResponse(BaseModel):
    """Schema for order item in response."""
    product_id: int
    variant_id: int
    product_name: str
    variant_details: str
    sku: Optional[str] = None
    quantity: int
    unit_price: Decimal


class PricingResponse(BaseModel):
    """Schema for order pricing snapshot."""
    subtotal: Decimal
    tax: Decimal
    tax_rate: Decimal
    delivery_charge: Decimal
    discount: Decimal
    total: Decimal


class PaymentInfoResponse(BaseModel):
    """Schema for the embedded payment record."""
    provider_order_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    method: Optional[str] = None
    status: str


class StatusHistoryEntry(BaseModel):
    """Schema for a status history entry."""
    status: str
    note: Optional[str] = None
    timestamp: datetime


class OrderResponse(BaseModel):
    """Schema for order response."""
    id: int
    order_number: str
    user_id: str
    customer_email: str
    items: List[OrderItemResponse]
    pricing: PricingResponse
    shipping_address: ShippingAddress
    payment: PaymentInfoResponse
    order_status: str
    status_history: List[StatusHistoryEntry]
    estimated_delivery_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    invoice_url: Optional[str] = None
    created_at: datetime


class OrdersListResponse(BaseModel):
    """Schema for orders list response."""
    orders: List[OrderResponse]


class CreatePaymentRequest(BaseModel):
    """Schema for payment provider order request."""
    order_id: int


class CreatePaymentResponse(BaseModel):
    """Schema for payment provider order response."""
    order_id: int
    provider_order_id: str
    amount_minor: int
    currency: str
    key: str


class VerifyPaymentRequest(BaseModel):
    """Schema for payment verification request."""
    order_id: int
    provider_order_id: str = Field(..., min_length=1)
    provider_payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class VerifyPaymentResponse(BaseModel):
    """Schema for payment verification response."""
    message: str
    newly_confirmed: bool
    order: OrderResponse


class UpdateStatusRequest(BaseModel):
    """Schema for admin status update."""
    status: str
    note: Optional[str] = None


class SettingsUpdate(BaseModel):
    """Schema for admin settings update."""
    model_config = ConfigDict(extra="forbid")

    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    delivery_charge: Optional[Decimal] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)


class SettingsResponse(BaseModel):
    """Schema for settings response."""
    tax_rate: Decimal
    delivery_charge: Decimal
    low_stock_threshold: int


class LowStockItem(BaseModel):
    """Schema for low stock entry."""
    product_id: int
    product_name: str
    variant_id: int
    sku: str
    stock: int
    sales_count: int


class LowStockResponse(BaseModel):
    """Schema for low stock report."""
    threshold: int
    items: List[LowStockItem]
