"""Database models for the store service.

Money columns hold integer minor units (paise). Conversion to and from
decimal currency happens at the pricing and schema edges.
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class PaymentStatus(str, enum.Enum):
    """Payment record status."""
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class OrderStatus(str, enum.Enum):
    """Fulfillment status of an order."""
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class Product(Base):
    """Product model."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    description = Column(Text, default="")
    category = Column(String, default="General")
    base_price_minor = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    variants = relationship(
        "Variant",
        back_populates="product",
        order_by="Variant.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("base_price_minor >= 0", name="ck_products_base_price_non_negative"),
    )


class Variant(Base):
    """Purchasable configuration of a product with its own stock."""
    __tablename__ = "variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    sku = Column(String, nullable=False, unique=True)
    type = Column(String, nullable=False)
    size = Column(String, nullable=False)
    fragrance = Column(String, nullable=False)
    price_adjustment_minor = Column(Integer, nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)
    sales_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    last_restocked_at = Column(DateTime, nullable=True)

    product = relationship("Product", back_populates="variants")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_variants_stock_non_negative"),
        CheckConstraint("sales_count >= 0", name="ck_variants_sales_count_non_negative"),
    )


class Order(Base):
    """Order model.

    Items, pricing and shipping address are a snapshot taken at creation.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, nullable=False, unique=True)
    user_id = Column(String, nullable=False, index=True)
    customer_email = Column(String, nullable=False)
    customer_name = Column(String, nullable=False)

    # Pricing snapshot
    subtotal_minor = Column(Integer, nullable=False)
    tax_minor = Column(Integer, nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=False)
    delivery_charge_minor = Column(Integer, nullable=False)
    discount_minor = Column(Integer, nullable=False, default=0)
    total_minor = Column(Integer, nullable=False)

    # Shipping address snapshot
    ship_full_name = Column(String, nullable=False)
    ship_phone = Column(String, nullable=False)
    ship_address_line1 = Column(String, nullable=False)
    ship_address_line2 = Column(String, nullable=True)
    ship_city = Column(String, nullable=False)
    ship_state = Column(String, nullable=False)
    ship_pincode = Column(String, nullable=False)

    # Payment record
    provider_order_id = Column(String, nullable=True, index=True)
    provider_payment_id = Column(String, nullable=True, unique=True)
    provider_signature = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)

    order_status = Column(String, nullable=False, default=OrderStatus.PENDING.value, index=True)
    estimated_delivery_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    invoice_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    status_history = relationship(
        "OrderStatusEntry",
        back_populates="order",
        order_by="OrderStatusEntry.id",
        cascade="all, delete-orphan",
    )


class OrderItem(Base):
    """Line item of an order, priced at order time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("variants.id"), nullable=False)
    product_name = Column(String, nullable=False)
    variant_type = Column(String)
    variant_size = Column(String)
    variant_fragrance = Column(String)
    sku = Column(String)
    quantity = Column(Integer, nullable=False)
    unit_price_minor = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
    )


class OrderStatusEntry(Base):
    """Append-only status history entry."""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    note = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="status_history")


class Setting(Base):
    """Admin-managed numeric setting."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, nullable=False, unique=True)
    value = Column(Numeric(12, 2), nullable=False)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
