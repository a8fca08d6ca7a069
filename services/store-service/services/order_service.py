"""Order management service."""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from config import ORDER_NUMBER_PREFIX, ESTIMATED_DELIVERY_DAYS
from errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from models import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusEntry,
    PaymentStatus,
    Product,
    Variant,
)
from monitoring import (
    insufficient_stock_counter,
    order_amount_histogram,
    order_status_changes_counter,
    orders_created_counter,
)
from order_state_machine import ensure_transition, parse_status
from pricing import QuoteLine, SettingsSnapshot, from_minor_units, quote_order

logger = logging.getLogger(__name__)

SHIPPING_FIELDS = (
    "full_name",
    "phone",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "pincode",
)
REQUIRED_SHIPPING_FIELDS = tuple(f for f in SHIPPING_FIELDS if f != "address_line2")


class OrderService:
    """Service for creating orders and managing their fulfillment status."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def create_order(
        self,
        db: Session,
        user_id: str,
        customer_email: str,
        items: List[Dict[str, int]],
        shipping_address: Dict[str, Optional[str]],
        settings: SettingsSnapshot
    ) -> Order:
        """
        Price and persist a new order in Pending state.

        Args:
            db: Database session
            user_id: Purchasing account
            customer_email: Address for the confirmation email
            items: ``product_id``, ``variant_id`` and ``quantity`` per line
            shipping_address: Shipping address fields
            settings: Settings snapshot to price against

        Returns:
            The created order

        Raises:
            ValidationError: If the request is malformed
            NotFoundError: If a product or variant does not exist
            InsufficientStockError: If a variant cannot cover the quantity
        """
        span = trace.get_current_span()
        span.set_attribute("user.id", user_id)
        span.set_attribute("order.line_count", len(items))

        if not items:
            raise ValidationError("Order must contain at least one item")
        missing = [f for f in REQUIRED_SHIPPING_FIELDS if not shipping_address.get(f)]
        if missing:
            raise ValidationError(f"Shipping address is missing: {', '.join(missing)}")

        quantities = self._merge_lines(items)

        quote_lines = []
        resolved = []
        with self.tracer.start_as_current_span("db.query.resolve_variants") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "variants")

            for (product_id, variant_id), quantity in quantities.items():
                product = db.get(Product, product_id)
                if product is None or not product.is_active:
                    raise NotFoundError(f"Product {product_id} not found")
                variant = db.get(Variant, variant_id)
                if variant is None or variant.product_id != product.id:
                    raise NotFoundError(f"Variant {variant_id} not found for product {product_id}")
                if variant.stock < quantity:
                    insufficient_stock_counter.add(1, {"stage": "quote"})
                    raise InsufficientStockError(
                        f"Insufficient stock for {product.name} ({variant.sku})",
                        variant_id=variant.id,
                    )

                quote_lines.append(QuoteLine(
                    product_id=product.id,
                    variant_id=variant.id,
                    base_price_minor=product.base_price_minor,
                    price_adjustment_minor=variant.price_adjustment_minor,
                    quantity=quantity,
                ))
                resolved.append((product, variant))

        quote = quote_order(quote_lines, settings)

        now = datetime.utcnow()
        order = Order(
            order_number=f"{ORDER_NUMBER_PREFIX}-{uuid.uuid4().hex}",
            user_id=user_id,
            customer_email=customer_email,
            customer_name=shipping_address["full_name"],
            subtotal_minor=quote.subtotal_minor,
            tax_minor=quote.tax_minor,
            tax_rate=quote.tax_rate,
            delivery_charge_minor=quote.delivery_charge_minor,
            discount_minor=quote.discount_minor,
            total_minor=quote.total_minor,
            ship_full_name=shipping_address["full_name"],
            ship_phone=shipping_address["phone"],
            ship_address_line1=shipping_address["address_line1"],
            ship_address_line2=shipping_address.get("address_line2"),
            ship_city=shipping_address["city"],
            ship_state=shipping_address["state"],
            ship_pincode=shipping_address["pincode"],
            payment_status=PaymentStatus.PENDING.value,
            order_status=OrderStatus.PENDING.value,
            estimated_delivery_at=now + timedelta(days=ESTIMATED_DELIVERY_DAYS),
            created_at=now,
        )
        for line, (product, variant) in zip(quote.lines, resolved):
            order.items.append(OrderItem(
                product_id=product.id,
                variant_id=variant.id,
                product_name=product.name,
                variant_type=variant.type,
                variant_size=variant.size,
                variant_fragrance=variant.fragrance,
                sku=variant.sku,
                quantity=line.quantity,
                unit_price_minor=line.unit_price_minor,
            ))
        order.status_history.append(OrderStatusEntry(
            status=OrderStatus.PENDING.value,
            note="Order placed",
            created_at=now,
        ))

        try:
            with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
                db_span.set_attribute("db.operation", "INSERT")
                db_span.set_attribute("db.table", "orders")
                db_span.set_attribute("order.total_minor", quote.total_minor)
                db.add(order)
                # Order number is derived from the primary key
                db.flush()
                order.order_number = format_order_number(order.id, now)
                db.commit()
                db_span.set_attribute("order.id", order.id)
        except Exception as e:
            db.rollback()
            logger.error("Failed to create order", extra={
                "user_id": user_id,
                "total_minor": quote.total_minor,
                "error": str(e)
            })
            raise

        orders_created_counter.add(1)
        order_amount_histogram.record(quote.total_minor)
        logger.info("Order created", extra={
            "order_id": order.id,
            "order_number": order.order_number,
            "user_id": user_id,
            "total_minor": quote.total_minor,
            "item_count": len(quote.lines)
        })
        return order

    def get_order(self, db: Session, order_id: int, user_id: Optional[str] = None) -> Order:
        """
        Load an order; when ``user_id`` is given it must own the order.

        Raises:
            NotFoundError: If the order does not exist or belongs to someone else
        """
        order = db.get(Order, order_id, populate_existing=True)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def get_user_orders(self, db: Session, user_id: str) -> List[Order]:
        """All orders of a user, newest first."""
        with self.tracer.start_as_current_span("db.query.get_user_orders") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("user.id", user_id)

            orders = list(db.execute(
                select(Order)
                .where(Order.user_id == user_id)
                .order_by(Order.created_at.desc(), Order.id.desc())
            ).scalars())

            db_span.set_attribute("db.rows_returned", len(orders))
            return orders

    def list_orders(self, db: Session, status: Optional[str] = None) -> List[Order]:
        """All orders, optionally filtered by fulfillment status."""
        query = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        if status is not None:
            query = query.where(Order.order_status == parse_status(status).value)
        return list(db.execute(query).scalars())

    def update_status(
        self,
        db: Session,
        order_id: int,
        new_status: str,
        note: Optional[str] = None,
        changed_by: Optional[str] = None
    ) -> Order:
        """
        Move an order to a new fulfillment status.

        Raises:
            NotFoundError: If the order does not exist
            ValidationError: If the transition is not allowed
            ConcurrencyConflictError: If the status changed underneath us
        """
        target = parse_status(new_status)
        order = self.get_order(db, order_id)
        current = OrderStatus(order.order_status)
        ensure_transition(current, target)

        now = datetime.utcnow()
        values = {"order_status": target.value, "updated_at": now}
        if target == OrderStatus.DELIVERED:
            values["delivered_at"] = now

        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.order_status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ConcurrencyConflictError(f"Order {order_id} status changed concurrently")

        db.add(OrderStatusEntry(order_id=order_id, status=target.value, note=note, created_at=now))
        db.commit()

        order_status_changes_counter.add(1, {"from": current.value, "to": target.value})
        logger.info("Order status updated", extra={
            "order_id": order_id,
            "from_status": current.value,
            "to_status": target.value,
            "changed_by": changed_by
        })
        return self.get_order(db, order_id)

    def _merge_lines(self, items: List[Dict[str, int]]) -> Dict[tuple, int]:
        """Combine repeated variants so stock is checked against the total quantity."""
        quantities: Dict[tuple, int] = {}
        for item in items:
            quantity = item["quantity"]
            if quantity < 1:
                raise ValidationError("Quantity must be at least 1")
            key = (item["product_id"], item["variant_id"])
            quantities[key] = quantities.get(key, 0) + quantity
        return quantities


def format_order_number(order_id: int, created_at: datetime) -> str:
    """Customer-facing order number: prefix, creation date, zero-padded id."""
    return f"{ORDER_NUMBER_PREFIX}{created_at:%Y%m%d}{order_id:06d}"


def variant_details(item: OrderItem) -> str:
    return " - ".join(filter(None, [item.variant_type, item.variant_size, item.variant_fragrance]))


def order_to_dict(order: Order) -> Dict[str, Any]:
    """Serialize an order for API responses."""
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "customer_email": order.customer_email,
        "items": [
            {
                "product_id": item.product_id,
                "variant_id": item.variant_id,
                "product_name": item.product_name,
                "variant_details": variant_details(item),
                "sku": item.sku,
                "quantity": item.quantity,
                "unit_price": from_minor_units(item.unit_price_minor),
            }
            for item in order.items
        ],
        "pricing": {
            "subtotal": from_minor_units(order.subtotal_minor),
            "tax": from_minor_units(order.tax_minor),
            "tax_rate": order.tax_rate,
            "delivery_charge": from_minor_units(order.delivery_charge_minor),
            "discount": from_minor_units(order.discount_minor),
            "total": from_minor_units(order.total_minor),
        },
        "shipping_address": shipping_address_of(order),
        "payment": {
            "provider_order_id": order.provider_order_id,
            "provider_payment_id": order.provider_payment_id,
            "method": order.payment_method,
            "status": order.payment_status,
        },
        "order_status": order.order_status,
        "status_history": [
            {"status": entry.status, "note": entry.note, "timestamp": entry.created_at}
            for entry in order.status_history
        ],
        "estimated_delivery_at": order.estimated_delivery_at,
        "delivered_at": order.delivered_at,
        "invoice_url": order.invoice_url,
        "created_at": order.created_at,
    }


def shipping_address_of(order: Order) -> Dict[str, Optional[str]]:
    return {field: getattr(order, f"ship_{field}") for field in SHIPPING_FIELDS}


def invoice_snapshot(order: Order) -> Dict[str, Any]:
    """Order data handed to the invoice generator and confirmation email."""
    return {
        "order_number": order.order_number,
        "created_at": order.created_at,
        "customer_email": order.customer_email,
        "customer_name": order.customer_name,
        "shipping_address": shipping_address_of(order),
        "items": [
            {
                "product_name": item.product_name,
                "variant_details": variant_details(item),
                "quantity": item.quantity,
                "unit_price": from_minor_units(item.unit_price_minor),
                "amount": from_minor_units(item.unit_price_minor * item.quantity),
            }
            for item in order.items
        ],
        "pricing": {
            "subtotal": from_minor_units(order.subtotal_minor),
            "tax": from_minor_units(order.tax_minor),
            "tax_rate": order.tax_rate,
            "delivery_charge": from_minor_units(order.delivery_charge_minor),
            "discount": from_minor_units(order.discount_minor),
            "total": from_minor_units(order.total_minor),
        },
        "total": from_minor_units(order.total_minor),
        "estimated_delivery": (
            order.estimated_delivery_at.strftime("%d %b %Y") if order.estimated_delivery_at else None
        ),
    }
