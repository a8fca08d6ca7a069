"""Payment creation and confirmation."""
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from opentelemetry import trace
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from config import (
    CONFIRMATION_MAX_ATTEMPTS,
    CONFIRMATION_RETRY_BACKOFF,
    CURRENCY,
    RAZORPAY_KEY_SECRET,
)
from errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidSignatureError,
    ValidationError,
)
from models import Order, OrderStatus, OrderStatusEntry, PaymentStatus
from monitoring import (
    insufficient_stock_counter,
    payment_confirmation_duration_histogram,
    payment_verifications_counter,
    side_effect_failures_counter,
    stock_conflicts_counter,
)
from pricing import from_minor_units
from services.external_service import ExternalServiceClient
from services.invoice_service import InvoiceGenerator
from services.order_service import OrderService, invoice_snapshot
from services.stock_ledger import StockLedger, is_retryable_db_error

logger = logging.getLogger(__name__)

PAYMENT_METHOD = "Razorpay"


def compute_signature(secret: str, provider_order_id: str, provider_payment_id: str) -> str:
    """Hex HMAC-SHA256 of ``"<order id>|<payment id>"`` keyed with the provider secret."""
    message = f"{provider_order_id}|{provider_payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(
    secret: str,
    provider_order_id: str,
    provider_payment_id: str,
    signature: str
) -> bool:
    """Constant-time check of a provider payment signature."""
    expected = compute_signature(secret, provider_order_id, provider_payment_id)
    return hmac.compare_digest(expected.encode(), (signature or "").encode())


@dataclass
class ConfirmationResult:
    """Outcome of a confirmation call."""
    order: Order
    newly_confirmed: bool


class PaymentService:
    """Service for payment provider orders and the payment confirmation protocol."""

    def __init__(
        self,
        external_service: ExternalServiceClient,
        order_service: OrderService,
        stock_ledger: StockLedger,
        invoice_generator: InvoiceGenerator,
        session_factory: Callable[[], Session],
        provider_secret: str = RAZORPAY_KEY_SECRET,
        max_attempts: int = CONFIRMATION_MAX_ATTEMPTS,
        retry_backoff: float = CONFIRMATION_RETRY_BACKOFF
    ):
        """
        Initialize payment service.

        Args:
            external_service: Payment provider and email client
            order_service: Order service
            stock_ledger: Stock ledger
            invoice_generator: Invoice PDF generator
            session_factory: Opens sessions for post-commit work
            provider_secret: Payment provider key secret
            max_attempts: Confirmation attempts before giving up on contention
            retry_backoff: Base backoff between attempts, in seconds
        """
        self.external_service = external_service
        self.order_service = order_service
        self.stock_ledger = stock_ledger
        self.invoice_generator = invoice_generator
        self.session_factory = session_factory
        self.provider_secret = provider_secret
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.tracer = trace.get_tracer(__name__)

    async def create_payment_order(self, db: Session, order_id: int, user_id: str) -> Order:
        """
        Register the order's total with the payment provider.

        Raises:
            NotFoundError: If the order does not exist or is not the user's
            ValidationError: If the order is no longer awaiting payment
            httpx.HTTPError: If the provider call fails
        """
        order = self.order_service.get_order(db, order_id, user_id=user_id)
        if (order.payment_status != PaymentStatus.PENDING.value
                or order.order_status != OrderStatus.PENDING.value):
            raise ValidationError(f"Order {order.order_number} is not awaiting payment")

        # Release the connection while talking to the provider
        amount_minor = order.total_minor
        order_number = order.order_number
        db.commit()

        provider_order = await self.external_service.create_provider_order(
            amount_minor=amount_minor,
            currency=CURRENCY,
            receipt=order_number
        )

        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status == PaymentStatus.PENDING.value)
            .values(provider_order_id=provider_order["id"])
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ValidationError(f"Order {order_number} is not awaiting payment")
        db.commit()

        logger.info("Payment provider order created", extra={
            "order_id": order_id,
            "order_number": order_number,
            "provider_order_id": provider_order["id"],
            "amount_minor": amount_minor
        })
        return self.order_service.get_order(db, order_id)

    def confirm_payment(
        self,
        db: Session,
        order_id: int,
        provider_order_id: str,
        provider_payment_id: str,
        signature: str,
        user_id: Optional[str] = None
    ) -> ConfirmationResult:
        """
        Verify a provider payment and confirm the order.

        Stock for every line is taken in the same transaction that marks the
        payment Completed, so either all of it happens or none does. A
        confirmation of an already Completed order returns it unchanged.

        Args:
            db: Database session
            order_id: Our order id
            provider_order_id: Provider order id
            provider_payment_id: Provider payment id
            signature: Provider signature
            user_id: When given, the order must belong to this user

        Returns:
            The order and whether this call confirmed it

        Raises:
            InvalidSignatureError: If the signature does not verify
            NotFoundError: If the order does not exist
            ValidationError: If the order cannot be confirmed, or the payment
                belongs to a provider order not issued for it
            InsufficientStockError: If any line lacks stock
        """
        span = trace.get_current_span()
        span.set_attribute("order.id", order_id)

        if not verify_signature(self.provider_secret, provider_order_id, provider_payment_id, signature):
            payment_verifications_counter.add(1, {"outcome": "invalid_signature"})
            logger.warning("Invalid payment signature", extra={
                "order_id": order_id,
                "provider_order_id": provider_order_id,
                "provider_payment_id": provider_payment_id
            })
            raise InvalidSignatureError("Invalid payment signature")

        start_time = time.time()
        attempt = 0
        while True:
            attempt += 1
            try:
                result = self._apply_confirmation(
                    db, order_id, provider_order_id, provider_payment_id, signature, user_id
                )
                break
            except (ConcurrencyConflictError, OperationalError) as e:
                db.rollback()
                if isinstance(e, OperationalError) and not is_retryable_db_error(e):
                    raise
                stock_conflicts_counter.add(1, {"attempt": str(attempt)})
                logger.warning("Payment confirmation conflict", extra={
                    "order_id": order_id,
                    "attempt": attempt,
                    "max_attempts": self.max_attempts,
                    "error": str(e)
                })
                if attempt >= self.max_attempts:
                    insufficient_stock_counter.add(1, {"stage": "confirmation"})
                    payment_verifications_counter.add(1, {"outcome": "insufficient_stock"})
                    raise InsufficientStockError(
                        "Stock could not be reserved for this order",
                        variant_id=getattr(e, "variant_id", None),
                    ) from e
                time.sleep(self.retry_backoff * attempt)
            except IntegrityError as e:
                db.rollback()
                payment_verifications_counter.add(1, {"outcome": "payment_reused"})
                logger.warning("Payment already applied to another order", extra={
                    "order_id": order_id,
                    "provider_payment_id": provider_payment_id
                })
                raise ValidationError("Payment has already been applied to another order") from e
            except InsufficientStockError as e:
                db.rollback()
                insufficient_stock_counter.add(1, {"stage": "confirmation"})
                payment_verifications_counter.add(1, {"outcome": "insufficient_stock"})
                logger.warning("Payment confirmation rejected for insufficient stock", extra={
                    "order_id": order_id,
                    "variant_id": e.variant_id,
                    "provider_payment_id": provider_payment_id
                })
                raise
            except Exception:
                db.rollback()
                raise

        payment_confirmation_duration_histogram.record(
            time.time() - start_time,
            {"newly_confirmed": str(result.newly_confirmed).lower()}
        )
        outcome = "confirmed" if result.newly_confirmed else "already_confirmed"
        payment_verifications_counter.add(1, {"outcome": outcome})
        logger.info("Payment verified", extra={
            "order_id": order_id,
            "order_number": result.order.order_number,
            "provider_payment_id": provider_payment_id,
            "newly_confirmed": result.newly_confirmed,
            "attempts": attempt
        })
        return result

    def _apply_confirmation(
        self,
        db: Session,
        order_id: int,
        provider_order_id: str,
        provider_payment_id: str,
        signature: str,
        user_id: Optional[str]
    ) -> ConfirmationResult:
        """One attempt of the confirmation transaction. Commits on success."""
        order = self.order_service.get_order(db, order_id, user_id=user_id)

        # A signed payment only counts for the provider order issued for this order
        if order.provider_order_id is None or order.provider_order_id != provider_order_id:
            raise ValidationError("Payment does not belong to this order")
        if order.payment_status == PaymentStatus.COMPLETED.value:
            return ConfirmationResult(order=order, newly_confirmed=False)
        if order.payment_status != PaymentStatus.PENDING.value:
            raise ValidationError(f"Payment for order {order.order_number} is {order.payment_status}")
        if order.order_status != OrderStatus.PENDING.value:
            raise ValidationError(f"Order {order.order_number} is {order.order_status}")

        lines = [(item.variant_id, item.quantity) for item in order.items]

        with self.tracer.start_as_current_span("db.transaction.confirm_payment") as db_span:
            db_span.set_attribute("db.operation", "UPDATE")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("order.id", order_id)

            # Claim the order; a concurrent confirmation that got here first
            # leaves nothing to claim.
            claimed = db.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.payment_status == PaymentStatus.PENDING.value,
                    Order.order_status == OrderStatus.PENDING.value,
                    Order.provider_order_id == provider_order_id,
                )
                .values(
                    provider_payment_id=provider_payment_id,
                    provider_signature=signature,
                    payment_method=PAYMENT_METHOD,
                    payment_status=PaymentStatus.COMPLETED.value,
                    order_status=OrderStatus.CONFIRMED.value,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                db.rollback()
                order = self.order_service.get_order(db, order_id)
                if (order.payment_status == PaymentStatus.COMPLETED.value
                        and order.provider_order_id == provider_order_id):
                    return ConfirmationResult(order=order, newly_confirmed=False)
                raise ValidationError(f"Order {order.order_number} cannot be confirmed")

            for variant_id, quantity in lines:
                self.stock_ledger.reserve(db, variant_id, quantity)

            db.add(OrderStatusEntry(
                order_id=order_id,
                status=OrderStatus.CONFIRMED.value,
                note="Payment successful",
            ))
            db.commit()
            db_span.set_attribute("order.lines_reserved", len(lines))

        return ConfirmationResult(
            order=self.order_service.get_order(db, order_id),
            newly_confirmed=True,
        )

    async def dispatch_confirmation_side_effects(self, order_id: int) -> None:
        """
        Invoice and notifications for a freshly confirmed order.

        Runs after the confirmation has committed. Every step is best effort:
        failures are logged and counted, never raised.
        """
        db = self.session_factory()
        try:
            order = self.order_service.get_order(db, order_id)
            snapshot = invoice_snapshot(order)

            try:
                invoice_url = self.invoice_generator.generate(snapshot)
                db.execute(
                    update(Order)
                    .where(Order.id == order_id)
                    .values(invoice_url=invoice_url)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
            except Exception as e:
                db.rollback()
                side_effect_failures_counter.add(1, {"step": "invoice"})
                logger.error("Failed to generate invoice", extra={
                    "order_id": order_id,
                    "order_number": snapshot["order_number"],
                    "error": str(e)
                })

            sent = await self.external_service.notify_customer(snapshot["customer_email"], snapshot)
            if not sent:
                side_effect_failures_counter.add(1, {"step": "customer_email"})

            sent = await self.external_service.notify_admin(
                "New Order Received",
                f"Order #{snapshot['order_number']} has been placed by {snapshot['customer_name']}. "
                f"Total: {CURRENCY} {from_minor_units(order.total_minor)}"
            )
            if not sent:
                side_effect_failures_counter.add(1, {"step": "admin_email"})
        except Exception as e:
            side_effect_failures_counter.add(1, {"step": "dispatch"})
            logger.error("Post-confirmation side effects failed", extra={
                "order_id": order_id,
                "error": str(e)
            })
        finally:
            db.close()
