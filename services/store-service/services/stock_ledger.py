"""Per-variant stock ledger."""
import logging
from datetime import datetime
from typing import List, Optional

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from models import Variant

logger = logging.getLogger(__name__)

# PostgreSQL serialization failure / deadlock
RETRYABLE_PGCODES = {"40001", "40P01"}
RETRYABLE_MESSAGES = ("deadlock detected", "could not serialize access", "database is locked")


def is_retryable_db_error(exc: Exception) -> bool:
    """Whether a database error is a transient lock or serialization failure."""
    if not isinstance(exc, OperationalError):
        return False
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in RETRYABLE_PGCODES:
        return True
    message = str(exc.orig).lower()
    return any(fragment in message for fragment in RETRYABLE_MESSAGES)


class StockLedger:
    """
    Stock and sales counters for variants.

    Every write is a single conditional UPDATE guarded by the version the
    caller read, so concurrent writers can never both act on the same
    stock value. Nothing here commits; callers own the transaction.
    """

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def get_variant(self, db: Session, variant_id: int) -> Variant:
        """
        Load a variant, bypassing any stale copy in the session.

        Raises:
            NotFoundError: If the variant does not exist
        """
        variant = db.execute(
            select(Variant)
            .where(Variant.id == variant_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if variant is None:
            raise NotFoundError(f"Variant {variant_id} not found")
        return variant

    def reserve(self, db: Session, variant_id: int, quantity: int) -> None:
        """
        Decrement stock and record the sale, only if enough stock remains.

        Args:
            db: Database session (inside the caller's transaction)
            variant_id: Variant identifier
            quantity: Units to take

        Raises:
            ValidationError: If quantity is not positive
            NotFoundError: If the variant does not exist
            InsufficientStockError: If stock is below quantity
            ConcurrencyConflictError: If another writer changed the row first
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        with self.tracer.start_as_current_span("db.query.reserve_stock") as db_span:
            db_span.set_attribute("db.operation", "UPDATE")
            db_span.set_attribute("db.table", "variants")
            db_span.set_attribute("variant.id", variant_id)
            db_span.set_attribute("quantity", quantity)

            variant = self.get_variant(db, variant_id)
            db_span.set_attribute("variant.stock.before", variant.stock)
            if variant.stock < quantity:
                raise InsufficientStockError(
                    f"Insufficient stock for {variant.sku}: "
                    f"{variant.stock} available, {quantity} requested",
                    variant_id=variant_id,
                )

            result = db.execute(
                update(Variant)
                .where(
                    Variant.id == variant_id,
                    Variant.version == variant.version,
                    Variant.stock >= quantity,
                )
                .values(
                    stock=Variant.stock - quantity,
                    sales_count=Variant.sales_count + quantity,
                    version=Variant.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            db_span.set_attribute("db.rows_affected", result.rowcount)

            if result.rowcount != 1:
                logger.warning("Stock update lost race", extra={
                    "variant_id": variant_id,
                    "quantity": quantity,
                    "expected_version": variant.version
                })
                raise ConcurrencyConflictError(
                    f"Stock for variant {variant_id} changed concurrently",
                    variant_id=variant_id,
                )

    def restock(self, db: Session, variant_id: int, quantity: int) -> Variant:
        """
        Add stock to a variant and commit.

        Raises:
            ValidationError: If quantity is not positive
            NotFoundError: If the variant does not exist
        """
        if quantity < 1:
            raise ValidationError("Restock quantity must be at least 1")

        result = db.execute(
            update(Variant)
            .where(Variant.id == variant_id)
            .values(
                stock=Variant.stock + quantity,
                version=Variant.version + 1,
                last_restocked_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise NotFoundError(f"Variant {variant_id} not found")
        db.commit()

        variant = self.get_variant(db, variant_id)
        logger.info("Restocked variant", extra={
            "variant_id": variant_id,
            "sku": variant.sku,
            "quantity": quantity,
            "stock": variant.stock
        })
        return variant

    def low_stock(self, db: Session, threshold: int) -> List[Variant]:
        """Variants with stock at or below ``threshold``, lowest first."""
        return list(db.execute(
            select(Variant)
            .where(Variant.stock <= threshold)
            .order_by(Variant.stock, Variant.id)
        ).scalars())

    def available(self, db: Session, variant_id: int) -> Optional[int]:
        """Current stock of a variant, or None if it does not exist."""
        return db.execute(
            select(Variant.stock).where(Variant.id == variant_id)
        ).scalar_one_or_none()
