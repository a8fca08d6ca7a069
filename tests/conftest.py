"""
Shared pytest fixtures.

The service reads its configuration at import time, so the environment is
pointed at a throwaway SQLite database and all exporters are switched off
before any service module is imported.
"""
import os
import tempfile
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="store-service-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'store.db')}"
os.environ["INVOICE_DIR"] = os.path.join(_TMP_DIR, "invoices")
os.environ["OTEL_ENABLED"] = "false"
os.environ["PROFILING_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RAZORPAY_KEY_SECRET"] = "test_secret"

from sqlalchemy import update  # noqa: E402

from database import SessionLocal, engine  # noqa: E402
from models import Base, Order, Product, Variant  # noqa: E402
from pricing import SettingsSnapshot  # noqa: E402
from services.order_service import OrderService  # noqa: E402
from services.payment_service import PaymentService, compute_signature  # noqa: E402
from services.stock_ledger import StockLedger  # noqa: E402

PROVIDER_SECRET = "test_secret"

SHIPPING_ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "address_line2": None,
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def tables():
    """Fresh schema for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(tables):
    """Database session bound to the test database."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def catalog(db):
    """
    Two products priced 100.00 and 50.00 with one variant each.

    Returns:
        Dict of ids: product_a, variant_a, product_b, variant_b
    """
    product_a = Product(
        name="Shoe Deodoriser",
        base_price_minor=10000,
        variants=[Variant(sku="SD-STD-S-LAV", type="Standard", size="Small",
                          fragrance="Lavender", price_adjustment_minor=0, stock=5)],
    )
    product_b = Product(
        name="Refill Pouch",
        base_price_minor=6000,
        variants=[Variant(sku="RP-STD-M-CED", type="Standard", size="Medium",
                          fragrance="Cedar", price_adjustment_minor=-1000, stock=5)],
    )
    db.add_all([product_a, product_b])
    db.commit()
    return {
        "product_a": product_a.id,
        "variant_a": product_a.variants[0].id,
        "product_b": product_b.id,
        "variant_b": product_b.variants[0].id,
    }


@pytest.fixture
def settings() -> SettingsSnapshot:
    """Tax 18%, delivery 40.00."""
    return SettingsSnapshot(
        tax_rate=Decimal("18"),
        delivery_charge_minor=4000,
        low_stock_threshold=10,
    )


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def order_service() -> OrderService:
    return OrderService()


@pytest.fixture
def stock_ledger() -> StockLedger:
    return StockLedger()


@pytest.fixture
def external_service() -> MagicMock:
    """Payment provider / email client with async methods mocked."""
    client = MagicMock()
    client.create_provider_order = AsyncMock(
        side_effect=lambda amount_minor, currency, receipt: {
            "id": f"order_{receipt}", "amount": amount_minor, "currency": currency
        }
    )
    client.notify_customer = AsyncMock(return_value=True)
    client.notify_admin = AsyncMock(return_value=True)
    return client


@pytest.fixture
def invoice_generator() -> MagicMock:
    generator = MagicMock()
    generator.generate.return_value = "/invoices/invoice-test.pdf"
    return generator


@pytest.fixture
def payment_service(external_service, order_service, stock_ledger, invoice_generator) -> PaymentService:
    return PaymentService(
        external_service=external_service,
        order_service=order_service,
        stock_ledger=stock_ledger,
        invoice_generator=invoice_generator,
        session_factory=SessionLocal,
        provider_secret=PROVIDER_SECRET,
        max_attempts=3,
        retry_backoff=0,
    )


@pytest.fixture
def place_order(db, order_service, settings):
    """Factory creating a Pending order for ``[(product_id, variant_id, quantity), ...]``."""
    def _place(lines, user_id="user_user-token", email="asha@example.com"):
        return order_service.create_order(
            db=db,
            user_id=user_id,
            customer_email=email,
            items=[
                {"product_id": product_id, "variant_id": variant_id, "quantity": quantity}
                for product_id, variant_id, quantity in lines
            ],
            shipping_address=dict(SHIPPING_ADDRESS),
            settings=settings,
        )
    return _place


def sign(provider_order_id: str, provider_payment_id: str) -> str:
    """Signature the payment provider would send for this payment."""
    return compute_signature(PROVIDER_SECRET, provider_order_id, provider_payment_id)


def issue_provider_order(db, order_id: int, provider_order_id: str) -> str:
    """Record the provider order id as create-order would."""
    db.execute(update(Order).where(Order.id == order_id).values(provider_order_id=provider_order_id))
    db.commit()
    return provider_order_id
