"""Dependency injection for services."""
from typing import Any
from fastapi import Request

from database import SessionLocal
from services.catalog_service import CatalogService
from services.external_service import ExternalServiceClient
from services.invoice_service import InvoiceGenerator
from services.order_service import OrderService
from services.payment_service import PaymentService
from services.settings_service import SettingsService
from services.stock_ledger import StockLedger


def get_http_client(request: Request) -> Any:
    """Get HTTP client from app state."""
    return request.app.state.http_client


def get_external_service(request: Request) -> ExternalServiceClient:
    """Get external service client."""
    return ExternalServiceClient(get_http_client(request))


def get_catalog_service() -> CatalogService:
    """Get catalog service instance."""
    return CatalogService()


def get_stock_ledger() -> StockLedger:
    """Get stock ledger instance."""
    return StockLedger()


def get_settings_service() -> SettingsService:
    """Get settings service instance."""
    return SettingsService()


def get_order_service() -> OrderService:
    """Get order service instance."""
    return OrderService()


def get_payment_service(request: Request) -> PaymentService:
    """Get payment service instance."""
    return PaymentService(
        external_service=get_external_service(request),
        order_service=get_order_service(),
        stock_ledger=get_stock_ledger(),
        invoice_generator=InvoiceGenerator(),
        session_factory=SessionLocal
    )
