"""Admin API router."""
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from auth import require_admin, get_user_id_from_token
from database import get_db
from dependencies import get_order_service, get_settings_service, get_stock_ledger
from errors import StoreError, to_http_exception
from schemas import (
    LowStockResponse,
    OrderResponse,
    OrdersListResponse,
    SettingsResponse,
    SettingsUpdate,
    UpdateStatusRequest,
)
from services.order_service import OrderService, order_to_dict
from services.settings_service import SettingsService, settings_to_dict
from services.stock_ledger import StockLedger

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/orders", response_model=OrdersListResponse)
async def get_all_orders(
    status: Optional[str] = Query(None, description="Filter by order status"),
    db: Session = Depends(get_db),
    token: str = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    """List all orders - admin only."""
    try:
        orders = order_service.list_orders(db, status=status)
    except StoreError as e:
        raise to_http_exception(e)
    return {"orders": [order_to_dict(order) for order in orders]}


@router.put("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    request: UpdateStatusRequest,
    order_id: int = Path(..., description="Order ID"),
    db: Session = Depends(get_db),
    token: str = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    """Move an order along its fulfillment lifecycle - admin only."""
    try:
        order = order_service.update_status(
            db,
            order_id,
            request.status,
            note=request.note,
            changed_by=get_user_id_from_token(token)
        )
    except StoreError as e:
        raise to_http_exception(e)
    return order_to_dict(order)


@router.get("/settings", response_model=SettingsResponse)
async def get_settings(
    db: Session = Depends(get_db),
    token: str = Depends(require_admin),
    settings_service: SettingsService = Depends(get_settings_service)
):
    """Current pricing settings - admin only."""
    return settings_to_dict(settings_service.get_settings(db))


@router.put("/settings", response_model=SettingsResponse)
async def update_settings(
    request: SettingsUpdate,
    db: Session = Depends(get_db),
    token: str = Depends(require_admin),
    settings_service: SettingsService = Depends(get_settings_service)
):
    """Update pricing settings - admin only. Existing orders keep their pricing."""
    values = request.model_dump(exclude_none=True)
    try:
        settings = settings_service.update_settings(
            db, values, updated_by=get_user_id_from_token(token)
        )
    except StoreError as e:
        raise to_http_exception(e)
    return settings_to_dict(settings)


@router.get("/low-stock", response_model=LowStockResponse)
async def get_low_stock(
    db: Session = Depends(get_db),
    token: str = Depends(require_admin),
    settings_service: SettingsService = Depends(get_settings_service),
    stock_ledger: StockLedger = Depends(get_stock_ledger)
):
    """Variants at or below the low-stock threshold - admin only."""
    threshold = settings_service.get_snapshot(db).low_stock_threshold
    variants = stock_ledger.low_stock(db, threshold)
    return {
        "threshold": threshold,
        "items": [
            {
                "product_id": variant.product_id,
                "product_name": variant.product.name,
                "variant_id": variant.id,
                "sku": variant.sku,
                "stock": variant.stock,
                "sales_count": variant.sales_count
            }
            for variant in variants
        ]
    }
