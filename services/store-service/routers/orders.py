"""Orders API router."""
from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from database import get_db
from schemas import CreateOrderRequest, OrderResponse, OrdersListResponse
from auth import verify_token, get_user_id_from_token
from dependencies import get_order_service, get_settings_service
from errors import StoreError, to_http_exception
from services.order_service import OrderService, order_to_dict
from services.settings_service import SettingsService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=201)
async def create_order(
    request: CreateOrderRequest,
    db: Session = Depends(get_db),
    token: str = Depends(verify_token),
    order_service: OrderService = Depends(get_order_service),
    settings_service: SettingsService = Depends(get_settings_service)
):
    """Price and place an order awaiting payment - requires authentication."""
    user_id = get_user_id_from_token(token)

    try:
        order = order_service.create_order(
            db=db,
            user_id=user_id,
            customer_email=request.email,
            items=[item.model_dump() for item in request.items],
            shipping_address=request.shipping_address.model_dump(),
            settings=settings_service.get_snapshot(db)
        )
    except StoreError as e:
        raise to_http_exception(e)

    return order_to_dict(order)


@router.get("", response_model=OrdersListResponse)
async def get_orders(
    db: Session = Depends(get_db),
    token: str = Depends(verify_token),
    order_service: OrderService = Depends(get_order_service)
):
    """Get user's orders - requires authentication."""
    user_id = get_user_id_from_token(token)
    orders = order_service.get_user_orders(db, user_id)

    return {"orders": [order_to_dict(order) for order in orders]}


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int = Path(..., description="Order ID"),
    db: Session = Depends(get_db),
    token: str = Depends(verify_token),
    order_service: OrderService = Depends(get_order_service)
):
    """Get one of the user's orders - requires authentication."""
    user_id = get_user_id_from_token(token)

    try:
        order = order_service.get_order(db, order_id, user_id=user_id)
    except StoreError as e:
        raise to_http_exception(e)

    return order_to_dict(order)
